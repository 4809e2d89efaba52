"""
Sync the local cache from the authoritative store
Run this script to refresh the cache outside the API
"""

import argparse
import logging
from config import get_config
from database import get_authoritative_connector, get_cache_connector, create_cache_schema
from sync import Principal, create_sync_trigger

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Sync the local cache from the authoritative store")
    parser.add_argument("--full", action="store_true", help="Ignore watermarks and fetch every scoped row")
    parser.add_argument("--tables", nargs="+", help="Tables to sync, in order (default: all)")
    parser.add_argument("--email", default="cli@localhost", help="Principal email")
    parser.add_argument("--role", default="admin", help="Principal role: admin, zonal_head or branch")
    parser.add_argument("--zone", help="Principal zone (zonal_head)")
    parser.add_argument("--branch", help="Principal branch (branch role)")
    return parser.parse_args(argv)


def main(argv=None):
    """Main sync workflow"""
    args = parse_args(argv)

    print("╔" + "="*78 + "╗")
    print("║" + " "*27 + "DOCUMENT CACHE SYNC" + " "*32 + "║")
    print("╚" + "="*78 + "╝")

    # Load configuration
    config = get_config()
    logging.getLogger().setLevel(config.system.log_level)

    try:
        config.validate()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    # Initialize connectors
    logger.info("\n🔌 Initializing database connectors...")
    authoritative_connector = get_authoritative_connector(config.authoritative)
    cache_connector = get_cache_connector(config.cache)

    try:
        # Test connections
        if not authoritative_connector.test_connection():
            logger.error("Failed to connect to the authoritative store")
            return 1

        if not cache_connector.test_connection():
            logger.error("Failed to connect to the cache store")
            return 1

        logger.info("✅ Database connections established")
        create_cache_schema(cache_connector.engine)

        principal = Principal(email=args.email, role=args.role, zone=args.zone, branch=args.branch)
        trigger = create_sync_trigger(
            principal, authoritative_connector.engine, cache_connector.engine, config.sync
        )

        # Perform sync
        sync_result = trigger.coordinator.sync_all(full_sync=args.full, tables=args.tables)

        # Display final statistics
        logger.info("\n" + "=" * 80)
        logger.info("SYNC SUMMARY")
        logger.info("=" * 80)

        logger.info(f"\n📋 Tables:")
        for name, result in sync_result.results.items():
            if result.status == "error":
                logger.info(f"   • {name}: ❌ {result.message}")
            else:
                logger.info(
                    f"   • {name}: +{result.added} ~{result.updated} -{result.deleted} "
                    f"({result.total} fetched)"
                )

        logger.info("\n" + "=" * 80)
        if sync_result.status == "success":
            logger.info("✅ SYNC COMPLETED SUCCESSFULLY!")
            logger.info("=" * 80)
            return 0

        logger.error(f"❌ SYNC FINISHED WITH STATUS {sync_result.status.upper()}"
                     + (f": {sync_result.message}" if sync_result.message else ""))
        logger.info("=" * 80)
        return 1

    except Exception as e:
        logger.error(f"\n❌ Sync failed: {e}", exc_info=True)
        return 1

    finally:
        # Cleanup
        authoritative_connector.close()
        cache_connector.close()
        logger.info("\n✅ Connections closed")


if __name__ == "__main__":
    import sys
    sys.exit(main())
