"""
Cache Database Initialization Script
Creates the cache schema and optionally seeds it with a full sync
"""

import argparse
import logging
from config import get_config
from database import get_authoritative_connector, get_cache_connector, create_cache_schema
from sync import DEFAULT_TABLES, Principal, create_sync_trigger

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Create the cache schema")
    parser.add_argument("--seed", action="store_true",
                        help="Run an admin full sync after creating the schema")
    return parser.parse_args(argv)


def main(argv=None):
    """Main initialization workflow"""
    args = parse_args(argv)

    logger.info("=" * 80)
    logger.info("CACHE DATABASE INITIALIZATION")
    logger.info("=" * 80)

    # Load configuration
    config = get_config()
    logging.getLogger().setLevel(config.system.log_level)

    try:
        config.validate()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    cache_connector = get_cache_connector(config.cache)
    authoritative_connector = get_authoritative_connector(config.authoritative)

    try:
        if not cache_connector.test_connection():
            logger.error("Failed to connect to the cache store")
            return 1

        # Step 1: Create schema
        logger.info("\n" + "=" * 80)
        logger.info("STEP 1: CREATING CACHE SCHEMA")
        logger.info("=" * 80)

        create_cache_schema(cache_connector.engine)
        logger.info(f"✓ Cache tables: {', '.join(sorted(cache_connector.get_table_names()))}")

        if not args.seed:
            logger.info("\n✅ CACHE SCHEMA READY")
            logger.info("\nNext steps:")
            logger.info("  1. Run 'python sync_database.py --full' to fill the cache")
            logger.info("  2. Run 'python start_api.py' to start the API")
            return 0

        # Step 2: Seed
        logger.info("\n" + "=" * 80)
        logger.info("STEP 2: SEEDING CACHE WITH A FULL SYNC")
        logger.info("=" * 80)

        if not authoritative_connector.test_connection():
            logger.error("Failed to connect to the authoritative store")
            return 1

        trigger = create_sync_trigger(
            Principal(email="init@localhost", role="admin"),
            authoritative_connector.engine,
            cache_connector.engine,
            config.sync
        )
        result = trigger.coordinator.sync_all(full_sync=True, tables=DEFAULT_TABLES)

        logger.info(f"\n📊 Rows fetched per table:")
        for name, table_result in result.results.items():
            logger.info(f"   • {name}: {table_result.total} ({table_result.status})")

        if result.status != "success":
            logger.error(f"\n❌ Seeding finished with status {result.status}")
            return 1

        logger.info("\n" + "=" * 80)
        logger.info("✅ CACHE INITIALIZED SUCCESSFULLY!")
        logger.info("=" * 80)
        return 0

    except Exception as e:
        logger.error(f"\n❌ Initialization failed: {e}", exc_info=True)
        return 1

    finally:
        # Cleanup
        authoritative_connector.close()
        cache_connector.close()
        logger.info("\n✅ Connections closed")


if __name__ == "__main__":
    import sys
    sys.exit(main())
