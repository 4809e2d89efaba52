"""
Run the retention cleanup from the command line
Use --unlock to clear the error lock after a failed run has been resolved
"""

import argparse
import logging
from datetime import date
from config import get_config
from database import (
    AuthoritativeReader,
    CacheWriter,
    create_cache_schema,
    get_authoritative_connector,
    get_cache_connector
)
from cleanup import RetentionCleaner, perform_cleanup_if_due
from sync import WatermarkStore

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Archive and purge aged audit data when due")
    parser.add_argument("--unlock", action="store_true", help="Clear the cleanup error lock")
    parser.add_argument("--last-cleanup", type=date.fromisoformat,
                        help="With --unlock: date (YYYY-MM-DD) to record as the last cleanup")
    parser.add_argument("--status", action="store_true", help="Only print the cleanup state")
    return parser.parse_args(argv)


def main(argv=None):
    """Main cleanup workflow"""
    args = parse_args(argv)

    config = get_config()
    logging.getLogger().setLevel(config.system.log_level)

    try:
        config.validate()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    authoritative_connector = get_authoritative_connector(config.authoritative)
    cache_connector = get_cache_connector(config.cache)

    try:
        create_cache_schema(cache_connector.engine)
        cache = CacheWriter(cache_connector.engine)
        cleaner = RetentionCleaner(
            AuthoritativeReader(authoritative_connector.engine),
            cache,
            WatermarkStore(cache),
            config.retention
        )

        if args.status:
            for key, value in cleaner.status().items():
                logger.info(f"   {key}: {value}")
            return 0

        if args.unlock:
            was_locked = cleaner.clear_lock(args.last_cleanup)
            logger.info("🔓 Cleanup lock cleared" if was_locked else "ℹ️  Cleanup was not locked")
            return 0

        result = perform_cleanup_if_due(cleaner)
        if not result.success:
            logger.error(f"❌ Cleanup did not run: {result.error or result.reason}")
            return 1
        if result.cleaned_up:
            logger.info(f"✅ Archive written to {result.archive_path}")
        else:
            logger.info(f"ℹ️  Nothing to do: {result.reason}")
        return 0

    except Exception as e:
        logger.error(f"\n❌ Cleanup failed: {e}", exc_info=True)
        return 1

    finally:
        authoritative_connector.close()
        cache_connector.close()


if __name__ == "__main__":
    import sys
    sys.exit(main())
