"""
Run the cache sync API under uvicorn.

HOST, PORT and RELOAD come from the environment; store settings are
validated up front so a misconfigured server never starts.
"""
import os
import sys
import logging

from config import get_config

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def main():
    try:
        config = get_config()
        config.validate()
    except ValueError as e:
        logger.error(f"Refusing to start: {e}")
        sys.exit(1)
    logging.getLogger().setLevel(config.system.log_level)

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 8000))
    logger.info(f"Serving on http://{host}:{port}, docs at /docs, health at /health")

    import uvicorn
    uvicorn.run(
        "api_main:app",
        host=host,
        port=port,
        reload=os.getenv("RELOAD", "false").lower() in ("1", "true", "yes"),
        log_level=config.system.log_level.lower()
    )


if __name__ == "__main__":
    main()
