"""
RDBMS Database Connector Module
Handles engine lifecycle for the authoritative store and the local cache store
"""

from typing import Optional, Union
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from config.settings import AuthoritativeStoreConfig, CacheStoreConfig
import logging

logger = logging.getLogger(__name__)

StoreConfig = Union[AuthoritativeStoreConfig, CacheStoreConfig]


class RDBMSConnector:
    """Manages a SQLAlchemy engine for one relational store"""

    def __init__(self, config: StoreConfig, name: str = "rdbms"):
        """
        Initialize RDBMS connector

        Args:
            config: Store configuration object
            name: Label used in log messages
        """
        self.config = config
        self.name = name
        self._engine: Optional[Engine] = None

    @property
    def engine(self) -> Engine:
        """Get or create SQLAlchemy engine"""
        if self._engine is None:
            url = self.config.connection_string
            kwargs = {"echo": self.config.echo, "pool_pre_ping": True}
            if url.startswith("sqlite"):
                # The sync run executes on a worker thread
                kwargs["connect_args"] = {"check_same_thread": False}
            else:
                kwargs["pool_size"] = self.config.pool_size
                kwargs["max_overflow"] = self.config.max_overflow
            self._engine = create_engine(url, **kwargs)
            logger.info(f"{self.name} engine created")
        return self._engine

    def get_table_names(self) -> list[str]:
        """Get all table names in the database"""
        return inspect(self.engine).get_table_names()

    def test_connection(self) -> bool:
        """Test database connection"""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info(f"{self.name} connection test successful")
            return True
        except Exception as e:
            logger.error(f"{self.name} connection test failed: {e}")
            return False

    def close(self):
        """Close database connections"""
        if self._engine:
            self._engine.dispose()
            logger.info(f"{self.name} engine disposed")
            self._engine = None

    def __enter__(self):
        """Context manager entry"""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit"""
        self.close()


# Singleton instances, one per store
_authoritative_connector: Optional[RDBMSConnector] = None
_cache_connector: Optional[RDBMSConnector] = None


def get_authoritative_connector(config: Optional[AuthoritativeStoreConfig] = None) -> RDBMSConnector:
    """
    Get or create the authoritative store connector

    Args:
        config: Optional config, uses environment if not provided

    Returns:
        RDBMSConnector instance
    """
    global _authoritative_connector

    if _authoritative_connector is None:
        if config is None:
            config = AuthoritativeStoreConfig.from_env()
        _authoritative_connector = RDBMSConnector(config, name="authoritative")

    return _authoritative_connector


def get_cache_connector(config: Optional[CacheStoreConfig] = None) -> RDBMSConnector:
    """
    Get or create the cache store connector

    Args:
        config: Optional config, uses environment if not provided

    Returns:
        RDBMSConnector instance
    """
    global _cache_connector

    if _cache_connector is None:
        if config is None:
            config = CacheStoreConfig.from_env()
        _cache_connector = RDBMSConnector(config, name="cache")

    return _cache_connector
