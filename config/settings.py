"""
Centralized configuration management for the document cache sync engine.
All configuration settings are managed here.
"""

import os
from typing import Optional
from dotenv import load_dotenv
from dataclasses import dataclass

load_dotenv()


def _env_bool(name: str, default: str = "False") -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class AuthoritativeStoreConfig:
    """Authoritative (remote) database configuration"""
    connection_string: str
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10

    @classmethod
    def from_env(cls) -> 'AuthoritativeStoreConfig':
        """Load authoritative store config from environment variables"""
        return cls(
            connection_string=os.getenv("DATABASE_URL"),
            echo=_env_bool("DB_ECHO"),
            pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10"))
        )


@dataclass
class CacheStoreConfig:
    """Local cache database configuration"""
    connection_string: str = "sqlite:///sqlite.db"
    echo: bool = False
    pool_size: int = 5
    max_overflow: int = 10

    @classmethod
    def from_env(cls) -> 'CacheStoreConfig':
        """Load cache store config from environment variables"""
        return cls(
            connection_string=os.getenv("CACHE_DATABASE_URL", "sqlite:///sqlite.db"),
            echo=_env_bool("CACHE_DB_ECHO")
        )


@dataclass
class SyncConfig:
    """Replication engine configuration"""
    cooldown_minutes: int = 3
    max_sync_duration_ms: int = 30000
    auto_sync_interval_minutes: int = 1440
    delete_batch_size: int = 500
    bootstrap_full_sync: bool = False

    @classmethod
    def from_env(cls) -> 'SyncConfig':
        """Load sync config from environment variables"""
        return cls(
            cooldown_minutes=int(os.getenv("SYNC_COOLDOWN_MIN", "3")),
            max_sync_duration_ms=int(os.getenv("MAX_SYNC_DURATION_MS", "30000")),
            auto_sync_interval_minutes=int(os.getenv("AUTO_SYNC_INTERVAL_MIN", "1440")),
            delete_batch_size=int(os.getenv("SYNC_DELETE_BATCH_SIZE", "500")),
            bootstrap_full_sync=_env_bool("SYNC_BOOTSTRAP_FULL")
        )


@dataclass
class RetentionConfig:
    """Audit data retention configuration"""
    retention_days: int = 30
    cleanup_day_of_month: int = 29
    archive_dir: str = "backups"

    @classmethod
    def from_env(cls) -> 'RetentionConfig':
        """Load retention config from environment variables"""
        return cls(
            retention_days=int(os.getenv("RETENTION_DAYS", "30")),
            cleanup_day_of_month=int(os.getenv("CLEANUP_DAY_OF_MONTH", "29")),
            archive_dir=os.getenv("ARCHIVE_DIR", "backups")
        )


@dataclass
class SystemConfig:
    """Overall system configuration"""
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> 'SystemConfig':
        """Load system config from environment variables"""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO")
        )


class Config:
    """Main configuration class that aggregates all configs"""

    def __init__(self):
        self.authoritative = AuthoritativeStoreConfig.from_env()
        self.cache = CacheStoreConfig.from_env()
        self.sync = SyncConfig.from_env()
        self.retention = RetentionConfig.from_env()
        self.system = SystemConfig.from_env()

    @classmethod
    def load(cls) -> 'Config':
        """Load configuration from environment"""
        return cls()

    def validate(self) -> bool:
        """Validate that all required configurations are present"""
        errors = []

        if not self.authoritative.connection_string:
            errors.append("DATABASE_URL is required")
        if not self.cache.connection_string:
            errors.append("CACHE_DATABASE_URL must not be empty")
        if self.sync.cooldown_minutes < 0:
            errors.append("SYNC_COOLDOWN_MIN must not be negative")
        if self.sync.max_sync_duration_ms <= 0:
            errors.append("MAX_SYNC_DURATION_MS must be positive")
        if self.sync.delete_batch_size <= 0:
            errors.append("SYNC_DELETE_BATCH_SIZE must be positive")
        if self.retention.retention_days <= 0:
            errors.append("RETENTION_DAYS must be positive")
        if not 1 <= self.retention.cleanup_day_of_month <= 31:
            errors.append("CLEANUP_DAY_OF_MONTH must be between 1 and 31")

        if errors:
            raise ValueError(f"Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors))

        return True


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create global config instance"""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def reload_config() -> Config:
    """Reload configuration from environment"""
    global _config
    _config = Config.load()
    return _config
