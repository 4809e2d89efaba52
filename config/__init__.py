"""Configuration module for the document cache sync engine"""

from .settings import (
    Config,
    AuthoritativeStoreConfig,
    CacheStoreConfig,
    SyncConfig,
    RetentionConfig,
    SystemConfig,
    get_config,
    reload_config
)

__all__ = [
    'Config',
    'AuthoritativeStoreConfig',
    'CacheStoreConfig',
    'SyncConfig',
    'RetentionConfig',
    'SystemConfig',
    'get_config',
    'reload_config'
]
