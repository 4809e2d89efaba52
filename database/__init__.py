"""Database connectors, schema and repositories"""

from .rdbms_connector import RDBMSConnector, get_authoritative_connector, get_cache_connector
from .repositories import AuthoritativeReader, CacheTransaction, CacheWriter
from .schema import (
    authoritative_metadata,
    cache_metadata,
    create_authoritative_schema,
    create_cache_schema,
)

__all__ = [
    'RDBMSConnector',
    'get_authoritative_connector',
    'get_cache_connector',
    'AuthoritativeReader',
    'CacheTransaction',
    'CacheWriter',
    'authoritative_metadata',
    'cache_metadata',
    'create_authoritative_schema',
    'create_cache_schema'
]
