"""Retention cleanup module"""

from .archive import write_csv_archive
from .retention import (
    ERROR_SENTINEL,
    CleanupResult,
    CleanupState,
    RetentionCleaner,
    perform_cleanup_if_due
)

__all__ = [
    'write_csv_archive',
    'ERROR_SENTINEL',
    'CleanupResult',
    'CleanupState',
    'RetentionCleaner',
    'perform_cleanup_if_due'
]
