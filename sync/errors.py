"""
Error taxonomy for the replication engine and the retention cleaner.

Every condition carries its data as explicit attributes so callers can
render user-facing messages without parsing strings.
"""

from datetime import datetime
from typing import Optional


class SyncError(Exception):
    """Base class for all sync and cleanup errors"""


class CooldownActive(SyncError):
    """A manual sync was requested before the cooldown window elapsed"""

    def __init__(self, last_sync: datetime, wait_minutes: int):
        self.last_sync = last_sync
        self.wait_minutes = wait_minutes
        super().__init__(f"Please wait {wait_minutes} more minutes before syncing again")

    def to_dict(self) -> dict:
        return {
            "error": "cooldown_active",
            "message": str(self),
            "last_sync": self.last_sync.isoformat(),
            "wait_minutes": self.wait_minutes
        }


class SyncTimedOut(SyncError):
    """The sync run exceeded its wall-clock budget"""

    def __init__(self, max_duration_ms: int):
        self.max_duration_ms = max_duration_ms
        super().__init__(f"Sync timed out after {max_duration_ms} ms")


class SyncInProgress(SyncError):
    """Another run holds the single-flight lock for the same key"""

    def __init__(self, lock_key: str):
        self.lock_key = lock_key
        super().__init__("Sync already in progress")


class SyncCancelled(SyncError):
    """The run's cancellation token fired; the current table is rolled back"""


class UnknownTableError(SyncError):
    """No strategy is registered for the requested table"""

    def __init__(self, table: str):
        self.table = table
        super().__init__(f"Unknown table to sync: {table}")


class TableSyncFailed(SyncError):
    """A single table's fetch, delete or upsert step raised"""

    def __init__(self, table: str, cause: Optional[BaseException] = None):
        self.table = table
        self.cause = cause
        message = str(cause) if cause is not None else "Unknown error"
        super().__init__(f"Sync failed for table {table}: {message}")


class CleanupFailed(SyncError):
    """Archive or purge failed; cleanup is now error-locked"""

    def __init__(self, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(f"Cleanup failed: {cause}" if cause is not None else "Cleanup failed")
