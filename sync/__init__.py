"""Synchronization module"""

from .change_log import ChangeLogEntry, ChangeLogReader
from .coordinator import DEFAULT_TABLES, IN_PROGRESS, SyncCoordinator, SyncResult, tables_for_role
from .errors import (
    CleanupFailed,
    CooldownActive,
    SyncCancelled,
    SyncError,
    SyncInProgress,
    SyncTimedOut,
    TableSyncFailed,
    UnknownTableError
)
from .guards import CancellationToken, CooldownGate, SyncLock, TimeoutGuard, with_timeout
from .scope import Principal, ScopeFilter
from .strategies import StrategyRegistry, TableSyncResult, TableSyncStrategy, build_default_registry
from .triggers import SyncTrigger, create_sync_trigger
from .watermark import SyncWatermark, WatermarkStore

__all__ = [
    'ChangeLogEntry',
    'ChangeLogReader',
    'DEFAULT_TABLES',
    'IN_PROGRESS',
    'SyncCoordinator',
    'SyncResult',
    'tables_for_role',
    'CleanupFailed',
    'CooldownActive',
    'SyncCancelled',
    'SyncError',
    'SyncInProgress',
    'SyncTimedOut',
    'TableSyncFailed',
    'UnknownTableError',
    'CancellationToken',
    'CooldownGate',
    'SyncLock',
    'TimeoutGuard',
    'with_timeout',
    'Principal',
    'ScopeFilter',
    'StrategyRegistry',
    'TableSyncResult',
    'TableSyncStrategy',
    'build_default_registry',
    'SyncTrigger',
    'create_sync_trigger',
    'SyncWatermark',
    'WatermarkStore'
]
