"""
Sync Coordinator Module
Orchestrates a sync run across the requested tables
"""

import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from .errors import SyncCancelled, SyncError, SyncInProgress, TableSyncFailed
from .guards import CancellationToken, SyncLock
from .scope import ADMIN, Principal, ScopeFilter
from .strategies import StrategyRegistry, TableSyncResult
from .watermark import RETENTION_WATERMARK, TRIGGER_WATERMARK, WatermarkStore, utcnow

logger = logging.getLogger(__name__)

DEFAULT_TABLES = ("users", "branch", "documents", "settings", "access_logs")
BASE_ROLE_TABLES = ("users", "branch", "documents", "settings")

# SyncResult.reason when another run holds one of the requested tables
IN_PROGRESS = "in_progress"


def tables_for_role(role: str) -> List[str]:
    """Tables a principal's triggered sync covers; only admins get access logs"""
    tables = list(BASE_ROLE_TABLES)
    if role == ADMIN:
        tables.append("access_logs")
    return tables


@dataclass
class SyncResult:
    """Aggregate outcome of one run"""
    status: str
    results: Dict[str, TableSyncResult] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)
    message: Optional[str] = None
    reason: Optional[str] = None
    run_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "results": {name: result.to_dict() for name, result in self.results.items()},
            "timestamp": self.timestamp.isoformat(),
            "message": self.message,
            "reason": self.reason,
            "run_id": self.run_id
        }


class SyncCoordinator:
    """
    Runs table strategies in request order for one principal

    Failure policy: a table that raises is recorded as an error in its
    own result and the remaining tables still run (status ``partial``).
    Cancellation, an unknown table, or a held lock fail the whole run
    (status ``error``); a held lock also sets ``reason`` to ``IN_PROGRESS``.
    """

    def __init__(self, registry: StrategyRegistry,
                 watermarks: WatermarkStore,
                 principal: Principal,
                 bootstrap_full_sync: bool = False,
                 clock: Callable[[], datetime] = utcnow):
        """
        Initialize sync coordinator

        Args:
            registry: Table strategies keyed by table name
            watermarks: Watermark store of the cache
            principal: User the run is performed for
            bootstrap_full_sync: Promote to a full sync when no table
                has ever been synced
            clock: Source of "now"
        """
        self.registry = registry
        self.watermarks = watermarks
        self.principal = principal
        self.scope = ScopeFilter(principal)
        self.bootstrap_full_sync = bootstrap_full_sync
        self.clock = clock

    def sync_all(self, full_sync: bool = False,
                 tables: Optional[Iterable[str]] = None,
                 token: Optional[CancellationToken] = None) -> SyncResult:
        """
        Perform a sync run

        Args:
            full_sync: Ignore watermarks and fetch every scoped row
            tables: Tables in execution order; defaults to the five entities
            token: Cancellation token from a TimeoutGuard

        Returns:
            SyncResult; always carries the completion timestamp
        """
        tables = list(tables) if tables else list(DEFAULT_TABLES)
        token = token or CancellationToken()
        run_id = secrets.token_hex(3)

        lock = SyncLock.for_tables(self.watermarks.cache.store_id, tables)
        try:
            with lock.lock():
                return self._sync_all(full_sync, tables, token, run_id)
        except SyncInProgress as e:
            logger.warning(f"[Sync {run_id}] Rejected for {self.principal.email}: tables busy")
            return SyncResult(
                status="error",
                timestamp=self.clock(),
                message=str(e),
                reason=IN_PROGRESS,
                run_id=run_id
            )

    def _sync_all(self, full_sync: bool, tables: List[str],
                  token: CancellationToken, run_id: str) -> SyncResult:
        start_time = time.monotonic()
        results: Dict[str, TableSyncResult] = {}

        try:
            strategies = [self.registry.get(table) for table in tables]

            if not full_sync and self.bootstrap_full_sync and not self.watermarks.has_any(
                    exclude=(TRIGGER_WATERMARK, RETENTION_WATERMARK)):
                logger.info(f"[Sync {run_id}] No watermarks found; promoting to full sync")
                full_sync = True

            logger.info(
                f"[Sync {run_id}] Starting for {self.principal.email} ({self.principal.role}). "
                f"Full sync: {full_sync}. Tables: {', '.join(tables)}"
            )

            for strategy in strategies:
                token.raise_if_cancelled()
                try:
                    results[strategy.name] = strategy.sync(full_sync, self.scope, token)
                except SyncCancelled:
                    raise
                except Exception as e:
                    failure = TableSyncFailed(strategy.name, e)
                    logger.error(f"[Sync {run_id}] {failure}", exc_info=True)
                    results[strategy.name] = TableSyncResult(
                        table=strategy.name,
                        status="error",
                        message=str(e) or type(e).__name__
                    )

        except Exception as e:
            duration = time.monotonic() - start_time
            logger.error(f"[Sync {run_id}] Sync failed after {duration:.2f}s: {e}",
                         exc_info=not isinstance(e, SyncError))
            return SyncResult(
                status="error",
                results=results,
                timestamp=self.clock(),
                message=str(e),
                run_id=run_id
            )

        failed = [name for name, result in results.items() if result.status == "error"]
        duration = time.monotonic() - start_time
        if failed:
            logger.warning(f"[Sync {run_id}] Completed with failures in {', '.join(failed)} ({duration:.2f}s)")
        else:
            logger.info(f"[Sync {run_id}] Sync completed in {duration:.2f}s")

        return SyncResult(
            status="partial" if failed else "success",
            results=results,
            timestamp=self.clock(),
            run_id=run_id
        )
