"""
Sync trigger surface used by the presentation layer.

``force_sync`` is the cooldown-gated, timeout-bounded manual "sync now";
``auto_sync_if_due`` is the boot-time check. Both consume the same
``lastAllSync`` watermark so a manual run also postpones the next
automatic one and vice versa.
"""

import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy.engine import Engine

from config.settings import SyncConfig
from database.repositories import AuthoritativeReader, CacheWriter
from .change_log import ChangeLogReader
from .coordinator import SyncCoordinator, SyncResult, tables_for_role
from .errors import SyncTimedOut
from .guards import CooldownGate, TimeoutGuard
from .scope import Principal
from .strategies import build_default_registry
from .watermark import TRIGGER_WATERMARK, WatermarkStore, parse_timestamp, utcnow

logger = logging.getLogger(__name__)


class SyncTrigger:
    """Entry points that start a sync run on behalf of one principal"""

    def __init__(self, coordinator: SyncCoordinator,
                 watermarks: WatermarkStore,
                 config: SyncConfig,
                 clock: Callable[[], datetime] = utcnow):
        self.coordinator = coordinator
        self.watermarks = watermarks
        self.config = config
        self.clock = clock

    @property
    def principal(self) -> Principal:
        return self.coordinator.principal

    def last_triggered(self) -> Optional[datetime]:
        return parse_timestamp(self.watermarks.get_raw(TRIGGER_WATERMARK))

    def force_sync(self) -> SyncResult:
        """
        Manual "sync now"

        Raises:
            CooldownActive: the previous successful run is too recent
            SyncTimedOut: the run exceeded ``max_sync_duration_ms``
        """
        start_time = time.monotonic()
        CooldownGate.check_or_throw(self.last_triggered(), self.clock(), self.config.cooldown_minutes)

        logger.info(f"Manual sync requested by {self.principal.email}")
        try:
            result = self._run_guarded()
        except SyncTimedOut:
            logger.error(f"Manual sync failed after {time.monotonic() - start_time:.2f}s: timed out")
            raise

        self._record(result)
        logger.info(f"Manual sync finished with status {result.status} in {time.monotonic() - start_time:.2f}s")
        return result

    def auto_sync_if_due(self) -> Optional[SyncResult]:
        """
        Boot-time sync when the shared trigger watermark is stale

        Never raises; failures are logged and reported as ``None``.
        """
        last = self.last_triggered()
        if last is not None:
            elapsed = CooldownGate.elapsed_minutes(last, self.clock())
            if elapsed < self.config.auto_sync_interval_minutes:
                return None

        try:
            result = self._run_guarded()
        except Exception as e:
            logger.error(f"Auto-sync failed: {e}")
            return None

        self._record(result)
        return result

    def status(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """State the "sync now" button renders: allowed or wait time left"""
        now = now or self.clock()
        last = self.last_triggered()
        remaining = CooldownGate.remaining_ms(last, now, self.config.cooldown_minutes)
        return {
            "last_sync": last.isoformat() if last else None,
            "can_sync": remaining == 0,
            "time_left_ms": remaining
        }

    def _run_guarded(self) -> SyncResult:
        tables = tables_for_role(self.principal.role)
        guard = TimeoutGuard(self.config.max_sync_duration_ms)
        return guard.run(lambda token: self.coordinator.sync_all(
            full_sync=False, tables=tables, token=token
        ))

    def _record(self, result: SyncResult):
        # Only a fully successful run advances the trigger watermark
        if result.status == "success":
            self.watermarks.set_raw(TRIGGER_WATERMARK, self.clock().isoformat())
        else:
            logger.warning(f"Sync finished with status {result.status}: {result.message or 'see table results'}")


def create_sync_trigger(principal: Principal,
                        authoritative_engine: Engine,
                        cache_engine: Engine,
                        config: Optional[SyncConfig] = None,
                        clock: Callable[[], datetime] = utcnow) -> SyncTrigger:
    """
    Wire the stores, strategies, coordinator and trigger for a principal

    Args:
        principal: User the sync runs for
        authoritative_engine: Engine of the authoritative store
        cache_engine: Engine of the cache store
        config: Sync configuration; defaults to environment settings
        clock: Source of "now"

    Returns:
        SyncTrigger ready to use
    """
    config = config or SyncConfig.from_env()
    reader = AuthoritativeReader(authoritative_engine)
    cache = CacheWriter(cache_engine)
    watermarks = WatermarkStore(cache, clock=clock)
    registry = build_default_registry(
        reader, cache, watermarks, ChangeLogReader(reader),
        delete_batch_size=config.delete_batch_size,
        clock=clock
    )
    coordinator = SyncCoordinator(
        registry, watermarks, principal,
        bootstrap_full_sync=config.bootstrap_full_sync,
        clock=clock
    )
    return SyncTrigger(coordinator, watermarks, config, clock=clock)
