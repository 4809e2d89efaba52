"""
Retention Cleanup Module
Archives and purges aged audit data once per retention period
"""

import calendar
import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Optional

from config.settings import RetentionConfig
from database.repositories import AuthoritativeReader, CacheWriter
from database.schema import access_logs, cache_access_logs, login_sessions
from sync.errors import CleanupFailed
from sync.watermark import RETENTION_WATERMARK, WatermarkStore, utcnow
from .archive import write_csv_archive

logger = logging.getLogger(__name__)

ERROR_SENTINEL = "error"


class CleanupState(str, Enum):
    """Retention cleaner states"""
    IDLE = "idle"
    DUE = "due"
    RUNNING = "running"
    DONE = "done"
    ERROR_LOCKED = "error-locked"


@dataclass
class CleanupResult:
    """Outcome of one ``perform_cleanup_if_due`` call"""
    cleaned_up: bool
    success: bool = True
    state: CleanupState = CleanupState.IDLE
    archive_path: Optional[str] = None
    reason: Optional[str] = None
    error: Optional[str] = None
    archived_rows: int = 0
    purged: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


class RetentionCleaner:
    """
    Scheduled archive-and-purge of access logs and login sessions

    Any failure leaves the retention watermark at the ``"error"`` sentinel,
    and no automatic run happens again until an operator calls
    ``clear_lock``. An unbounded retry of a destructive purge is worse
    than a missed cleanup window.
    """

    def __init__(self, reader: AuthoritativeReader,
                 cache: CacheWriter,
                 watermarks: WatermarkStore,
                 config: Optional[RetentionConfig] = None,
                 clock: Callable[[], datetime] = utcnow):
        self.reader = reader
        self.cache = cache
        self.watermarks = watermarks
        self.config = config or RetentionConfig()
        self.clock = clock

    # ---- due-date rule ----

    def boundary(self, today: date) -> date:
        """This month's cleanup day, clamped to the month's last day"""
        last_day = calendar.monthrange(today.year, today.month)[1]
        return today.replace(day=min(self.config.cleanup_day_of_month, last_day))

    def is_due(self, today: date, last_cleanup: Optional[date]) -> bool:
        """
        Whether a cleanup should run today

        Due on the cleanup day, when a full period has passed since the
        last cleanup (or there never was one), or when this month's
        cleanup day was missed. Never due twice on the same day.
        """
        if last_cleanup is not None and last_cleanup >= today:
            return False
        boundary = self.boundary(today)
        if today == boundary:
            return True
        if last_cleanup is None:
            return True
        if (today - last_cleanup).days >= self.config.retention_days:
            return True
        return last_cleanup < boundary < today

    def _read_watermark(self):
        """Returns ``(locked, last_cleanup)``"""
        raw = self.watermarks.get_raw(RETENTION_WATERMARK)
        if raw is None:
            return False, None
        if raw == ERROR_SENTINEL:
            return True, None
        try:
            return False, date.fromisoformat(raw[:10])
        except ValueError:
            logger.error(f"Unreadable cleanup watermark {raw!r}; treating cleanup as locked")
            return True, None

    def status(self, today: Optional[date] = None) -> Dict[str, Any]:
        """Cleanup state for health/status reporting"""
        today = today or self.clock().date()
        locked, last_cleanup = self._read_watermark()
        if locked:
            state = CleanupState.ERROR_LOCKED
        elif self.is_due(today, last_cleanup):
            state = CleanupState.DUE
        else:
            state = CleanupState.IDLE
        return {
            "state": state.value,
            "locked": locked,
            "last_cleanup": last_cleanup.isoformat() if last_cleanup else None,
            "next_boundary": self.boundary(today).isoformat()
        }

    # ---- run ----

    def perform_cleanup_if_due(self) -> CleanupResult:
        """
        Archive and purge aged audit rows if the due-date rule fires

        Returns:
            CleanupResult; ``cleaned_up`` is False with a reason when nothing
            ran, and ``success`` is False when the run failed and locked
        """
        now = self.clock()
        today = now.date()

        locked, last_cleanup = self._read_watermark()
        if locked:
            logger.error("Cleanup is error-locked; clear the lock to resume automatic cleanup")
            return CleanupResult(
                cleaned_up=False,
                success=False,
                state=CleanupState.ERROR_LOCKED,
                reason="error-locked"
            )

        if not self.is_due(today, last_cleanup):
            return CleanupResult(cleaned_up=False, reason="not due")

        logger.info(f"Cleanup due (last cleanup: {last_cleanup or 'never'}); running")
        try:
            result = self._run(now, today)
            self.watermarks.set_raw(RETENTION_WATERMARK, today.isoformat())
        except Exception as e:
            failure = CleanupFailed(e)
            logger.error(f"{failure}", exc_info=True)
            self._lock()
            return CleanupResult(
                cleaned_up=False,
                success=False,
                state=CleanupState.ERROR_LOCKED,
                error=str(failure)
            )

        logger.info(f"✅ Cleanup completed: {result.archived_rows} rows archived, purged {result.purged}")
        return result

    def _run(self, now: datetime, today: date) -> CleanupResult:
        cutoff = now - timedelta(days=self.config.retention_days)

        old_logs = self.reader.fetch_rows(access_logs, access_logs.c.timestamp < cutoff)
        old_logs.sort(key=lambda row: (row["timestamp"], str(row["id"])))
        path = write_csv_archive(
            old_logs,
            [column.name for column in access_logs.c],
            self.config.archive_dir,
            "access_logs",
            today
        )

        purged = self.reader.purge([
            (access_logs, access_logs.c.timestamp < cutoff),
            (login_sessions, login_sessions.c.login_at < cutoff),
        ])
        purged["cache_access_logs"] = self.cache.delete_where(
            cache_access_logs, cache_access_logs.c.timestamp < cutoff
        )

        return CleanupResult(
            cleaned_up=True,
            state=CleanupState.DONE,
            archive_path=str(path),
            archived_rows=len(old_logs),
            purged=purged
        )

    def _lock(self):
        try:
            self.watermarks.set_raw(RETENTION_WATERMARK, ERROR_SENTINEL)
        except Exception as e:
            logger.critical(f"Could not persist cleanup error lock: {e}", exc_info=True)

    def clear_lock(self, last_cleanup: Optional[date] = None) -> bool:
        """
        Operator action: lift the error lock

        Args:
            last_cleanup: Date to record as the last cleanup; ``None``
                removes the watermark so the next check treats cleanup
                as never run

        Returns:
            True if a lock was present
        """
        locked, _ = self._read_watermark()
        if last_cleanup is None:
            self.watermarks.delete(RETENTION_WATERMARK)
        else:
            self.watermarks.set_raw(RETENTION_WATERMARK, last_cleanup.isoformat())
        logger.warning(f"Cleanup lock cleared (was locked: {locked}); last cleanup set to {last_cleanup or 'never'}")
        return locked


def perform_cleanup_if_due(cleaner: RetentionCleaner) -> CleanupResult:
    """Functional entry point used by scripts and the API"""
    return cleaner.perform_cleanup_if_due()
