"""
Guards around a sync run: cooldown, timeout with cancellation, and a
per-table single-flight lock.
"""

import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterable, List, Optional, TypeVar, Union

from .errors import CooldownActive, SyncCancelled, SyncInProgress, SyncTimedOut

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Set once by the caller; checked cooperatively by the running sync"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise SyncCancelled("Sync cancelled")


class CooldownGate:
    """Cooperative rate limiter for manual triggers; never mutates state"""

    @staticmethod
    def elapsed_minutes(last_trigger: datetime, now: datetime) -> int:
        seconds = (now - last_trigger).total_seconds()
        return max(0, math.floor(seconds / 60))

    @classmethod
    def check_or_throw(cls, last_trigger: Optional[datetime], now: datetime, cooldown_minutes: int):
        """
        Reject a trigger inside the cooldown window

        Args:
            last_trigger: Time of the last successful run, ``None`` if never
            now: Current time
            cooldown_minutes: Minimum whole minutes between runs

        Raises:
            CooldownActive: carrying the last trigger time and the minutes left
        """
        if last_trigger is None:
            return
        elapsed = cls.elapsed_minutes(last_trigger, now)
        if elapsed < cooldown_minutes:
            raise CooldownActive(last_trigger, cooldown_minutes - elapsed)

    @staticmethod
    def remaining_ms(last_trigger: Optional[datetime], now: datetime, cooldown_minutes: int) -> int:
        """Milliseconds until a trigger would pass; 0 when it already would"""
        if last_trigger is None:
            return 0
        elapsed_ms = (now - last_trigger).total_seconds() * 1000
        return max(0, int(cooldown_minutes * 60 * 1000 - max(0.0, elapsed_ms)))


class TimeoutGuard:
    """
    Race an operation against a wall-clock budget

    The operation runs on a worker thread and receives a
    ``CancellationToken``. On timeout the caller gets ``SyncTimedOut``
    straight away and the token is cancelled, so the worker stops at its
    next checkpoint and rolls back its open transaction.
    """

    def __init__(self, max_duration_ms: int):
        self.max_duration_ms = max_duration_ms

    def run(self, operation: Callable[[CancellationToken], T],
            token: Optional[CancellationToken] = None) -> T:
        token = token or CancellationToken()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="sync-run")
        try:
            future = executor.submit(operation, token)
        finally:
            executor.shutdown(wait=False)

        try:
            return future.result(timeout=self.max_duration_ms / 1000)
        except FutureTimeoutError:
            token.cancel()
            logger.warning(f"Sync exceeded {self.max_duration_ms} ms; cancelling")
            raise SyncTimedOut(self.max_duration_ms) from None


def with_timeout(operation: Callable[[CancellationToken], T], max_duration_ms: int) -> T:
    """Functional form of ``TimeoutGuard.run``"""
    return TimeoutGuard(max_duration_ms).run(operation)


_held_keys = set()
_held_guard = threading.Lock()


class SyncLock:
    """
    In-process single-flight lock over cache tables

    A run holds one key per table it writes, taken all at once or not at
    all. Two runs that share any table of the same cache store exclude
    each other, whoever the principal and whatever the rest of the set.
    """

    def __init__(self, keys: Union[str, Iterable[str]]):
        if isinstance(keys, str):
            keys = [keys]
        self.keys = tuple(sorted(set(keys)))
        self._owned = False

    @staticmethod
    def keys_for(store_id: str, tables: Iterable[str]) -> List[str]:
        return [f"{store_id}|{table}" for table in tables]

    @classmethod
    def for_tables(cls, store_id: str, tables: Iterable[str]) -> "SyncLock":
        return cls(cls.keys_for(store_id, tables))

    @property
    def key(self) -> str:
        return ",".join(self.keys)

    def acquire(self) -> bool:
        """
        Acquire lock for a sync run.

        Returns True if every key was acquired, False if any is already held.
        """
        with _held_guard:
            busy = [key for key in self.keys if key in _held_keys]
            if busy:
                logger.warning(f"Sync already in progress for {', '.join(busy)}")
                return False
            _held_keys.update(self.keys)
            self._owned = True
            return True

    def release(self):
        with _held_guard:
            if self._owned:
                _held_keys.difference_update(self.keys)
                self._owned = False

    def is_locked(self) -> bool:
        with _held_guard:
            return any(key in _held_keys for key in self.keys)

    @contextmanager
    def lock(self):
        """Context manager for lock acquisition."""
        if not self.acquire():
            raise SyncInProgress(self.key)
        try:
            yield
        finally:
            self.release()
