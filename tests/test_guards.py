"""
Tests for cooldown, timeout and single-flight guards.
"""

import threading
import time
from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given, strategies as st

from sync.errors import CooldownActive, SyncCancelled, SyncInProgress, SyncTimedOut
from sync.guards import CancellationToken, CooldownGate, SyncLock, TimeoutGuard, with_timeout

NOW = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)


class TestCooldownGate:
    """Tests for CooldownGate."""

    def test_never_triggered_passes(self):
        CooldownGate.check_or_throw(None, NOW, 3)

    def test_rejects_inside_window(self):
        last = NOW - timedelta(seconds=90)
        with pytest.raises(CooldownActive) as exc_info:
            CooldownGate.check_or_throw(last, NOW, 3)

        assert exc_info.value.wait_minutes == 2
        assert exc_info.value.last_sync == last
        assert "2 more minutes" in str(exc_info.value)

    def test_passes_at_boundary(self):
        CooldownGate.check_or_throw(NOW - timedelta(minutes=3), NOW, 3)

    def test_future_trigger_counts_as_zero_elapsed(self):
        with pytest.raises(CooldownActive) as exc_info:
            CooldownGate.check_or_throw(NOW + timedelta(minutes=10), NOW, 3)
        assert exc_info.value.wait_minutes == 3

    @given(st.integers(min_value=0, max_value=60 * 60 * 24))
    def test_three_minute_cooldown_property(self, elapsed_seconds):
        """Passes exactly when at least three whole minutes have elapsed."""
        last = NOW - timedelta(seconds=elapsed_seconds)
        whole_minutes = elapsed_seconds // 60

        if whole_minutes >= 3:
            CooldownGate.check_or_throw(last, NOW, 3)
        else:
            with pytest.raises(CooldownActive) as exc_info:
                CooldownGate.check_or_throw(last, NOW, 3)
            assert exc_info.value.wait_minutes == 3 - whole_minutes
            assert 1 <= exc_info.value.wait_minutes <= 3

    def test_remaining_ms(self):
        assert CooldownGate.remaining_ms(None, NOW, 3) == 0
        assert CooldownGate.remaining_ms(NOW - timedelta(minutes=1), NOW, 3) == 120000
        assert CooldownGate.remaining_ms(NOW - timedelta(minutes=5), NOW, 3) == 0

    def test_to_dict(self):
        data = CooldownActive(NOW, 2).to_dict()
        assert data["wait_minutes"] == 2
        assert data["last_sync"] == NOW.isoformat()


class TestTimeoutGuard:
    """Tests for TimeoutGuard."""

    def test_returns_result_within_budget(self):
        assert TimeoutGuard(1000).run(lambda token: "done") == "done"

    def test_propagates_operation_errors(self):
        def fail(token):
            raise ValueError("boom")

        with pytest.raises(ValueError):
            TimeoutGuard(1000).run(fail)

    def test_times_out_within_margin_and_cancels(self):
        stopped = threading.Event()
        token = CancellationToken()

        def slow(token):
            while not token.cancelled:
                time.sleep(0.01)
            stopped.set()

        start = time.monotonic()
        with pytest.raises(SyncTimedOut) as exc_info:
            TimeoutGuard(100).run(slow, token)
        elapsed = time.monotonic() - start

        assert exc_info.value.max_duration_ms == 100
        assert elapsed < 1.0
        assert token.cancelled
        assert stopped.wait(2.0)

    def test_with_timeout(self):
        assert with_timeout(lambda token: 5, 1000) == 5


class TestCancellationToken:
    """Tests for CancellationToken."""

    def test_raises_once_cancelled(self):
        token = CancellationToken()
        token.raise_if_cancelled()
        token.cancel()
        with pytest.raises(SyncCancelled):
            token.raise_if_cancelled()


class TestSyncLock:
    """Tests for SyncLock."""

    def test_keys_ignore_table_order(self):
        assert SyncLock.for_tables("cache", ["users", "branch"]).keys == \
            SyncLock.for_tables("cache", ["branch", "users"]).keys
        assert SyncLock.for_tables("cache", ["users"]).keys != SyncLock.for_tables("other", ["users"]).keys

    def test_overlapping_table_sets_exclude_each_other(self):
        five = SyncLock.for_tables("cache", ["users", "branch", "documents", "settings", "access_logs"])
        four = SyncLock.for_tables("cache", ["users", "branch", "documents", "settings"])

        assert five.acquire()
        assert not four.acquire()
        five.release()
        assert four.acquire()
        four.release()

    def test_failed_acquire_takes_no_keys(self):
        holder = SyncLock.for_tables("cache", ["documents"])
        assert holder.acquire()

        assert not SyncLock.for_tables("cache", ["settings", "documents"]).acquire()
        assert not SyncLock.for_tables("cache", ["settings"]).is_locked()
        holder.release()

    def test_disjoint_tables_and_stores_run_together(self):
        users = SyncLock.for_tables("cache", ["users"])
        settings = SyncLock.for_tables("cache", ["settings"])
        other_store = SyncLock.for_tables("other", ["users"])

        assert users.acquire() and settings.acquire() and other_store.acquire()
        for lock in (users, settings, other_store):
            lock.release()

    def test_second_acquire_fails_until_release(self):
        first = SyncLock("a@x:users")
        second = SyncLock("a@x:users")

        assert first.acquire()
        assert not second.acquire()
        assert second.is_locked()

        # Only the owner releases
        second.release()
        assert first.is_locked()

        first.release()
        assert second.acquire()
        second.release()

    def test_context_manager_raises_when_held(self):
        holder = SyncLock("a@x:documents")
        with holder.lock():
            with pytest.raises(SyncInProgress):
                with SyncLock("a@x:documents").lock():
                    pass
        assert not holder.is_locked()
