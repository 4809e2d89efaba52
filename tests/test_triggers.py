"""
Tests for the manual and boot-time sync triggers.
"""

import time
from datetime import timedelta

import pytest

from config.settings import SyncConfig
from database import schema
from sync.errors import CooldownActive, SyncTimedOut
from sync.scope import Principal
from sync.triggers import create_sync_trigger
from sync.watermark import TRIGGER_WATERMARK


@pytest.fixture
def sync_config():
    return SyncConfig(
        cooldown_minutes=3,
        max_sync_duration_ms=5000,
        auto_sync_interval_minutes=1440,
        delete_batch_size=500,
        bootstrap_full_sync=True
    )


@pytest.fixture
def admin_trigger(authoritative_engine, cache_engine, sync_config, clock):
    return create_sync_trigger(
        Principal("admin@example.com", "admin"),
        authoritative_engine, cache_engine, sync_config, clock=clock
    )


class TestForceSync:
    """Tests for the cooldown-gated manual sync."""

    def test_first_run_syncs_and_records_watermark(self, admin_trigger, seed, cache, clock):
        seed.user()

        result = admin_trigger.force_sync()

        assert result.status == "success"
        assert list(result.results) == ["users", "branch", "documents", "settings", "access_logs"]
        assert len(cache.fetch_rows(schema.cache_users)) == 1
        assert admin_trigger.last_triggered() == clock()

    def test_second_run_inside_cooldown_is_rejected(self, admin_trigger, clock):
        admin_trigger.force_sync()
        clock.advance(minutes=1, seconds=30)

        with pytest.raises(CooldownActive) as exc_info:
            admin_trigger.force_sync()
        assert exc_info.value.wait_minutes == 2

    def test_allowed_after_cooldown(self, admin_trigger, clock):
        admin_trigger.force_sync()
        clock.advance(minutes=3)
        assert admin_trigger.force_sync().status == "success"

    def test_branch_user_skips_access_logs(self, authoritative_engine, cache_engine, sync_config, clock):
        trigger = create_sync_trigger(
            Principal("u@example.com", "branch", branch="B1"),
            authoritative_engine, cache_engine, sync_config, clock=clock
        )
        result = trigger.force_sync()
        assert "access_logs" not in result.results

    def test_partial_run_does_not_advance_watermark(self, admin_trigger, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(admin_trigger.coordinator.registry.get("settings"), "sync", broken)

        result = admin_trigger.force_sync()

        assert result.status == "partial"
        assert admin_trigger.last_triggered() is None
        # A failed run does not start a cooldown
        admin_trigger.force_sync()

    def test_timeout_raises_and_keeps_watermark(self, admin_trigger, sync_config, monkeypatch):
        sync_config.max_sync_duration_ms = 50

        def slow(full_sync, scope, token=None):
            while not token.cancelled:
                time.sleep(0.01)
            token.raise_if_cancelled()

        monkeypatch.setattr(admin_trigger.coordinator.registry.get("users"), "sync", slow)

        with pytest.raises(SyncTimedOut):
            admin_trigger.force_sync()
        assert admin_trigger.last_triggered() is None


class TestAutoSync:
    """Tests for the boot-time auto-sync."""

    def test_runs_when_never_synced(self, admin_trigger, seed):
        seed.user()
        result = admin_trigger.auto_sync_if_due()
        assert result is not None
        assert result.results["users"].added == 1

    def test_skips_when_recent(self, admin_trigger, clock):
        admin_trigger.force_sync()
        clock.advance(hours=23)
        assert admin_trigger.auto_sync_if_due() is None

    def test_runs_after_interval(self, admin_trigger, clock):
        admin_trigger.force_sync()
        clock.advance(hours=24)
        assert admin_trigger.auto_sync_if_due() is not None

    def test_manual_and_auto_share_watermark(self, admin_trigger, watermarks, clock):
        admin_trigger.auto_sync_if_due()
        assert watermarks.get_raw(TRIGGER_WATERMARK) == clock().isoformat()

        clock.advance(minutes=1)
        with pytest.raises(CooldownActive):
            admin_trigger.force_sync()

    def test_never_raises(self, admin_trigger, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(admin_trigger.coordinator, "sync_all", explode)
        assert admin_trigger.auto_sync_if_due() is None


class TestStatus:
    """Tests for the sync button state."""

    def test_can_sync_when_never_synced(self, admin_trigger):
        assert admin_trigger.status() == {"last_sync": None, "can_sync": True, "time_left_ms": 0}

    def test_reports_time_left(self, admin_trigger, clock):
        admin_trigger.force_sync()
        synced_at = clock()
        clock.advance(minutes=1)

        status = admin_trigger.status()

        assert status["can_sync"] is False
        assert status["time_left_ms"] == 120000
        assert status["last_sync"] == synced_at.isoformat()

    def test_stale_trigger_row_allows_sync(self, admin_trigger, watermarks, clock):
        watermarks.set_raw(TRIGGER_WATERMARK, (clock() - timedelta(days=2)).isoformat())
        assert admin_trigger.status()["can_sync"] is True
