"""
Tests for the sync coordinator: ordering, failure isolation, locking and
bootstrap promotion.
"""

import threading
from unittest.mock import Mock

import pytest

from database import schema
from sync.coordinator import DEFAULT_TABLES, IN_PROGRESS, SyncCoordinator, tables_for_role
from sync.guards import SyncLock
from sync.scope import Principal
from sync.errors import SyncCancelled
from sync.strategies import StrategyRegistry, TableSyncResult, build_default_registry

ADMIN = Principal("admin@example.com", "admin")


@pytest.fixture
def registry(reader, cache, watermarks, change_log, clock):
    return build_default_registry(reader, cache, watermarks, change_log, clock=clock)


@pytest.fixture
def coordinator(registry, watermarks, clock):
    return SyncCoordinator(registry, watermarks, ADMIN, clock=clock)


class TestTablesForRole:
    """Tests for the table set of triggered syncs."""

    def test_admin_includes_access_logs(self):
        assert tables_for_role("admin") == ["users", "branch", "documents", "settings", "access_logs"]

    @pytest.mark.parametrize("role", ["zonal_head", "branch", "unknown"])
    def test_others_exclude_access_logs(self, role):
        assert "access_logs" not in tables_for_role(role)


class TestSyncAll:
    """Tests for SyncCoordinator.sync_all."""

    def test_defaults_to_all_five_tables(self, coordinator, seed):
        seed.user()
        seed.branch(1, "B1", "North")
        seed.document()
        seed.setting(1, "theme", "dark")

        result = coordinator.sync_all(full_sync=True)

        assert result.status == "success"
        assert list(result.results) == list(DEFAULT_TABLES)
        assert result.results["users"].added == 1
        assert result.results["documents"].added == 1
        assert result.run_id

    def test_runs_tables_in_request_order(self, coordinator):
        result = coordinator.sync_all(full_sync=True, tables=["settings", "users"])
        assert list(result.results) == ["settings", "users"]

    def test_unknown_table_fails_whole_run(self, coordinator, cache, seed):
        seed.user()

        result = coordinator.sync_all(full_sync=True, tables=["users", "invoices"])

        assert result.status == "error"
        assert "invoices" in result.message
        assert result.results == {}
        assert cache.fetch_rows(schema.cache_users) == []

    def test_failing_table_is_isolated(self, coordinator, registry, seed, cache, watermarks, monkeypatch):
        seed.user()
        seed.document()

        def broken(*args, **kwargs):
            raise RuntimeError("authoritative store unavailable")

        monkeypatch.setattr(registry.get("documents"), "sync", broken)

        result = coordinator.sync_all(full_sync=True, tables=["users", "documents", "settings"])

        assert result.status == "partial"
        assert result.results["users"].status == "success"
        assert result.results["documents"].status == "error"
        assert "unavailable" in result.results["documents"].message
        assert result.results["settings"].status == "success"
        assert len(cache.fetch_rows(schema.cache_users)) == 1
        assert watermarks.get("documents|*").exists is False
        assert watermarks.get("users|*").exists is True

    def test_to_dict_is_serializable(self, coordinator):
        data = coordinator.sync_all(full_sync=True, tables=["settings"]).to_dict()
        assert data["status"] == "success"
        assert data["results"]["settings"]["total"] == 0
        assert isinstance(data["timestamp"], str)

    def test_held_lock_rejects_concurrent_run(self, coordinator, cache):
        lock = SyncLock.for_tables(cache.store_id, ["users", "settings"])
        assert lock.acquire()
        try:
            result = coordinator.sync_all(tables=["settings", "users"])
        finally:
            lock.release()

        assert result.status == "error"
        assert result.reason == IN_PROGRESS
        assert result.message == "Sync already in progress"
        assert result.to_dict()["reason"] == IN_PROGRESS

    def test_other_principal_with_overlapping_tables_is_rejected(self, registry, watermarks, cache, clock):
        branch_user = Principal("b@example.com", "branch", zone="North", branch="B1")
        lock = SyncLock.for_tables(cache.store_id, DEFAULT_TABLES)
        assert lock.acquire()
        try:
            result = SyncCoordinator(registry, watermarks, branch_user, clock=clock).sync_all(
                tables=tables_for_role("branch")
            )
        finally:
            lock.release()

        assert result.reason == IN_PROGRESS
        assert result.results == {}

    def test_run_blocks_overlapping_run_while_in_flight(self, registry, watermarks, cache, clock, monkeypatch):
        entered = threading.Event()
        proceed = threading.Event()
        users = registry.get("users")
        original = users.sync

        def slow_sync(*args, **kwargs):
            entered.set()
            proceed.wait(5)
            return original(*args, **kwargs)

        monkeypatch.setattr(users, "sync", slow_sync)
        admin_run = {}
        worker = threading.Thread(target=lambda: admin_run.setdefault(
            "result", SyncCoordinator(registry, watermarks, ADMIN, clock=clock).sync_all(tables=DEFAULT_TABLES)
        ))
        worker.start()
        try:
            assert entered.wait(5)
            branch_user = Principal("b@example.com", "branch", zone="North", branch="B1")
            contended = SyncCoordinator(registry, watermarks, branch_user, clock=clock).sync_all(
                tables=tables_for_role("branch")
            )
        finally:
            proceed.set()
            worker.join(5)

        assert contended.reason == IN_PROGRESS
        assert admin_run["result"].status == "success"
        assert not SyncLock.for_tables(cache.store_id, DEFAULT_TABLES).is_locked()

    def test_lock_released_after_run(self, coordinator, cache):
        coordinator.sync_all(tables=["settings"])
        assert not SyncLock.for_tables(cache.store_id, ["settings"]).is_locked()


class TestBootstrap:
    """Tests for promotion to a full sync on an empty cache."""

    def test_promotes_when_no_watermarks(self, registry, watermarks, seed, cache, clock):
        seed.user()
        coordinator = SyncCoordinator(registry, watermarks, ADMIN, bootstrap_full_sync=True, clock=clock)

        result = coordinator.sync_all(full_sync=False, tables=["users"])

        assert result.results["users"].added == 1

    def test_trigger_watermark_does_not_count(self, registry, watermarks, seed, clock):
        seed.user()
        watermarks.set_raw("lastAllSync", clock().isoformat())
        coordinator = SyncCoordinator(registry, watermarks, ADMIN, bootstrap_full_sync=True, clock=clock)

        result = coordinator.sync_all(tables=["users"])

        assert result.results["users"].added == 1

    def test_no_promotion_once_synced(self, registry, watermarks, seed, clock):
        watermarks.set("settings", clock())
        seed.user()
        coordinator = SyncCoordinator(registry, watermarks, ADMIN, bootstrap_full_sync=True, clock=clock)

        result = coordinator.sync_all(tables=["users"])

        assert result.results["users"].total == 0

    def test_disabled_by_default(self, coordinator, seed):
        seed.user()
        result = coordinator.sync_all(tables=["users"])
        assert result.results["users"].total == 0


class TestWithMockStrategies:
    """Coordinator behavior against fake strategies."""

    @staticmethod
    def _strategy(name, **kwargs):
        strategy = Mock(**kwargs)
        strategy.name = name
        return strategy

    @pytest.fixture
    def mock_watermarks(self):
        watermarks = Mock()
        watermarks.has_any.return_value = True
        return watermarks

    def test_passes_scope_and_token(self, mock_watermarks):
        users = self._strategy("users")
        users.sync.return_value = TableSyncResult(table="users", added=2, total=2)
        registry = StrategyRegistry()
        registry.register(users)

        result = SyncCoordinator(registry, mock_watermarks, ADMIN).sync_all(full_sync=True, tables=["users"])

        assert result.status == "success"
        full_sync, scope, token = users.sync.call_args.args
        assert full_sync is True
        assert scope.principal == ADMIN
        assert token.cancelled is False

    def test_cancellation_aborts_remaining_tables(self, mock_watermarks):
        users = self._strategy("users")
        users.sync.side_effect = SyncCancelled("Sync cancelled")
        settings = self._strategy("settings")
        registry = StrategyRegistry()
        registry.register(users)
        registry.register(settings)

        result = SyncCoordinator(registry, mock_watermarks, ADMIN).sync_all(tables=["users", "settings"])

        assert result.status == "error"
        settings.sync.assert_not_called()
