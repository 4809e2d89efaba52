"""
Shared fixtures: file-backed SQLite stores, a controllable clock and a
seeder for the authoritative store.

In-memory SQLite is not used because sync runs execute on worker threads.
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, insert

from database import schema
from database.repositories import AuthoritativeReader, CacheWriter
from database.schema import create_authoritative_schema, create_cache_schema
from sync.change_log import ChangeLogReader
from sync.guards import _held_keys
from sync.watermark import WatermarkStore


class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime):
        self.now = now


class AuthoritativeSeeder:
    """Inserts rows into the authoritative store with sensible defaults"""

    def __init__(self, engine, clock: FakeClock):
        self.engine = engine
        self.clock = clock

    def _insert(self, table, values):
        with self.engine.begin() as conn:
            conn.execute(insert(table).values(**values))
        return values

    def user(self, email=None, role="branch", zone="North", branch="B1", **overrides):
        now = overrides.pop("updated_at", self.clock())
        values = {
            "id": str(uuid.uuid4()),
            "email": email or f"{uuid.uuid4().hex[:8]}@example.com",
            "role": role,
            "zone": zone,
            "branch": branch,
            "can_upload": False,
            "created_at": now,
            "updated_at": now,
        }
        values.update(overrides)
        return self._insert(schema.users, values)

    def branch(self, id, name, zone, **overrides):
        now = overrides.pop("updated_at", self.clock())
        values = {"id": id, "name": name, "zone": zone, "created_at": now, "updated_at": now}
        values.update(overrides)
        return self._insert(schema.branch, values)

    def document(self, branch="B1", zone="North", **overrides):
        now = overrides.pop("updated_at", self.clock())
        values = {
            "id": str(uuid.uuid4()),
            "filename": "stored.pdf",
            "original_filename": "report.pdf",
            "branch": branch,
            "zone": zone,
            "year": "2024",
            "filetype": "pdf",
            "type": "Report",
            "uploaded_by": None,
            "r2_key": "docs/stored.pdf",
            "iv": "iv",
            "tag": "tag",
            "uploaded_at": now,
            "updated_at": now,
        }
        values.update(overrides)
        return self._insert(schema.documents, values)

    def setting(self, id, key, value, **overrides):
        now = overrides.pop("updated_at", self.clock())
        values = {"id": id, "key": key, "value": value, "created_at": now, "updated_at": now}
        values.update(overrides)
        return self._insert(schema.settings, values)

    def doctype(self, id, type, **overrides):
        now = overrides.pop("updated_at", self.clock())
        values = {"id": id, "type": type, "created_at": now, "updated_at": now}
        values.update(overrides)
        return self._insert(schema.doctype, values)

    def access_log(self, file_id, action="view", timestamp=None, **overrides):
        values = {
            "id": str(uuid.uuid4()),
            "user_id": str(uuid.uuid4()),
            "file_id": file_id,
            "action": action,
            "timestamp": timestamp or self.clock(),
        }
        values.update(overrides)
        return self._insert(schema.access_logs, values)

    def login_session(self, email="someone@example.com", login_at=None):
        values = {
            "id": str(uuid.uuid4()),
            "email": email,
            "ip_address": "127.0.0.1",
            "user_agent": "pytest",
            "login_at": login_at or self.clock(),
        }
        return self._insert(schema.login_sessions, values)

    def delete(self, table_name, record_id, changed_at=None):
        """Remove a row and write its tombstone, the way the application does"""
        table = schema.authoritative_metadata.tables[table_name]
        with self.engine.begin() as conn:
            conn.execute(insert(schema.change_log).values(
                table_name=table_name,
                record_id=str(record_id),
                change_type="delete",
                changed_at=changed_at or self.clock(),
                changed_by=None
            ))
            conn.execute(table.delete().where(table.c.id == record_id))

    def tombstone(self, table_name, record_id, changed_at=None, change_type="delete"):
        with self.engine.begin() as conn:
            conn.execute(insert(schema.change_log).values(
                table_name=table_name,
                record_id=str(record_id),
                change_type=change_type,
                changed_at=changed_at or self.clock(),
                changed_by=None
            ))

    def update(self, table_name, record_id, **values):
        table = schema.authoritative_metadata.tables[table_name]
        values.setdefault("updated_at", self.clock())
        with self.engine.begin() as conn:
            conn.execute(table.update().where(table.c.id == record_id).values(**values))


def _sqlite_engine(path):
    return create_engine(f"sqlite:///{path}", connect_args={"check_same_thread": False})


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 5, 10, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def authoritative_engine(tmp_path):
    engine = _sqlite_engine(tmp_path / "authoritative.db")
    create_authoritative_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def cache_engine(tmp_path):
    engine = _sqlite_engine(tmp_path / "cache.db")
    create_cache_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def reader(authoritative_engine):
    return AuthoritativeReader(authoritative_engine)


@pytest.fixture
def cache(cache_engine):
    return CacheWriter(cache_engine)


@pytest.fixture
def watermarks(cache, clock):
    return WatermarkStore(cache, clock=clock)


@pytest.fixture
def change_log(reader):
    return ChangeLogReader(reader)


@pytest.fixture
def seed(authoritative_engine, clock):
    return AuthoritativeSeeder(authoritative_engine, clock)


@pytest.fixture(autouse=True)
def release_sync_locks():
    yield
    _held_keys.clear()
