"""
Watermark Store Module
Persists, per table and scope, the last-synced timestamp and change-log cursor
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.engine import Connection

from database.repositories import CacheWriter
from database.schema import sync_metadata

logger = logging.getLogger(__name__)

# Shared by the boot-time auto-sync and the manual "sync now" trigger
TRIGGER_WATERMARK = "lastAllSync"
RETENTION_WATERMARK = "cleanup"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so stored and fresh values compare"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp; returns None for missing or unparsable values"""
    if not value:
        return None
    try:
        return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        return None


@dataclass
class SyncWatermark:
    """How far a sync has progressed for one table"""
    table_name: str
    last_sync: datetime
    last_change_id: Optional[int] = None
    exists: bool = True


class WatermarkStore:
    """Keyed watermark rows in the cache store's ``sync_metadata`` table"""

    def __init__(self, cache: CacheWriter, clock: Callable[[], datetime] = utcnow):
        """
        Initialize watermark store

        Args:
            cache: Cache store writer
            clock: Source of "now", injectable for tests
        """
        self.cache = cache
        self.clock = clock

    def get(self, table: str, conn: Optional[Connection] = None) -> SyncWatermark:
        """
        Get the watermark for a table

        A table with no row behaves as freshly synced: ``last_sync`` is now,
        so an incremental pass finds nothing. First population is driven by
        an explicit full sync.
        """
        raw = self._read(table, conn)
        if raw is None:
            return SyncWatermark(table, self.clock(), None, exists=False)

        last_sync = parse_timestamp(raw["last_sync"])
        if last_sync is None:
            logger.warning(f"Unreadable watermark for {table}: {raw['last_sync']!r}; treating as now")
            return SyncWatermark(table, self.clock(), raw["last_change_id"], exists=False)

        return SyncWatermark(table, last_sync, raw["last_change_id"])

    def set(self, table: str, last_sync: datetime, last_change_id: Optional[int] = None,
            conn: Optional[Connection] = None):
        """
        Upsert the watermark for a table

        ``last_sync`` never moves backwards and ``last_change_id`` only grows;
        a ``None`` change id keeps the stored one.
        """
        with self.cache.transaction(conn) as tx:
            current = self._read(table, tx.conn)
            last_sync = as_utc(last_sync)
            if current is not None:
                previous = parse_timestamp(current["last_sync"])
                if previous is not None and previous > last_sync:
                    last_sync = previous
                previous_id = current["last_change_id"]
                if last_change_id is None:
                    last_change_id = previous_id
                elif previous_id is not None:
                    last_change_id = max(previous_id, last_change_id)

            tx.upsert(sync_metadata, {
                "table_name": table,
                "last_sync": last_sync.isoformat(),
                "last_change_id": last_change_id
            }, key="table_name")

    def get_raw(self, key: str) -> Optional[str]:
        """Return the stored value verbatim (used by the retention watermark)"""
        raw = self._read(key)
        return raw["last_sync"] if raw else None

    def set_raw(self, key: str, value: str):
        """Store a verbatim value such as an ISO date or the error sentinel"""
        with self.cache.transaction() as tx:
            tx.upsert(sync_metadata, {
                "table_name": key,
                "last_sync": value,
                "last_change_id": None
            }, key="table_name")

    def delete(self, key: str) -> bool:
        with self.cache.transaction() as tx:
            return tx.delete_where(sync_metadata, sync_metadata.c.table_name == key) > 0

    def has_any(self, exclude: tuple = ()) -> bool:
        """Whether any watermark row exists, ignoring the given keys"""
        stmt = select(sync_metadata.c.table_name)
        if exclude:
            stmt = stmt.where(sync_metadata.c.table_name.notin_(exclude))
        with self.cache.engine.connect() as conn:
            return conn.execute(stmt.limit(1)).first() is not None

    def _read(self, key: str, conn: Optional[Connection] = None) -> Optional[dict]:
        stmt = select(sync_metadata).where(sync_metadata.c.table_name == key)
        if conn is not None:
            row = conn.execute(stmt).mappings().first()
        else:
            with self.cache.engine.connect() as new_conn:
                row = new_conn.execute(stmt).mappings().first()
        return dict(row) if row else None
