"""
Repository interfaces over the two stores.

``AuthoritativeReader`` is the only way the sync engine and the retention
cleaner touch the authoritative store; ``CacheWriter`` is the only way they
touch the cache store. Both wrap a plain SQLAlchemy engine so tests can hand
in any engine (typically file-backed SQLite).
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

from sqlalchemy import Table, delete, select
from sqlalchemy.engine import Connection, Engine

logger = logging.getLogger(__name__)


class AuthoritativeReader:
    """Parameterized reads (and the retention purge) against the authoritative store"""

    def __init__(self, engine: Engine):
        self.engine = engine

    def fetch_rows(self, table: Table, where=None) -> List[Dict[str, Any]]:
        """
        Fetch rows as dictionaries

        Args:
            table: Table to read
            where: Optional SQLAlchemy clause; ``None`` reads the whole table

        Returns:
            List of row dictionaries keyed by column name
        """
        stmt = select(table)
        if where is not None:
            stmt = stmt.where(where)
        with self.engine.connect() as conn:
            return [dict(row) for row in conn.execute(stmt).mappings()]

    def purge(self, deletions: Sequence[tuple]) -> Dict[str, int]:
        """
        Delete rows from several tables in one transaction

        Args:
            deletions: ``(table, where_clause)`` pairs

        Returns:
            Deleted row counts keyed by table name
        """
        counts = {}
        with self.engine.begin() as conn:
            for table, where in deletions:
                result = conn.execute(delete(table).where(where))
                counts[table.name] = result.rowcount
        return counts


class CacheTransaction:
    """Cache-store operations bound to one open transaction"""

    def __init__(self, conn: Connection):
        self.conn = conn

    def fetch_rows(self, table: Table, where=None) -> List[Dict[str, Any]]:
        stmt = select(table)
        if where is not None:
            stmt = stmt.where(where)
        return [dict(row) for row in self.conn.execute(stmt).mappings()]

    def existing_rows(self, table: Table, ids: Iterable, key: str = "id") -> Dict[Any, Dict[str, Any]]:
        """Return the cache rows whose key is in ``ids``, keyed by that id"""
        ids = list(ids)
        if not ids:
            return {}
        found = {}
        column = table.c[key]
        for chunk in _chunks(ids, 500):
            for row in self.conn.execute(select(table).where(column.in_(chunk))).mappings():
                found[row[key]] = dict(row)
        return found

    def all_ids(self, table: Table, where=None, key: str = "id") -> set:
        stmt = select(table.c[key])
        if where is not None:
            stmt = stmt.where(where)
        return set(self.conn.execute(stmt).scalars())

    def upsert(self, table: Table, row: Dict[str, Any], key: str = "id"):
        """
        Insert a row, or replace every non-key field when the key exists

        Never merges: the cache row ends up an exact mirror of ``row``.
        """
        dialect = self.conn.dialect.name
        if dialect in ("sqlite", "postgresql"):
            if dialect == "sqlite":
                from sqlalchemy.dialects.sqlite import insert
            else:
                from sqlalchemy.dialects.postgresql import insert
            stmt = insert(table).values(**row)
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c[key]],
                set_={name: stmt.excluded[name] for name in row if name != key}
            )
            self.conn.execute(stmt)
            return

        # Generic fallback for dialects without ON CONFLICT support
        values = {name: value for name, value in row.items() if name != key}
        result = self.conn.execute(
            table.update().where(table.c[key] == row[key]).values(**values)
        )
        if result.rowcount == 0:
            self.conn.execute(table.insert().values(**row))

    def delete_ids(self, table: Table, ids: Sequence, batch_size: int = 500, key: str = "id") -> int:
        """Delete rows by key in batches; absent ids are ignored"""
        deleted = 0
        column = table.c[key]
        for chunk in _chunks(list(ids), batch_size):
            result = self.conn.execute(delete(table).where(column.in_(chunk)))
            deleted += result.rowcount
        return deleted

    def delete_where(self, table: Table, where) -> int:
        return self.conn.execute(delete(table).where(where)).rowcount


class CacheWriter:
    """Keyed upsert and bulk delete against the cache store"""

    def __init__(self, engine: Engine):
        self.engine = engine

    @property
    def store_id(self) -> str:
        """Identifies the cache database; runs against the same store share locks"""
        return self.engine.url.render_as_string(hide_password=True)

    @contextmanager
    def transaction(self, conn: Optional[Connection] = None) -> Iterator[CacheTransaction]:
        """
        Open a transaction, or join the one ``conn`` already holds

        Everything done through the yielded object commits together or
        rolls back together.
        """
        if conn is not None:
            yield CacheTransaction(conn)
            return
        with self.engine.begin() as new_conn:
            yield CacheTransaction(new_conn)

    def fetch_rows(self, table: Table, where=None) -> List[Dict[str, Any]]:
        with self.engine.connect() as conn:
            return CacheTransaction(conn).fetch_rows(table, where)

    def delete_where(self, table: Table, where) -> int:
        with self.transaction() as tx:
            return tx.delete_where(table, where)


def _chunks(items: List, size: int) -> Iterator[List]:
    for start in range(0, len(items), size):
        yield items[start:start + size]
