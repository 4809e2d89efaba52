"""
Table Sync Strategies
One strategy per synchronized entity, chosen through a registry
"""

import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import Table, and_, select

from database import schema
from database.repositories import AuthoritativeReader, CacheWriter
from .change_log import ChangeLogReader
from .errors import UnknownTableError
from .guards import CancellationToken
from .scope import ScopeFilter
from .watermark import WatermarkStore, utcnow

logger = logging.getLogger(__name__)


@dataclass
class TableSyncResult:
    """Counts observed by one table step"""
    table: str
    added: int = 0
    updated: int = 0
    deleted: int = 0
    total: int = 0
    status: str = "success"
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _comparable(value: Any) -> Any:
    """Normalize values so an authoritative row and its cache copy compare equal"""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


class TableSyncStrategy:
    """
    Filter, upsert shape and conflict rule for one entity

    Subclasses set the class attributes; the algorithm in ``sync`` is shared.
    """

    name: str = ""
    source: Table = None
    target: Table = None
    id_type: type = int
    timestamp_column: str = "updated_at"
    zone_column: Optional[str] = "zone"
    branch_column: Optional[str] = "branch"
    scoped: bool = True
    remove_orphans_on_full_sync: bool = False

    def __init__(self, reader: AuthoritativeReader,
                 cache: CacheWriter,
                 watermarks: WatermarkStore,
                 change_log: ChangeLogReader,
                 delete_batch_size: int = 500,
                 clock: Callable[[], datetime] = utcnow):
        self.reader = reader
        self.cache = cache
        self.watermarks = watermarks
        self.change_log = change_log
        self.delete_batch_size = delete_batch_size
        self.clock = clock

    # ---- entity-specific hooks ----

    def scope_clause(self, scope: ScopeFilter):
        """Predicate restricting authoritative rows to the principal's scope"""
        if not self.scoped:
            return None
        return scope.clause(
            self.source.c[self.zone_column] if self.zone_column else None,
            self.source.c[self.branch_column] if self.branch_column else None
        )

    def cache_scope_clause(self, scope: ScopeFilter):
        """The same predicate over the cache copy of this table"""
        if not self.scoped:
            return None
        return scope.clause(
            self.target.c[self.zone_column] if self.zone_column else None,
            self.target.c[self.branch_column] if self.branch_column else None
        )

    def watermark_key(self, scope: ScopeFilter) -> str:
        """
        Watermark row for this table as seen through ``scope``

        The cache is shared by every principal, so each visible row set
        keeps its own cursor; one scope's run never advances another's.
        """
        return f"{self.name}|{scope.key if self.scoped else '*'}"

    def normalize_id(self, value: Any) -> Any:
        """
        Coerce an identifier to this table's key type without losing precision

        Raises:
            ValueError: if the value cannot represent a key of this table
        """
        if value is None:
            raise ValueError("identifier is None")
        if self.id_type is int:
            if isinstance(value, bool):
                raise ValueError(f"boolean is not an identifier: {value!r}")
            if isinstance(value, int):
                return value
            if isinstance(value, float):
                if not value.is_integer():
                    raise ValueError(f"non-integral identifier: {value!r}")
                return int(value)
            return int(str(value).strip())
        if isinstance(value, uuid.UUID):
            return str(value)
        text = str(value).strip()
        if not text:
            raise ValueError("empty identifier")
        try:
            return str(uuid.UUID(text))
        except ValueError:
            return text

    def to_cache_row(self, row: Dict[str, Any]) -> Dict[str, Any]:
        """Full cache row for an authoritative row; every column is carried"""
        cache_row = {}
        for column in self.target.c:
            value = row.get(column.name)
            if isinstance(value, uuid.UUID):
                value = str(value)
            cache_row[column.name] = value
        cache_row["id"] = self.normalize_id(row["id"])
        return cache_row

    # ---- shared algorithm ----

    def build_filter(self, scope: ScopeFilter, full_sync: bool, last_sync: datetime):
        conditions = []
        scope_clause = self.scope_clause(scope)
        if scope_clause is not None:
            conditions.append(scope_clause)
        if not full_sync:
            conditions.append(self.source.c[self.timestamp_column] > last_sync)
        if not conditions:
            return None
        return and_(*conditions) if len(conditions) > 1 else conditions[0]

    def sync(self, full_sync: bool, scope: ScopeFilter,
             token: Optional[CancellationToken] = None) -> TableSyncResult:
        """
        Bring this table's cache copy up to date

        Tombstone deletes run before upserts, and the watermark advances in
        the same cache transaction only after both succeed.

        Args:
            full_sync: Ignore the watermark and fetch the whole scoped set
            scope: Visibility filter of the principal
            token: Cancellation token checked between steps and rows

        Returns:
            TableSyncResult with added/updated/deleted/total counts
        """
        token = token or CancellationToken()
        result = TableSyncResult(table=self.name)
        started = self.clock()
        watermark_key = self.watermark_key(scope)

        with self.cache.transaction() as tx:
            watermark = self.watermarks.get(watermark_key, conn=tx.conn)
            token.raise_if_cancelled()

            rows = self.reader.fetch_rows(
                self.source, self.build_filter(scope, full_sync, watermark.last_sync)
            )
            result.total = len(rows)
            token.raise_if_cancelled()

            entries = self.change_log.get_deleted_entries(
                self.name, watermark.last_sync, watermark.last_change_id
            )
            deleted_ids = self._normalize_ids([entry.record_id for entry in entries])
            if deleted_ids:
                result.deleted += tx.delete_ids(self.target, deleted_ids, self.delete_batch_size)
            token.raise_if_cancelled()

            cache_rows = self._to_cache_rows(rows)
            existing = tx.existing_rows(self.target, [row["id"] for row in cache_rows])
            for row in cache_rows:
                token.raise_if_cancelled()
                current = existing.get(row["id"])
                if current is None:
                    result.added += 1
                elif self._differs(current, row):
                    result.updated += 1
                tx.upsert(self.target, row)

            if full_sync and self.remove_orphans_on_full_sync:
                # Only rows this scope can see; other scopes' rows are not orphans
                in_scope = tx.all_ids(self.target, self.cache_scope_clause(scope))
                orphans = in_scope - {row["id"] for row in cache_rows}
                if orphans:
                    logger.info(f"  Removing {len(orphans)} orphaned {self.name} rows in scope {scope.key}")
                    result.deleted += tx.delete_ids(self.target, sorted(orphans), self.delete_batch_size)

            token.raise_if_cancelled()
            last_change_id = max((entry.id for entry in entries), default=None)
            self.watermarks.set(watermark_key, started, last_change_id, conn=tx.conn)

        logger.info(
            f"  ✓ {self.name}: added {result.added}, updated {result.updated}, "
            f"deleted {result.deleted}, total {result.total}"
        )
        return result

    def _normalize_ids(self, raw_ids: List[Any]) -> List[Any]:
        ids = []
        for raw in raw_ids:
            try:
                ids.append(self.normalize_id(raw))
            except ValueError as e:
                logger.warning(f"Skipping tombstone for {self.name}: {e}")
        return sorted(set(ids), key=str)

    def _to_cache_rows(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        cache_rows = {}
        for row in rows:
            cache_row = self.to_cache_row(row)
            cache_rows[cache_row["id"]] = cache_row
        return list(cache_rows.values())

    def _differs(self, current: Dict[str, Any], row: Dict[str, Any]) -> bool:
        return any(_comparable(current.get(name)) != _comparable(value) for name, value in row.items())


class UsersSyncStrategy(TableSyncStrategy):
    name = "users"
    source = schema.users
    target = schema.cache_users
    id_type = str


class BranchSyncStrategy(TableSyncStrategy):
    name = "branch"
    source = schema.branch
    target = schema.cache_branch
    id_type = int
    branch_column = "name"


class DocumentsSyncStrategy(TableSyncStrategy):
    name = "documents"
    source = schema.documents
    target = schema.cache_documents
    id_type = str
    remove_orphans_on_full_sync = True


class SettingsSyncStrategy(TableSyncStrategy):
    name = "settings"
    source = schema.settings
    target = schema.cache_settings
    id_type = int
    scoped = False


class DoctypeSyncStrategy(TableSyncStrategy):
    name = "doctype"
    source = schema.doctype
    target = schema.cache_doctype
    id_type = int
    scoped = False


class AccessLogsSyncStrategy(TableSyncStrategy):
    """Access logs are visible through the documents they refer to"""
    name = "access_logs"
    source = schema.access_logs
    target = schema.cache_access_logs
    id_type = str
    timestamp_column = "timestamp"

    def scope_clause(self, scope: ScopeFilter):
        documents = schema.documents
        document_scope = scope.for_table(documents)
        if document_scope is None:
            return None
        accessible = select(documents.c.id).where(document_scope)
        return self.source.c.file_id.in_(accessible)

    def cache_scope_clause(self, scope: ScopeFilter):
        documents = schema.cache_documents
        document_scope = scope.for_table(documents)
        if document_scope is None:
            return None
        accessible = select(documents.c.id).where(document_scope)
        return self.target.c.file_id.in_(accessible)


DEFAULT_STRATEGIES = (
    UsersSyncStrategy,
    BranchSyncStrategy,
    DocumentsSyncStrategy,
    SettingsSyncStrategy,
    AccessLogsSyncStrategy,
    DoctypeSyncStrategy,
)


class StrategyRegistry:
    """Maps a table identifier to its strategy"""

    def __init__(self):
        self._strategies: Dict[str, TableSyncStrategy] = {}

    def register(self, strategy: TableSyncStrategy):
        if not strategy.name:
            raise ValueError("strategy has no table name")
        self._strategies[strategy.name] = strategy

    def get(self, table: str) -> TableSyncStrategy:
        try:
            return self._strategies[table]
        except KeyError:
            raise UnknownTableError(table) from None

    def names(self) -> List[str]:
        return list(self._strategies)

    def __contains__(self, table: str) -> bool:
        return table in self._strategies


def build_default_registry(reader: AuthoritativeReader,
                           cache: CacheWriter,
                           watermarks: WatermarkStore,
                           change_log: ChangeLogReader,
                           delete_batch_size: int = 500,
                           clock: Callable[[], datetime] = utcnow) -> StrategyRegistry:
    """Registry with every built-in entity strategy"""
    registry = StrategyRegistry()
    for strategy_class in DEFAULT_STRATEGIES:
        registry.register(strategy_class(
            reader, cache, watermarks, change_log,
            delete_batch_size=delete_batch_size,
            clock=clock
        ))
    return registry
