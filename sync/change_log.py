"""
Change Log Module
Reads delete tombstones from the authoritative store's append-only change log
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, or_

from database.repositories import AuthoritativeReader
from database.schema import change_log

logger = logging.getLogger(__name__)


@dataclass
class ChangeLogEntry:
    """One row of the authoritative change log"""
    id: int
    table_name: str
    record_id: str
    change_type: str
    changed_at: datetime


class ChangeLogReader:
    """Pure reads of delete events newer than a watermark"""

    def __init__(self, reader: AuthoritativeReader):
        self.reader = reader

    def get_deleted_entries(self, table: str, since: datetime,
                            since_change_id: Optional[int] = None) -> List[ChangeLogEntry]:
        """
        Get delete entries for a table newer than the watermark

        Args:
            table: Logical table name as written in the change log
            since: Entries with ``changed_at`` after this are returned
            since_change_id: When given, entries with a higher id are
                returned too, even if their timestamp is not newer

        Returns:
            Entries ordered by id; empty when there are none
        """
        newer = change_log.c.changed_at > since
        if since_change_id is not None:
            newer = or_(newer, change_log.c.id > since_change_id)

        rows = self.reader.fetch_rows(change_log, and_(
            change_log.c.table_name == table,
            change_log.c.change_type == "delete",
            newer
        ))
        rows.sort(key=lambda row: row["id"])

        return [
            ChangeLogEntry(
                id=row["id"],
                table_name=row["table_name"],
                record_id=row["record_id"],
                change_type=row["change_type"],
                changed_at=row["changed_at"]
            )
            for row in rows
        ]

    def get_deleted_ids(self, table: str, since: datetime,
                        since_change_id: Optional[int] = None) -> List[str]:
        """Record ids tombstoned for ``table`` since the watermark"""
        return [entry.record_id for entry in self.get_deleted_entries(table, since, since_change_id)]
