"""
Role-scoped visibility.

The same ``ScopeFilter`` builds the predicate used when reading the
authoritative store for a sync and when the presentation layer reads the
cache, so both sides always expose the same rows.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import Table, false, select
from sqlalchemy.engine import Connection

logger = logging.getLogger(__name__)

ADMIN = "admin"
ZONAL_HEAD = "zonal_head"
BRANCH = "branch"


@dataclass(frozen=True)
class Principal:
    """The user a sync run is performed on behalf of"""
    email: str
    role: str
    zone: Optional[str] = None
    branch: Optional[str] = None


class ScopeFilter:
    """Row predicate derived from a principal's role"""

    def __init__(self, principal: Principal):
        self.principal = principal

    @property
    def is_unrestricted(self) -> bool:
        return self.principal.role == ADMIN

    @property
    def key(self) -> str:
        """
        Stable name of the visible row set

        Principals with the same key see exactly the same rows, so they can
        share a watermark: ``*`` for admins, ``zone:<zone>``,
        ``branch:<branch>``, or ``none`` when the scope cannot be resolved.
        """
        role = self.principal.role
        if role == ADMIN:
            return "*"
        if role == ZONAL_HEAD and self.principal.zone:
            return f"zone:{self.principal.zone}"
        if role == BRANCH and self.principal.branch:
            return f"branch:{self.principal.branch}"
        return "none"

    def clause(self, zone_column=None, branch_column=None):
        """
        Build the predicate for a table

        Args:
            zone_column: Column holding the row's zone, if any
            branch_column: Column holding the row's branch, if any

        Returns:
            ``None`` for unrestricted access, otherwise a SQL clause. A
            principal whose scope cannot be resolved gets a clause that
            matches nothing.
        """
        role = self.principal.role
        if role == ADMIN:
            return None
        if role == ZONAL_HEAD:
            if self.principal.zone and zone_column is not None:
                return zone_column == self.principal.zone
            return false()
        if role == BRANCH:
            if self.principal.branch and branch_column is not None:
                return branch_column == self.principal.branch
            return false()
        logger.warning(f"Unknown role {role!r} for {self.principal.email}; scope is empty")
        return false()

    def for_table(self, table: Table, zone_column: str = "zone", branch_column: str = "branch"):
        """Predicate for a table with conventional zone/branch column names"""
        return self.clause(
            table.c[zone_column] if zone_column in table.c else None,
            table.c[branch_column] if branch_column in table.c else None
        )

    def apply(self, stmt, table: Table, zone_column: str = "zone", branch_column: str = "branch"):
        """Add the scope predicate to a SELECT statement"""
        where = self.for_table(table, zone_column, branch_column)
        return stmt if where is None else stmt.where(where)

    def can_access(self, document_branch: str, document_zone: Optional[str]) -> bool:
        """Single-row check with the same semantics as the SQL predicate"""
        role = self.principal.role
        if role == ADMIN:
            return True
        if role == ZONAL_HEAD:
            return bool(self.principal.zone) and document_zone == self.principal.zone
        if role == BRANCH:
            return bool(self.principal.branch) and document_branch == self.principal.branch
        return False

    def accessible_branches(self, conn: Connection, branch_table: Table) -> List[str]:
        """Names of the branches in scope, read from either store's branch table"""
        stmt = self.apply(select(branch_table.c.name), branch_table, branch_column="name")
        return sorted(conn.execute(stmt).scalars())
