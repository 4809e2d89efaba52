"""
Table definitions for the authoritative store and the local cache store.

The authoritative store owns every record; the cache store holds a derived
copy plus the ``sync_metadata`` watermark table.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)

ROLES = ("branch", "zonal_head", "admin")
ACCESS_ACTIONS = ("view", "download", "upload", "delete")
CHANGE_TYPES = ("insert", "update", "delete")


# ==================== Authoritative store ====================

authoritative_metadata = MetaData()

users = Table(
    "users", authoritative_metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("role", String(20), nullable=False, default="branch"),
    Column("zone", String(100)),
    Column("branch", String(100)),
    Column("can_upload", Boolean, default=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

branch = Table(
    "branch", authoritative_metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("zone", String(100), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

documents = Table(
    "documents", authoritative_metadata,
    Column("id", String(36), primary_key=True),
    Column("filename", Text, nullable=False),
    Column("original_filename", Text, nullable=False),
    Column("branch", String(100), nullable=False),
    Column("zone", String(100), nullable=False),
    Column("year", String(10)),
    Column("filetype", String(50)),
    Column("type", String(100)),
    Column("uploaded_by", String(36)),
    Column("r2_key", Text, nullable=False),
    Column("iv", Text, nullable=False),
    Column("tag", Text, nullable=False),
    Column("uploaded_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

settings = Table(
    "settings", authoritative_metadata,
    Column("id", Integer, primary_key=True),
    Column("key", String(255), nullable=False, unique=True),
    Column("value", Text, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

doctype = Table(
    "doctype", authoritative_metadata,
    Column("id", Integer, primary_key=True),
    Column("type", String(100), nullable=False, unique=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

access_logs = Table(
    "access_logs", authoritative_metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False),
    Column("file_id", String(36), nullable=False),
    Column("action", String(20), nullable=False),
    Column("timestamp", DateTime(timezone=True), nullable=False),
)

# Append-only; a delete entry is written before the row itself is removed.
change_log = Table(
    "change_log", authoritative_metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("table_name", String(50), nullable=False),
    Column("record_id", String(36), nullable=False),
    Column("change_type", String(10), nullable=False),
    Column("changed_at", DateTime(timezone=True), nullable=False),
    Column("changed_by", String(36)),
)

login_sessions = Table(
    "login_sessions", authoritative_metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False),
    Column("ip_address", String(64)),
    Column("user_agent", Text),
    Column("login_at", DateTime(timezone=True), nullable=False),
)


# ==================== Cache store ====================

cache_metadata = MetaData()

cache_users = users.to_metadata(cache_metadata)
cache_branch = branch.to_metadata(cache_metadata)
cache_documents = documents.to_metadata(cache_metadata)
cache_settings = settings.to_metadata(cache_metadata)
cache_doctype = doctype.to_metadata(cache_metadata)
cache_access_logs = access_logs.to_metadata(cache_metadata)

sync_metadata = Table(
    "sync_metadata", cache_metadata,
    Column("table_name", String(50), primary_key=True),
    Column("last_sync", String(40), nullable=False),
    Column("last_change_id", Integer),
)


def create_authoritative_schema(engine):
    """Create authoritative tables (used for local development and tests)"""
    authoritative_metadata.create_all(engine)


def create_cache_schema(engine):
    """Create cache tables including the watermark table"""
    cache_metadata.create_all(engine)
