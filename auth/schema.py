"""
auth/schema.py -- SQLAlchemy Core schema and engine factory for auth entities.

All auth stores (AccountStore, RoleStore, SessionStore) share one engine and
one MetaData. create_db_engine() builds the engine and creates missing tables;
the stores never create engines themselves.

Uniqueness:
  users.email and roles.name are unique among non-deleted rows only. That is a
  partial unique index (WHERE deleted_at IS NULL), supported by both SQLite and
  PostgreSQL. The index is the authority for concurrent registrations -- an
  existence check in application code is advisory only.

Timestamps are ISO 8601 UTC strings with fixed microsecond precision so that
lexical comparison equals chronological comparison (used by session expiry).
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False),
    Column("name", String(255)),
    Column("image", Text),
    Column("hashed_password", Text),  # NULL for federated-only accounts
    Column("provider", String(30)),
    Column("provider_id", Text),
    Column("email_verified", String(32)),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="SET NULL")),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
    Column("last_login", String(32)),
    Column("password_reset_token", Text),  # sha256 hex of the emailed token
    Column("password_reset_token_expiry", String(32)),
)

Index(
    "uq_users_email_active",
    users.c.email,
    unique=True,
    sqlite_where=users.c.deleted_at.is_(None),
    postgresql_where=users.c.deleted_at.is_(None),
)

# Lookup by hashed reset token; the raw token is never stored.
Index("ix_users_password_reset_token", users.c.password_reset_token)

roles = Table(
    "roles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("description", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
)

Index(
    "uq_roles_name_active",
    roles.c.name,
    unique=True,
    sqlite_where=roles.c.deleted_at.is_(None),
    postgresql_where=roles.c.deleted_at.is_(None),
)

permissions = Table(
    "permissions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("description", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("deleted_at", String(32)),
)

role_permissions = Table(
    "role_permissions",
    metadata,
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", Integer, ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)

user_sessions = Table(
    "user_sessions",
    metadata,
    Column("id", String(64), primary_key=True),  # secrets.token_hex(32)
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("expires_at", String(32), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. Foreign keys are off by default in SQLite,
    which would silently skip the ON DELETE CASCADE on user_sessions.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(db_url: str) -> Engine:
    """Build an engine for db_url and create any missing tables.

    Plain sqlite:///:memory: uses StaticPool so every connection sees the same
    database. Named shared-memory URIs (used by the integration tests) work
    through the default pool.
    """
    kwargs: dict = {}
    if db_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if db_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    engine = create_engine(db_url, **kwargs)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    metadata.create_all(engine)
    return engine


def now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def to_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str) -> datetime:
    return datetime.fromisoformat(value)
