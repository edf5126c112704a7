"""
auth/store.py -- SQLAlchemy Core persistence for Account records.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account is the mapper. Service and route code never touches SQL.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Duplicate emails are detected by the partial unique index in auth/schema.py,
  not by a read-then-write check. create_account() translates the resulting
  IntegrityError into ConflictError, so the second of two concurrent
  registrations always gets a 409.

Soft delete: accounts are never hard-deleted by normal flows. deleted_at is
stamped instead; find_by_id() still returns soft-deleted rows, find_by_email()
excludes them unless include_deleted=True.
"""

from __future__ import annotations

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import Account
from auth.schema import now_iso, users
from core.errors import ConflictError, NotFoundError

# Columns a caller may set through create_account(**profile) / update_account().
# id, created_at and updated_at are owned by the store.
_WRITABLE_FIELDS = frozenset(
    {
        "email",
        "name",
        "image",
        "hashed_password",
        "provider",
        "provider_id",
        "email_verified",
        "role_id",
        "deleted_at",
        "last_login",
        "password_reset_token",
        "password_reset_token_expiry",
    }
)


class AccountStore:
    """Repository for Account entities.

    Usage:
        engine = create_db_engine("sqlite:///keystone.db")
        store = AccountStore(engine)
        account = store.create_account("alice@x.com", hashed_password=hasher.hash("pw123"))
        store.find_by_email("alice@x.com")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_account(self, email: str, hashed_password: str | None = None, **profile) -> Account:
        """Insert a new account and return it.

        Raises ConflictError if a non-deleted account already uses the email.
        """
        _check_fields(profile)
        stamp = now_iso()
        values = dict(profile, email=email, hashed_password=hashed_password, created_at=stamp, updated_at=stamp)
        try:
            with self.engine.connect() as conn:
                result = conn.execute(users.insert().values(**values))
                conn.commit()
                account_id = result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise ConflictError("User with this email already exists.") from exc
        return self.find_by_id(account_id)

    def update_account(self, account_id: int, **fields) -> Account:
        """Update fields on an existing account and return the fresh record.

        Raises NotFoundError if account_id does not exist, ConflictError if an
        email change collides with another live account.
        """
        _check_fields(fields)
        fields["updated_at"] = now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(users.update().where(users.c.id == account_id).values(**fields))
                conn.commit()
        except IntegrityError as exc:
            raise ConflictError("User with this email already exists.") from exc
        if result.rowcount == 0:
            raise NotFoundError("User not found.")
        return self.find_by_id(account_id)

    def assign_role(self, account_id: int, role_id: int | None) -> Account:
        return self.update_account(account_id, role_id=role_id)

    def soft_delete_account(self, account_id: int) -> Account:
        return self.update_account(account_id, deleted_at=now_iso())

    def restore_account(self, account_id: int) -> Account:
        """Clear deleted_at. ConflictError if the email was re-registered meanwhile."""
        return self.update_account(account_id, deleted_at=None)

    def touch_last_login(self, account_id: int) -> None:
        """Stamp last_login without touching updated_at (not a profile change)."""
        with self.engine.connect() as conn:
            conn.execute(users.update().where(users.c.id == account_id).values(last_login=now_iso()))
            conn.commit()

    def consume_reset_token(self, account_id: int, token_hash: str, hashed_password: str) -> bool:
        """Set a new password and clear the reset token in one statement.

        The WHERE clause matches the token hash as well as the id, so of two
        concurrent resets with the same token only one updates a row. Returns
        False when the token was already consumed or replaced.
        """
        stamp = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                users.update()
                .where(
                    (users.c.id == account_id)
                    & (users.c.password_reset_token == token_hash)
                    & users.c.deleted_at.is_(None)
                )
                .values(
                    hashed_password=hashed_password,
                    password_reset_token=None,
                    password_reset_token_expiry=None,
                    updated_at=stamp,
                )
            )
            conn.commit()
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_by_reset_token(self, token_hash: str) -> Account | None:
        """Live account holding this reset-token hash. Expiry is the caller's check."""
        query = users.select().where(
            (users.c.password_reset_token == token_hash) & users.c.deleted_at.is_(None)
        )
        with self.engine.connect() as conn:
            row = conn.execute(query).first()
        return _row_to_account(row) if row is not None else None

    def find_by_email(self, email: str, include_deleted: bool = False) -> Account | None:
        """Exact (case-sensitive) email lookup. Live accounts only by default."""
        query = users.select().where(users.c.email == email)
        if not include_deleted:
            query = query.where(users.c.deleted_at.is_(None))
        # With include_deleted there may be several historic rows; newest first.
        query = query.order_by(users.c.id.desc())
        with self.engine.connect() as conn:
            row = conn.execute(query).first()
        return _row_to_account(row) if row is not None else None

    def find_by_id(self, account_id: int) -> Account | None:
        """Primary key lookup. Returns soft-deleted accounts too."""
        with self.engine.connect() as conn:
            row = conn.execute(users.select().where(users.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def account_exists(self, email: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                users.select().with_only_columns(users.c.id).where(
                    (users.c.email == email) & users.c.deleted_at.is_(None)
                )
            ).first()
        return row is not None

    def list_accounts(self, include_deleted: bool = False) -> list[Account]:
        """Return accounts ordered by id."""
        query = users.select().order_by(users.c.id)
        if not include_deleted:
            query = query.where(users.c.deleted_at.is_(None))
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_account(r) for r in rows]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _check_fields(fields: dict) -> None:
    # Column names come from this whitelist, never from raw request keys.
    unknown = set(fields) - _WRITABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown account fields: {sorted(unknown)!r}")


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        name=row.name,
        image=row.image,
        hashed_password=row.hashed_password,
        provider=row.provider,
        provider_id=row.provider_id,
        email_verified=row.email_verified,
        role_id=row.role_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
        deleted_at=row.deleted_at,
        last_login=row.last_login,
        password_reset_token=row.password_reset_token,
        password_reset_token_expiry=row.password_reset_token_expiry,
    )
