"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores and services do the work. Timestamps are ISO 8601 UTC strings,
the same representation the stores persist.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Account:
    """An identity record.

    hashed_password is None for federated-only accounts (no local password).
    provider / provider_id are None until the account signs in through an
    external identity provider at least once.

    password_reset_token and password_reset_token_expiry exist on the record
    but are never serialized -- see auth.service.sanitize_account().
    """

    email: str
    id: int | None = None
    name: str | None = None
    image: str | None = None
    hashed_password: str | None = None  # None = federated-only account
    provider: str | None = None  # "google", "github"
    provider_id: str | None = None  # provider's stable subject id
    email_verified: str | None = None
    role_id: int | None = None
    created_at: str | None = None
    updated_at: str | None = None
    deleted_at: str | None = None
    last_login: str | None = None
    password_reset_token: str | None = None
    password_reset_token_expiry: str | None = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass
class Permission:
    """An atomic capability named resource:action (e.g. "blogs:create")."""

    name: str
    id: int | None = None
    description: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    deleted_at: str | None = None


@dataclass
class Role:
    """A named permission bundle. permissions holds permission names."""

    name: str
    id: int | None = None
    description: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    deleted_at: str | None = None
    permissions: list[str] = field(default_factory=list)


@dataclass
class Session:
    """Server-side proof of a live login.

    id is the opaque bearer value stored client-side in the sessionId cookie.
    """

    id: str
    user_id: int
    expires_at: str
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class TokenClaims:
    """Verified JWT payload. kind is "access" or "refresh"."""

    user_id: int
    email: str
    role_id: int | None
    permissions: tuple[str, ...]
    kind: str
    issued_at: int
    expires_at: int


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
