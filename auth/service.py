"""
auth/service.py -- Auth gateway flows: register, login, refresh, logout, profile, passwords.

Pattern: Service layer. AuthService orchestrates the stores and the token
issuer; api/routes/v1/auth.py is a thin HTTP shell around it. Failures are
raised as core.errors exceptions and mapped to HTTP in api/main.py.

Login continuity uses server-side sessions. The session id (cookie) is the
refresh credential:
  login    -> access token + new session
  refresh  -> session rotated (old id deleted, new id issued) + new access token
  logout   -> session deleted (idempotent)
Refresh re-resolves the account's permissions, so role changes take effect on
the next refresh. Access tokens are not server-revocable and stay valid until
they expire, even after logout.

Timing equalization: authenticate() runs bcrypt whether or not the email
exists, and every failure produces the same UnauthorizedError message, so
neither response body nor response time reveals which emails are registered.

Password reset: request_password_reset() returns a random token for delivery
and stores only its sha256 with an expiry. reset_password() consumes it in a
single conditional UPDATE. A password change or reset revokes every session
of the account.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone

from auth.models import Account, Session, TokenClaims
from auth.passwords import PasswordHasher
from auth.roles import RoleStore
from auth.schema import from_iso, now_iso, to_iso
from auth.sessions import DEFAULT_TTL_HOURS, SessionStore
from auth.store import AccountStore
from auth.tokens import TokenIssuer
from core.errors import ConflictError, NotFoundError, UnauthorizedError, ValidationError

logger = logging.getLogger("keystone.auth")

_BAD_CREDENTIALS = "Invalid credentials."
_BAD_RESET_TOKEN = "Invalid or expired reset token."

# Never serialized, on any response path.
_SENSITIVE_FIELDS = ("hashed_password", "password_reset_token", "password_reset_token_expiry")

# Fields an owner may change through PUT /auth/me.
PROFILE_FIELDS = frozenset({"name", "image"})


def sanitize_account(account: Account) -> dict:
    """Return the account as a dict with password and reset-token fields removed."""
    data = asdict(account)
    for name in _SENSITIVE_FIELDS:
        data.pop(name, None)
    return data


def _hash_reset_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class LoginResult:
    account: Account
    access_token: str
    session: Session
    permissions: frozenset[str]


class AuthService:
    """Request-facing orchestration over the auth stores."""

    def __init__(
        self,
        accounts: AccountStore,
        roles: RoleStore,
        sessions: SessionStore,
        hasher: PasswordHasher,
        issuer: TokenIssuer,
        session_ttl_hours: int = DEFAULT_TTL_HOURS,
        default_role: str = "",
        reset_ttl_minutes: int = 60,
    ) -> None:
        self.accounts = accounts
        self.roles = roles
        self.sessions = sessions
        self.hasher = hasher
        self.issuer = issuer
        self.session_ttl_hours = session_ttl_hours
        self.default_role = default_role
        self.reset_ttl_minutes = reset_ttl_minutes

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, email: str, password: str | None = None, **profile) -> Account:
        """Create an account. ConflictError if the email is taken by a live account.

        The existence check is only a fast path for a friendlier error; the
        unique index in the store decides races between concurrent requests.
        """
        if self.accounts.account_exists(email):
            raise ConflictError("User with this email already exists.")
        hashed = self.hasher.hash(password) if password else None
        if self.default_role and "role_id" not in profile:
            role = self.roles.get_role_by_name(self.default_role)
            if role is not None:
                profile["role_id"] = role.id
        account = self.accounts.create_account(email, hashed_password=hashed, **profile)
        logger.info("Registered user_id=%s", account.id)
        return account

    def email_exists(self, email: str) -> bool:
        return self.accounts.account_exists(email)

    # ------------------------------------------------------------------
    # Password login
    # ------------------------------------------------------------------

    def authenticate(self, email: str, password: str) -> Account:
        """Verify credentials. One UnauthorizedError for every failure mode."""
        account = self.accounts.find_by_email(email)
        if account is None or account.hashed_password is None:
            # Equalize timing -- do NOT return early before running bcrypt
            self.hasher.verify_dummy(password)
            raise UnauthorizedError(_BAD_CREDENTIALS)
        if not self.hasher.verify(password, account.hashed_password):
            raise UnauthorizedError(_BAD_CREDENTIALS)
        return account

    def login(self, email: str, password: str) -> LoginResult:
        account = self.authenticate(email, password)
        return self._start_session(account)

    # ------------------------------------------------------------------
    # Federated login
    # ------------------------------------------------------------------

    def federated_login(
        self,
        email: str,
        provider: str,
        provider_id: str,
        name: str | None = None,
        image: str | None = None,
        email_verified: str | None = None,
    ) -> Account:
        """Find-or-create an account for an identity asserted by an external provider.

        Existing account not yet linked to this provider: the provider fields
        are filled in and blank profile fields are completed. The existing
        name and image are kept when already set. New account: created without
        a password hash.
        """
        account = self.accounts.find_by_email(email)
        if account is None:
            account = self.register(
                email,
                None,
                name=name,
                image=image,
                provider=provider,
                provider_id=provider_id,
                email_verified=email_verified or now_iso(),
            )
            logger.info("Created federated user_id=%s via %s", account.id, provider)
            return account
        if account.provider == provider:
            return account
        account = self.accounts.update_account(
            account.id,
            provider=provider,
            provider_id=provider_id,
            name=account.name or name,
            image=account.image or image,
            email_verified=account.email_verified or email_verified or now_iso(),
        )
        logger.info("Linked user_id=%s to %s", account.id, provider)
        return account

    def federated_session(self, account: Account) -> LoginResult:
        """Start a session for an account that authenticated through a provider."""
        return self._start_session(account)

    # ------------------------------------------------------------------
    # Refresh / logout
    # ------------------------------------------------------------------

    def refresh(self, session_id: str | None) -> LoginResult:
        """Rotate the session and issue a new access token.

        UnauthorizedError when the session cookie is absent, unknown, expired,
        already rotated, or its account no longer exists.
        """
        if not session_id:
            raise UnauthorizedError("Session not found.")
        current = self.sessions.get_session(session_id)
        if current is None:
            raise UnauthorizedError("Invalid or expired session.")
        account = self.accounts.find_by_id(current.user_id)
        if account is None or account.is_deleted:
            self.sessions.delete_session(session_id)
            raise UnauthorizedError("Invalid or expired session.")
        rotated = self.sessions.rotate_session(session_id, self.session_ttl_hours)
        if rotated is None:
            raise UnauthorizedError("Invalid or expired session.")
        permissions = self.permissions_for(account)
        token = self.issuer.issue_access_token(account, permissions)
        return LoginResult(account=account, access_token=token, session=rotated, permissions=permissions)

    def logout(self, session_id: str | None) -> None:
        """Delete the session if there is one. Safe to call repeatedly."""
        if session_id:
            self.sessions.delete_session(session_id)

    def logout_everywhere(self, user_id: int) -> None:
        self.sessions.delete_all_sessions_for_account(user_id)

    def check_session(self, session_id: str | None) -> tuple[Account, Session] | None:
        """Liveness probe for a session id. Returns None instead of raising."""
        session = self.sessions.get_session(session_id) if session_id else None
        if session is None:
            return None
        account = self.accounts.find_by_id(session.user_id)
        if account is None or account.is_deleted:
            return None
        return account, session

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def current_account(self, claims: TokenClaims) -> Account:
        """Load the live account behind verified access-token claims."""
        account = self.accounts.find_by_id(claims.user_id)
        if account is None or account.is_deleted:
            raise UnauthorizedError("User no longer exists.")
        return account

    def update_profile(self, user_id: int, fields: dict) -> Account:
        """Owner-only profile edit. Only PROFILE_FIELDS are accepted."""
        updates = {k: v for k, v in fields.items() if k in PROFILE_FIELDS}
        if not updates:
            account = self.accounts.find_by_id(user_id)
            if account is None:
                raise NotFoundError("User not found.")
            return account
        return self.accounts.update_account(user_id, **updates)

    def permissions_for(self, account: Account) -> frozenset[str]:
        return self.roles.resolve_permissions(account.role_id)

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def change_password(self, user_id: int, current_password: str, new_password: str) -> None:
        """Owner password change. Every session of the account is revoked on success."""
        account = self.accounts.find_by_id(user_id)
        if account is None or account.is_deleted:
            raise NotFoundError("User not found.")
        if not self.hasher.verify(current_password, account.hashed_password):
            raise ValidationError("Current password is incorrect.")
        self.accounts.update_account(
            user_id,
            hashed_password=self.hasher.hash(new_password),
            password_reset_token=None,
            password_reset_token_expiry=None,
        )
        self.sessions.delete_all_sessions_for_account(user_id)
        logger.info("Password changed user_id=%s", user_id)

    def request_password_reset(self, email: str) -> str | None:
        """Issue a single-use reset token for a live account.

        Returns the raw token for delivery, or None when no live account uses
        the email. Only the sha256 of the token is stored, and a new request
        replaces any earlier token. Federated-only accounts may use this to
        set a first password.
        """
        account = self.accounts.find_by_email(email)
        if account is None:
            return None
        token = secrets.token_urlsafe(32)
        expiry = datetime.now(timezone.utc) + timedelta(minutes=self.reset_ttl_minutes)
        self.accounts.update_account(
            account.id,
            password_reset_token=_hash_reset_token(token),
            password_reset_token_expiry=to_iso(expiry),
        )
        logger.info("Password reset requested user_id=%s", account.id)
        return token

    def reset_password(self, token: str, new_password: str) -> Account:
        """Redeem a reset token. ValidationError if unknown, expired or already used."""
        token_hash = _hash_reset_token(token)
        account = self.accounts.find_by_reset_token(token_hash)
        if account is None or not account.password_reset_token_expiry:
            raise ValidationError(_BAD_RESET_TOKEN)
        if from_iso(account.password_reset_token_expiry) <= datetime.now(timezone.utc):
            raise ValidationError(_BAD_RESET_TOKEN)
        if not self.accounts.consume_reset_token(account.id, token_hash, self.hasher.hash(new_password)):
            raise ValidationError(_BAD_RESET_TOKEN)
        self.sessions.delete_all_sessions_for_account(account.id)
        logger.info("Password reset completed user_id=%s", account.id)
        return self.accounts.find_by_id(account.id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _start_session(self, account: Account) -> LoginResult:
        permissions = self.permissions_for(account)
        token = self.issuer.issue_access_token(account, permissions)
        session = self.sessions.create_session(account.id, self.session_ttl_hours)
        self.accounts.touch_last_login(account.id)
        logger.info("Login user_id=%s (%d permissions)", account.id, len(permissions))
        return LoginResult(account=account, access_token=token, session=session, permissions=permissions)
