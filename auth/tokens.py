"""
auth/tokens.py -- JWT issuance/verification and auth cookie helpers.

Security design decisions:
  JWT: python-jose with HS256 by default. Two token kinds exist:
       access  -- short-lived (15 minutes), sent on every request.
       refresh -- long-lived (7 days), used only to mint access tokens.
       Each kind is signed with its own secret and carries a "type" claim, so
       a refresh token can never be replayed as an access token (and vice
       versa): the signature check fails first, the type check second.

  Config injection: TokenIssuer takes a frozen core.config.TokenConfig built
       once at startup. Nothing here reads environment variables or Settings.

  Staleness: reissue_access_token() copies identity and permission claims
       from the refresh token. A permission change is therefore not visible
       in reissued access tokens until a new refresh token is issued. The
       browser flow avoids this by refreshing through server-side sessions
       (AuthService.refresh), which re-resolves permissions every time.

Cookies: set_auth_cookies() / clear_auth_cookies() own the cookie names and
flags (httponly, samesite=strict, path=/). Routes and exception handlers call
them rather than repeating the flags.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import Account, TokenClaims, TokenPair
from core.config import TokenConfig
from core.errors import InvalidTokenError

logger = logging.getLogger("keystone.auth")

ACCESS = "access"
REFRESH = "refresh"

ACCESS_COOKIE = "accessToken"
SESSION_COOKIE = "sessionId"

_REQUIRED_CLAIMS = ("user_id", "email", "type", "exp", "iat")


class TokenIssuer:
    """Creates and verifies signed, time-limited bearer tokens.

    Stateless: verification is signature + expiry only, safe to share across
    threads and requests.
    """

    def __init__(self, config: TokenConfig) -> None:
        self.config = config

    @property
    def access_expire_seconds(self) -> int:
        return self.config.access_expire_seconds

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue_access_token(self, account: Account, permissions: Iterable[str] = ()) -> str:
        """Encode an access token for account. permissions is the resolved set (empty if no role)."""
        return self._encode(_identity_claims(account.id, account.email, account.role_id, permissions), ACCESS)

    def issue_token_pair(self, account: Account, permissions: Iterable[str] = ()) -> TokenPair:
        claims = _identity_claims(account.id, account.email, account.role_id, permissions)
        return TokenPair(access_token=self._encode(claims, ACCESS), refresh_token=self._encode(claims, REFRESH))

    def reissue_access_token(self, refresh_token: str) -> str:
        """Verify a refresh token and mint an access token with the same identity claims.

        Raises InvalidTokenError if the refresh token is invalid or expired.
        """
        claims = self.verify(refresh_token, REFRESH)
        return self._encode(
            _identity_claims(claims.user_id, claims.email, claims.role_id, claims.permissions),
            ACCESS,
        )

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify(self, token: str, kind: str = ACCESS) -> TokenClaims:
        """Decode and verify a token of the given kind.

        Raises InvalidTokenError on a bad signature, expiry, missing claims or
        a token of the other kind.
        """
        if not token:
            raise InvalidTokenError("Token not provided.")
        try:
            payload = jwt.decode(token, self._secret(kind), algorithms=[self.config.algorithm])
        except JWTError as exc:
            raise InvalidTokenError(f"Invalid {kind} token.") from exc
        if any(name not in payload for name in _REQUIRED_CLAIMS) or payload["type"] != kind:
            raise InvalidTokenError(f"Invalid {kind} token.")
        return TokenClaims(
            user_id=int(payload["user_id"]),
            email=payload["email"],
            role_id=payload.get("role_id"),
            permissions=tuple(payload.get("permissions") or ()),
            kind=kind,
            issued_at=int(payload["iat"]),
            expires_at=int(payload["exp"]),
        )

    def try_verify(self, token: str | None, kind: str = ACCESS) -> TokenClaims | None:
        """Soft variant of verify(): None on any failure."""
        if not token:
            return None
        try:
            return self.verify(token, kind)
        except InvalidTokenError:
            return None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _secret(self, kind: str) -> str:
        if kind == ACCESS:
            return self.config.access_secret
        if kind == REFRESH:
            return self.config.refresh_secret
        raise ValueError(f"Unknown token kind: {kind!r}")

    def _encode(self, claims: dict, kind: str) -> str:
        lifetime = self.config.access_expire_seconds if kind == ACCESS else self.config.refresh_expire_seconds
        issued = datetime.now(timezone.utc)
        payload = dict(
            claims,
            type=kind,
            iat=int(issued.timestamp()),
            exp=issued + timedelta(seconds=lifetime),
        )
        return jwt.encode(payload, self._secret(kind), algorithm=self.config.algorithm)


def _identity_claims(user_id: int, email: str, role_id: int | None, permissions: Iterable[str]) -> dict:
    return {
        "sub": str(user_id),
        "user_id": user_id,
        "email": email,
        "role_id": role_id,
        "permissions": sorted(permissions),
    }


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookies(
    response,
    access_token: str,
    access_max_age: int,
    session_id: str | None = None,
    session_max_age: int = 0,
    secure: bool = True,
) -> None:
    """Write the access token and (optionally) the session id as httpOnly cookies.

    httponly=True: JS cannot read the cookies (XSS mitigation).
    samesite="strict": never sent on cross-site requests (CSRF mitigation).
    path="/": every route sees the cookie.
    max_age: matches the token / session expiry so both expire together.
    """
    response.set_cookie(
        ACCESS_COOKIE,
        value=access_token,
        httponly=True,
        samesite="strict",
        secure=secure,
        path="/",
        max_age=access_max_age,
    )
    if session_id is not None:
        response.set_cookie(
            SESSION_COOKIE,
            value=session_id,
            httponly=True,
            samesite="strict",
            secure=secure,
            path="/",
            max_age=session_max_age,
        )


def clear_auth_cookies(response, secure: bool = True) -> None:
    """Delete both auth cookies. Flags must match the ones they were set with."""
    for name in (ACCESS_COOKIE, SESSION_COOKIE):
        response.delete_cookie(name, path="/", secure=secure, httponly=True, samesite="strict")
