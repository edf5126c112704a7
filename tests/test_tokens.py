"""Unit tests for auth/tokens.py -- access/refresh JWT issue and verification.

Covers:
  - claims round-trip (identity, role, sorted permissions, type)
  - distinct secrets per kind: an access token never verifies as refresh and vice versa
  - expiry, tampering, and a foreign secret all raise InvalidTokenError
  - reissue_access_token copies identity claims from a refresh token
  - cookie helpers set httpOnly / SameSite=strict / path=/ and clear both cookies
"""

from __future__ import annotations

import pytest
from fastapi.responses import JSONResponse

from auth.models import Account
from auth.tokens import ACCESS, ACCESS_COOKIE, REFRESH, SESSION_COOKIE, TokenIssuer, clear_auth_cookies, set_auth_cookies
from core.config import TokenConfig
from core.errors import InvalidTokenError, UnauthorizedError


@pytest.fixture
def alice() -> Account:
    return Account(email="alice@example.com", id=7, role_id=3)


def test_access_token_round_trip(issuer: TokenIssuer, alice: Account):
    token = issuer.issue_access_token(alice, {"users:read", "blogs:create"})
    claims = issuer.verify(token)
    assert claims.user_id == 7
    assert claims.email == "alice@example.com"
    assert claims.role_id == 3
    assert claims.permissions == ("blogs:create", "users:read")
    assert claims.kind == ACCESS
    assert claims.expires_at - claims.issued_at == 900


def test_token_pair_kinds_are_not_interchangeable(issuer: TokenIssuer, alice: Account):
    pair = issuer.issue_token_pair(alice)
    assert issuer.verify(pair.refresh_token, REFRESH).kind == REFRESH
    with pytest.raises(InvalidTokenError):
        issuer.verify(pair.access_token, REFRESH)
    with pytest.raises(InvalidTokenError):
        issuer.verify(pair.refresh_token, ACCESS)


def test_invalid_token_is_unauthorized(issuer: TokenIssuer):
    with pytest.raises(UnauthorizedError):
        issuer.verify("not.a.jwt")


def test_empty_token_rejected(issuer: TokenIssuer):
    with pytest.raises(InvalidTokenError):
        issuer.verify("")


def test_expired_token_rejected(alice: Account):
    expired = TokenIssuer(TokenConfig(access_secret="a" * 40, refresh_secret="r" * 40, access_expire_seconds=-10))
    token = expired.issue_access_token(alice)
    with pytest.raises(InvalidTokenError):
        expired.verify(token)


def test_token_signed_with_other_secret_rejected(issuer: TokenIssuer, alice: Account):
    other = TokenIssuer(TokenConfig(access_secret="x" * 40, refresh_secret="y" * 40))
    with pytest.raises(InvalidTokenError):
        issuer.verify(other.issue_access_token(alice))


def test_tampered_token_rejected(issuer: TokenIssuer, alice: Account):
    token = issuer.issue_access_token(alice)
    header, payload, signature = token.split(".")
    tampered = f"{header}.{payload}.{signature[::-1]}"
    with pytest.raises(InvalidTokenError):
        issuer.verify(tampered)


def test_try_verify_returns_none_on_failure(issuer: TokenIssuer, alice: Account):
    assert issuer.try_verify(None) is None
    assert issuer.try_verify("garbage") is None
    assert issuer.try_verify(issuer.issue_access_token(alice)).user_id == 7


def test_reissue_access_token_copies_identity(issuer: TokenIssuer, alice: Account):
    pair = issuer.issue_token_pair(alice, {"roles:read"})
    claims = issuer.verify(issuer.reissue_access_token(pair.refresh_token))
    assert claims.user_id == 7
    assert claims.permissions == ("roles:read",)


def test_reissue_rejects_access_token(issuer: TokenIssuer, alice: Account):
    with pytest.raises(InvalidTokenError):
        issuer.reissue_access_token(issuer.issue_access_token(alice))


def test_set_auth_cookies_flags():
    resp = JSONResponse({})
    set_auth_cookies(resp, "tok", access_max_age=900, session_id="sid", session_max_age=3600)
    cookies = resp.headers.getlist("set-cookie")
    assert len(cookies) == 2
    access = next(c for c in cookies if c.startswith(f"{ACCESS_COOKIE}="))
    session = next(c for c in cookies if c.startswith(f"{SESSION_COOKIE}="))
    for cookie in (access, session):
        assert "HttpOnly" in cookie
        assert "SameSite=strict" in cookie
        assert "Path=/" in cookie
        assert "Secure" in cookie
    assert "Max-Age=900" in access
    assert "Max-Age=3600" in session


def test_clear_auth_cookies_expires_both():
    resp = JSONResponse({})
    clear_auth_cookies(resp, secure=False)
    cookies = resp.headers.getlist("set-cookie")
    assert {c.split("=")[0] for c in cookies} == {ACCESS_COOKIE, SESSION_COOKIE}
    assert all("Max-Age=0" in c for c in cookies)
