"""
tests/test_oauth.py -- Unit tests for auth/oauth.py identity extraction and
the OAuth callback route.

The provider HTTP client is replaced with a small fake; no network calls.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from auth.oauth import build_oauth, get_enabled_providers, get_oauth_user_info
from auth.tokens import SESSION_COOKIE
from core.config import Settings
from tests.conftest import ApiContext


class _FakeResponse:
    def __init__(self, payload):
        self._payload = payload

    def raise_for_status(self) -> None:
        return None

    def json(self):
        return self._payload


class _FakeGitHub:
    def __init__(self, profile: dict, emails: list[dict]):
        self._responses = {"user": profile, "user/emails": emails}

    async def get(self, path: str, token=None):
        return _FakeResponse(self._responses[path])


def _settings(**overrides) -> Settings:
    return Settings(debug=True, **overrides)


# ---------------------------------------------------------------------------
# Provider registry
# ---------------------------------------------------------------------------


def test_no_providers_configured():
    settings = _settings()
    assert get_enabled_providers(settings) == []
    assert build_oauth(settings).create_client("google") is None


def test_configured_providers_listed():
    settings = _settings(github_client_id="id", github_client_secret="secret")
    assert get_enabled_providers(settings) == [{"name": "github", "label": "GitHub"}]
    assert build_oauth(settings).create_client("github") is not None


# ---------------------------------------------------------------------------
# Identity extraction
# ---------------------------------------------------------------------------


def test_github_primary_verified_email():
    client = _FakeGitHub(
        {"id": 42, "login": "octo", "name": None, "avatar_url": "http://avatar"},
        [
            {"email": "old@example.com", "primary": False, "verified": True},
            {"email": "octo@example.com", "primary": True, "verified": True},
        ],
    )
    identity = asyncio.run(get_oauth_user_info(client, "github", {}))
    assert identity.email == "octo@example.com"
    assert identity.subject == "42"
    assert identity.name == "octo"
    assert identity.image == "http://avatar"


def test_github_unverified_email_rejected():
    client = _FakeGitHub({"id": 1}, [{"email": "x@example.com", "primary": True, "verified": False}])
    with pytest.raises(ValueError):
        asyncio.run(get_oauth_user_info(client, "github", {}))


def test_google_userinfo():
    token = {"userinfo": {"email": "g@example.com", "email_verified": True, "sub": "g-1", "name": "G"}}
    identity = asyncio.run(get_oauth_user_info(None, "google", token))
    assert identity.email == "g@example.com"
    assert identity.subject == "g-1"


@pytest.mark.parametrize(
    "token",
    [
        {},
        {"userinfo": {"email": "g@example.com", "sub": "g-1"}},
        {"userinfo": {"email_verified": True, "sub": "g-1"}},
    ],
)
def test_google_incomplete_userinfo_rejected(token):
    with pytest.raises(ValueError):
        asyncio.run(get_oauth_user_info(None, "google", token))


def test_unknown_provider_rejected():
    with pytest.raises(ValueError):
        asyncio.run(get_oauth_user_info(None, "myspace", {}))


# ---------------------------------------------------------------------------
# Callback route
# ---------------------------------------------------------------------------


def test_callback_starts_session(client: TestClient, api: ApiContext, monkeypatch) -> None:
    provider_client = MagicMock()
    provider_client.authorize_access_token = AsyncMock(
        return_value={"userinfo": {"email": "cb@example.com", "email_verified": True, "sub": "g-77"}}
    )
    monkeypatch.setattr(client.app.state, "oauth", MagicMock(create_client=MagicMock(return_value=provider_client)))

    resp = client.get("/api/v1/auth/oauth/google/callback", follow_redirects=False)
    assert resp.status_code == 302
    assert SESSION_COOKIE in resp.cookies
    account = api.service.accounts.find_by_email("cb@example.com")
    assert account.provider == "google"
    assert account.hashed_password is None


def test_callback_unknown_provider_404(client: TestClient, monkeypatch) -> None:
    monkeypatch.setattr(client.app.state, "oauth", MagicMock(create_client=MagicMock(return_value=None)))
    resp = client.get("/api/v1/auth/oauth/nowhere/callback", follow_redirects=False)
    assert resp.status_code == 404
