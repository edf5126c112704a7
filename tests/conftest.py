"""
tests/conftest.py -- Shared test fixtures for Keystone unit and integration tests.

This module provides:
  - engine / stores / service: isolated in-memory DB per test for unit tests
  - api: one TestClient per test module, wired to a named shared-memory DB,
    with an admin account (admin:full_access) already created
  - client: the module's TestClient with an empty cookie jar for each test

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the integration tests because TestClient runs sync route handlers in a thread
pool. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

Environment must be set before any api/auth/core import:
  DEBUG=true        -> signing secrets are auto-generated, cookies not Secure
  BCRYPT_ROUNDS=4   -> the bcrypt minimum, keeps the suite fast
  *_RATE_LIMIT      -> high enough that the suite never trips a 429
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from unittest.mock import MagicMock

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("REGISTER_RATE_LIMIT", "1000/minute")
os.environ.setdefault("PASSWORD_RESET_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app, wire_auth
from auth.passwords import PasswordHasher
from auth.permissions import ALL_PERMISSIONS, FULL_ACCESS
from auth.roles import RoleStore
from auth.schema import create_db_engine
from auth.service import AuthService
from auth.sessions import SessionStore
from auth.store import AccountStore
from auth.tokens import TokenIssuer
from core.config import TokenConfig, get_settings

ADMIN_EMAIL = "admin@keystone.test"
ADMIN_PASSWORD = "adminpass123"

# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine():
    eng = create_db_engine("sqlite:///:memory:")
    yield eng
    eng.dispose()


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def token_config() -> TokenConfig:
    return TokenConfig(access_secret="a" * 40, refresh_secret="r" * 40)


@pytest.fixture
def issuer(token_config: TokenConfig) -> TokenIssuer:
    return TokenIssuer(token_config)


@pytest.fixture
def accounts(engine) -> AccountStore:
    return AccountStore(engine)


@pytest.fixture
def roles(engine) -> RoleStore:
    return RoleStore(engine)


@pytest.fixture
def sessions(engine) -> SessionStore:
    return SessionStore(engine)


@pytest.fixture
def service(accounts, roles, sessions, hasher, issuer) -> AuthService:
    return AuthService(accounts, roles, sessions, hasher, issuer)


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


@dataclass
class ApiContext:
    client: TestClient
    service: AuthService
    admin_token: str
    admin_id: int

    def bearer(self, token: str | None = None) -> dict[str, str]:
        return {"Authorization": f"Bearer {token or self.admin_token}"}


def _patch_lifespan(engine):
    """Return an async context manager that replaces the real lifespan.

    Wires the test engine into app.state through the same wire_auth() the real
    lifespan uses, and mocks the OAuth registry to prevent network calls.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_auth(app, get_settings(), engine)
        app.state.oauth = MagicMock()
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api(request) -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for one test module.

    The admin account holds a role with admin:full_access and the whole
    permission catalogue is seeded, so permission-gated routes can be tested
    against both privileged and unprivileged callers.
    """
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    engine = create_db_engine(f"sqlite:///file:test_auth_{suffix}?mode=memory&cache=shared&uri=true")

    app.router.lifespan_context = _patch_lifespan(engine)
    with TestClient(app, raise_server_exceptions=True) as client:
        service: AuthService = app.state.auth_service
        service.roles.seed_permissions(ALL_PERMISSIONS)
        admin_role = service.roles.create_role("admin", "Super admin", [FULL_ACCESS])
        admin = service.register(ADMIN_EMAIL, ADMIN_PASSWORD, name="Admin")
        admin = service.accounts.assign_role(admin.id, admin_role.id)
        token = service.issuer.issue_access_token(admin, service.permissions_for(admin))
        yield ApiContext(client=client, service=service, admin_token=token, admin_id=admin.id)

    engine.dispose()


@pytest.fixture
def client(api: ApiContext) -> TestClient:
    """The module's TestClient with an empty cookie jar."""
    api.client.cookies.clear()
    return api.client


def register_and_login(client: TestClient, email: str, password: str = "secret123") -> dict:
    """Register an account over HTTP, log in, and return the login payload's data dict."""
    resp = client.post("/api/v1/auth/register", json={"email": email, "password": password})
    assert resp.status_code == 201, resp.text
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]
