"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and authorization.

Request gating works in one place: enforce_route_permissions() is attached
as a router-level dependency (APIRouter(dependencies=[...])) on every API
router. For each request it:
  1. finds the matched route template and method,
  2. looks up the requirement in auth.permissions.ROUTE_PERMISSIONS,
  3. returns immediately for PUBLIC routes,
  4. otherwise authenticates the caller (401 on failure),
  5. resolves the caller's permissions from their role, and
  6. raises 403 unless auth.permissions.is_authorized() allows it.
The authenticated account and permission set are cached on request.state so
handlers can take them through get_current_account() without a second lookup.

Token sources, in priority order:
  1. Authorization: Bearer <token> header -- API clients.
  2. accessToken cookie -- browser clients (set at login).

Failures raise core.errors exceptions, not HTTPException, so the handler in
api/main.py can clear stale auth cookies on every 401.

Layer rule: may import from fastapi (this module is part of the DI system).
No imports from api/.
"""

from __future__ import annotations

import logging

from fastapi import Request

from auth.models import Account
from auth.permissions import PUBLIC, is_authorized, missing_permissions, route_requirement
from auth.service import AuthService
from auth.tokens import ACCESS_COOKIE
from core.errors import ForbiddenError, UnauthorizedError

logger = logging.getLogger("keystone.auth")


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def extract_access_token(request: Request) -> str | None:
    """Bearer header first, accessToken cookie as fallback."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    return request.cookies.get(ACCESS_COOKIE) or None


def _authenticate(request: Request) -> Account:
    """Verify the access token and load the live account. Raises UnauthorizedError."""
    cached = getattr(request.state, "account", None)
    if cached is not None:
        return cached
    token = extract_access_token(request)
    if not token:
        raise UnauthorizedError("Access token not found.")
    service = get_auth_service(request)
    claims = service.issuer.verify(token)
    account = service.current_account(claims)
    request.state.account = account
    request.state.permissions = service.permissions_for(account)
    return account


def get_current_account(request: Request) -> Account:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(account: Account = Depends(get_current_account)): ...
    """
    return _authenticate(request)


def get_current_permissions(request: Request) -> frozenset[str]:
    _authenticate(request)
    return request.state.permissions


def enforce_route_permissions(request: Request) -> None:
    """Router-level gate. See module docstring."""
    route = request.scope.get("route")
    if route is None:
        # Not matched by an APIRoute (e.g. mounted app); nothing to enforce here.
        return
    required = route_requirement(request.method, route.path)
    if required is PUBLIC:
        return
    account = _authenticate(request)
    granted = request.state.permissions
    if not is_authorized(granted, required):
        missing = missing_permissions(granted, required)
        logger.warning(
            "Permission denied for user_id=%s on %s %s (missing: %s)",
            account.id,
            request.method,
            route.path,
            ", ".join(missing),
        )
        raise ForbiddenError(f"Access denied. Missing permissions: {', '.join(missing)}")
