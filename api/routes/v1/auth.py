"""
api/routes/v1/auth.py -- Authentication gateway REST endpoints.

Routes:
  POST /api/v1/auth/register             -- create account (public, rate limited)
  GET  /api/v1/auth/exists?email=        -- email availability (public)
  POST /api/v1/auth/login  (/signin)     -- password login; sets accessToken + sessionId cookies
  POST /api/v1/auth/logout (/signout)    -- deletes session, clears cookies (idempotent)
  POST /api/v1/auth/refresh (/refresh-token) -- rotates session, resets cookies
  GET  /api/v1/auth/me                   -- current account (requires auth)
  PUT  /api/v1/auth/me                   -- edit own profile (requires auth)
  POST /api/v1/auth/logout-all           -- revoke every session of the caller (requires auth)
  GET  /api/v1/auth/verify-session       -- session liveness with user; never errors
  GET  /api/v1/auth/validate             -- session liveness flag; never errors
  POST /api/v1/auth/federated            -- find-or-create federated account (public, rate limited)
  GET  /api/v1/auth/providers            -- configured OAuth providers (public)
  GET  /api/v1/auth/oauth/{provider}/login    -- redirect to provider
  GET  /api/v1/auth/oauth/{provider}/callback -- provider redirect target; starts a session

Access rules live in auth.permissions.ROUTE_PERMISSIONS and are enforced by
the router-level enforce_route_permissions dependency -- not per handler.

Security:
  Login and register are rate-limited per IP; login and signin share one counter.
  Wrong password and unknown email produce the same 401 body.
  Cache-Control: no-store on every response that carries a credential.
"""

from __future__ import annotations

import logging
from typing import Optional

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import limiter, login_limit, register_limit
from api.models import (
    AccountEnvelope,
    AccountResponse,
    ExistsData,
    ExistsEnvelope,
    FederatedLoginRequest,
    LoginData,
    LoginEnvelope,
    LoginRequest,
    MessageResponse,
    OAuthProviderInfo,
    ProfileUpdate,
    RegisterRequest,
    SessionInfo,
    SessionValidity,
)
from auth.dependencies import enforce_route_permissions, get_auth_service, get_current_account
from auth.models import Account
from auth.oauth import get_enabled_providers, get_oauth_user_info
from auth.service import LoginResult
from auth.tokens import SESSION_COOKIE, clear_auth_cookies, set_auth_cookies
from core.errors import NotFoundError, UnauthorizedError, ValidationError

logger = logging.getLogger("keystone.api")

router = APIRouter(dependencies=[Depends(enforce_route_permissions)])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _secure(request: Request) -> bool:
    return bool(request.app.state.settings.secure_cookies)


def _attach_login(request: Request, resp, result: LoginResult) -> None:
    settings = request.app.state.settings
    set_auth_cookies(
        resp,
        result.access_token,
        access_max_age=get_auth_service(request).issuer.access_expire_seconds,
        session_id=result.session.id,
        session_max_age=settings.session_ttl_hours * 3600,
        secure=_secure(request),
    )
    resp.headers["Cache-Control"] = "no-store"


def _login_response(request: Request, result: LoginResult, message: str) -> JSONResponse:
    body = LoginEnvelope(
        data=LoginData(
            user=AccountResponse.from_account(result.account, result.permissions),
            access_token=result.access_token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=get_auth_service(request).issuer.access_expire_seconds,
        ),
        message=message,
    )
    resp = JSONResponse(status_code=200, content=body.model_dump())
    _attach_login(request, resp, result)
    return resp


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AccountEnvelope, status_code=201)
@limiter.limit(register_limit)
def register(request: Request, body: RegisterRequest) -> AccountEnvelope:
    """Create an account. 409 if the email belongs to a live account."""
    service = get_auth_service(request)
    account = service.register(body.email, body.password, name=body.name, image=body.image)
    return AccountEnvelope(data=AccountResponse.from_account(account), message="User created successfully.")


@router.get("/auth/exists", response_model=ExistsEnvelope)
def exists(request: Request, email: Optional[str] = None) -> ExistsEnvelope:
    if not email or not email.strip():
        raise ValidationError("Email is required.")
    found = get_auth_service(request).email_exists(email.strip())
    return ExistsEnvelope(
        data=ExistsData(exists=found),
        message="User exists." if found else "User does not exist.",
    )


# ---------------------------------------------------------------------------
# Login / logout / refresh
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginEnvelope)
@router.post("/auth/signin", response_model=LoginEnvelope, include_in_schema=False)
@limiter.shared_limit(login_limit, scope="login")
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set accessToken and sessionId cookies."""
    result = get_auth_service(request).login(body.email, body.password)
    return _login_response(request, result, "Sign in successful.")


@router.post("/auth/logout", response_model=MessageResponse)
@router.post("/auth/signout", response_model=MessageResponse, include_in_schema=False)
def logout(request: Request) -> JSONResponse:
    """Delete the server session (if any) and clear cookies unconditionally."""
    get_auth_service(request).logout(request.cookies.get(SESSION_COOKIE))
    resp = JSONResponse(content=MessageResponse(message="Sign out successful.").model_dump())
    clear_auth_cookies(resp, secure=_secure(request))
    return resp


@router.post("/auth/refresh", response_model=LoginEnvelope)
@router.post("/auth/refresh-token", response_model=LoginEnvelope, include_in_schema=False)
def refresh(request: Request) -> JSONResponse:
    """Rotate the session cookie and issue a fresh access token.

    The presented session id is single-use: after rotation it no longer
    resolves, so replaying it returns 401.
    """
    result = get_auth_service(request).refresh(request.cookies.get(SESSION_COOKIE))
    return _login_response(request, result, "Token refreshed successfully.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=AccountEnvelope)
def me(request: Request, account: Account = Depends(get_current_account)) -> AccountEnvelope:
    """Return the authenticated account and its resolved permissions."""
    return AccountEnvelope(data=AccountResponse.from_account(account, request.state.permissions))


@router.put("/auth/me", response_model=AccountEnvelope)
def update_me(
    request: Request,
    body: ProfileUpdate,
    account: Account = Depends(get_current_account),
) -> AccountEnvelope:
    """Edit the caller's own profile. Only name and image are editable here."""
    updated = get_auth_service(request).update_profile(account.id, body.model_dump(exclude_unset=True))
    return AccountEnvelope(
        data=AccountResponse.from_account(updated, request.state.permissions),
        message="Profile updated successfully.",
    )


@router.post("/auth/logout-all", response_model=MessageResponse)
def logout_all(request: Request, account: Account = Depends(get_current_account)) -> JSONResponse:
    get_auth_service(request).logout_everywhere(account.id)
    resp = JSONResponse(content=MessageResponse(message="All sessions revoked.").model_dump())
    clear_auth_cookies(resp, secure=_secure(request))
    return resp


# ---------------------------------------------------------------------------
# Session probes -- always 200
# ---------------------------------------------------------------------------


@router.get("/auth/verify-session", response_model=SessionValidity)
def verify_session(request: Request) -> SessionValidity:
    """Report whether the sessionId cookie resolves to a live session, with the owner."""
    try:
        found = get_auth_service(request).check_session(request.cookies.get(SESSION_COOKIE))
    except SQLAlchemyError:
        logger.exception("Session verification failed")
        found = None
    if found is None:
        return SessionValidity(valid=False, message="Invalid or expired session.")
    account, session = found
    return SessionValidity(
        valid=True,
        message="Session is valid.",
        user=AccountResponse.from_account(account),
        session=SessionInfo.from_session(session),
    )


@router.get("/auth/validate", response_model=SessionValidity)
def validate(request: Request) -> SessionValidity:
    session_id = request.cookies.get(SESSION_COOKIE)
    if not session_id:
        return SessionValidity(valid=False, message="No session found.")
    try:
        found = get_auth_service(request).check_session(session_id)
    except SQLAlchemyError:
        logger.exception("Session validation failed")
        return SessionValidity(valid=False, message="Validation failed.")
    if found is None:
        return SessionValidity(valid=False, message="Invalid or expired session.")
    return SessionValidity(valid=True, message="Session is valid.")


# ---------------------------------------------------------------------------
# Federated identity
# ---------------------------------------------------------------------------


@router.post("/auth/federated", response_model=AccountEnvelope)
@limiter.limit(login_limit)
def federated(request: Request, body: FederatedLoginRequest) -> AccountEnvelope:
    """Find or create the account for a provider-asserted identity."""
    account = get_auth_service(request).federated_login(
        email=body.email,
        provider=body.provider,
        provider_id=body.provider_id,
        name=body.name,
        image=body.image,
        email_verified=body.email_verified,
    )
    return AccountEnvelope(data=AccountResponse.from_account(account), message="Federated user processed.")


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers(request: Request) -> list[OAuthProviderInfo]:
    """Configured OAuth providers. Empty list when none are set up."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers(request.app.state.settings)]


@router.get("/auth/oauth/{provider}/login")
async def oauth_login(request: Request, provider: str):
    client = request.app.state.oauth.create_client(provider)
    if client is None:
        raise NotFoundError("Unknown OAuth provider.")
    redirect_uri = request.url_for("oauth_callback", provider=provider)
    return await client.authorize_redirect(request, str(redirect_uri))


@router.get("/auth/oauth/{provider}/callback", name="oauth_callback")
async def oauth_callback(request: Request, provider: str) -> RedirectResponse:
    """Exchange the code, require a verified email, then log the account in."""
    client = request.app.state.oauth.create_client(provider)
    if client is None:
        raise NotFoundError("Unknown OAuth provider.")
    try:
        token = await client.authorize_access_token(request)
        identity = await get_oauth_user_info(client, provider, token)
    except (OAuthError, ValueError) as exc:
        logger.warning("OAuth login via %s failed: %s", provider, exc)
        raise UnauthorizedError("OAuth login failed.") from exc

    service = get_auth_service(request)
    account = service.federated_login(
        email=identity.email,
        provider=provider,
        provider_id=identity.subject,
        name=identity.name,
        image=identity.image,
    )
    result = service.federated_session(account)
    resp = RedirectResponse(request.app.state.settings.oauth_success_redirect, status_code=302)
    _attach_login(request, resp, result)
    return resp
