"""
api/routes/v1/users.py -- Account administration and password endpoints.

Routes:
  GET    /api/v1/users                     -- list accounts (?include_deleted=true needs users:view_deleted)
  PUT    /api/v1/users/{user_id}/role      -- assign or clear a role
  DELETE /api/v1/users/{user_id}           -- soft delete and revoke all sessions
  POST   /api/v1/users/{user_id}/restore   -- undo soft delete
  PATCH  /api/v1/users/{user_id}/change-password -- owner only; revokes all sessions
  POST   /api/v1/users/forgot-password     -- issue a reset token (public, rate limited)
  POST   /api/v1/users/reset-password      -- redeem a reset token (public, rate limited)

Self-service profile edits go through PUT /api/v1/auth/me; the admin routes
here are gated by users:* permissions.

[Self-lockout guard] An administrator cannot delete their own account here.

[Enumeration guard] forgot-password answers the same way whether or not the
email belongs to an account.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, password_reset_limit
from api.models import (
    AccountEnvelope,
    AccountListEnvelope,
    AccountResponse,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    MessageResponse,
    ResetPasswordRequest,
    RoleAssign,
)
from auth.dependencies import enforce_route_permissions, get_auth_service, get_current_account
from auth.models import Account
from auth.permissions import USERS_VIEW_DELETED, is_authorized
from auth.tokens import clear_auth_cookies
from core.errors import ForbiddenError, NotFoundError, ValidationError

logger = logging.getLogger("keystone.api")

router = APIRouter(dependencies=[Depends(enforce_route_permissions)])

_RESET_REQUESTED = "If the email is registered, a password reset link has been sent."


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


@router.get("/users", response_model=AccountListEnvelope)
def list_users(request: Request, include_deleted: bool = False) -> AccountListEnvelope:
    if include_deleted and not is_authorized(request.state.permissions, {USERS_VIEW_DELETED}):
        raise ForbiddenError(f"Access denied. Missing permissions: {USERS_VIEW_DELETED}")
    accounts = get_auth_service(request).accounts.list_accounts(include_deleted=include_deleted)
    return AccountListEnvelope(data=[AccountResponse.from_account(a) for a in accounts])


@router.put("/users/{user_id}/role", response_model=AccountEnvelope)
def assign_role(request: Request, user_id: int, body: RoleAssign) -> AccountEnvelope:
    """Attach a live role to an account, or clear it with role_id=null.

    Takes effect on the account's next login or session refresh; access
    tokens already issued keep their old permission claims until they expire.
    """
    service = get_auth_service(request)
    if body.role_id is not None:
        role = service.roles.get_role(body.role_id)
        if role is None or role.deleted_at is not None:
            raise NotFoundError("Role not found.")
    account = service.accounts.assign_role(user_id, body.role_id)
    return AccountEnvelope(data=AccountResponse.from_account(account), message="Role assigned.")


@router.delete("/users/{user_id}", response_model=AccountEnvelope)
def delete_user(
    request: Request,
    user_id: int,
    current: Account = Depends(get_current_account),
) -> AccountEnvelope:
    if user_id == current.id:
        raise ValidationError("You cannot delete your own account.")
    service = get_auth_service(request)
    account = service.accounts.soft_delete_account(user_id)
    service.logout_everywhere(user_id)
    return AccountEnvelope(data=AccountResponse.from_account(account), message="User deleted successfully.")


@router.post("/users/{user_id}/restore", response_model=AccountEnvelope)
def restore_user(request: Request, user_id: int) -> AccountEnvelope:
    account = get_auth_service(request).accounts.restore_account(user_id)
    return AccountEnvelope(data=AccountResponse.from_account(account), message="User restored successfully.")


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


@router.patch("/users/{user_id}/change-password", response_model=MessageResponse)
@limiter.limit(password_reset_limit)
def change_password(
    request: Request,
    user_id: int,
    body: ChangePasswordRequest,
    current: Account = Depends(get_current_account),
) -> JSONResponse:
    """Change the caller's own password. The caller's cookies are cleared
    because every session, including the current one, is revoked."""
    if user_id != current.id:
        raise ForbiddenError("You can only change your own password.")
    get_auth_service(request).change_password(user_id, body.current_password, body.new_password)
    resp = JSONResponse(content=MessageResponse(message="Password changed successfully.").model_dump())
    clear_auth_cookies(resp, secure=bool(request.app.state.settings.secure_cookies))
    return resp


@router.post("/users/forgot-password", response_model=MessageResponse)
@limiter.limit(password_reset_limit)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    token = get_auth_service(request).request_password_reset(body.email)
    if token is not None:
        _deliver_reset_token(request, body.email, token)
    return MessageResponse(message=_RESET_REQUESTED)


@router.post("/users/reset-password", response_model=MessageResponse)
@limiter.limit(password_reset_limit)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    """Set a new password from a reset token. 400 if the token is unknown, expired or used."""
    get_auth_service(request).reset_password(body.token, body.new_password)
    return MessageResponse(message="Password has been reset successfully.")


def _deliver_reset_token(request: Request, email: str, token: str) -> None:
    # No mail transport is configured; DEBUG logs the token so it can be used locally.
    if request.app.state.settings.debug:
        logger.info("Password reset token for %s: %s", email, token)
    else:
        logger.info("Password reset token issued for %s", email)
