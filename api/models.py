"""
API request and response models for Keystone REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Sanitization: AccountResponse is an explicit allow-list. It has no password
or reset-token fields, so no response built from it can leak them, whatever
the domain object carries.

Every success body is an envelope {"success": true, "data": ..., "message": ...};
every error body is {"success": false, "message": ...} (see api/main.py).
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Account, Permission, Role, Session
from auth.service import sanitize_account

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@", no whitespace, a dot in the domain. Delivery is
# the real test of an address.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# bcrypt only looks at the first 72 bytes.
PASSWORD_MAX = 72


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register. password is optional for
    accounts that will only ever sign in through a provider."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: Optional[str] = Field(default=None, min_length=6, max_length=PASSWORD_MAX)
    name: Optional[str] = Field(default=None, max_length=255)
    image: Optional[str] = Field(default=None, max_length=2048)


class LoginRequest(BaseModel):
    """Stripped the same way as RegisterRequest so a padded email still matches."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=PASSWORD_MAX)


class FederatedLoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/federated.

    Sent by a trusted front-end identity bridge after it has completed the
    provider handshake itself.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    provider: str = Field(min_length=1, max_length=30)
    provider_id: str = Field(min_length=1, max_length=255)
    name: Optional[str] = Field(default=None, max_length=255)
    image: Optional[str] = Field(default=None, max_length=2048)
    email_verified: Optional[str] = Field(default=None, max_length=32)


class ProfileUpdate(BaseModel):
    """Request body for PUT /api/v1/auth/me. Unknown keys (email, role_id, ...) are rejected."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: Optional[str] = Field(default=None, max_length=255)
    image: Optional[str] = Field(default=None, max_length=2048)


# ---------------------------------------------------------------------------
# Passwords -- request models
#
# Whitespace is stripped like RegisterRequest and LoginRequest, so a password
# set here is the same string login later compares against.
# ---------------------------------------------------------------------------


class ChangePasswordRequest(BaseModel):
    """Request body for PATCH /api/v1/users/{id}/change-password."""

    model_config = ConfigDict(str_strip_whitespace=True)

    current_password: str = Field(min_length=1, max_length=PASSWORD_MAX)
    new_password: str = Field(min_length=6, max_length=PASSWORD_MAX)


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)


class ResetPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    token: str = Field(min_length=1, max_length=255)
    new_password: str = Field(min_length=6, max_length=PASSWORD_MAX)


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class AccountResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    name: Optional[str] = None
    image: Optional[str] = None
    provider: Optional[str] = None
    email_verified: Optional[str] = None
    role_id: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    last_login: Optional[str] = None
    deleted_at: Optional[str] = None
    permissions: Optional[list[str]] = None

    @classmethod
    def from_account(cls, account: Account, permissions=None) -> "AccountResponse":
        data = sanitize_account(account)
        allowed = {k: v for k, v in data.items() if k in cls.model_fields}
        if permissions is not None:
            allowed["permissions"] = sorted(permissions)
        return cls(**allowed)


class AccountEnvelope(BaseModel):
    success: bool = True
    data: AccountResponse
    message: Optional[str] = None


class AccountListEnvelope(BaseModel):
    success: bool = True
    data: list[AccountResponse]


class LoginData(BaseModel):
    user: AccountResponse
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class LoginEnvelope(BaseModel):
    success: bool = True
    data: LoginData
    message: Optional[str] = None


class ExistsData(BaseModel):
    exists: bool


class ExistsEnvelope(BaseModel):
    success: bool = True
    data: ExistsData
    message: Optional[str] = None


class SessionInfo(BaseModel):
    id: str
    expires_at: str

    @classmethod
    def from_session(cls, session: Session) -> "SessionInfo":
        return cls(id=session.id, expires_at=session.expires_at)


class SessionValidity(BaseModel):
    """Response for GET /auth/verify-session and /auth/validate. Always HTTP 200."""

    success: bool = True
    valid: bool
    message: str
    user: Optional[AccountResponse] = None
    session: Optional[SessionInfo] = None


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class OAuthProviderInfo(BaseModel):
    name: str
    label: str


# ---------------------------------------------------------------------------
# Roles and permissions
# ---------------------------------------------------------------------------


class RoleCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    permissions: list[str] = Field(default_factory=list, max_length=200)


class RoleUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)


class RolePermissionsUpdate(BaseModel):
    permissions: list[str] = Field(max_length=200)


class RoleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: Optional[str]
    permissions: list[str]
    created_at: str
    updated_at: str
    deleted_at: Optional[str] = None

    @classmethod
    def from_role(cls, role: Role) -> "RoleResponse":
        return cls(
            id=role.id,
            name=role.name,
            description=role.description,
            permissions=list(role.permissions),
            created_at=role.created_at or "",
            updated_at=role.updated_at or "",
            deleted_at=role.deleted_at,
        )


class RoleEnvelope(BaseModel):
    success: bool = True
    data: RoleResponse
    message: Optional[str] = None


class RoleListEnvelope(BaseModel):
    success: bool = True
    data: list[RoleResponse]


class PermissionCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=3, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)


class PermissionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: Optional[str]
    created_at: str

    @classmethod
    def from_permission(cls, permission: Permission) -> "PermissionResponse":
        return cls(
            id=permission.id,
            name=permission.name,
            description=permission.description,
            created_at=permission.created_at or "",
        )


class PermissionEnvelope(BaseModel):
    success: bool = True
    data: PermissionResponse
    message: Optional[str] = None


class PermissionListEnvelope(BaseModel):
    success: bool = True
    data: list[PermissionResponse]


class RoleAssign(BaseModel):
    """Request body for PUT /api/v1/users/{id}/role. role_id=None removes the role."""

    role_id: Optional[int] = None


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Envelope returned on every 4xx/5xx response."""

    model_config = ConfigDict(frozen=True)

    success: bool = False
    message: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str
    version: str
    components: dict[str, str]
