"""
auth/permissions.py -- Permission catalogue and the authorization decision.

Permissions follow the resource:action convention. A role grants a flat set
of permission names; there is no role inheritance.

Decision rule (is_authorized):
  - no required permissions            -> allowed
  - caller holds admin:full_access     -> allowed (super admin)
  - required is a subset of granted    -> allowed
  - otherwise                          -> denied

ROUTE_PERMISSIONS is the single place that states what each endpoint needs.
auth.dependencies.enforce_route_permissions looks up the matched route here on
every request. Public routes are listed explicitly with PUBLIC; a route that
is missing from the table still requires an authenticated caller.

Layer rule: pure module. No I/O, no imports from api/.
"""

from __future__ import annotations

from collections.abc import Iterable

FULL_ACCESS = "admin:full_access"

USERS_CREATE = "users:create"
USERS_READ = "users:read"
USERS_UPDATE = "users:update"
USERS_DELETE = "users:delete"
USERS_RESTORE = "users:restore"
USERS_VIEW_DELETED = "users:view_deleted"
USERS_FULL_ACCESS = "users:full_access"

ROLES_CREATE = "roles:create"
ROLES_READ = "roles:read"
ROLES_UPDATE = "roles:update"
ROLES_DELETE = "roles:delete"
ROLES_RESTORE = "roles:restore"
ROLES_FULL_ACCESS = "roles:full_access"

# Resources whose CRUD modules live outside this service but whose
# permissions are issued here, so their tokens carry the right claims.
_CONTENT_RESOURCES = ("blogs", "content_types", "media", "recruitment")
_CRUD_ACTIONS = ("create", "read", "update", "delete", "restore", "full_access")

PERMISSION_GROUPS: dict[str, tuple[str, ...]] = {
    "admin": (FULL_ACCESS,),
    "users": (
        USERS_CREATE,
        USERS_READ,
        USERS_UPDATE,
        USERS_DELETE,
        USERS_RESTORE,
        USERS_VIEW_DELETED,
        USERS_FULL_ACCESS,
    ),
    "roles": (ROLES_CREATE, ROLES_READ, ROLES_UPDATE, ROLES_DELETE, ROLES_RESTORE, ROLES_FULL_ACCESS),
    **{res: tuple(f"{res}:{action}" for action in _CRUD_ACTIONS) for res in _CONTENT_RESOURCES},
    "settings": ("settings:read", "settings:update", "settings:full_access"),
}

ALL_PERMISSIONS: tuple[str, ...] = tuple(p for group in PERMISSION_GROUPS.values() for p in group)


def is_valid_permission_name(name: str) -> bool:
    """True for "resource:action" with both halves non-empty and no extra colons."""
    resource, sep, action = name.partition(":")
    return bool(sep and resource and action and ":" not in action and " " not in name)


def is_authorized(granted: Iterable[str], required: Iterable[str]) -> bool:
    """Pure authorization decision. See module docstring for the rule."""
    required_set = frozenset(required)
    if not required_set:
        return True
    granted_set = frozenset(granted)
    if FULL_ACCESS in granted_set:
        return True
    return required_set <= granted_set


def missing_permissions(granted: Iterable[str], required: Iterable[str]) -> list[str]:
    """Required permissions the caller lacks, sorted. Empty when authorized."""
    if is_authorized(granted, required):
        return []
    return sorted(frozenset(required) - frozenset(granted))


# ---------------------------------------------------------------------------
# Route permission table
# ---------------------------------------------------------------------------


class _Public:
    """Sentinel type for routes that skip authentication entirely."""

    def __repr__(self) -> str:
        return "PUBLIC"


PUBLIC = _Public()


# Mount point of every versioned router (api/main.py include_router prefix).
API_PREFIX = "/api/v1"

# Keys are "METHOD template" with the template relative to API_PREFIX, so the
# table does not depend on whether the framework reports a route's path with
# or without its include prefix.
ROUTE_PERMISSIONS: dict[str, frozenset[str] | _Public] = {
    # Auth gateway
    "POST /auth/register": PUBLIC,
    "GET /auth/exists": PUBLIC,
    "POST /auth/login": PUBLIC,
    "POST /auth/signin": PUBLIC,
    "POST /auth/logout": PUBLIC,
    "POST /auth/signout": PUBLIC,
    "POST /auth/refresh": PUBLIC,
    "POST /auth/refresh-token": PUBLIC,
    "GET /auth/verify-session": PUBLIC,
    "GET /auth/validate": PUBLIC,
    "POST /auth/federated": PUBLIC,
    "GET /auth/providers": PUBLIC,
    "GET /auth/oauth/{provider}/login": PUBLIC,
    "GET /auth/oauth/{provider}/callback": PUBLIC,
    "GET /auth/me": frozenset(),
    "PUT /auth/me": frozenset(),
    "POST /auth/logout-all": frozenset(),
    # Roles and permissions
    "GET /roles": frozenset({ROLES_READ}),
    "POST /roles": frozenset({ROLES_CREATE}),
    "GET /roles/{role_id}": frozenset({ROLES_READ}),
    "PATCH /roles/{role_id}": frozenset({ROLES_UPDATE}),
    "DELETE /roles/{role_id}": frozenset({ROLES_DELETE}),
    "POST /roles/{role_id}/restore": frozenset({ROLES_RESTORE}),
    "PUT /roles/{role_id}/permissions": frozenset({ROLES_FULL_ACCESS}),
    "GET /permissions": frozenset({ROLES_READ}),
    "POST /permissions": frozenset({ROLES_FULL_ACCESS}),
    "DELETE /permissions/{permission_id}": frozenset({ROLES_FULL_ACCESS}),
    # User administration
    "GET /users": frozenset({USERS_READ}),
    "PUT /users/{user_id}/role": frozenset({USERS_UPDATE}),
    "DELETE /users/{user_id}": frozenset({USERS_DELETE}),
    "POST /users/{user_id}/restore": frozenset({USERS_RESTORE}),
    # Password self-service; ownership is checked in the handler
    "PATCH /users/{user_id}/change-password": frozenset(),
    "POST /users/forgot-password": PUBLIC,
    "POST /users/reset-password": PUBLIC,
}


def route_requirement(method: str, path: str) -> frozenset[str] | _Public:
    """Return the requirement for a route template. Unlisted -> authenticated only.

    path may be the full template (/api/v1/roles) or the router-relative one
    (/roles); both resolve to the same entry.
    """
    if path.startswith(API_PREFIX + "/"):
        path = path[len(API_PREFIX) :]
    return ROUTE_PERMISSIONS.get(f"{method.upper()} {path}", frozenset())
