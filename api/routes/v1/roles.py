"""
api/routes/v1/roles.py -- Role and permission management endpoints.

Routes:
  GET    /api/v1/roles                        -- list live roles (?include_deleted=true for all)
  POST   /api/v1/roles                        -- create role, optionally with permissions
  GET    /api/v1/roles/{role_id}              -- role detail with permission names
  PATCH  /api/v1/roles/{role_id}              -- rename / re-describe
  DELETE /api/v1/roles/{role_id}              -- soft delete
  POST   /api/v1/roles/{role_id}/restore      -- undo soft delete
  PUT    /api/v1/roles/{role_id}/permissions  -- replace the permission set
  GET    /api/v1/permissions                  -- list permissions
  POST   /api/v1/permissions                  -- create permission (resource:action)
  DELETE /api/v1/permissions/{permission_id}  -- delete permission

Required permissions per route are declared in auth.permissions.ROUTE_PERMISSIONS.
"""

from fastapi import APIRouter, Depends, Request, Response

from api.models import (
    PermissionCreate,
    PermissionEnvelope,
    PermissionListEnvelope,
    PermissionResponse,
    RoleCreate,
    RoleEnvelope,
    RoleListEnvelope,
    RolePermissionsUpdate,
    RoleResponse,
    RoleUpdate,
)
from auth.dependencies import enforce_route_permissions
from auth.roles import RoleStore
from core.errors import NotFoundError, ValidationError

router = APIRouter(dependencies=[Depends(enforce_route_permissions)])


def _roles(request: Request) -> RoleStore:
    return request.app.state.role_store


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


@router.get("/roles", response_model=RoleListEnvelope)
def list_roles(request: Request, include_deleted: bool = False) -> RoleListEnvelope:
    roles = _roles(request).list_roles(include_deleted=include_deleted)
    return RoleListEnvelope(data=[RoleResponse.from_role(r) for r in roles])


@router.post("/roles", response_model=RoleEnvelope, status_code=201)
def create_role(request: Request, body: RoleCreate) -> RoleEnvelope:
    """Create a role. 409 on a duplicate live name, 400 on unknown permissions."""
    role = _roles(request).create_role(body.name, body.description, body.permissions)
    return RoleEnvelope(data=RoleResponse.from_role(role), message="Role created successfully.")


@router.get("/roles/{role_id}", response_model=RoleEnvelope)
def get_role(request: Request, role_id: int) -> RoleEnvelope:
    role = _roles(request).get_role(role_id)
    if role is None:
        raise NotFoundError("Role not found.")
    return RoleEnvelope(data=RoleResponse.from_role(role))


@router.patch("/roles/{role_id}", response_model=RoleEnvelope)
def update_role(request: Request, role_id: int, body: RoleUpdate) -> RoleEnvelope:
    if body.name is None and body.description is None:
        raise ValidationError("No fields to update.")
    role = _roles(request).update_role(role_id, name=body.name, description=body.description)
    return RoleEnvelope(data=RoleResponse.from_role(role), message="Role updated successfully.")


@router.delete("/roles/{role_id}", response_model=RoleEnvelope)
def delete_role(request: Request, role_id: int) -> RoleEnvelope:
    """Soft delete. Accounts holding the role immediately resolve to no permissions."""
    role = _roles(request).delete_role(role_id)
    return RoleEnvelope(data=RoleResponse.from_role(role), message="Role deleted successfully.")


@router.post("/roles/{role_id}/restore", response_model=RoleEnvelope)
def restore_role(request: Request, role_id: int) -> RoleEnvelope:
    role = _roles(request).restore_role(role_id)
    return RoleEnvelope(data=RoleResponse.from_role(role), message="Role restored successfully.")


@router.put("/roles/{role_id}/permissions", response_model=RoleEnvelope)
def set_role_permissions(request: Request, role_id: int, body: RolePermissionsUpdate) -> RoleEnvelope:
    role = _roles(request).set_role_permissions(role_id, body.permissions)
    return RoleEnvelope(data=RoleResponse.from_role(role), message="Role permissions updated.")


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------


@router.get("/permissions", response_model=PermissionListEnvelope)
def list_permissions(request: Request) -> PermissionListEnvelope:
    perms = _roles(request).list_permissions()
    return PermissionListEnvelope(data=[PermissionResponse.from_permission(p) for p in perms])


@router.post("/permissions", response_model=PermissionEnvelope, status_code=201)
def create_permission(request: Request, body: PermissionCreate) -> PermissionEnvelope:
    perm = _roles(request).create_permission(body.name, body.description)
    return PermissionEnvelope(data=PermissionResponse.from_permission(perm), message="Permission created.")


@router.delete("/permissions/{permission_id}", status_code=204)
def delete_permission(request: Request, permission_id: int) -> Response:
    _roles(request).delete_permission(permission_id)
    return Response(status_code=204)
