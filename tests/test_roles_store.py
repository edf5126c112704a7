"""Unit tests for auth/roles.py -- RoleStore roles, permissions and resolution."""

from __future__ import annotations

import pytest

from auth.roles import RoleStore
from auth.schema import roles as roles_table
from auth.store import AccountStore
from core.errors import ConflictError, NotFoundError, ValidationError


@pytest.fixture
def seeded(roles: RoleStore) -> RoleStore:
    roles.seed_permissions(["users:read", "users:update", "roles:read", "admin:full_access"])
    return roles


def test_seed_permissions_is_idempotent(roles: RoleStore):
    assert roles.seed_permissions(["users:read", "roles:read"]) == 2
    assert roles.seed_permissions(["users:read", "roles:read", "blogs:read"]) == 1
    assert [p.name for p in roles.list_permissions()] == ["blogs:read", "roles:read", "users:read"]


def test_create_role_with_permissions(seeded: RoleStore):
    role = seeded.create_role("editor", "Edits users", ["users:read", "users:update"])
    assert role.name == "editor"
    assert sorted(role.permissions) == ["users:read", "users:update"]
    assert seeded.get_role_by_name("editor").id == role.id


def test_create_role_unknown_permission(seeded: RoleStore):
    with pytest.raises(ValidationError):
        seeded.create_role("broken", None, ["users:fly"])
    assert seeded.get_role_by_name("broken") is None


def test_duplicate_live_role_name(seeded: RoleStore):
    seeded.create_role("viewer")
    with pytest.raises(ConflictError):
        seeded.create_role("viewer")


def test_resolve_permissions(seeded: RoleStore):
    role = seeded.create_role("viewer", None, ["users:read", "roles:read"])
    assert seeded.resolve_permissions(role.id) == frozenset({"users:read", "roles:read"})
    assert seeded.resolve_permissions(None) == frozenset()


def test_deleted_role_grants_nothing(seeded: RoleStore):
    role = seeded.create_role("temp", None, ["users:read"])
    seeded.delete_role(role.id)
    assert seeded.resolve_permissions(role.id) == frozenset()
    assert seeded.get_role_by_name("temp") is None
    seeded.restore_role(role.id)
    assert seeded.resolve_permissions(role.id) == frozenset({"users:read"})


def test_set_role_permissions_replaces(seeded: RoleStore):
    role = seeded.create_role("swap", None, ["users:read"])
    updated = seeded.set_role_permissions(role.id, ["roles:read"])
    assert updated.permissions == ["roles:read"]
    assert seeded.resolve_permissions(role.id) == frozenset({"roles:read"})


def test_update_role(seeded: RoleStore):
    role = seeded.create_role("old")
    assert seeded.update_role(role.id, name="new").name == "new"
    with pytest.raises(NotFoundError):
        seeded.update_role(9999, name="x")


def test_create_permission_validates_name(roles: RoleStore):
    with pytest.raises(ValidationError):
        roles.create_permission("nocolon")
    perm = roles.create_permission("reports:export", "Export reports")
    assert roles.get_permission(perm.id).name == "reports:export"
    with pytest.raises(ConflictError):
        roles.create_permission("reports:export")


def test_delete_permission_unlinks(seeded: RoleStore):
    role = seeded.create_role("linked", None, ["users:read", "roles:read"])
    perm = next(p for p in seeded.list_permissions() if p.name == "users:read")
    seeded.delete_permission(perm.id)
    assert seeded.resolve_permissions(role.id) == frozenset({"roles:read"})
    with pytest.raises(NotFoundError):
        seeded.delete_permission(perm.id)


def test_deleting_role_row_clears_account_role(engine, seeded: RoleStore, accounts: AccountStore):
    role = seeded.create_role("doomed")
    account = accounts.create_account("member@example.com", role_id=role.id)
    with engine.connect() as conn:
        conn.execute(roles_table.delete().where(roles_table.c.id == role.id))
        conn.commit()
    assert accounts.find_by_id(account.id).role_id is None
