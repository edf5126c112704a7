"""
auth/roles.py -- Roles, permissions, and role -> permission resolution.

Pattern: Repository (same shape as auth/store.py). RoleStore owns the roles,
permissions and role_permissions tables.

resolve_permissions() is the join the authorization model runs on: it returns
the flattened set of permission names for a role id. A missing role, a
soft-deleted role, or None all resolve to the empty set. Soft-deleted
permissions are ignored even while still linked.
"""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import Permission, Role
from auth.permissions import is_valid_permission_name
from auth.schema import now_iso, permissions, role_permissions, roles
from core.errors import ConflictError, NotFoundError, ValidationError


class RoleStore:
    """Repository for Role and Permission entities."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_permissions(self, role_id: int | None) -> frozenset[str]:
        """Flattened permission names granted by a role. Empty for no role."""
        if role_id is None:
            return frozenset()
        query = (
            select(permissions.c.name)
            .select_from(
                role_permissions.join(permissions, role_permissions.c.permission_id == permissions.c.id).join(
                    roles, role_permissions.c.role_id == roles.c.id
                )
            )
            .where(
                (role_permissions.c.role_id == role_id)
                & roles.c.deleted_at.is_(None)
                & permissions.c.deleted_at.is_(None)
            )
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return frozenset(r.name for r in rows)

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def create_role(self, name: str, description: str | None = None, permission_names: Iterable[str] = ()) -> Role:
        """Insert a role, optionally linked to existing permissions by name.

        Raises ConflictError if a live role already has the name, ValidationError
        if any permission name is unknown.
        """
        stamp = now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    roles.insert().values(name=name, description=description, created_at=stamp, updated_at=stamp)
                )
                role_id = result.inserted_primary_key[0]
                self._link_permissions(conn, role_id, permission_names)
                conn.commit()
        except IntegrityError as exc:
            raise ConflictError(f"Role {name!r} already exists.") from exc
        return self.get_role(role_id)

    def get_role(self, role_id: int) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(roles.select().where(roles.c.id == role_id)).fetchone()
            if row is None:
                return None
            names = self._linked_names(conn, role_id)
        return _row_to_role(row, names)

    def get_role_by_name(self, name: str) -> Role | None:
        """Live role by exact name."""
        with self.engine.connect() as conn:
            row = conn.execute(
                roles.select().where((roles.c.name == name) & roles.c.deleted_at.is_(None))
            ).fetchone()
            if row is None:
                return None
            names = self._linked_names(conn, row.id)
        return _row_to_role(row, names)

    def list_roles(self, include_deleted: bool = False) -> list[Role]:
        query = roles.select().order_by(roles.c.name)
        if not include_deleted:
            query = query.where(roles.c.deleted_at.is_(None))
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
            return [_row_to_role(r, self._linked_names(conn, r.id)) for r in rows]

    def update_role(self, role_id: int, name: str | None = None, description: str | None = None) -> Role:
        values: dict = {"updated_at": now_iso()}
        if name is not None:
            values["name"] = name
        if description is not None:
            values["description"] = description
        try:
            with self.engine.connect() as conn:
                result = conn.execute(roles.update().where(roles.c.id == role_id).values(**values))
                conn.commit()
        except IntegrityError as exc:
            raise ConflictError(f"Role {name!r} already exists.") from exc
        if result.rowcount == 0:
            raise NotFoundError("Role not found.")
        return self.get_role(role_id)

    def delete_role(self, role_id: int) -> Role:
        """Soft delete. Accounts keep the role_id but resolve to no permissions."""
        return self._set_role_deleted(role_id, now_iso())

    def restore_role(self, role_id: int) -> Role:
        return self._set_role_deleted(role_id, None)

    def set_role_permissions(self, role_id: int, permission_names: Iterable[str]) -> Role:
        """Replace the role's permission set with exactly permission_names."""
        if self.get_role(role_id) is None:
            raise NotFoundError("Role not found.")
        with self.engine.connect() as conn:
            conn.execute(role_permissions.delete().where(role_permissions.c.role_id == role_id))
            self._link_permissions(conn, role_id, permission_names)
            conn.execute(roles.update().where(roles.c.id == role_id).values(updated_at=now_iso()))
            conn.commit()
        return self.get_role(role_id)

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def create_permission(self, name: str, description: str | None = None) -> Permission:
        if not is_valid_permission_name(name):
            raise ValidationError("Permission names must look like resource:action.")
        stamp = now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    permissions.insert().values(
                        name=name, description=description, created_at=stamp, updated_at=stamp
                    )
                )
                conn.commit()
                permission_id = result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise ConflictError(f"Permission {name!r} already exists.") from exc
        return self.get_permission(permission_id)

    def get_permission(self, permission_id: int) -> Permission | None:
        with self.engine.connect() as conn:
            row = conn.execute(permissions.select().where(permissions.c.id == permission_id)).fetchone()
        return _row_to_permission(row) if row is not None else None

    def list_permissions(self, include_deleted: bool = False) -> list[Permission]:
        query = permissions.select().order_by(permissions.c.name)
        if not include_deleted:
            query = query.where(permissions.c.deleted_at.is_(None))
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_permission(r) for r in rows]

    def delete_permission(self, permission_id: int) -> None:
        """Hard delete, unlinking the permission from every role first."""
        with self.engine.connect() as conn:
            conn.execute(role_permissions.delete().where(role_permissions.c.permission_id == permission_id))
            result = conn.execute(permissions.delete().where(permissions.c.id == permission_id))
            conn.commit()
        if result.rowcount == 0:
            raise NotFoundError("Permission not found.")

    def seed_permissions(self, names: Iterable[str]) -> int:
        """Insert any catalogue permissions that do not exist yet. Returns how many were added."""
        with self.engine.connect() as conn:
            existing = {r.name for r in conn.execute(select(permissions.c.name)).fetchall()}
        added = 0
        for name in names:
            if name in existing:
                continue
            self.create_permission(name)
            existing.add(name)
            added += 1
        return added

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _set_role_deleted(self, role_id: int, deleted_at: str | None) -> Role:
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    roles.update().where(roles.c.id == role_id).values(deleted_at=deleted_at, updated_at=now_iso())
                )
                conn.commit()
        except IntegrityError as exc:
            raise ConflictError("A live role with the same name already exists.") from exc
        if result.rowcount == 0:
            raise NotFoundError("Role not found.")
        return self.get_role(role_id)

    @staticmethod
    def _link_permissions(conn, role_id: int, permission_names: Iterable[str]) -> None:
        wanted = set(permission_names)
        if not wanted:
            return
        rows = conn.execute(
            select(permissions.c.id, permissions.c.name).where(
                permissions.c.name.in_(wanted) & permissions.c.deleted_at.is_(None)
            )
        ).fetchall()
        unknown = wanted - {r.name for r in rows}
        if unknown:
            raise ValidationError(f"Unknown permissions: {', '.join(sorted(unknown))}")
        conn.execute(role_permissions.insert(), [{"role_id": role_id, "permission_id": r.id} for r in rows])

    @staticmethod
    def _linked_names(conn, role_id: int) -> list[str]:
        rows = conn.execute(
            select(permissions.c.name)
            .select_from(role_permissions.join(permissions, role_permissions.c.permission_id == permissions.c.id))
            .where((role_permissions.c.role_id == role_id) & permissions.c.deleted_at.is_(None))
            .order_by(permissions.c.name)
        ).fetchall()
        return [r.name for r in rows]


def _row_to_role(row, permission_names: list[str]) -> Role:
    return Role(
        id=row.id,
        name=row.name,
        description=row.description,
        created_at=row.created_at,
        updated_at=row.updated_at,
        deleted_at=row.deleted_at,
        permissions=permission_names,
    )


def _row_to_permission(row) -> Permission:
    return Permission(
        id=row.id,
        name=row.name,
        description=row.description,
        created_at=row.created_at,
        updated_at=row.updated_at,
        deleted_at=row.deleted_at,
    )
