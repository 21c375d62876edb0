"""
rbac/store.py -- SQLAlchemy-backed persistence for the permission and role catalogs.

Uses SQLAlchemy Core (not ORM) so the dataclasses in rbac/models.py remain the
authoritative domain representation. Swapping SQLite for PostgreSQL is a
connection string change.

Pattern: Repository + Data Mapper. RBACStore is the repository; the _row_to_*
functions are the mappers. Bootstrap and the gate never touch SQL directly.

Natural keys are enforced by the schema, not just by the bootstrap's
look-up-then-insert sequence:
  permissions: UNIQUE(resource, action)
  roles:       UNIQUE(name)
Two concurrent bootstrap runs that both observe "absent" therefore produce one
row and one ConflictError, never a duplicate.

Role permission sets live in role_permissions. update_role() replaces a
role's set inside a single transaction (delete + insert), so a concurrent
reader sees either the old set or the new one.

Error translation:
  IntegrityError                     -> ConflictError   (item-level)
  OperationalError / InterfaceError  -> PersistenceError (fatal)

Usage:
    store = RBACStore()                                 # SQLite default
    store = RBACStore("postgresql://user:pw@host/db")   # PostgreSQL
    pid = store.create_permission(Permission("grades", "edit", "Edit grades"))
    store.create_role(Role("Registrar", "Records office", frozenset({pid})))
    store.get_role_permissions("Registrar")
    store.close()
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    select,
    text,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError

from auth.errors import ConflictError, PersistenceError
from core.config import get_settings, now_iso
from rbac.models import Permission, Role

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_permissions = Table(
    "permissions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("resource", String(50), nullable=False),
    Column("action", String(50), nullable=False),
    Column("description", Text, nullable=False, server_default=""),
    Column("category", String(30), nullable=False, server_default="system"),
    Column("created_by", String(255)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("resource", "action", name="uq_permission_resource_action"),
)

_roles = Table(
    "roles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("description", Text, nullable=False, server_default=""),
    Column("is_system_role", Integer, nullable=False, server_default="0"),  # boolean stored as 0/1
    Column("category", String(30), nullable=False, server_default="system"),
    Column("level", Integer, nullable=False, server_default="1"),
    Column("created_by", String(255)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_role_permissions = Table(
    "role_permissions",
    metadata,
    Column("role_id", Integer, ForeignKey("roles.id"), primary_key=True),
    Column("permission_id", Integer, ForeignKey("permissions.id"), primary_key=True),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so authorization reads proceed during a bootstrap write."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except IntegrityError as exc:
        raise ConflictError(str(exc.orig)) from exc
    except (OperationalError, InterfaceError) as exc:
        raise PersistenceError(f"catalog store unavailable: {exc.orig}") from exc


def _insert_links(conn: Connection, role_id: int, permission_ids: Iterable[int]) -> None:
    rows = [{"role_id": role_id, "permission_id": pid} for pid in sorted(permission_ids)]
    if rows:
        conn.execute(_role_permissions.insert(), rows)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class RBACStore:
    """Repository for Permission and Role entities."""

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        with _translate_errors():
            metadata.create_all(self.engine)

    def ping(self) -> None:
        """Round-trip to the database. Raises PersistenceError if unreachable."""
        with _translate_errors(), self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def get_permission(self, resource: str, action: str) -> Optional[Permission]:
        """Look up a permission by its natural key. Returns None if absent."""
        with _translate_errors(), self.engine.connect() as conn:
            row = conn.execute(
                _permissions.select().where((_permissions.c.resource == resource) & (_permissions.c.action == action))
            ).fetchone()
        return _row_to_permission(row) if row is not None else None

    def create_permission(self, permission: Permission) -> int:
        """Insert a permission and return its ID. Raises ConflictError on a duplicate key."""
        stamp = now_iso()
        with _translate_errors(), self.engine.connect() as conn:
            result = conn.execute(
                _permissions.insert().values(
                    resource=permission.resource,
                    action=permission.action,
                    description=permission.description,
                    category=permission.category,
                    created_by=permission.created_by,
                    created_at=stamp,
                    updated_at=stamp,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_permission(self, permission_id: int, *, description: str, category: str) -> bool:
        """Rewrite a permission's descriptive fields. The natural key never changes."""
        with _translate_errors(), self.engine.connect() as conn:
            result = conn.execute(
                _permissions.update()
                .where(_permissions.c.id == permission_id)
                .values(description=description, category=category, updated_at=now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def list_permissions(self) -> list[Permission]:
        """Return all permissions ordered by resource, then action."""
        with _translate_errors(), self.engine.connect() as conn:
            rows = conn.execute(
                _permissions.select().order_by(_permissions.c.resource, _permissions.c.action)
            ).fetchall()
        return [_row_to_permission(r) for r in rows]

    def get_permissions_by_ids(self, permission_ids: Iterable[int]) -> list[Permission]:
        ids = list(permission_ids)
        if not ids:
            return []
        with _translate_errors(), self.engine.connect() as conn:
            rows = conn.execute(_permissions.select().where(_permissions.c.id.in_(ids))).fetchall()
        return [_row_to_permission(r) for r in rows]

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def get_role(self, name: str) -> Optional[Role]:
        """Look up a role by name, including its permission-id snapshot."""
        with _translate_errors(), self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.name == name)).fetchone()
            if row is None:
                return None
            ids = conn.execute(
                select(_role_permissions.c.permission_id).where(_role_permissions.c.role_id == row.id)
            ).scalars()
            return _row_to_role(row, frozenset(ids))

    def create_role(self, role: Role) -> int:
        """Insert a role and its permission links in one transaction. Returns the role ID."""
        stamp = now_iso()
        with _translate_errors(), self.engine.begin() as conn:
            result = conn.execute(
                _roles.insert().values(
                    name=role.name,
                    description=role.description,
                    is_system_role=1 if role.is_system_role else 0,
                    category=role.category,
                    level=role.level,
                    created_by=role.created_by,
                    created_at=stamp,
                    updated_at=stamp,
                )
            )
            role_id = result.inserted_primary_key[0]
            _insert_links(conn, role_id, role.permission_ids)
        return role_id

    def update_role(
        self,
        role_id: int,
        *,
        permission_ids: frozenset[int],
        description: str,
        category: str,
        level: int,
        is_system_role: bool,
    ) -> bool:
        """Replace a role's descriptive fields and its entire permission set atomically.

        Full replacement, not merge: permissions absent from `permission_ids`
        are unlinked. The delete and the inserts commit together.
        """
        with _translate_errors(), self.engine.begin() as conn:
            result = conn.execute(
                _roles.update()
                .where(_roles.c.id == role_id)
                .values(
                    description=description,
                    category=category,
                    level=level,
                    is_system_role=1 if is_system_role else 0,
                    updated_at=now_iso(),
                )
            )
            if result.rowcount == 0:
                return False
            conn.execute(_role_permissions.delete().where(_role_permissions.c.role_id == role_id))
            _insert_links(conn, role_id, permission_ids)
        return True

    def list_roles(self) -> list[Role]:
        """Return all roles (with permission-id snapshots) ordered by level desc, then name."""
        with _translate_errors(), self.engine.connect() as conn:
            rows = conn.execute(_roles.select().order_by(_roles.c.level.desc(), _roles.c.name)).fetchall()
            links = conn.execute(select(_role_permissions.c.role_id, _role_permissions.c.permission_id)).fetchall()
        by_role: dict[int, set[int]] = {}
        for link in links:
            by_role.setdefault(link.role_id, set()).add(link.permission_id)
        return [_row_to_role(r, frozenset(by_role.get(r.id, ()))) for r in rows]

    def get_role_permissions(self, name: str) -> Optional[list[Permission]]:
        """Return the Permissions bundled by the named role, or None if the role does not exist.

        Single read: role lookup and permission join run on one connection, so
        the result reflects one committed version of the role's set.
        """
        with _translate_errors(), self.engine.connect() as conn:
            role_id = conn.execute(select(_roles.c.id).where(_roles.c.name == name)).scalar()
            if role_id is None:
                return None
            rows = conn.execute(
                select(_permissions)
                .join(_role_permissions, _role_permissions.c.permission_id == _permissions.c.id)
                .where(_role_permissions.c.role_id == role_id)
                .order_by(_permissions.c.resource, _permissions.c.action)
            ).fetchall()
        return [_row_to_permission(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_permission(row) -> Permission:
    return Permission(
        id=row.id,
        resource=row.resource,
        action=row.action,
        description=row.description,
        category=row.category,
        created_by=row.created_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_role(row, permission_ids: frozenset[int]) -> Role:
    return Role(
        id=row.id,
        name=row.name,
        description=row.description,
        permission_ids=permission_ids,
        is_system_role=bool(row.is_system_role),
        category=row.category,
        level=row.level,
        created_by=row.created_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
