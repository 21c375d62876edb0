"""
rbac/bootstrap.py -- Idempotent reconciliation of the declared catalog into the store.

Run once per deployment (see `python main.py init-rbac`), never concurrently
with itself against the same database -- serialize runs with a deployment
lock. If two runs do race, the schema's UNIQUE constraints turn the loser's
inserts into ConflictErrors that land in the report, not duplicate rows.

Pipeline:
  validate catalog (rbac.catalog.load_catalog)   -- malformed input rejected up front
  -> ping store                                  -- unreachable store is fatal
  -> reconcile permissions (upsert by resource+action)
  -> reconcile roles (resolve keys, upsert by name, full set replacement)
  -> ensure the fallback admin identity exists exactly once
  -> RBACReport

Error policy:
  Item-level failures (ConflictError, ValidationError, other SQLAlchemy
  errors) are appended to the section's `errors` list and the loop moves on.
  PersistenceError is not caught anywhere in this module: it aborts the run
  and reaches the caller.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from auth.credentials import allocate_identifier, generate_employee_id, hash_password
from auth.errors import ConflictError, ValidationError
from auth.models import User, UserStatus
from auth.store import UserStore
from core.config import Settings, get_settings
from rbac.catalog import DEFAULT_CATALOG, Catalog, PermissionDeclaration, RoleDeclaration, load_catalog
from rbac.models import Permission, Role, split_permission_key
from rbac.store import RBACStore

logger = logging.getLogger("campusrbac.rbac")

_ITEM_ERRORS = (ConflictError, ValidationError, SQLAlchemyError)


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------


@dataclass
class SectionReport:
    """Counters and item-level errors for one catalog section."""

    created: int = 0
    updated: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"created": self.created, "updated": self.updated, "errors": list(self.errors)}


@dataclass
class AdminReport:
    """Outcome of the fallback-admin step.

    temporary_password is set only when this run created the account with a
    generated password. It is never persisted in plaintext and is not part of
    to_dict(); the CLI prints it once.
    """

    email: str
    created: bool = False
    temporary_password: Optional[str] = field(default=None, repr=False)


@dataclass
class RBACReport:
    permissions: SectionReport = field(default_factory=SectionReport)
    roles: SectionReport = field(default_factory=SectionReport)
    admin: Optional[AdminReport] = None

    @property
    def ok(self) -> bool:
        return not self.permissions.errors and not self.roles.errors

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "permissions": self.permissions.to_dict(),
            "roles": self.roles.to_dict(),
        }
        if self.admin is not None:
            data["admin"] = {"email": self.admin.email, "created": self.admin.created}
        return data


# ---------------------------------------------------------------------------
# Reconciliation steps
# ---------------------------------------------------------------------------


def _reconcile_permission(store: RBACStore, decl: PermissionDeclaration, initiator: str, section: SectionReport) -> None:
    existing = store.get_permission(decl.resource, decl.action)
    if existing is None:
        store.create_permission(
            Permission(
                resource=decl.resource,
                action=decl.action,
                description=decl.description,
                category=decl.category.value,
                created_by=initiator,
            )
        )
        section.created += 1
        return
    if existing.description != decl.description or existing.category != decl.category.value:
        store.update_permission(existing.id, description=decl.description, category=decl.category.value)
        section.updated += 1


def _resolve_keys(store: RBACStore, keys: list[str]) -> frozenset[int]:
    """Map "resource:action" keys to permission IDs. Raises ValidationError naming every unresolved key."""
    ids: set[int] = set()
    missing: list[str] = []
    for key in keys:
        resource, action = split_permission_key(key)
        permission = store.get_permission(resource, action)
        if permission is None:
            missing.append(key)
        else:
            ids.add(permission.id)
    if missing:
        raise ValidationError(f"unresolvable permission keys: {', '.join(missing)}")
    return frozenset(ids)


def _reconcile_role(store: RBACStore, decl: RoleDeclaration, initiator: str, section: SectionReport) -> None:
    permission_ids = _resolve_keys(store, decl.permission_keys)
    existing = store.get_role(decl.name)
    if existing is None:
        store.create_role(
            Role(
                name=decl.name,
                description=decl.description,
                permission_ids=permission_ids,
                is_system_role=decl.is_system_role,
                category=decl.category.value,
                level=decl.level,
                created_by=initiator,
            )
        )
        section.created += 1
        return
    changed = (
        existing.permission_ids != permission_ids
        or existing.description != decl.description
        or existing.category != decl.category.value
        or existing.level != decl.level
        or existing.is_system_role != decl.is_system_role
    )
    if changed:
        store.update_role(
            existing.id,
            permission_ids=permission_ids,
            description=decl.description,
            category=decl.category.value,
            level=decl.level,
            is_system_role=decl.is_system_role,
        )
        section.updated += 1


def seed_permissions(store: RBACStore, catalog: Catalog, initiator: str) -> SectionReport:
    """Upsert every declared permission; item failures are recorded, not raised."""
    section = SectionReport()
    for decl in catalog.permissions:
        try:
            _reconcile_permission(store, decl, initiator, section)
        except _ITEM_ERRORS as exc:
            logger.warning("Permission %s not reconciled: %s", decl.key, exc)
            section.errors.append({"permission": decl.key, "error": str(exc)})
    return section


def seed_roles(store: RBACStore, catalog: Catalog, initiator: str) -> SectionReport:
    """Upsert every declared role; a role with unresolvable keys is skipped for this run."""
    section = SectionReport()
    for decl in catalog.roles:
        try:
            _reconcile_role(store, decl, initiator, section)
        except _ITEM_ERRORS as exc:
            logger.warning("Role %r not reconciled: %s", decl.name, exc)
            section.errors.append({"role": decl.name, "error": str(exc)})
    return section


def ensure_fallback_admin(user_store: UserStore, settings: Optional[Settings] = None) -> AdminReport:
    """Create the well-known administrative identity if, and only if, it is missing.

    An existing record is left untouched: its password, role, and status are
    never reset by a bootstrap run. A new record gets the configured role, a
    password flagged for mandatory rotation, and a collision-checked employee
    code.
    """
    settings = settings or get_settings()
    email = settings.fallback_admin_email
    if user_store.get_by_email(email) is not None:
        logger.info("Fallback admin %s already present -- leaving it untouched", email)
        return AdminReport(email=email, created=False)

    password = settings.fallback_admin_password or secrets.token_urlsafe(16)
    user_code = allocate_identifier(lambda: generate_employee_id("SYS", "admin"), user_store.user_code_exists)
    admin = User(
        email=email,
        role=settings.fallback_admin_role,
        hashed_password=hash_password(password),
        status=UserStatus.active.value,
        first_name="System",
        last_name="Administrator",
        user_code=user_code,
        must_change_password=True,
    )
    try:
        user_store.create_user(admin)
    except ConflictError:
        # A concurrent run won the insert; the email is UNIQUE, so there is still one record.
        if user_store.get_by_email(email) is None:
            raise
        logger.warning("Fallback admin %s was created concurrently by another run", email)
        return AdminReport(email=email, created=False)

    logger.warning("Created fallback admin %s with a temporary password -- rotate it immediately", email)
    generated = None if settings.fallback_admin_password else password
    return AdminReport(email=email, created=True, temporary_password=generated)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def initialize_rbac(
    rbac_store: RBACStore,
    user_store: UserStore,
    initiator: str = "system",
    catalog: Catalog | dict | None = None,
    settings: Optional[Settings] = None,
) -> RBACReport:
    """Reconcile the catalog into the store and ensure the fallback admin exists.

    Args:
        rbac_store: Permission/role repository.
        user_store: User repository (fallback admin lookup and creation).
        initiator:  Identity recorded as created_by on new catalog rows.
        catalog:    Declarations to apply. Defaults to DEFAULT_CATALOG; dicts
                    are validated first and raise ValidationError if malformed.
        settings:   Overrides get_settings(), mainly for tests.

    Re-running with an unchanged catalog produces zero creates and zero
    updates. Raises PersistenceError if the store is unreachable.
    """
    resolved = load_catalog(catalog) if catalog is not None else DEFAULT_CATALOG
    rbac_store.ping()
    logger.info(
        "Initializing RBAC (initiator=%s, permissions=%d, roles=%d)",
        initiator,
        len(resolved.permissions),
        len(resolved.roles),
    )

    report = RBACReport()
    report.permissions = seed_permissions(rbac_store, resolved, initiator)
    logger.info(
        "Permissions seeded: created=%d updated=%d errors=%d",
        report.permissions.created,
        report.permissions.updated,
        len(report.permissions.errors),
    )
    report.roles = seed_roles(rbac_store, resolved, initiator)
    logger.info(
        "Roles seeded: created=%d updated=%d errors=%d",
        report.roles.created,
        report.roles.updated,
        len(report.roles.errors),
    )
    report.admin = ensure_fallback_admin(user_store, settings)
    return report
