"""
rbac/catalog.py -- Declarative permission/role catalog and its validation.

The catalog is the input to rbac.bootstrap.initialize_rbac(). It arrives
loosely typed (a JSON file, a dict literal) and is validated here into
Pydantic v2 models before any persistence call. A malformed entry fails the
whole load with auth.errors.ValidationError -- reconciliation never sees it.

Validation rules:
  - resource / action: lowercase identifier or "*"
  - role permission keys: "resource:action" built from the same alphabet
  - no duplicate (resource, action) among permissions
  - no duplicate role names; no duplicate keys inside one role

Whether every role key resolves to a declared permission is NOT checked here.
Keys may reference permissions persisted by an earlier run, so resolution
happens against the store during bootstrap and failures are item-level.
"""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from auth.errors import ValidationError
from rbac.models import permission_key

_NAME_PATTERN = r"^(\*|[a-z][a-z0-9_-]*)$"
_KEY_PATTERN = r"^(\*|[a-z][a-z0-9_-]*):(\*|[a-z][a-z0-9_-]*)$"

_PermissionKey = Annotated[str, Field(pattern=_KEY_PATTERN)]


class PermissionCategory(str, Enum):
    academic = "academic"
    administrative = "administrative"
    system = "system"
    reporting = "reporting"
    financial = "financial"
    communication = "communication"


class RoleCategory(str, Enum):
    administrative = "administrative"
    academic = "academic"
    financial = "financial"
    support = "support"
    system = "system"


# ---------------------------------------------------------------------------
# Declarations
# ---------------------------------------------------------------------------


class PermissionDeclaration(BaseModel):
    """One permission the deployment must have."""

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True, extra="forbid")

    resource: str = Field(pattern=_NAME_PATTERN, max_length=50)
    action: str = Field(pattern=_NAME_PATTERN, max_length=50)
    description: str = Field(default="", max_length=500)
    category: PermissionCategory = PermissionCategory.system

    @property
    def key(self) -> str:
        return permission_key(self.resource, self.action)


class RoleDeclaration(BaseModel):
    """One role and the permission keys it bundles, in declaration order."""

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True, extra="forbid")

    name: str = Field(min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    permission_keys: list[_PermissionKey] = Field(default_factory=list)
    is_system_role: bool = False
    category: RoleCategory = RoleCategory.system
    level: int = Field(default=1, ge=1, le=10)

    @model_validator(mode="after")
    def reject_duplicate_keys(self) -> "RoleDeclaration":
        seen: set[str] = set()
        for key in self.permission_keys:
            if key in seen:
                raise ValueError(f"role {self.name!r} lists {key!r} more than once")
            seen.add(key)
        return self


class Catalog(BaseModel):
    """Ordered permission and role declarations."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    permissions: list[PermissionDeclaration] = Field(default_factory=list)
    roles: list[RoleDeclaration] = Field(default_factory=list)

    @model_validator(mode="after")
    def reject_duplicate_natural_keys(self) -> "Catalog":
        keys = [p.key for p in self.permissions]
        dupes = sorted({k for k in keys if keys.count(k) > 1})
        if dupes:
            raise ValueError(f"duplicate permission declarations: {', '.join(dupes)}")
        names = [r.name for r in self.roles]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"duplicate role declarations: {', '.join(dupes)}")
        return self

    @classmethod
    def from_file(cls, path: str | Path) -> "Catalog":
        """Load and validate a JSON catalog file."""
        file_path = Path(path).resolve()
        if not file_path.is_file():
            raise ValidationError(f"catalog file {str(path)!r} is not a readable file")
        try:
            data = json.loads(file_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ValidationError(f"could not read catalog {str(path)!r}: {exc}") from exc
        return load_catalog(data)


def load_catalog(data: Any) -> Catalog:
    """Validate loosely-typed catalog data into a Catalog.

    Raises auth.errors.ValidationError listing every problem Pydantic found.
    """
    if isinstance(data, Catalog):
        return data
    try:
        return Catalog.model_validate(data)
    except PydanticValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'catalog'}: {err['msg']}" for err in exc.errors()
        )
        raise ValidationError(f"invalid catalog: {problems}") from exc


# ---------------------------------------------------------------------------
# Default university catalog
# ---------------------------------------------------------------------------


def _perm(resource: str, action: str, description: str, category: str) -> dict:
    return {"resource": resource, "action": action, "description": description, "category": category}


_DEFAULT_PERMISSIONS = [
    # Student management
    _perm("students", "create", "Create new student records", "academic"),
    _perm("students", "read", "View student information", "academic"),
    _perm("students", "update", "Update student information", "academic"),
    _perm("students", "delete", "Delete student records", "academic"),
    _perm("students", "manage", "Full student management access", "academic"),
    # Course management
    _perm("courses", "create", "Create new courses", "academic"),
    _perm("courses", "read", "View course information", "academic"),
    _perm("courses", "update", "Update course information", "academic"),
    _perm("courses", "delete", "Delete courses", "academic"),
    _perm("courses", "manage", "Full course management access", "academic"),
    # Grade management
    _perm("grades", "create", "Enter student grades", "academic"),
    _perm("grades", "read", "View student grades", "academic"),
    _perm("grades", "update", "Update student grades", "academic"),
    _perm("grades", "delete", "Delete grade records", "academic"),
    _perm("grades", "approve", "Approve and finalize grades", "academic"),
    _perm("grades", "manage", "Full grade management access", "academic"),
    # Payment management
    _perm("payments", "create", "Process student payments", "financial"),
    _perm("payments", "read", "View payment information", "financial"),
    _perm("payments", "update", "Update payment records", "financial"),
    _perm("payments", "delete", "Delete payment records", "financial"),
    _perm("payments", "approve", "Approve payment transactions", "financial"),
    _perm("payments", "manage", "Full payment management access", "financial"),
    # User management
    _perm("users", "create", "Create new user accounts", "administrative"),
    _perm("users", "read", "View user information", "administrative"),
    _perm("users", "update", "Update user information", "administrative"),
    _perm("users", "delete", "Delete user accounts", "administrative"),
    _perm("users", "manage", "Full user management access", "administrative"),
    # Role management
    _perm("roles", "create", "Create new roles", "administrative"),
    _perm("roles", "read", "View role information", "administrative"),
    _perm("roles", "update", "Update role information", "administrative"),
    _perm("roles", "delete", "Delete roles", "administrative"),
    _perm("roles", "assign", "Assign roles to users", "administrative"),
    # Permission management
    _perm("permissions", "create", "Create new permissions", "system"),
    _perm("permissions", "read", "View permission information", "system"),
    _perm("permissions", "update", "Update permission information", "system"),
    _perm("permissions", "delete", "Delete permissions", "system"),
    # Reporting
    _perm("reports", "create", "Create custom reports", "reporting"),
    _perm("reports", "read", "View system reports", "reporting"),
    _perm("reports", "export", "Export report data", "reporting"),
    _perm("reports", "manage", "Full report management access", "reporting"),
    # Audit logs
    _perm("audit", "read", "View audit logs", "system"),
    _perm("audit", "export", "Export audit logs", "system"),
    # Communication
    _perm("notifications", "create", "Send notifications", "communication"),
    _perm("notifications", "read", "View notifications", "communication"),
    _perm("announcements", "create", "Create announcements", "communication"),
    _perm("announcements", "read", "View announcements", "communication"),
    # System administration
    _perm("system", "manage", "Full system administration access", "system"),
    _perm("system", "update", "Update system configuration", "system"),
    _perm("system", "export", "Create system backups", "system"),
    _perm("system", "import", "Restore system from backup", "system"),
    # Super admin
    _perm("*", "*", "All system permissions (Super Admin)", "system"),
]

_DEFAULT_ROLES = [
    {
        "name": "Super Admin",
        "description": "Full system access with all permissions",
        "category": "system",
        "level": 10,
        "is_system_role": True,
        "permission_keys": ["*:*"],
    },
    {
        "name": "Administrator",
        "description": "System administrator with most permissions",
        "category": "administrative",
        "level": 9,
        "is_system_role": True,
        "permission_keys": [
            "users:manage", "roles:create", "roles:read", "roles:update", "roles:assign",
            "permissions:read", "students:manage", "courses:manage", "grades:read", "payments:read",
            "reports:read", "reports:export", "audit:read", "notifications:create",
            "announcements:create", "system:update",
        ],
    },
    {
        "name": "Academic Coordinator",
        "description": "Manages academic affairs and student records",
        "category": "academic",
        "level": 7,
        "is_system_role": True,
        "permission_keys": [
            "students:manage", "courses:manage", "grades:manage", "grades:approve",
            "reports:read", "notifications:create", "announcements:read",
        ],
    },
    {
        "name": "Finance Officer",
        "description": "Manages financial transactions and payments",
        "category": "financial",
        "level": 6,
        "is_system_role": True,
        "permission_keys": ["payments:manage", "students:read", "reports:read", "reports:export", "notifications:create"],
    },
    {
        "name": "Registrar",
        "description": "Manages student registration and academic records",
        "category": "academic",
        "level": 6,
        "is_system_role": True,
        "permission_keys": [
            "students:manage", "courses:read", "grades:read", "grades:approve",
            "reports:read", "notifications:create",
        ],
    },
    {
        "name": "Instructor",
        "description": "Teaching staff with grade management access",
        "category": "academic",
        "level": 4,
        "is_system_role": True,
        "permission_keys": [
            "students:read", "courses:read", "grades:create", "grades:update",
            "announcements:create", "notifications:read",
        ],
    },
    {
        "name": "Student Affairs Officer",
        "description": "Manages student services and support",
        "category": "support",
        "level": 5,
        "is_system_role": True,
        "permission_keys": [
            "students:read", "students:update", "notifications:create", "announcements:create", "reports:read",
        ],
    },
    {
        "name": "IT Support",
        "description": "Technical support and system maintenance",
        "category": "support",
        "level": 5,
        "is_system_role": True,
        "permission_keys": ["users:read", "system:update", "audit:read", "reports:read"],
    },
    {
        "name": "Staff",
        "description": "General staff with basic access",
        "category": "administrative",
        "level": 3,
        "is_system_role": True,
        "permission_keys": ["students:read", "courses:read", "announcements:read", "notifications:read"],
    },
    {
        "name": "Student",
        "description": "Student portal access",
        "category": "academic",
        "level": 1,
        "is_system_role": True,
        "permission_keys": [
            "courses:read", "grades:read", "payments:read", "announcements:read", "notifications:read",
        ],
    },
]

DEFAULT_CATALOG: Catalog = load_catalog({"permissions": _DEFAULT_PERMISSIONS, "roles": _DEFAULT_ROLES})
