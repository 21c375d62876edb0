"""
rbac/models.py -- Domain dataclasses for the permission and role catalogs.

These are pure data containers with zero persistence logic. Reconciliation
lives in rbac/bootstrap.py, storage in rbac/store.py, decisions in rbac/gate.py.

Natural keys:
  Permission -- (resource, action), rendered as "resource:action"
  Role       -- name

id is None before the record is written to the database.
"""

from __future__ import annotations

from dataclasses import dataclass, field

WILDCARD = "*"


def permission_key(resource: str, action: str) -> str:
    return f"{resource}:{action}"


def split_permission_key(key: str) -> tuple[str, str]:
    """Split "resource:action" into its parts. Raises ValueError if malformed."""
    resource, sep, action = key.partition(":")
    if not sep or not resource or not action or ":" in action:
        raise ValueError(f"permission key {key!r} is not of the form 'resource:action'")
    return resource, action


@dataclass
class Permission:
    """An atomic (resource, action) capability.

    A resource or action of "*" is a wildcard at authorization time: the
    super-admin permission is ("*", "*").
    """

    resource: str
    action: str
    description: str
    category: str = "system"
    id: int | None = None
    created_by: str | None = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""

    @property
    def key(self) -> str:
        return permission_key(self.resource, self.action)

    def grants(self, resource: str, action: str) -> bool:
        """True if this permission covers the requested (resource, action)."""
        return self.resource in (resource, WILDCARD) and self.action in (action, WILDCARD)


@dataclass
class Role:
    """A named bundle of permissions.

    permission_ids is a frozenset snapshot, not a live view. The store
    replaces a role's whole set in one transaction; holders of an older Role
    object keep seeing the set they loaded.
    """

    name: str
    description: str
    permission_ids: frozenset[int] = field(default_factory=frozenset)
    is_system_role: bool = False
    category: str = "system"
    level: int = 1
    id: int | None = None
    created_by: str | None = None
    created_at: str = ""
    updated_at: str = ""
