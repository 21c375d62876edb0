"""
rbac/gate.py -- The authorization decision every protected request goes through.

can() is a pure read: it never writes, caches, or mutates. It re-resolves the
user's role against the current catalog on each call, so a role change made by
a later bootstrap run applies immediately, including to bearer tokens issued
before the change (tokens carry only the role name).

Decision order:
  1. user.status != active           -> deny
  2. role name not in the catalog    -> deny (logged; the User->Role link is a
                                        name, not a foreign key)
  3. any bundled permission grants (resource, action) -> allow
     A permission grants when its resource is the requested one or "*", and
     its action is the requested one or "*".
"""

from __future__ import annotations

import logging

from auth.models import User
from rbac.store import RBACStore

logger = logging.getLogger("campusrbac.rbac")


def can(store: RBACStore, user: User, resource: str, action: str) -> bool:
    """Return True iff `user` may perform `action` on `resource` right now."""
    if not user.is_active:
        logger.debug("Denied %s:%s for user_id=%s (status=%s)", resource, action, user.id, user.status)
        return False
    permissions = store.get_role_permissions(user.role)
    if permissions is None:
        logger.warning("User user_id=%s references unknown role %r -- denying", user.id, user.role)
        return False
    return any(p.grants(resource, action) for p in permissions)


def effective_permissions(store: RBACStore, user: User) -> list[str]:
    """Return the "resource:action" keys the user currently holds (empty if not active)."""
    if not user.is_active:
        return []
    permissions = store.get_role_permissions(user.role) or []
    return [p.key for p in permissions]
