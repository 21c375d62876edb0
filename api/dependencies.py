"""
api/dependencies.py -- Permission-gated FastAPI dependencies.

Each factory builds a dependency that authenticates the request
(auth.dependencies.get_current_user) and then asks the authorization gate.
401 if unauthenticated, 403 if the gate denies.

  require_permission(resource, action)   -- one specific permission
  require_any_permission(*keys)          -- at least one "resource:action" key
  require_role(*names)                   -- the user's role is one of `names`

Usage:
    @router.get("/rbac/roles")
    async def list_roles(user: User = Depends(require_permission("roles", "read"))): ...

    @router.get("/grades")
    async def grades(user: User = Depends(require_any_permission("grades:read", "grades:manage"))): ...
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import Depends, HTTPException, Request

from auth.dependencies import get_current_user
from auth.models import User
from rbac.gate import can
from rbac.models import split_permission_key

logger = logging.getLogger("campusrbac.api")


def _forbidden(message: str, required: str) -> HTTPException:
    return HTTPException(
        status_code=403,
        detail={"code": "forbidden", "message": message, "detail": required},
    )


def require_permission(resource: str, action: str) -> Callable[..., User]:
    def dependency(request: Request, user: User = Depends(get_current_user)) -> User:
        if not can(request.app.state.rbac_store, user, resource, action):
            logger.info("Access denied: user_id=%s role=%r needs %s:%s", user.id, user.role, resource, action)
            raise _forbidden("Insufficient permissions.", f"{resource}:{action}")
        return user

    dependency.__name__ = f"require_{resource}_{action}".replace("*", "any")
    return dependency


def require_any_permission(*keys: str) -> Callable[..., User]:
    """Allow the request if the gate grants any one of the "resource:action" keys.

    Keys are parsed when the dependency is built, so a typo fails at import
    time rather than as a silent 403.
    """
    if not keys:
        raise ValueError("require_any_permission() needs at least one permission key")
    wanted = [split_permission_key(key) for key in keys]
    required = ",".join(keys)

    def dependency(request: Request, user: User = Depends(get_current_user)) -> User:
        store = request.app.state.rbac_store
        if not any(can(store, user, resource, action) for resource, action in wanted):
            logger.info("Access denied: user_id=%s role=%r needs any of %s", user.id, user.role, required)
            raise _forbidden("Insufficient permissions.", required)
        return user

    dependency.__name__ = "require_any_of_" + "_".join(f"{r}_{a}" for r, a in wanted).replace("*", "any")
    return dependency


def require_role(*names: str) -> Callable[..., User]:
    """Allow the request if the user is active and holds one of the named roles.

    Role names match exactly. A suspended or inactive user is refused even
    when the role matches, the same as in the permission gate.
    """
    if not names:
        raise ValueError("require_role() needs at least one role name")
    required = ",".join(names)

    def dependency(user: User = Depends(get_current_user)) -> User:
        if not user.is_active or user.role not in names:
            logger.info("Access denied: user_id=%s role=%r status=%s needs role %s", user.id, user.role, user.status, required)
            raise _forbidden("Insufficient role permissions.", required)
        return user

    dependency.__name__ = "require_role_" + "_".join(names).replace(" ", "_").lower()
    return dependency
