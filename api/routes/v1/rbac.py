"""
api/routes/v1/rbac.py -- Read-only catalog views, decision checks, and bootstrap.

Routes:
  GET  /api/v1/rbac/permissions  -- every permission (requires permissions:read)
  GET  /api/v1/rbac/roles        -- every role with its permission IDs (requires roles:read)
  GET  /api/v1/rbac/check        -- the caller's own decision for ?resource=&action= (requires auth)
  POST /api/v1/rbac/initialize   -- reconcile a catalog into the store (requires system:manage)

POST /initialize runs the same initialize_rbac() as `python main.py init-rbac`.
A malformed catalog body is a 422; an unreachable store is a 503. Item-level
failures are part of the 200 report, not HTTP errors. A generated password
is never returned over HTTP, so when the fallback admin is missing and
FALLBACK_ADMIN_PASSWORD is unset the route answers 409 before any write; use
the CLI (which prints the generated password once) or configure the password.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.dependencies import require_permission
from api.models import CheckResponse, InitializeRequest, InitializeResponse, PermissionResponse, RoleResponse
from auth.dependencies import get_current_user
from auth.errors import PersistenceError, ValidationError
from auth.models import User
from core.config import get_settings
from rbac.bootstrap import initialize_rbac
from rbac.gate import can

logger = logging.getLogger("campusrbac.api")

# Auth policy: every route requires authentication; the catalog views and
# /initialize additionally require a permission (require_permission).
router = APIRouter()

_NAME_PATTERN = r"^(\*|[a-z][a-z0-9_-]*)$"


@router.get("/rbac/permissions", response_model=list[PermissionResponse])
async def list_permissions(
    request: Request,
    current_user: User = Depends(require_permission("permissions", "read")),
) -> list[PermissionResponse]:
    """Return every permission in the catalog, ordered by resource then action."""
    return [PermissionResponse.from_permission(p) for p in request.app.state.rbac_store.list_permissions()]


@router.get("/rbac/roles", response_model=list[RoleResponse])
async def list_roles(
    request: Request,
    current_user: User = Depends(require_permission("roles", "read")),
) -> list[RoleResponse]:
    """Return every role, highest level first."""
    return [RoleResponse.from_role(r) for r in request.app.state.rbac_store.list_roles()]


@router.get("/rbac/check", response_model=CheckResponse)
async def check(
    request: Request,
    resource: str = Query(pattern=_NAME_PATTERN, max_length=64),
    action: str = Query(pattern=_NAME_PATTERN, max_length=64),
    current_user: User = Depends(get_current_user),
) -> CheckResponse:
    """Answer whether the caller may perform `action` on `resource` right now."""
    allowed = can(request.app.state.rbac_store, current_user, resource, action)
    return CheckResponse(resource=resource, action=action, allowed=allowed)


@router.post("/rbac/initialize", response_model=InitializeResponse)
def initialize(
    request: Request,
    body: Optional[InitializeRequest] = None,
    current_user: User = Depends(require_permission("system", "manage")),
) -> InitializeResponse:
    """Reconcile the default catalog (or the one in the body) into the store.

    Declared as a plain def: bcrypt and SQLite work run in FastAPI's
    threadpool instead of on the event loop.
    """
    settings = get_settings()
    user_store = request.app.state.user_store
    if not settings.fallback_admin_password and user_store.get_by_email(settings.fallback_admin_email) is None:
        logger.warning(
            "Refused RBAC initialization by %s: fallback admin %s is missing and FALLBACK_ADMIN_PASSWORD is unset",
            current_user.email,
            settings.fallback_admin_email,
        )
        raise HTTPException(
            status_code=409,
            detail={
                "code": "admin_password_required",
                "message": "Set FALLBACK_ADMIN_PASSWORD or run `python main.py init-rbac` to create the fallback admin.",
                "detail": settings.fallback_admin_email,
            },
        )

    catalog = body.catalog if body is not None else None
    try:
        report = initialize_rbac(
            request.app.state.rbac_store,
            user_store,
            initiator=current_user.email,
            catalog=catalog,
            settings=settings,
        )
    except ValidationError as exc:
        raise HTTPException(
            status_code=422,
            detail={"code": "invalid_catalog", "message": "Catalog validation failed.", "detail": str(exc)},
        ) from exc
    except PersistenceError as exc:
        logger.error("RBAC initialization aborted: %s", exc)
        raise HTTPException(
            status_code=503,
            detail={"code": "store_unavailable", "message": "The permission store is unavailable."},
        ) from exc

    return InitializeResponse.from_report(report)
