"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/login     -- email/password login; returns bearer token and sets cookie
  POST /api/v1/auth/logout    -- clears cookie; 200
  GET  /api/v1/auth/me        -- current identity plus effective permissions (requires auth)
  POST /api/v1/auth/password  -- rotate own password; clears must_change_password (requires auth)

Security:
  POST /login is rate-limited per IP (Settings.login_rate_limit).
  authenticate_user() provides timing equalization -- use it, never inline.
  Every CredentialMismatch (unknown email, wrong password, inactive account)
  gets the same 401 "invalid_credentials" body, so responses never reveal
  which accounts exist.
  Cache-Control: no-store on login responses.
  bcrypt never runs on the event loop: /login is a plain def (threadpool) and
  /password uses the bounded worker pool (auth.credentials *_async helpers).
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import LOGIN_RATE_LIMIT, limiter
from api.models import LoginRequest, LoginResponse, MeResponse, PasswordChange
from auth.credentials import authenticate_user, hash_password_async, verify_password_async
from auth.dependencies import get_current_user
from auth.errors import CredentialMismatch
from auth.models import User
from auth.store import UserStore
from auth.tokens import Claims, issue_token, set_auth_cookie
from core.config import get_settings
from rbac.gate import effective_permissions

logger = logging.getLogger("campusrbac.api")

# Auth policy:
# - POST /api/v1/auth/login:     public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/logout:    public -- clearing a cookie needs no prior auth
# - GET  /api/v1/auth/me:        requires auth (get_current_user)
# - POST /api/v1/auth/password:  requires auth (get_current_user)
router = APIRouter()


def _invalid_credentials() -> JSONResponse:
    resp = JSONResponse(
        status_code=401,
        content={"error": {"code": "invalid_credentials", "message": "Invalid email or password."}},
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@limiter.limit(LOGIN_RATE_LIMIT)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; return a bearer token and set the cookie.

    Plain def: store I/O and bcrypt run in FastAPI's threadpool, off the
    event loop.
    """
    user_store: UserStore = request.app.state.user_store
    try:
        user = authenticate_user(user_store, body.email, body.password)
    except CredentialMismatch as exc:
        logger.info("Login rejected for %s: %s", body.email, exc)
        return _invalid_credentials()

    settings = get_settings()
    token = issue_token(Claims(user_id=user.id, email=user.email, role=user.role))
    user_store.update_last_login(user.id)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=settings.token_expire_seconds,
            email=user.email,
            role=user.role,
            must_change_password=user.must_change_password,
        ).model_dump(),
    )
    set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout")
async def logout() -> JSONResponse:
    """Clear the JWT cookie. Bearer tokens stay valid until they expire."""
    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie("access_token")
    return resp


@router.get("/auth/me", response_model=MeResponse)
async def me(request: Request, current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return the current identity and the permission keys its role grants right now."""
    permissions = effective_permissions(request.app.state.rbac_store, current_user)
    return MeResponse.from_user(current_user, permissions)


@router.post("/auth/password")
async def change_password(
    request: Request,
    body: PasswordChange,
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    """Rotate the caller's password. Required before first use of the fallback admin."""
    user_store: UserStore = request.app.state.user_store
    if current_user.hashed_password is None or not await verify_password_async(
        body.current_password, current_user.hashed_password
    ):
        raise HTTPException(
            status_code=400,
            detail={"code": "invalid_credentials", "message": "Current password is incorrect."},
        )
    if body.new_password == body.current_password:
        raise HTTPException(
            status_code=400,
            detail={"code": "password_reused", "message": "New password must differ from the current one."},
        )
    hashed = await hash_password_async(body.new_password)
    user_store.update_user(current_user.id, hashed_password=hashed, must_change_password=False)
    logger.info("Password changed for user_id=%s", current_user.id)
    return JSONResponse(content={"message": "Password changed."})
