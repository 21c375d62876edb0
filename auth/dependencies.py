"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two token sources are checked in priority order:
  1. JWT cookie ("access_token") -- set by POST /auth/login for browser clients.
  2. Authorization: Bearer <token> header -- API clients.

Both converge on a User object loaded fresh from the UserStore, so a status
or role change takes effect on the next request even for an unexpired token.

get_current_user() raises HTTP 401 with a code naming the token failure
(token_expired / token_malformed / signature_mismatch / unauthorized).

Permission checks live in api/dependencies.py because they need the rbac/
gate, and auth/ does not import rbac/.

Layer rule: no imports from api/ or rbac/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.errors import AuthenticationError
from auth.models import User
from auth.tokens import verify_token


def _extract_token(request: Request) -> str | None:
    token: str | None = request.cookies.get("access_token")
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip()
    return token or None


def _unauthorized(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"code": code, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    token = _extract_token(request)
    if token is None:
        raise _unauthorized("unauthorized", "Authentication required.")
    try:
        claims = verify_token(token)
    except AuthenticationError as exc:
        raise _unauthorized(exc.code, str(exc)) from exc

    user = request.app.state.user_store.get_by_id(claims.user_id)
    if user is None or not user.is_active:
        raise _unauthorized("unauthorized", "Authentication required.")
    return user
