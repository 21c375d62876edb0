"""
auth/tokens.py -- Bearer token issuance and verification (JWT).

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       user_id, email (as `sub`), role NAME, and expiry. The role's permission
       set is never embedded: the gate re-reads the catalog on every request,
       so a role change applies to tokens that were issued before it.

  Verification raises one typed error per failure state instead of returning
       None, so the route layer can tell the client whether to re-login
       (expired) or stop retrying (malformed / bad signature):
         TokenMalformed    -- not a JWT, or required claims missing/ill-typed
         SignatureMismatch -- signed with a different secret, or tampered
         TokenExpired      -- now >= exp
       The signature is checked before expiry, so a tampered expired token is
       reported as SignatureMismatch.

  Statelessness: no session table, no revocation list. verify_token() is a
       pure function of (token, now, secret) and safe to call from any number
       of threads.

Layer rule: no imports from api/ or rbac/. Import from core/ is allowed.
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from jose.exceptions import JWTClaimsError

from auth.errors import SignatureMismatch, TokenExpired, TokenMalformed
from core.config import get_settings

logger = logging.getLogger("campusrbac.auth")

_ALGORITHM = "HS256"


@dataclass(frozen=True)
class Claims:
    """Identity payload carried by a bearer token."""

    user_id: int
    email: str
    role: str


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def issue_token(claims: Claims, secret: str | None = None, ttl: int | None = None) -> str:
    """Encode a signed JWT for `claims` that expires `ttl` seconds from now.

    Args:
        claims: Identity to embed.
        secret: Signing key. Defaults to Settings.secret_key.
        ttl:    Lifetime in seconds. None uses Settings.token_expire_seconds.
                0 is honoured and yields a token that is already expired.
    """
    settings = get_settings()
    if ttl is None:
        ttl = settings.token_expire_seconds
    if ttl < 0:
        raise ValueError("ttl must not be negative")
    expire = datetime.now(timezone.utc) + timedelta(seconds=ttl)
    payload = {
        "sub": claims.email,
        "user_id": claims.user_id,
        "role": claims.role,
        "exp": calendar.timegm(expire.utctimetuple()),
    }
    return jwt.encode(payload, settings.secret_key if secret is None else secret, algorithm=_ALGORITHM)


def verify_token(token: str, secret: str | None = None, now: datetime | None = None) -> Claims:
    """Verify a JWT and return its Claims, or raise the matching AuthenticationError.

    Args:
        token:  Encoded JWT.
        secret: Verification key. Defaults to Settings.secret_key.
        now:    Evaluation instant (UTC). Defaults to the current time; tests
                pass a fixed value.
    """
    # Structure first: anything that is not a well-formed JWS is malformed,
    # regardless of which secret we would verify it against.
    try:
        header = jwt.get_unverified_header(token)
        jwt.get_unverified_claims(token)
    except JWTError as exc:
        raise TokenMalformed("token is not a well-formed JWT") from exc
    if header.get("alg") != _ALGORITHM:
        raise TokenMalformed(f"unexpected algorithm {header.get('alg')!r}")

    try:
        # Expiry is checked below against `now`, not jose's wall clock.
        payload = jwt.decode(
            token,
            get_settings().secret_key if secret is None else secret,
            algorithms=[_ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTClaimsError as exc:
        raise TokenMalformed(str(exc)) from exc
    except JWTError as exc:
        logger.debug("Token signature rejected: %s", exc)
        raise SignatureMismatch("token signature verification failed") from exc

    exp = payload.get("exp")
    user_id = payload.get("user_id")
    email = payload.get("sub")
    role = payload.get("role")
    if not isinstance(exp, int) or not isinstance(user_id, int) or not isinstance(role, str) or not email:
        raise TokenMalformed("token is missing required claims")

    instant = now or datetime.now(timezone.utc)
    if calendar.timegm(instant.utctimetuple()) >= exp:
        raise TokenExpired("token has expired")

    return Claims(user_id=user_id, email=email, role=role)


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the JWT access token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the JWT expiry so both expire together.
    """
    settings = get_settings()
    duration = expire_seconds if expire_seconds > 0 else settings.token_expire_seconds
    response.set_cookie(
        "access_token",
        value=token,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=duration,
    )
