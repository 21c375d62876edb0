"""
auth/credentials.py -- Password hashing, login verification, and identifier generation.

Security design decisions:
  Passwords: bcrypt used directly (no passlib wrapper). The cost factor comes
       from Settings.bcrypt_rounds so operators can raise it as hardware gets
       faster without a code change. bcrypt.checkpw compares in constant time,
       so verification leaks nothing beyond what the scheme already guarantees.

  Worker pool: bcrypt is CPU-bound. Async request handlers call the *_async
       variants, which run on a bounded ThreadPoolExecutor (bcrypt releases the
       GIL while hashing). A burst of logins therefore queues on the pool
       instead of blocking the event loop.

  Timing equalization: authenticate_user() always runs bcrypt, against a
       dummy hash when the email is unknown, so response time does not reveal
       whether an account exists.

  Identifiers: random_string() and the student/employee ID helpers are for
       non-secret, human-facing identifiers only. random_string() uses the
       `random` module and is NOT suitable for tokens or passwords -- use
       `secrets` for those.

Layer rule: no imports from api/ or rbac/. Import from core/ is allowed.
"""

from __future__ import annotations

import asyncio
import logging
import random
import string
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from functools import lru_cache
from typing import TYPE_CHECKING

import bcrypt

from auth.errors import ConflictError, CredentialMismatch, ValidationError
from core.config import BCRYPT_MAX_PASSWORD_BYTES, get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("campusrbac.auth")

_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt only hashes the first 72 bytes of input (and bcrypt>=5 refuses
    longer input), so a password whose UTF-8 encoding exceeds
    BCRYPT_MAX_PASSWORD_BYTES raises ValidationError. Multibyte characters
    count by their encoded size, not as one character.
    """
    encoded = plain.encode("utf-8")
    if len(encoded) > BCRYPT_MAX_PASSWORD_BYTES:
        raise ValidationError(f"password must be at most {BCRYPT_MAX_PASSWORD_BYTES} bytes (UTF-8)")
    rounds = get_settings().bcrypt_rounds
    return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash, or a candidate too long to have been hashed, is
    treated as a mismatch rather than an error.
    """
    encoded = plain.encode("utf-8")
    if len(encoded) > BCRYPT_MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(encoded, hashed.encode("utf-8"))
    except ValueError:
        return False


@lru_cache(maxsize=1)
def _hash_pool() -> ThreadPoolExecutor:
    return ThreadPoolExecutor(max_workers=get_settings().hash_workers, thread_name_prefix="bcrypt")


def shutdown_hash_pool() -> None:
    """Stop the bcrypt worker pool. The next *_async call starts a fresh one."""
    if _hash_pool.cache_info().currsize:
        _hash_pool().shutdown(wait=True)
        _hash_pool.cache_clear()


async def hash_password_async(plain: str) -> str:
    """hash_password() dispatched to the bounded bcrypt worker pool."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(_hash_pool(), hash_password, plain)


async def verify_password_async(plain: str, hashed: str) -> bool:
    """verify_password() dispatched to the bounded bcrypt worker pool."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(_hash_pool(), verify_password, plain, hashed)


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    # Computed lazily (not at import) so the configured work factor applies.
    return hash_password("campusrbac_timing_dummy")


# ---------------------------------------------------------------------------
# Login verification (constant-time)
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, email: str, password: str) -> User:
    """Authenticate an email/password login with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown email: bcrypt runs against the dummy hash (same cost)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the User on success. Raises CredentialMismatch on unknown email,
    wrong password, or a non-active account. The exception message is for
    server logs only; routes must answer with a generic message.
    """
    user = store.get_by_email(email)
    if user is None or user.hashed_password is None:
        # Equalize timing -- do NOT return early before running bcrypt
        verify_password(password, _dummy_hash())
        raise CredentialMismatch("unknown account")
    if not verify_password(password, user.hashed_password):
        logger.info("Failed login attempt for user_id=%s", user.id)
        raise CredentialMismatch("password mismatch")
    if not user.is_active:
        logger.info("Login refused for user_id=%s (status=%s)", user.id, user.status)
        raise CredentialMismatch("account not active")
    return user


# ---------------------------------------------------------------------------
# Non-secret identifiers
# ---------------------------------------------------------------------------


def random_string(length: int = 32) -> str:
    """Return `length` characters sampled uniformly from [A-Za-z0-9].

    NOT cryptographically secure. Use for display identifiers and fixture
    data only, never for passwords, tokens, or keys.
    """
    return "".join(random.choices(_ALPHABET, k=length))  # noqa: S311 # nosec B311


def _timestamp_suffix() -> str:
    # Last four digits of wall-clock milliseconds. Two calls in the same
    # millisecond (or 10 s apart) yield the same suffix.
    return str(time.time_ns() // 1_000_000)[-4:]


def generate_student_id(year: str | int, department: str) -> str:
    """Compose a student number: <year><department><4-digit time suffix>.

    e.g. generate_student_id(2024, "CS") -> "2024CS8173"

    Collisions are possible for the same year/department within the suffix
    window. Wrap with allocate_identifier() when the result must be unique.
    """
    return f"{year}{department}{_timestamp_suffix()}"


def generate_employee_id(department: str, role: str) -> str:
    """Compose an employee number: <department><ROLE[:2]><4-digit time suffix>.

    e.g. generate_employee_id("FIN", "officer") -> "FINOF0412"

    Same collision caveat as generate_student_id().
    """
    return f"{department}{role[:2].upper()}{_timestamp_suffix()}"


def allocate_identifier(factory: Callable[[], str], is_taken: Callable[[str], bool], attempts: int = 5) -> str:
    """Return the first candidate from factory() that is_taken() rejects as unused.

    Sleeps one millisecond between attempts so timestamp-based factories
    produce a fresh suffix. Raises ConflictError when every attempt collides.
    The check is not atomic; the store's UNIQUE constraint remains the final
    guard against a concurrent writer taking the same value.
    """
    for attempt in range(attempts):
        candidate = factory()
        if not is_taken(candidate):
            return candidate
        logger.debug("Identifier %s already taken (attempt %d/%d)", candidate, attempt + 1, attempts)
        time.sleep(0.001)
    raise ConflictError(f"could not allocate a unique identifier after {attempts} attempts")
