"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in rbac/models.py -- dataclasses own domain shape; stores and services do the
work.

Layer rule: no imports from api/ or rbac/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class UserStatus(str, Enum):
    active = "active"
    inactive = "inactive"
    suspended = "suspended"


@dataclass
class User:
    """Represents an identity that can log in to the portal.

    role is a role NAME, resolved against the role catalog on every
    authorization check. It is deliberately not a foreign key: seeding and
    user creation are independent flows, so a user may briefly reference a
    role that bootstrap has not created yet. The gate denies in that case.

    email is stored lowercase; the store normalizes on insert and lookup.

    user_code is the human-readable student or employee number
    (see auth/credentials.generate_student_id). None for system identities
    created before a code was assigned.

    must_change_password is set for identities created with a temporary
    password (the fallback admin). The password-change route clears it.
    """

    email: str
    role: str
    id: int | None = None
    hashed_password: str | None = None
    status: str = UserStatus.active.value
    first_name: str = ""
    last_name: str = ""
    user_code: str | None = None
    must_change_password: bool = False
    created_at: str | None = None
    last_login: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.active.value

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
