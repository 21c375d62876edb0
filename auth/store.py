"""
auth/store.py -- SQLAlchemy Core persistence layer for user identities.

Pattern: Repository + Data Mapper (same as rbac/store.py).
UserStore is the repository; _row_to_user is the mapper. Route, dependency,
and bootstrap code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Only password hashes are stored -- callers hash with
  auth.credentials.hash_password() before calling create_user().

Error translation:
  IntegrityError (duplicate email / user_code)      -> ConflictError
  OperationalError / InterfaceError (unreachable DB) -> PersistenceError

users.role is a plain string column, not a foreign key into the role
catalog. Seeding and user creation are independent flows; the authorization
gate enforces that the role exists.

Layer rule: no imports from api/ or rbac/.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError

from auth.errors import ConflictError, PersistenceError
from auth.models import User
from core.config import get_settings, now_iso

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text),
    Column("role", String(100), nullable=False),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("first_name", String(100), nullable=False, server_default=""),
    Column("last_name", String(100), nullable=False, server_default=""),
    Column("user_code", String(50), unique=True),  # student / employee number
    Column("must_change_password", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("last_login", String(32)),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers never block on the bootstrap writer."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except IntegrityError as exc:
        raise ConflictError(str(exc.orig)) from exc
    except (OperationalError, InterfaceError) as exc:
        raise PersistenceError(f"user store unavailable: {exc.orig}") from exc


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore()
        uid = store.create_user(User(email="a@uni.edu", role="Student", hashed_password=hash_password("pw")))
        user = store.get_by_email("a@uni.edu")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        with _translate_errors():
            _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        """Return True if at least one user record exists."""
        with _translate_errors(), self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises ConflictError if the email (or user_code) already exists. The
        fallback-admin bootstrap relies on this to stay single even when two
        runs race past the get_by_email() check.
        """
        with _translate_errors(), self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email.strip().lower(),
                    hashed_password=user.hashed_password,
                    role=user.role,
                    status=user.status,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    user_code=user.user_code,
                    must_change_password=1 if user.must_change_password else 0,
                    created_at=now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email (case-insensitive). Returns None if not found."""
        with _translate_errors(), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.strip().lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with _translate_errors(), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def user_code_exists(self, user_code: str) -> bool:
        """Return True if a student/employee number is already assigned."""
        with _translate_errors(), self.engine.connect() as conn:
            row = conn.execute(select(_users.c.id).where(_users.c.user_code == user_code)).fetchone()
        return row is not None

    def count_by_email(self, email: str) -> int:
        with _translate_errors(), self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_users).where(_users.c.email == email.strip().lower())
            ).scalar()
        return result or 0

    def list_users(self) -> list[User]:
        """Return all users ordered by email."""
        with _translate_errors(), self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.email)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: role, status, hashed_password, must_change_password,
        first_name, last_name. must_change_password is passed as bool and
        stored as 0/1.

        Returns True if a row was updated, False if user_id was not found.
        """
        if "must_change_password" in fields:
            fields["must_change_password"] = 1 if fields["must_change_password"] else 0
        with _translate_errors(), self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current UTC timestamp as last_login for the given user."""
        with _translate_errors(), self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=now_iso()))
            conn.commit()

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        role=row.role,
        status=row.status,
        first_name=row.first_name,
        last_name=row.last_name,
        user_code=row.user_code,
        must_change_password=bool(row.must_change_password),
        created_at=row.created_at,
        last_login=row.last_login,
    )
