"""
auth/store.py -- SQLAlchemy Core persistence layer for user records.

Pattern: Repository + Data Mapper (same as catalog/store.py).
UserStore is the repository; _row_to_user is the mapper. Route, guard and
flow code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  password_changed_at is stamped here, not by callers. save_user() compares
  the incoming hash with the stored one inside the same transaction and, when
  they differ, writes password_changed_at alongside the new hash in a single
  UPDATE. Every path that changes a password (reset, update, admin CLI) goes
  through save_user(), so none of them can forget the stamp.

Timestamps are stored as ISO 8601 UTC strings and mapped to aware datetimes.

Layer rule: no imports from api/, core/, or catalog/.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.errors import ValidationFailed
from auth.models import ROLES, User

# Backdating applied to password_changed_at so a token issued in the same
# second as the write is not treated as stale.
PASSWORD_CHANGED_SKEW = timedelta(seconds=1)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("photo", String(255), nullable=False, server_default="default.jpg"),
    Column("hashed_password", Text),
    Column("password_changed_at", String(32)),
    Column("password_reset_token", String(64), index=True),  # HMAC-SHA256 hex
    Column("password_reset_expires", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def validate_user(user: User) -> None:
    """Raise ValidationFailed if the record violates the user schema."""
    if not user.name or not user.name.strip():
        raise ValidationFailed("Please tell us your name.")
    if not _EMAIL_RE.match(user.email or ""):
        raise ValidationFailed("Please provide a valid email.")
    if user.role not in ROLES:
        raise ValidationFailed(f"Role must be one of: {', '.join(ROLES)}.")
    if not user.hashed_password:
        raise ValidationFailed("Please provide a password.")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///natours.db")
        uid = store.create_user(User(name="Ada", email="ada@example.com", hashed_password=h))
        user = store.get_by_email("ada@example.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return result or 0

    def create_user(self, user: User) -> int:
        """Validate and insert a new user; return its database ID.

        The email is lower-cased before insert. password_changed_at is left
        as given (normally None) -- creation is not a password change.

        Raises ValidationFailed on schema violations and
        sqlalchemy.exc.IntegrityError if the email already exists.
        """
        user.email = user.email.strip().lower()
        validate_user(user)
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    name=user.name.strip(),
                    email=user.email,
                    role=user.role,
                    photo=user.photo,
                    hashed_password=user.hashed_password,
                    password_changed_at=_to_iso(user.password_changed_at),
                    password_reset_token=user.password_reset_token,
                    password_reset_expires=_to_iso(user.password_reset_expires),
                    created_at=_to_iso(_now()),
                    is_active=1 if user.is_active else 0,
                )
            )
            conn.commit()
            user.id = result.inserted_primary_key[0]
            return user.id

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email.strip().lower())).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_reset_token(self, token_hash: str) -> User | None:
        """Look up the user holding this reset-token hash.

        Expiry is NOT checked here; the caller compares password_reset_expires
        against its own clock.
        """
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.password_reset_token == token_hash)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by id. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.id)).fetchall()
        return [_row_to_user(r) for r in rows]

    def save_user(self, user: User, validate: bool = True, expected_reset_token: str | None = None) -> bool:
        """Persist every mutable field of an existing user in one UPDATE.

        If hashed_password differs from the stored value, password_changed_at
        is set to now - PASSWORD_CHANGED_SKEW in the same statement and copied
        back onto the passed-in User.

        validate=False skips schema checks; it is used for token bookkeeping
        writes (issuing or clearing a reset token) that do not touch the
        user's profile.

        expected_reset_token makes the UPDATE conditional on the stored reset
        hash still being that value, so a reset token is consumed by exactly
        one writer even when two requests race on it.

        Returns True if a row was updated, False if user.id was not found or
        expected_reset_token no longer matches.
        """
        if user.id is None:
            raise ValueError("save_user() requires a persisted user; use create_user() first")
        user.email = user.email.strip().lower()
        if validate:
            validate_user(user)

        with self.engine.begin() as conn:
            current = conn.execute(select(_users.c.hashed_password).where(_users.c.id == user.id)).fetchone()
            if current is None:
                return False
            if current.hashed_password != user.hashed_password:
                user.password_changed_at = _now() - PASSWORD_CHANGED_SKEW
            where = _users.c.id == user.id
            if expected_reset_token is not None:
                where = where & (_users.c.password_reset_token == expected_reset_token)
            result = conn.execute(
                _users.update()
                .where(where)
                .values(
                    name=user.name,
                    email=user.email,
                    role=user.role,
                    photo=user.photo,
                    hashed_password=user.hashed_password,
                    password_changed_at=_to_iso(user.password_changed_at),
                    password_reset_token=user.password_reset_token,
                    password_reset_expires=_to_iso(user.password_reset_expires),
                    is_active=1 if user.is_active else 0,
                )
            )
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        role=row.role,
        photo=row.photo,
        hashed_password=row.hashed_password,
        password_changed_at=_from_iso(row.password_changed_at),
        password_reset_token=row.password_reset_token,
        password_reset_expires=_from_iso(row.password_reset_expires),
        created_at=row.created_at,
        is_active=bool(row.is_active),
    )
