"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. UserStore is the repository; the _row_to_*
functions at the bottom are the mappers. Services never touch SQL directly.

Single-active-row invariant:
  refresh_tokens and login_codes are keyed by user_id. save_refresh_token()
  and save_login_code() delete the user's row and insert the new one inside a
  single transaction (engine.begin()), so a user never holds two live rows and
  the last writer wins when two requests race.

Timestamps are stored as fixed-width UTC ISO 8601 strings
(timespec="microseconds"), which keeps lexicographic order equal to
chronological order for purge_expired().

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.errors import StoreUnavailableError
from auth.models import ID_LENGTH, LoginCode, RefreshToken, Role, User, generate_id

logger = logging.getLogger("benefits.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(ID_LENGTH), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("name", String(255), nullable=False),
    Column("created_at", String(32), nullable=False),
)

_user_roles = Table(
    "user_roles",
    _metadata,
    Column("user_id", String(ID_LENGTH), primary_key=True),
    Column("role", String(30), primary_key=True),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("user_id", String(ID_LENGTH), primary_key=True),
    Column("value", Text, nullable=False, unique=True),
    Column("expires_at", String(32), nullable=False),
)

_login_codes = Table(
    "login_codes",
    _metadata,
    Column("user_id", String(ID_LENGTH), primary_key=True),
    Column("code", Integer, nullable=False),
    Column("expires_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind token writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _normalize_email(email: str) -> str:
    return email.strip().lower()


@contextmanager
def store_errors() -> Iterator[None]:
    """Translate SQLAlchemy failures into StoreUnavailableError."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception("Auth store operation failed")
        raise StoreUnavailableError() from exc


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for users, role membership, refresh tokens and login codes.

    Usage:
        store = UserStore("sqlite:///:memory:")
        uid = store.create_user(User(email="a@b.com", name="Ann", roles={Role.USER}))
        store.get_roles(uid)   # {Role.USER}
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
    # Users and roles
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a user with its roles and return the user id.

        A 20-character id is generated when user.id is None. Raises
        sqlalchemy.exc.IntegrityError if the email is already registered.
        """
        user_id = user.id or generate_id()
        with self.engine.begin() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    email=_normalize_email(user.email),
                    name=user.name,
                    created_at=_to_iso(datetime.now(timezone.utc)),
                )
            )
            for role in user.roles:
                conn.execute(_user_roles.insert().values(user_id=user_id, role=Role(role).value))
        return user_id

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        if row is None:
            return None
        return _row_to_user(row, self.get_roles(row.id))

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == _normalize_email(email))).fetchone()
        if row is None:
            return None
        return _row_to_user(row, self.get_roles(row.id))

    def get_roles(self, user_id: str) -> set[Role]:
        """Current role membership. Labels outside the Role enum are skipped."""
        with self.engine.connect() as conn:
            rows = conn.execute(_user_roles.select().where(_user_roles.c.user_id == user_id)).fetchall()
        roles: set[Role] = set()
        for row in rows:
            try:
                roles.add(Role(row.role))
            except ValueError:
                logger.warning("Ignoring unknown role %r on user %s", row.role, user_id)
        return roles

    def add_role(self, user_id: str, role: Role) -> bool:
        """Grant a role. Returns False if the user already had it."""
        if Role(role) in self.get_roles(user_id):
            return False
        with self.engine.begin() as conn:
            conn.execute(_user_roles.insert().values(user_id=user_id, role=Role(role).value))
        return True

    def remove_role(self, user_id: str, role: Role) -> bool:
        """Revoke a role. Returns True if a membership row was deleted."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _user_roles.delete().where(
                    (_user_roles.c.user_id == user_id) & (_user_roles.c.role == Role(role).value)
                )
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def get_refresh_token(self, value: str) -> RefreshToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.value == value)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def save_refresh_token(self, token: RefreshToken) -> None:
        """Replace the user's refresh token row (last writer wins)."""
        with self.engine.begin() as conn:
            conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == token.user_id))
            conn.execute(
                _refresh_tokens.insert().values(
                    user_id=token.user_id,
                    value=token.value,
                    expires_at=_to_iso(token.expires_at),
                )
            )

    def delete_refresh_token(self, value: str) -> bool:
        """Delete the row holding this value. Returns False if none matched."""
        with self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.value == value))
        return result.rowcount > 0

    def delete_refresh_tokens_for_user(self, user_id: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == user_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Login codes
    # ------------------------------------------------------------------

    def get_login_code(self, user_id: str) -> LoginCode | None:
        with self.engine.connect() as conn:
            row = conn.execute(_login_codes.select().where(_login_codes.c.user_id == user_id)).fetchone()
        return _row_to_login_code(row) if row is not None else None

    def find_login_code(self, code: int) -> LoginCode | None:
        """First row holding this code. Codes are not unique across users."""
        with self.engine.connect() as conn:
            row = conn.execute(_login_codes.select().where(_login_codes.c.code == code)).fetchone()
        return _row_to_login_code(row) if row is not None else None

    def save_login_code(self, login_code: LoginCode) -> None:
        """Replace the user's login code row (last writer wins)."""
        with self.engine.begin() as conn:
            conn.execute(_login_codes.delete().where(_login_codes.c.user_id == login_code.user_id))
            conn.execute(
                _login_codes.insert().values(
                    user_id=login_code.user_id,
                    code=login_code.code,
                    expires_at=_to_iso(login_code.expires_at),
                )
            )

    def delete_login_code(self, *, user_id: str | None = None, code: int | None = None) -> bool:
        """Delete at most one login code row.

        user_id alone deletes that user's code. user_id and code together
        delete only if the stored code still matches, which makes the delete
        a compare-and-swap: of two racing callers only one sees True. code
        alone deletes the first row holding that value, never another
        user's row as well.
        """
        if user_id is None and code is None:
            raise ValueError("delete_login_code() needs user_id, code or both")
        with self.engine.begin() as conn:
            if user_id is None:
                row = conn.execute(
                    select(_login_codes.c.user_id).where(_login_codes.c.code == code).limit(1)
                ).fetchone()
                if row is None:
                    return False
                user_id = row.user_id
            stmt = _login_codes.delete().where(_login_codes.c.user_id == user_id)
            if code is not None:
                stmt = stmt.where(_login_codes.c.code == code)
            result = conn.execute(stmt)
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def purge_expired(self, now: datetime) -> tuple[int, int]:
        """Delete refresh tokens and login codes past their TTL.

        Returns (refresh_tokens_removed, login_codes_removed).
        """
        cutoff = _to_iso(now)
        with self.engine.begin() as conn:
            tokens = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at <= cutoff))
            codes = conn.execute(_login_codes.delete().where(_login_codes.c.expires_at <= cutoff))
        return tokens.rowcount, codes.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, roles: set[Role]) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        roles=roles,
        created_at=row.created_at,
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(user_id=row.user_id, value=row.value, expires_at=_from_iso(row.expires_at))


def _row_to_login_code(row) -> LoginCode:
    return LoginCode(user_id=row.user_id, code=row.code, expires_at=_from_iso(row.expires_at))
