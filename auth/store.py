"""
auth/store.py -- SQLAlchemy Core persistence layer for user records.

Pattern: Repository + Data Mapper.
UserStore is the repository (the production UserDirectory adapter);
_row_to_user is the mapper. Service and route code never touches SQL.

Security:
  All queries use bound parameters. No f-strings in SQL.

Atomicity:
  UNIQUE(username) and UNIQUE(email) are enforced by the database, so the
  duplicate check and the insert are one statement. Two concurrent
  registrations of the same username cannot both succeed; the loser gets
  an IntegrityError that create() turns into DuplicateUsername.

  Reset token redemption is a single conditional UPDATE filtered on the
  token and on its expiry. The row count decides the winner: a second
  concurrent redemption of the same token matches no row.

Timestamps are stored as fixed-width UTC ISO 8601 strings (microsecond
precision, "+00:00" offset), so string comparison in SQL orders them
chronologically.

Emails are normalised (stripped, lower-cased) on write and on lookup.
Usernames are compared exactly (case-sensitive).

DB path: auth/portalauth.db unless AUTH_DB_URL says otherwise.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import SingletonThreadPool

from auth.errors import DependencyUnavailable, DuplicateEmail, DuplicateUsername
from auth.models import User
from core.config import get_settings

logger = logging.getLogger("portalauth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("hashed_password", String(255), nullable=False),
    Column("email", String(255), unique=True),  # NULL allowed, many NULLs allowed
    Column("first_name", String(255)),
    Column("last_name", String(255)),
    Column("profile_image_url", Text),
    Column("oauth_provider", String(30)),
    Column("oauth_subject", Text),
    Column("reset_token", String(128), unique=True),
    Column("reset_token_expires_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# Fields update_profile() may touch. Validated before any SQL write.
_PROFILE_FIELDS = frozenset({"first_name", "last_name", "profile_image_url", "oauth_provider", "oauth_subject"})


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind writers.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an Engine with the SQLite threading and WAL settings applied."""
    connect_args: dict = {}
    engine_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        if "mode=memory" in db_url:
            # One connection per thread, all attached to the same shared-cache database.
            engine_args["poolclass"] = SingletonThreadPool
    engine = create_engine(db_url, connect_args=connect_args, **engine_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_iso(value: datetime) -> str:
    """Render an aware datetime as a fixed-width UTC ISO 8601 string."""
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def normalize_email(email: str | None) -> str | None:
    if email is None:
        return None
    email = email.strip().lower()
    return email or None


@contextmanager
def translate_errors(action: str) -> Iterator[None]:
    """Re-raise driver/transport failures as DependencyUnavailable.

    IntegrityError passes through untouched; callers turn it into a
    conflict error.
    """
    try:
        yield
    except IntegrityError:
        raise
    except SQLAlchemyError as exc:
        logger.error("Store operation %r failed: %s", action, exc.__class__.__name__)
        raise DependencyUnavailable() from exc


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore()
        user = store.create(User(username="alice", hashed_password=hasher.hash("secret1")))
        store.get_by_username("alice")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().auth_db_url)
        with translate_errors("create_schema"):
            _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.warning("User store ping failed")
            return False
        return True

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        return self._fetch_one("get_by_id", _users.c.id == user_id)

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        return self._fetch_one("get_by_username", _users.c.username == username)

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by normalised email. Returns None if not found or email is blank."""
        normalized = normalize_email(email)
        if normalized is None:
            return None
        return self._fetch_one("get_by_email", _users.c.email == normalized)

    def get_by_reset_token(self, token: str) -> User | None:
        """Return the user holding this exact reset token, expired or not.

        Expiry is the caller's decision; the record carries
        reset_token_expires_at for that check.
        """
        if not token:
            return None
        return self._fetch_one("get_by_reset_token", _users.c.reset_token == token)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, user: User) -> User:
        """Insert a new user and return the stored record (with id and timestamps).

        Raises DuplicateUsername or DuplicateEmail if a unique constraint
        rejects the insert. The constraint, not a prior SELECT, is what
        guarantees uniqueness under concurrency.
        """
        now = _now_iso()
        try:
            with translate_errors("create"), self.engine.begin() as conn:
                result = conn.execute(
                    _users.insert().values(
                        username=user.username,
                        hashed_password=user.hashed_password,
                        email=normalize_email(user.email),
                        first_name=user.first_name,
                        last_name=user.last_name,
                        profile_image_url=user.profile_image_url,
                        oauth_provider=user.oauth_provider,
                        oauth_subject=user.oauth_subject,
                        created_at=now,
                        updated_at=now,
                    )
                )
                user_id = result.inserted_primary_key[0]
        except IntegrityError as exc:
            if self.get_by_username(user.username) is not None:
                raise DuplicateUsername() from exc
            raise DuplicateEmail() from exc
        created = self.get_by_id(user_id)
        if created is None:
            raise DependencyUnavailable("User vanished after insert.")
        return created

    def set_password_digest(self, user_id: int, digest: str) -> bool:
        """Replace the stored digest. Returns False if user_id was not found."""
        return self._update("set_password_digest", _users.c.id == user_id, hashed_password=digest)

    def set_reset_token(self, user_id: int, token: str, expires_at: datetime) -> bool:
        """Store (token, expiry) on the user, superseding any earlier token."""
        return self._update(
            "set_reset_token",
            _users.c.id == user_id,
            reset_token=token,
            reset_token_expires_at=to_iso(expires_at),
        )

    def clear_reset_token(self, user_id: int) -> bool:
        return self._update(
            "clear_reset_token",
            _users.c.id == user_id,
            reset_token=None,
            reset_token_expires_at=None,
        )

    def redeem_reset_token(self, token: str, digest: str, now: datetime) -> bool:
        """Atomically swap in a new digest and clear a live reset token.

        The WHERE clause carries both the token match and the expiry check,
        so the read and the write are one statement. Returns True only for
        the single caller whose UPDATE matched the row.
        """
        if not token:
            return False
        return self._update(
            "redeem_reset_token",
            (_users.c.reset_token == token) & (_users.c.reset_token_expires_at > to_iso(now)),
            hashed_password=digest,
            reset_token=None,
            reset_token_expires_at=None,
        )

    def update_profile(self, user_id: int, **fields: str | None) -> bool:
        """Update profile and federated-link fields on an existing user.

        Only keys in _PROFILE_FIELDS are accepted; unknown keys raise
        ValueError rather than being silently ignored.
        """
        unknown = set(fields) - _PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Unknown profile fields: {sorted(unknown)!r}")
        if not fields:
            return False
        return self._update("update_profile", _users.c.id == user_id, **fields)

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fetch_one(self, action: str, clause) -> User | None:
        with translate_errors(action), self.engine.connect() as conn:
            row = conn.execute(_users.select().where(clause)).fetchone()
        return _row_to_user(row) if row is not None else None

    def _update(self, action: str, clause, **values) -> bool:
        """Run one UPDATE (bumping updated_at) and report whether a row matched."""
        values["updated_at"] = _now_iso()
        with translate_errors(action), self.engine.begin() as conn:
            result = conn.execute(_users.update().where(clause).values(**values))
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        hashed_password=row.hashed_password,
        email=row.email,
        first_name=row.first_name,
        last_name=row.last_name,
        profile_image_url=row.profile_image_url,
        oauth_provider=row.oauth_provider,
        oauth_subject=row.oauth_subject,
        reset_token=row.reset_token,
        reset_token_expires_at=from_iso(row.reset_token_expires_at),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
