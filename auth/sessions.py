"""
auth/sessions.py -- Server-side session store (SQLAlchemy Core).

A session is an opaque, high-entropy id (secrets.token_urlsafe(32)) bound
to one user id with a fixed expiry. The client only ever holds the id.

resolve() filters on the expiry inside the same SELECT that finds the row,
so a concurrent purge_expired() can never make a session look "found" and
then "expired" within one check: either the row is live at query time or
it is not returned. destroy() is idempotent.

The store can share the UserStore engine (pass engine=) so both tables
live in the same database; close() only disposes an engine it created.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table
from sqlalchemy.engine import Engine

from auth.models import SessionRecord
from auth.store import from_iso, make_engine, to_iso, translate_errors
from core.config import get_settings

logger = logging.getLogger("portalauth.auth.sessions")

_metadata = MetaData()

_sessions = Table(
    "sessions",
    _metadata,
    Column("sid", String(64), primary_key=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("expires_at", String(32), nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_session_id() -> str:
    """Return 256 bits of URL-safe randomness. Never derived from the user id."""
    return secrets.token_urlsafe(32)


class SqlSessionStore:
    """Production SessionStore adapter."""

    def __init__(
        self,
        db_url: str | None = None,
        *,
        engine: Engine | None = None,
        ttl_seconds: int | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._owns_engine = engine is None
        self.engine: Engine = engine if engine is not None else make_engine(db_url or get_settings().auth_db_url)
        self.ttl = timedelta(seconds=ttl_seconds or get_settings().session_ttl_seconds)
        self._clock = clock
        with translate_errors("create_schema"):
            _metadata.create_all(self.engine)

    def create(self, user_id: int) -> str:
        """Insert a new session for user_id and return its opaque id."""
        now = self._clock()
        session_id = new_session_id()
        with translate_errors("session_create"), self.engine.begin() as conn:
            conn.execute(
                _sessions.insert().values(
                    sid=session_id,
                    user_id=user_id,
                    expires_at=to_iso(now + self.ttl),
                    created_at=to_iso(now),
                )
            )
        return session_id

    def get(self, session_id: str) -> SessionRecord | None:
        """Return the live session record, or None if absent or expired."""
        if not session_id:
            return None
        with translate_errors("session_get"), self.engine.connect() as conn:
            row = conn.execute(
                _sessions.select().where(
                    (_sessions.c.sid == session_id) & (_sessions.c.expires_at > to_iso(self._clock()))
                )
            ).fetchone()
        if row is None:
            return None
        return SessionRecord(
            session_id=row.sid,
            user_id=row.user_id,
            expires_at=from_iso(row.expires_at),
            created_at=from_iso(row.created_at),
        )

    def resolve(self, session_id: str) -> int | None:
        """Return the bound user id for a live session, else None."""
        record = self.get(session_id)
        return record.user_id if record is not None else None

    def destroy(self, session_id: str) -> None:
        """Delete the session. Deleting an absent session is not an error."""
        if not session_id:
            return
        with translate_errors("session_destroy"), self.engine.begin() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.sid == session_id))

    def destroy_all_for_user(self, user_id: int) -> int:
        """Delete every session bound to user_id. Returns the number removed."""
        with translate_errors("session_destroy_all"), self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
        return result.rowcount

    def purge_expired(self) -> int:
        """Delete all sessions at or past their expiry. Returns rows removed."""
        with translate_errors("session_purge"), self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= to_iso(self._clock())))
        if result.rowcount:
            logger.info("Purged %d expired sessions", result.rowcount)
        return result.rowcount

    def close(self) -> None:
        if self._owns_engine:
            self.engine.dispose()
