"""
auth/memory.py -- In-process UserDirectory and SessionStore adapters.

Test doubles with the same contract as UserStore / SqlSessionStore. They
are never selected automatically; callers construct them explicitly.

Records live in an id-indexed dict guarded by one lock. Every read returns
a copy and every write replaces the stored record by id, so callers can
never mutate shared state by holding on to a returned object.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from auth.errors import DuplicateEmail, DuplicateUsername
from auth.models import SessionRecord, User
from auth.sessions import new_session_id
from auth.store import normalize_email, to_iso

_PROFILE_FIELDS = frozenset({"first_name", "last_name", "profile_image_url", "oauth_provider", "oauth_subject"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryUserStore:
    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._users: dict[int, User] = {}
        self._next_id = 1
        self._lock = threading.Lock()
        self._clock = clock

    def ping(self) -> bool:
        return True

    def get_by_id(self, user_id: int) -> User | None:
        with self._lock:
            user = self._users.get(user_id)
            return replace(user) if user is not None else None

    def get_by_username(self, username: str) -> User | None:
        return self._find(lambda u: u.username == username)

    def get_by_email(self, email: str) -> User | None:
        normalized = normalize_email(email)
        if normalized is None:
            return None
        return self._find(lambda u: u.email == normalized)

    def get_by_reset_token(self, token: str) -> User | None:
        if not token:
            return None
        return self._find(lambda u: u.reset_token == token)

    def create(self, user: User) -> User:
        email = normalize_email(user.email)
        now = to_iso(self._clock())
        with self._lock:
            if any(u.username == user.username for u in self._users.values()):
                raise DuplicateUsername()
            if email is not None and any(u.email == email for u in self._users.values()):
                raise DuplicateEmail()
            stored = replace(
                user,
                id=self._next_id,
                email=email,
                reset_token=None,
                reset_token_expires_at=None,
                created_at=now,
                updated_at=now,
            )
            self._users[stored.id] = stored
            self._next_id += 1
            return replace(stored)

    def set_password_digest(self, user_id: int, digest: str) -> bool:
        return self._update(user_id, hashed_password=digest)

    def set_reset_token(self, user_id: int, token: str, expires_at: datetime) -> bool:
        return self._update(user_id, reset_token=token, reset_token_expires_at=expires_at)

    def clear_reset_token(self, user_id: int) -> bool:
        return self._update(user_id, reset_token=None, reset_token_expires_at=None)

    def redeem_reset_token(self, token: str, digest: str, now: datetime) -> bool:
        if not token:
            return False
        with self._lock:
            for user in self._users.values():
                if user.reset_token == token:
                    if user.reset_token_expires_at is None or user.reset_token_expires_at <= now:
                        return False
                    self._users[user.id] = replace(
                        user,
                        hashed_password=digest,
                        reset_token=None,
                        reset_token_expires_at=None,
                        updated_at=to_iso(self._clock()),
                    )
                    return True
        return False

    def update_profile(self, user_id: int, **fields: str | None) -> bool:
        unknown = set(fields) - _PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Unknown profile fields: {sorted(unknown)!r}")
        if not fields:
            return False
        return self._update(user_id, **fields)

    def _find(self, predicate: Callable[[User], bool]) -> User | None:
        with self._lock:
            for user in self._users.values():
                if predicate(user):
                    return replace(user)
        return None

    def _update(self, user_id: int, **values) -> bool:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                return False
            self._users[user_id] = replace(user, updated_at=to_iso(self._clock()), **values)
            return True


class InMemorySessionStore:
    def __init__(self, ttl_seconds: int = 7 * 24 * 60 * 60, clock: Callable[[], datetime] = _utcnow) -> None:
        self._sessions: dict[str, SessionRecord] = {}
        self._lock = threading.Lock()
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    def create(self, user_id: int) -> str:
        now = self._clock()
        session_id = new_session_id()
        with self._lock:
            self._sessions[session_id] = SessionRecord(
                session_id=session_id,
                user_id=user_id,
                expires_at=now + self.ttl,
                created_at=now,
            )
        return session_id

    def get(self, session_id: str) -> SessionRecord | None:
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None or record.expires_at <= self._clock():
                return None
            return record

    def resolve(self, session_id: str) -> int | None:
        record = self.get(session_id)
        return record.user_id if record is not None else None

    def destroy(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def destroy_all_for_user(self, user_id: int) -> int:
        with self._lock:
            doomed = [sid for sid, rec in self._sessions.items() if rec.user_id == user_id]
            for sid in doomed:
                del self._sessions[sid]
        return len(doomed)

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            doomed = [sid for sid, rec in self._sessions.items() if rec.expires_at <= now]
            for sid in doomed:
                del self._sessions[sid]
        return len(doomed)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
