"""
auth/directory.py -- Capability interfaces for the storage collaborators.

UserDirectory is the persistence contract for user records and their
reset tokens. SessionStore maps opaque session ids to user ids. Each has
two interchangeable adapters:

  UserDirectory: auth.store.UserStore (SQLAlchemy) / auth.memory.InMemoryUserStore
  SessionStore:  auth.sessions.SqlSessionStore     / auth.memory.InMemorySessionStore

The services receive one adapter of each at construction time. Nothing
selects an adapter at runtime; the in-memory variants exist for tests.

Contract notes shared by all adapters:
  - create() raises DuplicateUsername / DuplicateEmail atomically, so two
    concurrent inserts of the same username cannot both succeed.
  - redeem_reset_token() updates the digest and clears the token in one
    conditional write and returns False if the token was not live.
  - Transport failures surface as auth.errors.DependencyUnavailable.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from auth.models import User


class UserDirectory(Protocol):
    def get_by_id(self, user_id: int) -> User | None: ...

    def get_by_username(self, username: str) -> User | None: ...

    def get_by_email(self, email: str) -> User | None: ...

    def get_by_reset_token(self, token: str) -> User | None: ...

    def create(self, user: User) -> User: ...

    def set_password_digest(self, user_id: int, digest: str) -> bool: ...

    def set_reset_token(self, user_id: int, token: str, expires_at: datetime) -> bool: ...

    def clear_reset_token(self, user_id: int) -> bool: ...

    def redeem_reset_token(self, token: str, digest: str, now: datetime) -> bool: ...

    def update_profile(self, user_id: int, **fields: str | None) -> bool: ...

    def ping(self) -> bool: ...


class SessionStore(Protocol):
    def create(self, user_id: int) -> str: ...

    def resolve(self, session_id: str) -> int | None: ...

    def destroy(self, session_id: str) -> None: ...

    def destroy_all_for_user(self, user_id: int) -> int: ...

    def purge_expired(self) -> int: ...
