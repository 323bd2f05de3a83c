"""
auth/service.py -- Authenticator: registration, login, logout, session lookup.

State machine per client: Anonymous -> Authenticated only through
establish_session(), which is reached only after a successful credential
check (login), a successful insert (register) or a verified identity
assertion (auth.federated). A failed comparison never creates a session.

Timing equalisation: login() always runs exactly one hasher.verify(). When
the username is unknown, or the account only has the federated sentinel,
it verifies against a dummy digest computed once at construction, so the
response time does not reveal which failure happened. Both failures raise
the same InvalidCredentials instance type with the same message.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from auth.directory import SessionStore, UserDirectory
from auth.errors import DuplicateUsername, InvalidCredentials, Unauthorized
from auth.hashing import CredentialHasher, is_usable_digest
from auth.models import AuthSession, PublicUser, User

logger = logging.getLogger("portalauth.auth")


class Authenticator:
    def __init__(self, users: UserDirectory, sessions: SessionStore, hasher: CredentialHasher) -> None:
        self.users = users
        self.sessions = sessions
        self.hasher = hasher
        self._dummy_digest = hasher.hash("portalauth_timing_dummy")

    def register(
        self,
        username: str,
        password: str,
        *,
        email: str | None = None,
        first_name: str | None = None,
        last_name: str | None = None,
        profile_image_url: str | None = None,
    ) -> AuthSession:
        """Create a password account and log it in.

        The pre-check only saves a hash computation on the common duplicate
        case; the directory's unique constraint is what rejects a concurrent
        duplicate, surfacing as DuplicateUsername from create().
        """
        if self.users.get_by_username(username) is not None:
            logger.info("Registration rejected: username %r exists", username)
            raise DuplicateUsername()

        user = self.users.create(
            User(
                username=username,
                hashed_password=self.hasher.hash(password),
                email=email,
                first_name=first_name,
                last_name=last_name,
                profile_image_url=profile_image_url,
            )
        )
        logger.info("User registered: id=%s username=%r", user.id, user.username)
        return self.establish_session(user)

    def login(self, username: str, password: str) -> AuthSession:
        user = self.users.get_by_username(username)
        if user is None or not is_usable_digest(user.hashed_password):
            # Equalize timing -- do NOT return early before running the hasher.
            self.hasher.verify(password, self._dummy_digest)
            logger.warning("Login failed for username %r", username)
            raise InvalidCredentials()
        if not self.hasher.verify(password, user.hashed_password):
            logger.warning("Login failed for username %r", username)
            raise InvalidCredentials()
        logger.info("User authenticated: id=%s", user.id)
        return self.establish_session(user)

    def establish_session(self, user: User) -> AuthSession:
        """Bind a fresh opaque session id to the user and return the public view."""
        session_id = self.sessions.create(user.id)
        return AuthSession(user=PublicUser.from_user(user), session_id=session_id)

    def logout(self, session_id: str | None) -> None:
        """Destroy the session. Idempotent; an unknown or empty id is ignored."""
        if session_id:
            self.sessions.destroy(session_id)

    def current_user(self, session_id: str | None) -> PublicUser:
        """Resolve a session id to its user, or raise Unauthorized.

        A session whose user no longer exists is destroyed on the spot so it
        cannot be replayed later.
        """
        if not session_id:
            raise Unauthorized()
        user_id = self.sessions.resolve(session_id)
        if user_id is None:
            raise Unauthorized()
        user = self.users.get_by_id(user_id)
        if user is None:
            logger.warning("Session bound to missing user id=%s; destroying", user_id)
            self.sessions.destroy(session_id)
            raise Unauthorized()
        return PublicUser.from_user(user)
