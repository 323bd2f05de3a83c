"""
auth/federated.py -- Federated Identity Bridge.

Maps a verified identity assertion (email, display name, provider subject,
avatar) onto a directory user and logs that user in through the
Authenticator's session step.

New users get a username derived from the email local part. When that is
taken, a random numeric suffix is appended until the directory accepts the
insert. The stored credential is FEDERATED_SENTINEL, which no hasher output
can equal and which verify() refuses outright, so the account has no
password login. The sentinel and the provider subject stay inside the
directory; callers only ever see PublicUser.

Concurrent first logins with the same email: the loser's insert fails with
DuplicateEmail and the bridge falls back to the winner's record, so both
requests end up bound to the same user id.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable

from auth.directory import UserDirectory
from auth.errors import DuplicateEmail, DuplicateUsername, MissingEmail
from auth.hashing import FEDERATED_SENTINEL
from auth.models import AuthSession, FederatedIdentity, User
from auth.service import Authenticator

logger = logging.getLogger("portalauth.auth.federated")

MAX_USERNAME_ATTEMPTS = 20


def derive_username(email: str) -> str:
    local_part = email.split("@", 1)[0].strip()
    return local_part or "user"


def split_display_name(display_name: str | None) -> tuple[str | None, str | None]:
    """Split "Ada King Lovelace" into ("Ada", "King Lovelace")."""
    parts = (display_name or "").split()
    if not parts:
        return None, None
    return parts[0], " ".join(parts[1:]) or None


def _random_suffix() -> int:
    return secrets.randbelow(10000)


class FederatedIdentityBridge:
    def __init__(
        self,
        users: UserDirectory,
        authenticator: Authenticator,
        *,
        suffix: Callable[[], int] = _random_suffix,
    ) -> None:
        self.users = users
        self.authenticator = authenticator
        self._suffix = suffix

    def authenticate(self, identity: FederatedIdentity) -> AuthSession:
        email = (identity.email or "").strip()
        if not email:
            logger.warning("Federated login rejected: provider %r supplied no verified email", identity.provider)
            raise MissingEmail()

        user = self.users.get_by_email(email)
        if user is None:
            user = self._create_user(email, identity)
        else:
            user = self._refresh_profile(user, identity)
        return self.authenticator.establish_session(user)

    def _create_user(self, email: str, identity: FederatedIdentity) -> User:
        first_name, last_name = split_display_name(identity.display_name)
        base = derive_username(email)
        candidate = base
        for _ in range(MAX_USERNAME_ATTEMPTS):
            if self.users.get_by_username(candidate) is None:
                try:
                    user = self.users.create(
                        User(
                            username=candidate,
                            hashed_password=FEDERATED_SENTINEL,
                            email=email,
                            first_name=first_name,
                            last_name=last_name,
                            profile_image_url=identity.avatar_url or None,
                            oauth_provider=identity.provider,
                            oauth_subject=identity.external_uid or None,
                        )
                    )
                except DuplicateUsername:
                    logger.info("Username %r taken concurrently; retrying", candidate)
                except DuplicateEmail:
                    existing = self.users.get_by_email(email)
                    if existing is None:
                        raise
                    return existing
                else:
                    logger.info("Federated user created: id=%s provider=%s", user.id, identity.provider)
                    return user
            candidate = f"{base}{self._suffix()}"
        raise DuplicateUsername()

    def _refresh_profile(self, user: User, identity: FederatedIdentity) -> User:
        first_name, last_name = split_display_name(identity.display_name)
        fields: dict[str, str] = {}
        if first_name:
            fields["first_name"] = first_name
        if last_name:
            fields["last_name"] = last_name
        if identity.avatar_url:
            fields["profile_image_url"] = identity.avatar_url
        if user.oauth_subject is None and identity.external_uid:
            fields["oauth_provider"] = identity.provider
            fields["oauth_subject"] = identity.external_uid
        if not fields:
            return user
        self.users.update_profile(user.id, **fields)
        return self.users.get_by_id(user.id) or user
