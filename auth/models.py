"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, almost no logic). Stores and
services do the work; these only own the shape.

User is the internal record and carries the credential digest and reset
token. It never leaves the auth layer as-is: every operation that hands a
user to a caller converts it with PublicUser.from_user(), which drops the
digest, the reset token and the federated subject.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """A user record as held by the User Directory.

    hashed_password holds either a hasher digest or the federated sentinel
    (see auth.hashing.FEDERATED_SENTINEL) for accounts created through an
    identity provider. The sentinel never verifies against any plaintext.

    reset_token / reset_token_expires_at are set together by a forgot-password
    request and cleared together when the token is redeemed. A token whose
    expiry is at or before "now" is treated as absent even if still stored.
    """

    username: str
    hashed_password: str
    id: int | None = None
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    profile_image_url: str | None = None
    oauth_provider: str | None = None  # "google", "oidc"
    oauth_subject: str | None = None  # provider's stable user ID
    reset_token: str | None = None
    reset_token_expires_at: datetime | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class PublicUser:
    """The password-stripped view of a user returned across the auth boundary."""

    id: int
    username: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    profile_image_url: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_user(cls, user: User) -> PublicUser:
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            profile_image_url=user.profile_image_url,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )

    @property
    def display_name(self) -> str | None:
        if self.first_name:
            return f"{self.first_name} {self.last_name or ''}".strip()
        return None


@dataclass(frozen=True)
class SessionRecord:
    """Server-side session: opaque id bound to exactly one user id."""

    session_id: str
    user_id: int
    expires_at: datetime
    created_at: datetime | None = None


@dataclass(frozen=True)
class AuthSession:
    """Result of a successful register/login/federated login.

    session_id is the opaque value the HTTP layer writes into the session
    cookie. It is never derived from the user id.
    """

    user: PublicUser
    session_id: str


@dataclass(frozen=True)
class FederatedIdentity:
    """A verified identity assertion from an external provider."""

    email: str | None
    display_name: str | None = None
    external_uid: str | None = None
    avatar_url: str | None = None
    provider: str = "google"
