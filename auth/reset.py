"""
auth/reset.py -- Password Reset Coordinator: forgot-password and reset-password.

Token lifecycle:
  issue    -- request_reset() stores a fresh secrets.token_hex(32) (256 bits)
              with expiry = now + window on the user, overwriting any earlier
              token, then mails a link that embeds it.
  verify   -- verify_token() is True only when some user holds this exact
              token AND its expiry is strictly after now. An expired token
              that is still stored is indistinguishable from an absent one.
  redeem   -- reset_password() hands the directory one conditional write
              that swaps the digest and clears (token, expiry) together. A
              second redemption, concurrent or later, matches nothing.

Account enumeration: request_reset() returns None for known and unknown
addresses alike and has no side effect for unknown ones. Notifier failures
are logged and swallowed; the stored token stays valid. Directory failures
are not swallowed.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from auth.directory import SessionStore, UserDirectory
from auth.errors import InvalidOrExpiredToken, NotificationError
from auth.hashing import CredentialHasher
from auth.models import User
from auth.notifier import Notifier, build_reset_email, build_reset_link

logger = logging.getLogger("portalauth.auth.reset")

DEFAULT_TOKEN_TTL_SECONDS = 60 * 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_reset_token() -> str:
    return secrets.token_hex(32)


class PasswordResetCoordinator:
    def __init__(
        self,
        users: UserDirectory,
        notifier: Notifier,
        hasher: CredentialHasher,
        *,
        base_url: str,
        sessions: SessionStore | None = None,
        token_ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.users = users
        self.notifier = notifier
        self.hasher = hasher
        self.base_url = base_url
        self.sessions = sessions
        self.token_ttl_seconds = token_ttl_seconds
        self._clock = clock

    def request_reset(self, email: str) -> None:
        """Issue a reset token for the account at this address and mail it.

        Always returns None. Unknown addresses cause no directory write and
        no notifier call.
        """
        user = self.users.get_by_email(email) if email else None
        if user is None:
            logger.info("Password reset requested for an unregistered address")
            return

        token = generate_reset_token()
        expires_at = self._clock() + timedelta(seconds=self.token_ttl_seconds)
        self.users.set_reset_token(user.id, token, expires_at)
        logger.info("Password reset token issued for user id=%s", user.id)

        subject, body_text, body_html = build_reset_email(
            build_reset_link(self.base_url, token), self.token_ttl_seconds
        )
        try:
            self.notifier.send(user.email, subject, body_text, body_html)
        except NotificationError:
            logger.exception("Password reset email delivery failed for user id=%s", user.id)

    def verify_token(self, token: str) -> bool:
        return self._live_holder(token) is not None

    def reset_password(self, token: str, new_password: str) -> None:
        """Redeem a live token: set the new digest and clear the token.

        Raises InvalidOrExpiredToken when the token is absent or expired, or
        when another request redeemed it first. On success every session of
        the user is destroyed.
        """
        holder = self._live_holder(token)
        if holder is None:
            logger.warning("Password reset failed: invalid or expired token")
            raise InvalidOrExpiredToken()

        digest = self.hasher.hash(new_password)
        if not self.users.redeem_reset_token(token, digest, self._clock()):
            logger.warning("Password reset failed: token consumed concurrently or expired")
            raise InvalidOrExpiredToken()

        if self.sessions is not None:
            self.sessions.destroy_all_for_user(holder.id)
        logger.info("Password reset success for user id=%s", holder.id)

    def _live_holder(self, token: str) -> User | None:
        if not token:
            return None
        user = self.users.get_by_reset_token(token)
        if user is None or user.reset_token_expires_at is None:
            return None
        if user.reset_token_expires_at <= self._clock():
            return None
        return user
