"""
auth/errors.py -- Error taxonomy for the credential and session core.

Every error carries a machine-readable code, a message that is safe to
show to any client, and the HTTP status the API layer maps it to. The
message never says which of username/password was wrong and never reveals
whether an email address is registered.

Transport failures of the directory or the notifier are reported as
DependencyUnavailable / NotificationError and are kept apart from the
domain errors so a 5xx is never mistaken for a bad credential.

Layer rule: stdlib only. api/main.py turns these into HTTP responses.
"""

from __future__ import annotations


class AuthError(Exception):
    code = "auth_error"
    message = "Authentication error."
    status_code = 400

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    message = "Invalid username or password."
    status_code = 401


class DuplicateUsername(AuthError):
    code = "duplicate_username"
    message = "Username already exists."
    status_code = 409


class DuplicateEmail(AuthError):
    code = "duplicate_email"
    message = "Email already registered."
    status_code = 409


class InvalidOrExpiredToken(AuthError):
    code = "invalid_or_expired_token"
    message = "Invalid or expired token."
    status_code = 400


class MissingEmail(AuthError):
    code = "missing_email"
    message = "Email is required."
    status_code = 400


class Unauthorized(AuthError):
    code = "unauthorized"
    message = "Unauthorized"
    status_code = 401


class RegistrationDisabled(AuthError):
    code = "registration_disabled"
    message = "Self-registration is disabled."
    status_code = 403


class DependencyUnavailable(AuthError):
    """The user directory or session store could not be reached."""

    code = "dependency_unavailable"
    message = "A required service is unavailable."
    status_code = 503


class NotificationError(DependencyUnavailable):
    """A notifier failed to deliver a message."""

    code = "notification_failed"
    message = "Notification delivery failed."
