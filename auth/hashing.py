"""
auth/hashing.py -- Credential Hasher: one-way digest and verify for passwords.

Security design decisions:
  bcrypt (default): salted and cost-factored, the right choice for
       low-entropy secrets. bcrypt is used directly rather than through
       passlib, whose wrap-bug detection trips on bcrypt 4.x. bcrypt only
       reads the first 72 bytes of input, so longer input is refused rather
       than truncated: hash() raises ValueError and verify() returns False.
       The API layer rejects such passwords by UTF-8 byte length.

  md5 (legacy): unsalted MD5 hex digest, kept only for parity with digests
       written by the previous deployment. It is open to precomputation
       attacks and logs a warning on construction. Verification is a single
       constant-time comparison; there are no case or whitespace fallbacks.

  Federated sentinel: accounts created through an identity provider store
       FEDERATED_SENTINEL. It starts with "!", which neither scheme can
       produce ("$2b$..." for bcrypt, lowercase hex for md5), and verify()
       refuses it before touching the hash function, so such accounts can
       never be logged into through the password path.

verify() is a pure function of (plaintext, digest) and never raises.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Protocol

import bcrypt

logger = logging.getLogger("portalauth.auth")

FEDERATED_SENTINEL = "!federated"
_UNUSABLE_PREFIX = "!"
PASSWORD_MAX_BYTES = 72


class CredentialHasher(Protocol):
    scheme: str

    def hash(self, plaintext: str) -> str: ...

    def verify(self, plaintext: str, digest: str) -> bool: ...


def is_usable_digest(digest: str | None) -> bool:
    """Return False for empty digests and for the federated sentinel."""
    return bool(digest) and not digest.startswith(_UNUSABLE_PREFIX)


def fits_bcrypt(plaintext: str) -> bool:
    """Return True if bcrypt would read every byte of the UTF-8 encoding."""
    return len(plaintext.encode("utf-8")) <= PASSWORD_MAX_BYTES


class BcryptHasher:
    scheme = "bcrypt"

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds

    def hash(self, plaintext: str) -> str:
        """Return a bcrypt hash of the given plaintext password.

        Raises ValueError when the password is longer than 72 UTF-8 bytes.
        """
        if not fits_bcrypt(plaintext):
            raise ValueError(f"Password exceeds {PASSWORD_MAX_BYTES} bytes")
        return bcrypt.hashpw(plaintext.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plaintext: str, digest: str) -> bool:
        """Return True if the plaintext password matches the bcrypt hash."""
        if not is_usable_digest(digest) or not fits_bcrypt(plaintext):
            return False
        try:
            return bcrypt.checkpw(plaintext.encode("utf-8"), digest.encode("utf-8"))
        except ValueError:
            # Malformed stored hash (wrong scheme, truncated column).
            return False


class LegacyMd5Hasher:
    scheme = "md5"

    def __init__(self) -> None:
        logger.warning("Password hashing uses unsalted MD5 for legacy parity. Do not use for new deployments.")

    def hash(self, plaintext: str) -> str:
        return hashlib.md5(plaintext.encode("utf-8")).hexdigest()  # noqa: S324 -- legacy parity only

    def verify(self, plaintext: str, digest: str) -> bool:
        if not is_usable_digest(digest):
            return False
        return hmac.compare_digest(self.hash(plaintext).encode("utf-8"), digest.encode("utf-8"))


def get_hasher(scheme: str = "bcrypt", *, rounds: int = 12) -> CredentialHasher:
    """Build the hasher for a configured scheme name ("bcrypt" or "md5")."""
    if scheme == "bcrypt":
        return BcryptHasher(rounds=rounds)
    if scheme == "md5":
        return LegacyMd5Hasher()
    raise ValueError(f"Unknown password hash scheme: {scheme!r}")
