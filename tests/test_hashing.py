"""
tests/test_hashing.py -- Unit tests for auth/hashing.py.

Covers:
  - bcrypt round trip, salting, and rejection of wrong passwords
  - input beyond 72 UTF-8 bytes is refused, never truncated
  - the federated sentinel and malformed digests never verify
  - legacy md5 parity: exact hex digest, no normalisation
  - get_hasher() scheme selection
"""

from __future__ import annotations

import hashlib

import pytest

from auth.hashing import (
    FEDERATED_SENTINEL,
    BcryptHasher,
    LegacyMd5Hasher,
    fits_bcrypt,
    get_hasher,
    is_usable_digest,
)


class TestBcryptHasher:
    def test_round_trip(self, hasher: BcryptHasher) -> None:
        digest = hasher.hash("correct horse")
        assert digest != "correct horse"
        assert hasher.verify("correct horse", digest)

    def test_wrong_password_rejected(self, hasher: BcryptHasher) -> None:
        digest = hasher.hash("correct horse")
        assert not hasher.verify("Correct horse", digest)
        assert not hasher.verify("correct horse ", digest)

    def test_same_password_gets_distinct_salts(self, hasher: BcryptHasher) -> None:
        assert hasher.hash("secret1") != hasher.hash("secret1")

    def test_input_beyond_72_bytes_is_refused(self, hasher: BcryptHasher) -> None:
        with pytest.raises(ValueError):
            hasher.hash("a" * 73)
        digest = hasher.hash("a" * 72)
        assert hasher.verify("a" * 72, digest)
        assert not hasher.verify("a" * 73, digest)

    def test_multibyte_passwords_sharing_a_prefix_do_not_collide(self, hasher: BcryptHasher) -> None:
        # 36 two-byte characters fill all 72 bytes bcrypt reads.
        first, second = "\u00e9" * 36 + "aaaa", "\u00e9" * 36 + "bbbb"
        assert not fits_bcrypt(first)
        with pytest.raises(ValueError):
            hasher.hash(first)
        assert not hasher.verify(second, hasher.hash("\u00e9" * 36))

        short_a, short_b = "\u00e9" * 35 + "a", "\u00e9" * 35 + "b"
        assert fits_bcrypt(short_a)
        assert hasher.verify(short_a, hasher.hash(short_a))
        assert not hasher.verify(short_b, hasher.hash(short_a))

    def test_sentinel_never_verifies(self, hasher: BcryptHasher) -> None:
        assert not hasher.verify(FEDERATED_SENTINEL, FEDERATED_SENTINEL)
        assert not hasher.verify("", FEDERATED_SENTINEL)

    def test_malformed_digest_returns_false(self, hasher: BcryptHasher) -> None:
        assert not hasher.verify("secret1", "not-a-bcrypt-hash")
        assert not hasher.verify("secret1", "")


class TestLegacyMd5Hasher:
    def test_digest_matches_plain_md5_hex(self) -> None:
        hasher = LegacyMd5Hasher()
        assert hasher.hash("password") == hashlib.md5(b"password").hexdigest()

    def test_verify_is_exact(self) -> None:
        hasher = LegacyMd5Hasher()
        digest = hasher.hash("Secret")
        assert hasher.verify("Secret", digest)
        assert not hasher.verify("secret", digest)
        assert not hasher.verify("Secret", digest.upper())

    def test_non_ascii_digest_returns_false(self) -> None:
        hasher = LegacyMd5Hasher()
        assert not hasher.verify("x", "\u00e9" * 32)
        assert not hasher.verify("\u00e9t\u00e9", hasher.hash("ete"))

    def test_sentinel_never_verifies(self) -> None:
        assert not LegacyMd5Hasher().verify(FEDERATED_SENTINEL, FEDERATED_SENTINEL)

    def test_construction_logs_warning(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level("WARNING", logger="portalauth.auth"):
            LegacyMd5Hasher()
        assert "MD5" in caplog.text


def test_is_usable_digest() -> None:
    assert is_usable_digest("$2b$04$abc")
    assert not is_usable_digest(FEDERATED_SENTINEL)
    assert not is_usable_digest("")
    assert not is_usable_digest(None)


def test_get_hasher_selects_scheme() -> None:
    assert get_hasher("bcrypt", rounds=4).scheme == "bcrypt"
    assert get_hasher("md5").scheme == "md5"
    with pytest.raises(ValueError):
        get_hasher("sha1")
