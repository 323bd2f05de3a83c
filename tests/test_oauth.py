"""
tests/test_oauth.py -- Unit tests for auth/oauth.py claim handling.

Covers:
  - identity_from_userinfo keeps e-mail only when email_verified is true
  - sub / name / picture mapping, including a numeric subject
  - get_oauth_identity prefers token["userinfo"] and falls back to the endpoint
  - get_enabled_providers reflects configured credentials
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from auth.oauth import get_enabled_providers, get_oauth_identity, identity_from_userinfo
from core.config import get_settings

VERIFIED = {
    "sub": "10987",
    "email": "ada@example.com",
    "email_verified": True,
    "name": "Ada Lovelace",
    "picture": "https://img/ada.png",
}


def test_verified_claims_are_mapped() -> None:
    identity = identity_from_userinfo(VERIFIED, "google")
    assert identity.email == "ada@example.com"
    assert identity.display_name == "Ada Lovelace"
    assert identity.external_uid == "10987"
    assert identity.avatar_url == "https://img/ada.png"
    assert identity.provider == "google"


@pytest.mark.parametrize("flag", [False, None])
def test_unverified_email_is_dropped(flag) -> None:
    claims = dict(VERIFIED, email_verified=flag)
    assert identity_from_userinfo(claims, "oidc").email is None


def test_missing_verification_claim_counts_as_unverified() -> None:
    claims = {k: v for k, v in VERIFIED.items() if k != "email_verified"}
    assert identity_from_userinfo(claims, "oidc").email is None


def test_numeric_subject_is_stringified() -> None:
    assert identity_from_userinfo(dict(VERIFIED, sub=12345), "google").external_uid == "12345"


def test_empty_userinfo() -> None:
    identity = identity_from_userinfo(None, "google")
    assert identity.email is None
    assert identity.external_uid is None


def test_get_oauth_identity_uses_token_userinfo() -> None:
    client = MagicMock()
    client.userinfo = AsyncMock()
    identity = asyncio.run(get_oauth_identity(client, "google", {"userinfo": VERIFIED}))
    assert identity.email == "ada@example.com"
    client.userinfo.assert_not_called()


def test_get_oauth_identity_falls_back_to_userinfo_endpoint() -> None:
    client = MagicMock()
    client.userinfo = AsyncMock(return_value=VERIFIED)
    token = {"access_token": "at"}
    identity = asyncio.run(get_oauth_identity(client, "oidc", token))
    assert identity.external_uid == "10987"
    client.userinfo.assert_awaited_once_with(token=token)


def test_get_oauth_identity_rejects_unknown_provider() -> None:
    with pytest.raises(ValueError):
        asyncio.run(get_oauth_identity(MagicMock(), "myspace", {}))


def test_enabled_providers_follow_settings(monkeypatch) -> None:
    settings = get_settings()
    monkeypatch.setattr(settings, "google_client_id", "")
    monkeypatch.setattr(settings, "google_client_secret", "")
    monkeypatch.setattr(settings, "oidc_client_id", "")
    assert get_enabled_providers() == []

    monkeypatch.setattr(settings, "google_client_id", "cid")
    monkeypatch.setattr(settings, "google_client_secret", "csecret")
    assert get_enabled_providers() == [{"name": "google", "label": "Google"}]
