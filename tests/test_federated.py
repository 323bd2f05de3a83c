"""
tests/test_federated.py -- Unit tests for auth/federated.py (FederatedIdentityBridge).

Covers:
  - first login creates a user with the e-mail local part as username
  - username collision appends a numeric suffix
  - repeat login by e-mail reuses the user and refreshes the profile
  - missing / blank e-mail rejected with MissingEmail
  - federated accounts hold the sentinel and cannot use password login
  - a concurrent first login that loses the e-mail race falls back to the winner
"""

from __future__ import annotations

import pytest

from auth.errors import DuplicateUsername, InvalidCredentials, MissingEmail
from auth.federated import FederatedIdentityBridge, derive_username, split_display_name
from auth.hashing import FEDERATED_SENTINEL
from auth.memory import InMemoryUserStore
from auth.models import FederatedIdentity, User
from auth.service import Authenticator


@pytest.fixture
def authenticator(memory_users, memory_sessions, hasher) -> Authenticator:
    return Authenticator(memory_users, memory_sessions, hasher)


@pytest.fixture
def bridge(memory_users, authenticator) -> FederatedIdentityBridge:
    return FederatedIdentityBridge(memory_users, authenticator, suffix=lambda: 42)


def _identity(email="ada@example.com", name="Ada Lovelace", uid="g-123", avatar="https://img/ada.png"):
    return FederatedIdentity(email=email, display_name=name, external_uid=uid, avatar_url=avatar)


class TestFirstLogin:
    def test_creates_user_and_session(self, bridge, memory_users, memory_sessions) -> None:
        result = bridge.authenticate(_identity())
        assert result.user.username == "ada"
        assert result.user.email == "ada@example.com"
        assert result.user.first_name == "Ada"
        assert result.user.last_name == "Lovelace"
        assert result.user.profile_image_url == "https://img/ada.png"
        assert memory_sessions.resolve(result.session_id) == result.user.id

        stored = memory_users.get_by_id(result.user.id)
        assert stored.hashed_password == FEDERATED_SENTINEL
        assert stored.oauth_provider == "google"
        assert stored.oauth_subject == "g-123"

    def test_public_view_hides_sentinel_and_subject(self, bridge) -> None:
        result = bridge.authenticate(_identity())
        assert not hasattr(result.user, "hashed_password")
        assert not hasattr(result.user, "oauth_subject")

    def test_username_collision_gets_suffix(self, bridge, memory_users) -> None:
        memory_users.create(User(username="ada", hashed_password="$2b$04$x", email="other@example.com"))
        result = bridge.authenticate(_identity())
        assert result.user.username == "ada42"

    def test_gives_up_when_every_candidate_is_taken(self, memory_users, authenticator) -> None:
        memory_users.create(User(username="ada", hashed_password="$2b$04$x"))
        memory_users.create(User(username="ada7", hashed_password="$2b$04$x"))
        stuck = FederatedIdentityBridge(memory_users, authenticator, suffix=lambda: 7)
        with pytest.raises(DuplicateUsername):
            stuck.authenticate(_identity())

    def test_federated_user_cannot_password_login(self, bridge, authenticator) -> None:
        bridge.authenticate(_identity())
        with pytest.raises(InvalidCredentials):
            authenticator.login("ada", FEDERATED_SENTINEL)


class TestRepeatLogin:
    def test_same_email_reuses_user(self, bridge, memory_users) -> None:
        first = bridge.authenticate(_identity())
        second = bridge.authenticate(_identity(email="ADA@example.com"))
        assert second.user.id == first.user.id
        assert second.session_id != first.session_id
        assert memory_users.get_by_username("ada42") is None

    def test_profile_is_refreshed(self, bridge) -> None:
        first = bridge.authenticate(_identity())
        second = bridge.authenticate(_identity(name="Augusta King", avatar="https://img/new.png"))
        assert second.user.id == first.user.id
        assert second.user.first_name == "Augusta"
        assert second.user.last_name == "King"
        assert second.user.profile_image_url == "https://img/new.png"

    def test_empty_provider_fields_keep_stored_values(self, bridge) -> None:
        bridge.authenticate(_identity())
        again = bridge.authenticate(_identity(name=None, avatar=None))
        assert again.user.first_name == "Ada"
        assert again.user.profile_image_url == "https://img/ada.png"

    def test_password_account_is_linked_by_email(self, bridge, authenticator, memory_users) -> None:
        registered = authenticator.register("adal", "secret1", email="ada@example.com")
        result = bridge.authenticate(_identity())
        assert result.user.id == registered.user.id
        stored = memory_users.get_by_id(registered.user.id)
        assert stored.oauth_subject == "g-123"
        # The password credential is untouched.
        assert authenticator.login("adal", "secret1").user.id == registered.user.id


class TestRejected:
    @pytest.mark.parametrize("email", [None, "", "   "])
    def test_missing_email(self, bridge, memory_users, email) -> None:
        with pytest.raises(MissingEmail):
            bridge.authenticate(_identity(email=email))
        assert memory_users.get_by_username("ada") is None


class RacingUserStore(InMemoryUserStore):
    """The first e-mail lookup misses, as if another request inserted in between."""

    def __init__(self, clock) -> None:
        super().__init__(clock=clock)
        self.email_lookups = 0

    def get_by_email(self, email: str):
        self.email_lookups += 1
        if self.email_lookups == 1:
            return None
        return super().get_by_email(email)


def test_lost_email_race_falls_back_to_winner(clock, memory_sessions, hasher) -> None:
    users = RacingUserStore(clock)
    winner = users.create(User(username="winner", hashed_password=FEDERATED_SENTINEL, email="ada@example.com"))
    bridge = FederatedIdentityBridge(users, Authenticator(users, memory_sessions, hasher))

    result = bridge.authenticate(_identity())

    assert result.user.id == winner.id
    assert users.get_by_username("ada") is None


def test_derive_username() -> None:
    assert derive_username("grace.hopper@navy.mil") == "grace.hopper"
    assert derive_username("@example.com") == "user"


def test_split_display_name() -> None:
    assert split_display_name("Ada King Lovelace") == ("Ada", "King Lovelace")
    assert split_display_name("Cher") == ("Cher", None)
    assert split_display_name(None) == (None, None)
    assert split_display_name("  ") == (None, None)
