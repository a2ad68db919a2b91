"""
tests/test_user_store.py -- Tests for UserStore and user validation.

Covers insert/get round trips, email uniqueness, the version-guarded update,
and token-based lookup. Every test runs on a private in-memory database.
"""

from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from auth.models import User, validate_user
from auth.passwords import Password
from auth.store import UserStore
from auth.tokens import SCOPE_ACTIVATION, SCOPE_AUTHENTICATION
from core.database import Database
from core.errors import (
    DuplicateEmailError,
    EditConflictError,
    InternalError,
    InvalidTokenError,
    NotFoundError,
)
from core.validator import Validator


def _user(email: str = "alice@example.com", **kwargs) -> User:
    return User(name="Alice", email=email, password=Password.set("pa55word-123"), **kwargs)


class TestUserStoreInsert:
    def test_insert_assigns_identity_and_version(self, users) -> None:
        user = _user()
        users.insert(user)
        assert user.id is not None and user.id >= 1
        assert user.version == 1
        assert user.created_at

    def test_round_trip(self, users) -> None:
        user = _user()
        users.insert(user)
        loaded = users.get(user.id)
        assert loaded.name == "Alice"
        assert loaded.email == "alice@example.com"
        assert loaded.activated is False
        assert loaded.version == 1
        assert loaded.password.matches("pa55word-123")
        assert loaded.password.plaintext is None

    def test_get_by_email(self, users) -> None:
        user = _user()
        users.insert(user)
        assert users.get_by_email("alice@example.com").id == user.id

    def test_duplicate_email_keeps_first(self, users) -> None:
        first = _user()
        users.insert(first)
        second = User(name="Mallory", email="alice@example.com", password=Password.set("other-password"))
        with pytest.raises(DuplicateEmailError):
            users.insert(second)
        assert second.id is None
        assert users.get_by_email("alice@example.com").name == "Alice"

    def test_email_match_is_exact(self, users) -> None:
        users.insert(_user())
        with pytest.raises(NotFoundError):
            users.get_by_email("ALICE@example.com")

    def test_refuses_user_without_hash(self, users) -> None:
        user = User(name="Alice", email="alice@example.com", password=Password(plaintext="pa55word-123"))
        with pytest.raises(InternalError):
            users.insert(user)


class TestUserStoreGet:
    @pytest.mark.parametrize("user_id", [0, -1])
    def test_non_positive_id_is_not_found(self, users, user_id: int) -> None:
        with pytest.raises(NotFoundError):
            users.get(user_id)

    def test_missing_id_is_not_found(self, users) -> None:
        with pytest.raises(NotFoundError):
            users.get(12345)

    def test_missing_email_is_not_found(self, users) -> None:
        with pytest.raises(NotFoundError):
            users.get_by_email("nobody@example.com")


class TestUserStoreUpdate:
    def test_update_advances_version(self, users) -> None:
        user = _user()
        users.insert(user)
        user.activated = True
        users.update(user)
        assert user.version == 2
        loaded = users.get(user.id)
        assert loaded.activated is True
        assert loaded.version == 2

    def test_stale_version_conflicts(self, users) -> None:
        user = _user()
        users.insert(user)
        first = users.get(user.id)
        second = users.get(user.id)

        first.name = "Alice A."
        users.update(first)

        second.name = "Alice B."
        with pytest.raises(EditConflictError):
            users.update(second)
        assert users.get(user.id).name == "Alice A."
        assert users.get(user.id).version == 2

    def test_concurrent_updates_one_wins(self, tmp_path) -> None:
        database = Database(f"sqlite:///{tmp_path / 'users.db'}")
        store = UserStore(database)
        user = _user()
        store.insert(user)

        barrier = threading.Barrier(2)
        outcomes: list[str] = []
        lock = threading.Lock()

        def rename(name: str) -> None:
            copy = store.get(user.id)
            copy.name = name
            barrier.wait(timeout=5)
            try:
                store.update(copy)
                result = "ok"
            except EditConflictError:
                result = "conflict"
            with lock:
                outcomes.append(result)

        workers = [threading.Thread(target=rename, args=(name,)) for name in ("Alice A.", "Alice B.")]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join(timeout=10)

        try:
            assert sorted(outcomes) == ["conflict", "ok"]
            assert store.get(user.id).version == 2
        finally:
            database.close()

    def test_update_to_taken_email_is_duplicate(self, users) -> None:
        users.insert(_user("alice@example.com"))
        bob = _user("bob@example.com")
        users.insert(bob)
        bob.email = "alice@example.com"
        with pytest.raises(DuplicateEmailError):
            users.update(bob)

    def test_update_unpersisted_user_is_internal_error(self, users) -> None:
        with pytest.raises(InternalError):
            users.update(_user())


class TestUserStoreGetForToken:
    def test_resolves_owner(self, users, tokens) -> None:
        user = _user()
        users.insert(user)
        token = tokens.new(user.id, timedelta(hours=1), SCOPE_AUTHENTICATION)
        assert users.get_for_token(SCOPE_AUTHENTICATION, token.plaintext).id == user.id

    def test_wrong_scope_is_invalid(self, users, tokens) -> None:
        user = _user()
        users.insert(user)
        token = tokens.new(user.id, timedelta(hours=1), SCOPE_ACTIVATION)
        with pytest.raises(InvalidTokenError):
            users.get_for_token(SCOPE_AUTHENTICATION, token.plaintext)

    def test_expired_is_invalid(self, users, tokens) -> None:
        user = _user()
        users.insert(user)
        token = tokens.new(user.id, timedelta(seconds=-5), SCOPE_AUTHENTICATION)
        with pytest.raises(InvalidTokenError):
            users.get_for_token(SCOPE_AUTHENTICATION, token.plaintext)

    def test_expiry_equal_to_now_is_invalid(self, users, tokens, monkeypatch) -> None:
        user = _user()
        users.insert(user)
        token = tokens.new(user.id, timedelta(hours=1), SCOPE_AUTHENTICATION)
        monkeypatch.setattr("auth.store._now", lambda: token.expiry)
        with pytest.raises(InvalidTokenError):
            users.get_for_token(SCOPE_AUTHENTICATION, token.plaintext)

    def test_unknown_plaintext_is_invalid(self, users) -> None:
        with pytest.raises(InvalidTokenError):
            users.get_for_token(SCOPE_AUTHENTICATION, "B" * 26)


class TestValidateUser:
    def test_valid_user(self) -> None:
        v = Validator()
        validate_user(v, User(name="Alice", email="alice@example.com", password=Password(plaintext="pa55word-123")))
        assert v.valid()

    def test_collects_every_field(self) -> None:
        v = Validator()
        validate_user(v, User(name="", email="not-an-email", password=Password(plaintext="short")))
        assert set(v.errors) == {"name", "email", "password"}

    def test_long_name_rejected(self) -> None:
        v = Validator()
        validate_user(v, User(name="n" * 501, email="a@example.com", password=Password(plaintext="pa55word-123")))
        assert v.errors == {"name": "must not be more than 500 bytes long"}

    def test_user_without_any_password_is_internal_error(self) -> None:
        with pytest.raises(InternalError):
            validate_user(Validator(), User(name="Alice", email="alice@example.com"))
