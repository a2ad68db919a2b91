"""Tests for auth/permissions.py -- the PermissionStore grant registry."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from auth.permissions import MOVIES_READ, MOVIES_WRITE, PermissionStore, users_permissions
from core.errors import NotFoundError


class TestPermissionStore:
    def test_new_user_holds_nothing(self, user_factory, permissions) -> None:
        user, _ = user_factory()
        granted = permissions.get_all_for_user(user.id)
        assert len(granted) == 0
        assert not granted.include(MOVIES_READ)

    def test_unknown_user_holds_nothing(self, permissions) -> None:
        assert permissions.get_all_for_user(999_999) == frozenset()

    def test_grant_then_include(self, user_factory, permissions) -> None:
        user, _ = user_factory()
        permissions.add_for_user(user.id, MOVIES_READ, MOVIES_WRITE)
        granted = permissions.get_all_for_user(user.id)
        assert granted.include(MOVIES_READ)
        assert granted.include(MOVIES_WRITE)

    def test_grant_is_idempotent(self, db, user_factory, permissions) -> None:
        user, _ = user_factory()
        permissions.add_for_user(user.id, MOVIES_READ)
        permissions.add_for_user(user.id, MOVIES_READ)
        with db.connect() as conn:
            count = conn.execute(
                select(func.count()).select_from(users_permissions).where(users_permissions.c.user_id == user.id)
            ).scalar_one()
        assert count == 1

    def test_unknown_code_is_skipped(self, user_factory, permissions) -> None:
        user, _ = user_factory()
        permissions.add_for_user(user.id, "movies:delete", MOVIES_READ)
        assert permissions.get_all_for_user(user.id) == frozenset({MOVIES_READ})

    def test_membership_is_case_sensitive(self, user_factory, permissions) -> None:
        user, _ = user_factory(MOVIES_READ)
        granted = permissions.get_all_for_user(user.id)
        assert not granted.include("MOVIES:READ")
        assert not granted.include("movies:")

    def test_grants_are_per_user(self, user_factory, permissions) -> None:
        reader, _ = user_factory(MOVIES_READ)
        writer, _ = user_factory(MOVIES_WRITE)
        assert permissions.get_all_for_user(reader.id) == frozenset({MOVIES_READ})
        assert permissions.get_all_for_user(writer.id) == frozenset({MOVIES_WRITE})

    def test_grant_to_missing_user_is_not_found(self, permissions) -> None:
        with pytest.raises(NotFoundError):
            permissions.add_for_user(424_242, MOVIES_READ)

    def test_empty_grant_is_noop(self, user_factory, permissions) -> None:
        user, _ = user_factory()
        permissions.add_for_user(user.id)
        assert permissions.get_all_for_user(user.id) == frozenset()

    def test_catalogue_seeding_is_repeatable(self, db, user_factory, permissions) -> None:
        user, _ = user_factory(MOVIES_READ)
        PermissionStore(db)
        assert permissions.get_all_for_user(user.id).include(MOVIES_READ)
