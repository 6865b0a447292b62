"""
tests/test_store.py -- UserStore persistence tests.

Coverage:
  - create_user generates 20-char alphanumeric ids, stores roles, normalizes email
  - duplicate email raises IntegrityError
  - add_role / remove_role report whether anything changed
  - single active refresh token and login code per user (replace on save)
  - delete helpers are idempotent and report whether a row was removed
  - delete_login_code removes at most one row; with user_id and code it only
    deletes a code that still matches
  - purge_expired removes only rows at or past their expiry
"""

from __future__ import annotations

import re
from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from auth import store as store_module
from auth import tokens as tokens_module
from auth.models import ID_LENGTH, LoginCode, RefreshToken, Role, User, generate_id
from auth.store import UserStore
from tests.helpers import OTHER_USER_ID, START, USER_ID


class TestUsers:
    def test_create_user_generates_id(self, store: UserStore) -> None:
        uid = store.create_user(User(email="new@b.com", name="New", roles={Role.USER}))
        assert re.fullmatch(rf"[A-Za-z0-9]{{{ID_LENGTH}}}", uid)
        user = store.get_by_id(uid)
        assert user is not None
        assert user.name == "New"
        assert user.roles == {Role.USER}

    def test_email_lookup_is_case_insensitive(self, store: UserStore) -> None:
        uid = store.create_user(User(email="  Mixed@Case.COM ", name="Mix"))
        user = store.get_by_email("mixed@case.com")
        assert user is not None and user.id == uid
        assert user.email == "mixed@case.com"
        assert store.get_by_email("MIXED@CASE.com").id == uid

    def test_unknown_user_returns_none(self, store: UserStore) -> None:
        assert store.get_by_id("Z" * ID_LENGTH) is None
        assert store.get_by_email("nobody@b.com") is None

    def test_duplicate_email_rejected(self, store: UserStore) -> None:
        store.create_user(User(email="dup@b.com", name="One"))
        with pytest.raises(IntegrityError):
            store.create_user(User(email="dup@b.com", name="Two"))

    def test_role_changes_are_visible_immediately(self, seeded_store: UserStore) -> None:
        assert seeded_store.add_role(USER_ID, Role.ADMIN) is True
        assert seeded_store.add_role(USER_ID, Role.ADMIN) is False
        assert seeded_store.get_roles(USER_ID) == {Role.USER, Role.ADMIN}
        assert seeded_store.remove_role(USER_ID, Role.USER) is True
        assert seeded_store.remove_role(USER_ID, Role.USER) is False
        assert seeded_store.get_roles(USER_ID) == {Role.ADMIN}

    def test_generate_id_length(self) -> None:
        assert len(generate_id()) == ID_LENGTH
        assert len(generate_id(64)) == 64
        assert generate_id() != generate_id()

    def test_id_and_token_generators_share_one_source(self) -> None:
        assert store_module.generate_id is generate_id
        assert tokens_module.generate_id is generate_id

    def test_database_url_is_required(self) -> None:
        with pytest.raises(TypeError):
            UserStore()


class TestRefreshTokens:
    def test_save_replaces_previous_row(self, seeded_store: UserStore) -> None:
        expires = START + timedelta(days=30)
        seeded_store.save_refresh_token(RefreshToken(USER_ID, "first" * 8, expires))
        seeded_store.save_refresh_token(RefreshToken(USER_ID, "second" * 8, expires))
        assert seeded_store.get_refresh_token("first" * 8) is None
        stored = seeded_store.get_refresh_token("second" * 8)
        assert stored is not None
        assert stored.user_id == USER_ID
        assert stored.expires_at == expires

    def test_delete_is_idempotent(self, seeded_store: UserStore) -> None:
        seeded_store.save_refresh_token(RefreshToken(USER_ID, "tok" * 12, START))
        assert seeded_store.delete_refresh_token("tok" * 12) is True
        assert seeded_store.delete_refresh_token("tok" * 12) is False

    def test_delete_for_user(self, seeded_store: UserStore) -> None:
        seeded_store.save_refresh_token(RefreshToken(USER_ID, "tok" * 12, START))
        assert seeded_store.delete_refresh_tokens_for_user(USER_ID) is True
        assert seeded_store.get_refresh_token("tok" * 12) is None


class TestLoginCodes:
    def test_save_replaces_previous_code(self, seeded_store: UserStore) -> None:
        seeded_store.save_login_code(LoginCode(USER_ID, 111111, START))
        seeded_store.save_login_code(LoginCode(USER_ID, 222222, START))
        stored = seeded_store.get_login_code(USER_ID)
        assert stored is not None and stored.code == 222222
        assert seeded_store.find_login_code(111111) is None
        assert seeded_store.find_login_code(222222).user_id == USER_ID

    def test_delete_by_user_or_code(self, seeded_store: UserStore) -> None:
        seeded_store.save_login_code(LoginCode(USER_ID, 333333, START))
        assert seeded_store.delete_login_code(code=333333) is True
        assert seeded_store.delete_login_code(user_id=USER_ID) is False

    def test_delete_by_user_and_code_only_when_matching(self, seeded_store: UserStore) -> None:
        seeded_store.save_login_code(LoginCode(USER_ID, 444444, START))
        assert seeded_store.delete_login_code(user_id=USER_ID, code=555555) is False
        assert seeded_store.get_login_code(USER_ID) is not None
        assert seeded_store.delete_login_code(user_id=USER_ID, code=444444) is True
        assert seeded_store.delete_login_code(user_id=USER_ID, code=444444) is False

    def test_delete_by_code_removes_one_row(self, seeded_store: UserStore) -> None:
        seeded_store.save_login_code(LoginCode(USER_ID, 777777, START))
        seeded_store.save_login_code(LoginCode(OTHER_USER_ID, 777777, START))
        assert seeded_store.delete_login_code(code=777777) is True
        remaining = [seeded_store.get_login_code(USER_ID), seeded_store.get_login_code(OTHER_USER_ID)]
        assert sum(row is not None for row in remaining) == 1

    def test_delete_requires_a_selector(self, seeded_store: UserStore) -> None:
        with pytest.raises(ValueError):
            seeded_store.delete_login_code()


class TestPurge:
    def test_purge_expired_keeps_live_rows(self, seeded_store: UserStore) -> None:
        seeded_store.save_refresh_token(RefreshToken(USER_ID, "old" * 12, START - timedelta(seconds=1)))
        seeded_store.save_refresh_token(RefreshToken(OTHER_USER_ID, "new" * 12, START + timedelta(days=1)))
        seeded_store.save_login_code(LoginCode(USER_ID, 444444, START))
        seeded_store.save_login_code(LoginCode(OTHER_USER_ID, 555555, START + timedelta(minutes=5)))

        assert seeded_store.purge_expired(START) == (1, 1)
        assert seeded_store.get_refresh_token("old" * 12) is None
        assert seeded_store.get_refresh_token("new" * 12) is not None
        assert seeded_store.get_login_code(USER_ID) is None
        assert seeded_store.get_login_code(OTHER_USER_ID) is not None
