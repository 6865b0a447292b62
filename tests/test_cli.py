"""
tests/test_cli.py -- Operator CLI commands against a temporary SQLite file.

Coverage:
  - create-user prints a 20-character id; default role is user
  - duplicate email exits 1
  - grant-role / revoke-role change membership; unknown user exits 1
  - purge-expired reports counts
  - invalid role name is rejected by argparse
"""

from __future__ import annotations

from datetime import timedelta

import pytest

import main as cli
from auth.models import ID_LENGTH, LoginCode, RefreshToken, Role
from auth.store import UserStore
from tests.helpers import START, make_settings


@pytest.fixture
def db_url(tmp_path, monkeypatch: pytest.MonkeyPatch) -> str:
    url = f"sqlite:///{tmp_path / 'auth.db'}"
    settings = make_settings(database_url=url)
    monkeypatch.setattr(cli, "get_settings", lambda: settings)
    return url


def _create(capsys, *args: str) -> str:
    assert cli.main(["create-user", *args]) == 0
    return capsys.readouterr().out.strip()


def test_create_user_defaults_to_user_role(db_url: str, capsys) -> None:
    user_id = _create(capsys, "--email", "Ann@B.com", "--name", "Ann")
    assert len(user_id) == ID_LENGTH
    store = UserStore(db_url)
    try:
        user = store.get_by_email("ann@b.com")
        assert user.id == user_id
        assert user.roles == {Role.USER}
    finally:
        store.close()


def test_create_user_with_roles(db_url: str, capsys) -> None:
    user_id = _create(capsys, "--email", "root@b.com", "--name", "Root", "--role", "admin", "--role", "super-admin")
    store = UserStore(db_url)
    try:
        assert store.get_roles(user_id) == {Role.ADMIN, Role.SUPER_ADMIN}
    finally:
        store.close()


def test_duplicate_email_fails(db_url: str, capsys) -> None:
    _create(capsys, "--email", "dup@b.com", "--name", "One")
    assert cli.main(["create-user", "--email", "dup@b.com", "--name", "Two"]) == 1
    assert "already exists" in capsys.readouterr().out


def test_grant_and_revoke_role(db_url: str, capsys) -> None:
    user_id = _create(capsys, "--email", "ann@b.com", "--name", "Ann")
    assert cli.main(["grant-role", "--user-id", user_id, "--role", "admin"]) == 0
    assert "ROLE_ADMIN updated" in capsys.readouterr().out
    assert cli.main(["revoke-role", "--user-id", user_id, "--role", "user"]) == 0
    store = UserStore(db_url)
    try:
        assert store.get_roles(user_id) == {Role.ADMIN}
    finally:
        store.close()


def test_grant_role_unknown_user(db_url: str, capsys) -> None:
    assert cli.main(["grant-role", "--user-id", "Z" * ID_LENGTH, "--role", "admin"]) == 1


def test_purge_expired(db_url: str, capsys) -> None:
    user_id = _create(capsys, "--email", "ann@b.com", "--name", "Ann")
    store = UserStore(db_url)
    try:
        store.save_refresh_token(RefreshToken(user_id, "x" * 64, START - timedelta(days=1)))
        store.save_login_code(LoginCode(user_id, 123456, START - timedelta(minutes=1)))
    finally:
        store.close()
    assert cli.main(["purge-expired"]) == 0
    assert "Purged 1 refresh token(s) and 1 login code(s)" in capsys.readouterr().out


def test_unknown_role_rejected(db_url: str) -> None:
    with pytest.raises(SystemExit):
        cli.main(["create-user", "--email", "a@b.com", "--name", "A", "--role", "root"])


def test_no_command_prints_help(db_url: str, capsys) -> None:
    assert cli.main([]) == 1
    assert "create-user" in capsys.readouterr().out
