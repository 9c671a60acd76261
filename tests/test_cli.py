"""
tests/test_cli.py -- main.py command-line driver.

Runs real commands against a temporary SQLite file (an in-memory DB would
vanish between invocations) and asserts on the printed JSON envelope and
the exit status.
"""

from __future__ import annotations

import json
from collections.abc import Generator
from pathlib import Path

import pytest
from conftest import ACCESS_SECRET, REFRESH_SECRET

import main
from core.config import get_settings


@pytest.fixture
def cli(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture) -> Generator:
    monkeypatch.setenv("DEBUG", "true")
    monkeypatch.setenv("ACCESS_TOKEN_SECRET", ACCESS_SECRET)
    monkeypatch.setenv("REFRESH_TOKEN_SECRET", REFRESH_SECRET)
    monkeypatch.setenv("PASSWORD_HASH_ROUNDS", "4")
    monkeypatch.setenv("OTP_TEST_CODE", "135790")
    get_settings.cache_clear()
    db_url = f"sqlite:///{tmp_path / 'cli.db'}"

    def run(*argv: str) -> tuple[int, dict]:
        code = main.main(["--db-url", db_url, *argv])
        return code, json.loads(capsys.readouterr().out)

    yield run
    get_settings.cache_clear()


def test_register_and_login(cli) -> None:
    code, envelope = cli("register", "alice", "alice@example.com", "pass123")
    assert code == 0
    assert envelope["status"] is True
    assert envelope["data"]["username"] == "alice"

    code, envelope = cli("login", "alice@example.com", "wrong123")
    assert code == 1
    assert envelope == {"status": False, "message": "Invalid credentials."}


def test_refresh_and_logout(cli) -> None:
    _, registered = cli("register", "alice", "alice@example.com", "pass123")
    user_id = registered["data"]["userId"]

    code, refreshed = cli("refresh", registered["data"]["refreshToken"])
    assert code == 0
    new_token = refreshed["data"]["refreshToken"]

    code, _ = cli("refresh", registered["data"]["refreshToken"])
    assert code == 1

    assert cli("logout", user_id, new_token)[0] == 0
    assert cli("refresh", new_token)[0] == 1
    assert cli("logout-all", user_id)[0] == 0


def test_password_reset_flow(cli) -> None:
    _, registered = cli("register", "alice", "alice@example.com", "pass123")
    user_id = registered["data"]["userId"]

    code, forgot = cli("forgot-password", "alice@example.com")
    assert code == 0
    assert forgot["data"] == {"userId": user_id}

    assert cli("reset-password", user_id, "000000", "newpass1")[0] == 1
    assert cli("reset-password", user_id, "135790", "newpass1")[0] == 0
    assert cli("login", "alice@example.com", "newpass1")[0] == 0


def test_me(cli) -> None:
    _, registered = cli("register", "alice", "alice@example.com", "pass123")
    code, envelope = cli("me", registered["data"]["userId"])
    assert code == 0
    assert envelope["data"]["email"] == "alice@example.com"
    assert cli("me", "missing")[0] == 1
