"""
tests/test_cli.py -- Tests for the administration CLI in main.py.
"""

from __future__ import annotations

import pytest

from core.database import open_engine
from main import main
from profiles.store import UserStore

ADMIN_PASSWORD = "Adm1n!Pass"


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'cli.db'}"


@pytest.fixture
def admin_password(monkeypatch) -> str:
    monkeypatch.setenv("ADMIN_PASSWORD", ADMIN_PASSWORD)
    return ADMIN_PASSWORD


def test_create_admin(db_url, admin_password, capsys):
    rc = main(["--db", db_url, "create-admin", "--email", "Root@Example.org"])
    assert rc == 0
    assert "Created ADMIN account" in capsys.readouterr().out

    engine = open_engine(db_url)
    try:
        user = UserStore(engine).get_by_email("root@example.org")
    finally:
        engine.dispose()
    assert user is not None
    assert user.role == "ADMIN"
    assert user.username == "admin"
    assert user.first_name == "System"


def test_create_admin_is_idempotent(db_url, admin_password, capsys):
    args = ["--db", db_url, "create-admin", "--email", "root@example.org"]
    assert main(args) == 0
    capsys.readouterr()

    assert main(args) == 0
    assert "Nothing to do" in capsys.readouterr().out


def test_create_admin_prompts_without_environment(db_url, capsys, monkeypatch):
    monkeypatch.delenv("ADMIN_PASSWORD", raising=False)
    prompts = []

    def fake_getpass(prompt: str) -> str:
        prompts.append(prompt)
        return "Prompted-123"

    monkeypatch.setattr("getpass.getpass", fake_getpass)
    assert main(["--db", db_url, "create-admin", "--email", "env@example.org", "--username", "envadmin"]) == 0
    assert prompts == ["  Admin password: "]
    assert "Created ADMIN account" in capsys.readouterr().out


def test_password_flag_is_not_accepted(db_url):
    with pytest.raises(SystemExit):
        main(["--db", db_url, "create-admin", "--email", "root@example.org", "--password", ADMIN_PASSWORD])


def test_create_admin_rejects_weak_password(db_url, capsys, monkeypatch):
    monkeypatch.setenv("ADMIN_PASSWORD", "weak")
    rc = main(["--db", db_url, "create-admin", "--email", "root@example.org"])
    assert rc == 1
    assert "WEAK_PASSWORD" in capsys.readouterr().out


def test_stats(db_url, admin_password, capsys):
    main(["--db", db_url, "create-admin", "--email", "root@example.org"])
    capsys.readouterr()

    assert main(["--db", db_url, "stats"]) == 0
    out = capsys.readouterr().out
    assert "Users:" in out
    assert "Active accounts:              1" in out
    assert "Locked accounts:              0" in out


def test_command_is_required():
    with pytest.raises(SystemExit):
        main([])
