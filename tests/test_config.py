"""
tests/test_config.py -- Settings defaults and the JWT secret policy [S1][S2].

Settings is instantiated directly with _env_file=None so a developer's .env
cannot leak into the assertions. Environment variables set by conftest.py
are removed with monkeypatch where a test needs the built-in default.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import Settings, get_settings

ACCESS = "a" * 32
REFRESH = "b" * 32


def test_defaults(monkeypatch):
    monkeypatch.delenv("BCRYPT_ROUNDS", raising=False)
    s = Settings(_env_file=None, jwt_access_secret=ACCESS, jwt_refresh_secret=REFRESH)
    assert s.bcrypt_rounds == 10
    assert s.access_token_expire_seconds == 900
    assert s.refresh_token_expire_seconds == 604800
    assert s.jwt_issuer == "learning-management-system"
    assert s.jwt_audience == "lms-users"
    assert s.refresh_token_rotation is True
    assert s.max_login_attempts == 5
    assert s.account_lock_seconds == 900
    assert s.login_rate_limit == "10/minute"
    assert s.self_registration_enabled is True


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("MAX_LOGIN_ATTEMPTS", "3")
    monkeypatch.setenv("REFRESH_TOKEN_ROTATION", "false")
    s = Settings(_env_file=None, jwt_access_secret=ACCESS, jwt_refresh_secret=REFRESH)
    assert s.max_login_attempts == 3
    assert s.refresh_token_rotation is False


def test_debug_generates_distinct_secrets(monkeypatch):
    monkeypatch.delenv("JWT_ACCESS_SECRET", raising=False)
    monkeypatch.delenv("JWT_REFRESH_SECRET", raising=False)
    s = Settings(_env_file=None, debug=True)
    assert len(s.jwt_access_secret) == 64
    assert len(s.jwt_refresh_secret) == 64
    assert s.jwt_access_secret != s.jwt_refresh_secret


def test_production_requires_secrets(monkeypatch):
    monkeypatch.delenv("JWT_ACCESS_SECRET", raising=False)
    monkeypatch.delenv("JWT_REFRESH_SECRET", raising=False)
    with pytest.raises(ValidationError, match="required in production mode"):
        Settings(_env_file=None, debug=False)


@pytest.mark.parametrize(
    "access, refresh, message",
    [
        ("short", REFRESH, "at least 32 characters"),
        (ACCESS, "short", "at least 32 characters"),
        (ACCESS, ACCESS, "must be different"),
    ],
)
def test_secret_policy(access, refresh, message):
    with pytest.raises(ValidationError, match=message):
        Settings(_env_file=None, debug=False, jwt_access_secret=access, jwt_refresh_secret=refresh)


@pytest.mark.parametrize("field, value", [("bcrypt_rounds", 3), ("bcrypt_rounds", 32), ("max_login_attempts", 0)])
def test_numeric_bounds(field, value):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, jwt_access_secret=ACCESS, jwt_refresh_secret=REFRESH, **{field: value})


def test_get_settings_is_cached():
    assert get_settings() is get_settings()
