from __future__ import annotations

import os
import warnings
from pathlib import Path

import pytest

from phantomauth.core.config import (
    AuthorityConfig,
    BootstrapIdentity,
    PathConfig,
    SecurityConfig,
    SecurityWarning,
    warn_if_weak_hashing,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("PHANTOMAUTH_"):
            monkeypatch.delenv(key)
    AuthorityConfig.reset_instance()
    yield
    AuthorityConfig.reset_instance()


def test_defaults():
    config = AuthorityConfig.load()
    assert config.security.single_session_per_account is False
    assert config.security.opaque_failures is False
    assert config.security.blacklist_probe_order == ("username", "hwid", "ip")
    assert config.bootstrap == ()


def test_env_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("PHANTOMAUTH_PATHS__DATA_DIR", str(tmp_path))
    monkeypatch.setenv("PHANTOMAUTH_SECURITY__SINGLE_SESSION_PER_ACCOUNT", "true")
    monkeypatch.setenv("PHANTOMAUTH_SECURITY__OPAQUE_FAILURES", "1")
    monkeypatch.setenv("PHANTOMAUTH_SECURITY__BLACKLIST_PROBE_ORDER", "hwid, ip")
    monkeypatch.setenv("PHANTOMAUTH_SECURITY__SESSION_IDLE_TIMEOUT_SECONDS", "900")
    monkeypatch.setenv("PHANTOMAUTH_LOGGING__LEVEL", "DEBUG")
    monkeypatch.setenv("PHANTOMAUTH_WEBHOOKS__ENABLED", "no")
    monkeypatch.setenv("PHANTOMAUTH_BOOTSTRAP__OWNERS", "ops@example.com, root@example.com")

    config = AuthorityConfig.load()
    assert config.paths.database_path == tmp_path / "authority.db"
    assert config.security.single_session_per_account is True
    assert config.security.opaque_failures is True
    assert config.security.blacklist_probe_order == ("hwid", "ip")
    assert config.security.session_idle_timeout_seconds == 900
    assert config.logging.level == "DEBUG"
    assert config.webhooks.enabled is False
    assert [b.email for b in config.bootstrap] == ["ops@example.com", "root@example.com"]
    assert all(b.role == "owner" for b in config.bootstrap)


def test_secret_looking_keys_are_ignored(monkeypatch):
    monkeypatch.setenv("PHANTOMAUTH_SECURITY__SESSION_TOKEN_BYTES", "16")
    monkeypatch.setenv("PHANTOMAUTH_WEBHOOKS__SECRET", "leak")
    overrides = AuthorityConfig._parse_env_overrides("PHANTOMAUTH")
    assert "security.session_token_bytes" not in overrides
    assert "webhooks.secret" not in overrides


def test_config_is_immutable():
    config = AuthorityConfig()
    with pytest.raises(AttributeError):
        config._security = SecurityConfig()


def test_singleton():
    assert AuthorityConfig.get_instance() is AuthorityConfig.get_instance()


@pytest.mark.parametrize("kwargs", [
    {"argon2_memory_cost": 1024},
    {"session_token_bytes": 8},
    {"session_idle_timeout_seconds": 0},
    {"blacklist_probe_order": ("email",)},
])
def test_security_validation(kwargs):
    with pytest.raises(ValueError):
        SecurityConfig(**kwargs)


def test_relative_paths_are_rejected():
    with pytest.raises(ValueError):
        PathConfig(data_dir=Path("relative"))


def test_bootstrap_identity_needs_email():
    with pytest.raises(ValueError):
        BootstrapIdentity(email="not-an-email")


def test_weak_hashing_warns():
    with pytest.warns(SecurityWarning):
        warn_if_weak_hashing(SecurityConfig(argon2_memory_cost=8192, argon2_time_cost=1))

    with warnings.catch_warnings():
        warnings.simplefilter("error")
        warn_if_weak_hashing(SecurityConfig())


def test_config_hash_tracks_content():
    a = AuthorityConfig(security=SecurityConfig(opaque_failures=True))
    b = AuthorityConfig(security=SecurityConfig(opaque_failures=True))
    c = AuthorityConfig()
    assert a.config_hash == b.config_hash
    assert a.config_hash != c.config_hash
