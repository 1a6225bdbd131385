"""
Authority Configuration Module
==============================

Frozen settings for the vault, the session registry, the login decision,
logging and webhook delivery.

Security Features:
- Sections are frozen dataclasses validated on construction
- PHANTOMAUTH_* environment overrides, except for secret-looking keys
- Bootstrap operator emails come from configuration, never from code
"""

from __future__ import annotations

import hashlib
import os
import platform
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Final, Optional

from phantomauth.security.constants import (
    ARGON2_MEMORY_COST,
    ARGON2_MIN_MEMORY_COST,
    ARGON2_MIN_TIME_COST,
    ARGON2_PARALLELISM,
    ARGON2_TIME_COST,
    MIN_SESSION_TOKEN_BYTES,
    SESSION_TOKEN_BYTES,
    WEBHOOK_MAX_WORKERS,
    WEBHOOK_TIMEOUT_SECONDS,
)


_SENSITIVE_KEYS: Final[frozenset[str]] = frozenset({
    "password", "secret", "key", "token", "api_key",
    "private", "credential", "salt",
})

_BLACKLIST_TYPES: Final[frozenset[str]] = frozenset({"username", "hwid", "ip"})

DEFAULT_OWNER_PERMISSIONS: Final[tuple[str, ...]] = (
    "edit_code",
    "manage_users",
    "manage_applications",
    "view_all_data",
    "delete_applications",
    "manage_permissions",
    "access_admin_panel",
)


def _is_sensitive_key(key: str) -> bool:
    """True for keys that must never be set from the environment."""
    key_lower = key.lower()
    return any(sensitive in key_lower for sensitive in _SENSITIVE_KEYS)


def _get_default_data_dir() -> Path:
    """Per-user data directory for the authority database."""
    system = platform.system().lower()

    if system == "windows":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
    elif system == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:  # Linux and others
        base = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))

    return base / "PhantomAuth"


def _get_default_log_dir() -> Path:
    """Per-user directory for rotating log files."""
    system = platform.system().lower()

    if system == "windows":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
        return base / "PhantomAuth" / "Logs"
    elif system == "darwin":
        return Path.home() / "Library" / "Logs" / "PhantomAuth"
    else:
        return Path(os.environ.get("XDG_STATE_HOME", Path.home() / ".local" / "state")) / "PhantomAuth" / "logs"


@dataclass(frozen=True, slots=True)
class PathConfig:
    """Where the database and log files live."""

    data_dir: Path = field(default_factory=_get_default_data_dir)
    log_dir: Path = field(default_factory=_get_default_log_dir)
    database_name: str = "authority.db"

    def __post_init__(self) -> None:
        for field_name in ["data_dir", "log_dir"]:
            path = getattr(self, field_name)
            if not path.is_absolute():
                raise ValueError(f"{field_name} must be an absolute path: {path}")
        if not self.database_name or "/" in self.database_name or "\\" in self.database_name:
            raise ValueError(f"Invalid database name: {self.database_name!r}")

    @property
    def database_path(self) -> Path:
        return self.data_dir / self.database_name


@dataclass(frozen=True, slots=True)
class SecurityConfig:
    """Vault cost, session policy and login decision settings."""

    # Credential vault (Argon2id)
    argon2_memory_cost: int = ARGON2_MEMORY_COST
    argon2_time_cost: int = ARGON2_TIME_COST
    argon2_parallelism: int = ARGON2_PARALLELISM

    # Session registry
    session_token_bytes: int = SESSION_TOKEN_BYTES
    single_session_per_account: bool = False
    session_idle_timeout_seconds: Optional[int] = None  # None: never reaped

    # Login decision
    opaque_failures: bool = False
    blacklist_probe_order: tuple[str, ...] = ("username", "hwid", "ip")

    def __post_init__(self) -> None:
        if self.argon2_memory_cost < ARGON2_MIN_MEMORY_COST:
            raise ValueError(f"argon2_memory_cost must be at least {ARGON2_MIN_MEMORY_COST} KiB")
        if self.argon2_time_cost < ARGON2_MIN_TIME_COST:
            raise ValueError(f"argon2_time_cost must be at least {ARGON2_MIN_TIME_COST}")
        if self.argon2_parallelism < 1:
            raise ValueError("argon2_parallelism must be at least 1")
        if self.session_token_bytes < MIN_SESSION_TOKEN_BYTES:
            raise ValueError(f"session_token_bytes must be at least {MIN_SESSION_TOKEN_BYTES}")
        if self.session_idle_timeout_seconds is not None and self.session_idle_timeout_seconds <= 0:
            raise ValueError("session_idle_timeout_seconds must be positive")
        unknown = set(self.blacklist_probe_order) - _BLACKLIST_TYPES
        if unknown:
            raise ValueError(f"Unknown blacklist probe types: {sorted(unknown)}")


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Handlers installed on the phantomauth package logger."""

    level: str = "INFO"
    max_file_size_bytes: int = 10 * 1024 * 1024  # 10 MB
    backup_count: int = 5
    enable_console: bool = True
    enable_file: bool = False
    enable_json: bool = False

    def __post_init__(self) -> None:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.level.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {self.level}")


@dataclass(frozen=True, slots=True)
class WebhookConfig:
    """Immutable outbound webhook configuration."""

    enabled: bool = True
    timeout_seconds: int = WEBHOOK_TIMEOUT_SECONDS
    max_workers: int = WEBHOOK_MAX_WORKERS

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")


@dataclass(frozen=True, slots=True)
class BootstrapIdentity:
    """An operator email that is seeded with an elevated role."""

    email: str
    role: str = "owner"
    permissions: tuple[str, ...] = DEFAULT_OWNER_PERMISSIONS

    def __post_init__(self) -> None:
        if "@" not in self.email:
            raise ValueError(f"Bootstrap identity needs an email address: {self.email!r}")
        if not self.role:
            raise ValueError("Bootstrap identity role cannot be empty")


class AuthorityConfig:
    """
    Root configuration object for an authority process.

    Usage:
        config = AuthorityConfig.load()
        db_path = config.paths.database_path
        single = config.security.single_session_per_account

    Environment overrides are prefixed with PHANTOMAUTH_ and use double
    underscores for nested values:
        PHANTOMAUTH_LOGGING__LEVEL=DEBUG
        PHANTOMAUTH_SECURITY__SINGLE_SESSION_PER_ACCOUNT=true
        PHANTOMAUTH_PATHS__DATA_DIR=/srv/phantomauth
        PHANTOMAUTH_BOOTSTRAP__OWNERS=ops@example.com,root@example.com
    """

    __slots__ = (
        "_paths", "_security", "_logging", "_webhooks",
        "_bootstrap", "_frozen", "_config_hash",
    )

    _instance: Optional[AuthorityConfig] = None

    def __init__(
        self,
        paths: Optional[PathConfig] = None,
        security: Optional[SecurityConfig] = None,
        logging: Optional[LoggingConfig] = None,
        webhooks: Optional[WebhookConfig] = None,
        bootstrap: tuple[BootstrapIdentity, ...] = (),
    ) -> None:
        """Initialize configuration. Use AuthorityConfig.load() for standard initialization."""
        object.__setattr__(self, "_frozen", False)
        object.__setattr__(self, "_paths", paths or PathConfig())
        object.__setattr__(self, "_security", security or SecurityConfig())
        object.__setattr__(self, "_logging", logging or LoggingConfig())
        object.__setattr__(self, "_webhooks", webhooks or WebhookConfig())
        object.__setattr__(self, "_bootstrap", tuple(bootstrap))
        object.__setattr__(self, "_config_hash", self._compute_hash())
        object.__setattr__(self, "_frozen", True)

    def _compute_hash(self) -> str:
        """Short fingerprint of every section, for comparing deployments."""
        config_str = (
            f"{self._paths}|{self._security}|{self._logging}|"
            f"{self._webhooks}|{self._bootstrap}"
        )
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    @property
    def paths(self) -> PathConfig:
        return self._paths

    @property
    def security(self) -> SecurityConfig:
        return self._security

    @property
    def logging(self) -> LoggingConfig:
        return self._logging

    @property
    def webhooks(self) -> WebhookConfig:
        return self._webhooks

    @property
    def bootstrap(self) -> tuple[BootstrapIdentity, ...]:
        return self._bootstrap

    @property
    def config_hash(self) -> str:
        return self._config_hash

    @classmethod
    def load(cls, env_prefix: str = "PHANTOMAUTH") -> AuthorityConfig:
        """
        Build a configuration from defaults plus environment overrides.

        Args:
            env_prefix: Prefix for environment variables (default: PHANTOMAUTH)

        Returns:
            Configured AuthorityConfig instance
        """
        env = cls._parse_env_overrides(env_prefix)

        paths_kwargs: dict[str, Any] = {}
        if "paths.data_dir" in env:
            paths_kwargs["data_dir"] = Path(env["paths.data_dir"])
        if "paths.log_dir" in env:
            paths_kwargs["log_dir"] = Path(env["paths.log_dir"])
        if "paths.database_name" in env:
            paths_kwargs["database_name"] = env["paths.database_name"]

        security_kwargs: dict[str, Any] = {}
        for name in ("argon2_memory_cost", "argon2_time_cost", "argon2_parallelism"):
            if f"security.{name}" in env:
                security_kwargs[name] = int(env[f"security.{name}"])
        if "security.session_idle_timeout_seconds" in env:
            security_kwargs["session_idle_timeout_seconds"] = int(
                env["security.session_idle_timeout_seconds"]
            )
        for name in ("single_session_per_account", "opaque_failures"):
            if f"security.{name}" in env:
                security_kwargs[name] = _parse_bool(env[f"security.{name}"])
        if "security.blacklist_probe_order" in env:
            security_kwargs["blacklist_probe_order"] = _parse_list(
                env["security.blacklist_probe_order"]
            )

        logging_kwargs: dict[str, Any] = {}
        if "logging.level" in env:
            logging_kwargs["level"] = env["logging.level"]
        for name in ("enable_console", "enable_file", "enable_json"):
            if f"logging.{name}" in env:
                logging_kwargs[name] = _parse_bool(env[f"logging.{name}"])

        webhook_kwargs: dict[str, Any] = {}
        if "webhooks.enabled" in env:
            webhook_kwargs["enabled"] = _parse_bool(env["webhooks.enabled"])
        if "webhooks.timeout_seconds" in env:
            webhook_kwargs["timeout_seconds"] = int(env["webhooks.timeout_seconds"])
        if "webhooks.max_workers" in env:
            webhook_kwargs["max_workers"] = int(env["webhooks.max_workers"])

        bootstrap = tuple(
            BootstrapIdentity(email=email)
            for email in _parse_list(env.get("bootstrap.owners", ""))
        )

        return cls(
            paths=PathConfig(**paths_kwargs) if paths_kwargs else None,
            security=SecurityConfig(**security_kwargs) if security_kwargs else None,
            logging=LoggingConfig(**logging_kwargs) if logging_kwargs else None,
            webhooks=WebhookConfig(**webhook_kwargs) if webhook_kwargs else None,
            bootstrap=bootstrap,
        )

    @staticmethod
    def _parse_env_overrides(prefix: str) -> dict[str, str]:
        """Map PREFIX_SECTION__KEY variables to section.key strings."""
        overrides: dict[str, str] = {}
        prefix_upper = f"{prefix.upper()}_"

        for key, value in os.environ.items():
            if key.startswith(prefix_upper):
                # PHANTOMAUTH_SECTION__KEY -> section.key
                config_key = key[len(prefix_upper):].lower().replace("__", ".")

                # Secrets never come in through the environment
                if _is_sensitive_key(config_key):
                    continue

                overrides[config_key] = value

        return overrides

    @classmethod
    def get_instance(cls) -> AuthorityConfig:
        """Get or create the singleton configuration instance."""
        if cls._instance is None:
            cls._instance = cls.load()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Forget the shared instance so the next get_instance() reloads."""
        cls._instance = None

    def ensure_directories(self) -> None:
        """Create data and log directories with owner-only permissions."""
        import stat

        for directory in (self._paths.data_dir, self._paths.log_dir):
            directory.mkdir(parents=True, exist_ok=True)
            if platform.system().lower() != "windows":
                directory.chmod(stat.S_IRWXU)

    def __repr__(self) -> str:
        return f"AuthorityConfig(hash={self._config_hash}, bootstrap={len(self._bootstrap)})"

    def __setattr__(self, name: str, value: Any) -> None:
        """Refuse assignment once __init__ has finished."""
        if hasattr(self, "_frozen") and self._frozen:
            raise AttributeError("AuthorityConfig is immutable after initialization")
        super().__setattr__(name, value)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_list(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


class SecurityWarning(UserWarning):
    """Emitted when configured hashing cost is below the recommended floor."""
    pass


def warn_if_weak_hashing(security: SecurityConfig) -> None:
    """Warn when the vault runs below the recommended Argon2 parameters."""
    if (
        security.argon2_memory_cost < ARGON2_MEMORY_COST
        or security.argon2_time_cost < ARGON2_TIME_COST
    ):
        warnings.warn(
            "Argon2 parameters are below the recommended minimum. "
            "This should NEVER be used in production.",
            SecurityWarning,
            stacklevel=2,
        )
