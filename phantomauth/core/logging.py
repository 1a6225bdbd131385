"""
Secure Logging Module
=====================

Redacting log handlers for the authority's ``phantomauth.*`` loggers.

Security Features:
- Passwords, API keys, session tokens and Argon2 hashes are scrubbed
  from messages and arguments before any handler formats them
- Rotating log files with size limits
- Optional JSON lines carrying tenant context for aggregation
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Final, Optional, Pattern

from phantomauth.core.config import LoggingConfig
from phantomauth.security.constants import API_KEY_PREFIX


PACKAGE_LOGGER: Final[str] = "phantomauth"

_REDACTED: Final[str] = "[REDACTED]"

# (label, pattern); keyed patterns keep their label so the line stays readable
_SECRET_PATTERNS: Final[tuple[tuple[str, Pattern[str]], ...]] = (
    ("password", re.compile(r'(?i)\b(?:password|passwd|pwd)\s*[=:]\s*["\']?[^\s"\',]+["\']?')),
    ("api_key", re.compile(r'(?i)\b(?:api[_-]?key|apikey)\s*[=:]\s*["\']?[^\s"\',]+["\']?')),
    ("token", re.compile(r'(?i)\b(?:session[_-]?token|token|bearer)\s*[=:]\s*["\']?[^\s"\',]+["\']?')),
    ("secret", re.compile(r'(?i)\b(?:secret|signing[_-]?secret)\s*[=:]\s*["\']?[^\s"\',]+["\']?')),
    ("api_key", re.compile(re.escape(API_KEY_PREFIX) + r"[A-Za-z0-9_\-]{8,}")),
    ("argon2_hash", re.compile(r"\$argon2(?:id|i|d)\$[^\s\"']+")),
)

# Record attributes copied into JSON output when a caller passes them via extra=
_CONTEXT_FIELDS: Final[tuple[str, ...]] = ("application_id", "app_user_id", "session_id")

_CONSOLE_FORMAT: Final[str] = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
_FILE_FORMAT: Final[str] = "%(asctime)s %(levelname)-8s %(name)s [%(funcName)s:%(lineno)d] %(message)s"


def redact(text: str) -> str:
    """Replace every secret-looking fragment of text."""
    for label, pattern in _SECRET_PATTERNS:
        text = pattern.sub(f"{label}={_REDACTED}", text)
    return text


def _redact_value(value: Any) -> Any:
    return redact(value) if isinstance(value, str) else value


class SecureLogFilter(logging.Filter):
    """
    Scrubs secrets from a record's message and arguments.

    Never drops a record. Extra patterns are replaced with a bare
    ``[REDACTED]``.
    """

    def __init__(self, name: str = "", extra_patterns: Optional[list[Pattern[str]]] = None) -> None:
        super().__init__(name)
        self._extra_patterns = list(extra_patterns or [])

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._scrub(record.msg)

        if isinstance(record.args, dict):
            record.args = {key: self._scrub_value(value) for key, value in record.args.items()}
        elif isinstance(record.args, tuple):
            record.args = tuple(self._scrub_value(value) for value in record.args)

        return True

    def _scrub(self, text: str) -> str:
        text = redact(text)
        for pattern in self._extra_patterns:
            text = pattern.sub(_REDACTED, text)
        return text

    def _scrub_value(self, value: Any) -> Any:
        return self._scrub(value) if isinstance(value, str) else value


class StructuredLogFormatter(logging.Formatter):
    """One JSON object per record, with tenant context when present."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }
        for name in _CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = _redact_value(value)
        if record.exc_info:
            entry["exception"] = redact(self.formatException(record.exc_info))

        return json.dumps(entry, default=str)


class SecureRotatingFileHandler(RotatingFileHandler):
    """Rotating file handler that creates its directory and refuses ``..`` paths."""

    def __init__(
        self,
        filename: str | Path,
        maxBytes: int = 10 * 1024 * 1024,
        backupCount: int = 5,
    ) -> None:
        path = Path(filename)
        if ".." in path.parts:
            raise ValueError("Log path cannot contain path traversal sequences")

        path = path.resolve()
        path.parent.mkdir(parents=True, exist_ok=True)
        super().__init__(str(path), maxBytes=maxBytes, backupCount=backupCount, encoding="utf-8")


def _build_handlers(
    settings: LoggingConfig,
    log_dir: Optional[Path],
    filename: str,
) -> list[logging.Handler]:
    secure_filter = SecureLogFilter()
    handlers: list[logging.Handler] = []

    if settings.enable_console:
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(logging.Formatter(_CONSOLE_FORMAT, datefmt="%H:%M:%S"))
        handlers.append(console)

    if settings.enable_file and log_dir is not None:
        file_handler = SecureRotatingFileHandler(
            log_dir / filename,
            maxBytes=settings.max_file_size_bytes,
            backupCount=settings.backup_count,
        )
        if settings.enable_json:
            file_handler.setFormatter(StructuredLogFormatter())
        else:
            file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        handlers.append(file_handler)

    for handler in handlers:
        handler.addFilter(secure_filter)
    return handlers


def _replace_handlers(logger: logging.Logger, handlers: list[logging.Handler]) -> None:
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()
    for handler in handlers:
        logger.addHandler(handler)


def configure_logging(settings: LoggingConfig, log_dir: Optional[Path] = None) -> logging.Logger:
    """
    Install redacting handlers on the ``phantomauth`` package logger.

    Every component logs under ``phantomauth.<area>``, so this one call
    covers the whole authority. Calling it again replaces the handlers.

    Args:
        settings: Logging section of the configuration
        log_dir: Directory for ``phantomauth.log`` (file output needs one)

    Returns:
        The package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(settings.level.upper())
    _replace_handlers(logger, _build_handlers(settings, log_dir, f"{PACKAGE_LOGGER}.log"))
    logger.propagate = False
    return logger


def get_secure_logger(
    name: str,
    log_dir: Optional[Path] = None,
    settings: Optional[LoggingConfig] = None,
) -> logging.Logger:
    """
    Return a standalone logger with its own redacting handlers.

    The file, when enabled, is ``<log_dir>/<name with dots as underscores>.log``.
    A logger that already has handlers is returned unchanged.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    settings = settings or LoggingConfig()
    logger.setLevel(settings.level.upper())
    for handler in _build_handlers(settings, log_dir, f"{name.replace('.', '_')}.log"):
        logger.addHandler(handler)
    logger.propagate = False
    return logger
