from __future__ import annotations

import json
import logging
import re

import pytest

from phantomauth.core.config import LoggingConfig
from phantomauth.core.logging import (
    PACKAGE_LOGGER,
    SecureLogFilter,
    SecureRotatingFileHandler,
    StructuredLogFormatter,
    configure_logging,
    get_secure_logger,
    redact,
)


FILE_ONLY = LoggingConfig(enable_console=False, enable_file=True)


def _record(msg, *args, **extra):
    record = logging.LogRecord("phantomauth.test", logging.INFO, __file__, 1, msg, args, None)
    record.__dict__.update(extra)
    return record


def _close(logger):
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def test_redact_keyed_secrets():
    text = redact("login password=hunter22 session_token=abc123 secret: s3cr3t")
    assert "hunter22" not in text
    assert "abc123" not in text
    assert "s3cr3t" not in text
    assert "password=[REDACTED]" in text


def test_filter_redacts_api_keys_and_hashes_in_args():
    record = _record("key %s hash %s", "phantom_" + "a" * 32, "$argon2id$v=19$m=8192,t=1,p=1$c2FsdA$aGFzaA")
    SecureLogFilter().filter(record)
    message = record.getMessage()
    assert "phantom_aaaa" not in message
    assert "$argon2id$" not in message


def test_filter_keeps_ordinary_text():
    record = _record("App user %s created in application %s", 7, 3)
    assert SecureLogFilter().filter(record) is True
    assert record.getMessage() == "App user 7 created in application 3"


def test_filter_extra_patterns():
    record = _record("hwid HW-SECRET-1 presented")
    SecureLogFilter(extra_patterns=[re.compile(r"HW-[A-Z0-9-]+")]).filter(record)
    assert record.getMessage() == "hwid [REDACTED] presented"


def test_structured_formatter_includes_tenant_context():
    data = json.loads(StructuredLogFormatter().format(_record("hello %s", "world", application_id=4)))
    assert data["message"] == "hello world"
    assert data["level"] == "INFO"
    assert data["logger"] == "phantomauth.test"
    assert data["application_id"] == 4
    assert "app_user_id" not in data


def test_secure_logger_writes_redacted_file(tmp_path):
    logger = get_secure_logger("phantomauth_test.file", log_dir=tmp_path, settings=FILE_ONLY)
    try:
        logger.info("api_key=phantom_secretsecretsecret")
    finally:
        _close(logger)

    content = (tmp_path / "phantomauth_test_file.log").read_text()
    assert "secretsecret" not in content
    assert "[REDACTED]" in content


def test_configure_logging_covers_component_loggers(tmp_path):
    settings = LoggingConfig(enable_console=False, enable_file=True, enable_json=True)
    package = configure_logging(settings, tmp_path)
    try:
        logging.getLogger("phantomauth.auth").warning("token=abc123 rejected")
        assert package.name == PACKAGE_LOGGER
        assert package.propagate is False
    finally:
        _close(package)
        package.propagate = True

    data = json.loads((tmp_path / "phantomauth.log").read_text().splitlines()[-1])
    assert data["logger"] == "phantomauth.auth"
    assert "abc123" not in data["message"]


def test_configure_logging_replaces_handlers(tmp_path):
    package = configure_logging(FILE_ONLY, tmp_path)
    try:
        configure_logging(FILE_ONLY, tmp_path)
        assert len(package.handlers) == 1
    finally:
        _close(package)
        package.propagate = True


def test_file_handler_rejects_traversal(tmp_path):
    with pytest.raises(ValueError):
        SecureRotatingFileHandler(tmp_path / ".." / "escape.log")
