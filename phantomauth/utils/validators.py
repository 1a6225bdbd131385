"""
Validation Utilities
====================

Input validation for values that reach the authority's stores.
"""

from __future__ import annotations

import re
from typing import Final, Optional

from phantomauth.security.constants import (
    MAX_HWID_LENGTH,
    MAX_PASSWORD_LENGTH,
    MAX_USERNAME_LENGTH,
    MIN_USERNAME_LENGTH,
)


_EMAIL_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ValidationError(ValueError):
    """Bad input from a caller; never a storage problem."""
    pass


def validate_string_safe(
    value: str,
    min_length: int = 0,
    max_length: int = 1000,
    allow_empty: bool = False,
    field_name: str = "value",
) -> str:
    """
    Check type, length and null bytes of an identifier or secret.

    Args:
        value: The string to validate
        min_length: Minimum allowed length
        max_length: Maximum allowed length
        allow_empty: If False, empty strings are rejected
        field_name: Name of the field for error messages

    Returns:
        The value, unchanged

    Raises:
        ValidationError: On the first rule the value breaks
    """
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string")

    if not allow_empty and not value:
        raise ValidationError(f"{field_name} cannot be empty")

    if len(value) < min_length:
        raise ValidationError(
            f"{field_name} must be at least {min_length} characters"
        )

    if len(value) > max_length:
        raise ValidationError(
            f"{field_name} must be at most {max_length} characters"
        )

    # Null bytes never belong in identifiers
    if "\x00" in value:
        raise ValidationError(f"{field_name} contains invalid characters")

    return value


def validate_username(username: str) -> str:
    username = validate_string_safe(
        username,
        min_length=MIN_USERNAME_LENGTH,
        max_length=MAX_USERNAME_LENGTH,
        field_name="username",
    )
    if username != username.strip():
        raise ValidationError("username cannot start or end with whitespace")
    return username


def validate_password(password: str) -> str:
    return validate_string_safe(
        password,
        max_length=MAX_PASSWORD_LENGTH,
        field_name="password",
    )


def validate_email(email: Optional[str]) -> Optional[str]:
    """Validate an optional email; empty strings normalize to None."""
    if email is None or email == "":
        return None
    validate_string_safe(email, max_length=320, field_name="email")
    if not _EMAIL_PATTERN.match(email):
        raise ValidationError("email is not a valid address")
    return email


def validate_hwid(hwid: str) -> str:
    return validate_string_safe(
        hwid,
        max_length=MAX_HWID_LENGTH,
        field_name="hwid",
    )
