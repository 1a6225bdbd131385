"""
Utils module - Input validation helpers.
"""

from phantomauth.utils.clock import Clock, format_timestamp, parse_timestamp, utcnow
from phantomauth.utils.validators import (
    ValidationError,
    validate_email,
    validate_hwid,
    validate_password,
    validate_string_safe,
    validate_username,
)

__all__ = [
    "Clock",
    "format_timestamp",
    "parse_timestamp",
    "utcnow",
    "ValidationError",
    "validate_email",
    "validate_hwid",
    "validate_password",
    "validate_string_safe",
    "validate_username",
]
