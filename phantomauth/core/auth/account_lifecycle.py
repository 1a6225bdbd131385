"""
Account Lifecycle
=================

State model for an application-bound license holder.

States:
- ACTIVE:  eligible to log in
- PAUSED:  administratively suspended (stored flag, reversible)
- EXPIRED: derived at evaluation time from ``expires_at``; never stored
- DELETED: the record no longer exists (terminal)

Evaluation order for login eligibility is DELETED, EXPIRED, PAUSED, and
the first failing check wins.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from phantomauth.utils.clock import parse_timestamp, utcnow
from phantomauth.utils.validators import (
    ValidationError,
    validate_email,
    validate_password,
    validate_username,
)


class AccountState(Enum):
    """Lifecycle state of a license holder at a point in time."""
    ACTIVE = "active"
    PAUSED = "paused"
    EXPIRED = "expired"
    DELETED = "deleted"

    @property
    def is_eligible(self) -> bool:
        return self is AccountState.ACTIVE


@dataclass
class AppUser:
    """
    License holder scoped to one application.

    Note: password_hash is never exposed in repr or str.
    """
    id: int
    application_id: int
    username: str
    password_hash: str
    email: Optional[str]
    hwid: Optional[str]
    is_paused: bool
    expires_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    last_login_at: Optional[datetime] = None

    def __repr__(self) -> str:
        return (
            f"AppUser(id={self.id!r}, application_id={self.application_id!r}, "
            f"username={self.username!r}, paused={self.is_paused}, "
            f"hwid_bound={self.hwid is not None})"
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check if the account's expiry has passed."""
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at

    def state(self, now: Optional[datetime] = None) -> AccountState:
        """Derive the current lifecycle state (expiry outranks pause)."""
        if self.is_expired(now):
            return AccountState.EXPIRED
        if self.is_paused:
            return AccountState.PAUSED
        return AccountState.ACTIVE

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> AppUser:
        return cls(
            id=row["id"],
            application_id=row["application_id"],
            username=row["username"],
            password_hash=row["password_hash"],
            email=row["email"],
            hwid=row["hwid"],
            is_paused=bool(row["is_paused"]),
            expires_at=parse_timestamp(row["expires_at"]),
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
            last_login_at=parse_timestamp(row["last_login_at"]),
        )


def evaluate_eligibility(account: Optional[AppUser], now: Optional[datetime] = None) -> AccountState:
    """
    Evaluate whether an account may log in.

    Args:
        account: The loaded account, or None if it does not exist
        now: Evaluation time (defaults to the current UTC time)

    Returns:
        ACTIVE when eligible, otherwise the first failing state
    """
    if account is None:
        return AccountState.DELETED
    return account.state(now)


class _Unset:
    """Marker for an AccountUpdate field that was not supplied."""

    _instance: Optional[_Unset] = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass(frozen=True)
class AccountUpdate:
    """
    Closed set of optional changes to a license holder.

    Fields left as UNSET are untouched. ``email=None`` removes the email
    and ``expires_at=None`` clears the expiry.
    """
    username: Any = UNSET
    email: Any = UNSET
    password: Any = UNSET
    expires_at: Any = UNSET

    def validate(self) -> None:
        """
        Validate every supplied field.

        Raises:
            ValidationError: If a field is invalid or nothing was supplied
        """
        if self.is_empty():
            raise ValidationError("AccountUpdate has no fields set")
        if self.username is not UNSET:
            validate_username(self.username)
        if self.email is not UNSET:
            validate_email(self.email)
        if self.password is not UNSET:
            validate_password(self.password)
        if self.expires_at is not UNSET and self.expires_at is not None:
            if not isinstance(self.expires_at, datetime):
                raise ValidationError("expires_at must be a datetime or None")
            if self.expires_at.tzinfo is None:
                raise ValidationError("expires_at must be timezone-aware")

    def is_empty(self) -> bool:
        return all(
            value is UNSET
            for value in (self.username, self.email, self.password, self.expires_at)
        )

