"""
License Holder Management
=========================

Administrative management of application-scoped license holders.

Security Features:
- Secure password hashing (Argon2id) via the credential vault
- Usernames and emails unique per application, not globally
- Closed, validated update payloads (AccountUpdate)
- Deleting a holder terminates its sessions first
- Every administrative mutation is recorded in the activity log
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Any, Final, List, Optional

from phantomauth.core.applications import ApplicationNotFoundError
from phantomauth.core.auth.account_lifecycle import UNSET, AccountUpdate, AppUser
from phantomauth.core.auth.argon2_auth import Argon2Hasher
from phantomauth.core.auth.session_control import SessionRegistry
from phantomauth.core.device.hwid_binding import HardwareBindingManager
from phantomauth.db.connection import Database, StoreError
from phantomauth.db.schema import TENANT_SCHEMA
from phantomauth.security.activity import ActivityEvent, ActivityLog
from phantomauth.utils.clock import Clock, format_timestamp, utcnow
from phantomauth.utils.validators import (
    ValidationError,
    validate_email,
    validate_hwid,
    validate_password,
    validate_username,
)


class AppUserExistsError(Exception):
    """Raised when a username or email is already taken in the application."""
    pass


class AppUserNotFoundError(Exception):
    """Raised when a license holder is not found."""
    pass


def _translate_integrity_error(error: sqlite3.IntegrityError, username: Optional[str]) -> Exception:
    message = str(error)
    if "UNIQUE" in message:
        if "email" in message:
            return AppUserExistsError("Email is already in use in this application")
        return AppUserExistsError(f"User '{username}' already exists in this application")
    if "FOREIGN KEY" in message:
        return ApplicationNotFoundError("Application not found")
    return StoreError(message)


def _check_expiry(expires_at: Optional[datetime]) -> None:
    if expires_at is not None and (not isinstance(expires_at, datetime) or expires_at.tzinfo is None):
        raise ValidationError("expires_at must be a timezone-aware datetime")


class AppUserManager:
    """
    License holder management with SQLite backend.

    Usage:
        users = AppUserManager(db, hasher, activity, binding, sessions)

        alice = users.create(app_id, "alice", "secret123")
        users.update(alice.id, AccountUpdate(expires_at=None))
        users.pause(alice.id)
        users.reset_hwid(alice.id)

    Security Notes:
        - Passwords are hashed with Argon2id and never stored in plaintext
        - All operations use parameterized queries
    """

    __slots__ = ("_db", "_hasher", "_activity", "_binding", "_sessions", "_clock", "_log")

    _SCHEMA: Final[str] = """
    CREATE TABLE IF NOT EXISTS app_users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        application_id INTEGER NOT NULL
            REFERENCES applications(id) ON DELETE CASCADE,
        username TEXT NOT NULL,
        password_hash TEXT NOT NULL,
        email TEXT,
        hwid TEXT,
        is_paused INTEGER NOT NULL DEFAULT 0,
        expires_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        last_login_at TEXT,
        UNIQUE (application_id, username),
        UNIQUE (application_id, email)
    );

    CREATE INDEX IF NOT EXISTS idx_app_users_app ON app_users(application_id);
    """

    def __init__(
        self,
        db: Database,
        hasher: Argon2Hasher,
        activity: ActivityLog,
        binding: HardwareBindingManager,
        sessions: SessionRegistry,
        clock: Clock = utcnow,
    ) -> None:
        self._db = db
        self._hasher = hasher
        self._activity = activity
        self._binding = binding
        self._sessions = sessions
        self._clock = clock
        self._log = logging.getLogger("phantomauth.users")
        self._db.initialize(TENANT_SCHEMA, self._SCHEMA)

    def create(
        self,
        application_id: int,
        username: str,
        password: str,
        email: Optional[str] = None,
        hwid: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> AppUser:
        """
        Create a license holder.

        Args:
            application_id: Owning application
            username: Unique within the application
            password: Plaintext secret (hashed before storage)
            email: Optional, unique within the application when present
            hwid: Optional pre-bound hardware fingerprint
            expires_at: Optional timezone-aware expiry

        Raises:
            ValidationError: If any field is invalid
            AppUserExistsError: If username/email is taken
            ApplicationNotFoundError: If the application does not exist
        """
        validate_username(username)
        validate_password(password)
        email = validate_email(email)
        if hwid is not None:
            validate_hwid(hwid)
        _check_expiry(expires_at)

        password_hash = self._hasher.hash(password)
        now = format_timestamp(self._clock())

        try:
            with self._db.connect() as conn:
                cursor = conn.execute("""
                    INSERT INTO app_users (
                        application_id, username, password_hash, email, hwid,
                        is_paused, expires_at, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, 0, ?, ?, ?)
                """, (
                    application_id,
                    username,
                    password_hash,
                    email,
                    hwid,
                    format_timestamp(expires_at),
                    now,
                    now,
                ))
                user_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise _translate_integrity_error(e, username) from e

        self._activity.record(
            application_id,
            ActivityEvent.USER_CREATED,
            app_user_id=user_id,
            details={"username": username},
        )
        self._log.info("App user %s created in application %s", user_id, application_id)
        return self.get(user_id)

    def get(self, user_id: int) -> Optional[AppUser]:
        with self._db.connect() as conn:
            row = conn.execute("SELECT * FROM app_users WHERE id = ?", (user_id,)).fetchone()
        return AppUser.from_row(row) if row else None

    def get_by_username(self, application_id: int, username: str) -> Optional[AppUser]:
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_users WHERE application_id = ? AND username = ?",
                (application_id, username),
            ).fetchone()
        return AppUser.from_row(row) if row else None

    def get_by_email(self, application_id: int, email: str) -> Optional[AppUser]:
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM app_users WHERE application_id = ? AND email = ?",
                (application_id, email),
            ).fetchone()
        return AppUser.from_row(row) if row else None

    def list_for_application(self, application_id: int) -> List[AppUser]:
        with self._db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM app_users WHERE application_id = ? ORDER BY id",
                (application_id,),
            ).fetchall()
        return [AppUser.from_row(row) for row in rows]

    def _require(self, user_id: int) -> AppUser:
        user = self.get(user_id)
        if user is None:
            raise AppUserNotFoundError(f"App user {user_id} not found")
        return user

    def update(self, user_id: int, changes: AccountUpdate) -> AppUser:
        """
        Apply an AccountUpdate.

        The update is validated in full before the store is touched; a
        new password is re-hashed.

        Raises:
            ValidationError: If the update is invalid
            AppUserNotFoundError: If the holder does not exist
            AppUserExistsError: If the new username/email is taken
        """
        changes.validate()
        user = self._require(user_id)

        assignments: list[str] = []
        params: list[Any] = []
        if changes.username is not UNSET:
            assignments.append("username = ?")
            params.append(changes.username)
        if changes.email is not UNSET:
            assignments.append("email = ?")
            params.append(validate_email(changes.email))
        if changes.password is not UNSET:
            assignments.append("password_hash = ?")
            params.append(self._hasher.hash(changes.password))
        if changes.expires_at is not UNSET:
            assignments.append("expires_at = ?")
            params.append(format_timestamp(changes.expires_at))
        assignments.append("updated_at = ?")
        params.append(format_timestamp(self._clock()))

        try:
            with self._db.connect() as conn:
                result = conn.execute(
                    f"UPDATE app_users SET {', '.join(assignments)} WHERE id = ?",
                    (*params, user_id),
                )
                if result.rowcount == 0:
                    raise AppUserNotFoundError(f"App user {user_id} not found")
        except sqlite3.IntegrityError as e:
            raise _translate_integrity_error(e, changes.username or user.username) from e

        fields = [name for name in ("username", "email", "password", "expires_at")
                  if getattr(changes, name) is not UNSET]
        self._activity.record(
            user.application_id,
            ActivityEvent.USER_UPDATED,
            app_user_id=user_id,
            details={"fields": fields},
        )
        return self.get(user_id)

    def _set_paused(self, user_id: int, paused: bool) -> bool:
        user = self.get(user_id)
        if user is None:
            return False
        with self._db.connect() as conn:
            result = conn.execute(
                "UPDATE app_users SET is_paused = ?, updated_at = ? WHERE id = ?",
                (1 if paused else 0, format_timestamp(self._clock()), user_id),
            )
        if result.rowcount == 0:
            return False

        if user.is_paused != paused:
            event = ActivityEvent.USER_PAUSED if paused else ActivityEvent.USER_UNPAUSED
            self._activity.record(user.application_id, event, app_user_id=user_id)
            self._log.info("App user %s %s", user_id, "paused" if paused else "unpaused")
        return True

    def pause(self, user_id: int) -> bool:
        """Pause a holder. Repeated pauses succeed without a new log entry."""
        return self._set_paused(user_id, True)

    def unpause(self, user_id: int) -> bool:
        return self._set_paused(user_id, False)

    def delete(self, user_id: int) -> bool:
        """
        Delete a holder and terminate its sessions in one transaction.

        The write lock is taken first, so a concurrent login either opens
        its session before this runs (and it is terminated here) or fails
        its insert against the deleted row.

        Returns:
            True if the holder existed
        """
        user = self.get(user_id)
        if user is None:
            return False

        with self._db.connect(immediate=True) as conn:
            self._sessions.terminate_all_within(conn, user_id)
            result = conn.execute("DELETE FROM app_users WHERE id = ?", (user_id,))
        if result.rowcount == 0:
            return False

        self._activity.record(
            user.application_id,
            ActivityEvent.USER_DELETED,
            app_user_id=user_id,
            details={"username": user.username},
        )
        self._log.warning("App user %s deleted from application %s", user_id, user.application_id)
        return True

    def reset_hwid(self, user_id: int) -> bool:
        user = self.get(user_id)
        if user is None:
            return False
        return self._binding.reset_binding(user)

    def set_hwid(self, user_id: int, hwid: str) -> bool:
        user = self.get(user_id)
        if user is None:
            return False
        return self._binding.force_set_binding(user, hwid)

    def record_login(self, user_id: int) -> None:
        with self._db.connect() as conn:
            conn.execute(
                "UPDATE app_users SET last_login_at = ? WHERE id = ?",
                (format_timestamp(self._clock()), user_id),
            )

    def update_password_hash(self, user_id: int, password_hash: str) -> None:
        """Store a re-computed hash for the same password."""
        with self._db.connect() as conn:
            conn.execute(
                "UPDATE app_users SET password_hash = ?, updated_at = ? WHERE id = ?",
                (password_hash, format_timestamp(self._clock()), user_id),
            )
