"""
Applications (Tenants)
======================

An application is the isolation boundary of the authority: every license
holder, session, deny-list entry, webhook and activity entry belongs to
exactly one application by foreign key.

Each application owns a secret API key (``phantom_`` + 32 url-safe
characters) that the calling layer uses to resolve which tenant a
request is for.
"""

from __future__ import annotations

import logging
import secrets
import sqlite3
import string
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Final, List, Optional

from phantomauth.core.auth.account_lifecycle import UNSET
from phantomauth.db.connection import Database
from phantomauth.db.schema import TENANT_SCHEMA
from phantomauth.security.activity import ActivityEvent, ActivityLog
from phantomauth.security.constants import API_KEY_LENGTH, API_KEY_PREFIX
from phantomauth.utils.clock import Clock, format_timestamp, parse_timestamp, utcnow
from phantomauth.utils.validators import ValidationError, validate_string_safe


_API_KEY_ALPHABET: Final[str] = string.ascii_letters + string.digits + "_-"


class ApplicationNotFoundError(Exception):
    """Raised when an application does not exist."""
    pass


@dataclass
class Application:
    """
    Tenant record.

    Note: api_key is never exposed in repr or str.
    """
    id: int
    owner_id: str
    name: str
    description: Optional[str]
    version: str
    api_key: str
    is_active: bool
    created_at: datetime
    updated_at: datetime

    def __repr__(self) -> str:
        return (
            f"Application(id={self.id!r}, name={self.name!r}, "
            f"owner_id={self.owner_id!r}, is_active={self.is_active})"
        )

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Application:
        return cls(
            id=row["id"],
            owner_id=row["owner_id"],
            name=row["name"],
            description=row["description"],
            version=row["version"],
            api_key=row["api_key"],
            is_active=bool(row["is_active"]),
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )


@dataclass(frozen=True)
class ApplicationUpdate:
    """Closed set of optional application changes; UNSET fields are untouched."""
    name: Any = UNSET
    description: Any = UNSET
    version: Any = UNSET
    is_active: Any = UNSET

    def validate(self) -> None:
        if all(v is UNSET for v in (self.name, self.description, self.version, self.is_active)):
            raise ValidationError("ApplicationUpdate has no fields set")
        if self.name is not UNSET:
            validate_string_safe(self.name, max_length=100, field_name="name")
        if self.description is not UNSET and self.description is not None:
            validate_string_safe(self.description, max_length=2000, allow_empty=True, field_name="description")
        if self.version is not UNSET:
            validate_string_safe(self.version, max_length=32, field_name="version")
        if self.is_active is not UNSET and not isinstance(self.is_active, bool):
            raise ValidationError("is_active must be a bool")


def generate_api_key() -> str:
    """Generate a new application API key."""
    body = "".join(secrets.choice(_API_KEY_ALPHABET) for _ in range(API_KEY_LENGTH))
    return f"{API_KEY_PREFIX}{body}"


class ApplicationManager:
    """
    Tenant management with SQLite backend.

    Usage:
        apps = ApplicationManager(db, activity)
        app = apps.create(owner_id, "My Loader")
        same = apps.get_by_api_key(app.api_key)

    Notes:
        - delete() cascades to every record the application owns
    """

    __slots__ = ("_db", "_activity", "_clock", "_log")

    def __init__(self, db: Database, activity: ActivityLog, clock: Clock = utcnow) -> None:
        self._db = db
        self._activity = activity
        self._clock = clock
        self._log = logging.getLogger("phantomauth.applications")
        self._db.initialize(TENANT_SCHEMA)

    def create(
        self,
        owner_id: str,
        name: str,
        description: Optional[str] = None,
        version: str = "1.0.0",
    ) -> Application:
        """
        Create an application and issue its API key.

        Raises:
            ValidationError: If name/version are invalid
            sqlite3.IntegrityError: If owner_id is not a known operator
        """
        validate_string_safe(name, max_length=100, field_name="name")
        validate_string_safe(version, max_length=32, field_name="version")
        now = format_timestamp(self._clock())
        api_key = generate_api_key()

        with self._db.connect() as conn:
            cursor = conn.execute("""
                INSERT INTO applications (
                    owner_id, name, description, version, api_key,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (owner_id, name, description, version, api_key, now, now))
            app_id = cursor.lastrowid

        self._activity.record(app_id, ActivityEvent.APPLICATION_CREATED, details={"name": name})
        self._log.info("Application %s created for operator %s", app_id, owner_id)
        return self.get(app_id)

    def get(self, application_id: int) -> Optional[Application]:
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM applications WHERE id = ?", (application_id,)
            ).fetchone()
        return Application.from_row(row) if row else None

    def get_by_api_key(self, api_key: str) -> Optional[Application]:
        """Resolve an API key to its application."""
        if not api_key or not api_key.startswith(API_KEY_PREFIX):
            return None
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM applications WHERE api_key = ?", (api_key,)
            ).fetchone()
        return Application.from_row(row) if row else None

    def list_for_owner(self, owner_id: str) -> List[Application]:
        with self._db.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM applications WHERE owner_id = ? ORDER BY id",
                (owner_id,),
            ).fetchall()
        return [Application.from_row(row) for row in rows]

    def update(self, application_id: int, changes: ApplicationUpdate) -> Application:
        """
        Apply an ApplicationUpdate.

        Raises:
            ValidationError: If the update is invalid
            ApplicationNotFoundError: If the application does not exist
        """
        changes.validate()

        assignments: list[str] = []
        params: list[Any] = []
        for column in ("name", "description", "version"):
            value = getattr(changes, column)
            if value is not UNSET:
                assignments.append(f"{column} = ?")
                params.append(value)
        if changes.is_active is not UNSET:
            assignments.append("is_active = ?")
            params.append(1 if changes.is_active else 0)
        assignments.append("updated_at = ?")
        params.append(format_timestamp(self._clock()))

        with self._db.connect() as conn:
            result = conn.execute(
                f"UPDATE applications SET {', '.join(assignments)} WHERE id = ?",
                (*params, application_id),
            )
            if result.rowcount == 0:
                raise ApplicationNotFoundError(f"Application {application_id} not found")

        changed = [c for c in ("name", "description", "version", "is_active")
                   if getattr(changes, c) is not UNSET]
        self._activity.record(application_id, ActivityEvent.APPLICATION_UPDATED, details={"fields": changed})
        return self.get(application_id)

    def rotate_api_key(self, application_id: int) -> str:
        """
        Replace an application's API key; the old key stops resolving at once.

        Raises:
            ApplicationNotFoundError: If the application does not exist
        """
        api_key = generate_api_key()
        with self._db.connect() as conn:
            result = conn.execute(
                "UPDATE applications SET api_key = ?, updated_at = ? WHERE id = ?",
                (api_key, format_timestamp(self._clock()), application_id),
            )
            if result.rowcount == 0:
                raise ApplicationNotFoundError(f"Application {application_id} not found")

        self._activity.record(application_id, ActivityEvent.API_KEY_ROTATED)
        self._log.warning("API key rotated for application %s", application_id)
        return api_key

    def delete(self, application_id: int) -> bool:
        """Delete an application and everything it owns."""
        with self._db.connect() as conn:
            result = conn.execute("DELETE FROM applications WHERE id = ?", (application_id,))
        deleted = result.rowcount > 0
        if deleted:
            self._log.warning("Application %s deleted", application_id)
        return deleted
