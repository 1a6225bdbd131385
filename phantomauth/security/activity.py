"""
Tamper-Aware Activity Log
=========================

Append-only record of every authentication decision and administrative
change, scoped per application.

Features:
- Chained hashes per application for integrity
- Append-only (no update or delete path)
- Most-recent-first paging
- No secrets in details (callers pass identifiers only)
"""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Final, List, Optional

from phantomauth.db.connection import Database
from phantomauth.db.schema import TENANT_SCHEMA
from phantomauth.security.constants import (
    ACTIVITY_CHAIN_GENESIS,
    DEFAULT_ACTIVITY_PAGE_SIZE,
    MAX_ACTIVITY_PAGE_SIZE,
)
from phantomauth.utils.clock import Clock, format_timestamp, parse_timestamp, utcnow


class ActivityEvent(Enum):
    """Kinds of recorded activity."""
    # Authentication
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    SESSION_HEARTBEAT_REJECTED = "session_heartbeat_rejected"
    SESSION_TERMINATED = "session_terminated"
    SESSIONS_REAPED = "sessions_reaped"

    # License holders
    USER_CREATED = "user_created"
    USER_UPDATED = "user_updated"
    USER_DELETED = "user_deleted"
    USER_PAUSED = "user_paused"
    USER_UNPAUSED = "user_unpaused"

    # Hardware binding
    HWID_RESET = "hwid_reset"
    HWID_SET = "hwid_set"

    # Deny-list
    BLACKLIST_ADDED = "blacklist_added"
    BLACKLIST_DEACTIVATED = "blacklist_deactivated"
    BLACKLIST_REMOVED = "blacklist_removed"

    # Application
    APPLICATION_CREATED = "application_created"
    APPLICATION_UPDATED = "application_updated"
    API_KEY_ROTATED = "api_key_rotated"


@dataclass
class ActivityEntry:
    """One stored activity record."""
    id: int
    application_id: int
    event: str
    created_at: datetime
    app_user_id: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)
    previous_hash: str = ""
    event_hash: str = ""

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> ActivityEntry:
        return cls(
            id=row["id"],
            application_id=row["application_id"],
            app_user_id=row["app_user_id"],
            event=row["event"],
            details=json.loads(row["details"] or "{}"),
            created_at=parse_timestamp(row["created_at"]),
            previous_hash=row["previous_hash"],
            event_hash=row["event_hash"],
        )


def compute_event_hash(
    application_id: int,
    app_user_id: Optional[int],
    event: str,
    details: Dict[str, Any],
    created_at: str,
    previous_hash: str,
) -> str:
    """Hash an entry's content together with its predecessor's hash."""
    data = {
        "application_id": application_id,
        "app_user_id": app_user_id,
        "event": event,
        "details": details,
        "created_at": created_at,
        "previous_hash": previous_hash,
    }
    return hashlib.sha256(
        json.dumps(data, sort_keys=True, separators=(",", ":"), default=str).encode()
    ).hexdigest()


class ActivityLog:
    """
    Append-only activity log with tamper detection.

    Usage:
        log = ActivityLog(db)
        log.record(app_id, ActivityEvent.LOGIN_FAILED, app_user_id=7,
                   details={"reason": "hwid_mismatch"})

        page = log.recent(app_id, limit=50)
        ok, count = log.verify_integrity(app_id)

    Notes:
        - app_user_id is a plain reference, not a foreign key: entries
          outlive deleted users and are never rewritten
        - Deleting an application removes its whole chain
    """

    __slots__ = ("_db", "_clock", "_log")

    _SCHEMA: Final[str] = """
    CREATE TABLE IF NOT EXISTS activity_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        application_id INTEGER NOT NULL
            REFERENCES applications(id) ON DELETE CASCADE,
        app_user_id INTEGER,
        event TEXT NOT NULL,
        details TEXT NOT NULL DEFAULT '{}',
        created_at TEXT NOT NULL,
        previous_hash TEXT NOT NULL,
        event_hash TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_activity_app ON activity_logs(application_id, id);
    CREATE INDEX IF NOT EXISTS idx_activity_user ON activity_logs(app_user_id, id);
    """

    def __init__(self, db: Database, clock: Clock = utcnow) -> None:
        self._db = db
        self._clock = clock
        self._log = logging.getLogger("phantomauth.activity")
        self._db.initialize(TENANT_SCHEMA, self._SCHEMA)

    def record(
        self,
        application_id: int,
        event: ActivityEvent,
        app_user_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> ActivityEntry:
        """
        Append an activity entry.

        Returns:
            The stored entry

        Raises:
            StoreError: If the entry could not be written
        """
        details = dict(details or {})
        created_at = format_timestamp(self._clock())

        # The write lock serializes chain extension per database
        with self._db.connect(immediate=True) as conn:
            row = conn.execute("""
                SELECT event_hash FROM activity_logs
                WHERE application_id = ?
                ORDER BY id DESC
                LIMIT 1
            """, (application_id,)).fetchone()
            previous_hash = row["event_hash"] if row else ACTIVITY_CHAIN_GENESIS

            event_hash = compute_event_hash(
                application_id, app_user_id, event.value, details,
                created_at, previous_hash,
            )
            cursor = conn.execute("""
                INSERT INTO activity_logs (
                    application_id, app_user_id, event, details,
                    created_at, previous_hash, event_hash
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                application_id,
                app_user_id,
                event.value,
                json.dumps(details, sort_keys=True, default=str),
                created_at,
                previous_hash,
                event_hash,
            ))
            entry_id = cursor.lastrowid

        self._log.debug("activity app=%s event=%s user=%s", application_id, event.value, app_user_id)

        return ActivityEntry(
            id=entry_id,
            application_id=application_id,
            app_user_id=app_user_id,
            event=event.value,
            details=details,
            created_at=parse_timestamp(created_at),
            previous_hash=previous_hash,
            event_hash=event_hash,
        )

    def recent(
        self,
        application_id: int,
        limit: int = DEFAULT_ACTIVITY_PAGE_SIZE,
        offset: int = 0,
    ) -> List[ActivityEntry]:
        """Get one page of an application's entries, newest first."""
        limit, offset = _page(limit, offset)
        with self._db.connect() as conn:
            rows = conn.execute("""
                SELECT * FROM activity_logs
                WHERE application_id = ?
                ORDER BY id DESC
                LIMIT ? OFFSET ?
            """, (application_id, limit, offset)).fetchall()
        return [ActivityEntry.from_row(row) for row in rows]

    def for_user(
        self,
        app_user_id: int,
        limit: int = DEFAULT_ACTIVITY_PAGE_SIZE,
        offset: int = 0,
    ) -> List[ActivityEntry]:
        """Get one page of a license holder's entries, newest first."""
        limit, offset = _page(limit, offset)
        with self._db.connect() as conn:
            rows = conn.execute("""
                SELECT * FROM activity_logs
                WHERE app_user_id = ?
                ORDER BY id DESC
                LIMIT ? OFFSET ?
            """, (app_user_id, limit, offset)).fetchall()
        return [ActivityEntry.from_row(row) for row in rows]

    def verify_integrity(self, application_id: int) -> tuple[bool, int]:
        """
        Verify an application's hash chain.

        Returns:
            Tuple of (is_valid, entries_checked_before_first_break)
        """
        previous_hash = ACTIVITY_CHAIN_GENESIS
        count = 0

        with self._db.connect() as conn:
            rows = conn.execute("""
                SELECT * FROM activity_logs
                WHERE application_id = ?
                ORDER BY id ASC
            """, (application_id,)).fetchall()

        for row in rows:
            if row["previous_hash"] != previous_hash:
                return False, count
            expected = compute_event_hash(
                row["application_id"],
                row["app_user_id"],
                row["event"],
                json.loads(row["details"] or "{}"),
                row["created_at"],
                row["previous_hash"],
            )
            if expected != row["event_hash"]:
                return False, count
            previous_hash = row["event_hash"]
            count += 1

        return True, count


def _page(limit: int, offset: int) -> tuple[int, int]:
    if limit < 1:
        raise ValueError("limit must be at least 1")
    if offset < 0:
        raise ValueError("offset cannot be negative")
    return min(limit, MAX_ACTIVITY_PAGE_SIZE), offset
