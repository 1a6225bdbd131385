"""
Deny-list Evaluator
===================

Block rules that refuse authentication by identifier, regardless of
whether the presented credentials are valid.

Matching Rules:
- Equality on (type, value) with ``is_active = 1``
- Tenant entries match only their own application
- Entries with no application are global and match every application
- Inactive entries never match

The evaluator is consulted before credential verification so that a
blocked identity never learns whether its password was correct.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Final, Iterable, List, Optional, Tuple

from phantomauth.db.connection import Database
from phantomauth.db.schema import TENANT_SCHEMA
from phantomauth.security.activity import ActivityEvent, ActivityLog
from phantomauth.utils.clock import Clock, format_timestamp, parse_timestamp, utcnow
from phantomauth.utils.validators import ValidationError, validate_string_safe


class BlacklistType(Enum):
    """Identifier kinds a block rule can target."""
    USERNAME = "username"
    HWID = "hwid"
    IP = "ip"

    @classmethod
    def parse(cls, value: str | BlacklistType) -> BlacklistType:
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(f"Unknown blacklist type: {value!r}") from None


@dataclass
class BlacklistEntry:
    """Stored block rule."""
    id: int
    application_id: Optional[int]
    type: BlacklistType
    value: str
    reason: Optional[str]
    is_active: bool
    created_at: datetime

    @property
    def is_global(self) -> bool:
        return self.application_id is None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> BlacklistEntry:
        return cls(
            id=row["id"],
            application_id=row["application_id"],
            type=BlacklistType(row["type"]),
            value=row["value"],
            reason=row["reason"],
            is_active=bool(row["is_active"]),
            created_at=parse_timestamp(row["created_at"]),
        )


Probe = Tuple[BlacklistType, Optional[str]]


class DenyList:
    """
    Deny-list storage and evaluation.

    Usage:
        deny = DenyList(db, activity)
        deny.add(app_id, BlacklistType.HWID, "HW-9", reason="chargeback")

        deny.is_blocked(app_id, BlacklistType.HWID, "HW-9")   # True
        entry = deny.first_match(app_id, [
            (BlacklistType.USERNAME, "alice"),
            (BlacklistType.HWID, "HW-9"),
        ])
    """

    __slots__ = ("_db", "_activity", "_clock", "_log")

    _SCHEMA: Final[str] = """
    CREATE TABLE IF NOT EXISTS blacklist (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        application_id INTEGER
            REFERENCES applications(id) ON DELETE CASCADE,
        type TEXT NOT NULL,
        value TEXT NOT NULL,
        reason TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_blacklist_lookup
        ON blacklist(type, value, is_active);
    CREATE INDEX IF NOT EXISTS idx_blacklist_app ON blacklist(application_id);
    """

    _MATCH_QUERY: Final[str] = """
    SELECT * FROM blacklist
    WHERE type = ? AND value = ? AND is_active = 1
      AND (application_id = ? OR application_id IS NULL)
    ORDER BY application_id IS NULL, id
    LIMIT 1
    """

    def __init__(self, db: Database, activity: ActivityLog, clock: Clock = utcnow) -> None:
        self._db = db
        self._activity = activity
        self._clock = clock
        self._log = logging.getLogger("phantomauth.blacklist")
        self._db.initialize(TENANT_SCHEMA, self._SCHEMA)

    def add(
        self,
        application_id: Optional[int],
        entry_type: str | BlacklistType,
        value: str,
        reason: Optional[str] = None,
    ) -> BlacklistEntry:
        """
        Add an active block rule.

        Args:
            application_id: Owning application, or None for a global rule
            entry_type: Identifier kind
            value: Exact identifier to block
            reason: Free-text note for operators

        Raises:
            ValidationError: If the type or value is invalid
        """
        kind = BlacklistType.parse(entry_type)
        validate_string_safe(value, max_length=256, field_name="value")
        if reason is not None:
            validate_string_safe(reason, max_length=500, allow_empty=True, field_name="reason")
        now = format_timestamp(self._clock())

        with self._db.connect() as conn:
            cursor = conn.execute("""
                INSERT INTO blacklist (application_id, type, value, reason, is_active, created_at)
                VALUES (?, ?, ?, ?, 1, ?)
            """, (application_id, kind.value, value, reason, now))
            entry_id = cursor.lastrowid

        if application_id is not None:
            self._activity.record(
                application_id,
                ActivityEvent.BLACKLIST_ADDED,
                details={"entry_id": entry_id, "type": kind.value, "value": value},
            )
        self._log.info("Blacklist entry %s added (%s, app=%s)", entry_id, kind.value, application_id)
        return self.get(entry_id)

    def get(self, entry_id: int) -> Optional[BlacklistEntry]:
        with self._db.connect() as conn:
            row = conn.execute("SELECT * FROM blacklist WHERE id = ?", (entry_id,)).fetchone()
        return BlacklistEntry.from_row(row) if row else None

    def deactivate(self, entry_id: int) -> bool:
        """Soft-delete a rule; it stays listed but never matches again."""
        entry = self.get(entry_id)
        if entry is None or not entry.is_active:
            return False
        with self._db.connect() as conn:
            conn.execute("UPDATE blacklist SET is_active = 0 WHERE id = ?", (entry_id,))
        if entry.application_id is not None:
            self._activity.record(
                entry.application_id,
                ActivityEvent.BLACKLIST_DEACTIVATED,
                details={"entry_id": entry_id},
            )
        return True

    def remove(self, entry_id: int) -> bool:
        """Delete a rule outright."""
        entry = self.get(entry_id)
        if entry is None:
            return False
        with self._db.connect() as conn:
            result = conn.execute("DELETE FROM blacklist WHERE id = ?", (entry_id,))
        if result.rowcount == 0:
            return False
        if entry.application_id is not None:
            self._activity.record(
                entry.application_id,
                ActivityEvent.BLACKLIST_REMOVED,
                details={"entry_id": entry_id, "type": entry.type.value},
            )
        self._log.info("Blacklist entry %s removed", entry_id)
        return True

    def list(self, application_id: Optional[int] = None, include_global: bool = False) -> List[BlacklistEntry]:
        """
        List rules for one application, or every rule when no id is given.

        Args:
            application_id: Application to list for
            include_global: Also return global rules alongside the tenant's
        """
        with self._db.connect() as conn:
            if application_id is None:
                rows = conn.execute("SELECT * FROM blacklist ORDER BY id").fetchall()
            elif include_global:
                rows = conn.execute("""
                    SELECT * FROM blacklist
                    WHERE application_id = ? OR application_id IS NULL
                    ORDER BY id
                """, (application_id,)).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM blacklist WHERE application_id = ? ORDER BY id",
                    (application_id,),
                ).fetchall()
        return [BlacklistEntry.from_row(row) for row in rows]

    def is_blocked(self, application_id: int, entry_type: str | BlacklistType, value: Optional[str]) -> bool:
        """Check whether an identifier is blocked for an application."""
        return self._match(application_id, BlacklistType.parse(entry_type), value) is not None

    def first_match(self, application_id: int, probes: Iterable[Probe]) -> Optional[BlacklistEntry]:
        """
        Evaluate probes in order, stopping at the first active match.

        Probes with an empty value are skipped.
        """
        for kind, value in probes:
            entry = self._match(application_id, kind, value)
            if entry is not None:
                self._log.warning(
                    "Blocked %s matched entry %s for application %s",
                    kind.value, entry.id, application_id,
                )
                return entry
        return None

    def _match(self, application_id: int, kind: BlacklistType, value: Optional[str]) -> Optional[BlacklistEntry]:
        if not value:
            return None
        with self._db.connect() as conn:
            row = conn.execute(self._MATCH_QUERY, (kind.value, value, application_id)).fetchone()
        return BlacklistEntry.from_row(row) if row else None
