"""
Operator Directory and Bootstrap Seeding
========================================

Operators are the identities that own applications. They arrive from an
external identity provider and are upserted on every sign-in.

Elevated roles are never decided in code: an operator whose email matches
a configured BootstrapIdentity receives that identity's role and
permissions, everyone else is a plain ``user`` with no permissions.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Final, List, Optional, Sequence

from phantomauth.core.config import BootstrapIdentity
from phantomauth.db.connection import Database
from phantomauth.db.schema import TENANT_SCHEMA
from phantomauth.utils.clock import Clock, format_timestamp, parse_timestamp, utcnow
from phantomauth.utils.validators import validate_string_safe


DEFAULT_ROLE: Final[str] = "user"


@dataclass(frozen=True)
class OperatorProfile:
    """Identity attributes supplied by the identity provider."""
    id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None


@dataclass
class Operator:
    """Stored operator record."""
    id: str
    email: Optional[str]
    first_name: Optional[str]
    last_name: Optional[str]
    profile_image_url: Optional[str]
    role: str
    permissions: List[str] = field(default_factory=list)
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def has_permission(self, permission: str) -> bool:
        return self.is_active and permission in self.permissions

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Operator:
        return cls(
            id=row["id"],
            email=row["email"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            profile_image_url=row["profile_image_url"],
            role=row["role"],
            permissions=json.loads(row["permissions"] or "[]"),
            is_active=bool(row["is_active"]),
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )


class OperatorDirectory:
    """
    Operator storage with configuration-driven role seeding.

    Usage:
        directory = OperatorDirectory(db, config.bootstrap)
        operator = directory.upsert(OperatorProfile(id="oidc|123", email="ops@example.com"))
    """

    __slots__ = ("_db", "_bootstrap", "_clock", "_log")

    def __init__(
        self,
        db: Database,
        bootstrap: Sequence[BootstrapIdentity] = (),
        clock: Clock = utcnow,
    ) -> None:
        self._db = db
        self._bootstrap = tuple(bootstrap)
        self._clock = clock
        self._log = logging.getLogger("phantomauth.operators")
        self._db.initialize(TENANT_SCHEMA)

    def _identity_for(self, email: Optional[str]) -> Optional[BootstrapIdentity]:
        if not email:
            return None
        wanted = email.strip().lower()
        for identity in self._bootstrap:
            if identity.email.strip().lower() == wanted:
                return identity
        return None

    def upsert(self, profile: OperatorProfile) -> Operator:
        """
        Insert an operator, or refresh it on id conflict.

        Role and permissions are recomputed from the bootstrap list on
        every upsert, so removing an email from configuration demotes it
        at the operator's next sign-in.
        """
        validate_string_safe(profile.id, max_length=255, field_name="operator id")

        identity = self._identity_for(profile.email)
        role = identity.role if identity else DEFAULT_ROLE
        permissions = list(identity.permissions) if identity else []
        now = format_timestamp(self._clock())

        with self._db.connect() as conn:
            conn.execute("""
                INSERT INTO operators (
                    id, email, first_name, last_name, profile_image_url,
                    role, permissions, is_active, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, 1, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    email = excluded.email,
                    first_name = excluded.first_name,
                    last_name = excluded.last_name,
                    profile_image_url = excluded.profile_image_url,
                    role = excluded.role,
                    permissions = excluded.permissions,
                    updated_at = excluded.updated_at
            """, (
                profile.id,
                profile.email,
                profile.first_name,
                profile.last_name,
                profile.profile_image_url,
                role,
                json.dumps(permissions),
                now,
                now,
            ))

        if identity:
            self._log.info("Operator %s seeded with bootstrap role %s", profile.id, role)
        return self.get(profile.id)

    def get(self, operator_id: str) -> Optional[Operator]:
        with self._db.connect() as conn:
            row = conn.execute("SELECT * FROM operators WHERE id = ?", (operator_id,)).fetchone()
        return Operator.from_row(row) if row else None

    def seed(self) -> List[str]:
        """
        Promote already-stored operators whose email is in the bootstrap list.

        Returns:
            Ids of operators whose role was changed
        """
        promoted: List[str] = []
        now = format_timestamp(self._clock())
        with self._db.connect() as conn:
            for identity in self._bootstrap:
                rows = conn.execute(
                    "SELECT id, role, permissions FROM operators WHERE lower(email) = ?",
                    (identity.email.strip().lower(),),
                ).fetchall()
                for row in rows:
                    permissions = json.dumps(list(identity.permissions))
                    if row["role"] == identity.role and row["permissions"] == permissions:
                        continue
                    conn.execute(
                        "UPDATE operators SET role = ?, permissions = ?, updated_at = ? WHERE id = ?",
                        (identity.role, permissions, now, row["id"]),
                    )
                    promoted.append(row["id"])
        for operator_id in promoted:
            self._log.info("Operator %s promoted from bootstrap configuration", operator_id)
        return promoted
