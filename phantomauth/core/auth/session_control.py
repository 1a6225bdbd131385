"""
Session Control
================

Live session registry scoped per application.

Security Features:
- Cryptographically random session tokens
- Only token hashes are stored (raw tokens never hit disk)
- Token uniqueness enforced by the store, not by a counter
- Termination is a terminal soft state (rows are kept for audit)
- Optional single session per license holder
- Idle sessions can be rejected on heartbeat or reaped
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Final, List, Optional

from phantomauth.db.connection import Database, StoreError
from phantomauth.db.schema import TENANT_SCHEMA
from phantomauth.security.constants import MIN_SESSION_TOKEN_BYTES, SESSION_TOKEN_BYTES
from phantomauth.utils.clock import Clock, format_timestamp, parse_timestamp, utcnow


# Attempts at drawing a fresh token after a hash collision
MAX_TOKEN_ATTEMPTS: Final[int] = 3


@dataclass
class Session:
    """
    License holder session.

    ``token`` is populated only on the object returned by
    ``SessionRegistry.open``; stored sessions carry the hash alone.
    """
    id: str
    application_id: int
    app_user_id: Optional[int]
    token_hash: str
    created_at: datetime
    last_activity: datetime
    ip_address: Optional[str] = None
    is_active: bool = True
    token: Optional[str] = None

    def __repr__(self) -> str:
        """Safe representation without token."""
        return (
            f"Session(id={self.id!r}, application_id={self.application_id!r}, "
            f"app_user_id={self.app_user_id!r}, is_active={self.is_active})"
        )

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Session:
        return cls(
            id=row["id"],
            application_id=row["application_id"],
            app_user_id=row["app_user_id"],
            token_hash=row["token_hash"],
            created_at=parse_timestamp(row["created_at"]),
            last_activity=parse_timestamp(row["last_activity"]),
            ip_address=row["ip_address"],
            is_active=bool(row["is_active"]),
        )


class SessionError(Exception):
    """Raised when a session cannot be issued."""
    pass


def hash_token(token: str) -> str:
    """
    Hash a session token for storage.

    SHA-256 keeps lookups fast while preventing token recovery from
    the database.
    """
    return hashlib.sha256(token.encode()).hexdigest()


class SessionRegistry:
    """
    Session issuance, heartbeat and termination.

    Usage:
        registry = SessionRegistry(db)

        session = registry.open(app_id, user_id)
        token = session.token            # hand to the client once

        registry.heartbeat(token)        # True while active
        registry.terminate(token)        # True once, then False

    Notes:
        - Heartbeat and terminate are single conditional UPDATEs
        - ``replace_existing`` terminates the holder's other sessions in
          the transaction that inserts the new one
    """

    __slots__ = ("_db", "_token_bytes", "_idle_timeout", "_clock", "_log")

    _SCHEMA: Final[str] = """
    CREATE TABLE IF NOT EXISTS sessions (
        id TEXT PRIMARY KEY,
        application_id INTEGER NOT NULL
            REFERENCES applications(id) ON DELETE CASCADE,
        app_user_id INTEGER
            REFERENCES app_users(id) ON DELETE SET NULL,
        token_hash TEXT UNIQUE NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        last_activity TEXT NOT NULL,
        ip_address TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_sessions_app ON sessions(application_id, is_active);
    CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(app_user_id, is_active);
    CREATE INDEX IF NOT EXISTS idx_sessions_activity ON sessions(last_activity);
    """

    def __init__(
        self,
        db: Database,
        token_bytes: int = SESSION_TOKEN_BYTES,
        idle_timeout_seconds: Optional[int] = None,
        clock: Clock = utcnow,
    ) -> None:
        """
        Initialize the session registry.

        Args:
            db: Shared database
            token_bytes: Entropy of issued tokens
            idle_timeout_seconds: Heartbeats older than this are rejected
                and the session terminated (None disables)
            clock: Time source
        """
        if token_bytes < MIN_SESSION_TOKEN_BYTES:
            raise ValueError(f"token_bytes must be at least {MIN_SESSION_TOKEN_BYTES}")
        self._db = db
        self._token_bytes = token_bytes
        self._idle_timeout = idle_timeout_seconds
        self._clock = clock
        self._log = logging.getLogger("phantomauth.sessions")
        self._db.initialize(TENANT_SCHEMA, self._SCHEMA)

    def _generate_token(self) -> str:
        """Generate a cryptographically secure session token."""
        return secrets.token_urlsafe(self._token_bytes)

    def open(
        self,
        application_id: int,
        app_user_id: int,
        ip_address: Optional[str] = None,
        replace_existing: bool = False,
    ) -> Session:
        """
        Issue a new active session.

        Args:
            application_id: Owning application
            app_user_id: Authenticated license holder
            ip_address: Optional client address
            replace_existing: Terminate the holder's other active sessions

        Returns:
            Session with ``token`` set (caller must transmit it securely)

        Raises:
            SessionError: If no unique token could be issued
            StoreError: If the store fails
        """
        for _ in range(MAX_TOKEN_ATTEMPTS):
            token = self._generate_token()
            now = self._clock()
            session = Session(
                id=str(uuid.uuid4()),
                application_id=application_id,
                app_user_id=app_user_id,
                token_hash=hash_token(token),
                created_at=now,
                last_activity=now,
                ip_address=ip_address,
                token=token,
            )
            try:
                replaced = self._insert(session, replace_existing)
            except sqlite3.IntegrityError as e:
                if "token_hash" in str(e):
                    self._log.warning("Session token collision, drawing a new token")
                    continue
                raise StoreError(f"Cannot open session: {e}") from e

            if replaced:
                self._log.info(
                    "Terminated %d prior session(s) for app_user %s", replaced, app_user_id
                )
            self._log.info("Session %s opened for app_user %s", session.id, app_user_id)
            return session

        raise SessionError("Could not issue a unique session token")

    def _insert(self, session: Session, replace_existing: bool) -> int:
        replaced = 0
        with self._db.connect(immediate=True) as conn:
            if replace_existing:
                result = conn.execute("""
                    UPDATE sessions SET is_active = 0
                    WHERE application_id = ? AND app_user_id = ? AND is_active = 1
                """, (session.application_id, session.app_user_id))
                replaced = result.rowcount
            conn.execute("""
                INSERT INTO sessions (
                    id, application_id, app_user_id, token_hash,
                    is_active, created_at, last_activity, ip_address
                ) VALUES (?, ?, ?, ?, 1, ?, ?, ?)
            """, (
                session.id,
                session.application_id,
                session.app_user_id,
                session.token_hash,
                format_timestamp(session.created_at),
                format_timestamp(session.last_activity),
                session.ip_address,
            ))
        return replaced

    def heartbeat(self, token: str) -> bool:
        """
        Record activity on a session.

        Returns:
            True if the session was active and is still active
        """
        if not token:
            return False
        token_hash = hash_token(token)
        now = self._clock()

        with self._db.connect() as conn:
            if self._idle_timeout is not None:
                cutoff = now - timedelta(seconds=self._idle_timeout)
                expired = conn.execute("""
                    UPDATE sessions SET is_active = 0
                    WHERE token_hash = ? AND is_active = 1 AND last_activity < ?
                """, (token_hash, format_timestamp(cutoff)))
                if expired.rowcount:
                    self._log.info("Idle session rejected on heartbeat")
                    return False

            result = conn.execute("""
                UPDATE sessions SET last_activity = ?
                WHERE token_hash = ? AND is_active = 1
            """, (format_timestamp(now), token_hash))
        return result.rowcount > 0

    def terminate(self, token: str) -> bool:
        """
        End a session (logout).

        Returns:
            True only for the call that moved the session to inactive
        """
        if not token:
            return False
        with self._db.connect() as conn:
            result = conn.execute("""
                UPDATE sessions SET is_active = 0
                WHERE token_hash = ? AND is_active = 1
            """, (hash_token(token),))
        return result.rowcount > 0

    def terminate_all(self, app_user_id: int) -> int:
        """
        Terminate every active session of a license holder.

        Returns:
            Number of sessions terminated
        """
        with self._db.connect() as conn:
            return self.terminate_all_within(conn, app_user_id)

    def terminate_all_within(self, conn: sqlite3.Connection, app_user_id: int) -> int:
        """Terminate a holder's active sessions inside the caller's transaction."""
        result = conn.execute("""
            UPDATE sessions SET is_active = 0
            WHERE app_user_id = ? AND is_active = 1
        """, (app_user_id,))
        if result.rowcount:
            self._log.info("Terminated %d session(s) for app_user %s", result.rowcount, app_user_id)
        return result.rowcount

    def reap_idle(self, max_idle_seconds: int, application_id: Optional[int] = None) -> int:
        """
        Terminate sessions idle for longer than ``max_idle_seconds``.

        Returns:
            Number of sessions terminated
        """
        if max_idle_seconds <= 0:
            raise ValueError("max_idle_seconds must be positive")
        cutoff = format_timestamp(self._clock() - timedelta(seconds=max_idle_seconds))

        with self._db.connect() as conn:
            if application_id is None:
                result = conn.execute("""
                    UPDATE sessions SET is_active = 0
                    WHERE is_active = 1 AND last_activity < ?
                """, (cutoff,))
            else:
                result = conn.execute("""
                    UPDATE sessions SET is_active = 0
                    WHERE application_id = ? AND is_active = 1 AND last_activity < ?
                """, (application_id, cutoff))
        return result.rowcount

    def list_active(self, application_id: int, app_user_id: Optional[int] = None) -> List[Session]:
        """Get active sessions of an application, most recently used first."""
        with self._db.connect() as conn:
            if app_user_id is None:
                rows = conn.execute("""
                    SELECT * FROM sessions
                    WHERE application_id = ? AND is_active = 1
                    ORDER BY last_activity DESC
                """, (application_id,)).fetchall()
            else:
                rows = conn.execute("""
                    SELECT * FROM sessions
                    WHERE application_id = ? AND app_user_id = ? AND is_active = 1
                    ORDER BY last_activity DESC
                """, (application_id, app_user_id)).fetchall()
        return [Session.from_row(row) for row in rows]

    def get_by_token(self, token: str) -> Optional[Session]:
        """Look up a session (active or not) by its raw token."""
        if not token:
            return None
        with self._db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE token_hash = ?", (hash_token(token),)
            ).fetchone()
        return Session.from_row(row) if row else None
