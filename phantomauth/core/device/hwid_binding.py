"""
Hardware Binding Manager
========================

Binds each license holder to a single hardware fingerprint (HWID).

Usage Pattern:
1. First successful login: the presented HWID is bound to the account
2. Every later login: the presented HWID must equal the bound one
3. On mismatch: hard failure, the login is rejected
4. Administrators may reset the binding or force a specific HWID

Security Properties:
- First bind is a compare-and-set (``WHERE hwid IS NULL``): of two
  concurrent first logins from different devices exactly one wins
- Constant-time comparison of fingerprints
- Reset/force-set are administrative only, never reachable from login
"""

from __future__ import annotations

import hmac
import logging
from enum import Enum
from typing import Optional

from phantomauth.core.auth.account_lifecycle import AppUser
from phantomauth.db.connection import Database
from phantomauth.notifications.webhooks import Notifier, NullNotifier, WebhookEvent
from phantomauth.security.activity import ActivityEvent, ActivityLog
from phantomauth.utils.clock import Clock, format_timestamp, utcnow
from phantomauth.utils.validators import ValidationError, validate_hwid


class BindingOutcome(Enum):
    """Result of resolving a presented HWID against an account."""
    BOUND = "bound"            # matches the existing binding
    FIRST_BIND = "first_bind"  # account was unbound and is now bound
    MISMATCH = "mismatch"      # bound to a different device

    @property
    def is_success(self) -> bool:
        return self is not BindingOutcome.MISMATCH


def hwid_matches(stored: Optional[str], presented: Optional[str]) -> bool:
    """Constant-time equality of two fingerprints; None never matches."""
    if stored is None or presented is None:
        return False
    return hmac.compare_digest(stored.encode("utf-8"), presented.encode("utf-8"))


class HardwareBindingManager:
    """
    HWID binding, reset and override for license holders.

    Usage:
        binding = HardwareBindingManager(db, activity)

        outcome = binding.resolve_binding(account, presented_hwid)
        if outcome is BindingOutcome.MISMATCH:
            # HARD FAILURE - reject the login
            ...

        binding.reset_binding(account)          # admin
        binding.force_set_binding(account, hw)  # admin
    """

    __slots__ = ("_db", "_activity", "_notifier", "_clock", "_log")

    def __init__(
        self,
        db: Database,
        activity: ActivityLog,
        notifier: Optional[Notifier] = None,
        clock: Clock = utcnow,
    ) -> None:
        self._db = db
        self._activity = activity
        self._notifier = notifier or NullNotifier()
        self._clock = clock
        self._log = logging.getLogger("phantomauth.hwid")

    def resolve_binding(self, account: AppUser, presented_hwid: Optional[str]) -> BindingOutcome:
        """
        Resolve the presented HWID against the account's binding.

        An unbound account is bound to a non-empty presented HWID. An
        empty or malformed HWID (see validate_hwid) never binds and never
        matches.

        Returns:
            BOUND, FIRST_BIND or MISMATCH

        Raises:
            StoreError: If the conditional update fails
        """
        if not presented_hwid:
            return BindingOutcome.MISMATCH
        try:
            validate_hwid(presented_hwid)
        except ValidationError:
            self._log.warning("Malformed HWID presented for app_user %s", account.id)
            return BindingOutcome.MISMATCH

        if account.hwid is not None:
            if hwid_matches(account.hwid, presented_hwid):
                return BindingOutcome.BOUND
            self._log.warning("HWID mismatch for app_user %s", account.id)
            return BindingOutcome.MISMATCH

        with self._db.connect(immediate=True) as conn:
            result = conn.execute("""
                UPDATE app_users
                SET hwid = ?, updated_at = ?
                WHERE id = ? AND hwid IS NULL
            """, (presented_hwid, format_timestamp(self._clock()), account.id))

            if result.rowcount == 1:
                account.hwid = presented_hwid
                self._log.info("HWID bound on first use for app_user %s", account.id)
                return BindingOutcome.FIRST_BIND

            # Lost the race (or the row vanished); compare against the winner
            row = conn.execute(
                "SELECT hwid FROM app_users WHERE id = ?", (account.id,)
            ).fetchone()

        current = row["hwid"] if row else None
        account.hwid = current
        if hwid_matches(current, presented_hwid):
            return BindingOutcome.BOUND

        self._log.warning("HWID first-bind lost to another device for app_user %s", account.id)
        return BindingOutcome.MISMATCH

    def reset_binding(self, account: AppUser) -> bool:
        """
        Clear the account's HWID so the next login binds afresh.

        Returns:
            True if the account exists
        """
        with self._db.connect() as conn:
            result = conn.execute(
                "UPDATE app_users SET hwid = NULL, updated_at = ? WHERE id = ?",
                (format_timestamp(self._clock()), account.id),
            )
        if result.rowcount == 0:
            return False

        previous = account.hwid
        account.hwid = None
        self._activity.record(
            account.application_id,
            ActivityEvent.HWID_RESET,
            app_user_id=account.id,
            details={"had_binding": previous is not None},
        )
        self._notifier.notify(
            account.application_id,
            WebhookEvent.HWID_RESET,
            {"app_user_id": account.id, "username": account.username},
        )
        self._log.info("HWID reset for app_user %s", account.id)
        return True

    def force_set_binding(self, account: AppUser, hwid: str) -> bool:
        """
        Bind the account to ``hwid`` regardless of its current binding.

        Returns:
            True if the account exists

        Raises:
            ValidationError: If hwid is empty or malformed
        """
        validate_hwid(hwid)
        with self._db.connect() as conn:
            result = conn.execute(
                "UPDATE app_users SET hwid = ?, updated_at = ? WHERE id = ?",
                (hwid, format_timestamp(self._clock()), account.id),
            )
        if result.rowcount == 0:
            return False

        account.hwid = hwid
        self._activity.record(
            account.application_id,
            ActivityEvent.HWID_SET,
            app_user_id=account.id,
            details={"hwid": hwid},
        )
        self._notifier.notify(
            account.application_id,
            WebhookEvent.HWID_SET,
            {"app_user_id": account.id, "username": account.username, "hwid": hwid},
        )
        self._log.info("HWID force-set for app_user %s", account.id)
        return True
