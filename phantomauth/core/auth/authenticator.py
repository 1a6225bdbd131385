"""
Authentication Authority
========================

Login decision flow for application-scoped license holders, plus the
session and administrative operations exposed to the calling layer.

Decision Order:
1. Resolve the application and load the license holder
2. Deny-list probes (username, hwid, ip in configured order)
3. Lifecycle eligibility (expired, then paused)
4. Credential verification (Argon2id)
5. Hardware binding resolution (compare-and-set on first use)
6. Session issuance

Security Properties:
- Unknown holders still cost one Argon2 verification
- Blocked identities never reach credential verification
- Exactly one activity entry per attempt, including internal errors
- Optional opaque failures: every rejection looks the same to the caller
- Webhook delivery can never change the outcome of a login
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from phantomauth.core.applications import ApplicationManager
from phantomauth.core.auth.account_lifecycle import AccountState, AppUser, evaluate_eligibility
from phantomauth.core.auth.argon2_auth import Argon2Hasher
from phantomauth.core.auth.session_control import Session, SessionRegistry
from phantomauth.core.auth.user_manager import AppUserManager
from phantomauth.core.bootstrap import OperatorDirectory
from phantomauth.core.config import AuthorityConfig, SecurityConfig, warn_if_weak_hashing
from phantomauth.core.device.hwid_binding import BindingOutcome, HardwareBindingManager
from phantomauth.core.logging import configure_logging
from phantomauth.db.connection import Database, StoreError
from phantomauth.notifications.webhooks import (
    Notifier,
    NullNotifier,
    WebhookDispatcher,
    WebhookEvent,
    WebhookRegistry,
)
from phantomauth.security.activity import ActivityEvent, ActivityLog
from phantomauth.security.blacklist import BlacklistEntry, BlacklistType, DenyList
from phantomauth.utils.clock import Clock, utcnow


class AuthErrorKind(Enum):
    """Reasons a login attempt can fail."""
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_BLOCKED = "account_blocked"
    ACCOUNT_EXPIRED = "account_expired"
    ACCOUNT_PAUSED = "account_paused"
    ACCOUNT_DELETED = "account_deleted"
    HWID_MISMATCH = "hwid_mismatch"
    INTERNAL_ERROR = "internal_error"


_STATE_ERRORS: Dict[AccountState, AuthErrorKind] = {
    AccountState.DELETED: AuthErrorKind.ACCOUNT_DELETED,
    AccountState.EXPIRED: AuthErrorKind.ACCOUNT_EXPIRED,
    AccountState.PAUSED: AuthErrorKind.ACCOUNT_PAUSED,
}


@dataclass(frozen=True)
class AuthResult:
    """Outcome of a login attempt as seen by the caller."""
    ok: bool
    session_token: Optional[str] = None
    error: Optional[AuthErrorKind] = None
    session: Optional[Session] = None

    @classmethod
    def success(cls, session: Session) -> AuthResult:
        return cls(ok=True, session_token=session.token, session=session)

    @classmethod
    def failure(cls, error: AuthErrorKind) -> AuthResult:
        return cls(ok=False, error=error)


@dataclass
class _Attempt:
    """Internal record of one decision, before it is surfaced."""
    error: Optional[AuthErrorKind] = None
    account: Optional[AppUser] = None
    session: Optional[Session] = None
    binding: Optional[BindingOutcome] = None
    recordable: bool = True
    details: Dict[str, Any] = field(default_factory=dict)


class AuthenticationAuthority:
    """
    Multi-tenant license authority.

    Usage:
        authority = AuthenticationAuthority.from_config(AuthorityConfig.load())

        result = authority.authenticate(app_id, "alice", "secret123", "HW-1")
        if result.ok:
            token = result.session_token
            authority.heartbeat(token)
            authority.terminate(token)
        else:
            handle(result.error)

        authority.close()
    """

    __slots__ = (
        "_hasher", "_activity", "_operators", "_applications",
        "_users", "_binding", "_deny_list", "_sessions", "_webhooks",
        "_notifier", "_security", "_clock", "_log",
    )

    def __init__(
        self,
        hasher: Argon2Hasher,
        activity: ActivityLog,
        operators: OperatorDirectory,
        applications: ApplicationManager,
        users: AppUserManager,
        binding: HardwareBindingManager,
        deny_list: DenyList,
        sessions: SessionRegistry,
        webhooks: WebhookRegistry,
        notifier: Optional[Notifier] = None,
        security: Optional[SecurityConfig] = None,
        clock: Clock = utcnow,
    ) -> None:
        self._hasher = hasher
        self._activity = activity
        self._operators = operators
        self._applications = applications
        self._users = users
        self._binding = binding
        self._deny_list = deny_list
        self._sessions = sessions
        self._webhooks = webhooks
        self._notifier = notifier or NullNotifier()
        self._security = security or SecurityConfig()
        self._clock = clock
        self._log = logging.getLogger("phantomauth.auth")

    @classmethod
    def from_config(
        cls,
        config: AuthorityConfig,
        notifier: Optional[Notifier] = None,
        clock: Clock = utcnow,
        setup_logging: bool = False,
    ) -> AuthenticationAuthority:
        """
        Build an authority and all of its components from configuration.

        Args:
            config: Loaded configuration
            notifier: Event sink (defaults to webhook delivery)
            clock: Time source shared by every component
            setup_logging: Install the redacting package handlers
                from the logging section
        """
        security = config.security
        warn_if_weak_hashing(security)
        config.ensure_directories()
        if setup_logging:
            configure_logging(config.logging, config.paths.log_dir)

        db = Database(config.paths.database_path)
        hasher = Argon2Hasher(
            memory_cost=security.argon2_memory_cost,
            time_cost=security.argon2_time_cost,
            parallelism=security.argon2_parallelism,
        )
        activity = ActivityLog(db, clock)
        operators = OperatorDirectory(db, config.bootstrap, clock)
        applications = ApplicationManager(db, activity, clock)
        webhooks = WebhookRegistry(db, clock)
        if notifier is None:
            notifier = WebhookDispatcher(webhooks, config.webhooks, clock)
        sessions = SessionRegistry(
            db,
            token_bytes=security.session_token_bytes,
            idle_timeout_seconds=security.session_idle_timeout_seconds,
            clock=clock,
        )
        binding = HardwareBindingManager(db, activity, notifier, clock)
        users = AppUserManager(db, hasher, activity, binding, sessions, clock)
        deny_list = DenyList(db, activity, clock)
        operators.seed()

        return cls(
            hasher=hasher,
            activity=activity,
            operators=operators,
            applications=applications,
            users=users,
            binding=binding,
            deny_list=deny_list,
            sessions=sessions,
            webhooks=webhooks,
            notifier=notifier,
            security=security,
            clock=clock,
        )

    # Components ---------------------------------------------------------

    @property
    def activity(self) -> ActivityLog:
        return self._activity

    @property
    def operators(self) -> OperatorDirectory:
        return self._operators

    @property
    def applications(self) -> ApplicationManager:
        return self._applications

    @property
    def users(self) -> AppUserManager:
        return self._users

    @property
    def deny_list(self) -> DenyList:
        return self._deny_list

    @property
    def sessions(self) -> SessionRegistry:
        return self._sessions

    @property
    def webhooks(self) -> WebhookRegistry:
        return self._webhooks

    # Login --------------------------------------------------------------

    def authenticate(
        self,
        application_id: int,
        username: str,
        password: str,
        hwid: Optional[str],
        ip_address: Optional[str] = None,
    ) -> AuthResult:
        """
        Decide a login attempt.

        Never raises: storage and unexpected failures are reported as
        INTERNAL_ERROR.

        Returns:
            AuthResult with a session token on success
        """
        try:
            attempt = self._decide(application_id, username, password, hwid, ip_address)
        except Exception:
            self._log.exception("Login for application %s failed internally", application_id)
            attempt = _Attempt(error=AuthErrorKind.INTERNAL_ERROR)

        if not self._record_attempt(application_id, username, hwid, ip_address, attempt):
            if attempt.session is not None:
                # No audit entry, no session
                self._discard_session(attempt.session)
            attempt = _Attempt(error=AuthErrorKind.INTERNAL_ERROR, account=attempt.account)

        self._notify_attempt(application_id, username, attempt)

        if attempt.error is None:
            return AuthResult.success(attempt.session)
        return AuthResult.failure(self._surface(attempt.error))

    def _decide(
        self,
        application_id: int,
        username: str,
        password: str,
        hwid: Optional[str],
        ip_address: Optional[str],
    ) -> _Attempt:
        application = self._applications.get(application_id)
        if application is None:
            self._hasher.verify_dummy(password)
            self._log.warning("Login attempt for unknown application %s", application_id)
            return _Attempt(error=AuthErrorKind.INVALID_CREDENTIALS, recordable=False)
        if not application.is_active:
            self._hasher.verify_dummy(password)
            return _Attempt(
                error=AuthErrorKind.INVALID_CREDENTIALS,
                details={"cause": "application_inactive"},
            )

        # 1. Lookup
        account = self._users.get_by_username(application_id, username) if username else None
        if account is None:
            self._hasher.verify_dummy(password)
            return _Attempt(
                error=AuthErrorKind.INVALID_CREDENTIALS,
                details={"cause": "unknown_user"},
            )

        # 2. Deny-list
        blocked = self._deny_list.first_match(application_id, self._probes(username, hwid, ip_address))
        if blocked is not None:
            return _Attempt(
                error=AuthErrorKind.ACCOUNT_BLOCKED,
                account=account,
                details=_block_details(blocked),
            )

        # 3. Lifecycle
        state = evaluate_eligibility(account, self._clock())
        if not state.is_eligible:
            return _Attempt(error=_STATE_ERRORS[state], account=account)

        # 4. Credentials
        if not self._hasher.verify(password, account.password_hash):
            return _Attempt(
                error=AuthErrorKind.INVALID_CREDENTIALS,
                account=account,
                details={"cause": "wrong_password"},
            )

        # 5. Hardware binding
        binding = self._binding.resolve_binding(account, hwid)
        if binding is BindingOutcome.MISMATCH:
            return _Attempt(error=AuthErrorKind.HWID_MISMATCH, account=account, binding=binding)

        # 6. Session
        session = self._sessions.open(
            application_id,
            account.id,
            ip_address=ip_address,
            replace_existing=self._security.single_session_per_account,
        )

        self._after_success(account, password)
        return _Attempt(
            account=account,
            session=session,
            binding=binding,
            details={"session_id": session.id, "binding": binding.value},
        )

    def _probes(self, username: str, hwid: Optional[str], ip_address: Optional[str]) -> List[tuple[BlacklistType, Optional[str]]]:
        values = {"username": username, "hwid": hwid, "ip": ip_address}
        return [
            (BlacklistType(kind), values[kind])
            for kind in self._security.blacklist_probe_order
            if values.get(kind)
        ]

    def _after_success(self, account: AppUser, password: str) -> None:
        try:
            if self._hasher.needs_rehash(account.password_hash):
                self._users.update_password_hash(account.id, self._hasher.hash(password))
                self._log.info("Password hash upgraded for app_user %s", account.id)
            self._users.record_login(account.id)
        except StoreError:
            self._log.exception("Post-login bookkeeping failed for app_user %s", account.id)

    def _record_attempt(
        self,
        application_id: int,
        username: str,
        hwid: Optional[str],
        ip_address: Optional[str],
        attempt: _Attempt,
    ) -> bool:
        if not attempt.recordable:
            # Activity rows require an existing application
            return True

        details: Dict[str, Any] = {"username": username, "hwid": hwid, "ip": ip_address}
        details.update(attempt.details)
        if attempt.error is None:
            event = ActivityEvent.LOGIN_SUCCESS
        else:
            event = ActivityEvent.LOGIN_FAILED
            details["reason"] = attempt.error.value

        try:
            self._activity.record(
                application_id,
                event,
                app_user_id=attempt.account.id if attempt.account else None,
                details=details,
            )
        except (StoreError, sqlite3.Error):
            self._log.exception("Activity entry for login on application %s was not written", application_id)
            return False
        return True

    def _discard_session(self, session: Session) -> None:
        try:
            self._sessions.terminate(session.token)
        except StoreError:
            self._log.exception("Could not terminate unaudited session %s", session.id)

    def _notify_attempt(self, application_id: int, username: str, attempt: _Attempt) -> None:
        if not attempt.recordable:
            return
        payload: Dict[str, Any] = {
            "username": username,
            "app_user_id": attempt.account.id if attempt.account else None,
        }
        try:
            if attempt.error is None:
                self._notifier.notify(application_id, WebhookEvent.LOGIN_SUCCESS, payload)
                if attempt.binding is BindingOutcome.FIRST_BIND:
                    self._notifier.notify(
                        application_id,
                        WebhookEvent.HWID_BOUND,
                        {**payload, "hwid": attempt.account.hwid},
                    )
            else:
                self._notifier.notify(
                    application_id,
                    WebhookEvent.LOGIN_FAILED,
                    {**payload, "reason": attempt.error.value},
                )
        except Exception:
            self._log.exception("Notifier failed for application %s", application_id)

    def _surface(self, error: AuthErrorKind) -> AuthErrorKind:
        if error is AuthErrorKind.ACCOUNT_DELETED:
            return AuthErrorKind.INVALID_CREDENTIALS
        if self._security.opaque_failures and error is not AuthErrorKind.INTERNAL_ERROR:
            return AuthErrorKind.INVALID_CREDENTIALS
        return error

    # Sessions -----------------------------------------------------------

    def heartbeat(self, session_token: str) -> bool:
        try:
            return self._sessions.heartbeat(session_token)
        except StoreError:
            self._log.exception("Heartbeat failed")
            return False

    def terminate(self, session_token: str) -> bool:
        """End a session; True only for the call that ended it."""
        try:
            session = self._sessions.get_by_token(session_token)
            if session is None or not self._sessions.terminate(session_token):
                return False
        except StoreError:
            self._log.exception("Session termination failed")
            return False

        try:
            self._activity.record(
                session.application_id,
                ActivityEvent.SESSION_TERMINATED,
                app_user_id=session.app_user_id,
                details={"session_id": session.id},
            )
        except (StoreError, sqlite3.Error):
            self._log.exception("Session %s ended but its activity entry was not written", session.id)
        return True

    def list_active_sessions(self, application_id: int) -> List[Session]:
        return self._sessions.list_active(application_id)

    def reap_idle_sessions(self, max_idle_seconds: Optional[int] = None) -> int:
        """
        Terminate idle sessions across all applications.

        Args:
            max_idle_seconds: Idle cutoff (defaults to the configured
                session idle timeout)

        Returns:
            Number of sessions terminated (0 when no cutoff is configured)

        Raises:
            ValueError: If max_idle_seconds is given and not positive
        """
        if max_idle_seconds is not None:
            cutoff = max_idle_seconds
        else:
            cutoff = self._security.session_idle_timeout_seconds
        if cutoff is None:
            return 0
        reaped = self._sessions.reap_idle(cutoff)
        if reaped:
            self._log.info("Reaped %d idle session(s)", reaped)
        return reaped

    # Administration -----------------------------------------------------

    def pause_account(self, app_user_id: int) -> bool:
        return self._users.pause(app_user_id)

    def unpause_account(self, app_user_id: int) -> bool:
        return self._users.unpause(app_user_id)

    def reset_hwid(self, app_user_id: int) -> bool:
        return self._users.reset_hwid(app_user_id)

    def force_set_hwid(self, app_user_id: int, hwid: str) -> bool:
        return self._users.set_hwid(app_user_id, hwid)

    def add_blacklist_entry(
        self,
        application_id: Optional[int],
        entry_type: str | BlacklistType,
        value: str,
        reason: Optional[str] = None,
    ) -> BlacklistEntry:
        return self._deny_list.add(application_id, entry_type, value, reason)

    def remove_blacklist_entry(self, entry_id: int) -> bool:
        return self._deny_list.remove(entry_id)

    def close(self) -> None:
        """Drain pending webhook deliveries."""
        if isinstance(self._notifier, WebhookDispatcher):
            self._notifier.shutdown(wait=True)


def _block_details(entry: BlacklistEntry) -> Dict[str, Any]:
    return {
        "blacklist_entry_id": entry.id,
        "blacklist_type": entry.type.value,
        "global": entry.is_global,
    }
