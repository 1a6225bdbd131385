"""
Outbound Webhooks
=================

Fire-and-forget delivery of significant authority events to the
endpoints an application has subscribed.

Delivery Properties:
- Deliveries run on a bounded thread pool, never on the caller's thread
- Each body is signed with the hook's secret (HMAC-SHA256)
- Failures are logged and dropped; they never reach the caller
- No retries (a receiver that missed an event can read the activity log)
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import secrets
import sqlite3
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Final, List, Optional, Protocol, Sequence

import requests

from phantomauth.core.config import WebhookConfig
from phantomauth.db.connection import Database, StoreError
from phantomauth.db.schema import TENANT_SCHEMA
from phantomauth.security.constants import WEBHOOK_EVENT_HEADER, WEBHOOK_SIGNATURE_HEADER
from phantomauth.utils.clock import Clock, format_timestamp, parse_timestamp, utcnow
from phantomauth.utils.validators import ValidationError, validate_string_safe


class WebhookEvent(Enum):
    """Events an application can subscribe to."""
    LOGIN_SUCCESS = "login.success"
    LOGIN_FAILED = "login.failed"
    HWID_BOUND = "hwid.bound"
    HWID_RESET = "hwid.reset"
    HWID_SET = "hwid.set"


class WebhookError(Exception):
    """Raised when a webhook cannot be delivered."""
    pass


class Notifier(Protocol):
    """Anything that accepts authority events."""

    def notify(self, application_id: int, event: WebhookEvent, payload: Dict[str, Any]) -> Any:
        ...


class NullNotifier:
    """Notifier that drops every event."""

    def notify(self, application_id: int, event: WebhookEvent, payload: Dict[str, Any]) -> None:
        return None


@dataclass
class Webhook:
    """
    Subscribed endpoint.

    Note: secret is never exposed in repr or str. An empty events list
    subscribes to every event.
    """
    id: int
    application_id: int
    url: str
    secret: str
    events: List[str] = field(default_factory=list)
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __repr__(self) -> str:
        return (
            f"Webhook(id={self.id!r}, application_id={self.application_id!r}, "
            f"url={self.url!r}, events={self.events!r}, is_active={self.is_active})"
        )

    def subscribes_to(self, event: WebhookEvent) -> bool:
        return self.is_active and (not self.events or event.value in self.events)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Webhook:
        return cls(
            id=row["id"],
            application_id=row["application_id"],
            url=row["url"],
            secret=row["secret"],
            events=json.loads(row["events"] or "[]"),
            is_active=bool(row["is_active"]),
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
        )


def sign_payload(secret: str, body: bytes) -> str:
    """Compute the signature header value for a request body."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def _validate_url(url: str) -> str:
    validate_string_safe(url, max_length=2048, field_name="url")
    if not url.startswith(("https://", "http://")):
        raise ValidationError("url must be an http(s) URL")
    return url


def _validate_events(events: Sequence[str | WebhookEvent]) -> List[str]:
    names: List[str] = []
    for event in events:
        value = event.value if isinstance(event, WebhookEvent) else event
        try:
            WebhookEvent(value)
        except ValueError:
            raise ValidationError(f"Unknown webhook event: {value!r}") from None
        if value not in names:
            names.append(value)
    return names


class WebhookRegistry:
    """
    Webhook subscriptions with SQLite backend.

    Usage:
        hooks = WebhookRegistry(db)
        hook = hooks.create(app_id, "https://example.com/hook", ["login.failed"])
        hooks.update(hook.id, is_active=False)
    """

    __slots__ = ("_db", "_clock")

    _SCHEMA: Final[str] = """
    CREATE TABLE IF NOT EXISTS webhooks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        application_id INTEGER NOT NULL
            REFERENCES applications(id) ON DELETE CASCADE,
        url TEXT NOT NULL,
        secret TEXT NOT NULL,
        events TEXT NOT NULL DEFAULT '[]',
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_webhooks_app ON webhooks(application_id, is_active);
    """

    def __init__(self, db: Database, clock: Clock = utcnow) -> None:
        self._db = db
        self._clock = clock
        self._db.initialize(TENANT_SCHEMA, self._SCHEMA)

    def create(
        self,
        application_id: int,
        url: str,
        events: Sequence[str | WebhookEvent] = (),
        secret: Optional[str] = None,
    ) -> Webhook:
        """
        Subscribe an endpoint.

        Args:
            application_id: Owning application
            url: http(s) endpoint
            events: Event names to deliver (empty for all)
            secret: Signing secret (generated when omitted)

        Raises:
            ValidationError: If the url or an event name is invalid
        """
        _validate_url(url)
        names = _validate_events(events)
        secret = secret or secrets.token_hex(32)
        now = format_timestamp(self._clock())

        with self._db.connect() as conn:
            cursor = conn.execute("""
                INSERT INTO webhooks (application_id, url, secret, events, is_active, created_at, updated_at)
                VALUES (?, ?, ?, ?, 1, ?, ?)
            """, (application_id, url, secret, json.dumps(names), now, now))
            hook_id = cursor.lastrowid
        return self.get(hook_id)

    def get(self, webhook_id: int) -> Optional[Webhook]:
        with self._db.connect() as conn:
            row = conn.execute("SELECT * FROM webhooks WHERE id = ?", (webhook_id,)).fetchone()
        return Webhook.from_row(row) if row else None

    def list_for_application(self, application_id: int, active_only: bool = False) -> List[Webhook]:
        query = "SELECT * FROM webhooks WHERE application_id = ?"
        if active_only:
            query += " AND is_active = 1"
        with self._db.connect() as conn:
            rows = conn.execute(query + " ORDER BY id", (application_id,)).fetchall()
        return [Webhook.from_row(row) for row in rows]

    def update(
        self,
        webhook_id: int,
        url: Optional[str] = None,
        events: Optional[Sequence[str | WebhookEvent]] = None,
        is_active: Optional[bool] = None,
    ) -> Optional[Webhook]:
        """Change a subscription; arguments left as None are untouched."""
        assignments: list[str] = []
        params: list[Any] = []
        if url is not None:
            assignments.append("url = ?")
            params.append(_validate_url(url))
        if events is not None:
            assignments.append("events = ?")
            params.append(json.dumps(_validate_events(events)))
        if is_active is not None:
            assignments.append("is_active = ?")
            params.append(1 if is_active else 0)
        if not assignments:
            raise ValidationError("Webhook update has no fields set")
        assignments.append("updated_at = ?")
        params.append(format_timestamp(self._clock()))

        with self._db.connect() as conn:
            result = conn.execute(
                f"UPDATE webhooks SET {', '.join(assignments)} WHERE id = ?",
                (*params, webhook_id),
            )
        if result.rowcount == 0:
            return None
        return self.get(webhook_id)

    def delete(self, webhook_id: int) -> bool:
        with self._db.connect() as conn:
            result = conn.execute("DELETE FROM webhooks WHERE id = ?", (webhook_id,))
        return result.rowcount > 0


class WebhookDispatcher:
    """
    Background delivery of events to subscribed webhooks.

    Usage:
        dispatcher = WebhookDispatcher(registry, config.webhooks)
        dispatcher.notify(app_id, WebhookEvent.LOGIN_FAILED, {"username": "alice"})
        ...
        dispatcher.shutdown()

    Notes:
        - notify() never raises; lookup and delivery errors are logged
        - The returned futures resolve to True when the endpoint accepted
          the delivery
    """

    __slots__ = ("_registry", "_config", "_clock", "_executor", "_closed", "_log")

    def __init__(
        self,
        registry: WebhookRegistry,
        config: Optional[WebhookConfig] = None,
        clock: Clock = utcnow,
    ) -> None:
        self._registry = registry
        self._config = config or WebhookConfig()
        self._clock = clock
        self._executor = ThreadPoolExecutor(
            max_workers=self._config.max_workers,
            thread_name_prefix="phantomauth-webhook",
        )
        self._closed = False
        self._log = logging.getLogger("phantomauth.webhooks")

    def notify(self, application_id: int, event: WebhookEvent, payload: Dict[str, Any]) -> List[Future]:
        """Queue delivery of an event to every subscribed hook."""
        if not self._config.enabled or self._closed:
            return []

        try:
            hooks = [
                hook for hook in self._registry.list_for_application(application_id, active_only=True)
                if hook.subscribes_to(event)
            ]
        except StoreError:
            self._log.exception("Webhook lookup failed for application %s", application_id)
            return []

        if not hooks:
            return []

        envelope = {
            "event": event.value,
            "application_id": application_id,
            "timestamp": format_timestamp(self._clock()),
            "data": payload,
        }
        body = json.dumps(envelope, sort_keys=True, default=str).encode("utf-8")

        futures: List[Future] = []
        for hook in hooks:
            try:
                futures.append(self._executor.submit(self._deliver, hook, event, body))
            except RuntimeError:
                # Executor shut down between the check above and submit
                self._log.warning("Webhook dispatcher closed, dropping %s", event.value)
                break
        return futures

    def _deliver(self, hook: Webhook, event: WebhookEvent, body: bytes) -> bool:
        headers = {
            "Content-Type": "application/json",
            WEBHOOK_EVENT_HEADER: event.value,
            WEBHOOK_SIGNATURE_HEADER: sign_payload(hook.secret, body),
        }
        try:
            response = requests.post(
                hook.url,
                data=body,
                headers=headers,
                timeout=self._config.timeout_seconds,
            )
            if response.status_code >= 400:
                raise WebhookError(f"HTTP {response.status_code}")
        except (requests.RequestException, WebhookError) as e:
            self._log.warning(
                "Webhook %s delivery of %s failed: %s",
                hook.id, event.value, e.__class__.__name__ if isinstance(e, requests.RequestException) else e,
            )
            return False

        self._log.debug("Webhook %s accepted %s", hook.id, event.value)
        return True

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting events and optionally wait for queued deliveries."""
        self._closed = True
        self._executor.shutdown(wait=wait)
