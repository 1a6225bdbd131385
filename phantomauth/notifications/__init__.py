"""
Notifications module - Outbound webhook delivery.
"""

from phantomauth.notifications.webhooks import (
    Notifier,
    NullNotifier,
    Webhook,
    WebhookDispatcher,
    WebhookError,
    WebhookEvent,
    WebhookRegistry,
    sign_payload,
)

__all__ = [
    "Notifier",
    "NullNotifier",
    "Webhook",
    "WebhookDispatcher",
    "WebhookError",
    "WebhookEvent",
    "WebhookRegistry",
    "sign_payload",
]
