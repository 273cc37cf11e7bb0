from phonepe_adapter.webhooks.events import (
    CanonicalWebhookEvent,
    MissingAuthorizationError,
    construct_webhook_event,
)
from phonepe_adapter.webhooks.reconciler import OrderCompletionReconciler, WebhookResult

__all__ = [
    "CanonicalWebhookEvent",
    "MissingAuthorizationError",
    "construct_webhook_event",
    "OrderCompletionReconciler",
    "WebhookResult",
]
