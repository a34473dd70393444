from subscription_service.webhooks.dispatcher import (
    EVENT_HANDLERS,
    LOG_ONLY_EVENTS,
    WebhookDispatcher,
    build_dispatcher,
)
from subscription_service.webhooks.events import (
    Notification,
    RemoteInvoice,
    RemotePaymentIntent,
    RemoteSubscription,
)
from subscription_service.webhooks.extractor import EventExtractor

__all__ = [
    "EVENT_HANDLERS",
    "LOG_ONLY_EVENTS",
    "WebhookDispatcher",
    "build_dispatcher",
    "Notification",
    "RemoteInvoice",
    "RemotePaymentIntent",
    "RemoteSubscription",
    "EventExtractor",
]
