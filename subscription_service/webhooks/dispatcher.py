import logging

import sentry_sdk
from sqlalchemy.exc import SQLAlchemyError

from subscription_service.errors import WebhookProcessingError
from subscription_service.extensions import db
from subscription_service.observability.metrics import metrics
from subscription_service.webhooks.events import Notification
from subscription_service.webhooks.extractor import EventExtractor
from subscription_service.webhooks.guard import DuplicateSubscriptionGuard
from subscription_service.webhooks.handlers import ReconciliationHandlers
from subscription_service.webhooks.idempotency import (
    claim_event,
    mark_event_processed,
    record_event_failure,
)

logger = logging.getLogger(__name__)

EVENT_HANDLERS = {
    "customer.subscription.created": "subscription_created",
    "customer.subscription.updated": "subscription_updated",
    "customer.subscription.deleted": "subscription_deleted",
    "invoice.payment_succeeded": "invoice_payment_succeeded",
    "invoice.payment_failed": "invoice_payment_failed",
    "payment_intent.succeeded": "payment_intent_succeeded",
    "payment_intent.payment_failed": "payment_intent_failed",
}

LOG_ONLY_EVENTS = frozenset({
    "customer.created",
    "customer.updated",
    "customer.deleted",
    "setup_intent.created",
    "setup_intent.succeeded",
    "setup_intent.setup_failed",
    "setup_intent.canceled",
    "setup_intent.requires_action",
    "charge.succeeded",
    "invoice.created",
    "invoice.finalized",
    "invoice.paid",
    "invoice.upcoming",
    "payment_method.attached",
})


class WebhookDispatcher:
    """
    Routes a verified processor notification to its handler.

    Claim, handler writes and the processed mark commit together. A failure
    rolls all of it back, records the attempt and raises
    WebhookProcessingError so the processor redelivers.
    """

    def __init__(self, stripe_service, extractor=None, guard=None):
        self.stripe_service = stripe_service
        self.extractor = extractor or EventExtractor(stripe_service)
        self.guard = guard or DuplicateSubscriptionGuard(stripe_service)
        self.handlers = ReconciliationHandlers(self.extractor, self.guard)

    def handler_for(self, event_type):
        name = EVENT_HANDLERS.get(event_type)
        return getattr(self.handlers, name) if name else None

    def handle_notification(self, raw_envelope):
        notification = Notification.from_envelope(raw_envelope)
        log_extra = {"event_id": notification.id, "event_type": notification.type}

        handler = self.handler_for(notification.type)
        if handler is None:
            if notification.type in LOG_ONLY_EVENTS:
                logger.info("Webhook received, no action required", extra=log_extra)
            else:
                logger.debug("Unhandled webhook event type", extra=log_extra)
            metrics.record_webhook_event(notification.type, "ignored")
            return

        try:
            event = claim_event(notification.id, notification.type)
            if event is None:
                db.session.rollback()
                metrics.record_webhook_event(notification.type, "duplicate")
                return

            handler(notification)
            mark_event_processed(event)
            db.session.commit()
        except Exception as exc:
            db.session.rollback()
            logger.exception("Webhook processing failed", extra=log_extra)
            sentry_sdk.capture_exception(exc)
            metrics.record_webhook_event(notification.type, "failed")
            try:
                record_event_failure(notification.id, notification.type, exc)
            except SQLAlchemyError:
                logger.error("Webhook failure could not be recorded", extra=log_extra)
            raise WebhookProcessingError(
                f"Failed to process {notification.type}",
                event_id=notification.id,
                event_type=notification.type,
            ) from exc

        metrics.record_webhook_event(notification.type, "processed")
        logger.info(
            "Webhook processed",
            extra={**log_extra, "attempt": event.processing_attempts},
        )


def build_dispatcher(stripe_service=None):
    if stripe_service is None:
        from subscription_service.services.stripe_service import get_stripe_service

        stripe_service = get_stripe_service()
    return WebhookDispatcher(stripe_service)
