import logging

from sqlalchemy.exc import IntegrityError

from subscription_service.extensions import db
from subscription_service.models.webhook_event import WebhookEvent
from subscription_service.utils import utcnow

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000


def _lock(event_id):
    return (
        WebhookEvent.query
        .filter_by(stripe_event_id=event_id)
        .with_for_update()
        .first()
    )


def claim_event(event_id, event_type):
    """
    Claim a notification for processing in the current transaction.

    Returns None when the id was already processed. Otherwise returns the
    row, locked, with its attempt counter bumped.
    """
    event = _lock(event_id)
    if event is None:
        event = WebhookEvent(
            stripe_event_id=event_id,
            event_type=event_type,
            processed=False,
            processing_attempts=0,
        )
        db.session.add(event)
        try:
            db.session.flush()
        except IntegrityError:
            # Lost the insert race; the winner's row is now visible
            db.session.rollback()
            event = _lock(event_id)
            if event is None:
                raise

    if event.processed:
        logger.info(
            "Webhook already processed, skipping",
            extra={"event_id": event_id, "event_type": event_type},
        )
        return None

    event.processing_attempts += 1
    return event


def mark_event_processed(event):
    event.processed = True
    event.processed_at = utcnow()
    event.last_processing_error = None


def record_event_failure(event_id, event_type, error):
    """Persist the failure after the handler's transaction was rolled back."""
    message = f"{type(error).__name__}: {error}"[:MAX_ERROR_LENGTH]
    try:
        event = _lock(event_id)
        if event is None:
            event = WebhookEvent(
                stripe_event_id=event_id,
                event_type=event_type,
                processed=False,
                processing_attempts=0,
            )
            db.session.add(event)
        event.processing_attempts = (event.processing_attempts or 0) + 1
        event.last_processing_error = message
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Failed to record webhook failure", extra={"event_id": event_id})
        raise
    return event
