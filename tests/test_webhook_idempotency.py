import pytest

from subscription_service.extensions import db
from subscription_service.models import WebhookEvent
from subscription_service.webhooks.idempotency import (
    MAX_ERROR_LENGTH,
    claim_event,
    mark_event_processed,
    record_event_failure,
)

pytestmark = pytest.mark.webhook


def test_first_claim_creates_row_with_one_attempt(app):
    event = claim_event("evt_new", "invoice.payment_succeeded")
    db.session.commit()

    stored = WebhookEvent.query.filter_by(stripe_event_id="evt_new").one()
    assert stored is event
    assert stored.processed is False
    assert stored.processing_attempts == 1
    assert stored.event_type == "invoice.payment_succeeded"


def test_processed_event_is_not_claimed_again(app):
    event = claim_event("evt_done", "customer.subscription.updated")
    mark_event_processed(event)
    db.session.commit()

    assert claim_event("evt_done", "customer.subscription.updated") is None
    db.session.rollback()

    stored = WebhookEvent.query.filter_by(stripe_event_id="evt_done").one()
    assert stored.processing_attempts == 1
    assert stored.processed_at is not None


def test_failure_is_recorded_after_rollback(app):
    claim_event("evt_fail", "invoice.payment_failed")
    db.session.rollback()

    record_event_failure("evt_fail", "invoice.payment_failed", RuntimeError("database went away"))

    stored = WebhookEvent.query.filter_by(stripe_event_id="evt_fail").one()
    assert stored.processed is False
    assert stored.processing_attempts == 1
    assert stored.last_processing_error == "RuntimeError: database went away"


def test_failed_event_can_be_claimed_again(app):
    record_event_failure("evt_retry", "payment_intent.succeeded", ValueError("bad"))

    event = claim_event("evt_retry", "payment_intent.succeeded")
    mark_event_processed(event)
    db.session.commit()

    stored = WebhookEvent.query.filter_by(stripe_event_id="evt_retry").one()
    assert stored.processed is True
    assert stored.processing_attempts == 2
    assert stored.last_processing_error is None


def test_long_errors_are_truncated(app):
    record_event_failure("evt_long", "invoice.payment_failed", RuntimeError("x" * 5000))

    stored = WebhookEvent.query.filter_by(stripe_event_id="evt_long").one()
    assert len(stored.last_processing_error) == MAX_ERROR_LENGTH
