from unittest.mock import patch

import pytest
from sqlalchemy.orm.exc import StaleDataError

from subscription_service.errors import (
    ActiveSubscriptionExistsError,
    RemoteProcessorUnavailable,
    SubscriptionRequestInProgressError,
    WebhookProcessingError,
)
from subscription_service.services.stripe_service import StripeDisabledError, StripeMisconfiguredError

LIST_SUBSCRIPTIONS = "subscription_service.api.subscriptions.SubscriptionService.get_user_subscriptions"


@pytest.mark.parametrize(
    "error, status, code",
    [
        (ActiveSubscriptionExistsError(), 409, "ACTIVE_SUBSCRIPTION_EXISTS"),
        (SubscriptionRequestInProgressError(), 409, "SUBSCRIPTION_REQUEST_IN_PROGRESS"),
        (RemoteProcessorUnavailable(), 503, "REMOTE_PROCESSOR_UNAVAILABLE"),
        (StripeDisabledError(), 503, "STRIPE_DISABLED"),
        (StripeMisconfiguredError("STRIPE_SECRET_KEY"), 503, "STRIPE_MISCONFIGURED"),
        (StaleDataError("version mismatch"), 409, "CONCURRENT_MODIFICATION"),
    ],
)
def test_errors_render_as_json(client, auth_headers, user_id, error, status, code):
    with patch(LIST_SUBSCRIPTIONS, side_effect=error):
        response = client.get("/api/v1/subscriptions/me", headers=auth_headers(user_id))

    assert response.status_code == status
    body = response.get_json()
    assert body["error"] == code
    assert body["path"] == "/api/v1/subscriptions/me"


def test_details_are_included(client, auth_headers, user_id):
    error = ActiveSubscriptionExistsError(details={"subscription_id": "abc"})
    with patch(LIST_SUBSCRIPTIONS, side_effect=error):
        response = client.get("/api/v1/subscriptions/me", headers=auth_headers(user_id))

    assert response.get_json()["details"] == {"subscription_id": "abc"}


def test_processing_error_carries_event_identity():
    error = WebhookProcessingError("boom", event_id="evt_1", event_type="invoice.payment_failed")

    assert error.status_code == 500
    assert error.to_dict() == {
        "error": "WEBHOOK_PROCESSING_FAILED",
        "message": "boom",
        "details": {"event_id": "evt_1", "event_type": "invoice.payment_failed"},
    }
