import json
import logging

from flask import Blueprint, jsonify, request

from subscription_service.errors import WebhookSignatureError
from subscription_service.services.stripe_service import get_stripe_service
from subscription_service.webhooks import build_dispatcher

logger = logging.getLogger(__name__)

bp = Blueprint("webhooks", __name__, url_prefix="/api/v1/webhooks")


@bp.route("/stripe", methods=["POST"])
def stripe_webhook():
    """
    Stripe webhook endpoint.

    400 when the signature or payload is bad (not retried), 500 when
    processing fails (Stripe redelivers), 200 otherwise, duplicates included.
    """
    payload = request.get_data()
    sig_header = request.headers.get("Stripe-Signature")

    stripe_service = get_stripe_service()
    stripe_service.construct_event(payload, sig_header)

    # Dispatch on the plain JSON so handlers never depend on SDK object shapes
    try:
        envelope = json.loads(payload)
    except ValueError as e:
        raise WebhookSignatureError("Invalid webhook payload") from e

    build_dispatcher(stripe_service).handle_notification(envelope)
    return jsonify({"status": "success"}), 200
