import logging
import uuid

from flask import Blueprint, jsonify, request
from flask_jwt_extended import get_jwt, get_jwt_identity, jwt_required

from subscription_service.errors import ValidationError
from subscription_service.services.plan_service import PlanService
from subscription_service.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

bp = Blueprint("subscriptions", __name__, url_prefix="/api/v1/subscriptions")


def _parse_uuid(value, field):
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a UUID", details={field: value}) from None


@bp.route("/plans", methods=["GET"])
def list_plans():
    plans = PlanService.list_active_plans()
    return jsonify({"plans": [plan.to_dict() for plan in plans]}), 200


@bp.route("", methods=["POST"])
@jwt_required()
def create_subscription():
    data = request.get_json(silent=True) or {}
    plan_id = _parse_uuid(data.get("plan_id"), "plan_id")

    email = data.get("email") or get_jwt().get("email")
    if not email:
        raise ValidationError("email is required")

    result = SubscriptionService.create_subscription(
        user_id=get_jwt_identity(),
        plan_id=plan_id,
        email=email,
    )
    return jsonify(result), 201


@bp.route("/me", methods=["GET"])
@jwt_required()
def my_subscriptions():
    subscriptions = SubscriptionService.get_user_subscriptions(get_jwt_identity())
    return jsonify({"subscriptions": [s.to_dict() for s in subscriptions]}), 200


@bp.route("/me/active", methods=["GET"])
@jwt_required()
def my_active_subscription():
    subscription = SubscriptionService.get_active_subscription(get_jwt_identity())
    return jsonify({"subscription": subscription.to_dict() if subscription else None}), 200


@bp.route("/<subscription_id>/cancel", methods=["POST"])
@jwt_required()
def cancel_subscription(subscription_id):
    subscription = SubscriptionService.cancel_subscription(
        user_id=get_jwt_identity(),
        subscription_id=_parse_uuid(subscription_id, "subscription_id"),
    )
    return jsonify({"subscription": subscription.to_dict()}), 200
