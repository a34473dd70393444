from datetime import datetime

from flask import Blueprint, jsonify, request
from flask_jwt_extended import get_jwt_identity, jwt_required

from subscription_service.errors import ValidationError
from subscription_service.extensions import db
from subscription_service.services.payout_service import PayoutService

bp = Blueprint("payouts", __name__, url_prefix="/api/v1/payouts")


def _parse_datetime(value, field):
    if not value:
        raise ValidationError(f"{field} is required")
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an ISO 8601 timestamp") from None
    return parsed.replace(tzinfo=None)


@bp.route("/earnings/pending", methods=["GET"])
@jwt_required()
def pending_earnings():
    return jsonify(PayoutService.get_pending_earnings(get_jwt_identity())), 200


@bp.route("", methods=["GET"])
@jwt_required()
def list_payouts():
    payouts = PayoutService.list_payouts(get_jwt_identity())
    return jsonify({"payouts": [p.to_dict() for p in payouts]}), 200


@bp.route("", methods=["POST"])
@jwt_required()
def create_payout():
    data = request.get_json(silent=True) or {}
    period_start = _parse_datetime(data.get("period_start"), "period_start")
    period_end = _parse_datetime(data.get("period_end"), "period_end")
    try:
        payout = PayoutService.create_payout(get_jwt_identity(), period_start, period_end)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return jsonify({"payout": payout.to_dict()}), 201
