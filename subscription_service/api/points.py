from flask import Blueprint, jsonify, request
from flask_jwt_extended import get_jwt_identity, jwt_required

from subscription_service.errors import ValidationError
from subscription_service.extensions import db
from subscription_service.services.points_service import PointsService

bp = Blueprint("points", __name__, url_prefix="/api/v1/points")


def _int_arg(name, default, maximum=None):
    try:
        value = int(request.args.get(name, default))
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer") from None
    if value < 1:
        raise ValidationError(f"{name} must be at least 1")
    return min(value, maximum) if maximum else value


@bp.route("/wallet", methods=["GET"])
@jwt_required()
def get_wallet():
    user_id = get_jwt_identity()
    wallet = PointsService.get_wallet(user_id)
    if wallet is None:
        return jsonify({
            "user_id": user_id,
            "total_points": 0,
            "lifetime_earned": 0,
            "lifetime_spent": 0,
        }), 200
    return jsonify(wallet.to_dict()), 200


@bp.route("/transactions", methods=["GET"])
@jwt_required()
def get_transactions():
    page = _int_arg("page", 1)
    per_page = _int_arg("per_page", 20, maximum=100)
    pagination = PointsService.get_transaction_history(get_jwt_identity(), page=page, per_page=per_page)
    return jsonify({
        "transactions": [t.to_dict() for t in pagination.items],
        "page": pagination.page,
        "per_page": pagination.per_page,
        "total": pagination.total,
        "pages": pagination.pages,
    }), 200


@bp.route("/validate", methods=["POST"])
@jwt_required()
def validate_points():
    data = request.get_json(silent=True) or {}
    result = PointsService.validate_points(get_jwt_identity(), data.get("required_points"))
    return jsonify(result), 200


@bp.route("/redeem", methods=["POST"])
@jwt_required()
def redeem_points():
    data = request.get_json(silent=True) or {}
    description = data.get("description") or "Points redemption"
    try:
        entry = PointsService.redeem_points(
            user_id=get_jwt_identity(),
            points=data.get("points"),
            description=description,
            reference_type=data.get("reference_type"),
            reference_id=data.get("reference_id"),
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return jsonify({
        "transaction": entry.to_dict(),
        "balance": PointsService.get_balance(entry.user_id),
    }), 200
