import time

import redis
from flask import Blueprint, current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from subscription_service.extensions import db, get_redis_client

bp = Blueprint("health", __name__)


def _check_database():
    start = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        latency = round((time.time() - start) * 1000, 2)
        return {"status": "ok", "latency_ms": latency}
    except SQLAlchemyError as e:
        db.session.rollback()
        return {"status": "error", "error": str(e)}


def _check_redis():
    client = get_redis_client()
    if client is None:
        return {"status": "skipped", "reason": "Redis not configured"}

    start = time.time()
    try:
        client.ping()
        latency = round((time.time() - start) * 1000, 2)
        return {"status": "ok", "latency_ms": latency}
    except redis.RedisError as e:
        return {"status": "error", "error": str(e)}


def _check_stripe():
    if not current_app.config.get("STRIPE_ENABLED", True):
        return {"status": "skipped", "reason": "Stripe disabled"}
    if not current_app.config.get("STRIPE_SECRET_KEY"):
        return {"status": "error", "error": "STRIPE_SECRET_KEY not set"}
    if not current_app.config.get("STRIPE_WEBHOOK_SECRET"):
        return {"status": "error", "error": "STRIPE_WEBHOOK_SECRET not set"}
    return {"status": "ok"}


def run_health_checks():
    """
    Readiness runner. Stripe is checked for configuration only; a network
    call per health check would count against the API rate limit.
    """
    started = time.time()

    checks = {
        "database": _check_database(),
        "redis": _check_redis(),
        "stripe": _check_stripe(),
    }

    overall = "ok"
    for c in checks.values():
        if c["status"] == "error":
            overall = "degraded"

    return {
        "status": overall,
        "timestamp": int(time.time()),
        "checks": checks,
        "duration_ms": round((time.time() - started) * 1000, 2),
        "environment": current_app.config.get("ENVIRONMENT", "unknown"),
    }


@bp.route("/health", methods=["GET"])
def health():
    return jsonify({
        "status": "ok",
        "service": current_app.config.get("APP_NAME"),
        "version": current_app.config.get("APP_VERSION"),
    }), 200


@bp.route("/health/ready", methods=["GET"])
def ready():
    result = run_health_checks()
    return jsonify(result), 200 if result["status"] == "ok" else 503
