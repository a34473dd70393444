# subscription_service/extensions.py
"""
Flask extensions initialization module.
"""

import logging

import redis
from flask import jsonify
from flask_jwt_extended import JWTManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
jwt = JWTManager()
migrate = Migrate()
redis_client = None

logger = logging.getLogger(__name__)


def init_extensions(app):
    """Initialize all Flask extensions."""
    db.init_app(app)
    logger.info("SQLAlchemy initialized")

    migrate.init_app(app, db)
    logger.info("Flask-Migrate initialized")

    jwt.init_app(app)
    setup_jwt_callbacks()
    logger.info("JWT Manager initialized")

    init_redis(app)
    return app


def init_redis(app):
    """Create the Redis client used for request locks and health checks."""
    global redis_client
    if app.testing:
        redis_client = None
        return

    redis_url = app.config.get("REDIS_URL")
    if not redis_url:
        logger.warning("REDIS_URL not configured; subscription request locks are unavailable")
        redis_client = None
        return

    # Connection is lazy; failures surface on first use
    redis_client = redis.from_url(
        redis_url,
        decode_responses=True,
        socket_timeout=5,
        socket_connect_timeout=5,
        retry_on_timeout=True,
        health_check_interval=30,
    )
    logger.info("Redis client configured", extra={"redis_url": redis_url.split("@")[-1]})


def get_redis_client():
    return redis_client


def setup_jwt_callbacks():
    """Render JWT failures as JSON."""

    @jwt.expired_token_loader
    def expired_token_callback(jwt_header, jwt_payload):
        return jsonify({
            "error": "token_expired",
            "message": "The token has expired. Please refresh your token.",
        }), 401

    @jwt.invalid_token_loader
    def invalid_token_callback(error):
        return jsonify({
            "error": "invalid_token",
            "message": "Invalid token. Please provide a valid authentication token.",
        }), 401

    @jwt.unauthorized_loader
    def missing_token_callback(error):
        return jsonify({
            "error": "authorization_required",
            "message": "Authentication required. Please provide a valid token.",
        }), 401


__all__ = ["db", "jwt", "migrate", "init_extensions", "get_redis_client"]
