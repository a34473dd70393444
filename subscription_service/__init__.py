"""
Flask application factory for the subscription service.
"""

import logging
import sys
from typing import Optional

import sentry_sdk
from flask import Flask
from sentry_sdk.integrations.flask import FlaskIntegration

from subscription_service.config import ConfigurationError, get_config
from subscription_service.extensions import db, init_extensions
from subscription_service.logging_config import configure_logging
from subscription_service.observability.metrics import metrics

logger = logging.getLogger(__name__)


def setup_sentry(app: Flask) -> None:
    """Initialize Sentry error tracking"""
    sentry_dsn = app.config.get("SENTRY_DSN")
    if not sentry_dsn:
        return

    sentry_sdk.init(
        dsn=sentry_dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=app.config.get("SENTRY_TRACES_SAMPLE_RATE", 0.1),
        environment=app.config.get("ENVIRONMENT"),
        release=app.config.get("APP_VERSION", "1.0.0"),
        send_default_pii=False,
    )
    logger.info("Sentry error tracking initialized")


def create_app(config_name: Optional[str] = None) -> Flask:
    """
    Application factory.

    Args:
        config_name: Configuration name (development, production, testing)

    Raises:
        ConfigurationError: If configuration validation fails
    """
    app = Flask(__name__)

    try:
        config = get_config(config_name)
    except ConfigurationError as e:
        print(f"CRITICAL: Configuration error: {str(e)}", file=sys.stderr)
        raise
    app.config.from_object(config)

    configure_logging(app)
    logger.info(f"Starting application initialization in {app.config.get('ENVIRONMENT')} mode")

    setup_sentry(app)
    init_extensions(app)
    metrics.init_app(app)

    # Register models with the metadata
    from subscription_service import models  # noqa: F401

    from subscription_service.error_handlers import register_error_handlers
    from subscription_service.api import register_blueprints

    register_error_handlers(app)
    register_blueprints(app)

    from subscription_service.workers.celery_app import celery_init_app

    celery_init_app(app)
    # Registers the scheduled tasks with the Celery app
    from subscription_service import tasks  # noqa: F401

    logger.info("Application initialization completed")
    return app
