"""
Configuration classes for the subscription service.

Values are read from the environment at import time; ``wsgi.py`` and
``manage.py`` load a ``.env`` file first with python-dotenv.
"""

import os
from datetime import timedelta
from decimal import Decimal


class ConfigurationError(Exception):
    """
    Raised when an invalid or unsupported configuration is requested.
    """
    pass


def _env_bool(name, default=False):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name, default):
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from exc


class BaseConfig:
    """
    Base configuration shared by all environments.
    """

    ENVIRONMENT = "base"
    APP_NAME = "subscription-service"
    APP_VERSION = os.getenv("APP_VERSION", "1.0.0")

    # Flask
    DEBUG = False
    TESTING = False
    SECRET_KEY = os.getenv("SECRET_KEY")

    # Database
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///subscription_service.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}

    # JWT
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(minutes=_env_int("JWT_ACCESS_TOKEN_MINUTES", 15))
    JWT_TOKEN_LOCATION = ["headers"]
    JWT_ERROR_MESSAGE_KEY = "error"

    # Redis
    REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # Stripe
    STRIPE_ENABLED = _env_bool("FEATURE_ENABLE_STRIPE", True)
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
    STRIPE_WEBHOOK_TOLERANCE = _env_int("STRIPE_WEBHOOK_TOLERANCE", 300)
    STRIPE_TIMEOUT = _env_int("STRIPE_TIMEOUT", 10)
    STRIPE_MAX_NETWORK_RETRIES = _env_int("STRIPE_MAX_NETWORK_RETRIES", 2)
    STRIPE_API_VERSION = os.getenv("STRIPE_API_VERSION")

    # Reconciliation
    REVENUE_SHARE_RATE = Decimal(os.getenv("REVENUE_SHARE_RATE", "0.70"))
    PAYMENT_INTENT_ACTIVATION_ENABLED = _env_bool("PAYMENT_INTENT_ACTIVATION_ENABLED", True)
    DUPLICATE_GUARD_REMOTE_CANCEL = _env_bool("DUPLICATE_GUARD_REMOTE_CANCEL", False)
    SUBSCRIPTION_REQUEST_LOCK_TTL = _env_int("SUBSCRIPTION_REQUEST_LOCK_TTL", 30)
    PENDING_SUBSCRIPTION_MAX_AGE_HOURS = _env_int("PENDING_SUBSCRIPTION_MAX_AGE_HOURS", 24)

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.getenv("LOG_FORMAT", "json")
    LOG_FILE = os.getenv("LOG_FILE")

    # Observability
    SENTRY_DSN = os.getenv("SENTRY_DSN")
    SENTRY_TRACES_SAMPLE_RATE = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1"))
    METRICS_ENABLED = _env_bool("METRICS_ENABLED", False)

    # Celery
    CELERY = {
        "broker_url": os.getenv("CELERY_BROKER_URL", REDIS_URL),
        "result_backend": os.getenv("CELERY_RESULT_BACKEND", REDIS_URL),
        "task_ignore_result": True,
    }

    REQUIRED_SETTINGS = ()

    @classmethod
    def validate(cls):
        missing = [name for name in cls.REQUIRED_SETTINGS if not getattr(cls, name, None)]
        if missing:
            raise ConfigurationError(
                f"Missing required configuration for {cls.ENVIRONMENT}: {', '.join(missing)}"
            )


class DevelopmentConfig(BaseConfig):
    ENVIRONMENT = "development"
    DEBUG = True
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-jwt-secret-key")
    LOG_FORMAT = os.getenv("LOG_FORMAT", "console")


class TestingConfig(BaseConfig):
    ENVIRONMENT = "testing"
    TESTING = True
    SECRET_KEY = "testing-secret-key"
    JWT_SECRET_KEY = "testing-jwt-secret-key-with-enough-length"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}

    STRIPE_ENABLED = True
    STRIPE_SECRET_KEY = "sk_test_dummy"
    STRIPE_WEBHOOK_SECRET = "whsec_testing_secret"
    STRIPE_MAX_NETWORK_RETRIES = 0

    PAYMENT_INTENT_ACTIVATION_ENABLED = True
    DUPLICATE_GUARD_REMOTE_CANCEL = False

    LOG_LEVEL = "WARNING"
    LOG_FORMAT = "console"
    LOG_FILE = None
    SENTRY_DSN = None
    METRICS_ENABLED = False

    CELERY = {
        "broker_url": "memory://",
        "result_backend": "cache+memory://",
        "task_always_eager": True,
        "task_ignore_result": True,
    }


class ProductionConfig(BaseConfig):
    """
    Production configuration. Secrets MUST come from the environment.
    """

    ENVIRONMENT = "production"
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL")

    REQUIRED_SETTINGS = (
        "SECRET_KEY",
        "JWT_SECRET_KEY",
        "SQLALCHEMY_DATABASE_URI",
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
    )


_CONFIGS = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
}


def get_config(name=None):
    """
    Resolve the configuration class for ``name``, falling back to the
    APP_ENV environment variable.
    """
    env = (name or os.getenv("APP_ENV", "development")).lower()
    try:
        config = _CONFIGS[env]
    except KeyError:
        raise ConfigurationError(f"Invalid APP_ENV value: {env}") from None
    config.validate()
    return config
