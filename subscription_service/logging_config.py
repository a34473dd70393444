import logging.config
import sys


def build_logging_config(level="INFO", fmt="json", log_file=None):
    """
    Build a dictConfig mapping.

    Args:
        level (str): Root log level.
        fmt (str): ``json`` for python-json-logger output, ``console`` for plain text.
        log_file (str, optional): When set, ERROR records also go to a rotating file.
    """
    config = {
        "version": 1,
        "disable_existing_loggers": False,

        "formatters": {
            "json": {
                "()": "pythonjsonlogger.json.JsonFormatter",
                "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
                "json_ensure_ascii": False,
            },
            "console": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },

        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "json" if fmt == "json" else "console",
                "stream": sys.stdout,
            },
        },

        "loggers": {
            "subscription_service": {
                "handlers": ["console"],
                "level": level,
                "propagate": False,
            },
            "werkzeug": {"level": "WARNING"},
            "sqlalchemy.engine": {"level": "WARNING"},
            "urllib3": {"level": "WARNING"},
            "stripe": {"level": "WARNING"},
        },

        "root": {
            "handlers": ["console"],
            "level": level,
        },
    }

    if log_file:
        config["handlers"]["error_file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "json",
            "filename": log_file,
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5,
            "level": "ERROR",
        }
        config["loggers"]["subscription_service"]["handlers"].append("error_file")

    return config


def configure_logging(app):
    """Configure logging from the Flask app's LOG_* settings."""
    level = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    config = build_logging_config(
        level=level,
        fmt=app.config.get("LOG_FORMAT", "json"),
        log_file=app.config.get("LOG_FILE"),
    )
    logging.config.dictConfig(config)

    logger = logging.getLogger("subscription_service")
    logger.info("Logging configured", extra={"log_level": level})
    return logger
