import logging
import traceback

from flask import jsonify, request
from sqlalchemy.orm.exc import StaleDataError

from subscription_service.errors import ServiceError
from subscription_service.extensions import db
from subscription_service.services.stripe_service import StripeDisabledError, StripeMisconfiguredError

logger = logging.getLogger(__name__)


def register_error_handlers(app):
    """Register all error handlers for the application"""

    @app.errorhandler(ServiceError)
    def handle_service_error(error):
        log = logger.error if error.status_code >= 500 else logger.warning
        log(
            f"{error.code}: {error.message}",
            extra={"path": request.path, "error_code": error.code, "status_code": error.status_code},
        )
        payload = error.to_dict()
        payload["path"] = request.path
        return jsonify(payload), error.status_code

    @app.errorhandler(StripeDisabledError)
    def handle_stripe_disabled(error):
        logger.warning(f"Stripe disabled: {error} - Path: {request.path}")
        return jsonify({
            "error": error.code,
            "message": "Payments are temporarily unavailable.",
            "path": request.path,
        }), 503

    @app.errorhandler(StripeMisconfiguredError)
    def handle_stripe_misconfigured(error):
        logger.error(f"Stripe misconfigured: {error} - Path: {request.path}")
        return jsonify({
            "error": error.code,
            "message": "Payments are temporarily unavailable.",
            "path": request.path,
        }), 503

    @app.errorhandler(StaleDataError)
    def handle_stale_data(error):
        db.session.rollback()
        logger.warning(f"Concurrent update detected - Path: {request.path}")
        return jsonify({
            "error": "CONCURRENT_MODIFICATION",
            "message": "The resource was modified concurrently. Please retry.",
            "path": request.path,
        }), 409

    @app.errorhandler(400)
    def bad_request(e):
        logger.warning(f"Bad request: {str(e)} - Path: {request.path}")
        return jsonify({
            "error": "BAD_REQUEST",
            "message": "The request could not be understood or was missing required parameters.",
            "path": request.path,
        }), 400

    @app.errorhandler(404)
    def not_found(e):
        logger.info(f"Not found: {request.path}")
        return jsonify({
            "error": "NOT_FOUND",
            "message": "The requested resource was not found on the server.",
            "path": request.path,
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        logger.warning(f"Method not allowed: {request.method} {request.path}")
        return jsonify({
            "error": "METHOD_NOT_ALLOWED",
            "message": f"The {request.method} method is not supported for this endpoint.",
            "path": request.path,
        }), 405

    @app.errorhandler(500)
    def server_error(e):
        db.session.rollback()
        logger.error(f"Server error: {str(e)} - Path: {request.path}")
        if app.config.get("DEBUG", False):
            logger.error(f"Traceback: {traceback.format_exc()}")
        return jsonify({
            "error": "INTERNAL_ERROR",
            "message": "An internal server error occurred. Please try again later.",
            "path": request.path,
        }), 500
