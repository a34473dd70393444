# stripe_service.py
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from functools import wraps
from typing import Any, Dict, List, Optional

import sentry_sdk
import stripe
from flask import current_app

from subscription_service.errors import (
    RemoteProcessorError,
    RemoteProcessorUnavailable,
    WebhookSignatureError,
)

logger = logging.getLogger(__name__)

# Failures worth a redelivery: the processor may answer next time
TRANSIENT_STRIPE_ERRORS = (
    stripe.APIConnectionError,
    stripe.RateLimitError,
    stripe.APIError,
)


# ==================== CUSTOM EXCEPTIONS ====================

class StripeDisabledError(RuntimeError):
    """Raised when Stripe is disabled via feature flag."""
    def __init__(self, message: str = None, operation: str = None):
        self.operation = operation
        default_msg = "Stripe is disabled via FEATURE_ENABLE_STRIPE=false"
        if operation:
            default_msg = f"Stripe operation '{operation}' disabled via feature flag"
        super().__init__(message or default_msg)
        self.code = "STRIPE_DISABLED"


class StripeMisconfiguredError(RuntimeError):
    """Raised when Stripe is enabled but misconfigured."""
    def __init__(self, missing_config: str = None):
        self.missing_config = missing_config
        msg = "Stripe is enabled but misconfigured"
        if missing_config:
            msg = f"Stripe misconfigured: Missing {missing_config}"
        super().__init__(msg)
        self.code = "STRIPE_MISCONFIGURED"


# ==================== CONFIGURATION ====================

@dataclass
class StripeConfig:
    enabled: bool
    api_key: Optional[str]
    webhook_secret: Optional[str]
    webhook_tolerance: int = 300
    max_network_retries: int = 2
    timeout: int = 10
    api_version: Optional[str] = None

    @classmethod
    def from_app_config(cls, config) -> "StripeConfig":
        return cls(
            enabled=bool(config.get("STRIPE_ENABLED", True)),
            api_key=config.get("STRIPE_SECRET_KEY"),
            webhook_secret=config.get("STRIPE_WEBHOOK_SECRET"),
            webhook_tolerance=int(config.get("STRIPE_WEBHOOK_TOLERANCE", 300)),
            max_network_retries=int(config.get("STRIPE_MAX_NETWORK_RETRIES", 2)),
            timeout=int(config.get("STRIPE_TIMEOUT", 10)),
            api_version=config.get("STRIPE_API_VERSION"),
        )

    def validate(self) -> List[str]:
        issues = []
        if self.enabled:
            if not self.api_key:
                issues.append("STRIPE_SECRET_KEY not configured")
            if not self.webhook_secret:
                issues.append("STRIPE_WEBHOOK_SECRET not configured")
        return issues


# ==================== GUARDS ====================

def stripe_enabled_guard(func=None, *, operation_name: str = None, require_api_key: bool = True):
    """
    Guard a StripeService method with the feature flag and key checks.
    """
    def decorator(f):
        @wraps(f)
        def wrapper(self, *args, **kwargs):
            operation = operation_name or f.__name__

            if not self.config.enabled:
                logger.warning(
                    f"Stripe operation blocked: {operation}",
                    extra={"stripe_operation": operation, "feature_flag": "FEATURE_ENABLE_STRIPE"},
                )
                raise StripeDisabledError(operation=operation)

            if require_api_key and not self.config.api_key:
                logger.error("Stripe misconfigured - missing API key", extra={"operation": operation})
                raise StripeMisconfiguredError("STRIPE_SECRET_KEY")

            return f(self, *args, **kwargs)
        return wrapper

    if func:
        return decorator(func)
    return decorator


@contextmanager
def stripe_operation_context(operation_name: str, **context_vars):
    """
    Log and time a Stripe call, translating SDK errors into service errors.

    Example:
        with stripe_operation_context("retrieve_subscription", subscription_id=sub_id):
            ...
    """
    start = time.monotonic()
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("stripe_operation", operation_name)
        scope.set_context("stripe_context", context_vars)
        try:
            yield
        except TRANSIENT_STRIPE_ERRORS as e:
            logger.error(
                f"Stripe operation failed transiently: {operation_name}",
                extra={
                    "operation": operation_name,
                    "duration_seconds": round(time.monotonic() - start, 3),
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                    **context_vars,
                },
            )
            raise RemoteProcessorUnavailable(str(e) or None, details={"operation": operation_name}) from e
        except stripe.StripeError as e:
            logger.error(
                f"Stripe operation failed: {operation_name}",
                extra={
                    "operation": operation_name,
                    "duration_seconds": round(time.monotonic() - start, 3),
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                    **context_vars,
                },
            )
            raise RemoteProcessorError(str(e) or None, details={"operation": operation_name}) from e
        else:
            logger.debug(
                f"Completed Stripe operation: {operation_name}",
                extra={
                    "operation": operation_name,
                    "duration_seconds": round(time.monotonic() - start, 3),
                    **context_vars,
                },
            )


def _is_missing(error: "stripe.InvalidRequestError") -> bool:
    return getattr(error, "http_status", None) == 404 or getattr(error, "code", None) == "resource_missing"


# ==================== STRIPE SERVICE ====================

class StripeService:
    """
    Payment processor collaborator used by the reconciliation core and the
    synchronous subscription flows.

    ``retrieve_*`` return None when the processor does not know the object.
    """

    def __init__(self, config: StripeConfig):
        self.config = config

        if self.config.enabled and self.config.api_key:
            stripe.api_key = self.config.api_key
            stripe.max_network_retries = self.config.max_network_retries
            stripe.default_http_client = stripe.RequestsClient(timeout=self.config.timeout)
            if self.config.api_version:
                stripe.api_version = self.config.api_version

            logger.info(
                "Stripe client initialized",
                extra={
                    "api_key_prefix": self.config.api_key[:8] + "...",
                    "max_retries": self.config.max_network_retries,
                    "timeout": self.config.timeout,
                },
            )

        for issue in self.config.validate():
            logger.warning("Stripe configuration issue", extra={"issue": issue})

    # ============ RETRIEVAL ============

    def _retrieve(self, resource, operation: str, object_id: str):
        try:
            with stripe_operation_context(operation, object_id=object_id):
                return resource.retrieve(object_id)
        except RemoteProcessorError as e:
            cause = e.__cause__
            if isinstance(cause, stripe.InvalidRequestError) and _is_missing(cause):
                logger.warning(
                    "Stripe object not found",
                    extra={"operation": operation, "object_id": object_id},
                )
                return None
            raise

    @stripe_enabled_guard(operation_name="retrieve_subscription")
    def retrieve_subscription(self, subscription_id: str):
        return self._retrieve(stripe.Subscription, "retrieve_subscription", subscription_id)

    @stripe_enabled_guard(operation_name="retrieve_payment_intent")
    def retrieve_payment_intent(self, payment_intent_id: str):
        return self._retrieve(stripe.PaymentIntent, "retrieve_payment_intent", payment_intent_id)

    @stripe_enabled_guard(operation_name="retrieve_invoice")
    def retrieve_invoice(self, invoice_id: str):
        return self._retrieve(stripe.Invoice, "retrieve_invoice", invoice_id)

    # ============ SYNCHRONOUS FLOWS ============

    @stripe_enabled_guard(operation_name="create_customer")
    def create_customer(self, email: str, user_id: str, idempotency_key: Optional[str] = None):
        with stripe_operation_context("create_customer", user_id=user_id):
            params: Dict[str, Any] = {"email": email, "metadata": {"userId": str(user_id)}}
            if idempotency_key:
                params["idempotency_key"] = idempotency_key
            customer = stripe.Customer.create(**params)
        logger.info("Stripe customer created", extra={"customer_id": customer.id, "user_id": user_id})
        return customer

    @stripe_enabled_guard(operation_name="create_subscription")
    def create_subscription(
        self,
        customer_id: str,
        price_id: str,
        user_id: str,
        idempotency_key: Optional[str] = None,
    ):
        """Create an incomplete subscription whose first payment the client confirms."""
        with stripe_operation_context("create_subscription", customer_id=customer_id, price_id=price_id):
            params: Dict[str, Any] = {
                "customer": customer_id,
                "items": [{"price": price_id}],
                "payment_behavior": "default_incomplete",
                "payment_settings": {"save_default_payment_method": "on_subscription"},
                "metadata": {"userId": str(user_id), "created_by": "subscription_service"},
                "expand": ["latest_invoice.payment_intent"],
            }
            if idempotency_key:
                params["idempotency_key"] = idempotency_key
            subscription = stripe.Subscription.create(**params)
        logger.info(
            "Stripe subscription created",
            extra={
                "subscription_id": subscription.id,
                "customer_id": customer_id,
                "price_id": price_id,
                "status": subscription.status,
            },
        )
        return subscription

    @stripe_enabled_guard(operation_name="cancel_subscription")
    def cancel_subscription(self, subscription_id: str):
        with stripe_operation_context("cancel_subscription", subscription_id=subscription_id):
            subscription = stripe.Subscription.cancel(subscription_id)
        logger.info("Stripe subscription cancelled", extra={"subscription_id": subscription_id})
        return subscription

    # ============ WEBHOOKS ============

    @stripe_enabled_guard(operation_name="construct_event", require_api_key=False)
    def construct_event(self, payload: bytes, sig_header: Optional[str]):
        """Verify the Stripe-Signature header; raise WebhookSignatureError when it fails."""
        if not self.config.webhook_secret:
            raise StripeMisconfiguredError("STRIPE_WEBHOOK_SECRET")
        if not sig_header:
            raise WebhookSignatureError("Missing Stripe-Signature header")

        try:
            event = stripe.Webhook.construct_event(
                payload,
                sig_header,
                self.config.webhook_secret,
                tolerance=self.config.webhook_tolerance,
            )
        except ValueError as e:
            logger.warning("Invalid webhook payload", extra={"error": str(e)})
            raise WebhookSignatureError("Invalid webhook payload") from e
        except stripe.SignatureVerificationError as e:
            logger.warning("Invalid webhook signature", extra={"error": str(e)})
            raise WebhookSignatureError() from e

        logger.info(
            "Stripe webhook verified",
            extra={"event_id": getattr(event, "id", None), "event_type": getattr(event, "type", None)},
        )
        return event


def get_stripe_service() -> StripeService:
    """Per-app StripeService, built lazily from the app config."""
    service = current_app.extensions.get("stripe_service")
    if service is None:
        service = StripeService(StripeConfig.from_app_config(current_app.config))
        current_app.extensions["stripe_service"] = service
    return service
