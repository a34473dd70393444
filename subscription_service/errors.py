class ServiceError(Exception):
    """Base error carrying an API code and HTTP status."""

    status_code = 500
    code = "INTERNAL_ERROR"
    default_message = "An unexpected error occurred"

    def __init__(self, message=None, *, details=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details or {}

    def to_dict(self):
        payload = {"error": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(ServiceError):
    status_code = 400
    code = "VALIDATION_ERROR"
    default_message = "Invalid request"


class NotFoundError(ServiceError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Resource not found"


class ConflictError(ServiceError):
    status_code = 409
    code = "CONFLICT"
    default_message = "Request conflicts with the current state"


class ServiceUnavailableError(ServiceError):
    status_code = 503
    code = "SERVICE_UNAVAILABLE"
    default_message = "A required backing service is unavailable"


# Subscriptions

class SubscriptionNotFoundError(NotFoundError):
    code = "SUBSCRIPTION_NOT_FOUND"
    default_message = "Subscription not found"


class PlanNotFoundError(NotFoundError):
    code = "PLAN_NOT_FOUND"
    default_message = "Subscription plan not found"


class PlanMisconfiguredError(ServiceError):
    status_code = 422
    code = "PLAN_MISCONFIGURED"
    default_message = "Subscription plan has no processor price configured"


class ActiveSubscriptionExistsError(ConflictError):
    code = "ACTIVE_SUBSCRIPTION_EXISTS"
    default_message = "User already has an active subscription"


class SubscriptionRequestInProgressError(ConflictError):
    code = "SUBSCRIPTION_REQUEST_IN_PROGRESS"
    default_message = "A subscription request for this user is already in progress"


class InvalidStateTransition(ConflictError):
    code = "INVALID_STATE_TRANSITION"
    default_message = "Subscription status transition not permitted"


# Points and payouts

class InvalidPointsAmountError(ValidationError):
    code = "INVALID_POINTS_AMOUNT"
    default_message = "Points amount must be a positive integer"


class InsufficientPointsError(ServiceError):
    status_code = 422
    code = "INSUFFICIENT_POINTS"
    default_message = "Insufficient points balance"


class LedgerImmutableError(ServiceError):
    code = "LEDGER_IMMUTABLE"
    default_message = "Points ledger entries cannot be modified or deleted"


class PayoutNotFoundError(NotFoundError):
    code = "PAYOUT_NOT_FOUND"
    default_message = "Payout not found"


class NoEarningsAvailableError(ValidationError):
    code = "NO_EARNINGS_AVAILABLE"
    default_message = "No earnings available for payout"


class PayoutStateError(ConflictError):
    code = "INVALID_PAYOUT_STATE"
    default_message = "Payout is not in a state that allows this operation"


# Processor and webhooks

class RemoteProcessorError(ServiceError):
    status_code = 502
    code = "REMOTE_PROCESSOR_ERROR"
    default_message = "Payment processor request failed"


class RemoteProcessorUnavailable(RemoteProcessorError):
    status_code = 503
    code = "REMOTE_PROCESSOR_UNAVAILABLE"
    default_message = "Payment processor is unreachable"


class WebhookSignatureError(ServiceError):
    status_code = 400
    code = "INVALID_WEBHOOK_SIGNATURE"
    default_message = "Webhook signature verification failed"


class MalformedNotificationError(ValidationError):
    code = "MALFORMED_NOTIFICATION"
    default_message = "Notification envelope is missing its id or type"


class WebhookProcessingError(ServiceError):
    code = "WEBHOOK_PROCESSING_FAILED"
    default_message = "Webhook processing failed"

    def __init__(self, message=None, *, event_id=None, event_type=None):
        super().__init__(message, details={"event_id": event_id, "event_type": event_type})
        self.event_id = event_id
        self.event_type = event_type
