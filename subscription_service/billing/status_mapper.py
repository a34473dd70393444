import logging

from subscription_service.models.subscription import SubscriptionStatus

logger = logging.getLogger(__name__)

REMOTE_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "canceled": SubscriptionStatus.CANCELLED,
    "incomplete": SubscriptionStatus.PENDING,
    "incomplete_expired": SubscriptionStatus.PENDING,
    "past_due": SubscriptionStatus.EXPIRED,
    "unpaid": SubscriptionStatus.EXPIRED,
}


def map_remote_status(remote_status):
    """
    Translate a processor subscription status into the local status.

    Total: unknown or missing values map to PENDING with a warning.
    """
    key = remote_status.strip().lower() if isinstance(remote_status, str) else None
    status = REMOTE_STATUS_MAP.get(key)
    if status is None:
        logger.warning(
            "Unrecognized remote subscription status, defaulting to PENDING",
            extra={"remote_status": remote_status},
        )
        return SubscriptionStatus.PENDING
    return status
