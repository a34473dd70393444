import logging
from contextlib import contextmanager

from subscription_service.errors import ServiceUnavailableError, SubscriptionRequestInProgressError
from subscription_service.extensions import get_redis_client

logger = logging.getLogger(__name__)


@contextmanager
def redis_lock(key: str, ttl: int = 300, client=None):
    """
    Non-blocking Redis lock; raises SubscriptionRequestInProgressError when held.

    The TTL bounds how long a crashed holder can block the key.
    """
    client = client or get_redis_client()
    if client is None:
        raise ServiceUnavailableError("Redis is not configured", details={"lock": key})

    lock = client.lock(key, timeout=ttl)
    acquired = lock.acquire(blocking=False)
    if not acquired:
        logger.warning("Lock already held", extra={"lock_key": key})
        raise SubscriptionRequestInProgressError(details={"lock": key})

    try:
        yield lock
    finally:
        lock.release()
