from celery import shared_task
from celery.utils.log import get_task_logger

from subscription_service.observability.metrics import metrics
from subscription_service.services.subscription_service import SubscriptionService

logger = get_task_logger(__name__)


def _observed(task_name, job):
    try:
        result = job()
    except Exception:
        metrics.record_task(task_name, "failure")
        logger.exception("Task failed", extra={"task": task_name})
        raise
    metrics.record_task(task_name, "success")
    return result


@shared_task(name="subscription_service.tasks.expire_overdue_subscriptions")
def expire_overdue_subscriptions():
    return _observed("expire_overdue_subscriptions", SubscriptionService.expire_overdue_subscriptions)


@shared_task(name="subscription_service.tasks.cleanup_stale_pending_subscriptions")
def cleanup_stale_pending_subscriptions(max_age_hours=None):
    return _observed(
        "cleanup_stale_pending_subscriptions",
        lambda: SubscriptionService.cleanup_stale_pending_subscriptions(max_age_hours=max_age_hours),
    )
