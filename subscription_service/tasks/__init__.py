from subscription_service.tasks.subscription_tasks import (
    cleanup_stale_pending_subscriptions,
    expire_overdue_subscriptions,
)

__all__ = ["cleanup_stale_pending_subscriptions", "expire_overdue_subscriptions"]
