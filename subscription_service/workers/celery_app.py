from celery import Celery, Task
from celery.schedules import crontab
from kombu import Queue

BEAT_SCHEDULE = {
    "expire-overdue-subscriptions": {
        "task": "subscription_service.tasks.expire_overdue_subscriptions",
        "schedule": crontab(minute=0),
    },
    "cleanup-stale-pending-subscriptions": {
        "task": "subscription_service.tasks.cleanup_stale_pending_subscriptions",
        "schedule": crontab(minute=30, hour=3),
    },
}


def celery_init_app(app):
    """Bind a Celery instance to the Flask app; every task runs in an app context."""

    class FlaskTask(Task):
        def __call__(self, *args, **kwargs):
            with app.app_context():
                return self.run(*args, **kwargs)

    celery_app = Celery(app.name, task_cls=FlaskTask)
    celery_app.config_from_object(app.config["CELERY"])
    celery_app.conf.update(
        # Serialization
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],

        # Timezone
        timezone="UTC",
        enable_utc=True,

        # Reliability settings
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        task_reject_on_worker_lost=True,

        # Routing
        task_default_queue="default",
        task_queues=(
            Queue("default"),
            Queue("maintenance"),
        ),
        task_routes={"subscription_service.tasks.*": {"queue": "maintenance"}},

        # Time limits
        task_time_limit=300,
        task_soft_time_limit=240,

        beat_schedule=BEAT_SCHEDULE,
    )
    celery_app.set_default()
    app.extensions["celery"] = celery_app
    return celery_app
