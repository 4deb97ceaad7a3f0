"""
Celery application for the Lanchonete background jobs.

Redis is both broker and result backend. Start a worker with:
    celery -A lanchonete.celery_worker worker --loglevel=info
and the periodic jobs with:
    celery -A lanchonete.celery_worker beat

Author: Khalil Bannouri
Version: 1.0.0
"""

from celery import Celery
from celery.schedules import crontab

from lanchonete.core.config import get_settings

settings = get_settings()

BEAT_SCHEDULE = {
    "cleanup-expired-notifications": {
        "task": "lanchonete.tasks.cleanup_expired_notifications",
        "schedule": crontab(minute=0),
    },
    # Close the day shortly before midnight
    "daily-orders-report": {
        "task": "lanchonete.tasks.export_orders_report",
        "schedule": crontab(hour=23, minute=55),
        "args": ("day",),
    },
}

celery_app = Celery(
    "lanchonete_worker",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["lanchonete.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # Report exports serialize on a file lock; one task per worker process
    worker_prefetch_multiplier=1,
    worker_concurrency=4,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    result_expires=60 * 60,
    broker_connection_retry_on_startup=True,
    beat_schedule=BEAT_SCHEDULE,
)


if __name__ == "__main__":
    celery_app.start()
