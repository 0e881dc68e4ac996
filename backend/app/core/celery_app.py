"""Celery application configuration."""

from celery import Celery
from celery.schedules import crontab

from app.core.config import settings

celery_app = Celery(
    "subscription_tracker",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=3600,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    beat_schedule={
        "scan-subscription-reminders": {
            "task": "subscription.scan_reminders",
            "schedule": crontab(hour=settings.REMINDER_SCAN_HOUR, minute=0),
        },
    },
)

celery_app.autodiscover_tasks(["app.modules.subscription"])
