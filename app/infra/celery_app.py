"""Celery application: broker/backend on Redis, beat schedule for the status sweep."""

from __future__ import annotations

from celery import Celery

from app.config import get_settings

settings = get_settings()

celery_app = Celery(
    settings.app_name,
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "app.tasks.auto_resolve_task",
        "app.tasks.media_migration_task",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)

celery_app.conf.beat_schedule = {
    "auto-resolve-conversations": {
        "task": "app.tasks.auto_resolve_task.auto_resolve_conversations_task",
        "schedule": settings.status_sweep_interval_minutes * 60.0,
    },
}
