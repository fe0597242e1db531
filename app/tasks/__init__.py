# Import celery app first
from app.infra.celery_app import celery_app

# Initialize logging configuration for Celery workers
from app.infra.logging_config import LoggingConfig
from app.tasks.auto_resolve_task import auto_resolve_conversations_task
from app.tasks.media_migration_task import migrate_inline_media_task

LoggingConfig()  # Initialize logging

__all__ = [
    "celery_app",
    "auto_resolve_conversations_task",
    "migrate_inline_media_task",
]
