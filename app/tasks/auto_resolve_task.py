"""Celery task for the idle-conversation sweep."""

from __future__ import annotations

from app.infra.celery_app import celery_app
from app.infra.logging_config import get_logger
from app.services.conversation_status_service import ConversationStatusService
from app.utils.db.db_session_helper import db_session

logger = get_logger("auto_resolve")


@celery_app.task(name="app.tasks.auto_resolve_task.auto_resolve_conversations_task")
def auto_resolve_conversations_task() -> int:
    """
    Resolve in-progress conversations idle past the threshold.
    Runs on the beat schedule; safe to run again at any time.
    """
    with db_session() as db:
        resolved = ConversationStatusService(db).sweep()
    logger.info("Auto-resolve sweep resolved %d conversations", len(resolved))
    return len(resolved)
