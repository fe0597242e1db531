"""Celery task for the inline media migration."""

from __future__ import annotations

import asyncio
from typing import Any

from app.core.app_state import state
from app.infra.celery_app import celery_app
from app.infra.logging_config import get_logger
from app.services.media_offload_service import MediaOffloadService
from app.utils.db.db_session_helper import db_session

logger = get_logger("media_migration")


@celery_app.task(name="app.tasks.media_migration_task.migrate_inline_media_task")
def migrate_inline_media_task() -> dict[str, Any]:
    """
    Move inline base64 payloads of every known partition to blob storage.
    Returns the report as ``{totalProcessed, totalErrors, perTable}``.
    """
    offloader = MediaOffloadService(state.storage)
    with db_session() as db:
        report = asyncio.run(offloader.migrate_all(db, state.router.routes()))
    logger.info(
        "Media migration task done: %d processed, %d errors",
        report.total_processed,
        report.total_errors,
    )
    return report.model_dump(by_alias=True)
