"""Operational endpoints: media migration, status sweep, health."""

from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.core.routing import ChannelRouter
from app.db import get_db
from app.routers.utils.dependencies import get_channel_router, get_hub, get_storage
from app.services.conversation_status_service import ConversationStatusService
from app.services.media_offload_service import MediaOffloadService
from app.services.realtime import ChangeKind, ChangeNotification, RealtimeHub
from app.services.storage import StorageBackend

router = APIRouter(
    prefix="/system",
    tags=["system"],
    responses={404: {"description": "Not found"}},
)


@router.get("/health")
def health(db: Session = Depends(get_db)) -> dict[str, str]:
    db.execute(text("SELECT 1"))
    return {"status": "ok"}


@router.post("/media-migration", response_model=dict[str, Any])
async def run_media_migration(
    db: Session = Depends(get_db),
    channel_router: ChannelRouter = Depends(get_channel_router),
    storage: StorageBackend = Depends(get_storage),
) -> dict[str, Any]:
    """
    Move inline base64 payloads of every partition to blob storage.
    Returns {totalProcessed, totalErrors, perTable: {table: {processed, errors}}}.
    """
    report = await MediaOffloadService(storage).migrate_all(db, channel_router.routes())
    return report.model_dump(by_alias=True)


@router.post("/auto-resolve", response_model=dict[str, Any])
def run_auto_resolve(
    db: Session = Depends(get_db),
    hub: RealtimeHub = Depends(get_hub),
) -> dict[str, Any]:
    """Run the idle-conversation sweep now instead of waiting for the schedule."""
    resolved = ConversationStatusService(db).sweep()
    for status in resolved:
        hub.publish(
            ChangeNotification(
                kind=ChangeKind.STATUS_CHANGED,
                channel_key=status.channel_key,
                session_id=status.session_id,
            )
        )
    return {"resolved": len(resolved)}
