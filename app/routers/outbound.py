"""
Outbound API: agents send messages to contacts through the gateway.

On success the message is recorded in the channel partition with
``sender_kind=internal_agent`` and returned as ``{"data": {...}}``.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.adapters.base import BaseGatewayAdapter
from app.commands.outbound.send_outbound_command import SendOutboundCommand
from app.core.routing import ChannelRouter
from app.db import get_db
from app.routers.utils.dependencies import (
    get_channel_router,
    get_gateway_adapter,
    get_hub,
    get_storage,
)
from app.schemas.outbound import SendMediaRequest, SendTextRequest
from app.services.realtime import RealtimeHub
from app.services.storage import StorageBackend

router = APIRouter(prefix="/outbound", tags=["outbound"])


def _command(
    db: Session = Depends(get_db),
    adapter: BaseGatewayAdapter = Depends(get_gateway_adapter),
    channel_router: ChannelRouter = Depends(get_channel_router),
    storage: StorageBackend = Depends(get_storage),
    hub: RealtimeHub = Depends(get_hub),
) -> SendOutboundCommand:
    return SendOutboundCommand(
        db, adapter=adapter, router=channel_router, storage=storage, hub=hub
    )


@router.post("/text", response_model=dict[str, Any])
async def send_text(
    body: SendTextRequest,
    command: SendOutboundCommand = Depends(_command),
) -> dict[str, Any]:
    """Send a text message. 404 unknown channel, 502 gateway failure."""
    result = await command.execute_text(body)
    return {"data": result.model_dump(mode="json")}


@router.post("/media", response_model=dict[str, Any])
async def send_media(
    body: SendMediaRequest,
    command: SendOutboundCommand = Depends(_command),
) -> dict[str, Any]:
    """Send media given as base64/data: URL (offloaded first) or as a public URL."""
    result = await command.execute_media(body)
    return {"data": result.model_dump(mode="json")}
