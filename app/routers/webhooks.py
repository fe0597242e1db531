"""
Webhook routes for the WhatsApp gateway.

The gateway POSTs every event here; message events are stored, everything
else is acknowledged. Only a database outage answers non-2xx.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.adapters.base import BaseGatewayAdapter
from app.commands.webhooks.evolution_command import EvolutionWebhookCommand
from app.config import get_settings
from app.core.routing import ChannelRouter
from app.db import get_db
from app.routers.utils.dependencies import (
    get_channel_router,
    get_gateway_adapter,
    get_hub,
    get_storage,
)
from app.schemas.messages import IngestResult
from app.services.realtime import RealtimeHub
from app.services.storage import StorageBackend

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
# Path used by gateways configured against the singular form
legacy_router = APIRouter(prefix="/webhook", tags=["webhooks"], include_in_schema=False)


async def _receive(
    identifier: str,
    request: Request,
    db: Session,
    adapter: BaseGatewayAdapter,
    channel_router: ChannelRouter,
    storage: StorageBackend,
    hub: RealtimeHub,
) -> IngestResult:
    headers = dict(request.headers) if request.headers else {}
    if not adapter.verify_webhook(get_settings().webhook_token, headers):
        raise HTTPException(status_code=403, detail="Invalid webhook token")
    try:
        body: Any = await request.json()
    except Exception as e:
        logger.warning("Webhook for %s with invalid JSON: %s", identifier, e)
        return IngestResult(status="ignored", reason="invalid json")
    command = EvolutionWebhookCommand(
        db, adapter=adapter, router=channel_router, storage=storage, hub=hub
    )
    try:
        return await command.execute(identifier, body)
    except SQLAlchemyError as e:
        logger.error("Database unavailable while ingesting for %s: %s", identifier, e)
        raise HTTPException(status_code=503, detail="Message store unavailable") from e


@router.post("/{identifier}", response_model=IngestResult)
async def receive_webhook(
    identifier: str,
    request: Request,
    db: Session = Depends(get_db),
    adapter: BaseGatewayAdapter = Depends(get_gateway_adapter),
    channel_router: ChannelRouter = Depends(get_channel_router),
    storage: StorageBackend = Depends(get_storage),
    hub: RealtimeHub = Depends(get_hub),
) -> IngestResult:
    """
    Receive a gateway event for a channel slug, instance name, id or alias.
    Unknown identifiers are stored in the default channel.
    """
    return await _receive(identifier, request, db, adapter, channel_router, storage, hub)


@legacy_router.post("/{identifier}", response_model=IngestResult)
async def receive_webhook_legacy(
    identifier: str,
    request: Request,
    db: Session = Depends(get_db),
    adapter: BaseGatewayAdapter = Depends(get_gateway_adapter),
    channel_router: ChannelRouter = Depends(get_channel_router),
    storage: StorageBackend = Depends(get_storage),
    hub: RealtimeHub = Depends(get_hub),
) -> IngestResult:
    return await _receive(identifier, request, db, adapter, channel_router, storage, hub)
