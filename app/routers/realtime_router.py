"""WebSocket endpoint streaming a channel's conversation list."""

from __future__ import annotations

import asyncio
import json

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.core.routing import ChannelRoute, ChannelRouter
from app.db import get_db
from app.routers.utils.dependencies import get_channel_router, get_hub
from app.services.conversation_aggregator import ConversationAggregator
from app.services.realtime import (
    ConversationListProjection,
    EventType,
    RealtimeEvent,
    RealtimeHub,
    Subscription,
)

router = APIRouter(tags=["websocket"])

UNKNOWN_CHANNEL_CLOSE_CODE = 4404
# Notifications arriving within this window are coalesced into one reload
COALESCE_SECONDS = 0.05


async def _send(websocket: WebSocket, route: ChannelRoute, event: EventType, data: dict):
    frame = RealtimeEvent(event=event, channel_key=route.channel_key, data=data)
    await websocket.send_json(frame.model_dump(mode="json"))


async def _pump(
    websocket: WebSocket,
    route: ChannelRoute,
    subscription: Subscription,
    projection: ConversationListProjection,
) -> None:
    while True:
        batch = [await subscription.get()]
        await asyncio.sleep(COALESCE_SECONDS)
        while subscription.pending():
            batch.append(await subscription.get())
        if await run_in_threadpool(projection.apply_all, batch):
            await _send(websocket, route, EventType.CONVERSATIONS, projection.snapshot())


@router.websocket("/ws/channels/{channel_key}")
async def channel_updates(
    websocket: WebSocket,
    channel_key: str,
    db: Session = Depends(get_db),
    channel_router: ChannelRouter = Depends(get_channel_router),
    hub: RealtimeHub = Depends(get_hub),
):
    """
    Server events:
    - connection_ack - subscription established
    - conversations - full recomputed list after each new change
    - heartbeat - answer to {"type": "ping"}
    """
    await websocket.accept()
    route = channel_router.lookup(channel_key)
    if route is None:
        await websocket.close(code=UNKNOWN_CHANNEL_CLOSE_CODE)
        return

    subscription = hub.subscribe(route.channel_key)
    aggregator = ConversationAggregator(db)
    projection = ConversationListProjection(
        lambda: aggregator.list_conversations(route)
    )
    pump = None
    try:
        await _send(websocket, route, EventType.CONNECTION_ACK, {"slug": route.slug})
        await run_in_threadpool(projection.refresh)
        await _send(websocket, route, EventType.CONVERSATIONS, projection.snapshot())
        pump = asyncio.create_task(_pump(websocket, route, subscription, projection))
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                continue
            if isinstance(message, dict) and message.get("type") == "ping":
                await _send(websocket, route, EventType.HEARTBEAT, {"status": "ok"})
    except WebSocketDisconnect:
        pass
    finally:
        hub.unsubscribe(subscription)
        if pump is not None:
            pump.cancel()
            await asyncio.gather(pump, return_exceptions=True)
