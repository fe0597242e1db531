"""Conversations API: aggregated lists, message history, status and summaries."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi_pagination import Page, Params, paginate
from sqlalchemy.orm import Session

from app.commands.conversations.conversation_commands import (
    SetConversationStatusCommand,
    SummarizeConversationCommand,
    ViewConversationCommand,
    publish_status_change,
)
from app.core.routing import ChannelRoute
from app.db import get_db
from app.exceptions import InvalidStatusTransition, StatusPersistenceError
from app.routers.utils.dependencies import get_channel_route, get_hub, get_summarizer
from app.schemas.conversation import (
    ChannelStats,
    Conversation,
    ConversationStatusRead,
    ConversationStatusUpdate,
    SummaryRead,
)
from app.schemas.messages import MessagePage
from app.services.conversation_aggregator import ConversationAggregator
from app.services.conversation_status_service import ConversationStatusService
from app.services.message_store import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, MessageStore
from app.services.realtime import RealtimeHub
from app.workers.llm import Summarizer

logger = logging.getLogger(__name__)

conversations_router = APIRouter(prefix="/channels/{channel_key}", tags=["Conversation"])

PARTITION_ERROR_HEADER = "X-Partition-Error"


@conversations_router.get("/conversations", response_model=Page[Conversation])
def list_conversations(
    response: Response,
    params: Params = Depends(),
    route: ChannelRoute = Depends(get_channel_route),
    db: Session = Depends(get_db),
) -> Page[Conversation]:
    """
    Conversations of the channel: unread first, then most recent first.
    A partition that cannot be read answers an empty page with an
    X-Partition-Error header.
    """
    listing = ConversationAggregator(db).list_conversations(route)
    if listing.error:
        response.headers[PARTITION_ERROR_HEADER] = listing.error
    return paginate(listing.conversations, params=params)


@conversations_router.get("/stats", response_model=ChannelStats)
def channel_stats(
    route: ChannelRoute = Depends(get_channel_route),
    db: Session = Depends(get_db),
) -> ChannelStats:
    return ConversationAggregator(db).channel_stats(route)


@conversations_router.get(
    "/conversations/{session_id}/messages", response_model=MessagePage
)
def list_messages(
    session_id: str,
    before: Optional[datetime] = Query(None),
    before_id: Optional[int] = Query(None),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    route: ChannelRoute = Depends(get_channel_route),
    db: Session = Depends(get_db),
) -> MessagePage:
    """Newest first. Pass the returned cursor back to load older messages."""
    items = MessageStore(db, route).find_by_session(
        session_id, before=before, before_id=before_id, limit=limit
    )
    page = MessagePage(items=items)
    if len(items) == limit:
        page.next_before = items[-1].created_at
        page.next_before_id = items[-1].id
    return page


@conversations_router.post(
    "/conversations/{session_id}/view", response_model=ConversationStatusRead
)
def view_conversation(
    session_id: str,
    route: ChannelRoute = Depends(get_channel_route),
    db: Session = Depends(get_db),
    hub: RealtimeHub = Depends(get_hub),
) -> ConversationStatusRead:
    return ViewConversationCommand(db, hub=hub).execute(route, session_id)


@conversations_router.get(
    "/conversations/{session_id}/status", response_model=ConversationStatusRead
)
def get_conversation_status(
    session_id: str,
    route: ChannelRoute = Depends(get_channel_route),
    db: Session = Depends(get_db),
) -> ConversationStatusRead:
    return ConversationStatusService(db).get_status(route.channel_key, session_id)


@conversations_router.put(
    "/conversations/{session_id}/status", response_model=ConversationStatusRead
)
def set_conversation_status(
    session_id: str,
    data: ConversationStatusUpdate,
    route: ChannelRoute = Depends(get_channel_route),
    db: Session = Depends(get_db),
    hub: RealtimeHub = Depends(get_hub),
) -> ConversationStatusRead:
    """Manual status change; only unread->in_progress->resolved and reopening to in_progress."""
    try:
        return SetConversationStatusCommand(db, hub=hub).execute(
            route, session_id, data.status
        )
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=409, detail=str(e)) from e


@conversations_router.delete("/conversations/{session_id}/status", status_code=204)
def reset_conversation_status(
    session_id: str,
    route: ChannelRoute = Depends(get_channel_route),
    db: Session = Depends(get_db),
    hub: RealtimeHub = Depends(get_hub),
) -> Response:
    """Forget the stored status; the conversation reads as unread again."""
    try:
        ConversationStatusService(db).reset(route.channel_key, session_id)
    except StatusPersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
    publish_status_change(hub, route, session_id)
    return Response(status_code=204)


@conversations_router.post(
    "/conversations/{session_id}/summary", response_model=SummaryRead
)
async def summarize_conversation(
    session_id: str,
    route: ChannelRoute = Depends(get_channel_route),
    db: Session = Depends(get_db),
    summarizer: Summarizer = Depends(get_summarizer),
) -> SummaryRead:
    try:
        return await SummarizeConversationCommand(db, summarizer).execute(
            route, session_id
        )
    except Exception as e:
        logger.warning("Summary failed for %s/%s: %s", route.slug, session_id, e)
        raise HTTPException(status_code=502, detail="Summarizer unavailable") from e
