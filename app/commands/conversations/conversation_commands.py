"""
Agent-facing conversation actions that touch both a partition and the
status store: opening a conversation and summarizing it.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.orm import Session

from app.constants.messages import ConversationStatusValue
from app.core.routing import ChannelRoute
from app.schemas.conversation import ConversationStatusRead, SummaryRead
from app.services.conversation_status_service import ConversationStatusService
from app.services.message_store import MAX_PAGE_SIZE, MessageStore
from app.services.realtime import ChangeKind, ChangeNotification, RealtimeHub
from app.workers.llm import Summarizer

logger = logging.getLogger(__name__)


def publish_status_change(
    hub: Optional[RealtimeHub], route: ChannelRoute, session_id: str
) -> None:
    if hub is None:
        return
    hub.publish(
        ChangeNotification(
            kind=ChangeKind.STATUS_CHANGED,
            channel_key=route.channel_key,
            session_id=session_id,
        )
    )


class ViewConversationCommand:
    """An agent opened the conversation: mark its messages read and move it to in_progress."""

    def __init__(self, db: Session, hub: Optional[RealtimeHub] = None) -> None:
        self.db = db
        self.hub = hub
        self.status_service = ConversationStatusService(db)

    def execute(self, route: ChannelRoute, session_id: str) -> ConversationStatusRead:
        marked = MessageStore(self.db, route).mark_read(session_id)
        status = self.status_service.mark_viewed(route.channel_key, session_id)
        logger.debug(
            "Viewed %s/%s: %d messages marked read", route.slug, session_id, marked
        )
        publish_status_change(self.hub, route, session_id)
        return status


class SetConversationStatusCommand:
    """Manual status change. Taking or closing a conversation also clears its unread messages."""

    def __init__(self, db: Session, hub: Optional[RealtimeHub] = None) -> None:
        self.db = db
        self.hub = hub
        self.status_service = ConversationStatusService(db)

    def execute(
        self, route: ChannelRoute, session_id: str, target: ConversationStatusValue
    ) -> ConversationStatusRead:
        status = self.status_service.set_status(route.channel_key, session_id, target)
        if target in (
            ConversationStatusValue.IN_PROGRESS,
            ConversationStatusValue.RESOLVED,
        ):
            MessageStore(self.db, route).mark_read(session_id)
        publish_status_change(self.hub, route, session_id)
        return status


class SummarizeConversationCommand:
    def __init__(self, db: Session, summarizer: Summarizer) -> None:
        self.db = db
        self.summarizer = summarizer

    async def execute(
        self, route: ChannelRoute, session_id: str, limit: int = MAX_PAGE_SIZE
    ) -> SummaryRead:
        """Summarize the most recent ``limit`` messages of the session."""
        messages = MessageStore(self.db, route).find_by_session(session_id, limit=limit)
        summary = await self.summarizer.summarize(list(reversed(messages))) if messages else ""
        return SummaryRead(
            session_id=session_id, summary=summary, message_count=len(messages)
        )
