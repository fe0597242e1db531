"""
Folds a partition's raw messages into conversations.

The list is recomputed from the most recent ``conversation_scan_limit``
messages on every call; realtime updates trigger a recompute rather than
patching a cached list.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.constants.messages import (
    MEDIA_PREVIEW_LABELS,
    ConversationStatusValue,
    MediaType,
    SenderKind,
)
from app.core.routing import ChannelRoute
from app.core.session_key import contact_name_for, parse_session_key
from app.schemas.conversation import ChannelStats, Conversation
from app.schemas.messages import RawMessageRead
from app.services.conversation_status_service import ConversationStatusService
from app.services.message_store import MessageStore

logger = logging.getLogger(__name__)


@dataclass
class ConversationList:
    conversations: List[Conversation] = field(default_factory=list)
    # Set when the partition could not be read; conversations is then empty
    error: Optional[str] = None


def preview_for(message: RawMessageRead) -> str:
    """Media messages preview as a short label, never as payload or placeholder text."""
    if message.media_type != MediaType.TEXT:
        return MEDIA_PREVIEW_LABELS.get(message.media_type, message.content or "")
    return message.content or ""


def is_unread(message: RawMessageRead) -> bool:
    # Partitions without read tracking leave is_read as None and count nothing
    return message.sender_kind == SenderKind.EXTERNAL_CONTACT and message.is_read is False


def sort_key(conversation: Conversation):
    return (
        conversation.unread_count == 0,
        -conversation.last_message_at.timestamp(),
        conversation.id,
    )


def aggregate(
    messages: Iterable[RawMessageRead],
    statuses: Optional[Dict[str, ConversationStatusValue]] = None,
) -> List[Conversation]:
    """
    Group by session in one pass. The newest message by ``created_at`` (id
    breaking ties) sets the preview and time regardless of arrival order.
    """
    statuses = statuses or {}
    latest: Dict[str, RawMessageRead] = {}
    unread: Dict[str, int] = {}
    names: Dict[str, tuple] = {}
    for message in messages:
        session_id = message.session_id
        current = latest.get(session_id)
        if current is None or (message.created_at, message.id) > (
            current.created_at,
            current.id,
        ):
            latest[session_id] = message
        unread[session_id] = unread.get(session_id, 0) + (1 if is_unread(message) else 0)
        if message.sender_kind == SenderKind.EXTERNAL_CONTACT and message.contact_name:
            seen = names.get(session_id)
            if seen is None or (message.created_at, message.id) > seen[0]:
                names[session_id] = ((message.created_at, message.id), message.contact_name)

    conversations = []
    for session_id, message in latest.items():
        known_name = names.get(session_id)
        conversations.append(
            Conversation(
                id=session_id,
                contact_name=contact_name_for(
                    session_id, known_name[1] if known_name else None
                ),
                contact_phone=parse_session_key(session_id).phone,
                last_message_preview=preview_for(message),
                last_message_at=message.created_at,
                unread_count=unread[session_id],
                status=statuses.get(session_id, ConversationStatusValue.UNREAD),
            )
        )
    conversations.sort(key=sort_key)
    return conversations


class ConversationAggregator:
    def __init__(
        self,
        db: Session,
        status_service: Optional[ConversationStatusService] = None,
        scan_limit: Optional[int] = None,
    ) -> None:
        self.db = db
        self.status_service = status_service or ConversationStatusService(db)
        self.scan_limit = scan_limit or get_settings().conversation_scan_limit

    def list_conversations(self, route: ChannelRoute) -> ConversationList:
        """Conversations of one channel; a failing partition yields an empty list and an error."""
        try:
            messages = MessageStore(self.db, route).list_recent(self.scan_limit)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning(
                "Could not read partition %s for %s: %s",
                route.partition_name,
                route.slug,
                e,
            )
            return ConversationList(
                error=f"Partition {route.partition_name} is unavailable"
            )
        statuses = self.status_service.statuses_for_channel(route.channel_key)
        return ConversationList(conversations=aggregate(messages, statuses))

    def channel_stats(self, route: ChannelRoute) -> ChannelStats:
        listing = self.list_conversations(route)
        stats = ChannelStats(channel_key=route.channel_key)
        for conversation in listing.conversations:
            stats.total += 1
            stats.unread_messages += conversation.unread_count
            if conversation.status == ConversationStatusValue.UNREAD:
                stats.unread += 1
            elif conversation.status == ConversationStatusValue.IN_PROGRESS:
                stats.in_progress += 1
            else:
                stats.resolved += 1
        return stats
