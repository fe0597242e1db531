"""Conversation projections and status payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from app.constants.messages import ConversationStatusValue


class Conversation(BaseModel):
    """Derived from the messages of one session within a partition."""

    id: str
    contact_name: str
    contact_phone: str
    last_message_preview: str
    last_message_at: datetime
    unread_count: int = 0
    status: ConversationStatusValue = ConversationStatusValue.UNREAD


class ConversationStatusRead(BaseModel):
    channel_key: str
    session_id: str
    status: ConversationStatusValue = ConversationStatusValue.UNREAD
    last_activity_at: Optional[datetime] = None
    last_viewed_at: Optional[datetime] = None
    auto_resolved_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ConversationStatusUpdate(BaseModel):
    status: ConversationStatusValue


class ChannelStats(BaseModel):
    channel_key: str
    total: int = 0
    unread: int = 0
    in_progress: int = 0
    resolved: int = 0
    unread_messages: int = 0


class SummaryRead(BaseModel):
    session_id: str
    summary: str
    message_count: int
