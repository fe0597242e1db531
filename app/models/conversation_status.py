"""Explicit per-conversation status, kept apart from the message partitions."""

from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, String, UniqueConstraint

from app.constants.messages import ConversationStatusValue
from app.db import Base
from app.models.mixins import TimestampMixin, utcnow


class ConversationStatus(Base, TimestampMixin):
    __tablename__ = "conversation_statuses"

    __table_args__ = (
        UniqueConstraint(
            "channel_key", "session_id", name="uq_conversation_status_channel_session"
        ),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    channel_key = Column(String(128), nullable=False, index=True)
    session_id = Column(String(256), nullable=False)
    status = Column(
        String(16),
        nullable=False,
        default=ConversationStatusValue.UNREAD.value,
        index=True,
    )
    last_activity_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_viewed_at = Column(DateTime(timezone=True), nullable=True)
    auto_resolved_at = Column(DateTime(timezone=True), nullable=True)
