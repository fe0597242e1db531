"""Canonical message records shared by ingestion, storage and outbound send."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from app.constants.messages import MediaType, SenderKind


class InboundMessage(BaseModel):
    """Normalized webhook message (adapter → ingestion pipeline)."""

    instance: Optional[str] = None
    provider_message_id: Optional[str] = None
    session_id: str
    contact_phone: str
    contact_name: str
    sender_kind: SenderKind
    media_type: MediaType = MediaType.TEXT
    content: str
    # Inline payload (data: URL or bare base64) or a remote URL, before offload
    media_source: Optional[str] = None
    media_mime: Optional[str] = None
    created_at: datetime

    @property
    def has_media(self) -> bool:
        return self.media_type != MediaType.TEXT


class NewMessage(BaseModel):
    """Row about to be inserted into a channel partition."""

    provider_message_id: Optional[str] = None
    session_id: str
    contact_name: Optional[str] = None
    content: Optional[str] = None
    sender_kind: SenderKind
    media_type: MediaType = MediaType.TEXT
    media_ref: Optional[str] = None
    media_payload: Optional[str] = None
    media_mime: Optional[str] = None
    created_at: datetime
    is_read: Optional[bool] = None


class RawMessageRead(BaseModel):
    """A stored partition row."""

    id: int
    provider_message_id: Optional[str] = None
    session_id: str
    contact_name: Optional[str] = None
    content: Optional[str] = None
    sender_kind: SenderKind
    media_type: MediaType = MediaType.TEXT
    media_ref: Optional[str] = None
    media_mime: Optional[str] = None
    created_at: datetime
    is_read: Optional[bool] = None
    # Inline payload still waiting for offload
    media_pending: bool = False

    model_config = {"from_attributes": True}


class InsertResult(BaseModel):
    message: RawMessageRead
    created: bool


class IngestResult(BaseModel):
    """Acknowledgment body returned to the webhook caller."""

    status: str
    reason: Optional[str] = None
    partition: Optional[str] = None
    message_id: Optional[int] = None
    duplicate: bool = False
    media_ref: Optional[str] = None

    model_config = {"json_schema_extra": {"examples": [{"status": "ok"}]}}


class MessagePage(BaseModel):
    """Newest-first page; pass ``next_before``/``next_before_id`` to load older messages."""

    items: list[RawMessageRead] = Field(default_factory=list)
    next_before: Optional[datetime] = None
    next_before_id: Optional[int] = None
