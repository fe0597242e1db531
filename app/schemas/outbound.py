"""Outbound send payloads (agent → gateway)."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, model_validator

from app.constants.messages import MediaType
from app.schemas.messages import RawMessageRead


class SendTextRequest(BaseModel):
    channel_key: str
    counterparty_key: str
    text: str = Field(min_length=1)


class SendMediaRequest(BaseModel):
    channel_key: str
    counterparty_key: str
    media_type: MediaType
    caption: Optional[str] = None
    # Either inline bytes (base64 / data: URL) or a public URL
    media_base64: Optional[str] = None
    media_url: Optional[str] = None
    file_name: Optional[str] = None

    @model_validator(mode="after")
    def _one_source(self) -> "SendMediaRequest":
        if not self.media_base64 and not self.media_url:
            raise ValueError("media_base64 or media_url is required")
        if self.media_type == MediaType.TEXT:
            raise ValueError("media_type must be a media kind")
        return self


class GatewaySendResult(BaseModel):
    success: bool
    provider_message_id: Optional[str] = None


class OutboundSendResult(BaseModel):
    success: bool
    provider_message_id: Optional[str] = None
    message: Optional[RawMessageRead] = None
