"""
Webhook payload shapes of the WhatsApp gateway (Evolution-style API).

The envelope is validated loosely; the ``message`` object is classified
into one of the variants below by ``app.adapters.evolution``.
"""

from __future__ import annotations

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field

# -----------------------------------------------------------------------------
# Envelope
# -----------------------------------------------------------------------------


class MessageKey(BaseModel):
    remote_jid: str = Field(alias="remoteJid", min_length=1)
    from_me: bool = Field(default=False, alias="fromMe")
    id: Optional[str] = None

    model_config = {"populate_by_name": True, "extra": "allow"}


class WebhookMessageData(BaseModel):
    """``data`` block of a messages.upsert / messages.update event."""

    key: MessageKey
    message: dict[str, Any]
    message_timestamp: Optional[Union[int, float, str, dict[str, Any]]] = Field(
        default=None, alias="messageTimestamp"
    )
    push_name: Optional[str] = Field(default=None, alias="pushName")
    message_type: Optional[str] = Field(default=None, alias="messageType")

    model_config = {"populate_by_name": True, "extra": "allow"}


class WebhookEnvelope(BaseModel):
    event: str = ""
    instance: Optional[str] = None
    data: Optional[Any] = None

    model_config = {"extra": "allow"}


# -----------------------------------------------------------------------------
# Message variants
# -----------------------------------------------------------------------------


class TextMessage(BaseModel):
    kind: Literal["text"] = "text"
    text: str


class _MediaMessage(BaseModel):
    caption: Optional[str] = None
    # data: URL, bare base64 or a remote URL
    source: Optional[str] = None
    mimetype: Optional[str] = None


class ImageMessage(_MediaMessage):
    kind: Literal["image"] = "image"


class AudioMessage(_MediaMessage):
    kind: Literal["audio"] = "audio"


class VideoMessage(_MediaMessage):
    kind: Literal["video"] = "video"


class DocumentMessage(_MediaMessage):
    kind: Literal["document"] = "document"
    file_name: Optional[str] = None


class StickerMessage(_MediaMessage):
    kind: Literal["sticker"] = "sticker"


class UnrecognizedMessage(BaseModel):
    kind: Literal["unrecognized"] = "unrecognized"
    fields: list[str] = Field(default_factory=list)


MessageVariant = Union[
    TextMessage,
    ImageMessage,
    AudioMessage,
    VideoMessage,
    DocumentMessage,
    StickerMessage,
    UnrecognizedMessage,
]

MediaVariant = Union[
    ImageMessage, AudioMessage, VideoMessage, DocumentMessage, StickerMessage
]
