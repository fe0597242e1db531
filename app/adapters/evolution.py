"""
Evolution-style WhatsApp gateway adapter.

Parses ``messages.upsert`` webhooks into ``InboundMessage`` records and
sends text/media through the gateway's REST API.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

import httpx
from pydantic import ValidationError

from app.adapters.base import BaseGatewayAdapter
from app.config import get_settings
from app.constants.messages import GENERIC_MEDIA_PLACEHOLDER, MediaType, SenderKind
from app.core.session_key import contact_name_for, parse_session_key, strip_jid
from app.exceptions import MalformedWebhook
from app.schemas.evolution import (
    AudioMessage,
    DocumentMessage,
    ImageMessage,
    MediaVariant,
    MessageVariant,
    StickerMessage,
    TextMessage,
    UnrecognizedMessage,
    VideoMessage,
    WebhookEnvelope,
    WebhookMessageData,
)
from app.schemas.messages import InboundMessage
from app.schemas.outbound import GatewaySendResult
from app.utils.timestamps import from_provider_timestamp, utcnow

logger = logging.getLogger(__name__)

MESSAGE_EVENTS = frozenset(
    {
        "messages.upsert",
        "messages_upsert",
        "messagesupsert",
        "messages.update",
        "messages_update",
        "messagesupdate",
        "send.message",
        "send_message",
    }
)

# Wrappers whose inner ``message`` holds the real content
_WRAPPER_FIELDS = (
    "ephemeralMessage",
    "viewOnceMessage",
    "viewOnceMessageV2",
    "documentWithCaptionMessage",
    "editedMessage",
)

_MEDIA_FIELDS: dict[str, type] = {
    "imageMessage": ImageMessage,
    "videoMessage": VideoMessage,
    "audioMessage": AudioMessage,
    "documentMessage": DocumentMessage,
    "stickerMessage": StickerMessage,
}

# Caption precedence after plain/extended text
_CAPTION_FIELDS = ("imageMessage", "audioMessage", "videoMessage", "documentMessage")


def is_message_event(event: Optional[str]) -> bool:
    return (event or "").strip().lower() in MESSAGE_EVENTS


def unwrap_message(message: dict[str, Any]) -> dict[str, Any]:
    """Peel ephemeral/view-once/document-with-caption wrappers."""
    current = message
    for _ in range(4):
        for field in _WRAPPER_FIELDS:
            inner = current.get(field)
            if isinstance(inner, dict) and isinstance(inner.get("message"), dict):
                # Keep the top-level inline payload when the wrapper hides it
                merged = dict(inner["message"])
                if "base64" in current and "base64" not in merged:
                    merged["base64"] = current["base64"]
                current = merged
                break
        else:
            return current
    return current


def _extract_text(message: dict[str, Any]) -> Optional[str]:
    conversation = message.get("conversation")
    if isinstance(conversation, str) and conversation:
        return conversation
    extended = message.get("extendedTextMessage")
    if isinstance(extended, dict):
        text = extended.get("text")
        if isinstance(text, str) and text:
            return text
    return None


def _extract_media(
    field: str, body: dict[str, Any], inline: Optional[str]
) -> MediaVariant:
    variant_cls = _MEDIA_FIELDS[field]
    caption = body.get("caption") if isinstance(body.get("caption"), str) else None
    source = inline or body.get("url") or body.get("base64")
    kwargs: dict[str, Any] = {
        "caption": caption or None,
        "source": source if isinstance(source, str) and source else None,
        "mimetype": body.get("mimetype") if isinstance(body.get("mimetype"), str) else None,
    }
    if variant_cls is DocumentMessage:
        name = body.get("fileName") or body.get("title")
        kwargs["file_name"] = name if isinstance(name, str) else None
    return variant_cls(**kwargs)


def classify_message(message: dict[str, Any]) -> MessageVariant:
    """Map the gateway's duck-typed ``message`` object onto one variant."""
    message = unwrap_message(message)
    inline = message.get("base64") if isinstance(message.get("base64"), str) else None
    for field in _MEDIA_FIELDS:
        body = message.get(field)
        if isinstance(body, dict):
            return _extract_media(field, body, inline)
    text = _extract_text(message)
    if text is not None:
        return TextMessage(text=text)
    return UnrecognizedMessage(fields=sorted(k for k in message if k != "base64"))


def extract_content(message: dict[str, Any]) -> str:
    """
    Plain text, then extended text, then media captions, then the
    generic media fallback.
    """
    message = unwrap_message(message)
    text = _extract_text(message)
    if text is not None:
        return text
    for field in _CAPTION_FIELDS:
        body = message.get(field)
        if isinstance(body, dict):
            caption = body.get("caption")
            if isinstance(caption, str) and caption:
                return caption
    return GENERIC_MEDIA_PLACEHOLDER


_VARIANT_MEDIA_TYPES: dict[str, MediaType] = {
    "text": MediaType.TEXT,
    "image": MediaType.IMAGE,
    "audio": MediaType.AUDIO,
    "video": MediaType.VIDEO,
    "document": MediaType.DOCUMENT,
    "sticker": MediaType.STICKER,
    "unrecognized": MediaType.TEXT,
}


class EvolutionAdapter(BaseGatewayAdapter):
    """Evolution API adapter: parse webhooks, send through /message/send* endpoints."""

    APIKEY_HEADER = "apikey"

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        ai_persona_names: Optional[list[str]] = None,
        timeout: float = 15.0,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
    ) -> None:
        self._api_url = (api_url or "").rstrip("/")
        self._api_key = api_key
        self._ai_personas = {n.strip().lower() for n in (ai_persona_names or []) if n}
        self._timeout = timeout
        self._client_factory = client_factory

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def verify_webhook(
        self, secret: Optional[str], request_headers: Optional[dict[str, str]] = None
    ) -> bool:
        """Compare the ``apikey`` header against the configured webhook token."""
        if not secret:
            return True
        for key, value in (request_headers or {}).items():
            if key.lower() == self.APIKEY_HEADER:
                return value == secret
        return False

    def classify_sender(self, from_me: bool, sender_name: Optional[str]) -> SenderKind:
        if not from_me:
            return SenderKind.EXTERNAL_CONTACT
        if sender_name and sender_name.strip().lower() in self._ai_personas:
            return SenderKind.AI_AGENT
        return SenderKind.INTERNAL_AGENT

    def parse_webhook(self, raw_payload: dict[str, Any]) -> Optional[InboundMessage]:
        """
        Normalize a webhook envelope.

        Returns None for non-message events (acknowledged, nothing stored).
        Raises MalformedWebhook when a message event lacks key/message.
        """
        try:
            envelope = WebhookEnvelope.model_validate(raw_payload)
        except ValidationError as e:
            raise MalformedWebhook(f"Invalid webhook envelope: {e}") from e
        if not is_message_event(envelope.event):
            return None
        data = envelope.data
        if isinstance(data, list):
            # Some gateway versions batch a single message in a list
            if len(data) > 1:
                logger.warning(
                    "Batched %s event from %s carries %d messages; storing the first only",
                    envelope.event,
                    envelope.instance,
                    len(data),
                )
            data = data[0] if data else None
        if not isinstance(data, dict):
            raise MalformedWebhook("Message event without a data object")
        try:
            parsed = WebhookMessageData.model_validate(data)
        except ValidationError as e:
            raise MalformedWebhook(f"Message event without key/message: {e}") from e

        session_id = strip_jid(parsed.key.remote_jid)
        if not session_id:
            raise MalformedWebhook("Empty remoteJid")
        variant = classify_message(parsed.message)
        media_type = _VARIANT_MEDIA_TYPES[variant.kind]
        media_source = getattr(variant, "source", None)
        media_mime = getattr(variant, "mimetype", None)
        sender_kind = self.classify_sender(parsed.key.from_me, parsed.push_name)
        # pushName on our own sends is the agent's name, not the contact's
        push_name = parsed.push_name if not parsed.key.from_me else None

        return InboundMessage(
            instance=envelope.instance,
            provider_message_id=parsed.key.id or None,
            session_id=session_id,
            contact_phone=parse_session_key(session_id).phone,
            contact_name=contact_name_for(session_id, push_name),
            sender_kind=sender_kind,
            media_type=media_type,
            content=extract_content(parsed.message),
            media_source=media_source,
            media_mime=media_mime,
            created_at=from_provider_timestamp(parsed.message_timestamp) or utcnow(),
        )

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        if self._client_factory is not None:
            return self._client_factory()
        return httpx.AsyncClient(timeout=self._timeout)

    async def _post(self, path: str, payload: dict[str, Any]) -> GatewaySendResult:
        if not self._api_url:
            raise RuntimeError("Gateway API URL is not configured")
        headers = {self.APIKEY_HEADER: self._api_key} if self._api_key else {}
        async with self._client() as client:
            response = await client.post(
                f"{self._api_url}{path}", json=payload, headers=headers
            )
            response.raise_for_status()
            body = response.json() if response.content else {}
        key = body.get("key") if isinstance(body, dict) else None
        message_id = key.get("id") if isinstance(key, dict) else None
        return GatewaySendResult(success=True, provider_message_id=message_id)

    async def send_text(self, instance: str, number: str, text: str) -> GatewaySendResult:
        return await self._post(
            f"/message/sendText/{instance}", {"number": number, "text": text}
        )

    async def send_media(
        self,
        instance: str,
        number: str,
        media: str,
        media_type: MediaType,
        caption: Optional[str] = None,
        mime_type: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> GatewaySendResult:
        if media_type == MediaType.AUDIO:
            return await self._post(
                f"/message/sendWhatsAppAudio/{instance}",
                {"number": number, "audio": media},
            )
        if media_type == MediaType.STICKER:
            return await self._post(
                f"/message/sendSticker/{instance}",
                {"number": number, "sticker": media},
            )
        payload: dict[str, Any] = {
            "number": number,
            "mediatype": media_type.value,
            "media": media,
        }
        if caption:
            payload["caption"] = caption
        if mime_type:
            payload["mimetype"] = mime_type
        if file_name:
            payload["fileName"] = file_name
        return await self._post(f"/message/sendMedia/{instance}", payload)


def build_evolution_adapter() -> EvolutionAdapter:
    settings = get_settings()
    return EvolutionAdapter(
        api_url=settings.evolution_api_url,
        api_key=settings.evolution_api_key,
        ai_persona_names=settings.ai_persona_names,
        timeout=settings.evolution_timeout_seconds,
    )
