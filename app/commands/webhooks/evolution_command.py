"""
Command to ingest an Evolution-style WhatsApp webhook.

normalize -> route -> dedupe -> offload media -> store -> status -> fan-out.

Every problem except an unreachable database is acknowledged with a 2xx
body: the gateway's only reaction to an error is to deliver the same
message again.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.adapters.base import BaseGatewayAdapter
from app.config import get_settings
from app.constants.messages import (
    GENERIC_MEDIA_PLACEHOLDER,
    MediaType,
    placeholder_for,
)
from app.core.routing import ChannelRoute, ChannelRouter
from app.exceptions import MalformedWebhook, MediaDecodeError, StorageUploadError
from app.schemas.messages import IngestResult, InboundMessage, NewMessage
from app.services.conversation_status_service import ConversationStatusService
from app.services.media_offload_service import MediaOffloadService, is_inline_payload
from app.services.message_store import MessageStore
from app.services.realtime import ChangeKind, ChangeNotification, RealtimeHub
from app.services.storage import StorageBackend

STATUS_STORED = "stored"
STATUS_DUPLICATE = "duplicate"
STATUS_IGNORED = "ignored"
STATUS_ERROR = "error"

OFFLOAD_INLINE = "inline"


def estimated_size(payload: str) -> int:
    """Decoded size of a base64 payload, without decoding it."""
    body = payload.split(",", 1)[1] if payload.startswith("data:") else payload
    return len(body.strip()) * 3 // 4


def is_remote_url(value: Optional[str]) -> bool:
    return bool(value) and value.strip().lower().startswith(("http://", "https://"))


class EvolutionWebhookCommand:
    """
    Ingest one webhook delivery for a channel identifier (slug, instance
    name, channel id or alias).
    """

    def __init__(
        self,
        db: Session,
        adapter: BaseGatewayAdapter,
        router: ChannelRouter,
        storage: StorageBackend,
        hub: Optional[RealtimeHub] = None,
        offloader: Optional[MediaOffloadService] = None,
    ) -> None:
        self.db = db
        self.settings = get_settings()
        self.adapter = adapter
        self.router = router
        self.hub = hub
        self.offloader = offloader or MediaOffloadService(storage)
        self.status_service = ConversationStatusService(db)
        self.logger = logging.getLogger(__name__)

    async def execute(self, identifier: str, payload: Any) -> IngestResult:
        """
        Returns:
            IngestResult: acknowledgment body; ``status`` is one of
                stored / duplicate / ignored / error.

        Raises:
            SQLAlchemyError: only when the database itself fails.
        """
        if not isinstance(payload, dict):
            self.logger.warning("Webhook for %s with a non-object body", identifier)
            return IngestResult(status=STATUS_IGNORED, reason="malformed")
        try:
            inbound = self.adapter.parse_webhook(payload)
        except MalformedWebhook as e:
            self.logger.warning("Malformed webhook for %s: %s", identifier, e)
            return IngestResult(status=STATUS_IGNORED, reason="malformed")
        if inbound is None:
            event = payload.get("event")
            self.logger.debug("Ignoring webhook event %r for %s", event, identifier)
            return IngestResult(status=STATUS_IGNORED, reason=f"event {event!r} not handled")

        route = self.router.resolve_first(identifier, inbound.instance)
        try:
            return await self._ingest(route, inbound)
        except SQLAlchemyError:
            raise
        except Exception as e:
            self.logger.exception(
                "Webhook ingestion failed for %s (%s)", identifier, route.partition_name
            )
            return IngestResult(
                status=STATUS_ERROR, reason=type(e).__name__, partition=route.partition_name
            )

    async def _ingest(self, route: ChannelRoute, inbound: InboundMessage) -> IngestResult:
        store = MessageStore(self.db, route)
        if inbound.provider_message_id:
            existing = store.get_by_provider_id(inbound.provider_message_id)
            if existing is not None:
                # Provider retry; skip the upload as well as the insert
                return IngestResult(
                    status=STATUS_DUPLICATE,
                    partition=route.partition_name,
                    message_id=existing.id,
                    duplicate=True,
                    media_ref=existing.media_ref,
                )

        record = await self._build_record(inbound)
        result = store.insert(record)
        message = result.message
        if not result.created:
            return IngestResult(
                status=STATUS_DUPLICATE,
                partition=route.partition_name,
                message_id=message.id,
                duplicate=True,
                media_ref=message.media_ref,
            )

        self.status_service.on_new_message(
            route.channel_key, message.session_id, message.sender_kind, message.created_at
        )
        self._publish(route, message.session_id, message.id)
        self.logger.info(
            "Stored %s message %s in %s (session %s)",
            message.media_type.value,
            message.id,
            route.partition_name,
            message.session_id,
        )
        return IngestResult(
            status=STATUS_STORED,
            partition=route.partition_name,
            message_id=message.id,
            media_ref=message.media_ref,
        )

    async def _build_record(self, inbound: InboundMessage) -> NewMessage:
        record = NewMessage(
            provider_message_id=inbound.provider_message_id,
            session_id=inbound.session_id,
            contact_name=inbound.contact_name,
            content=inbound.content,
            sender_kind=inbound.sender_kind,
            media_type=inbound.media_type,
            media_mime=inbound.media_mime,
            created_at=inbound.created_at,
        )
        if inbound.media_type == MediaType.TEXT:
            return record
        if record.content == GENERIC_MEDIA_PLACEHOLDER:
            record.content = placeholder_for(inbound.media_type)

        source = inbound.media_source
        if is_remote_url(source):
            record.media_ref = source.strip()
        elif is_inline_payload(source):
            await self._offload_into(record, source)
        elif source:
            self.logger.warning(
                "Unusable media source for %s; storing without media", inbound.session_id
            )
        return record

    async def _offload_into(self, record: NewMessage, payload: str) -> None:
        if (
            self.settings.media_offload_mode != OFFLOAD_INLINE
            or estimated_size(payload) > self.settings.media_inline_max_bytes
        ):
            record.media_payload = payload
            return
        try:
            result = await self.offloader.offload(payload)
        except MediaDecodeError as e:
            self.logger.warning(
                "Discarding corrupt media from %s: %s", record.session_id, e
            )
            return
        except StorageUploadError as e:
            # Left inline for the batch migration to retry
            self.logger.warning(
                "Deferring media upload for %s: %s", record.session_id, e
            )
            record.media_payload = payload
            return
        record.media_ref = result.url
        record.media_mime = result.mime_type

    def _publish(self, route: ChannelRoute, session_id: str, message_id: int) -> None:
        if self.hub is None:
            return
        self.hub.publish(
            ChangeNotification(
                kind=ChangeKind.MESSAGE_INSERTED,
                channel_key=route.channel_key,
                session_id=session_id,
                message_id=message_id,
            )
        )
