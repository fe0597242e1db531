"""
Command to send an outbound message through the gateway.

Resolves the channel, sends via the gateway API, then records the message
in the channel partition exactly like an inbound row, with
``sender_kind=internal_agent``.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx
from fastapi import HTTPException
from sqlalchemy.orm import Session

from app.adapters.base import BaseGatewayAdapter
from app.constants.messages import SenderKind, placeholder_for
from app.core.routing import ChannelRoute, ChannelRouter
from app.core.session_key import contact_name_for, parse_session_key
from app.exceptions import MediaDecodeError, StorageUploadError
from app.schemas.messages import NewMessage
from app.schemas.outbound import (
    GatewaySendResult,
    OutboundSendResult,
    SendMediaRequest,
    SendTextRequest,
)
from app.services.conversation_status_service import ConversationStatusService
from app.services.media_offload_service import MediaOffloadService
from app.services.message_store import MessageStore
from app.services.realtime import ChangeKind, ChangeNotification, RealtimeHub
from app.services.storage import StorageBackend
from app.utils.timestamps import utcnow

logger = logging.getLogger(__name__)


class SendOutboundCommand:
    """
    Command to send an agent message to a contact of a channel.
    Resolves channel, sends, persists on success.
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
        self.adapter = adapter
        self.router = router
        self.hub = hub
        self.offloader = offloader or MediaOffloadService(storage)
        self.status_service = ConversationStatusService(db)

    def _route(self, channel_key: str) -> ChannelRoute:
        route = self.router.lookup(channel_key)
        if route is None:
            raise HTTPException(status_code=404, detail="Channel not found")
        if not route.instance_name:
            raise HTTPException(
                status_code=400,
                detail=f"Channel {route.slug} has no gateway instance configured",
            )
        return route

    async def execute_text(self, body: SendTextRequest) -> OutboundSendResult:
        """
        Raises:
            HTTPException: 404 unknown channel, 400 channel without instance,
                502 if the gateway failed to send.
        """
        route = self._route(body.channel_key)
        number = parse_session_key(body.counterparty_key).phone
        try:
            result = await self.adapter.send_text(route.instance_name, number, body.text)
        except (httpx.HTTPError, RuntimeError) as e:
            logger.warning("Gateway send_text failed for %s: %s", route.slug, e)
            raise HTTPException(
                status_code=502, detail="Gateway failed to send message"
            ) from e
        return self._record(
            route,
            body.counterparty_key,
            result,
            NewMessage(
                provider_message_id=result.provider_message_id,
                session_id=body.counterparty_key,
                contact_name=contact_name_for(body.counterparty_key),
                content=body.text,
                sender_kind=SenderKind.INTERNAL_AGENT,
                created_at=utcnow(),
            ),
        )

    async def execute_media(self, body: SendMediaRequest) -> OutboundSendResult:
        """
        Inline bytes are offloaded first so the gateway gets a URL and the
        stored row carries ``media_ref``.

        Raises:
            HTTPException: 400 for undecodable media, 502 when storage or
                the gateway fails.
        """
        route = self._route(body.channel_key)
        number = parse_session_key(body.counterparty_key).phone
        media_url = body.media_url
        mime_type: Optional[str] = None
        if body.media_base64:
            try:
                offloaded = await self.offloader.offload(body.media_base64)
            except MediaDecodeError as e:
                raise HTTPException(status_code=400, detail=str(e)) from e
            except StorageUploadError as e:
                logger.warning("Outbound media upload failed: %s", e)
                raise HTTPException(
                    status_code=502, detail="Media storage is unavailable"
                ) from e
            media_url = offloaded.url
            mime_type = offloaded.mime_type
        try:
            result = await self.adapter.send_media(
                route.instance_name,
                number,
                media_url,
                body.media_type,
                caption=body.caption,
                mime_type=mime_type,
                file_name=body.file_name,
            )
        except (httpx.HTTPError, RuntimeError) as e:
            logger.warning("Gateway send_media failed for %s: %s", route.slug, e)
            raise HTTPException(
                status_code=502, detail="Gateway failed to send media"
            ) from e
        return self._record(
            route,
            body.counterparty_key,
            result,
            NewMessage(
                provider_message_id=result.provider_message_id,
                session_id=body.counterparty_key,
                contact_name=contact_name_for(body.counterparty_key),
                content=body.caption or placeholder_for(body.media_type),
                sender_kind=SenderKind.INTERNAL_AGENT,
                media_type=body.media_type,
                media_ref=media_url,
                media_mime=mime_type,
                created_at=utcnow(),
            ),
        )

    def _record(
        self,
        route: ChannelRoute,
        session_id: str,
        result: GatewaySendResult,
        record: NewMessage,
    ) -> OutboundSendResult:
        if not result.success:
            raise HTTPException(status_code=502, detail="Gateway failed to send message")
        stored = MessageStore(self.db, route).insert(record)
        if stored.created:
            self.status_service.on_new_message(
                route.channel_key, session_id, SenderKind.INTERNAL_AGENT, record.created_at
            )
            if self.hub is not None:
                self.hub.publish(
                    ChangeNotification(
                        kind=ChangeKind.MESSAGE_INSERTED,
                        channel_key=route.channel_key,
                        session_id=session_id,
                        message_id=stored.message.id,
                    )
                )
        return OutboundSendResult(
            success=True,
            provider_message_id=result.provider_message_id,
            message=stored.message,
        )
