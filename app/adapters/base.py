"""
Gateway adapter interface.

Adapters encapsulate gateway-specific logic and expose the canonical
inbound message shape to the ingestion pipeline.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from app.constants.messages import MediaType
from app.schemas.messages import InboundMessage
from app.schemas.outbound import GatewaySendResult


class BaseGatewayAdapter(ABC):
    """Contract for messaging gateways. New gateways implement this interface."""

    @abstractmethod
    def parse_webhook(self, raw_payload: dict[str, Any]) -> Optional[InboundMessage]:
        """
        Normalize a webhook payload. Return None for events that are
        acknowledged without a store write; raise MalformedWebhook when a
        message event lacks the minimal key/message structure.
        """
        ...

    @abstractmethod
    async def send_text(
        self, instance: str, number: str, text: str
    ) -> GatewaySendResult: ...

    @abstractmethod
    async def send_media(
        self,
        instance: str,
        number: str,
        media: str,
        media_type: MediaType,
        caption: Optional[str] = None,
        mime_type: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> GatewaySendResult: ...

    def verify_webhook(
        self, secret: Optional[str], request_headers: Optional[dict[str, str]] = None
    ) -> bool:
        """
        Verify webhook request (e.g. shared token). Override if the gateway supports it.
        Return True if valid or verification not required; False to reject.
        """
        return True
