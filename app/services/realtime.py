"""
In-process realtime fan-out.

Writers publish small ``ChangeNotification``s per channel; each viewer
holds a ``Subscription`` queue and a ``ConversationListProjection`` that
answers a notification by recomputing the conversation list from the
store. Notifications never carry the row itself, so the pushed view
cannot drift from what the store holds.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from datetime import datetime
from enum import StrEnum
from threading import Lock
from typing import Any, Callable, Dict, List, Optional, Set

from pydantic import BaseModel, Field

from app.services.conversation_aggregator import ConversationList
from app.utils.timestamps import utcnow

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 100
DEFAULT_SEEN_LIMIT = 5000


class ChangeKind(StrEnum):
    MESSAGE_INSERTED = "message_inserted"
    STATUS_CHANGED = "status_changed"


class EventType(StrEnum):
    """Events sent to WebSocket viewers."""

    CONVERSATIONS = "conversations"
    CONNECTION_ACK = "connection_ack"
    HEARTBEAT = "heartbeat"


class ChangeNotification(BaseModel):
    kind: ChangeKind
    channel_key: str
    session_id: Optional[str] = None
    message_id: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)


class RealtimeEvent(BaseModel):
    """Outbound WebSocket frame."""

    event: EventType
    channel_key: str
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


class Subscription:
    """Bounded queue of notifications for one viewer of one channel."""

    def __init__(self, channel_key: str, maxsize: int = DEFAULT_QUEUE_SIZE) -> None:
        self.channel_key = channel_key
        self._queue: asyncio.Queue[ChangeNotification] = asyncio.Queue(maxsize=maxsize)
        try:
            self._loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None
        self.dropped = 0

    def offer(self, notification: ChangeNotification) -> None:
        if self._queue.full():
            # Every notification triggers a full refetch, so the oldest is redundant
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(notification)

    def deliver(self, notification: ChangeNotification) -> None:
        """Hand the notification to the subscriber's loop from any thread."""
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if self._loop is None or running is self._loop:
            self.offer(notification)
        elif not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self.offer, notification)

    async def get(self) -> ChangeNotification:
        return await self._queue.get()

    def pending(self) -> int:
        return self._queue.qsize()


class RealtimeHub:
    """channel_key -> subscriptions. Publishing never blocks the writer."""

    def __init__(self) -> None:
        self._subscriptions: Dict[str, Set[Subscription]] = {}
        self._lock = Lock()

    def subscribe(self, channel_key: str, maxsize: int = DEFAULT_QUEUE_SIZE) -> Subscription:
        subscription = Subscription(channel_key, maxsize=maxsize)
        with self._lock:
            self._subscriptions.setdefault(channel_key, set()).add(subscription)
        logger.debug("Realtime subscription added for %s", channel_key)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._subscriptions.get(subscription.channel_key)
            if subscribers is None:
                return
            subscribers.discard(subscription)
            if not subscribers:
                del self._subscriptions[subscription.channel_key]

    def subscriber_count(self, channel_key: str) -> int:
        with self._lock:
            return len(self._subscriptions.get(channel_key, ()))

    def publish(self, notification: ChangeNotification) -> int:
        with self._lock:
            subscribers = list(self._subscriptions.get(notification.channel_key, ()))
        for subscription in subscribers:
            try:
                subscription.deliver(notification)
            except Exception as e:
                logger.warning(
                    "Dropping notification for a %s subscriber: %s",
                    notification.channel_key,
                    e,
                )
        return len(subscribers)


class ConversationListProjection:
    """
    A viewer's conversation list.

    ``apply`` ignores a message notification whose id was already applied;
    anything else triggers a reload through ``loader``.
    """

    def __init__(
        self,
        loader: Callable[[], ConversationList],
        seen_limit: int = DEFAULT_SEEN_LIMIT,
    ) -> None:
        self._loader = loader
        self._seen: "OrderedDict[int, None]" = OrderedDict()
        self._seen_limit = seen_limit
        self.current = ConversationList()
        self.reloads = 0

    def is_known(self, message_id: int) -> bool:
        return message_id in self._seen

    def _remember(self, message_id: int) -> None:
        self._seen[message_id] = None
        while len(self._seen) > self._seen_limit:
            self._seen.popitem(last=False)

    def refresh(self) -> ConversationList:
        self.current = self._loader()
        self.reloads += 1
        return self.current

    def apply(self, notification: ChangeNotification) -> bool:
        """Return True when the list was recomputed."""
        if notification.message_id is not None:
            if self.is_known(notification.message_id):
                return False
            self._remember(notification.message_id)
        self.refresh()
        return True

    def apply_all(self, notifications: List[ChangeNotification]) -> bool:
        """Coalesce a burst into at most one reload."""
        fresh = False
        for notification in notifications:
            if notification.message_id is not None:
                if self.is_known(notification.message_id):
                    continue
                self._remember(notification.message_id)
            fresh = True
        if fresh:
            self.refresh()
        return fresh

    def snapshot(self) -> Dict[str, Any]:
        return {
            "conversations": [c.model_dump(mode="json") for c in self.current.conversations],
            "error": self.current.error,
        }
