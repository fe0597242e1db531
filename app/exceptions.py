"""
Error taxonomy for ingestion, routing, media offload and status tracking.

Most of these are expected degradations: callers log them and keep going.
Only the channel-management and manual-status errors reach API clients.
"""

from __future__ import annotations

from typing import Optional


class InboxError(Exception):
    """Base class for every domain error raised by this service."""


class MalformedWebhook(InboxError):
    """Webhook payload lacks the minimal key/message structure. Acknowledged, never retried."""


class UnknownChannel(InboxError):
    """Channel key resolves to nothing; routing falls back to the default partition."""

    def __init__(self, channel_key: str) -> None:
        super().__init__(f"Unknown channel: {channel_key!r}")
        self.channel_key = channel_key


class MediaDecodeError(InboxError):
    """Inline payload is not valid base64 (or is empty)."""


class StorageUploadError(InboxError):
    """Blob storage write failed or timed out. Transient; the row is left for a retry pass."""


class StatusPersistenceError(InboxError):
    """Status store read/write failed. Best-effort; readers fall back to 'unread'."""


class InvalidStatusTransition(InboxError):
    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"Cannot change status from {current!r} to {requested!r}")
        self.current = current
        self.requested = requested


class ChannelConflict(InboxError):
    """Slug, alias, instance or partition name already belongs to another channel."""

    def __init__(self, message: str, channel_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.channel_id = channel_id


class PartitionRelocationError(InboxError):
    """Renaming the physical partition failed; the mapping change was rolled back."""
