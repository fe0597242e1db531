"""
Per-channel message partition: insert, session history, read marking.

Rows are append-mostly. The only mutations are read marking and the
media offload that swaps an inline payload for a blob URL.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.constants.messages import SenderKind
from app.core.routing import ChannelRoute
from app.models.partition import build_partition_table
from app.schemas.messages import InsertResult, NewMessage, RawMessageRead
from app.utils.timestamps import ensure_utc

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500


def row_to_message(row: Any) -> RawMessageRead:
    data = dict(row._mapping)
    payload = data.pop("media_payload", None)
    data["created_at"] = ensure_utc(data["created_at"])
    data["media_pending"] = payload is not None
    data.setdefault("is_read", None)
    return RawMessageRead.model_validate(data)


class MessageStore:
    """Repository over one channel partition."""

    def __init__(self, db: Session, route: ChannelRoute) -> None:
        self.db = db
        self.route = route
        self.table = build_partition_table(route.partition_name, route.tracks_read)

    @property
    def partition_name(self) -> str:
        return self.route.partition_name

    @property
    def tracks_read(self) -> bool:
        return self.route.tracks_read

    def ensure_partition(self) -> None:
        """Create the partition table if missing."""
        self.table.create(bind=self.db.get_bind(), checkfirst=True)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, record: NewMessage) -> InsertResult:
        """
        Append a message. A provider message id already present makes this
        a no-op that returns the stored row (created=False).
        """
        if record.provider_message_id:
            existing = self.get_by_provider_id(record.provider_message_id)
            if existing is not None:
                return InsertResult(message=existing, created=False)

        values = record.model_dump(exclude={"is_read"})
        values["created_at"] = ensure_utc(record.created_at)
        values["sender_kind"] = record.sender_kind.value
        values["media_type"] = record.media_type.value
        if self.tracks_read:
            values["is_read"] = self._initial_read_state(record)

        try:
            result = self.db.execute(self.table.insert().values(**values))
            self.db.commit()
        except IntegrityError:
            # Concurrent delivery of the same provider id
            self.db.rollback()
            if record.provider_message_id:
                existing = self.get_by_provider_id(record.provider_message_id)
                if existing is not None:
                    return InsertResult(message=existing, created=False)
            raise
        message_id = result.inserted_primary_key[0]
        stored = self.get(message_id)
        return InsertResult(message=stored, created=True)

    @staticmethod
    def _initial_read_state(record: NewMessage) -> bool:
        if record.is_read is not None:
            return record.is_read
        # Only contact messages start unread; our own sends are read already
        return record.sender_kind != SenderKind.EXTERNAL_CONTACT

    def mark_read(self, session_id: str) -> int:
        """
        Mark the session's contact messages read. Partitions without an
        is_read column report 0 instead of failing.
        """
        if not self.tracks_read:
            logger.debug(
                "Partition %s does not track read state; skipping mark_read",
                self.partition_name,
            )
            return 0
        t = self.table
        result = self.db.execute(
            update(t)
            .where(
                t.c.session_id == session_id,
                or_(t.c.is_read.is_(False), t.c.is_read.is_(None)),
            )
            .values(is_read=True)
        )
        self.db.commit()
        return result.rowcount or 0

    def attach_media(
        self, message_id: int, media_ref: str, mime_type: str, placeholder: str
    ) -> bool:
        """Replace an inline payload with its blob URL and the placeholder caption."""
        t = self.table
        result = self.db.execute(
            update(t)
            .where(t.c.id == message_id)
            .values(
                media_ref=media_ref,
                media_payload=None,
                media_mime=mime_type,
                content=placeholder,
            )
        )
        self.db.commit()
        return (result.rowcount or 0) > 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, message_id: int) -> Optional[RawMessageRead]:
        row = self.db.execute(
            select(self.table).where(self.table.c.id == message_id)
        ).first()
        return row_to_message(row) if row is not None else None

    def get_by_provider_id(self, provider_message_id: str) -> Optional[RawMessageRead]:
        row = self.db.execute(
            select(self.table).where(
                self.table.c.provider_message_id == provider_message_id
            )
        ).first()
        return row_to_message(row) if row is not None else None

    def find_by_session(
        self,
        session_id: str,
        before: Optional[datetime] = None,
        before_id: Optional[int] = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> List[RawMessageRead]:
        """
        Newest-first page of one session.

        ``before`` is the oldest ``created_at`` the caller already holds;
        only strictly older rows come back. When ``before_id`` is given too,
        rows sharing that exact timestamp but with a smaller id are included,
        so equal timestamps at the page boundary are neither repeated nor lost.
        """
        t = self.table
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        query = select(t).where(t.c.session_id == session_id)
        if before is not None:
            cursor = ensure_utc(before)
            if before_id is not None:
                query = query.where(
                    or_(
                        t.c.created_at < cursor,
                        and_(t.c.created_at == cursor, t.c.id < before_id),
                    )
                )
            else:
                query = query.where(t.c.created_at < cursor)
        query = query.order_by(t.c.created_at.desc(), t.c.id.desc()).limit(limit)
        return [row_to_message(r) for r in self.db.execute(query)]

    def list_recent(self, limit: int) -> List[RawMessageRead]:
        """Most recent messages of the whole partition, newest first."""
        t = self.table
        query = (
            select(t).order_by(t.c.created_at.desc(), t.c.id.desc()).limit(max(1, limit))
        )
        return [row_to_message(r) for r in self.db.execute(query)]

    def count_since(self, cursor: Optional[datetime] = None) -> int:
        """Messages created strictly after ``cursor`` (all messages when None)."""
        t = self.table
        query = select(func.count()).select_from(t)
        if cursor is not None:
            query = query.where(t.c.created_at > ensure_utc(cursor))
        return int(self.db.execute(query).scalar() or 0)

    def find_inline_media(self, limit: int, after_id: int = 0) -> List[tuple[int, str]]:
        """(id, payload) of rows still carrying an inline payload, oldest first."""
        t = self.table
        query = (
            select(t.c.id, t.c.media_payload)
            .where(t.c.media_payload.is_not(None), t.c.id > after_id)
            .order_by(t.c.id)
            .limit(limit)
        )
        return [(row.id, row.media_payload) for row in self.db.execute(query)]
