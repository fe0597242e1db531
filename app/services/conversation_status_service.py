"""
Conversation status engine.

States move ``unread -> in_progress -> resolved``. A new contact message
sends a conversation back to ``unread`` from any state; a sweep resolves
``in_progress`` conversations idle for longer than the threshold.

Status rows live in ``conversation_statuses`` keyed by (channel key,
session id), apart from the message partitions, so they can be reset
without replaying history. A missing row reads as ``unread``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.constants.messages import ConversationStatusValue, SenderKind
from app.exceptions import InvalidStatusTransition, StatusPersistenceError
from app.models.conversation_status import ConversationStatus
from app.schemas.conversation import ConversationStatusRead
from app.utils.timestamps import ensure_utc, utcnow

logger = logging.getLogger(__name__)

UNREAD = ConversationStatusValue.UNREAD
IN_PROGRESS = ConversationStatusValue.IN_PROGRESS
RESOLVED = ConversationStatusValue.RESOLVED

# Transitions an agent may request. Same-state requests are no-ops;
# returning to unread only happens through a new contact message.
MANUAL_TRANSITIONS = frozenset(
    {
        (UNREAD, IN_PROGRESS),
        (IN_PROGRESS, RESOLVED),
        (RESOLVED, IN_PROGRESS),
    }
)


def is_manual_transition_allowed(
    current: ConversationStatusValue, requested: ConversationStatusValue
) -> bool:
    return current == requested or (current, requested) in MANUAL_TRANSITIONS


def to_read(row: ConversationStatus) -> ConversationStatusRead:
    return ConversationStatusRead(
        channel_key=row.channel_key,
        session_id=row.session_id,
        status=ConversationStatusValue(row.status),
        last_activity_at=ensure_utc(row.last_activity_at),
        last_viewed_at=ensure_utc(row.last_viewed_at),
        auto_resolved_at=ensure_utc(row.auto_resolved_at),
    )


def default_status(channel_key: str, session_id: str) -> ConversationStatusRead:
    return ConversationStatusRead(channel_key=channel_key, session_id=session_id)


class ConversationStatusRepository:
    """Key-value access to status rows. Database errors surface as StatusPersistenceError."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, channel_key: str, session_id: str) -> Optional[ConversationStatus]:
        try:
            return (
                self.db.query(ConversationStatus)
                .filter(
                    ConversationStatus.channel_key == channel_key,
                    ConversationStatus.session_id == session_id,
                )
                .first()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StatusPersistenceError(str(e)) from e

    def get_or_create(
        self,
        channel_key: str,
        session_id: str,
        status: ConversationStatusValue = UNREAD,
        at: Optional[datetime] = None,
    ) -> ConversationStatus:
        row = self.get(channel_key, session_id)
        if row is not None:
            return row
        row = ConversationStatus(
            channel_key=channel_key,
            session_id=session_id,
            status=status.value,
            last_activity_at=at or utcnow(),
        )
        try:
            self.db.add(row)
            self.db.flush()
        except IntegrityError:
            # Another writer created it first
            self.db.rollback()
            existing = self.get(channel_key, session_id)
            if existing is None:
                raise StatusPersistenceError(
                    f"Could not create status for {channel_key}/{session_id}"
                )
            return existing
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StatusPersistenceError(str(e)) from e
        return row

    def save(self, row: ConversationStatus) -> ConversationStatus:
        try:
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StatusPersistenceError(str(e)) from e
        return row

    def list_for_channel(self, channel_key: str) -> List[ConversationStatus]:
        try:
            return (
                self.db.query(ConversationStatus)
                .filter(ConversationStatus.channel_key == channel_key)
                .all()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StatusPersistenceError(str(e)) from e

    def find_idle(self, cutoff: datetime) -> List[ConversationStatus]:
        try:
            return (
                self.db.query(ConversationStatus)
                .filter(
                    ConversationStatus.status == IN_PROGRESS.value,
                    ConversationStatus.last_activity_at < cutoff,
                )
                .order_by(ConversationStatus.last_activity_at)
                .all()
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StatusPersistenceError(str(e)) from e

    def delete(self, channel_key: str, session_id: Optional[str] = None) -> int:
        try:
            query = self.db.query(ConversationStatus).filter(
                ConversationStatus.channel_key == channel_key
            )
            if session_id is not None:
                query = query.filter(ConversationStatus.session_id == session_id)
            count = query.delete(synchronize_session=False)
            self.db.commit()
            return count
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StatusPersistenceError(str(e)) from e


class ConversationStatusService:
    def __init__(
        self,
        db: Session,
        idle_threshold: Optional[timedelta] = None,
        repository: Optional[ConversationStatusRepository] = None,
    ) -> None:
        self.db = db
        self.repository = repository or ConversationStatusRepository(db)
        if idle_threshold is None:
            idle_threshold = timedelta(
                hours=get_settings().status_idle_threshold_hours
            )
        self.idle_threshold = idle_threshold

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_status(self, channel_key: str, session_id: str) -> ConversationStatusRead:
        try:
            row = self.repository.get(channel_key, session_id)
        except StatusPersistenceError as e:
            logger.warning(
                "Status lookup failed for %s/%s, reading as unread: %s",
                channel_key,
                session_id,
                e,
            )
            return default_status(channel_key, session_id)
        if row is None:
            return default_status(channel_key, session_id)
        return to_read(row)

    def statuses_for_channel(self, channel_key: str) -> Dict[str, ConversationStatusValue]:
        """session_id -> status for every tracked conversation of a channel."""
        try:
            rows = self.repository.list_for_channel(channel_key)
        except StatusPersistenceError as e:
            logger.warning("Status scan failed for %s: %s", channel_key, e)
            return {}
        return {row.session_id: ConversationStatusValue(row.status) for row in rows}

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def on_new_message(
        self,
        channel_key: str,
        session_id: str,
        sender_kind: SenderKind,
        at: Optional[datetime] = None,
    ) -> Optional[ConversationStatusRead]:
        """
        Apply a stored message to the conversation status.

        A contact message forces ``unread`` from any state. Agent and AI
        messages only refresh the activity time; a conversation first seen
        through one of our own sends starts ``in_progress``.
        Persistence failures are logged and return None.
        """
        now = utcnow()
        activity = min(ensure_utc(at) or now, now)
        inbound = sender_kind == SenderKind.EXTERNAL_CONTACT
        try:
            row = self.repository.get_or_create(
                channel_key,
                session_id,
                status=UNREAD if inbound else IN_PROGRESS,
                at=activity,
            )
            previous = ensure_utc(row.last_activity_at)
            if previous is None or activity > previous:
                row.last_activity_at = activity
            # Any traffic ends an automatic resolution; only contact traffic reopens
            row.auto_resolved_at = None
            if inbound:
                row.status = UNREAD.value
            return to_read(self.repository.save(row))
        except StatusPersistenceError as e:
            logger.warning(
                "Could not update status for %s/%s: %s", channel_key, session_id, e
            )
            return None

    def mark_viewed(self, channel_key: str, session_id: str) -> ConversationStatusRead:
        """
        An agent opened the conversation: ``unread`` becomes ``in_progress``.
        Resolved conversations stay resolved. Best effort on persistence
        failure.
        """
        now = utcnow()
        try:
            row = self.repository.get_or_create(channel_key, session_id, at=now)
            if row.status == UNREAD.value:
                row.status = IN_PROGRESS.value
                row.last_activity_at = now
            row.auto_resolved_at = None
            row.last_viewed_at = now
            return to_read(self.repository.save(row))
        except StatusPersistenceError as e:
            logger.warning(
                "Could not record view of %s/%s: %s", channel_key, session_id, e
            )
            return ConversationStatusRead(
                channel_key=channel_key,
                session_id=session_id,
                status=IN_PROGRESS,
                last_viewed_at=now,
            )

    def set_status(
        self,
        channel_key: str,
        session_id: str,
        requested: ConversationStatusValue,
    ) -> ConversationStatusRead:
        """
        Manual status change. Raises InvalidStatusTransition for moves outside
        ``unread -> in_progress -> resolved`` (and ``resolved -> in_progress``).
        """
        requested = ConversationStatusValue(requested)
        current = self.get_status(channel_key, session_id).status
        if not is_manual_transition_allowed(current, requested):
            raise InvalidStatusTransition(current.value, requested.value)
        now = utcnow()
        try:
            row = self.repository.get_or_create(channel_key, session_id, at=now)
            if row.status != requested.value:
                row.status = requested.value
                row.last_activity_at = now
            if requested != RESOLVED:
                row.auto_resolved_at = None
            return to_read(self.repository.save(row))
        except StatusPersistenceError as e:
            logger.warning(
                "Could not persist status %s for %s/%s: %s",
                requested.value,
                channel_key,
                session_id,
                e,
            )
            return ConversationStatusRead(
                channel_key=channel_key,
                session_id=session_id,
                status=requested,
                last_activity_at=now,
            )

    def reset(self, channel_key: str, session_id: Optional[str] = None) -> int:
        """Forget stored statuses; the conversations read as unread again."""
        count = self.repository.delete(channel_key, session_id)
        logger.info("Reset %d status rows for %s", count, channel_key)
        return count

    def sweep(self, now: Optional[datetime] = None) -> List[ConversationStatusRead]:
        """
        Resolve ``in_progress`` conversations idle past the threshold.

        Unread and resolved conversations are never touched, so running the
        sweep again right away changes nothing.
        """
        now = ensure_utc(now) or utcnow()
        cutoff = now - self.idle_threshold
        resolved: List[ConversationStatusRead] = []
        for row in self.repository.find_idle(cutoff):
            last_activity = ensure_utc(row.last_activity_at)
            if last_activity is None or last_activity >= cutoff:
                continue
            row.status = RESOLVED.value
            row.auto_resolved_at = now
            try:
                resolved.append(to_read(self.repository.save(row)))
            except StatusPersistenceError as e:
                logger.warning(
                    "Could not auto-resolve %s/%s: %s",
                    row.channel_key,
                    row.session_id,
                    e,
                )
        if resolved:
            logger.info("Auto-resolved %d idle conversations", len(resolved))
        return resolved
