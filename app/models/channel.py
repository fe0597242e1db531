"""Channel registry: one row per logical channel, plus the aliases that route to it."""

from __future__ import annotations

import uuid

from sqlalchemy import Boolean, Column, ForeignKey, String
from sqlalchemy.orm import relationship

from app.db import Base
from app.models.mixins import TimestampMixin


class Channel(Base, TimestampMixin):
    """A store/location endpoint with its own message partition and gateway instance."""

    __tablename__ = "channels"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    slug = Column(String(128), unique=True, nullable=False, index=True)
    display_name = Column(String(256), nullable=False)
    instance_name = Column(String(256), unique=True, nullable=True)
    partition_name = Column(String(63), unique=True, nullable=False)
    # Partition carries an is_read column
    tracks_read = Column(Boolean, nullable=False, default=True)

    aliases = relationship(
        "ChannelAlias",
        back_populates="channel",
        cascade="all, delete-orphan",
        order_by="ChannelAlias.alias",
    )


class ChannelAlias(Base):
    """Extra routing key (opaque instance id, legacy slug) for a channel. Stored lower-cased."""

    __tablename__ = "channel_aliases"

    alias = Column(String(256), primary_key=True)
    channel_id = Column(
        String(36),
        ForeignKey("channels.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    channel = relationship("Channel", back_populates="aliases")
