"""
Channel registry CRUD.

Every mutation keeps the mapping and the physical partition consistent
and invalidates the routing cache before returning.
"""

from __future__ import annotations

import logging
from threading import Lock
from typing import List, Optional

from sqlalchemy import inspect, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.routing import ChannelRoute, ChannelRouter, normalize_key
from app.exceptions import ChannelConflict, PartitionRelocationError
from app.models.channel import Channel, ChannelAlias
from app.models.partition import (
    build_partition_table,
    is_valid_partition_name,
    partition_name_for_slug,
)
from app.schemas.channel import ChannelCreate, ChannelUpdate
from app.services.message_store import MessageStore

logger = logging.getLogger(__name__)

# Serializes creation inside one process; the unique constraints cover the rest
_create_lock = Lock()


def route_for(channel: Channel) -> ChannelRoute:
    return ChannelRoute(
        channel_id=channel.id,
        slug=channel.slug,
        partition_name=channel.partition_name,
        tracks_read=bool(channel.tracks_read),
        instance_name=channel.instance_name,
        display_name=channel.display_name,
    )


class ChannelService:
    def __init__(self, db: Session, router: ChannelRouter) -> None:
        self.db = db
        self.router = router

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_channel(self, channel_id: str) -> Optional[Channel]:
        return self.db.query(Channel).filter(Channel.id == channel_id).first()

    def get_channel_by_slug(self, slug: str) -> Optional[Channel]:
        return self.db.query(Channel).filter(Channel.slug == slug).first()

    def get_channels(self, skip: int = 0, limit: int = 100) -> List[Channel]:
        return (
            self.db.query(Channel).order_by(Channel.slug).offset(skip).limit(limit).all()
        )

    def get_channels_query(self):
        """Get a query for channels (for pagination)."""
        return self.db.query(Channel).order_by(Channel.slug)

    def is_default_channel(self, channel: Channel) -> bool:
        """The catch-all is identified by its partition as well as its slug."""
        default = self.router.default_route
        return (
            channel.partition_name == default.partition_name
            or channel.slug == default.slug
        )

    def partition_exists(self, partition_name: str) -> bool:
        return inspect(self.db.get_bind()).has_table(partition_name)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def _check_free(
        self,
        *,
        slug: Optional[str] = None,
        instance_name: Optional[str] = None,
        partition_name: Optional[str] = None,
        aliases: Optional[list[str]] = None,
        exclude_id: Optional[str] = None,
    ) -> None:
        def taken(column, value) -> Optional[Channel]:
            query = self.db.query(Channel).filter(column == value)
            if exclude_id:
                query = query.filter(Channel.id != exclude_id)
            return query.first()

        if slug and (owner := taken(Channel.slug, slug)):
            raise ChannelConflict(f"Slug {slug!r} is already used", owner.id)
        if instance_name and (owner := taken(Channel.instance_name, instance_name)):
            raise ChannelConflict(f"Instance {instance_name!r} is already used", owner.id)
        if partition_name and (owner := taken(Channel.partition_name, partition_name)):
            raise ChannelConflict(
                f"Partition {partition_name!r} is already used", owner.id
            )
        for alias in aliases or []:
            existing = (
                self.db.query(ChannelAlias)
                .filter(ChannelAlias.alias == normalize_key(alias))
                .first()
            )
            if existing is not None and existing.channel_id != exclude_id:
                raise ChannelConflict(
                    f"Alias {alias!r} is already used", existing.channel_id
                )

    def create_channel(self, data: ChannelCreate, reuse_existing: bool = False) -> Channel:
        """
        Register a channel and create its partition.

        A concurrent or repeated creation of the same slug either returns the
        existing channel (``reuse_existing``) or raises ChannelConflict; a
        second partition is never created for the same slug.
        """
        partition_name = data.partition_name or partition_name_for_slug(data.slug)
        if not is_valid_partition_name(partition_name):
            raise ValueError(f"Invalid partition name: {partition_name!r}")

        with _create_lock:
            existing = self.get_channel_by_slug(data.slug)
            if existing is not None:
                if reuse_existing:
                    return existing
                raise ChannelConflict(f"Slug {data.slug!r} is already used", existing.id)
            self._check_free(
                instance_name=data.instance_name,
                partition_name=partition_name,
                aliases=data.aliases,
            )
            channel = Channel(
                slug=data.slug,
                display_name=data.display_name,
                instance_name=data.instance_name,
                partition_name=partition_name,
                tracks_read=data.tracks_read,
            )
            channel.aliases = [
                ChannelAlias(alias=normalize_key(a))
                for a in dict.fromkeys(data.aliases)
                if normalize_key(a)
            ]
            self.db.add(channel)
            try:
                self.db.flush()
                MessageStore(self.db, route_for(channel)).table.create(
                    bind=self.db.connection(), checkfirst=True
                )
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                winner = self.get_channel_by_slug(data.slug)
                if winner is not None and reuse_existing:
                    return winner
                raise ChannelConflict(
                    f"Channel {data.slug!r} conflicts with an existing channel",
                    winner.id if winner else None,
                ) from e
            finally:
                self.router.invalidate()
        self.db.refresh(channel)
        logger.info(
            "Created channel %s -> partition %s", channel.slug, channel.partition_name
        )
        return channel

    def ensure_default_channel(self) -> Channel:
        """Create the catch-all channel and its partition when missing."""
        default = self.router.default_route
        channel = self.get_channel_by_slug(default.slug)
        if channel is None:
            channel = self.create_channel(
                ChannelCreate(
                    slug=default.slug,
                    display_name=default.slug.replace("-", " ").title(),
                    partition_name=default.partition_name,
                ),
                reuse_existing=True,
            )
        else:
            MessageStore(self.db, route_for(channel)).ensure_partition()
        return channel

    # ------------------------------------------------------------------
    # Update / rename
    # ------------------------------------------------------------------

    def update_channel(self, channel_id: str, data: ChannelUpdate) -> Optional[Channel]:
        """
        Apply a rename/relabel. A new partition name relocates the physical
        table in the same transaction as the mapping change; if relocation
        fails the mapping change is rolled back.
        """
        channel = self.get_channel(channel_id)
        if channel is None:
            return None
        changes = data.model_dump(exclude_unset=True)
        new_partition = changes.get("partition_name")
        if new_partition is not None and not is_valid_partition_name(new_partition):
            raise ValueError(f"Invalid partition name: {new_partition!r}")
        if new_partition == channel.partition_name:
            new_partition = None
        if self.is_default_channel(channel) and (
            changes.get("slug", channel.slug) != channel.slug or new_partition
        ):
            raise ChannelConflict(
                "The default channel cannot change its slug or partition", channel.id
            )
        self._check_free(
            slug=changes.get("slug"),
            instance_name=changes.get("instance_name"),
            partition_name=new_partition,
            exclude_id=channel.id,
        )
        old_partition = channel.partition_name
        try:
            for key, value in changes.items():
                setattr(channel, key, value)
            self.db.flush()
            if new_partition:
                self._relocate_partition(old_partition, new_partition)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ChannelConflict(str(e.orig)) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PartitionRelocationError(
                f"Could not move {old_partition} to {new_partition}: {e}"
            ) from e
        finally:
            self.router.invalidate()
        self.db.refresh(channel)
        if new_partition:
            logger.info("Relocated partition %s -> %s", old_partition, new_partition)
        return channel

    def _relocate_partition(self, old_name: str, new_name: str) -> None:
        # Names are validated against the partition pattern before reaching DDL
        bind = self.db.connection()
        quote = bind.dialect.identifier_preparer.quote
        self.db.execute(
            text(f"ALTER TABLE {quote(old_name)} RENAME TO {quote(new_name)}")
        )
        # Index and sequence names are schema-wide; move them with the table
        # so the old name can be reused by another channel
        if bind.dialect.name == "postgresql":
            for suffix in ("pkey", "provider_message_id_key"):
                self.db.execute(
                    text(
                        f"ALTER INDEX IF EXISTS {quote(f'{old_name}_{suffix}')} "
                        f"RENAME TO {quote(f'{new_name}_{suffix}')}"
                    )
                )
            self.db.execute(
                text(
                    f"ALTER SEQUENCE IF EXISTS {quote(f'{old_name}_id_seq')} "
                    f"RENAME TO {quote(f'{new_name}_id_seq')}"
                )
            )
        for old_index in build_partition_table(old_name).indexes:
            self.db.execute(text(f"DROP INDEX IF EXISTS {quote(old_index.name)}"))
        for new_index in build_partition_table(new_name).indexes:
            new_index.create(bind=bind, checkfirst=True)

    # ------------------------------------------------------------------
    # Aliases / delete
    # ------------------------------------------------------------------

    def add_alias(self, channel_id: str, alias: str) -> Optional[Channel]:
        channel = self.get_channel(channel_id)
        if channel is None:
            return None
        key = normalize_key(alias)
        if not key:
            raise ValueError("Alias must not be blank")
        self._check_free(aliases=[key], exclude_id=channel.id)
        if key not in {a.alias for a in channel.aliases}:
            channel.aliases.append(ChannelAlias(alias=key))
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ChannelConflict(f"Alias {alias!r} is already used") from e
        finally:
            self.router.invalidate()
        self.db.refresh(channel)
        return channel

    def delete_channel(self, channel_id: str, drop_partition: bool = False) -> bool:
        channel = self.get_channel(channel_id)
        if channel is None:
            return False
        route = route_for(channel)
        if self.is_default_channel(channel):
            raise ChannelConflict("The default channel cannot be deleted", channel.id)
        try:
            self.db.delete(channel)
            self.db.flush()
            if drop_partition:
                build_partition_table(route.partition_name, route.tracks_read).drop(
                    bind=self.db.connection(), checkfirst=True
                )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        finally:
            self.router.invalidate()
        logger.info(
            "Deleted channel %s (partition %s %s)",
            route.slug,
            route.partition_name,
            "dropped" if drop_partition else "kept",
        )
        return True
