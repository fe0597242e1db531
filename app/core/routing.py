"""
Channel routing table.

Resolves any channel key (slug, gateway instance name, opaque id, alias)
to the partition holding that channel's messages. Resolution is total:
unknown keys land on the default channel instead of raising, so a
webhook with an unexpected ``instance`` is still recorded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from threading import RLock
from typing import Callable, Optional

from sqlalchemy.orm import Session

from app.exceptions import UnknownChannel
from app.models.channel import Channel, ChannelAlias

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChannelRoute:
    channel_id: str
    slug: str
    partition_name: str
    tracks_read: bool = True
    instance_name: Optional[str] = None
    display_name: Optional[str] = None
    is_default: bool = False

    @property
    def channel_key(self) -> str:
        """Stable key for per-channel state; survives slug and partition renames."""
        return self.channel_id


RouteLoader = Callable[[], tuple[list[ChannelRoute], dict[str, str]]]


def normalize_key(key: Optional[str]) -> str:
    return (key or "").strip().lower()


def load_routes(db: Session) -> list[ChannelRoute]:
    """Read every registered channel."""
    routes: list[ChannelRoute] = []
    for channel in db.query(Channel).all():
        routes.append(
            ChannelRoute(
                channel_id=channel.id,
                slug=channel.slug,
                partition_name=channel.partition_name,
                tracks_read=bool(channel.tracks_read),
                instance_name=channel.instance_name,
                display_name=channel.display_name,
            )
        )
    return routes


def load_aliases(db: Session) -> dict[str, str]:
    return {normalize_key(a.alias): a.channel_id for a in db.query(ChannelAlias).all()}


def _default_loader() -> tuple[list[ChannelRoute], dict[str, str]]:
    from app.utils.db.db_session_helper import db_session

    with db_session() as db:
        return load_routes(db), load_aliases(db)


class ChannelRouter:
    """
    Read-mostly cache over the channel registry.

    ``invalidate()`` must be called by every channel mutation before the
    mutation is reported complete; the next lookup reloads the table.
    """

    def __init__(
        self,
        default_slug: str,
        default_partition: str,
        static_aliases: Optional[dict[str, str]] = None,
        loader: Optional[RouteLoader] = None,
    ) -> None:
        self._fallback_default = ChannelRoute(
            channel_id=default_slug,
            slug=default_slug,
            partition_name=default_partition,
            tracks_read=True,
            is_default=True,
        )
        self._default = self._fallback_default
        self._static_aliases = {
            normalize_key(k): normalize_key(v) for k, v in (static_aliases or {}).items()
        }
        self._loader = loader or _default_loader
        self._lock = RLock()
        self._table: Optional[dict[str, ChannelRoute]] = None
        self._routes: list[ChannelRoute] = []
        self._degraded = False

    @property
    def default_route(self) -> ChannelRoute:
        self._get_table()
        return self._default

    def invalidate(self) -> None:
        with self._lock:
            self._table = None
        logger.debug("Channel routing cache invalidated")

    def _build(self) -> dict[str, ChannelRoute]:
        self._degraded = False
        try:
            routes, aliases = self._loader()
        except Exception as e:
            # Routing stays total even with the registry unreachable
            logger.warning("Channel registry unavailable, using static routes: %s", e)
            routes, aliases = [], {}
            self._degraded = True
        self._default = self._fallback_default
        table: dict[str, ChannelRoute] = {}
        by_id: dict[str, ChannelRoute] = {}
        for route in routes:
            if route.slug == self._default.slug:
                route = replace(route, is_default=True)
                self._default = route
            by_id[route.channel_id] = route
            table[normalize_key(route.channel_id)] = route
            table[normalize_key(route.slug)] = route
            if route.instance_name:
                table.setdefault(normalize_key(route.instance_name), route)
        for alias, channel_id in aliases.items():
            if channel_id in by_id:
                table.setdefault(alias, by_id[channel_id])
        for alias, slug in self._static_aliases.items():
            target = table.get(slug)
            if target is not None:
                table.setdefault(alias, target)
        table.setdefault(normalize_key(self._default.slug), self._default)
        self._routes = list(by_id.values())
        return table

    def _get_table(self) -> dict[str, ChannelRoute]:
        with self._lock:
            if self._table is not None:
                return self._table
            table = self._build()
            # A degraded table is not cached so the next lookup retries
            if not self._degraded:
                self._table = table
            return table

    def lookup(self, channel_key: Optional[str]) -> Optional[ChannelRoute]:
        """Exact resolution; None for unknown keys."""
        table = self._get_table()
        key = normalize_key(channel_key)
        if not key:
            return None
        return table.get(key)

    def require(self, channel_key: Optional[str]) -> ChannelRoute:
        """Exact resolution for callers that must not fall back. Raises UnknownChannel."""
        route = self.lookup(channel_key)
        if route is None:
            raise UnknownChannel(channel_key or "")
        return route

    def resolve(self, channel_key: Optional[str]) -> ChannelRoute:
        """Resolve a key to its route, falling back to the default channel."""
        route = self.lookup(channel_key)
        if route is None:
            logger.warning(
                "Unknown channel %r, routing to default partition %s",
                channel_key,
                self._default.partition_name,
            )
            return self._default
        return route

    def resolve_first(self, *channel_keys: Optional[str]) -> ChannelRoute:
        """First key that resolves wins; default when none does."""
        for key in channel_keys:
            route = self.lookup(key)
            if route is not None:
                return route
        return self.resolve(next((k for k in channel_keys if k), None))

    def resolve_partition(self, channel_key: Optional[str]) -> str:
        return self.resolve(channel_key).partition_name

    def routes(self) -> list[ChannelRoute]:
        """Every registered channel (the default one included once registered)."""
        self._get_table()
        with self._lock:
            routes = list(self._routes)
        if not any(r.partition_name == self._default.partition_name for r in routes):
            routes.append(self._default)
        return routes
