"""Tests for the channel routing table."""

import pytest

from app.core.routing import ChannelRoute, ChannelRouter
from app.exceptions import UnknownChannel


def _route(channel_id, slug, partition, instance=None, tracks_read=True):
    return ChannelRoute(
        channel_id=channel_id,
        slug=slug,
        partition_name=partition,
        instance_name=instance,
        tracks_read=tracks_read,
    )


@pytest.fixture
def loader_state():
    return {
        "routes": [
            _route("id-souto", "souto-soares", "souto_soares_conversas", "SoutoSoares"),
            _route("id-ibi", "ibicoara", "ibicoara_conversas", "Ibicoara01"),
            _route("id-default", "default", "default_conversas"),
        ],
        "aliases": {"a1b2c3-opaque": "id-souto", "legacy-souto": "id-souto"},
        "calls": 0,
    }


@pytest.fixture
def table(loader_state):
    def loader():
        loader_state["calls"] += 1
        return list(loader_state["routes"]), dict(loader_state["aliases"])

    return ChannelRouter(
        default_slug="default",
        default_partition="default_conversas",
        static_aliases={"ss": "souto-soares"},
        loader=loader,
    )


def test_all_aliases_resolve_to_the_same_partition(table: ChannelRouter):
    keys = [
        "souto-soares",
        "SOUTO-SOARES",
        " souto-soares ",
        "id-souto",
        "SoutoSoares",
        "a1b2c3-opaque",
        "legacy-souto",
        "ss",
    ]
    partitions = {table.resolve_partition(k) for k in keys}
    assert partitions == {"souto_soares_conversas"}


def test_unknown_key_falls_back_to_default(table: ChannelRouter):
    assert table.resolve_partition("nowhere") == "default_conversas"
    assert table.resolve_partition(None) == "default_conversas"
    assert table.resolve_partition("") == "default_conversas"
    assert table.resolve("nowhere").is_default


def test_lookup_is_exact(table: ChannelRouter):
    assert table.lookup("souto") is None
    assert table.lookup("ibicoara").partition_name == "ibicoara_conversas"


def test_require_raises_for_unknown(table: ChannelRouter):
    with pytest.raises(UnknownChannel):
        table.require("nowhere")
    assert table.require("ibicoara").slug == "ibicoara"


def test_resolve_first_prefers_the_first_known_key(table: ChannelRouter):
    assert table.resolve_first("nowhere", "Ibicoara01").slug == "ibicoara"
    assert table.resolve_first("souto-soares", "Ibicoara01").slug == "souto-soares"
    assert table.resolve_first("nowhere", None).is_default


def test_registered_default_channel_becomes_the_fallback(table: ChannelRouter):
    default = table.default_route
    assert default.channel_id == "id-default"
    assert default.is_default


def test_table_is_cached_until_invalidated(table: ChannelRouter, loader_state):
    table.resolve("souto-soares")
    table.resolve("ibicoara")
    assert loader_state["calls"] == 1

    loader_state["routes"].append(_route("id-new", "mucuge", "mucuge_conversas"))
    assert table.lookup("mucuge") is None

    table.invalidate()
    assert table.resolve_partition("mucuge") == "mucuge_conversas"
    assert loader_state["calls"] == 2


def test_loader_failure_keeps_routing_total():
    calls = {"n": 0}

    def broken_loader():
        calls["n"] += 1
        raise RuntimeError("database down")

    table = ChannelRouter(
        default_slug="default", default_partition="default_conversas", loader=broken_loader
    )
    assert table.resolve_partition("souto-soares") == "default_conversas"
    # A degraded table is retried on the next lookup
    table.resolve_partition("souto-soares")
    assert calls["n"] == 2


def test_routes_include_the_default_once(table: ChannelRouter):
    partitions = [r.partition_name for r in table.routes()]
    assert sorted(partitions) == [
        "default_conversas",
        "ibicoara_conversas",
        "souto_soares_conversas",
    ]
