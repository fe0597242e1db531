"""Tests for channels router."""

from uuid import uuid4

from tests.fixtures.webhook_fixtures import text_event


def _create(client, slug="souto-soares", **extra):
    payload = {"slug": slug, "display_name": slug.title(), **extra}
    return client.post("/channels", json=payload)


def test_list_channels(client):
    """GET /channels returns the registered channels, default included."""
    _create(client)
    r = client.get("/channels")
    assert r.status_code == 200
    data = r.json()
    assert "items" in data
    assert [c["slug"] for c in data["items"]] == ["default", "souto-soares"]
    assert data["total"] == 2


def test_create_channel(client):
    """POST /channels registers a channel and derives its partition name."""
    r = _create(client, instance_name="SoutoSoares", aliases=["SS"])
    assert r.status_code == 201
    data = r.json()
    assert data["slug"] == "souto-soares"
    assert data["partition_name"] == "souto_soares_conversas"
    assert data["aliases"] == ["ss"]
    assert data["tracks_read"] is True


def test_create_duplicate_slug_conflicts(client):
    _create(client)
    r = _create(client)
    assert r.status_code == 409


def test_create_invalid_slug_is_rejected(client):
    r = _create(client, slug="Souto Soares")
    assert r.status_code == 422


def test_create_invalid_partition_is_rejected(client):
    r = _create(client, partition_name="1-bad-name")
    assert r.status_code == 400


def test_get_channel(client):
    """GET /channels/{id} returns a channel."""
    created = _create(client).json()
    r = client.get(f"/channels/{created['id']}")
    assert r.status_code == 200
    assert r.json()["slug"] == "souto-soares"


def test_get_channel_not_found(client):
    r = client.get(f"/channels/{uuid4()}")
    assert r.status_code == 404


def test_rename_channel_relocates_partition(client, channel_service):
    """PATCH /channels/{id} with a new partition_name moves the messages table."""
    created = _create(client).json()
    r = client.patch(
        f"/channels/{created['id']}",
        json={"slug": "souto", "partition_name": "souto_conversas"},
    )
    assert r.status_code == 200
    assert r.json()["partition_name"] == "souto_conversas"
    assert channel_service.partition_exists("souto_conversas")
    assert not channel_service.partition_exists("souto_soares_conversas")


def test_rename_to_taken_slug_conflicts(client):
    created = _create(client).json()
    _create(client, slug="ibicoara")
    r = client.patch(f"/channels/{created['id']}", json={"slug": "ibicoara"})
    assert r.status_code == 409


def test_add_alias(client, router):
    created = _create(client).json()
    r = client.post(f"/channels/{created['id']}/aliases", json={"alias": "A1B2-opaque"})
    assert r.status_code == 200
    assert "a1b2-opaque" in r.json()["aliases"]
    assert router.resolve("a1b2-opaque").slug == "souto-soares"


def test_delete_channel(client, channel_service):
    """DELETE /channels/{id} removes the mapping; drop_partition removes the table."""
    created = _create(client).json()
    r = client.delete(f"/channels/{created['id']}", params={"drop_partition": True})
    assert r.status_code == 204
    assert client.get(f"/channels/{created['id']}").status_code == 404
    assert not channel_service.partition_exists("souto_soares_conversas")


def test_default_channel_cannot_be_deleted(client, default_channel):
    r = client.delete(f"/channels/{default_channel.id}")
    assert r.status_code == 409


def test_default_channel_rename_is_rejected(client, default_channel):
    r = client.patch(f"/channels/{default_channel.id}", json={"slug": "matriz"})
    assert r.status_code == 409
    r = client.delete(f"/channels/{default_channel.id}", params={"drop_partition": True})
    assert r.status_code == 409

    r = client.post("/webhooks/unknown-instance", json=text_event("oi", message_id="DEF-1"))
    assert r.status_code == 200
    assert r.json()["status"] == "stored"
