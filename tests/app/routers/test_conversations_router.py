"""Tests for conversations router."""

from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from app.routers.utils.dependencies import get_summarizer
from app.services.message_store import MessageStore
from tests.fixtures.webhook_fixtures import PNG_BYTES, image_event, text_event

ALICE = "5575111111111@s.whatsapp.net"
BRUNO = "5575222222222@s.whatsapp.net"


def _deliver(client, event):
    resp = client.post("/webhooks/default", json=event)
    assert resp.json()["status"] == "stored"
    return resp.json()


@pytest.fixture
def inbox(client):
    """Alice: two unread texts; Bruno: an image we already answered."""
    _deliver(client, text_event("oi", remote_jid=ALICE, message_id="A1", push_name="Alice"))
    _deliver(
        client,
        text_event(
            "tudo bem?",
            remote_jid=ALICE,
            message_id="A2",
            timestamp=1700000060,
            push_name="Alice",
        ),
    )
    _deliver(
        client,
        image_event(
            PNG_BYTES,
            remote_jid=BRUNO,
            message_id="B1",
            timestamp=1700000100,
            push_name="Bruno",
        ),
    )
    _deliver(
        client,
        text_event(
            "recebido",
            remote_jid=BRUNO,
            from_me=True,
            message_id="B2",
            timestamp=1700000200,
            push_name="Ana",
        ),
    )
    client.post("/channels/default/conversations/5575222222222/view")


def test_list_conversations(client, inbox):
    """GET /channels/{key}/conversations: unread first, then most recent."""
    r = client.get("/channels/default/conversations")
    assert r.status_code == 200
    items = r.json()["items"]
    assert [c["id"] for c in items] == ["5575111111111", "5575222222222"]

    alice, bruno = items
    assert alice["contact_name"] == "Alice"
    assert alice["unread_count"] == 2
    assert alice["last_message_preview"] == "tudo bem?"
    assert alice["status"] == "unread"
    assert bruno["contact_name"] == "Bruno"
    assert bruno["unread_count"] == 0
    assert bruno["last_message_preview"] == "recebido"
    assert bruno["status"] == "in_progress"


def test_media_preview_in_list(client):
    _deliver(client, image_event(PNG_BYTES, message_id="IMG-9"))
    [conversation] = client.get("/channels/default/conversations").json()["items"]
    assert conversation["last_message_preview"] == "📷 Imagem"


def test_unknown_channel_is_404(client):
    assert client.get("/channels/nowhere/conversations").status_code == 404


def test_unreadable_partition_answers_empty_with_header(client):
    error = OperationalError("SELECT", {}, Exception("no such table"))
    with patch.object(MessageStore, "list_recent", side_effect=error):
        r = client.get("/channels/default/conversations")
    assert r.status_code == 200
    assert r.json()["items"] == []
    assert "default_conversas" in r.headers["X-Partition-Error"]


def test_channel_stats(client, inbox):
    r = client.get("/channels/default/stats")
    assert r.status_code == 200
    assert r.json() == {
        "channel_key": r.json()["channel_key"],
        "total": 2,
        "unread": 1,
        "in_progress": 1,
        "resolved": 0,
        "unread_messages": 2,
    }


def test_message_history_pages_with_cursor(client, inbox):
    base = "/channels/default/conversations/5575111111111/messages"
    first = client.get(base, params={"limit": 1}).json()
    assert [m["content"] for m in first["items"]] == ["tudo bem?"]
    assert first["next_before_id"] == first["items"][0]["id"]

    second = client.get(
        base,
        params={
            "limit": 1,
            "before": first["next_before"],
            "before_id": first["next_before_id"],
        },
    ).json()
    assert [m["content"] for m in second["items"]] == ["oi"]

    third = client.get(
        base,
        params={
            "limit": 1,
            "before": second["next_before"],
            "before_id": second["next_before_id"],
        },
    ).json()
    assert third["items"] == []
    assert third["next_before"] is None


def test_view_marks_read_and_moves_to_in_progress(client, inbox, hub, router):
    subscription = hub.subscribe(router.resolve("default").channel_key)
    r = client.post("/channels/default/conversations/5575111111111/view")
    assert r.status_code == 200
    assert r.json()["status"] == "in_progress"
    assert subscription.pending() == 1

    [alice] = [
        c
        for c in client.get("/channels/default/conversations").json()["items"]
        if c["id"] == "5575111111111"
    ]
    assert alice["unread_count"] == 0
    assert alice["status"] == "in_progress"


def test_status_endpoints(client, inbox):
    base = "/channels/default/conversations/5575111111111/status"
    assert client.get(base).json()["status"] == "unread"

    r = client.put(base, json={"status": "resolved"})
    assert r.status_code == 409

    assert client.put(base, json={"status": "in_progress"}).json()["status"] == "in_progress"
    assert client.put(base, json={"status": "resolved"}).json()["status"] == "resolved"
    assert client.put(base, json={"status": "in_progress"}).json()["status"] == "in_progress"

    assert client.delete(base).status_code == 204
    assert client.get(base).json()["status"] == "unread"


def test_manual_status_change_clears_unread_messages(client, inbox, hub, router):
    subscription = hub.subscribe(router.resolve("default").channel_key)
    r = client.put(
        "/channels/default/conversations/5575111111111/status", json={"status": "in_progress"}
    )
    assert r.status_code == 200
    assert subscription.pending() == 1

    [alice] = [
        c
        for c in client.get("/channels/default/conversations").json()["items"]
        if c["id"] == "5575111111111"
    ]
    assert alice["status"] == "in_progress"
    assert alice["unread_count"] == 0


def test_rejected_status_change_keeps_messages_unread(client, inbox):
    r = client.put(
        "/channels/default/conversations/5575111111111/status", json={"status": "resolved"}
    )
    assert r.status_code == 409
    stats = client.get("/channels/default/stats").json()
    assert stats["unread_messages"] == 2


def test_invalid_status_value_is_422(client, default_channel):
    r = client.put(
        "/channels/default/conversations/5575111111111/status", json={"status": "archived"}
    )
    assert r.status_code == 422


def test_new_contact_message_reopens_resolved_conversation(client, inbox):
    base = "/channels/default/conversations/5575222222222/status"
    client.put(base, json={"status": "resolved"})
    _deliver(
        client,
        text_event("mais uma coisa", remote_jid=BRUNO, message_id="B3", timestamp=1700000300),
    )
    assert client.get(base).json()["status"] == "unread"


class _FakeSummarizer:
    def __init__(self):
        self.seen = []

    async def summarize(self, messages):
        self.seen = [m.content for m in messages]
        return "Cliente perguntou se está tudo bem."


def test_summary(client, inbox):
    summarizer = _FakeSummarizer()
    client.app.dependency_overrides[get_summarizer] = lambda: summarizer
    r = client.post("/channels/default/conversations/5575111111111/summary")
    assert r.status_code == 200
    assert r.json() == {
        "session_id": "5575111111111",
        "summary": "Cliente perguntou se está tudo bem.",
        "message_count": 2,
    }
    # Oldest first
    assert summarizer.seen == ["oi", "tudo bem?"]


def test_summary_failure_is_502(client, inbox):
    class _Broken:
        async def summarize(self, messages):
            raise RuntimeError("401 from provider")

    client.app.dependency_overrides[get_summarizer] = lambda: _Broken()
    r = client.post("/channels/default/conversations/5575111111111/summary")
    assert r.status_code == 502
