"""Tests for EvolutionAdapter."""

import json
import logging
from datetime import datetime, timezone

import httpx
import pytest

from app.adapters.evolution import (
    EvolutionAdapter,
    classify_message,
    extract_content,
    is_message_event,
)
from app.constants.messages import MediaType, SenderKind
from app.exceptions import MalformedWebhook
from tests.fixtures.webhook_fixtures import (
    PNG_BYTES,
    b64,
    image_event,
    message_event,
    text_event,
)


def test_verify_webhook_no_secret(adapter):
    assert adapter.verify_webhook(None, {}) is True


def test_verify_webhook_with_secret(adapter):
    assert adapter.verify_webhook("token", {"apikey": "token"}) is True
    assert adapter.verify_webhook("token", {"ApiKey": "token"}) is True
    assert adapter.verify_webhook("token", {"apikey": "wrong"}) is False
    assert adapter.verify_webhook("token", {}) is False


@pytest.mark.parametrize(
    "event,expected",
    [
        ("messages.upsert", True),
        ("MESSAGES_UPSERT", True),
        ("send.message", True),
        ("presence.update", False),
        ("connection.update", False),
        ("", False),
    ],
)
def test_is_message_event(event, expected):
    assert is_message_event(event) is expected


def test_parse_text_message(adapter):
    inbound = adapter.parse_webhook(text_event("Hello"))
    assert inbound.session_id == "5599999999999"
    assert inbound.contact_phone == "5599999999999"
    assert inbound.contact_name == "Maria"
    assert inbound.sender_kind == SenderKind.EXTERNAL_CONTACT
    assert inbound.media_type == MediaType.TEXT
    assert inbound.content == "Hello"
    assert inbound.provider_message_id == "MSG-1"
    assert inbound.instance == "souto"
    assert inbound.created_at == datetime.fromtimestamp(1700000000, tz=timezone.utc)


def test_parse_image_with_inline_payload(adapter):
    inbound = adapter.parse_webhook(image_event(PNG_BYTES, caption="olha"))
    assert inbound.media_type == MediaType.IMAGE
    assert inbound.content == "olha"
    assert inbound.media_source == b64(PNG_BYTES)
    assert inbound.media_mime == "image/png"


def test_parse_image_without_caption_uses_generic_placeholder(adapter):
    inbound = adapter.parse_webhook(image_event(PNG_BYTES))
    assert inbound.content == "[Mídia]"


def test_own_messages_are_agents_and_personas_are_ai(adapter):
    agent = adapter.parse_webhook(text_event("oi", from_me=True, push_name="Joana"))
    ai = adapter.parse_webhook(text_event("oi", from_me=True, push_name="Yelena"))
    assert agent.sender_kind == SenderKind.INTERNAL_AGENT
    assert ai.sender_kind == SenderKind.AI_AGENT
    # The agent's pushName is not the contact's name
    assert agent.contact_name == "Cliente"


def test_non_message_events_are_ignored(adapter):
    assert adapter.parse_webhook({"event": "presence.update", "data": {"id": "x"}}) is None


@pytest.mark.parametrize(
    "payload",
    [
        {"event": "messages.upsert"},
        {"event": "messages.upsert", "data": {"message": {"conversation": "x"}}},
        {"event": "messages.upsert", "data": {"key": {"remoteJid": "5599@s.whatsapp.net"}}},
        {"event": "messages.upsert", "data": []},
    ],
)
def test_malformed_message_events_raise(adapter, payload):
    with pytest.raises(MalformedWebhook):
        adapter.parse_webhook(payload)


def test_batched_data_list_uses_the_first_message(adapter):
    payload = text_event("primeira")
    payload["data"] = [payload["data"]]
    assert adapter.parse_webhook(payload).content == "primeira"


def test_extra_batched_messages_are_logged(adapter, caplog):
    first = text_event("primeira", message_id="B-1")
    second = text_event("segunda", message_id="B-2")
    first["data"] = [first["data"], second["data"]]

    with caplog.at_level(logging.WARNING, logger="app.adapters.evolution"):
        inbound = adapter.parse_webhook(first)

    assert inbound.provider_message_id == "B-1"
    assert "carries 2 messages" in caplog.text


def test_missing_timestamp_falls_back_to_now(adapter):
    inbound = adapter.parse_webhook(text_event("oi", timestamp=None))
    assert abs((datetime.now(timezone.utc) - inbound.created_at).total_seconds()) < 60


def test_wrappers_are_unwrapped():
    message = {
        "ephemeralMessage": {
            "message": {"viewOnceMessage": {"message": {"imageMessage": {"caption": "x"}}}}
        },
        "base64": "QUJD",
    }
    variant = classify_message(message)
    assert variant.kind == "image"
    assert variant.source == "QUJD"
    assert extract_content(message) == "x"


@pytest.mark.parametrize(
    "message,content",
    [
        ({"conversation": "plain"}, "plain"),
        ({"extendedTextMessage": {"text": "extended"}}, "extended"),
        ({"videoMessage": {"caption": "video caption"}}, "video caption"),
        ({"documentMessage": {"caption": "doc caption"}}, "doc caption"),
        ({"audioMessage": {}}, "[Mídia]"),
        ({"reactionMessage": {"text": "👍"}}, "[Mídia]"),
    ],
)
def test_content_precedence(message, content):
    assert extract_content(message) == content


def test_unknown_message_shape_is_unrecognized():
    variant = classify_message({"reactionMessage": {"text": "👍"}, "base64": "x"})
    assert variant.kind == "unrecognized"
    assert variant.fields == ["reactionMessage"]


def test_remote_url_becomes_media_source(adapter):
    payload = message_event(
        {"documentMessage": {"url": "https://mmg.whatsapp.net/d/f/abc.enc", "fileName": "a.pdf"}}
    )
    inbound = adapter.parse_webhook(payload)
    assert inbound.media_type == MediaType.DOCUMENT
    assert inbound.media_source == "https://mmg.whatsapp.net/d/f/abc.enc"


def _recording_adapter(requests):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(201, json={"key": {"id": "3EB0ABC"}})

    return EvolutionAdapter(
        api_url="http://gateway.test",
        api_key="secret",
        client_factory=lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


@pytest.mark.asyncio
async def test_send_text_posts_to_the_instance():
    requests = []
    result = await _recording_adapter(requests).send_text("SoutoSoares", "5575999998888", "oi")

    assert result.success is True
    assert result.provider_message_id == "3EB0ABC"
    [request] = requests
    assert request.url == "http://gateway.test/message/sendText/SoutoSoares"
    assert request.headers["apikey"] == "secret"
    assert json.loads(request.content) == {"number": "5575999998888", "text": "oi"}


@pytest.mark.asyncio
async def test_send_media_routes_by_type():
    requests = []
    adapter = _recording_adapter(requests)
    await adapter.send_media("inst", "55", "http://cdn/a.ogg", MediaType.AUDIO)
    await adapter.send_media(
        "inst", "55", "http://cdn/a.png", MediaType.IMAGE, caption="c", mime_type="image/png"
    )

    assert [r.url.path for r in requests] == [
        "/message/sendWhatsAppAudio/inst",
        "/message/sendMedia/inst",
    ]
    assert json.loads(requests[1].content) == {
        "number": "55",
        "mediatype": "image",
        "media": "http://cdn/a.png",
        "caption": "c",
        "mimetype": "image/png",
    }


@pytest.mark.asyncio
async def test_gateway_errors_raise():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "boom"})

    adapter = EvolutionAdapter(
        api_url="http://gateway.test",
        client_factory=lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    with pytest.raises(httpx.HTTPStatusError):
        await adapter.send_text("inst", "55", "oi")


@pytest.mark.asyncio
async def test_unconfigured_gateway_raises():
    with pytest.raises(RuntimeError):
        await EvolutionAdapter().send_text("inst", "55", "oi")
