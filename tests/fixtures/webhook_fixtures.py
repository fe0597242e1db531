"""Gateway webhook payloads and sample media bytes."""

import base64
from typing import Any, Optional

import pytest

PNG_BYTES = (
    b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01"
    b"\x08\x06\x00\x00\x00\x1f\x15\xc4\x89" + b"\x00" * 120
)
JPEG_BYTES = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01" + b"\x11" * 120
PDF_BYTES = b"%PDF-1.7\n%\xe2\xe3\xcf\xd3\n" + b"1 0 obj\n" * 20
OGG_BYTES = b"OggS\x00\x02" + b"\x00" * 120
MP4_BYTES = b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 120
WEBP_BYTES = b"RIFF\x24\x00\x00\x00WEBPVP8 " + b"\x00" * 120

CONTACT_JID = "5599999999999@s.whatsapp.net"


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def message_event(
    message: dict[str, Any],
    *,
    remote_jid: str = CONTACT_JID,
    from_me: bool = False,
    message_id: Optional[str] = "MSG-1",
    timestamp: Any = 1700000000,
    push_name: Optional[str] = "Maria",
    instance: str = "souto",
    event: str = "messages.upsert",
) -> dict[str, Any]:
    key: dict[str, Any] = {"remoteJid": remote_jid, "fromMe": from_me}
    if message_id is not None:
        key["id"] = message_id
    data: dict[str, Any] = {"key": key, "message": message, "messageTimestamp": timestamp}
    if push_name is not None:
        data["pushName"] = push_name
    return {"event": event, "instance": instance, "data": data}


def text_event(text: str = "Hello", **kwargs: Any) -> dict[str, Any]:
    return message_event({"conversation": text}, **kwargs)


def image_event(
    payload: bytes = PNG_BYTES, caption: Optional[str] = None, **kwargs: Any
) -> dict[str, Any]:
    image: dict[str, Any] = {"mimetype": "image/png"}
    if caption is not None:
        image["caption"] = caption
    return message_event({"imageMessage": image, "base64": b64(payload)}, **kwargs)


@pytest.fixture
def hello_event() -> dict[str, Any]:
    return text_event("Hello")


@pytest.fixture
def png_image_event() -> dict[str, Any]:
    return image_event(PNG_BYTES, message_id="IMG-1")
