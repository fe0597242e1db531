"""Tests for system router."""

from datetime import timedelta

from app.constants.messages import MediaType, SenderKind
from app.schemas.channel import ChannelCreate
from app.schemas.messages import NewMessage
from app.services.conversation_status_service import ConversationStatusService
from app.services.message_store import MessageStore
from app.utils.timestamps import utcnow
from tests.fixtures.webhook_fixtures import PDF_BYTES, PNG_BYTES, b64


def test_health(client):
    r = client.get("/system/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def _legacy(store, payload):
    return store.insert(
        NewMessage(
            session_id="5575999998888",
            content="[Mídia]",
            sender_kind=SenderKind.EXTERNAL_CONTACT,
            media_type=MediaType.IMAGE,
            media_payload=payload,
            created_at=utcnow(),
        )
    ).message


def test_media_migration_reports_per_table(client, db, router, channel_service, storage):
    """POST /system/media-migration offloads legacy rows of every partition."""
    channel_service.create_channel(ChannelCreate(slug="ibicoara", display_name="Ibicoara"))
    default_store = MessageStore(db, router.resolve("default"))
    ibi_store = MessageStore(db, router.resolve("ibicoara"))
    png = _legacy(default_store, b64(PNG_BYTES))
    _legacy(ibi_store, f"data:application/pdf;base64,{b64(PDF_BYTES)}")
    _legacy(ibi_store, "not*base64*" * 20)

    r = client.post("/system/media-migration")

    assert r.status_code == 200
    assert r.json() == {
        "totalProcessed": 2,
        "totalErrors": 1,
        "perTable": {
            "default_conversas": {"processed": 1, "errors": 0},
            "ibicoara_conversas": {"processed": 1, "errors": 1},
        },
    }
    migrated = default_store.get(png.id)
    assert migrated.content == "[Imagem]"
    assert storage.get(storage.key_for_url(migrated.media_ref)) == PNG_BYTES


def test_auto_resolve_sweeps_and_notifies(client, db, hub, router):
    channel_key = router.resolve("default").channel_key
    statuses = ConversationStatusService(db)
    statuses.on_new_message(
        channel_key, "idle", SenderKind.INTERNAL_AGENT, at=utcnow() - timedelta(days=2)
    )
    statuses.on_new_message(channel_key, "waiting", SenderKind.EXTERNAL_CONTACT)
    subscription = hub.subscribe(channel_key)

    r = client.post("/system/auto-resolve")

    assert r.status_code == 200
    assert r.json() == {"resolved": 1}
    assert subscription.pending() == 1
    assert statuses.get_status(channel_key, "idle").status == "resolved"
    assert client.post("/system/auto-resolve").json() == {"resolved": 0}
