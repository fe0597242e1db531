from datetime import datetime, timedelta, timezone

import pytest

from app.constants.messages import MediaType, SenderKind
from app.schemas.channel import ChannelCreate
from app.schemas.messages import NewMessage
from app.services.message_store import MessageStore

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _message(
    session_id="5575999998888", at=T0, sender=SenderKind.EXTERNAL_CONTACT, content="oi", **kw
):
    return NewMessage(
        session_id=session_id,
        content=content,
        sender_kind=sender,
        created_at=at,
        **kw,
    )


@pytest.fixture
def store(db, default_channel, router) -> MessageStore:
    return MessageStore(db, router.resolve("default"))


def test_insert_sets_read_state_by_sender(store: MessageStore):
    contact = store.insert(_message()).message
    agent = store.insert(_message(sender=SenderKind.INTERNAL_AGENT)).message
    assert contact.is_read is False
    assert agent.is_read is True
    assert contact.created_at == T0


def test_duplicate_provider_id_is_a_no_op(store: MessageStore):
    first = store.insert(_message(provider_message_id="ABC"))
    second = store.insert(_message(provider_message_id="ABC", content="retry"))
    assert first.created is True
    assert second.created is False
    assert second.message.id == first.message.id
    assert second.message.content == "oi"
    assert len(store.find_by_session("5575999998888")) == 1


def test_find_by_session_is_newest_first_and_scoped(store: MessageStore):
    for minutes in (0, 5, 10):
        store.insert(_message(at=T0 + timedelta(minutes=minutes), content=f"m{minutes}"))
    store.insert(_message(session_id="other", at=T0 + timedelta(minutes=20)))
    page = store.find_by_session("5575999998888")
    assert [m.content for m in page] == ["m10", "m5", "m0"]


def test_cursor_with_equal_timestamps_neither_repeats_nor_loses(store: MessageStore):
    ids = [store.insert(_message(content=f"same{i}")).message.id for i in range(4)]
    first = store.find_by_session("5575999998888", limit=2)
    assert [m.id for m in first] == [ids[3], ids[2]]

    oldest = first[-1]
    second = store.find_by_session(
        "5575999998888", before=oldest.created_at, before_id=oldest.id, limit=2
    )
    assert [m.id for m in second] == [ids[1], ids[0]]


def test_cursor_without_id_is_strictly_older(store: MessageStore):
    store.insert(_message(at=T0, content="old"))
    store.insert(_message(at=T0 + timedelta(minutes=1), content="new"))
    page = store.find_by_session("5575999998888", before=T0 + timedelta(minutes=1))
    assert [m.content for m in page] == ["old"]


def test_mark_read_only_touches_the_session(store: MessageStore):
    store.insert(_message())
    store.insert(_message())
    store.insert(_message(session_id="other"))
    assert store.mark_read("5575999998888") == 2
    assert all(m.is_read for m in store.find_by_session("5575999998888"))
    assert store.find_by_session("other")[0].is_read is False
    assert store.mark_read("5575999998888") == 0


def test_partition_without_read_tracking(db, channel_service, router):
    channel_service.create_channel(
        ChannelCreate(slug="legado", display_name="Legado", tracks_read=False)
    )
    store = MessageStore(db, router.resolve("legado"))
    stored = store.insert(_message()).message
    assert stored.is_read is None
    assert store.mark_read("5575999998888") == 0


def test_media_payload_is_pending_until_attached(store: MessageStore):
    row = store.insert(
        _message(media_type=MediaType.IMAGE, media_payload="QUJD" * 40, content="[Mídia]")
    ).message
    assert row.media_pending is True
    assert store.find_inline_media(10) == [(row.id, "QUJD" * 40)]

    assert store.attach_media(row.id, "http://cdn/x.png", "image/png", "[Imagem]")
    updated = store.get(row.id)
    assert updated.media_pending is False
    assert updated.media_ref == "http://cdn/x.png"
    assert updated.content == "[Imagem]"
    assert store.find_inline_media(10) == []


def test_count_since_and_list_recent(store: MessageStore):
    for minutes in range(3):
        store.insert(_message(at=T0 + timedelta(minutes=minutes), content=str(minutes)))
    assert store.count_since() == 3
    assert store.count_since(T0) == 2
    assert [m.content for m in store.list_recent(2)] == ["2", "1"]
