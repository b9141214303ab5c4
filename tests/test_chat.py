from datetime import datetime, timezone
from uuid import uuid4

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.models.chat import Chat, ChatMessage, ChatMessageReceipt, ChatParticipant
from app.models.notification import Notification
from app.models.user import User
from app.services import chat_stream
from tests.conftest import FakeResult, entity_handler, make_admin, make_dsa, make_user


def get_data(resp):
    json_data = resp.json()
    if "data" in json_data:
        return json_data["data"]
    return json_data


def make_chat(*members: User, **overrides) -> Chat:
    now = datetime.now(timezone.utc)
    defaults = dict(
        id=uuid4(),
        application_id=None,
        participants=[ChatParticipant(user_id=m.id, user=m, role=m.role) for m in members],
        created_at=now,
        updated_at=now,
    )
    defaults.update(overrides)
    return Chat(**defaults)


@pytest.fixture
def published(monkeypatch):
    events: list[tuple] = []

    async def _publish(chat_id, payload):
        events.append((chat_id, payload))
        return True

    monkeypatch.setattr(chat_stream, "publish_message", _publish)
    return events


def test_create_chat_adds_all_participants(as_user, fake_db):
    user = make_user()
    dsa = make_dsa()
    fake_db.on_execute(entity_handler(User, FakeResult(items=[user, dsa])))
    fake_db.on_execute(entity_handler(Chat, FakeResult(items=[])))

    resp = as_user(user).post("/api/v1/chat", json={"participants": [str(dsa.id)]})

    assert resp.status_code == 201
    participants = fake_db.added_of(ChatParticipant)
    assert {p.user_id for p in participants} == {user.id, dsa.id}
    assert {p.role for p in participants} == {"user", "dsa"}


def test_create_chat_reuses_existing_conversation(as_user, fake_db):
    user = make_user()
    dsa = make_dsa()
    existing = make_chat(user, dsa)
    fake_db.on_execute(entity_handler(User, FakeResult(items=[user, dsa])))
    fake_db.on_execute(entity_handler(Chat, FakeResult(items=[existing])))

    resp = as_user(user).post("/api/v1/chat", json={"participants": [str(dsa.id)]})

    assert resp.status_code == 200
    assert get_data(resp)["id"] == str(existing.id)
    assert fake_db.added_of(Chat) == []


def test_create_chat_needs_another_participant(as_user):
    user = make_user()
    resp = as_user(user).post("/api/v1/chat", json={"participants": [str(user.id)]})
    assert resp.status_code == 400


def test_create_chat_rejects_unknown_participant(as_user, fake_db):
    user = make_user()
    fake_db.on_execute(entity_handler(User, FakeResult(items=[user])))

    resp = as_user(user).post("/api/v1/chat", json={"participants": [str(uuid4())]})

    assert resp.status_code == 404


def test_non_participant_cannot_read_messages(as_user, fake_db):
    chat = make_chat(make_user(), make_dsa())
    fake_db.on_execute(entity_handler(Chat, FakeResult(scalar=chat)))

    resp = as_user(make_user()).get(f"/api/v1/chat/{chat.id}/messages")

    assert resp.status_code == 403


def test_admin_can_read_any_chat_but_not_post(as_user, fake_db, published):
    chat = make_chat(make_user(), make_dsa())
    fake_db.on_execute(entity_handler(Chat, FakeResult(scalar=chat)))
    client = as_user(make_admin())

    assert client.get(f"/api/v1/chat/{chat.id}/messages").status_code == 200
    resp = client.post(f"/api/v1/chat/{chat.id}/messages", json={"message": "hello"})
    assert resp.status_code == 403
    assert published == []


def test_send_message_creates_receipts_and_publishes(as_user, fake_db, published):
    user = make_user(first_name="Asha", last_name="Verma")
    dsa = make_dsa()
    chat = make_chat(user, dsa)
    fake_db.on_execute(entity_handler(Chat, FakeResult(scalar=chat)))

    resp = as_user(user).post(f"/api/v1/chat/{chat.id}/messages", json={"message": "  Is my file ok?  "})

    assert resp.status_code == 201
    data = get_data(resp)
    assert data["message"] == "Is my file ok?"
    assert data["sender_name"] == "Asha Verma"
    receipt = fake_db.added_of(ChatMessageReceipt)[0]
    assert receipt.user_id == dsa.id
    assert receipt.read is False
    assert fake_db.added_of(Notification)[0].title == "New message from Asha Verma"
    assert published[0][0] == chat.id
    assert published[0][1]["event"] == "message.created"


def test_file_message_requires_url(as_user):
    resp = as_user(make_user()).post(
        f"/api/v1/chat/{uuid4()}/messages", json={"message_type": "file", "file_name": "a.pdf"}
    )
    assert resp.status_code == 422


def test_messages_report_read_state_for_viewer(as_user, fake_db):
    user = make_user()
    dsa = make_dsa()
    chat = make_chat(user, dsa)
    message = ChatMessage(
        id=uuid4(),
        chat_id=chat.id,
        sender_id=dsa.id,
        sender=dsa,
        message="Please upload your fee receipt",
        message_type="text",
        receipts=[ChatMessageReceipt(user_id=user.id, read=False)],
        created_at=datetime.now(timezone.utc),
    )
    fake_db.on_execute(entity_handler(Chat, FakeResult(scalar=chat)))
    fake_db.on_execute(entity_handler(ChatMessage, FakeResult(items=[message])))

    resp = as_user(user).get(f"/api/v1/chat/{chat.id}/messages")

    item = get_data(resp)["messages"][0]
    assert item["read"] is False
    assert item["sender_role"] == "dsa"


def test_mark_read_returns_remaining_unread(as_user, fake_db):
    user = make_user()
    chat = make_chat(user, make_dsa())
    fake_db.on_execute(entity_handler(Chat, FakeResult(scalar=chat)))
    fake_db.on_execute(lambda _stmt: FakeResult(scalar=2, rowcount=3))

    resp = as_user(user).patch(f"/api/v1/chat/{chat.id}/read")

    assert resp.status_code == 200
    assert get_data(resp)["unread_count"] == 2
    assert fake_db.committed is True


def test_unread_count_endpoint(as_user, fake_db):
    fake_db.on_execute_return(FakeResult(scalar=5))
    resp = as_user(make_user()).get("/api/v1/messages/unread-count")
    assert get_data(resp) == {"unread_count": 5}


def test_channel_names_are_namespaced():
    assert chat_stream.channel_for_chat("abc") == "eduloan:chat:abc"


@pytest.mark.asyncio
async def test_publish_is_best_effort(monkeypatch):
    class _BrokenRedis:
        async def publish(self, channel, data):
            raise RedisConnectionError("down")

    monkeypatch.setattr(chat_stream, "get_redis_client", lambda: _BrokenRedis())

    assert await chat_stream.publish_message(uuid4(), {"event": "message.created"}) is False
