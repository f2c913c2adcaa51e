import asyncio
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import FakeUpstream, make_settings
from core.exceptions import ConversationNotFoundError, ValidationError
from main import create_app
from models.chat import Message, seed_title
from services.conversation_service import ConversationService, bucket_for
from storage.memory_store import MemoryConversationStorage

NOW = datetime(2026, 3, 12, 15, 30)


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def message(mid, chat_id="c1", role="user", content="hello", ts=1):
    return Message(id=mid, chat_id=chat_id, role=role, content=content, model="gpt-4o", timestamp=ts)


def service_with_clock(clock):
    return ConversationService(MemoryConversationStorage(clock=clock), clock=clock)


# ---------- unit ----------

def test_seed_title_truncates_and_collapses_whitespace():
    assert seed_title("  hello\n  world ") == "hello world"
    assert seed_title("x" * 250) == "x" * 100
    assert seed_title("") == "New Chat"


@pytest.mark.parametrize(
    "updated_at, bucket",
    [
        (NOW.replace(hour=0, minute=0), "today"),
        (NOW - timedelta(minutes=5), "today"),
        (NOW.replace(hour=23, minute=59) - timedelta(days=1), "yesterday"),
        (NOW.replace(hour=0, minute=0) - timedelta(days=1), "yesterday"),
        (NOW.replace(hour=0, minute=0) - timedelta(seconds=1, days=1), "previous_7_days"),
        (NOW.replace(hour=0, minute=0) - timedelta(days=7), "previous_7_days"),
        (NOW - timedelta(days=8), "older"),
    ],
)
def test_bucket_for_uses_calendar_days(updated_at, bucket):
    assert bucket_for(updated_at, NOW) == bucket


def test_save_is_idempotent_by_message_id():
    service = service_with_clock(Clock(NOW))

    async def go():
        _, created_first = await service.save_message("u1", message("m1", content="first"))
        _, created_again = await service.save_message("u1", message("m1", content="first, edited"))
        return created_first, created_again, await service.history("u1")

    created_first, created_again, history = asyncio.run(go())

    assert created_first is True
    assert created_again is False
    [chat] = history.chats.today
    assert [m.content for m in chat.messages] == ["first, edited"]
    assert history.total == 1


def test_title_comes_from_first_message_only():
    service = service_with_clock(Clock(NOW))

    async def go():
        await service.save_message("u1", message("m1", content="What is the capital of Meghalaya?"))
        await service.save_message("u1", message("m2", role="assistant", content="Shillong.", ts=2))
        return await service.history("u1")

    [chat] = asyncio.run(go()).chats.today
    assert chat.title == "What is the capital of Meghalaya?"
    assert [m.role for m in chat.messages] == ["user", "assistant"]


def test_history_buckets_newest_first_and_owner_scoped():
    clock = Clock(NOW - timedelta(days=10))
    service = service_with_clock(clock)

    async def go():
        await service.save_message("u1", message("a", chat_id="old"))
        clock.now = NOW - timedelta(days=3)
        await service.save_message("u1", message("b", chat_id="week"))
        clock.now = NOW - timedelta(days=1)
        await service.save_message("u1", message("c", chat_id="yday"))
        clock.now = NOW - timedelta(hours=2)
        await service.save_message("u1", message("d", chat_id="today-1"))
        clock.now = NOW - timedelta(hours=1)
        await service.save_message("u1", message("e", chat_id="today-2"))
        await service.save_message("u2", message("f", chat_id="someone-else"))
        clock.now = NOW
        return await service.history("u1")

    history = asyncio.run(go())
    assert [c.id for c in history.chats.today] == ["today-2", "today-1"]
    assert [c.id for c in history.chats.yesterday] == ["yday"]
    assert [c.id for c in history.chats.previous_7_days] == ["week"]
    assert [c.id for c in history.chats.older] == ["old"]
    assert history.total == 5


def test_history_is_limited():
    storage = MemoryConversationStorage(clock=Clock(NOW))
    service = ConversationService(storage, history_limit=2, clock=Clock(NOW))

    async def go():
        for i in range(4):
            await service.save_message("u1", message(f"m{i}", chat_id=f"c{i}"))
        return await service.history("u1")

    assert asyncio.run(go()).total == 2


def test_save_into_someone_elses_conversation_is_not_found():
    service = service_with_clock(Clock(NOW))

    async def go():
        await service.save_message("u1", message("m1"))
        await service.save_message("u2", message("m2"))

    with pytest.raises(ConversationNotFoundError):
        asyncio.run(go())


def test_delete_is_soft_and_only_once():
    service = service_with_clock(Clock(NOW))

    async def go():
        await service.save_message("u1", message("m1"))
        await service.delete("u1", "c1")
        history = await service.history("u1")
        with pytest.raises(ConversationNotFoundError):
            await service.delete("u1", "c1")
        return history

    assert asyncio.run(go()).total == 0


def test_rename_rules():
    service = service_with_clock(Clock(NOW))

    async def go():
        await service.save_message("u1", message("m1"))
        with pytest.raises(ValidationError):
            await service.rename("u1", "c1", "   ")
        with pytest.raises(ConversationNotFoundError):
            await service.rename("u2", "c1", "mine now")
        with pytest.raises(ConversationNotFoundError):
            await service.rename("u1", "missing", "title")
        return await service.rename("u1", "c1", "  Trip planning  ")

    summary = asyncio.run(go())
    assert summary.title == "Trip planning"


# ---------- routes ----------

@pytest.fixture
def client():
    with TestClient(create_app(make_settings(), client_factory=FakeUpstream().client_factory)) as c:
        yield c


def wire(mid, chat_id="c1", role="user", content="hello", ts=1):
    return {"id": mid, "chatId": chat_id, "role": role, "content": content, "model": "gpt-4o", "timestamp": ts, "images": []}


def test_routes_require_identity(client):
    assert client.get("/chat/history").status_code == 401
    assert client.post("/chat/save", json={"message": wire("m1")}).status_code == 401


def test_save_history_rename_delete_flow(client):
    h = {"X-User-Id": "u1"}

    saved = client.post("/chat/save", json={"message": wire("m1", content="Plan a trip")}, headers=h)
    assert saved.status_code == 200
    assert saved.json()["created"] is True
    assert saved.json()["message"]["chatId"] == "c1"

    again = client.post("/chat/save", json={"message": wire("m1", content="Plan a trip")}, headers=h)
    assert again.json()["created"] is False

    client.post("/chat/save", json={"message": wire("m2", role="assistant", content="Sure!", ts=2)}, headers=h)

    history = client.get("/chat/history", headers=h).json()
    assert history["success"] is True
    assert set(history["chats"]) == {"today", "yesterday", "previous7Days", "older"}
    [chat] = history["chats"]["today"]
    assert chat["title"] == "Plan a trip"
    assert "updatedAt" in chat
    assert [m["id"] for m in chat["messages"]] == ["m1", "m2"]

    blank = client.put("/chat/c1/update", json={"title": " "}, headers=h)
    assert blank.status_code == 400

    renamed = client.put("/chat/c1/update", json={"title": "Shillong trip"}, headers=h)
    assert renamed.status_code == 200
    assert renamed.json()["chat"]["title"] == "Shillong trip"

    assert client.post("/chat/c1/delete", headers={"X-User-Id": "u2"}).status_code == 404
    assert client.post("/chat/c1/delete", headers=h).json() == {"success": True}
    assert client.post("/chat/c1/delete", headers=h).status_code == 404
    assert client.put("/chat/c1/update", json={"title": "again"}, headers=h).status_code == 404
    assert client.get("/chat/history", headers=h).json()["total"] == 0


def test_save_rejects_bad_message(client):
    r = client.post("/chat/save", json={"message": {"id": "m1", "role": "robot"}}, headers={"X-User-Id": "u1"})
    assert r.status_code == 400
