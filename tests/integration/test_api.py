"""Integration tests for the HTTP API."""

import httpx
import pytest

from eidolon.api.main import create_app
from eidolon.core.exceptions import LLMTimeoutError
from eidolon.core.security import create_jwt_token
from eidolon.runtime.templates import APOLOGY_TEXT


@pytest.fixture
async def client(registry, pixel):
    app = create_app(registry)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


def auth(user_id: str = "author") -> dict:
    return {"Authorization": f"Bearer {create_jwt_token(user_id)}"}


async def open_session(client, room_id=None) -> dict:
    response = await client.post(
        "/api/sessions", json={"author": "author", "slug": "pixel", "room_id": room_id}
    )
    assert response.status_code == 201
    return response.json()


# ============================================================================
# Health
# ============================================================================

async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "database": "closed", "active_sessions": 0}


# ============================================================================
# Sessions and Messages
# ============================================================================

async def test_create_session(client):
    body = await open_session(client, room_id="room-1")

    assert body["room_id"] == "room-1"
    assert body["session_id"]
    assert body["nonce"]
    assert body["config"]["name"] == "Pixel"


async def test_create_session_unknown_character(client):
    response = await client.post("/api/sessions", json={"author": "author", "slug": "ghost"})

    assert response.status_code == 404
    assert set(response.json()) == {"error", "details"}


async def test_send_message(client):
    """Test a full turn over HTTP."""
    session = await open_session(client)

    response = await client.post("/api/messages", json={
        "session_id": session["session_id"],
        "message": "Hi Pixel!",
        "nonce": session["nonce"],
    })

    assert response.status_code == 200
    body = response.json()
    assert body["text"] == "Meow! Nice to meet you."
    assert body["nonce"] != session["nonce"]
    assert body["room_id"] == session["room_id"]


async def test_rejected_nonce_returns_fresh_one(client):
    session = await open_session(client)

    response = await client.post("/api/messages", json={
        "session_id": session["session_id"],
        "message": "Hi",
        "nonce": "forged",
    })

    assert response.status_code == 401
    body = response.json()
    assert body["text"] == APOLOGY_TEXT
    assert body["nonce"]
    assert body["nonce"] == body["details"]["nonce"]

    retry = await client.post("/api/messages", json={
        "session_id": session["session_id"],
        "message": "Hi again",
        "nonce": body["nonce"],
    })
    assert retry.status_code == 200


async def test_model_timeout_answers_504(client, text_generator):
    session = await open_session(client)
    text_generator.error = LLMTimeoutError(25.0, "http://llm.test/v1")

    response = await client.post("/api/messages", json={"session_id": session["session_id"], "message": "Hi"})

    assert response.status_code == 504
    body = response.json()
    assert body["text"] == APOLOGY_TEXT
    assert body["details"]["timeout"] == 25.0


async def test_unknown_session_message(client):
    response = await client.post("/api/messages", json={"session_id": "missing", "message": "Hi"})

    assert response.status_code == 404
    body = response.json()
    assert body["session_id"] == "missing"
    assert body["nonce"] is None


async def test_empty_message_rejected_by_schema(client):
    session = await open_session(client)

    response = await client.post("/api/messages", json={"session_id": session["session_id"], "message": ""})

    assert response.status_code == 422


async def test_bearer_caller_attributed(client, registry):
    session = await open_session(client, room_id="room-1")

    await client.post(
        "/api/messages",
        json={"session_id": session["session_id"], "message": "Signed in"},
        headers=auth("user-9"),
    )

    memories = await registry.get_memories("author", "pixel", "room-1")
    [user_turn] = [m for m in memories if m.text == "Signed in"]
    assert user_turn.user_id == "user-9"


# ============================================================================
# Memories
# ============================================================================

async def test_memory_routes_require_token(client):
    response = await client.get("/api/characters/pixel/memories")

    assert response.status_code == 401


async def test_memory_lifecycle(client):
    created = await client.post(
        "/api/characters/pixel/memories",
        json={"content": {"text": "Pixel loves tuna."}, "type": "fact"},
        headers=auth(),
    )
    assert created.status_code == 201
    memory_id = created.json()["id"]

    listed = await client.get("/api/characters/pixel/memories", params={"type": "fact"}, headers=auth())
    assert [m["id"] for m in listed.json()["memories"]] == [memory_id]

    patched = await client.patch(
        f"/api/memories/{memory_id}",
        json={"content": {"mood": "hungry"}},
        headers=auth(),
    )
    assert patched.status_code == 200
    assert patched.json()["content"] == {"text": "Pixel loves tuna.", "mood": "hungry"}

    deleted = await client.delete(f"/api/memories/{memory_id}", headers=auth())
    assert deleted.status_code == 204

    missing = await client.delete(f"/api/memories/{memory_id}", headers=auth())
    assert missing.status_code == 404


async def test_failed_memory_delete_reports_error(client, registry, monkeypatch):
    created = await client.post(
        "/api/characters/pixel/memories",
        json={"content": {"text": "sticky"}},
        headers=auth(),
    )

    async def refuse(memory_id):
        return False

    monkeypatch.setattr(registry.memory, "delete_memory", refuse)

    response = await client.delete(f"/api/memories/{created.json()['id']}", headers=auth())

    assert response.status_code == 500
    assert "error" in response.json()


async def test_memory_owned_by_other_author(client):
    created = await client.post(
        "/api/characters/pixel/memories",
        json={"content": {"text": "secret"}},
        headers=auth(),
    )
    memory_id = created.json()["id"]

    response = await client.delete(f"/api/memories/{memory_id}", headers=auth("intruder"))

    assert response.status_code == 403


async def test_room_and_search_routes(client):
    session = await open_session(client, room_id="room-1")
    await client.post("/api/messages", json={"session_id": session["session_id"], "message": "laser time"})

    room = await client.get("/api/characters/pixel/rooms/room-1/memories", headers=auth())
    assert len(room.json()["memories"]) == 2

    by_rooms = await client.post(
        "/api/characters/pixel/memories/rooms",
        json={"room_ids": ["room-1"], "count": 5},
        headers=auth(),
    )
    assert len(by_rooms.json()["memories"]) == 2

    search = await client.post(
        "/api/characters/pixel/memories/search",
        json={"query": "laser time"},
        headers=auth(),
    )
    assert search.json()["memories"][0]["content"]["text"] == "laser time"
