"""Integration tests for REST API endpoints.

Uses httpx AsyncClient with ASGITransport, a real in-memory store and a
FakeClient adapter behind the controller registry.
"""

from __future__ import annotations

import base64
import json
import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from conftest import FakeClient, factory_for
from pixia.api.rest import create_app
from pixia.chat.registry import ControllerRegistry
from pixia.llm.models import StreamEvent
from pixia.secret_store import MemorySecretStore

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_llm() -> FakeClient:
    return FakeClient(events=[StreamEvent.reasoning("hmm"), StreamEvent.content("Hi there")])


@pytest_asyncio.fixture
async def client(db, store, settings, secrets, fake_llm):
    registry = ControllerRegistry(store, secrets, settings, client_factory=factory_for(fake_llm))
    app = create_app(store=store, registry=registry, database=db, settings=settings)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await registry.close()


def _snapshots(body: str) -> list[dict]:
    return [json.loads(line[6:]) for line in body.splitlines() if line.startswith("data: ")]


async def _new_session(client: AsyncClient, **body) -> str:
    r = await client.post("/sessions", json=body)
    assert r.status_code == 201
    return r.json()["id"]


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class TestSessions:
    @pytest.mark.asyncio
    async def test_health(self, client):
        r = await client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_create_and_list(self, client):
        session_id = await _new_session(client)
        await _new_session(client, title="Named")

        r = await client.get("/sessions")
        data = r.json()
        assert data["total"] == 2
        titles = {s["id"]: s["title"] for s in data["sessions"]}
        assert titles[session_id] == "New Chat"
        assert "Named" in titles.values()

    @pytest.mark.asyncio
    async def test_update_title_and_pin(self, client):
        session_id = await _new_session(client)

        r = await client.patch(f"/sessions/{session_id}", json={"title": "Trip", "is_pinned": True})
        assert r.status_code == 200
        assert r.json()["title"] == "Trip"
        assert r.json()["is_pinned"] is True

        r = await client.patch(f"/sessions/{session_id}", json={"is_pinned": True})
        assert r.json()["is_pinned"] is True

    @pytest.mark.asyncio
    async def test_update_rejects_blank_title(self, client):
        session_id = await _new_session(client)
        r = await client.patch(f"/sessions/{session_id}", json={"title": "  "})
        assert r.status_code == 400

    @pytest.mark.asyncio
    async def test_update_unknown(self, client):
        r = await client.patch(f"/sessions/{uuid.uuid4()}", json={"title": "x"})
        assert r.status_code == 404
        r = await client.patch("/sessions/not-a-uuid", json={"title": "x"})
        assert r.status_code == 404

    @pytest.mark.asyncio
    async def test_delete(self, client):
        session_id = await _new_session(client)
        assert (await client.delete(f"/sessions/{session_id}")).status_code == 204
        assert (await client.delete(f"/sessions/{session_id}")).status_code == 404
        assert (await client.get(f"/sessions/{session_id}/messages")).status_code == 404


# ---------------------------------------------------------------------------
# Turns
# ---------------------------------------------------------------------------


class TestTurns:
    @pytest.mark.asyncio
    async def test_send_streams_snapshots_until_idle(self, client):
        session_id = await _new_session(client)

        r = await client.post(f"/sessions/{session_id}/messages", json={"text": "Hello"})
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/event-stream")

        snapshots = _snapshots(r.text)
        assert snapshots[-1]["state"] == "idle"
        assert snapshots[-1]["error"] is None

        r = await client.get(f"/sessions/{session_id}/messages")
        messages = r.json()["messages"]
        assert [(m["role"], m["content"]) for m in messages] == [
            ("user", "Hello"),
            ("assistant", "Hi there"),
        ]
        assert messages[1]["reasoning"] == "hmm"

    @pytest.mark.asyncio
    async def test_send_with_image(self, client, fake_llm):
        session_id = await _new_session(client)
        encoded = base64.b64encode(b"\x89PNG-bytes").decode()

        r = await client.post(
            f"/sessions/{session_id}/messages",
            json={"text": "What is this?", "image_base64": encoded, "mime_type": "image/png"},
        )
        assert r.status_code == 200

        messages = (await client.get(f"/sessions/{session_id}/messages")).json()["messages"]
        assert messages[0]["image_base64"] == encoded
        assert messages[0]["image_mime_type"] == "image/png"
        assert fake_llm.calls[0]["messages"][-1].images[0].data == b"\x89PNG-bytes"

    @pytest.mark.asyncio
    async def test_send_rejections(self, client):
        session_id = await _new_session(client)

        r = await client.post(f"/sessions/{session_id}/messages", json={"text": "   "})
        assert r.status_code == 400
        r = await client.post(f"/sessions/{session_id}/messages", json={"text": "x", "image_base64": "%%%"})
        assert r.status_code == 400
        r = await client.post(f"/sessions/{uuid.uuid4()}/messages", json={"text": "hi"})
        assert r.status_code == 404
        r = await client.post(f"/sessions/{session_id}/messages", content=b"not json")
        assert r.status_code == 400

    @pytest.mark.asyncio
    async def test_config_error_reported_in_stream(self, db, store, settings):
        registry = ControllerRegistry(store, MemorySecretStore(), settings)
        app = create_app(store=store, registry=registry, database=db, settings=settings)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            session_id = await _new_session(ac)
            r = await ac.post(f"/sessions/{session_id}/messages", json={"text": "hi"})

        snapshots = _snapshots(r.text)
        assert snapshots[-1]["state"] == "idle"
        assert snapshots[-1]["error"] == "API key is missing"

    @pytest.mark.asyncio
    async def test_regenerate(self, client, fake_llm):
        session_id = await _new_session(client)
        await client.post(f"/sessions/{session_id}/messages", json={"text": "Hello"})
        messages = (await client.get(f"/sessions/{session_id}/messages")).json()["messages"]
        assistant_id = messages[-1]["id"]

        r = await client.post(f"/sessions/{session_id}/regenerate", json={"message_id": assistant_id})
        assert r.status_code == 200
        assert _snapshots(r.text)[-1]["state"] == "idle"

        messages = (await client.get(f"/sessions/{session_id}/messages")).json()["messages"]
        assert [m["role"] for m in messages] == ["user", "assistant"]
        assert len(fake_llm.calls) == 2
        assert [m.content for m in fake_llm.calls[1]["messages"]] == ["Hello"]

    @pytest.mark.asyncio
    async def test_regenerate_rejected(self, client):
        session_id = await _new_session(client)
        r = await client.post(f"/sessions/{session_id}/regenerate", json={"message_id": 12345})
        assert r.status_code == 409
        r = await client.post(f"/sessions/{session_id}/regenerate", json={"message_id": "1"})
        assert r.status_code == 400

    @pytest.mark.asyncio
    async def test_stop_and_cancel_without_turn(self, client):
        session_id = await _new_session(client)
        assert (await client.post(f"/sessions/{session_id}/stop")).json() == {"stopped": False}
        assert (await client.post(f"/sessions/{session_id}/cancel")).json() == {"cancelled": False}

    @pytest.mark.asyncio
    async def test_state(self, client):
        session_id = await _new_session(client)
        r = await client.get(f"/sessions/{session_id}/state")
        assert r.status_code == 200
        assert r.json()["state"] == "idle"
        assert r.json()["session_id"] == session_id
