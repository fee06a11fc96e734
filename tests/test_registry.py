"""Tests for ControllerRegistry: reuse, LRU eviction, discard."""

import asyncio
from uuid import uuid4

import pytest

from conftest import FakeClient, factory_for
from pixia.chat.registry import ControllerRegistry
from pixia.llm.models import StreamEvent


def _registry(store, settings, secrets, client=None, max_controllers=2) -> ControllerRegistry:
    return ControllerRegistry(
        store,
        secrets,
        settings,
        client_factory=factory_for(client or FakeClient()),
        max_controllers=max_controllers,
    )


class TestControllerRegistry:
    @pytest.mark.asyncio
    async def test_same_session_same_controller(self, store, settings, secrets):
        registry = _registry(store, settings, secrets)
        session_id = uuid4()
        assert registry.get(session_id) is registry.get(session_id)
        assert session_id in registry
        assert len(registry) == 1

    @pytest.mark.asyncio
    async def test_evicts_least_recently_used(self, store, settings, secrets):
        registry = _registry(store, settings, secrets)
        a, b, c = uuid4(), uuid4(), uuid4()
        registry.get(a)
        registry.get(b)
        registry.get(a)
        registry.get(c)

        assert a in registry
        assert c in registry
        assert b not in registry

    @pytest.mark.asyncio
    async def test_busy_controller_not_evicted(self, store, settings, secrets):
        gate = asyncio.Event()
        client = FakeClient(events=[StreamEvent.content("x")], gate=gate, events_before_gate=1)
        registry = _registry(store, settings, secrets, client=client, max_controllers=1)
        chat = await store.create_session()

        busy = registry.get(chat.id)
        await busy.send("hi")
        other = uuid4()
        registry.get(other)

        assert chat.id in registry
        assert other in registry
        await registry.close()
        assert not busy.is_busy

    @pytest.mark.asyncio
    async def test_discard_cancels_turn(self, store, settings, secrets):
        gate = asyncio.Event()
        client = FakeClient(events=[StreamEvent.content("x")], gate=gate, events_before_gate=1)
        registry = _registry(store, settings, secrets, client=client)
        chat = await store.create_session()

        controller = registry.get(chat.id)
        await controller.send("hi")
        await registry.discard(chat.id)

        assert chat.id not in registry
        assert not controller.is_busy
        roles = [m.role for m in await store.messages_in_order(chat.id)]
        assert roles == ["user"]
