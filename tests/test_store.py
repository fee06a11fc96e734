"""Tests for ChatStore against in-memory SQLite."""

import asyncio
from uuid import uuid4

import pytest

from pixia.llm.models import ImageAttachment
from pixia.storage.store import PLACEHOLDER_TITLE, preview_title


class TestSessions:
    @pytest.mark.asyncio
    async def test_create_uses_placeholder(self, store):
        chat = await store.create_session()
        assert chat.title == PLACEHOLDER_TITLE == "New Chat"
        assert chat.is_pinned is False
        assert await store.is_session_valid(chat.id)

    @pytest.mark.asyncio
    async def test_unknown_session(self, store):
        assert await store.get_session(uuid4()) is None
        assert not await store.is_session_valid(uuid4())
        assert await store.rename_session(uuid4(), "x") is None
        assert await store.toggle_pinned(uuid4()) is None
        assert await store.delete_session(uuid4()) is False

    @pytest.mark.asyncio
    async def test_list_pinned_first_then_recent(self, store):
        old = await store.create_session("old")
        await asyncio.sleep(0.01)
        await store.create_session("pinned")
        await asyncio.sleep(0.01)
        await store.create_session("recent")
        await store.toggle_pinned(old.id)

        titles = [s.title for s in await store.list_sessions()]
        assert titles == ["old", "recent", "pinned"]

    @pytest.mark.asyncio
    async def test_rename_ignores_blank(self, store):
        chat = await store.create_session("keep")
        assert (await store.rename_session(chat.id, "   ")).title == "keep"
        assert (await store.rename_session(chat.id, " new ")).title == "new"

    @pytest.mark.asyncio
    async def test_toggle_pinned_twice(self, store):
        chat = await store.create_session()
        assert (await store.toggle_pinned(chat.id)).is_pinned is True
        assert (await store.toggle_pinned(chat.id)).is_pinned is False

    @pytest.mark.asyncio
    async def test_delete_removes_messages(self, store):
        chat = await store.create_session()
        await store.append_message(chat.id, "user", "hello")
        assert await store.delete_session(chat.id) is True
        assert not await store.is_session_valid(chat.id)
        assert await store.messages_in_order(chat.id) == []


class TestMessages:
    @pytest.mark.asyncio
    async def test_order_and_fields(self, store):
        chat = await store.create_session()
        image = ImageAttachment(data=b"\x00\x01", mime_type="image/png")
        await store.append_message(chat.id, "system", "be nice")
        await store.append_message(chat.id, "user", "look", image=image)
        await store.append_message(chat.id, "assistant", "a cat", reasoning="pixels")

        messages = await store.messages_in_order(chat.id)
        assert [m.role for m in messages] == ["system", "user", "assistant"]
        assert messages[1].image == image
        assert messages[2].reasoning == "pixels"
        assert messages[0].image is None

    @pytest.mark.asyncio
    async def test_empty_reasoning_stored_as_none(self, store):
        chat = await store.create_session()
        message = await store.append_message(chat.id, "assistant", "x", reasoning="")
        assert message.reasoning is None

    @pytest.mark.asyncio
    async def test_first_user_message_titles_placeholder(self, store):
        chat = await store.create_session()
        text = "Plan a three day trip to Kyoto in the autumn please"
        await store.append_message(chat.id, "user", text)
        await store.append_message(chat.id, "user", "second message")
        assert (await store.get_session(chat.id)).title == preview_title(text) == text[:32]

    @pytest.mark.asyncio
    async def test_custom_title_not_replaced(self, store):
        chat = await store.create_session("Mine")
        await store.append_message(chat.id, "user", "hello")
        assert (await store.get_session(chat.id)).title == "Mine"

    @pytest.mark.asyncio
    async def test_append_to_missing_session(self, store):
        with pytest.raises(ValueError):
            await store.append_message(uuid4(), "user", "hi")

    @pytest.mark.asyncio
    async def test_delete_messages(self, store):
        chat = await store.create_session()
        a = await store.append_message(chat.id, "user", "a")
        b = await store.append_message(chat.id, "assistant", "b")
        assert await store.delete_messages([b.id]) == 1
        assert await store.delete_messages([]) == 0
        assert [m.id for m in await store.messages_in_order(chat.id)] == [a.id]
