"""Test fixtures: in-memory SQLite store and settings without .env lookup."""

from collections.abc import AsyncIterator, Sequence
from typing import Any

import pytest
import pytest_asyncio

from pixia.config import Settings
from pixia.llm.client import LLMClient
from pixia.llm.models import ChatMessage, LLMResponse, RequestOptions, StreamEvent
from pixia.secret_store import API_KEY, MemorySecretStore
from pixia.storage.database import Database
from pixia.storage.store import ChatStore


def make_settings(**overrides: Any) -> Settings:
    """Settings isolated from the environment, with turn delays off."""
    values: dict[str, Any] = {
        "db_url": "sqlite+aiosqlite:///:memory:",
        "min_thinking_ms": 0,
        "typing_interval_ms": 0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class FakeClient(LLMClient):
    """Scripted adapter: replays events, or a response, recording requests.

    ``gate`` (an asyncio.Event) holds the stream after ``events_before_gate``
    events until the test releases it.
    """

    dialect = "fake"
    path = "v1/fake"

    def __init__(
        self,
        events: Sequence[StreamEvent] = (),
        response: LLMResponse | None = None,
        error: Exception | None = None,
        gate: Any = None,
        events_before_gate: int = 0,
    ) -> None:
        super().__init__("https://fake.test", "sk-test")
        self.events = list(events)
        self.response = response or LLMResponse(content="")
        self.error = error
        self.gate = gate
        self.events_before_gate = events_before_gate
        self.calls: list[dict[str, Any]] = []

    def build_payload(self, messages, model, temperature, max_tokens, options, stream):
        return {}

    def parse_response(self, data):
        return self.response

    def parse_stream_payload(self, data):
        return [], False

    async def send(
        self,
        messages: Sequence[ChatMessage],
        model: str,
        temperature: float,
        max_tokens: int | None = None,
        options: RequestOptions | None = None,
    ) -> LLMResponse:
        self.calls.append({
            "messages": list(messages), "model": model, "temperature": temperature,
            "max_tokens": max_tokens, "options": options, "stream": False,
        })
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.response

    async def stream(
        self,
        messages: Sequence[ChatMessage],
        model: str,
        temperature: float,
        max_tokens: int | None = None,
        options: RequestOptions | None = None,
    ) -> AsyncIterator[StreamEvent]:
        self.calls.append({
            "messages": list(messages), "model": model, "temperature": temperature,
            "max_tokens": max_tokens, "options": options, "stream": True,
        })
        for index, event in enumerate(self.events):
            if self.gate is not None and index == self.events_before_gate:
                await self.gate.wait()
            yield event
        if self.gate is not None and self.events_before_gate >= len(self.events):
            await self.gate.wait()
        if self.error is not None:
            raise self.error


def factory_for(*clients: FakeClient):
    """Client factory handing out the given fakes in order (last one repeats)."""
    queue = list(clients)

    def factory(settings, api_key, http=None):
        return queue.pop(0) if len(queue) > 1 else queue[0]

    return factory


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def secrets() -> MemorySecretStore:
    return MemorySecretStore({API_KEY: "sk-test"})


@pytest_asyncio.fixture
async def db(settings) -> AsyncIterator[Database]:
    """Fresh in-memory database per test."""
    database = Database(settings)
    await database.connect()
    yield database
    await database.disconnect()


@pytest_asyncio.fixture
async def store(db) -> ChatStore:
    return ChatStore(db)
