"""Chat controller -- owns the single in-flight turn of one chat session.

Flow of a turn:
  send() -> persist user message -> build outbound history -> adapter
  stream()/send() -> accumulate draft -> persist assistant message ->
  emit turn_completed (title summarization listens for it)

Every turn gets a token from a monotonically increasing counter. Starting,
cancelling or superseding a turn bumps the counter; any async completion
holding an older token is stale and is dropped without persisting or
surfacing anything. Writes to the store happen under ``_write_lock`` with the
token re-checked inside it, so a superseded turn can never write after the
turn that replaced it has started.

All state lives on the asyncio event loop; nothing here is thread-safe.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from contextlib import aclosing
from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import UUID

import httpx

from pixia.config import Settings
from pixia.events import TURN_COMPLETED, Event, EventBus
from pixia.llm.client import LLMClient
from pixia.llm.errors import ConfigError, LLMError
from pixia.llm.factory import build_client
from pixia.llm.models import (
    ChatMessage,
    ImageAttachment,
    LLMResponse,
    ReasoningEffort,
    RequestOptions,
    Role,
    StreamEvent,
    UsageStats,
)
from pixia.secret_store import API_KEY, SecretStore
from pixia.storage.schemas import MessageDetail
from pixia.storage.store import ChatStore

logger = logging.getLogger(__name__)

ClientFactory = Callable[[Settings, str | None, httpx.AsyncClient | None], LLMClient]

UNEXPECTED_ERROR_MESSAGE = "Something went wrong, please try again"


class TurnState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    AWAITING = "awaiting"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class TurnSnapshot:
    """Immutable copy of the controller's observable state."""

    session_id: UUID
    state: TurnState
    draft: str
    reasoning_draft: str
    is_awaiting_response: bool
    error_message: str | None
    usage: UsageStats | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": str(self.session_id),
            "state": self.state.value,
            "draft": self.draft,
            "reasoning_draft": self.reasoning_draft,
            "is_awaiting_response": self.is_awaiting_response,
            "error": self.error_message,
            "usage": self.usage.to_dict() if self.usage else None,
        }


class Subscription:
    """Snapshot feed for one observer.

    Only the newest queued snapshot is delivered; a slow reader skips the
    intermediate ones.
    """

    def __init__(self, controller: ChatController) -> None:
        self._controller = controller
        self._queue: asyncio.Queue[TurnSnapshot] = asyncio.Queue()
        controller._subscribers.add(self._queue)

    def close(self) -> None:
        self._controller._subscribers.discard(self._queue)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> TurnSnapshot:
        snapshot = await self._queue.get()
        while not self._queue.empty():
            snapshot = self._queue.get_nowait()
        return snapshot


def to_chat_message(message: MessageDetail) -> ChatMessage:
    image = message.image
    return ChatMessage(
        role=Role(message.role),
        content=message.content,
        images=(image,) if image else (),
    )


def build_outbound_messages(
    history: Sequence[MessageDetail],
    context_limit: int,
) -> list[ChatMessage]:
    """All system messages, then the last ``context_limit`` others (0 = all)."""
    system = [m for m in history if m.role == Role.SYSTEM.value]
    others = [m for m in history if m.role != Role.SYSTEM.value]
    if context_limit > 0:
        others = others[-context_limit:]
    return [to_chat_message(m) for m in system + others]


class ChatController:
    """Runs chat turns for one session: send, stream, stop, cancel, regenerate."""

    def __init__(
        self,
        session_id: UUID,
        store: ChatStore,
        secrets: SecretStore,
        settings: Settings,
        bus: EventBus | None = None,
        http: httpx.AsyncClient | None = None,
        client_factory: ClientFactory = build_client,
    ) -> None:
        self.session_id = session_id
        self._store = store
        self._secrets = secrets
        self._settings = settings
        self._bus = bus
        self._http = http
        self._client_factory = client_factory

        # Observable state
        self.state = TurnState.IDLE
        self.draft = ""
        self.reasoning_draft = ""
        self.is_awaiting_response = False
        self.error_message: str | None = None
        self.last_usage: UsageStats | None = None

        self._token = 0
        self._task: asyncio.Task | None = None
        self._write_lock = asyncio.Lock()
        self._persisting = False
        self._turn_started = 0.0
        self._pending_response: LLMResponse | None = None
        self._held_event: StreamEvent | None = None
        self._subscribers: set[asyncio.Queue[TurnSnapshot]] = set()

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def is_streaming(self) -> bool:
        return self.state == TurnState.STREAMING

    @property
    def is_busy(self) -> bool:
        return self._task is not None and not self._task.done()

    def snapshot(self) -> TurnSnapshot:
        return TurnSnapshot(
            session_id=self.session_id,
            state=self.state,
            draft=self.draft,
            reasoning_draft=self.reasoning_draft,
            is_awaiting_response=self.is_awaiting_response,
            error_message=self.error_message,
            usage=self.last_usage,
        )

    def subscribe(self) -> Subscription:
        """Register an observer; use as a context manager to unregister."""
        return Subscription(self)

    async def wait(self) -> None:
        """Wait for the current turn task, if any, to settle."""
        task = self._task
        if task is not None and not task.done():
            await asyncio.wait([task])

    # ------------------------------------------------------------------
    # Turn API
    # ------------------------------------------------------------------

    async def send(self, text: str, image: ImageAttachment | None = None) -> bool:
        """Persist a user message and start a turn for it.

        Returns False, touching nothing, for a deleted session or an empty
        input. Configuration problems are reported via ``error_message``;
        the user message stays persisted.
        """
        content = text.strip()
        if not content and image is None:
            return False
        if not await self._session_valid():
            return False

        async with self._write_lock:
            token = self._supersede()
            self.error_message = None
            try:
                history = await self._store.messages_in_order(self.session_id)
                system_prompt = self._settings.system_prompt.strip()
                if not history and system_prompt:
                    await self._store.append_message(self.session_id, Role.SYSTEM.value, system_prompt)
                await self._store.append_message(
                    self.session_id, Role.USER.value, content, image=image
                )
            except Exception:
                logger.exception("Failed to persist user message for session %s", self.session_id)
                self._settle(TurnState.IDLE)
                return False

        await self._start_turn(token)
        return True

    async def regenerate(self, message_id: int) -> bool:
        """Drop history from (assistant) or after (user) a message and re-ask.

        No-op for system messages, unknown ids, or when the remaining
        history does not end with a user message.
        """
        if not await self._session_valid():
            return False

        async with self._write_lock:
            try:
                history = await self._store.messages_in_order(self.session_id)
            except Exception:
                logger.exception("Failed to load history for session %s", self.session_id)
                return False

            index = next((i for i, m in enumerate(history) if m.id == message_id), None)
            if index is None:
                return False
            target = history[index]
            if target.role == Role.SYSTEM.value:
                return False

            cut = index if target.role == Role.ASSISTANT.value else index + 1
            remaining = history[:cut]
            if not remaining or remaining[-1].role != Role.USER.value:
                return False

            token = self._supersede()
            self.error_message = None
            try:
                await self._store.delete_messages([m.id for m in history[cut:]])
            except Exception:
                logger.exception("Failed to truncate history for session %s", self.session_id)
                self._settle(TurnState.IDLE)
                return False

        logger.info(
            "Regenerating session %s from message %d (%d dropped)",
            self.session_id,
            message_id,
            len(history) - cut,
        )
        await self._start_turn(token)
        return True

    async def stop(self) -> bool:
        """Stop the active turn and keep what arrived so far.

        Returns True if a turn was active.
        """
        task = self._task
        if task is None or task.done():
            return False
        token = self._token

        if not self._persisting:
            task.cancel()
        await asyncio.wait([task])
        if token != self._token:
            return False

        pending = self._pending_response
        if pending is not None:
            content, reasoning = pending.content, pending.reasoning
        else:
            content, reasoning = self.draft, self.reasoning_draft
            held = self._held_event
            # Delta received but not yet shown because of the thinking hold
            if held is not None and held.type == "content":
                content += held.text
            elif held is not None and held.type == "reasoning":
                reasoning += held.text
        await self._persist_assistant(token, content, reasoning)
        return True

    async def cancel(self) -> None:
        """Abandon the active turn; nothing from it is persisted."""
        self._token += 1
        task = self._task
        if task is not None and not task.done():
            if not self._persisting:
                task.cancel()
            await asyncio.wait([task])
        self._settle(TurnState.CANCELLED)
        self._settle(TurnState.IDLE)

    # ------------------------------------------------------------------
    # Turn execution
    # ------------------------------------------------------------------

    def _supersede(self) -> int:
        """Invalidate any in-flight turn and return the new token."""
        self._token += 1
        task = self._task
        if task is not None and not task.done() and not self._persisting:
            task.cancel()
        self._task = None
        return self._token

    async def _start_turn(self, token: int) -> None:
        if token != self._token:
            return

        try:
            client = self._client_factory(
                self._settings, self._secrets.get_secret(API_KEY), self._http
            )
        except ConfigError as e:
            logger.warning("Chat turn not started for session %s: %s", self.session_id, e)
            self.error_message = str(e)
            self._settle(TurnState.IDLE)
            return

        try:
            history = await self._store.messages_in_order(self.session_id)
        except Exception:
            logger.exception("Failed to load history for session %s", self.session_id)
            self._settle(TurnState.IDLE)
            return
        if token != self._token:
            return

        messages = build_outbound_messages(history, self._settings.context_limit)
        self._reset_drafts()
        self.is_awaiting_response = True
        self.state = TurnState.SENDING
        self._turn_started = asyncio.get_running_loop().time()
        self._notify()

        logger.info(
            "Turn %d for session %s: %d messages via %s (stream=%s)",
            token,
            self.session_id,
            len(messages),
            client.dialect,
            self._settings.stream,
        )
        self._task = asyncio.create_task(
            self._run_turn(token, client, messages),
            name=f"chat-turn-{self.session_id}-{token}",
        )

    async def _run_turn(self, token: int, client: LLMClient, messages: list[ChatMessage]) -> None:
        try:
            if self._settings.stream:
                await self._stream_turn(token, client, messages)
            else:
                await self._send_turn(token, client, messages)
        except asyncio.CancelledError:
            # stop(), cancel() and superseding turns finalize state themselves
            raise
        except LLMError as e:
            if token == self._token:
                logger.warning("Chat turn failed for session %s: %s", self.session_id, e)
                self.error_message = str(e)
                self._settle(TurnState.IDLE)
        except Exception:
            if token == self._token:
                logger.exception("Unexpected error in chat turn for session %s", self.session_id)
                self.error_message = UNEXPECTED_ERROR_MESSAGE
                self._settle(TurnState.IDLE)

    async def _stream_turn(self, token: int, client: LLMClient, messages: list[ChatMessage]) -> None:
        stream = client.stream(
            messages,
            model=self._settings.model,
            temperature=self._settings.temperature,
            max_tokens=self._settings.max_tokens_or_none,
            options=self._request_options(),
        )
        async with aclosing(stream) as events:
            async for event in events:
                if token != self._token:
                    return
                if self.is_awaiting_response and event.type in ("content", "reasoning"):
                    self._held_event = event
                    await self._hold_thinking()
                    if token != self._token:
                        return
                    self._held_event = None
                    self.is_awaiting_response = False
                self._apply_event(event)

        await self._hold_thinking()
        await self._persist_assistant(token, self.draft, self.reasoning_draft)

    async def _send_turn(self, token: int, client: LLMClient, messages: list[ChatMessage]) -> None:
        self.state = TurnState.AWAITING
        self._notify()

        response = await client.send(
            messages,
            model=self._settings.model,
            temperature=self._settings.temperature,
            max_tokens=self._settings.max_tokens_or_none,
            options=self._request_options(),
        )
        if token != self._token:
            return
        if response.usage is not None:
            self.last_usage = response.usage
        self._pending_response = response

        await self._hold_thinking()
        if token != self._token:
            return
        self.is_awaiting_response = False

        if self._settings.typing_effect and response.content:
            await self._simulate_typing(token, response.content)
            if token != self._token:
                return

        await self._persist_assistant(token, response.content, response.reasoning)

    def _apply_event(self, event: StreamEvent) -> None:
        if event.type == "content":
            self.draft += event.text
        elif event.type == "reasoning":
            self.reasoning_draft += event.text
        elif event.type == "usage" and event.usage is not None:
            # Only the last usage report counts
            self.last_usage = event.usage
        else:
            return
        self.state = TurnState.STREAMING
        self._notify()

    async def _hold_thinking(self) -> None:
        """Keep the thinking flag up for at least ``min_thinking_ms``."""
        elapsed = asyncio.get_running_loop().time() - self._turn_started
        remaining = self._settings.min_thinking_ms / 1000 - elapsed
        if remaining > 0:
            await asyncio.sleep(remaining)

    async def _simulate_typing(self, token: int, content: str) -> None:
        """Reveal a complete reply into the draft a few characters at a time."""
        step = self._settings.typing_chunk_chars
        interval = self._settings.typing_interval_ms / 1000
        self.state = TurnState.STREAMING
        for end in range(step, len(content) + step, step):
            if token != self._token:
                return
            self.draft = content[:end]
            self._notify()
            await asyncio.sleep(interval)

    async def _persist_assistant(self, token: int, content: str, reasoning: str | None) -> None:
        """Write the finished turn exactly once, unless it went stale."""
        message: MessageDetail | None = None
        async with self._write_lock:
            if token != self._token:
                return
            self._persisting = True
            try:
                self._reset_drafts()
                self.is_awaiting_response = False
                if content and await self._session_valid():
                    message = await self._store.append_message(
                        self.session_id,
                        Role.ASSISTANT.value,
                        content,
                        reasoning=reasoning or None,
                    )
            except Exception:
                logger.exception("Failed to persist assistant message for session %s", self.session_id)
            finally:
                self._persisting = False
                self.state = TurnState.IDLE
                self._notify()

        if message is not None:
            await self._emit_turn_completed(message)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _request_options(self) -> RequestOptions:
        return RequestOptions(reasoning_effort=ReasoningEffort(self._settings.reasoning_effort))

    async def _session_valid(self) -> bool:
        try:
            return await self._store.is_session_valid(self.session_id)
        except Exception:
            logger.exception("Session lookup failed for %s", self.session_id)
            return False

    async def _emit_turn_completed(self, message: MessageDetail) -> None:
        if self._bus is None:
            return
        await self._bus.emit(Event(
            type=TURN_COMPLETED,
            session_id=str(self.session_id),
            data={"message_id": message.id},
        ))

    def _reset_drafts(self) -> None:
        self.draft = ""
        self.reasoning_draft = ""
        self._pending_response = None
        self._held_event = None

    def _settle(self, state: TurnState) -> None:
        self._reset_drafts()
        self.is_awaiting_response = False
        self.state = state
        self._notify()

    def _notify(self) -> None:
        if not self._subscribers:
            return
        snapshot = self.snapshot()
        for queue in self._subscribers:
            queue.put_nowait(snapshot)
