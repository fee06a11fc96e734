"""Title Summarizer: names a chat after its first exchange.

Listens to: turn_completed

Runs a small non-streaming request asking for a short title. The rename is
skipped when the user changed the title while the request was in flight.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from uuid import UUID

import httpx

from pixia.chat.controller import ClientFactory
from pixia.config import Settings
from pixia.events import TURN_COMPLETED, Event, EventBus
from pixia.llm.factory import build_client
from pixia.llm.models import ChatMessage, ReasoningEffort, RequestOptions, Role
from pixia.secret_store import API_KEY, SecretStore
from pixia.storage.schemas import MessageDetail
from pixia.storage.store import PLACEHOLDER_TITLE, ChatStore, preview_title

logger = logging.getLogger(__name__)

RECENT_MESSAGES = 8
MESSAGE_CHARS = 200
TITLE_CHARS = 18
TITLE_TEMPERATURE = 0.2
TITLE_MAX_TOKENS = 32

# ASCII plus the CJK quote pairs models like to wrap titles in
_QUOTES = "\"'`“”‘’「」『』《》"

_TITLE_SYSTEM_PROMPT = (
    "You name chat conversations. Reply with the title only: no quotes, "
    "no punctuation at the end, no explanation."
)

_TITLE_PROMPT = """Write a title of at most 16 characters for this conversation, \
in the language the user writes in.

{transcript}"""

_LABELS = {Role.USER.value: "User", Role.ASSISTANT.value: "Assistant"}


def clean_title(raw: str, max_chars: int = TITLE_CHARS) -> str:
    """First non-empty line of a model reply, unquoted and truncated."""
    for line in raw.strip().splitlines():
        title = line.strip().strip(_QUOTES).strip()
        if title:
            return title[:max_chars]
    return ""


def allowed_titles(history: Sequence[MessageDetail]) -> set[str]:
    """Titles still owned by the app rather than chosen by the user."""
    titles = {PLACEHOLDER_TITLE}
    first_user = next((m for m in history if m.role == Role.USER.value), None)
    if first_user is not None:
        preview = preview_title(first_user.content)
        if preview:
            titles.add(preview)
    return titles


def build_title_transcript(history: Sequence[MessageDetail]) -> str:
    recent = [m for m in history if m.role != Role.SYSTEM.value][-RECENT_MESSAGES:]
    return "\n".join(f"{_LABELS[m.role]}: {m.content[:MESSAGE_CHARS]}" for m in recent)


class TitleSummarizer:
    """Generates session titles after assistant turns.

    Only sessions whose title is still the placeholder or the first-message
    preview are touched.
    """

    def __init__(
        self,
        store: ChatStore,
        secrets: SecretStore,
        settings: Settings,
        bus: EventBus,
        http_client: httpx.AsyncClient | None = None,
        client_factory: ClientFactory = build_client,
    ):
        self._store = store
        self._secrets = secrets
        self._settings = settings
        self._http = http_client
        self._client_factory = client_factory
        bus.on(TURN_COMPLETED, self.handle)

    async def handle(self, event: Event) -> None:
        """Handle turn_completed: retitle the session if it still has an app title."""
        try:
            session_id = UUID(event.session_id)
            chat = await self._store.get_session(session_id)
            if chat is None:
                return

            history = await self._store.messages_in_order(session_id)
            allowed = allowed_titles(history)
            if chat.title not in allowed:
                logger.debug("Session %s already has a custom title, skipping", session_id)
                return
            if not any(m.role == Role.ASSISTANT.value for m in history):
                return

            title = await self._generate_title(history)
            if not title:
                return

            # Re-read: the user may have renamed while we waited
            current = await self._store.get_session(session_id)
            if current is None or current.title not in allowed:
                logger.debug("Session %s renamed during title request, keeping it", session_id)
                return

            await self._store.rename_session(session_id, title)
            logger.info("Session %s titled: %s", session_id, title)

        except Exception:
            logger.exception("Failed to summarize title for session %s", event.session_id)

    async def _generate_title(self, history: Sequence[MessageDetail]) -> str:
        """Ask the model for a title; empty string when it gives nothing usable."""
        client = self._client_factory(
            self._settings, self._secrets.get_secret(API_KEY), self._http
        )
        messages = [
            ChatMessage(role=Role.SYSTEM, content=_TITLE_SYSTEM_PROMPT),
            ChatMessage(
                role=Role.USER,
                content=_TITLE_PROMPT.format(transcript=build_title_transcript(history)),
            ),
        ]
        response = await client.send(
            messages,
            model=self._settings.effective_title_model,
            temperature=TITLE_TEMPERATURE,
            max_tokens=TITLE_MAX_TOKENS,
            options=RequestOptions(reasoning_effort=ReasoningEffort.OFF),
        )
        return clean_title(response.content)
