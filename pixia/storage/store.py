"""Chat store: sessions and their ordered message history.

Every public method opens its own DB session and commits before returning
DTOs, so callers never hold ORM objects across awaits.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import delete, select

from pixia.llm.models import ImageAttachment
from pixia.storage.database import Database
from pixia.storage.models import ChatSession, Message
from pixia.storage.schemas import MessageDetail, SessionDetail

logger = logging.getLogger(__name__)

PLACEHOLDER_TITLE = "New Chat"
PREVIEW_CHARS = 32


def preview_title(content: str) -> str:
    """Title derived from the first user message of a session."""
    return content.strip()[:PREVIEW_CHARS]


class ChatStore:
    """Persistence for chat sessions and messages."""

    def __init__(self, db: Database) -> None:
        self.db = db

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def create_session(self, title: str | None = None) -> SessionDetail:
        async with self.db.session() as session:
            chat = ChatSession(title=title or PLACEHOLDER_TITLE)
            session.add(chat)
            await session.commit()
            logger.debug("Created chat session %s", chat.id)
            return self._to_session(chat)

    async def get_session(self, session_id: UUID) -> SessionDetail | None:
        async with self.db.session() as session:
            chat = await session.get(ChatSession, session_id)
            return self._to_session(chat) if chat else None

    async def list_sessions(self) -> list[SessionDetail]:
        """Pinned sessions first, then most recently updated."""
        async with self.db.session() as session:
            result = await session.execute(
                select(ChatSession).order_by(
                    ChatSession.is_pinned.desc(), ChatSession.updated_at.desc()
                )
            )
            return [self._to_session(c) for c in result.scalars()]

    async def is_session_valid(self, session_id: UUID) -> bool:
        async with self.db.session() as session:
            return await session.get(ChatSession, session_id) is not None

    async def rename_session(self, session_id: UUID, title: str) -> SessionDetail | None:
        title = title.strip()
        if not title:
            return await self.get_session(session_id)
        async with self.db.session() as session:
            chat = await session.get(ChatSession, session_id)
            if chat is None:
                return None
            chat.title = title
            chat.updated_at = datetime.now(UTC)
            await session.commit()
            return self._to_session(chat)

    async def toggle_pinned(self, session_id: UUID) -> SessionDetail | None:
        async with self.db.session() as session:
            chat = await session.get(ChatSession, session_id)
            if chat is None:
                return None
            chat.is_pinned = not chat.is_pinned
            await session.commit()
            return self._to_session(chat)

    async def delete_session(self, session_id: UUID) -> bool:
        async with self.db.session() as session:
            chat = await session.get(ChatSession, session_id)
            if chat is None:
                return False
            await session.execute(delete(Message).where(Message.session_id == session_id))
            await session.delete(chat)
            await session.commit()
            logger.debug("Deleted chat session %s", session_id)
            return True

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def append_message(
        self,
        session_id: UUID,
        role: str,
        content: str,
        reasoning: str | None = None,
        image: ImageAttachment | None = None,
    ) -> MessageDetail:
        """Append to the session; a placeholder title takes the first user preview."""
        async with self.db.session() as session:
            chat = await session.get(ChatSession, session_id)
            if chat is None:
                raise ValueError(f"Chat session {session_id} not found")

            message = Message(
                session_id=session_id,
                role=role,
                content=content,
                reasoning=reasoning or None,
                image_data=image.data if image else None,
                image_mime_type=image.mime_type if image else None,
            )
            session.add(message)

            chat.updated_at = datetime.now(UTC)
            if chat.title == PLACEHOLDER_TITLE and role == "user":
                preview = preview_title(content)
                if preview:
                    chat.title = preview

            await session.commit()
            return self._to_message(message)

    async def messages_in_order(self, session_id: UUID) -> list[MessageDetail]:
        async with self.db.session() as session:
            result = await session.execute(
                select(Message).where(Message.session_id == session_id).order_by(Message.id)
            )
            return [self._to_message(m) for m in result.scalars()]

    async def delete_messages(self, message_ids: list[int]) -> int:
        if not message_ids:
            return 0
        async with self.db.session() as session:
            result = await session.execute(delete(Message).where(Message.id.in_(message_ids)))
            await session.commit()
            return result.rowcount or 0

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _to_session(self, chat: ChatSession) -> SessionDetail:
        return SessionDetail(
            id=chat.id,
            title=chat.title,
            is_pinned=chat.is_pinned,
            created_at=chat.created_at,
            updated_at=chat.updated_at,
        )

    def _to_message(self, message: Message) -> MessageDetail:
        return MessageDetail(
            id=message.id,
            session_id=message.session_id,
            role=message.role,
            content=message.content,
            reasoning=message.reasoning,
            image_data=message.image_data,
            image_mime_type=message.image_mime_type,
            created_at=message.created_at,
        )
