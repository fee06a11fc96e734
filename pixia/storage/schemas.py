"""Pydantic DTOs returned by the chat store."""

from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel

from pixia.llm.models import ImageAttachment

MessageRole = Literal["system", "user", "assistant"]


class SessionDetail(BaseModel):
    id: UUID
    title: str
    is_pinned: bool
    created_at: datetime
    updated_at: datetime


class MessageDetail(BaseModel):
    id: int
    session_id: UUID
    role: MessageRole
    content: str
    reasoning: str | None = None
    image_data: bytes | None = None
    image_mime_type: str | None = None
    created_at: datetime

    @property
    def image(self) -> ImageAttachment | None:
        if self.image_data is None:
            return None
        return ImageAttachment(data=self.image_data, mime_type=self.image_mime_type or "image/jpeg")
