"""Value types shared by the dialect adapters and the chat controller.

ChatMessage / ImageAttachment describe outbound history, StreamEvent is the
normalized streaming event, LLMResponse the normalized non-streaming reply.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ReasoningEffort(str, Enum):
    OFF = "off"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class RequestOptions:
    """Per-request knobs that are not part of the message history."""

    reasoning_effort: ReasoningEffort = ReasoningEffort.OFF


@dataclass(frozen=True)
class ImageAttachment:
    """Raw image bytes; encoded only when a request is serialized."""

    data: bytes
    mime_type: str

    @property
    def data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


@dataclass(frozen=True)
class ChatMessage:
    """A single outbound message, built per request from persisted history."""

    role: Role
    content: str
    images: tuple[ImageAttachment, ...] = ()


def _as_int(value: Any) -> int | None:
    # bool is an int subclass; never a token count
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


@dataclass(frozen=True)
class UsageStats:
    """Token accounting reported by the provider."""

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None

    @property
    def total(self) -> int | None:
        if self.total_tokens is not None:
            return self.total_tokens
        if self.prompt_tokens is not None and self.completion_tokens is not None:
            return self.prompt_tokens + self.completion_tokens
        return None

    @classmethod
    def from_dict(cls, data: Any) -> UsageStats | None:
        """Build from either dialect's usage object.

        Chat Completions reports prompt_tokens/completion_tokens, Responses
        reports input_tokens/output_tokens. Returns None when nothing usable
        is present.
        """
        if not isinstance(data, dict):
            return None
        prompt = _as_int(data.get("prompt_tokens"))
        if prompt is None:
            prompt = _as_int(data.get("input_tokens"))
        completion = _as_int(data.get("completion_tokens"))
        if completion is None:
            completion = _as_int(data.get("output_tokens"))
        total = _as_int(data.get("total_tokens"))
        if prompt is None and completion is None and total is None:
            return None
        return cls(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)

    def to_dict(self) -> dict[str, int | None]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total,
        }


@dataclass(frozen=True)
class StreamEvent:
    """A single normalized event from a streaming response."""

    type: str  # content, reasoning, usage
    text: str = ""
    usage: UsageStats | None = field(default=None)

    @classmethod
    def content(cls, text: str) -> StreamEvent:
        return cls(type="content", text=text)

    @classmethod
    def reasoning(cls, text: str) -> StreamEvent:
        return cls(type="reasoning", text=text)

    @classmethod
    def usage_event(cls, usage: UsageStats) -> StreamEvent:
        return cls(type="usage", usage=usage)


@dataclass(frozen=True)
class LLMResponse:
    """Parsed non-streaming response."""

    content: str
    reasoning: str | None = None
    usage: UsageStats | None = None
