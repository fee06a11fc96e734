"""Chat Completions dialect (``POST /v1/chat/completions``)."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from pixia.llm.client import Extractor, LLMClient, first_match, text_at
from pixia.llm.models import (
    ChatMessage,
    LLMResponse,
    ReasoningEffort,
    RequestOptions,
    StreamEvent,
    UsageStats,
)

# Providers disagree on where reasoning text lives
_MESSAGE_CONTENT: tuple[Extractor, ...] = (text_at("choices", 0, "message", "content"),)
_MESSAGE_REASONING: tuple[Extractor, ...] = (
    text_at("choices", 0, "message", "reasoning_content"),
    text_at("choices", 0, "message", "reasoning"),
)
_DELTA_CONTENT: tuple[Extractor, ...] = (text_at("choices", 0, "delta", "content"),)
_DELTA_REASONING: tuple[Extractor, ...] = (
    text_at("choices", 0, "delta", "reasoning_content"),
    text_at("choices", 0, "delta", "reasoning"),
)


def format_message(message: ChatMessage) -> dict[str, Any]:
    """Flat string content, or an ordered parts array when images are attached."""
    if not message.images:
        return {"role": message.role.value, "content": message.content}

    parts: list[dict[str, Any]] = []
    if message.content:
        parts.append({"type": "text", "text": message.content})
    for image in message.images:
        parts.append({"type": "image_url", "image_url": {"url": image.data_url}})
    return {"role": message.role.value, "content": parts}


class ChatCompletionsClient(LLMClient):
    dialect = "chat_completions"
    path = "v1/chat/completions"

    def build_payload(
        self,
        messages: Sequence[ChatMessage],
        model: str,
        temperature: float,
        max_tokens: int | None,
        options: RequestOptions,
        stream: bool,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "messages": [format_message(m) for m in messages],
            "temperature": temperature,
        }
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        if stream:
            payload["stream"] = True
            payload["stream_options"] = {"include_usage": True}
        # Presence of "reasoning" opts in, so "off" must not be sent at all
        if options.reasoning_effort != ReasoningEffort.OFF:
            payload["reasoning"] = {"effort": options.reasoning_effort.value}
        return payload

    def parse_response(self, data: dict[str, Any]) -> LLMResponse:
        return LLMResponse(
            content=first_match(data, _MESSAGE_CONTENT) or "",
            reasoning=first_match(data, _MESSAGE_REASONING),
            usage=UsageStats.from_dict(data.get("usage")),
        )

    def parse_stream_payload(self, data: dict[str, Any]) -> tuple[list[StreamEvent], bool]:
        events: list[StreamEvent] = []

        reasoning = first_match(data, _DELTA_REASONING)
        if reasoning:
            events.append(StreamEvent.reasoning(reasoning))

        content = first_match(data, _DELTA_CONTENT)
        if content:
            events.append(StreamEvent.content(content))

        usage = UsageStats.from_dict(data.get("usage"))
        if usage is not None:
            events.append(StreamEvent.usage_event(usage))

        # End of stream is signalled by the [DONE] sentinel, not a payload
        return events, False
