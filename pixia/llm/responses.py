"""Responses dialect (``POST /v1/responses``).

Text only: images and reasoning effort are not sent by this dialect.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from pixia.llm.client import Extractor, LLMClient, dig, first_match, text_at
from pixia.llm.models import ChatMessage, LLMResponse, RequestOptions, StreamEvent, UsageStats

logger = logging.getLogger(__name__)

# Terminal event types. failed/canceled end the stream like completed does.
TERMINAL_EVENTS = frozenset({"response.completed", "response.failed", "response.canceled"})


def _joined_output_text(data: dict[str, Any]) -> str | None:
    """Concatenate output[].content[].text (or .output_text)."""
    output = data.get("output")
    if not isinstance(output, list):
        return None
    parts: list[str] = []
    for item in output:
        content = item.get("content") if isinstance(item, dict) else None
        if not isinstance(content, list):
            continue
        for block in content:
            if not isinstance(block, dict):
                continue
            text = block.get("text")
            if not isinstance(text, str):
                text = block.get("output_text")
            if isinstance(text, str):
                parts.append(text)
    return "".join(parts) if parts else None


_OUTPUT_TEXT: tuple[Extractor, ...] = (
    text_at("output_text"),
    _joined_output_text,
    text_at("choices", 0, "message", "content"),
)

# Untyped payloads some proxies emit
_UNTYPED_DELTA: tuple[Extractor, ...] = (
    text_at("delta", "text"),
    text_at("text"),
)


def format_input(messages: Sequence[ChatMessage]) -> list[dict[str, Any]]:
    formatted = []
    for message in messages:
        if message.images:
            logger.debug("Responses dialect drops %d image(s)", len(message.images))
        formatted.append({
            "role": message.role.value,
            "content": [{"type": "input_text", "text": message.content}],
        })
    return formatted


class ResponsesClient(LLMClient):
    dialect = "responses"
    path = "v1/responses"

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
            "input": format_input(messages),
            "temperature": temperature,
        }
        if max_tokens is not None:
            payload["max_output_tokens"] = max_tokens
        if stream:
            payload["stream"] = True
        return payload

    def parse_response(self, data: dict[str, Any]) -> LLMResponse:
        return LLMResponse(
            content=first_match(data, _OUTPUT_TEXT) or "",
            usage=UsageStats.from_dict(data.get("usage")),
        )

    def parse_stream_payload(self, data: dict[str, Any]) -> tuple[list[StreamEvent], bool]:
        event_type = data.get("type")

        if event_type == "response.output_text.delta":
            return _content(dig(data, "delta")), False

        if event_type == "response.output_text":
            return _content(dig(data, "text")), False

        if event_type == "response.output_text.done":
            return [], False

        if event_type in TERMINAL_EVENTS:
            if event_type != "response.completed":
                # Not surfaced as an error; the partial reply is still kept
                logger.warning(
                    "Responses stream ended with %s: %s",
                    event_type,
                    dig(data, "response", "error", "message") or "no details",
                )
            usage = UsageStats.from_dict(dig(data, "response", "usage"))
            return ([StreamEvent.usage_event(usage)] if usage else []), True

        if event_type is None:
            return _content(first_match(data, _UNTYPED_DELTA)), False

        # Lifecycle events (response.created, output_item.added, ...) and any
        # unknown typed event yield nothing. Unlike the untyped branch above,
        # there is no fallback to delta.text or text here, so new event kinds
        # cannot leak their payload into the reply.
        return [], False


def _content(text: Any) -> list[StreamEvent]:
    if isinstance(text, str) and text:
        return [StreamEvent.content(text)]
    return []
