"""LLM dialect adapters for OpenAI-compatible endpoints.

Public API:
    LLMClient             - Abstract send/stream interface
    ChatCompletionsClient - /v1/chat/completions dialect
    ResponsesClient       - /v1/responses dialect
    build_client          - Adapter selection from Settings
    SSEParser             - Incremental SSE decoder

Models:
    ChatMessage, ImageAttachment, Role, StreamEvent, UsageStats,
    LLMResponse, ReasoningEffort, RequestOptions

Errors:
    LLMError, ConfigError, APIError, NetworkError, DecodeError
"""

from pixia.llm.chat_completions import ChatCompletionsClient
from pixia.llm.client import LLMClient
from pixia.llm.errors import APIError, ConfigError, DecodeError, LLMError, NetworkError
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
from pixia.llm.responses import ResponsesClient
from pixia.llm.sse import SSEParser

__all__ = [
    "LLMClient",
    "ChatCompletionsClient",
    "ResponsesClient",
    "build_client",
    "SSEParser",
    "ChatMessage",
    "ImageAttachment",
    "LLMResponse",
    "ReasoningEffort",
    "RequestOptions",
    "Role",
    "StreamEvent",
    "UsageStats",
    "LLMError",
    "ConfigError",
    "APIError",
    "NetworkError",
    "DecodeError",
]
