"""Adapter selection and configuration checks."""

from __future__ import annotations

import httpx

from pixia.config import Settings
from pixia.llm.chat_completions import ChatCompletionsClient
from pixia.llm.client import LLMClient
from pixia.llm.errors import ConfigError
from pixia.llm.responses import ResponsesClient

INVALID_BASE_URL = "Invalid base URL"
MISSING_API_KEY = "API key is missing"

_CLIENTS: dict[str, type[LLMClient]] = {
    ChatCompletionsClient.dialect: ChatCompletionsClient,
    ResponsesClient.dialect: ResponsesClient,
}


def validate_base_url(base_url: str) -> str:
    """Return the trimmed URL, or raise ConfigError if it cannot be used."""
    candidate = base_url.strip()
    try:
        url = httpx.URL(candidate)
    except (httpx.InvalidURL, TypeError) as e:
        raise ConfigError(INVALID_BASE_URL) from e
    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigError(INVALID_BASE_URL)
    return candidate


def build_client(
    settings: Settings,
    api_key: str | None,
    http: httpx.AsyncClient | None = None,
) -> LLMClient:
    """Create the adapter for ``settings.api_mode``.

    Raises ConfigError for an unusable base URL or an empty API key.
    """
    base_url = validate_base_url(settings.base_url)
    if not api_key or not api_key.strip():
        raise ConfigError(MISSING_API_KEY)

    client_cls = _CLIENTS.get(settings.api_mode)
    if client_cls is None:
        raise ConfigError(f"Unsupported API mode: {settings.api_mode}")

    timeout = httpx.Timeout(
        connect=settings.api_timeout_connect,
        read=settings.api_timeout_read,
        write=10.0,
        pool=10.0,
    )
    return client_cls(base_url, api_key.strip(), http=http, timeout=timeout)
