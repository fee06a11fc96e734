"""Shared HTTP plumbing for the OpenAI-compatible dialect adapters.

Both dialects POST JSON with a bearer token, decode SSE line by line when
streaming, and report errors through the same ``error.message`` / ``message``
probing. Subclasses only describe their request body and how to read the
response shapes.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import aclosing, asynccontextmanager
from typing import Any

import httpx

from pixia.llm.errors import APIError, DecodeError, NetworkError
from pixia.llm.models import ChatMessage, LLMResponse, RequestOptions, StreamEvent
from pixia.llm.sse import DONE, SSEParser

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(connect=10.0, read=120.0, write=10.0, pool=10.0)

# An extraction strategy probes one JSON shape and returns None on mismatch
Extractor = Callable[[dict[str, Any]], str | None]


def dig(data: Any, *path: str | int) -> Any:
    """Walk nested dicts/lists; None as soon as a step does not fit."""
    current = data
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or len(current) <= key:
                return None
        elif not isinstance(current, dict):
            return None
        current = current[key] if isinstance(key, int) else current.get(key)
    return current


def text_at(*path: str | int) -> Extractor:
    """Extractor returning the string found at ``path``, else None."""

    def extract(data: dict[str, Any]) -> str | None:
        value = dig(data, *path)
        return value if isinstance(value, str) else None

    return extract


def first_match(data: dict[str, Any], strategies: Sequence[Extractor]) -> str | None:
    """Run strategies in order, return the first non-None result."""
    for strategy in strategies:
        value = strategy(data)
        if value is not None:
            return value
    return None


ERROR_MESSAGE_STRATEGIES: tuple[Extractor, ...] = (
    text_at("error", "message"),
    text_at("message"),
)


def extract_error_message(data: Any) -> str | None:
    """Provider error message from a decoded body, if it carries one."""
    if not isinstance(data, dict):
        return None
    return first_match(data, ERROR_MESSAGE_STRATEGIES)


def error_from_status(status_code: int, body: bytes) -> APIError:
    """Convert a non-2xx response into an APIError with the best message."""
    message = None
    try:
        message = extract_error_message(json.loads(body))
    except (ValueError, UnicodeDecodeError):
        pass
    return APIError(message or f"HTTP {status_code}", status_code=status_code)


def join_endpoint(base_url: str, path: str) -> str:
    """Append ``path`` to the base URL without doubling a ``/v1`` segment.

    ``https://host/v1`` + ``v1/responses`` -> ``https://host/v1/responses``.
    """
    url = httpx.URL(base_url)
    clean_path = path.strip("/")
    base_path = url.path.rstrip("/")
    if base_path.endswith("/v1") and clean_path.startswith("v1/"):
        clean_path = clean_path[3:]
    return str(url.copy_with(path=f"{base_path}/{clean_path}"))


class LLMClient(ABC):
    """Unified send/stream interface over one wire dialect."""

    dialect: str = ""
    path: str = ""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        http: httpx.AsyncClient | None = None,
        timeout: httpx.Timeout | None = None,
    ) -> None:
        self._base_url = base_url
        self._api_key = api_key
        self._http = http
        self._timeout = timeout or DEFAULT_TIMEOUT

    @property
    def endpoint_url(self) -> str:
        return join_endpoint(self._base_url, self.path)

    # ------------------------------------------------------------------
    # Dialect hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def build_payload(
        self,
        messages: Sequence[ChatMessage],
        model: str,
        temperature: float,
        max_tokens: int | None,
        options: RequestOptions,
        stream: bool,
    ) -> dict[str, Any]:
        """Request body for this dialect."""

    @abstractmethod
    def parse_response(self, data: dict[str, Any]) -> LLMResponse:
        """Normalize a non-streaming response body."""

    @abstractmethod
    def parse_stream_payload(self, data: dict[str, Any]) -> tuple[list[StreamEvent], bool]:
        """Normalize one decoded SSE payload.

        Returns the events it carries and whether it terminates the stream.
        """

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def send(
        self,
        messages: Sequence[ChatMessage],
        model: str,
        temperature: float,
        max_tokens: int | None = None,
        options: RequestOptions | None = None,
    ) -> LLMResponse:
        """Single request/response round trip.

        Raises APIError, NetworkError or DecodeError.
        """
        payload = self.build_payload(
            messages, model, temperature, max_tokens, options or RequestOptions(), stream=False
        )
        async with self._session() as http:
            try:
                response = await http.post(
                    self.endpoint_url, json=payload, headers=self._headers(stream=False)
                )
            except httpx.RequestError as e:
                raise NetworkError(str(e) or e.__class__.__name__) from e

        if not response.is_success:
            raise error_from_status(response.status_code, response.content)

        try:
            data = response.json()
        except ValueError as e:
            raise DecodeError(f"Invalid JSON response from {self.dialect}: {e}") from e

        message = extract_error_message(data)
        if message:
            raise APIError(message, status_code=response.status_code)
        if not isinstance(data, dict):
            raise DecodeError(f"Unexpected {self.dialect} response shape")

        return self.parse_response(data)

    async def stream(
        self,
        messages: Sequence[ChatMessage],
        model: str,
        temperature: float,
        max_tokens: int | None = None,
        options: RequestOptions | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream normalized events in payload arrival order.

        Finite and not restartable. Failures are raised from the iterator.
        """
        payload = self.build_payload(
            messages, model, temperature, max_tokens, options or RequestOptions(), stream=True
        )
        async with self._session() as http:
            try:
                async with http.stream(
                    "POST", self.endpoint_url, json=payload, headers=self._headers(stream=True)
                ) as response:
                    if not response.is_success:
                        body = await response.aread()
                        raise error_from_status(response.status_code, body)

                    async with aclosing(self._iter_payloads(response)) as payloads:
                        async for raw in payloads:
                            events, done = self._decode_stream_payload(raw)
                            for event in events:
                                yield event
                            if done:
                                return
            except httpx.RequestError as e:
                raise NetworkError(str(e) or e.__class__.__name__) from e

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _headers(self, stream: bool) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        if stream:
            headers["Accept"] = "text/event-stream"
        return headers

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        """Yield the shared client, or a short-lived one if none was injected."""
        if self._http is not None:
            yield self._http
            return
        async with httpx.AsyncClient(timeout=self._timeout) as http:
            yield http

    async def _iter_payloads(self, response: httpx.Response) -> AsyncIterator[str]:
        parser = SSEParser()
        async for line in response.aiter_lines():
            for payload in parser.feed(line):
                yield payload
        # Stream ended without a trailing blank line
        for payload in parser.finish():
            yield payload

    def _decode_stream_payload(self, raw: str) -> tuple[list[StreamEvent], bool]:
        if raw == DONE:
            return [], True
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Skipping non-JSON %s stream payload: %.200s", self.dialect, raw)
            return [], False
        if not isinstance(data, dict):
            return [], False

        message = extract_error_message(data)
        if message:
            raise APIError(message)
        return self.parse_stream_payload(data)
