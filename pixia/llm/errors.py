"""Error taxonomy for LLM requests.

str(error) is always the user-facing message, so callers can surface it
verbatim.
"""

from __future__ import annotations


class LLMError(Exception):
    """Base class for all request failures."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ConfigError(LLMError):
    """Invalid base URL or missing API key. Fatal to the attempt."""


class APIError(LLMError):
    """Provider-reported error, from a non-2xx status or an error payload."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NetworkError(LLMError):
    """Transport failure (DNS, connect, read timeout, reset)."""


class DecodeError(LLMError):
    """Non-streaming response body was not the JSON we expected."""
