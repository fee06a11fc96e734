"""Settings via pydantic-settings with PIXIA_ env prefix.

The API key is read from the unprefixed OPENAI_API_KEY env var so the same
.env file works for other OpenAI tooling.
"""

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="PIXIA_", env_file=".env", extra="ignore")

    # Endpoint
    base_url: str = "https://api.openai.com"
    api_mode: Literal["chat_completions", "responses"] = "responses"
    api_key: str = Field("", validation_alias="OPENAI_API_KEY")
    api_timeout_connect: int = 10  # seconds
    api_timeout_read: int = 120  # seconds

    # Generation
    model: str = "gpt-5.2"
    temperature: float = 0.7
    max_tokens: int = 1024  # 0 = let the provider decide
    stream: bool = True
    reasoning_effort: Literal["off", "low", "medium", "high"] = "off"
    system_prompt: str = ""
    context_limit: int = 0  # Non-system messages sent per request, 0 = unlimited

    # Turn UX
    min_thinking_ms: int = 600
    typing_effect: bool = False
    typing_chunk_chars: int = 3
    typing_interval_ms: int = 15

    # Title summarization
    title_summary_enabled: bool = True
    title_model: str = ""  # Empty = use `model`

    # Storage
    db_url: str = "sqlite+aiosqlite:///pixia.db"

    # Runtime
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "info"

    @model_validator(mode="after")
    def _validate_limits(self) -> "Settings":
        if self.max_tokens < 0:
            raise ValueError("max_tokens must be >= 0")
        if self.context_limit < 0:
            raise ValueError("context_limit must be >= 0")
        if self.typing_chunk_chars < 1:
            raise ValueError("typing_chunk_chars must be >= 1")
        return self

    @property
    def max_tokens_or_none(self) -> int | None:
        return self.max_tokens if self.max_tokens > 0 else None

    @property
    def effective_title_model(self) -> str:
        return self.title_model or self.model
