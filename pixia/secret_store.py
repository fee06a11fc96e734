"""Secret lookup, injected wherever an API key is needed."""

from __future__ import annotations

from typing import Protocol

from pixia.config import Settings

API_KEY = "openai_api_key"


class SecretStore(Protocol):
    def get_secret(self, key: str) -> str | None: ...


class MemorySecretStore:
    """Dict-backed store, used by tests and by callers managing keys themselves."""

    def __init__(self, secrets: dict[str, str] | None = None) -> None:
        self._secrets = dict(secrets or {})

    def get_secret(self, key: str) -> str | None:
        return self._secrets.get(key) or None

    def set_secret(self, key: str, value: str) -> None:
        if value:
            self._secrets[key] = value
        else:
            self._secrets.pop(key, None)


class SettingsSecretStore:
    """Reads the API key from Settings (OPENAI_API_KEY env var / .env)."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def get_secret(self, key: str) -> str | None:
        if key == API_KEY:
            return self._settings.api_key or None
        return None
