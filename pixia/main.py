"""Pixia entry point.

Initializes all components and starts the server:
  Settings -> Database -> ChatStore -> EventBus -> TitleSummarizer ->
  ControllerRegistry -> App -> Uvicorn

Uses Starlette lifespan so components live on the same event loop as uvicorn.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
import uvicorn
from starlette.applications import Starlette

from pixia.chat.registry import ControllerRegistry
from pixia.config import Settings
from pixia.events import EventBus
from pixia.handlers.title_summarizer import TitleSummarizer
from pixia.secret_store import SettingsSecretStore
from pixia.storage.database import Database
from pixia.storage.store import ChatStore

logger = logging.getLogger(__name__)


async def create_components(settings: Settings) -> dict:
    """Initialize all components in dependency order.

    Returns dict with all components for lifespan storage.
    """
    database = Database(settings)
    await database.connect()
    store = ChatStore(database)
    secrets = SettingsSecretStore(settings)

    # One pooled HTTP client shared by every turn and the title handler
    http = httpx.AsyncClient(
        timeout=httpx.Timeout(
            connect=settings.api_timeout_connect,
            read=settings.api_timeout_read,
            write=10.0,
            pool=10.0,
        )
    )

    bus = EventBus()
    title_summarizer = None
    if settings.title_summary_enabled:
        title_summarizer = TitleSummarizer(store, secrets, settings, bus, http_client=http)
    await bus.start()

    registry = ControllerRegistry(store, secrets, settings, bus=bus, http=http)

    return {
        "database": database,
        "store": store,
        "http": http,
        "bus": bus,
        "title_summarizer": title_summarizer,
        "registry": registry,
    }


async def shutdown_components(components: dict) -> None:
    """Graceful shutdown in reverse order."""
    logger.info("Shutting down Pixia...")

    registry = components.get("registry")
    if registry:
        await registry.close()

    bus = components.get("bus")
    if bus:
        await bus.stop()

    http = components.get("http")
    if http:
        await http.aclose()

    database = components.get("database")
    if database:
        await database.disconnect()

    logger.info("Pixia shutdown complete.")


def build_app(settings: Settings) -> Starlette:
    """Build the Starlette app; components are created in its lifespan."""
    components: dict = {}

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        components.update(await create_components(settings))
        app.state.components = components
        logger.info("Pixia started: %s via %s", settings.model, settings.api_mode)
        yield
        await shutdown_components(components)

    from pixia.api.rest import create_app

    return create_app(
        store=_lazy_component(components, "store"),
        registry=_lazy_component(components, "registry"),
        database=_lazy_component(components, "database"),
        settings=settings,
        lifespan=lifespan,
    )


class _LazyProxy:
    """Proxy that defers attribute access to a dict-backed component.

    Allows create_app() to receive component references before lifespan
    has initialized them.
    """

    def __init__(self, components: dict, key: str) -> None:
        object.__setattr__(self, "_components", components)
        object.__setattr__(self, "_key", key)

    def _resolve(self):
        components = object.__getattribute__(self, "_components")
        key = object.__getattribute__(self, "_key")
        obj = components.get(key)
        if obj is None:
            raise RuntimeError(f"Component '{key}' not yet initialized, lifespan hasn't started")
        return obj

    def __getattr__(self, name):
        return getattr(self._resolve(), name)

    def __contains__(self, item):
        return item in self._resolve()

    def __len__(self):
        return len(self._resolve())


def _lazy_component(components: dict, key: str) -> _LazyProxy:
    return _LazyProxy(components, key)


def main() -> None:
    """Entry point: parse settings, build app, run server."""
    settings = Settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    logger.info("Starting Pixia: %s (%s) at %s", settings.model, settings.api_mode, settings.base_url)
    logger.info("Database: %s", settings.db_url)

    if not settings.api_key:
        logger.warning("OPENAI_API_KEY is not set, chat turns will fail with 'API key is missing'")

    app = build_app(settings)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
