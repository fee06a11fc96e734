"""One ChatController per session, kept in an LRU map."""

from __future__ import annotations

import logging
from collections import OrderedDict
from uuid import UUID

import httpx

from pixia.chat.controller import ChatController, ClientFactory
from pixia.config import Settings
from pixia.events import EventBus
from pixia.llm.factory import build_client
from pixia.secret_store import SecretStore
from pixia.storage.store import ChatStore

logger = logging.getLogger(__name__)

MAX_CONTROLLERS = 100


class ControllerRegistry:
    def __init__(
        self,
        store: ChatStore,
        secrets: SecretStore,
        settings: Settings,
        bus: EventBus | None = None,
        http: httpx.AsyncClient | None = None,
        client_factory: ClientFactory = build_client,
        max_controllers: int = MAX_CONTROLLERS,
    ) -> None:
        self._store = store
        self._secrets = secrets
        self._settings = settings
        self._bus = bus
        self._http = http
        self._client_factory = client_factory
        self._max_controllers = max_controllers
        self._controllers: OrderedDict[UUID, ChatController] = OrderedDict()

    def get(self, session_id: UUID) -> ChatController:
        """Get existing or create new controller with LRU eviction.

        Busy controllers are never evicted, so the map may briefly exceed
        its bound while many sessions are mid-turn.
        """
        if session_id in self._controllers:
            self._controllers.move_to_end(session_id)
            return self._controllers[session_id]

        if len(self._controllers) >= self._max_controllers:
            for candidate_id, candidate in list(self._controllers.items()):
                if not candidate.is_busy:
                    del self._controllers[candidate_id]
                    logger.debug("Evicted idle controller for session %s", candidate_id)
                    break

        controller = ChatController(
            session_id,
            self._store,
            self._secrets,
            self._settings,
            bus=self._bus,
            http=self._http,
            client_factory=self._client_factory,
        )
        self._controllers[session_id] = controller
        return controller

    def __contains__(self, session_id: UUID) -> bool:
        return session_id in self._controllers

    def __len__(self) -> int:
        return len(self._controllers)

    async def discard(self, session_id: UUID) -> None:
        """Cancel and forget the session's controller (session deleted)."""
        controller = self._controllers.pop(session_id, None)
        if controller is not None:
            await controller.cancel()

    async def close(self) -> None:
        """Cancel every active turn; used on shutdown."""
        controllers = list(self._controllers.values())
        self._controllers.clear()
        for controller in controllers:
            if controller.is_busy:
                await controller.cancel()
