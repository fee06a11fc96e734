"""REST API for Pixia.

Endpoints:
  GET    /health                       - Health check (DB connectivity)
  GET    /sessions                     - List sessions (pinned first)
  POST   /sessions                     - Create a session
  PATCH  /sessions/{id}                - Rename and/or pin a session
  DELETE /sessions/{id}                - Delete a session and its messages
  GET    /sessions/{id}/messages       - Persisted history in order
  POST   /sessions/{id}/messages       - Send a message, SSE turn snapshots
  GET    /sessions/{id}/state          - Current turn snapshot
  POST   /sessions/{id}/stop           - Stop the turn, keep partial reply
  POST   /sessions/{id}/cancel         - Cancel the turn, discard it
  POST   /sessions/{id}/regenerate     - Re-ask from a message, SSE turn snapshots
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from collections.abc import AsyncIterator
from typing import Any
from uuid import UUID

from sqlalchemy import text
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from pixia.chat.controller import Subscription, TurnState
from pixia.chat.registry import ControllerRegistry
from pixia.config import Settings
from pixia.llm.models import ImageAttachment
from pixia.storage.database import Database
from pixia.storage.schemas import MessageDetail
from pixia.storage.store import ChatStore

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_MIME = "image/jpeg"


def message_to_json(message: MessageDetail) -> dict[str, Any]:
    data = message.model_dump(mode="json", exclude={"image_data"})
    data["image_base64"] = (
        base64.b64encode(message.image_data).decode("ascii") if message.image_data else None
    )
    return data


def _session_id(request: Request) -> UUID | None:
    try:
        return UUID(request.path_params["id"])
    except ValueError:
        return None


async def _json_body(request: Request) -> dict[str, Any] | None:
    try:
        body = await request.json()
    except Exception:
        return None
    return body if isinstance(body, dict) else None


async def _turn_events(updates: Subscription) -> AsyncIterator[str]:
    """SSE frames of coalesced snapshots until the turn settles."""
    with updates:
        async for snapshot in updates:
            yield f"data: {json.dumps(snapshot.to_dict())}\n\n"
            if snapshot.state == TurnState.IDLE:
                break


def _stream_response(updates: Subscription) -> StreamingResponse:
    return StreamingResponse(
        _turn_events(updates),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )


def create_app(
    store: ChatStore,
    registry: ControllerRegistry,
    database: Database,
    settings: Settings,
    lifespan: Any | None = None,
) -> Starlette:
    """Create the Starlette ASGI app with all routes."""

    async def list_sessions(request: Request) -> JSONResponse:
        """GET /sessions - All sessions, pinned first."""
        sessions = await store.list_sessions()
        return JSONResponse({
            "sessions": [s.model_dump(mode="json") for s in sessions],
            "total": len(sessions),
        })

    async def create_session(request: Request) -> JSONResponse:
        """POST /sessions - Create a session with an optional title."""
        body = await _json_body(request) or {}
        title = body.get("title")
        if title is not None and not isinstance(title, str):
            return JSONResponse({"error": "title must be a string"}, status_code=400)
        chat = await store.create_session(title.strip() if title else None)
        return JSONResponse(chat.model_dump(mode="json"), status_code=201)

    async def update_session(request: Request) -> JSONResponse:
        """PATCH /sessions/{id} - Rename and/or set the pinned flag."""
        session_id = _session_id(request)
        body = await _json_body(request)
        if body is None:
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)
        chat = await store.get_session(session_id) if session_id else None
        if chat is None:
            return JSONResponse({"error": "Session not found"}, status_code=404)

        title = body.get("title")
        if title is not None:
            if not isinstance(title, str) or not title.strip():
                return JSONResponse({"error": "title must be a non-empty string"}, status_code=400)
            chat = await store.rename_session(chat.id, title) or chat

        is_pinned = body.get("is_pinned")
        if is_pinned is not None and bool(is_pinned) != chat.is_pinned:
            chat = await store.toggle_pinned(chat.id) or chat

        return JSONResponse(chat.model_dump(mode="json"))

    async def delete_session(request: Request) -> Response:
        """DELETE /sessions/{id} - Cancel any turn, then delete."""
        session_id = _session_id(request)
        if session_id is None:
            return JSONResponse({"error": "Session not found"}, status_code=404)
        await registry.discard(session_id)
        if not await store.delete_session(session_id):
            return JSONResponse({"error": "Session not found"}, status_code=404)
        return Response(status_code=204)

    async def list_messages(request: Request) -> JSONResponse:
        """GET /sessions/{id}/messages - History in creation order."""
        session_id = _session_id(request)
        if session_id is None or not await store.is_session_valid(session_id):
            return JSONResponse({"error": "Session not found"}, status_code=404)
        messages = await store.messages_in_order(session_id)
        return JSONResponse({"messages": [message_to_json(m) for m in messages]})

    async def send_message(request: Request) -> Response:
        """POST /sessions/{id}/messages - Start a turn and stream its snapshots."""
        session_id = _session_id(request)
        if session_id is None or not await store.is_session_valid(session_id):
            return JSONResponse({"error": "Session not found"}, status_code=404)
        body = await _json_body(request)
        if body is None:
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)

        message = body.get("text") or ""
        if not isinstance(message, str):
            return JSONResponse({"error": "text must be a string"}, status_code=400)

        image = None
        if body.get("image_base64"):
            try:
                data = base64.b64decode(body["image_base64"], validate=True)
            except (binascii.Error, ValueError, TypeError):
                return JSONResponse({"error": "image_base64 is not valid base64"}, status_code=400)
            image = ImageAttachment(data=data, mime_type=body.get("mime_type") or DEFAULT_IMAGE_MIME)

        controller = registry.get(session_id)
        updates = controller.subscribe()
        if not await controller.send(message, image):
            updates.close()
            return JSONResponse({"error": "Message is empty"}, status_code=400)
        return _stream_response(updates)

    async def turn_state(request: Request) -> JSONResponse:
        """GET /sessions/{id}/state - Snapshot of the session's turn."""
        session_id = _session_id(request)
        if session_id is None or not await store.is_session_valid(session_id):
            return JSONResponse({"error": "Session not found"}, status_code=404)
        return JSONResponse(registry.get(session_id).snapshot().to_dict())

    async def stop_turn(request: Request) -> JSONResponse:
        """POST /sessions/{id}/stop - Keep what arrived so far."""
        session_id = _session_id(request)
        if session_id is None or session_id not in registry:
            return JSONResponse({"stopped": False})
        stopped = await registry.get(session_id).stop()
        return JSONResponse({"stopped": stopped})

    async def cancel_turn(request: Request) -> JSONResponse:
        """POST /sessions/{id}/cancel - Discard the turn."""
        session_id = _session_id(request)
        if session_id is None or session_id not in registry:
            return JSONResponse({"cancelled": False})
        await registry.get(session_id).cancel()
        return JSONResponse({"cancelled": True})

    async def regenerate(request: Request) -> Response:
        """POST /sessions/{id}/regenerate - Re-ask from a message."""
        session_id = _session_id(request)
        if session_id is None or not await store.is_session_valid(session_id):
            return JSONResponse({"error": "Session not found"}, status_code=404)
        body = await _json_body(request)
        message_id = body.get("message_id") if body else None
        if not isinstance(message_id, int) or isinstance(message_id, bool):
            return JSONResponse({"error": "message_id must be an integer"}, status_code=400)

        controller = registry.get(session_id)
        updates = controller.subscribe()
        if not await controller.regenerate(message_id):
            updates.close()
            return JSONResponse({"error": "Cannot regenerate from this message"}, status_code=409)
        return _stream_response(updates)

    async def health(request: Request) -> JSONResponse:
        """GET /health - Health check."""
        try:
            async with database.session() as session:
                await session.execute(text("SELECT 1"))
            return JSONResponse({
                "status": "healthy",
                "api_mode": settings.api_mode,
                "model": settings.model,
            })
        except Exception as e:
            return JSONResponse({"status": "unhealthy", "error": str(e)}, status_code=503)

    routes = [
        Route("/health", health),
        Route("/sessions", list_sessions),
        Route("/sessions", create_session, methods=["POST"]),
        Route("/sessions/{id}", update_session, methods=["PATCH"]),
        Route("/sessions/{id}", delete_session, methods=["DELETE"]),
        Route("/sessions/{id}/messages", list_messages),
        Route("/sessions/{id}/messages", send_message, methods=["POST"]),
        Route("/sessions/{id}/state", turn_state),
        Route("/sessions/{id}/stop", stop_turn, methods=["POST"]),
        Route("/sessions/{id}/cancel", cancel_turn, methods=["POST"]),
        Route("/sessions/{id}/regenerate", regenerate, methods=["POST"]),
    ]

    kwargs: dict[str, Any] = {"routes": routes}
    if lifespan is not None:
        kwargs["lifespan"] = lifespan
    return Starlette(**kwargs)
