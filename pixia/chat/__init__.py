"""Per-session chat turn orchestration.

ChatController runs one turn at a time for a session; ControllerRegistry
hands out one controller per session.
"""

from pixia.chat.controller import (
    ChatController,
    Subscription,
    TurnSnapshot,
    TurnState,
    build_outbound_messages,
)
from pixia.chat.registry import ControllerRegistry

__all__ = [
    "ChatController",
    "ControllerRegistry",
    "Subscription",
    "TurnSnapshot",
    "TurnState",
    "build_outbound_messages",
]
