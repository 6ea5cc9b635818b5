"""Chat session control for tutorchat.

Streams tutor replies into per-subject chat sessions, handles failed and
interrupted turns, and keeps memory and storage consistent.
"""

from .controller import ChatController, ControllerEvent, EventKind, TurnState

__all__ = [
    "ChatController",
    "ControllerEvent",
    "EventKind",
    "TurnState",
]
