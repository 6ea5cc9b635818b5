"""
tutorchat: a subject-tuned AI tutor with persistent chat sessions.

Students chat with a tutor whose replies stream in as they are generated,
keep several saved conversations per subject, and turn a conversation into
a quiz or a set of flashcards.
"""

__version__ = "0.1.0"

from .chat import ChatController, ControllerEvent, EventKind, TurnState
from .history import (
    ChatSession,
    Message,
    SessionStore,
    TextPart,
    create_storage_backend,
)
from .subjects import Subject, get_subject, load_subjects

__all__ = [
    "ChatController",
    "ChatSession",
    "ControllerEvent",
    "EventKind",
    "Message",
    "SessionStore",
    "Subject",
    "TextPart",
    "TurnState",
    "create_storage_backend",
    "get_subject",
    "load_subjects",
]
