"""Chat history module for tutorchat.

Provides the message/session data model and quota-aware persistent
storage of each subject's sessions.
"""

from .base import KeyValueStorage
from .factory import create_storage_backend
from .models import (
    ChatSession,
    InlineData,
    InlineDataPart,
    Message,
    Part,
    Role,
    TextPart,
)
from .store import SessionStore

__all__ = [
    "ChatSession",
    "InlineData",
    "InlineDataPart",
    "KeyValueStorage",
    "Message",
    "Part",
    "Role",
    "SessionStore",
    "TextPart",
    "create_storage_backend",
]
