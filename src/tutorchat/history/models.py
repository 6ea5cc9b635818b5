"""Data models for chat history.

These models define the structure of messages and chat sessions,
independent of the storage backend used. Field aliases match the
persisted JSON layout (camelCase keys).
"""

import time
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


class Role(str, Enum):
    """Author of a message."""

    USER = "user"
    MODEL = "model"


class TextPart(BaseModel):
    """A text content unit."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    text: str


class InlineData(BaseModel):
    """Base64-encoded binary payload with its mime type."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    data: str = Field(description="Base64-encoded bytes")
    mime_type: str = Field(alias="mimeType")


class InlineDataPart(BaseModel):
    """An inline binary content unit (e.g. an attached image)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    inline_data: InlineData = Field(alias="inlineData")


Part = TextPart | InlineDataPart


class Message(BaseModel):
    """One conversational turn."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    role: Role
    parts: list[Part] = Field(default_factory=list)
    is_interrupted: bool | None = Field(default=None, alias="isInterrupted")

    @classmethod
    def user(cls, parts: list[Part]) -> "Message":
        return cls(role=Role.USER, parts=list(parts))

    @classmethod
    def placeholder(cls) -> "Message":
        """Empty model message appended when a turn begins."""
        return cls(role=Role.MODEL, parts=[TextPart(text="")])

    @property
    def text(self) -> str:
        """Concatenated text of all text parts."""
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    @property
    def interrupted(self) -> bool:
        return bool(self.is_interrupted)


class ChatSession(BaseModel):
    """One conversation thread.

    ``timestamp`` is the last-modified instant in milliseconds and orders
    sessions newest first.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: int
    messages: list[Message] = Field(default_factory=list)

    @property
    def last_message(self) -> Message | None:
        return self.messages[-1] if self.messages else None

    @property
    def title(self) -> str:
        """Preview text taken from the first user message."""
        for msg in self.messages:
            text = msg.text.strip()
            if msg.role == Role.USER and text:
                first_line = text.splitlines()[0]
                return first_line[:60] + "..." if len(first_line) > 60 else first_line
        return "New chat"


_HISTORY_ADAPTER = TypeAdapter(list[ChatSession])


def sort_sessions(sessions: list[ChatSession]) -> list[ChatSession]:
    """Return sessions sorted newest first by timestamp."""
    return sorted(sessions, key=lambda s: s.timestamp, reverse=True)


def dump_history(sessions: list[ChatSession]) -> str:
    """Serialize a subject history to its persisted JSON form."""
    return _HISTORY_ADAPTER.dump_json(sessions, by_alias=True, exclude_none=True).decode("utf-8")


def parse_history(raw: str) -> list[ChatSession]:
    """Deserialize a persisted subject history.

    Raises:
        pydantic.ValidationError: If the payload is not valid JSON or does
            not match the session schema
    """
    return _HISTORY_ADAPTER.validate_json(raw)
