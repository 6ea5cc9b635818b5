"""Pure update functions over the in-memory session list.

Every function takes the current sessions and returns a new tuple; nothing
is mutated in place. Updates address a session by id, never by position,
so they stay correct when the list is re-sorted between two updates.
Updates for a session that is no longer in the list return the list
unchanged.
"""

from collections.abc import Callable, Sequence

from ..history.models import ChatSession, Message, Role, TextPart, sort_sessions

Sessions = tuple[ChatSession, ...]


def find_session(sessions: Sequence[ChatSession], session_id: str) -> ChatSession | None:
    for session in sessions:
        if session.id == session_id:
            return session
    return None


def _update_session(
    sessions: Sequence[ChatSession],
    session_id: str,
    update: Callable[[ChatSession], ChatSession],
) -> Sessions:
    return tuple(update(s) if s.id == session_id else s for s in sessions)


def _update_last_model(
    session: ChatSession,
    update: Callable[[Message], Message],
) -> ChatSession:
    last = session.last_message
    if last is None or last.role != Role.MODEL:
        return session
    return session.model_copy(update={"messages": [*session.messages[:-1], update(last)]})


def insert_session(sessions: Sequence[ChatSession], session: ChatSession, limit: int) -> Sessions:
    """Put ``session`` at the head and keep at most ``limit`` sessions."""
    others = [s for s in sessions if s.id != session.id]
    return tuple([session, *others][:limit])


def begin_turn(
    sessions: Sequence[ChatSession],
    session_id: str,
    new_messages: Sequence[Message],
    timestamp: int,
) -> Sessions:
    """Append a user message and its placeholder, then re-sort by recency."""
    updated = _update_session(
        sessions,
        session_id,
        lambda s: s.model_copy(update={
            "timestamp": timestamp,
            "messages": [*s.messages, *new_messages],
        }),
    )
    return tuple(sort_sessions(list(updated)))


def replace_tail(
    sessions: Sequence[ChatSession],
    session_id: str,
    keep: int,
    new_messages: Sequence[Message],
    timestamp: int,
) -> Sessions:
    """Keep the first ``keep`` messages and append ``new_messages`` after them."""
    updated = _update_session(
        sessions,
        session_id,
        lambda s: s.model_copy(update={
            "timestamp": timestamp,
            "messages": [*s.messages[:keep], *new_messages],
        }),
    )
    return tuple(sort_sessions(list(updated)))


def append_chunk(sessions: Sequence[ChatSession], session_id: str, chunk: str) -> Sessions:
    """Append streamed text to the session's trailing model message."""
    def grow(message: Message) -> Message:
        return message.model_copy(update={"parts": [TextPart(text=message.text + chunk)]})

    return _update_session(sessions, session_id, lambda s: _update_last_model(s, grow))


def settle_ok(sessions: Sequence[ChatSession], session_id: str, text: str) -> Sessions:
    """Finalize the trailing model message with ``text`` and clear the interrupted flag."""
    def finish(message: Message) -> Message:
        return message.model_copy(update={"parts": [TextPart(text=text)], "is_interrupted": None})

    return _update_session(sessions, session_id, lambda s: _update_last_model(s, finish))


def settle_error(sessions: Sequence[ChatSession], session_id: str, error_text: str) -> Sessions:
    """Replace the trailing model message with ``error_text`` and flag it interrupted."""
    def fail(message: Message) -> Message:
        return message.model_copy(update={"parts": [TextPart(text=error_text)], "is_interrupted": True})

    return _update_session(sessions, session_id, lambda s: _update_last_model(s, fail))


def remove_session(sessions: Sequence[ChatSession], session_id: str) -> Sessions:
    return tuple(s for s in sessions if s.id != session_id)


def keep_sessions(sessions: Sequence[ChatSession], session_ids: set[str]) -> Sessions:
    """Drop every session whose id is not in ``session_ids``."""
    return tuple(s for s in sessions if s.id in session_ids)
