"""Streaming chat session controller.

Drives the conversations of one subject: dispatches user turns to the
generation service, applies streamed chunks to the in-memory session list
as they arrive, and reconciles memory with the session store when a turn
settles.

Turn lifecycle:
    IDLE -> SENDING -> STREAMING -> SETTLED_OK | SETTLED_ERROR -> IDLE

Each turn runs as its own task bound to the id of the session it started
against, so switching the active session mid-stream never redirects chunks.
"""

import asyncio
import contextlib
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum

from ..config import GENERATION_ERROR_MESSAGE, INTERRUPTED_MESSAGE, NEW_SESSION_PREFIX
from ..errors import MalformedSessionError
from ..history.models import ChatSession, Message, Part, Role, now_ms
from ..history.store import SessionStore
from ..subjects import Subject
from ..tutor.models import Flashcard, QuizItem
from ..tutor.service import GenerationService
from . import state

logger = logging.getLogger(__name__)


class TurnState(str, Enum):
    """Progress of a turn within one session."""

    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    SETTLED_OK = "settled_ok"
    SETTLED_ERROR = "settled_error"


class EventKind(str, Enum):
    """What changed in a controller event."""

    TURN = "turn"  # turn state transition
    CHUNK = "chunk"  # streamed text applied
    SESSIONS = "sessions"  # session list changed outside a turn
    SELECTION = "selection"  # active session changed


@dataclass(frozen=True)
class ControllerEvent:
    """Notification delivered to subscribers after a visible state change."""

    kind: EventKind
    session_id: str | None = None
    state: TurnState | None = None
    chunk: str | None = None


Listener = Callable[[ControllerEvent], None]


@dataclass
class _Turn:
    session_id: str
    state: TurnState = TurnState.SENDING
    task: asyncio.Task | None = None
    chunks: list[str] = field(default_factory=list)


class ChatController:
    """Controller for one subject's chat sessions.

    Usage:
        async with ChatController(subject, service, store) as controller:
            controller.subscribe(lambda event: render(controller.messages))
            await controller.send_message([TextPart(text="What is inertia?")])

    Leaving the context (or calling ``close()``) settles every in-flight
    turn as interrupted and persists it before returning.
    """

    def __init__(
        self,
        subject: Subject,
        service: GenerationService,
        store: SessionStore,
        error_message: str = GENERATION_ERROR_MESSAGE,
        interrupted_message: str = INTERRUPTED_MESSAGE,
        clock: Callable[[], int] = now_ms,
    ):
        self._subject = subject
        self._service = service
        self._store = store
        self._error_message = error_message
        self._interrupted_message = interrupted_message
        self._clock = clock
        self._max_sessions = store.max_sessions

        self._sessions: state.Sessions = ()
        self._active_id: str | None = None
        self._turns: dict[str, _Turn] = {}
        self._listeners: list[Listener] = []
        self._save_lock = asyncio.Lock()
        self._started = False
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Load the subject's history and begin a new pending session."""
        if self._started:
            return
        self._sessions = tuple(await self._store.load(self._subject.id))
        self._started = True
        self._closed = False
        logger.debug(
            "Loaded %d session(s) for subject %r", len(self._sessions), self._subject.id
        )
        self._emit(EventKind.SESSIONS)
        self.start_new_chat()

    async def close(self) -> None:
        """Tear down: settle in-flight turns as interrupted and persist them.

        A reply that already settled and is being written finishes its
        write first. The controller can be started again afterwards.
        """
        self._closed = True
        tasks = [t.task for t in self._turns.values() if t.task and not t.task.done()]
        if tasks:
            logger.info("Interrupting %d in-flight turn(s) on teardown", len(tasks))
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        # A task cancelled before its first step never reaches its handler
        for turn in list(self._turns.values()):
            await self._settle(turn, error_text=self._interrupted_message)
        self._started = False

    async def __aenter__(self) -> "ChatController":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Snapshot reads
    # ------------------------------------------------------------------

    @property
    def subject(self) -> Subject:
        return self._subject

    @property
    def sessions(self) -> tuple[ChatSession, ...]:
        """All sessions, newest first."""
        return self._sessions

    @property
    def active_session_id(self) -> str | None:
        return self._active_id

    @property
    def active_session(self) -> ChatSession | None:
        if self._active_id is None:
            return None
        return state.find_session(self._sessions, self._active_id)

    @property
    def is_new_session(self) -> bool:
        """True while the active pointer is a pending session with no messages yet."""
        return self.active_session is None

    @property
    def messages(self) -> tuple[Message, ...]:
        session = self.active_session
        return tuple(session.messages) if session else ()

    @property
    def is_loading(self) -> bool:
        """True while the active session has a turn in flight."""
        return self.turn_state() is not TurnState.IDLE

    def turn_state(self, session_id: str | None = None) -> TurnState:
        """Turn state of ``session_id`` (default: the active session)."""
        sid = session_id if session_id is not None else self._active_id
        turn = self._turns.get(sid) if sid is not None else None
        return turn.state if turn else TurnState.IDLE

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Session selection
    # ------------------------------------------------------------------

    def start_new_chat(self) -> None:
        """Point at a fresh pending session."""
        self._active_id = f"{NEW_SESSION_PREFIX}{self._clock()}"
        self._emit(EventKind.SELECTION, self._active_id)

    def load_chat(self, session_id: str) -> None:
        """Make an existing session active.

        Raises:
            KeyError: If no session has this id
        """
        if state.find_session(self._sessions, session_id) is None:
            raise KeyError(f"No chat session with id {session_id!r}")
        self._active_id = session_id
        self._emit(EventKind.SELECTION, session_id)

    async def delete_chat(self, session_id: str) -> None:
        """Delete a session and persist the remaining ones.

        Deleting the active session activates the most recent remaining
        session, or a fresh pending session when none remain. A turn still
        streaming into the deleted session runs to completion but its
        output is discarded.
        """
        self._sessions = state.remove_session(self._sessions, session_id)
        if self._active_id == session_id:
            if self._sessions:
                self._active_id = self._sessions[0].id
                self._emit(EventKind.SELECTION, self._active_id)
            else:
                self.start_new_chat()
        self._emit(EventKind.SESSIONS)
        await self._persist()

    async def clear_history(self) -> None:
        """Forget every session of this subject, in memory and in storage."""
        self._sessions = ()
        await self._store.clear(self._subject.id)
        self._emit(EventKind.SESSIONS)
        self.start_new_chat()

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def send_message(self, parts: Sequence[Part]) -> ChatSession | None:
        """Send a user turn on the active session and stream the reply.

        A pending session becomes a real session at the head of the list.
        Does nothing when ``parts`` is empty or the active session already
        has a turn in flight.

        Returns:
            The session as it stands once the turn settled, or None if the
            turn was not started (or its session was deleted meanwhile)
        """
        parts = list(parts)
        if not parts or not self._can_dispatch(self._active_id):
            return None

        now = self._clock()
        new_messages = [Message.user(parts), Message.placeholder()]
        current = self.active_session

        if current is None:
            session_id = self._next_session_id(now)
            history: list[Message] = []
            session = ChatSession(id=session_id, timestamp=now, messages=new_messages)
            self._sessions = state.insert_session(self._sessions, session, self._max_sessions)
            self._active_id = session_id
            self._emit(EventKind.SELECTION, session_id)
        else:
            session_id = current.id
            history = list(current.messages)
            self._sessions = state.begin_turn(self._sessions, session_id, new_messages, now)

        return await self._run_turn(session_id, history, parts)

    async def try_again(
        self, user_parts: Sequence[Part], failed_message_index: int
    ) -> ChatSession | None:
        """Re-attempt the turn answered by the model message at ``failed_message_index``.

        The failed reply, the user message before it and everything after
        are replaced by ``user_parts`` and a fresh placeholder. The history
        sent to the generation service ends just before that user message.
        Does nothing when there is no active saved session, a turn is in
        flight, the index is out of range or does not point at a model
        message that answers a user message.

        Raises:
            MalformedSessionError: If the model message at the index follows
                another model message, so the turn it answered is unknown
        """
        user_parts = list(user_parts)
        session = self.active_session
        if session is None or not user_parts or not self._can_dispatch(session.id):
            return None

        messages = session.messages
        if not 0 < failed_message_index < len(messages):
            return None

        failed = messages[failed_message_index]
        previous = messages[failed_message_index - 1]
        if failed.role != Role.MODEL:
            return None
        if previous.role != Role.USER:
            raise MalformedSessionError(
                f"Session {session.id}: message {failed_message_index} follows another "
                f"model message, so the turn to retry is ambiguous"
            )

        keep = failed_message_index - 1
        history = list(messages[:keep])
        self._sessions = state.replace_tail(
            self._sessions,
            session.id,
            keep,
            [Message.user(user_parts), Message.placeholder()],
            self._clock(),
        )
        return await self._run_turn(session.id, history, user_parts)

    async def generate_quiz(self, count: int, extra_hard: bool = False) -> list[QuizItem] | None:
        """Quiz from the active conversation, or None if nothing usable came back."""
        if not self.messages:
            return None
        return await self._service.generate_quiz(
            self._subject, self.messages, count, extra_hard=extra_hard
        )

    async def generate_flashcards(self, count: int) -> list[Flashcard] | None:
        """Flashcards from the active conversation, or None if nothing usable came back."""
        if not self.messages:
            return None
        return await self._service.generate_flashcards(self._subject, self.messages, count)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _can_dispatch(self, session_id: str | None) -> bool:
        if not self._started:
            raise RuntimeError("ChatController.start() must be awaited before sending messages")
        if self._closed:
            return False
        return self.turn_state(session_id) is TurnState.IDLE

    def _next_session_id(self, now: int) -> str:
        taken = {s.id for s in self._sessions}
        while str(now) in taken:
            now += 1
        return str(now)

    async def _run_turn(
        self, session_id: str, history: list[Message], parts: list[Part]
    ) -> ChatSession | None:
        turn = _Turn(session_id=session_id)
        self._turns[session_id] = turn
        self._emit(EventKind.TURN, session_id, TurnState.SENDING)
        turn.task = asyncio.create_task(
            self._drive_turn(turn, history, parts), name=f"turn-{session_id}"
        )
        return await turn.task

    async def _drive_turn(
        self, turn: _Turn, history: list[Message], parts: list[Part]
    ) -> ChatSession | None:
        sid = turn.session_id
        try:
            stream = self._service.stream_response(self._subject, history, parts)
            async with contextlib.aclosing(stream):
                async for chunk in stream:
                    if not chunk:
                        continue
                    if turn.state is TurnState.SENDING:
                        turn.state = TurnState.STREAMING
                        self._emit(EventKind.TURN, sid, TurnState.STREAMING)
                    turn.chunks.append(chunk)
                    self._sessions = state.append_chunk(self._sessions, sid, chunk)
                    self._emit(EventKind.CHUNK, sid, TurnState.STREAMING, chunk=chunk)
        except asyncio.CancelledError:
            logger.info("Turn on session %s interrupted", sid)
            await self._settle(turn, error_text=self._interrupted_message)
            raise
        except Exception:
            logger.exception("Generation failed for session %s", sid)
            await self._settle(turn, error_text=self._error_message)
        else:
            await self._settle(turn)
        return state.find_session(self._sessions, sid)

    async def _settle(self, turn: _Turn, error_text: str | None = None) -> None:
        """Finalize the turn's reply, persist, and return the session to IDLE."""
        sid = turn.session_id
        try:
            if error_text is None:
                self._sessions = state.settle_ok(self._sessions, sid, "".join(turn.chunks))
                turn.state = TurnState.SETTLED_OK
            else:
                self._sessions = state.settle_error(self._sessions, sid, error_text)
                turn.state = TurnState.SETTLED_ERROR
            self._emit(EventKind.TURN, sid, turn.state)
            # teardown must not abort the write of an already settled reply
            save = asyncio.ensure_future(self._persist())
            try:
                await asyncio.shield(save)
            except asyncio.CancelledError:
                await save
                raise
        finally:
            if self._turns.get(sid) is turn:
                del self._turns[sid]
            self._emit(EventKind.TURN, sid, TurnState.IDLE)

    def _persistable(self) -> list[ChatSession]:
        """Current sessions, with replies still streaming stored as interrupted."""
        sessions = self._sessions
        for sid, turn in self._turns.items():
            if turn.state in (TurnState.SENDING, TurnState.STREAMING):
                sessions = state.settle_error(sessions, sid, self._interrupted_message)
        return list(sessions)

    async def _persist(self) -> None:
        async with self._save_lock:
            snapshot = self._persistable()
            persisted = await self._store.save(self._subject.id, snapshot)

        if persisted is None or len(persisted) == len(snapshot):
            return

        kept = {s.id for s in persisted}
        self._sessions = state.keep_sessions(self._sessions, kept)
        logger.info(
            "Dropped %d session(s) from memory to match storage", len(snapshot) - len(persisted)
        )
        active_evicted = (
            self._active_id is not None
            and not self._active_id.startswith(NEW_SESSION_PREFIX)
            and self._active_id not in kept
        )
        if active_evicted:
            if self._sessions:
                self._active_id = self._sessions[0].id
                self._emit(EventKind.SELECTION, self._active_id)
            else:
                self.start_new_chat()
        self._emit(EventKind.SESSIONS)

    def _emit(
        self,
        kind: EventKind,
        session_id: str | None = None,
        turn_state: TurnState | None = None,
        chunk: str | None = None,
    ) -> None:
        event = ControllerEvent(kind=kind, session_id=session_id, state=turn_state, chunk=chunk)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Controller listener failed on %s event", kind.value)
