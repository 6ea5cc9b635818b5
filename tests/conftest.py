"""Pytest configuration and shared fixtures."""
import asyncio
import itertools
import os

import pytest
import pytest_asyncio

from tutorchat.chat import ChatController
from tutorchat.errors import GenerationError
from tutorchat.history import ChatSession, Message, Role, SessionStore, TextPart
from tutorchat.history.in_memory import InMemoryStorage
from tutorchat.subjects import Subject
from tutorchat.tutor import Flashcard, GenerationService, QuizItem

START_MS = 1_700_000_000_000


class FakeService(GenerationService):
    """Scripted generation service.

    Every turn yields ``chunks`` in order. ``fail_after=k`` raises
    GenerationError once k chunks were yielded. ``block_after=k`` sets
    ``blocked`` after k chunks and waits for ``release`` before going on.
    """

    def __init__(
        self,
        chunks=("Hello", " there"),
        fail_after=None,
        block_after=None,
        quiz=None,
        flashcards=None,
    ):
        self.chunks = list(chunks)
        self.fail_after = fail_after
        self.block_after = block_after
        self.quiz = quiz
        self.flashcards = flashcards
        self.blocked = asyncio.Event()
        self.release = asyncio.Event()
        self.calls: list[tuple[list[Message], list]] = []
        self.subjects: list = []
        self.structured_calls: list[tuple[str, int]] = []
        self.closed = False

    async def stream_response(self, subject, prior_messages, new_parts):
        self.calls.append((list(prior_messages), list(new_parts)))
        self.subjects.append(subject)
        for i, chunk in enumerate(self.chunks):
            if self.fail_after == i:
                raise GenerationError("stream broke")
            if self.block_after == i:
                self.blocked.set()
                await self.release.wait()
            yield chunk
        if self.fail_after is not None and self.fail_after >= len(self.chunks):
            raise GenerationError("stream broke")

    async def generate_quiz(self, subject, messages, count, extra_hard=False):
        self.structured_calls.append(("quiz", count))
        return self.quiz

    async def generate_flashcards(self, subject, messages, count):
        self.structured_calls.append(("flashcards", count))
        return self.flashcards

    async def close(self):
        self.closed = True


def make_session(session_id: str, timestamp: int, *texts: str) -> ChatSession:
    """Session with alternating user/model messages built from ``texts``."""
    messages = [
        Message(role=Role.USER if i % 2 == 0 else Role.MODEL, parts=[TextPart(text=text)])
        for i, text in enumerate(texts)
    ]
    return ChatSession(id=session_id, timestamp=timestamp, messages=messages)


@pytest.fixture(scope="session")
def api_keys():
    """Return API keys from environment."""
    return {
        "gemini": os.getenv("GEMINI_API_KEY"),
        "openai": os.getenv("OPENAI_API_KEY"),
        "deepseek": os.getenv("DEEPSEEK_API_KEY"),
    }


@pytest.fixture
def subject():
    """Return a small tutoring subject."""
    return Subject(
        id="physics",
        name="Physics",
        description="Forces, energy and motion",
        system_prompt="You are a patient physics tutor.",
        demo_response="Demo!",
    )


@pytest.fixture
def storage():
    """Return an unbounded in-memory storage backend."""
    return InMemoryStorage()


@pytest.fixture
def store(storage):
    """Return a session store over the in-memory backend."""
    return SessionStore(storage)


@pytest.fixture
def make_service():
    """Return a factory for scripted generation services."""
    return FakeService


@pytest.fixture
def service():
    """Return a generation service that answers 'Hello there'."""
    return FakeService()


@pytest.fixture
def clock():
    """Return a deterministic millisecond clock that ticks on every call."""
    counter = itertools.count(START_MS)
    return lambda: next(counter)


@pytest_asyncio.fixture
async def controller(subject, service, store, clock):
    """Return a started controller; closed on teardown."""
    ctrl = ChatController(subject, service, store, clock=clock)
    await ctrl.start()
    yield ctrl
    await ctrl.close()


@pytest.fixture
def quiz_items():
    """Return two valid quiz items."""
    return [
        QuizItem(question="Unit of force?", options=("Joule", "Newton", "Watt", "Pascal"), correct_answer="Newton"),
        QuizItem(question="Speed of light?", options=("3e8 m/s", "340 m/s", "1 m/s", "9.8 m/s"), correct_answer="3e8 m/s"),
    ]


@pytest.fixture
def flashcard_items():
    """Return two flashcards."""
    return [
        Flashcard(term="Inertia", definition="Resistance to changes in motion."),
        Flashcard(term="Momentum", definition="Mass times velocity."),
    ]
