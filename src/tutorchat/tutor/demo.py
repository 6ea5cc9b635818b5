"""Offline generation service for demos.

Streams each subject's canned reply one character at a time and returns
fixed study material, so the whole application can run without an API key.
"""

import asyncio
from collections.abc import AsyncIterator, Sequence

from ..config import DEMO_CHUNK_DELAY, DEMO_FALLBACK_RESPONSE
from ..history.models import Message, Part
from ..subjects import Subject
from .models import Flashcard, QuizItem
from .service import GenerationService

DEMO_QUIZ = (
    QuizItem(question="What is 2 + 2?", options=("3", "4", "5", "6"), correct_answer="4"),
    QuizItem(
        question="What is the capital of France?",
        options=("London", "Berlin", "Paris", "Madrid"),
        correct_answer="Paris",
    ),
    QuizItem(
        question="Which planet is known as the Red Planet?",
        options=("Earth", "Mars", "Jupiter", "Venus"),
        correct_answer="Mars",
    ),
)

DEMO_FLASHCARDS = (
    Flashcard(term="Photosynthesis", definition="How plants turn light into chemical energy."),
    Flashcard(term="Inertia", definition="Resistance of an object to changes in its motion."),
    Flashcard(term="Algorithm", definition="A step-by-step procedure for solving a problem."),
)


class DemoGenerationService(GenerationService):
    """Canned, network-free generation service."""

    def __init__(self, delay: float = DEMO_CHUNK_DELAY):
        self._delay = delay

    async def stream_response(
        self,
        subject: Subject,
        prior_messages: Sequence[Message],
        new_parts: Sequence[Part],
    ) -> AsyncIterator[str]:
        for char in subject.demo_response or DEMO_FALLBACK_RESPONSE:
            await asyncio.sleep(self._delay)
            yield char

    async def generate_quiz(
        self,
        subject: Subject,
        messages: Sequence[Message],
        count: int,
        extra_hard: bool = False,
    ) -> list[QuizItem] | None:
        return list(DEMO_QUIZ[:count]) or None

    async def generate_flashcards(
        self,
        subject: Subject,
        messages: Sequence[Message],
        count: int,
    ) -> list[Flashcard] | None:
        return list(DEMO_FLASHCARDS[:count]) or None
