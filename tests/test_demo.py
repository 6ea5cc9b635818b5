"""Unit tests for the offline demo service."""
import pytest

from tutorchat.config import DEMO_FALLBACK_RESPONSE
from tutorchat.history import TextPart
from tutorchat.subjects import Subject
from tutorchat.tutor import DemoGenerationService


class TestDemoGenerationService:
    """Tests for DemoGenerationService."""

    @pytest.mark.asyncio
    async def test_streams_demo_response_per_character(self, subject):
        """Test that the canned reply arrives one character at a time."""
        service = DemoGenerationService(delay=0)

        chunks = [c async for c in service.stream_response(subject, [], [TextPart(text="hi")])]

        assert chunks == list("Demo!")

    @pytest.mark.asyncio
    async def test_falls_back_without_demo_response(self):
        """Test the generic reply for subjects without one."""
        subject = Subject(id="x", name="X", system_prompt="Tutor")
        service = DemoGenerationService(delay=0)

        text = "".join([c async for c in service.stream_response(subject, [], [TextPart(text="hi")])])

        assert text == DEMO_FALLBACK_RESPONSE

    @pytest.mark.asyncio
    async def test_study_material_is_sliced_to_count(self, subject):
        """Test that the fixed quiz and flashcards honour the count."""
        service = DemoGenerationService(delay=0)

        quiz = await service.generate_quiz(subject, [], 2)
        cards = await service.generate_flashcards(subject, [], 10)

        assert len(quiz) == 2
        assert all(q.correct_answer in q.options for q in quiz)
        assert len(cards) == 3
