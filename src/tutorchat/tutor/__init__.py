"""Tutor generation module.

Streams tutor replies and produces quizzes and flashcards from a
conversation, either through an LLM provider, a remote server, or the
offline demo service.
"""

from .demo import DemoGenerationService
from .models import Flashcard, QuizItem, parse_flashcards, parse_quiz
from .remote import RemoteGenerationService
from .service import GenerationService, TutorService

__all__ = [
    "DemoGenerationService",
    "Flashcard",
    "GenerationService",
    "QuizItem",
    "RemoteGenerationService",
    "TutorService",
    "parse_flashcards",
    "parse_quiz",
]
