"""Generation service used by the chat controller.

Hides which model answers the tutor's turns and how conversation history
is shaped for it. The controller only sees an async iterator of text
fragments per turn, plus single-shot quiz and flashcard generation.
"""

import logging
import re
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence

from ..config import CHAT_TEMPERATURE, QUIZ_CONTEXT_MESSAGES
from ..errors import GenerationError
from ..history.models import InlineDataPart, Message, Part, Role, TextPart
from ..llm import Attachment, ChatMessage, LLMProvider
from ..prompts import get_structured_system_prompt, render_prompt
from ..subjects import Subject
from .models import Flashcard, QuizItem, parse_flashcards, parse_quiz

logger = logging.getLogger(__name__)

_JSON_FENCE = re.compile(r"^\s*```(?:json)?\s*(.*?)\s*```\s*$", re.DOTALL)


class GenerationService(ABC):
    """Abstract text generation capability consumed by the controller.

    All failures of a streamed turn (transport errors, non-2xx responses,
    malformed payloads) surface as exceptions raised from the iterator.
    Structured generation never raises for model misbehaviour; it returns
    None instead.
    """

    @abstractmethod
    def stream_response(
        self,
        subject: Subject,
        prior_messages: Sequence[Message],
        new_parts: Sequence[Part],
    ) -> AsyncIterator[str]:
        """Stream the tutor's reply to ``new_parts`` given the prior history."""

    @abstractmethod
    async def generate_quiz(
        self,
        subject: Subject,
        messages: Sequence[Message],
        count: int,
        extra_hard: bool = False,
    ) -> list[QuizItem] | None:
        """Generate a multiple-choice quiz from the conversation."""

    @abstractmethod
    async def generate_flashcards(
        self,
        subject: Subject,
        messages: Sequence[Message],
        count: int,
    ) -> list[Flashcard] | None:
        """Generate flashcards from the conversation."""

    async def close(self) -> None:
        """Release any held resources."""

    async def __aenter__(self) -> "GenerationService":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def usable_history(messages: Sequence[Message]) -> list[Message]:
    """Drop interrupted turns, which are never sent back to the model."""
    return [m for m in messages if not m.interrupted]


def to_chat_message(message: Message) -> ChatMessage:
    """Convert a stored message to the provider-neutral format."""
    attachments = tuple(
        Attachment(data=p.inline_data.data, mime_type=p.inline_data.mime_type)
        for p in message.parts
        if isinstance(p, InlineDataPart)
    )
    return ChatMessage(
        role="assistant" if message.role == Role.MODEL else "user",
        content=message.text,
        attachments=attachments,
    )


def build_chat_messages(
    subject: Subject,
    prior_messages: Sequence[Message],
    new_parts: Sequence[Part],
) -> list[ChatMessage]:
    """System prompt, usable prior history, then the new user turn."""
    messages = [ChatMessage(role="system", content=subject.system_prompt)]
    messages.extend(to_chat_message(m) for m in usable_history(prior_messages))
    messages.append(to_chat_message(Message.user(list(new_parts))))
    return messages


def conversation_transcript(
    messages: Sequence[Message],
    limit: int = QUIZ_CONTEXT_MESSAGES,
) -> str:
    """Flatten the most recent usable messages into ``User:``/``AI:`` lines."""
    recent = usable_history(messages)[-limit:] if limit > 0 else []
    lines = []
    for msg in recent:
        text = " ".join(p.text for p in msg.parts if isinstance(p, TextPart))
        speaker = "User" if msg.role == Role.USER else "AI"
        lines.append(f"{speaker}: {text}")
    return "\n\n".join(lines)


def strip_json_fence(text: str) -> str:
    """Remove a surrounding Markdown code fence, if the model added one."""
    match = _JSON_FENCE.match(text)
    return match.group(1) if match else text.strip()


class TutorService(GenerationService):
    """Generation service backed by an LLM provider.

    Usage:
        async with TutorService(create_llm_provider("gemini", api_key=...)) as service:
            async for chunk in service.stream_response(subject, history, parts):
                print(chunk, end="")
    """

    def __init__(self, provider: LLMProvider, temperature: float = CHAT_TEMPERATURE):
        self._provider = provider
        self._temperature = temperature

    @property
    def provider(self) -> LLMProvider:
        return self._provider

    async def stream_response(
        self,
        subject: Subject,
        prior_messages: Sequence[Message],
        new_parts: Sequence[Part],
    ) -> AsyncIterator[str]:
        messages = build_chat_messages(subject, prior_messages, new_parts)
        try:
            stream = await self._provider.chat_completion_stream(
                messages, temperature=self._temperature
            )
        except Exception as e:
            raise GenerationError(f"Failed to start generation: {e}") from e

        try:
            async for chunk in stream:
                yield chunk
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(f"Generation stream failed: {e}") from e
        finally:
            await stream.aclose()

    async def _generate_structured(self, prompt: str, what: str) -> str | None:
        messages = [
            ChatMessage(role="system", content=get_structured_system_prompt()),
            ChatMessage(role="user", content=prompt),
        ]
        try:
            response = await self._provider.chat_completion(
                messages, temperature=self._temperature, json_output=True
            )
        except Exception:
            logger.exception("LLM error during %s generation", what)
            return None
        return strip_json_fence(response.content)

    async def generate_quiz(
        self,
        subject: Subject,
        messages: Sequence[Message],
        count: int,
        extra_hard: bool = False,
    ) -> list[QuizItem] | None:
        prompt = render_prompt(
            "extra_hard_quiz" if extra_hard else "quiz",
            subject=subject.name,
            count=count,
            conversation=conversation_transcript(messages),
        )
        raw = await self._generate_structured(prompt, "quiz")
        if raw is None:
            return None

        quiz = parse_quiz(raw)
        if quiz is None:
            logger.error("Generated quiz data is not a valid quiz array: %.200s", raw)
            return None
        return quiz[:count]

    async def generate_flashcards(
        self,
        subject: Subject,
        messages: Sequence[Message],
        count: int,
    ) -> list[Flashcard] | None:
        prompt = render_prompt(
            "flashcards",
            subject=subject.name,
            count=count,
            conversation=conversation_transcript(messages),
        )
        raw = await self._generate_structured(prompt, "flashcard")
        if raw is None:
            return None

        cards = parse_flashcards(raw)
        if cards is None:
            logger.error("Generated flashcard data is not a valid array: %.200s", raw)
            return None
        return cards[:count]

    async def close(self) -> None:
        await self._provider.close()
