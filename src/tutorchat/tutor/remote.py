"""HTTP client for a remote generation service.

Talks to the endpoints served by ``tutorchat.server`` (or anything with the
same contract): ``/api/chat`` streams plain text, ``/api/quiz`` and
``/api/flashcards`` return JSON arrays.
"""

import json
import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any

import httpx

from ..errors import GenerationError
from ..history.models import Message, Part
from ..subjects import Subject
from .models import Flashcard, QuizItem, parse_flashcards, parse_quiz
from .service import GenerationService

logger = logging.getLogger(__name__)


def _dump_messages(messages: Sequence[Message]) -> list[dict[str, Any]]:
    return [m.model_dump(mode="json", by_alias=True, exclude_none=True) for m in messages]


def _dump_parts(parts: Sequence[Part]) -> list[dict[str, Any]]:
    return [p.model_dump(mode="json", by_alias=True) for p in parts]


def _error_detail(response: httpx.Response) -> str:
    """Best-effort error text from a failed response."""
    try:
        payload = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return response.reason_phrase or f"HTTP {response.status_code}"
    if isinstance(payload, dict) and payload.get("error"):
        return str(payload["error"])
    return response.reason_phrase or f"HTTP {response.status_code}"


class RemoteGenerationService(GenerationService):
    """Generation service reached over HTTP.

    Hidden design decisions:
    - httpx client setup and timeouts
    - Request body layout (camelCase message JSON)
    - Mapping non-2xx responses and transport errors to GenerationError
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the remote service.

        Args:
            base_url: Server root, e.g. ``http://localhost:8000``
            timeout: Request timeout in seconds
            client: Pre-configured client (tests inject one with a mock transport)
        """
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def stream_response(
        self,
        subject: Subject,
        prior_messages: Sequence[Message],
        new_parts: Sequence[Part],
    ) -> AsyncIterator[str]:
        body = {
            "subject_id": subject.id,
            "messages": _dump_messages(prior_messages),
            "new_parts": _dump_parts(new_parts),
        }
        try:
            async with self._client.stream("POST", "/api/chat", json=body) as response:
                if response.status_code >= 400:
                    await response.aread()
                    raise GenerationError(
                        f"I'm sorry, I encountered an error: {_error_detail(response)}",
                        status_code=response.status_code,
                    )
                async for text in response.aiter_text():
                    if text:
                        yield text
        except httpx.HTTPError as e:
            raise GenerationError(f"Network error: {e}") from e

    async def _post_items(self, path: str, body: dict[str, Any]) -> Any:
        try:
            response = await self._client.post(path, json=body)
        except httpx.HTTPError:
            logger.exception("Network error calling %s", path)
            return None

        if response.status_code >= 400:
            logger.error("%s returned %d: %s", path, response.status_code, _error_detail(response))
            return None

        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.error("%s returned a non-JSON body", path)
            return None

    async def generate_quiz(
        self,
        subject: Subject,
        messages: Sequence[Message],
        count: int,
        extra_hard: bool = False,
    ) -> list[QuizItem] | None:
        payload = await self._post_items("/api/quiz", {
            "subject_id": subject.id,
            "messages": _dump_messages(messages),
            "question_count": count,
            "extra_hard": extra_hard,
        })
        if payload is None:
            return None
        quiz = parse_quiz(payload) if isinstance(payload, list) else None
        if quiz is None:
            logger.error("Parsed quiz data is not a valid quiz array")
        return quiz

    async def generate_flashcards(
        self,
        subject: Subject,
        messages: Sequence[Message],
        count: int,
    ) -> list[Flashcard] | None:
        payload = await self._post_items("/api/flashcards", {
            "subject_id": subject.id,
            "messages": _dump_messages(messages),
            "count": count,
        })
        if payload is None:
            return None
        cards = parse_flashcards(payload) if isinstance(payload, list) else None
        if cards is None:
            logger.error("Parsed flashcard data is not a valid array")
        return cards

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
