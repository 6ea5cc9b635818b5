"""HTTP surface for the generation service.

``/api/chat`` streams the tutor's reply as plain text; ``/api/quiz`` and
``/api/flashcards`` return JSON arrays. Errors use ``{"error": ...}`` bodies.
"""

import contextlib
import logging
from collections.abc import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, model_validator

from ..config import DEFAULT_FLASHCARD_COUNT, DEFAULT_QUIZ_LENGTH, MAX_STRUCTURED_ITEMS
from ..errors import UnknownSubjectError
from ..history.models import Message, Part
from ..subjects import Subject, get_subject, load_subjects
from ..tutor.models import dump_items
from ..tutor.service import GenerationService

logger = logging.getLogger(__name__)


class ChatRequest(BaseModel):
    """Chat turn; the subject is named by ``subject_id`` or sent inline as ``subject``."""

    subject_id: str | None = None
    subject: Subject | None = None
    messages: list[Message]
    new_parts: list[Part] = Field(min_length=1)

    @model_validator(mode="after")
    def _check_subject(self) -> "ChatRequest":
        if self.subject is None and self.subject_id is None:
            raise ValueError("subject_id or subject is required")
        return self

    def resolve_subject(self) -> Subject:
        """Inline subject if given, else the catalogue entry for ``subject_id``."""
        return self.subject or get_subject(self.subject_id)


class QuizRequest(BaseModel):
    subject_id: str
    messages: list[Message]
    question_count: int = Field(default=DEFAULT_QUIZ_LENGTH, ge=1, le=MAX_STRUCTURED_ITEMS)
    extra_hard: bool = False


class FlashcardRequest(BaseModel):
    subject_id: str
    messages: list[Message]
    count: int = Field(default=DEFAULT_FLASHCARD_COUNT, ge=1, le=MAX_STRUCTURED_ITEMS)


def create_app(service: GenerationService, allow_origins: list[str] | None = None) -> FastAPI:
    """Build the API around a generation service.

    Args:
        service: Service answering chat turns and structured requests
        allow_origins: CORS origins for browser clients (default: none)
    """
    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await service.close()

    app = FastAPI(title="tutorchat API", lifespan=lifespan)
    app.state.service = service

    if allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allow_origins,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    @app.exception_handler(RequestValidationError)
    async def _invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": "Missing or invalid fields", "details": jsonable_encoder(exc.errors())},
        )

    @app.exception_handler(UnknownSubjectError)
    async def _unknown_subject(request: Request, exc: UnknownSubjectError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"error": str(exc)})

    @app.get("/api/subjects")
    async def list_subjects() -> list[dict]:
        return [s.model_dump(exclude={"demo_response"}) for s in load_subjects()]

    @app.post("/api/chat")
    async def chat(body: ChatRequest):
        subject = body.resolve_subject()
        stream = service.stream_response(subject, body.messages, body.new_parts)

        # Pull the first chunk so failures before any output become a 500
        try:
            first = await anext(stream)
        except StopAsyncIteration:
            first = ""
        except Exception as e:
            logger.exception("Error in chat API")
            await stream.aclose()
            return JSONResponse(
                status_code=500,
                content={"error": "Internal Server Error", "details": str(e)},
            )

        async def body_iter() -> AsyncIterator[str]:
            async with contextlib.aclosing(stream):
                if first:
                    yield first
                async for chunk in stream:
                    yield chunk

        return StreamingResponse(body_iter(), media_type="text/plain; charset=utf-8")

    @app.post("/api/quiz")
    async def quiz(body: QuizRequest):
        subject = get_subject(body.subject_id)
        items = await service.generate_quiz(
            subject, body.messages, body.question_count, extra_hard=body.extra_hard
        )
        if not items:
            return JSONResponse(status_code=502, content={"error": "Could not generate a quiz"})
        return dump_items(items)

    @app.post("/api/flashcards")
    async def flashcards(body: FlashcardRequest):
        subject = get_subject(body.subject_id)
        items = await service.generate_flashcards(subject, body.messages, body.count)
        if not items:
            return JSONResponse(status_code=502, content={"error": "Could not generate flashcards"})
        return dump_items(items)

    return app
