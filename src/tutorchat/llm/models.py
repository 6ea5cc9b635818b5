from collections.abc import AsyncIterator
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def token_usage(prompt_tokens: int | None, completion_tokens: int | None) -> dict[str, int]:
    """Provider-neutral token usage record."""
    prompt = prompt_tokens or 0
    completion = completion_tokens or 0
    return {
        "prompt_tokens": prompt,
        "completion_tokens": completion,
        "total_tokens": prompt + completion,
    }


class StreamingResponse:
    """Async iterator over a streamed reply's text fragments.

    Providers hand in the dict they fill with token usage once the stream
    has ended, so each stream reports its own usage even when several
    tutor turns stream at the same time.

    Usage:
        stream = await provider.chat_completion_stream(messages)
        async for chunk in stream:
            print(chunk, end="")
        print(stream.usage)
    """

    def __init__(self, async_iter: AsyncIterator[str], usage: dict[str, Any] | None = None):
        self._iter = async_iter
        self._usage = usage if usage is not None else {}

    @property
    def usage(self) -> dict[str, Any] | None:
        """Token usage, or None until the provider has reported it."""
        return dict(self._usage) if self._usage else None

    def __aiter__(self) -> "StreamingResponse":
        return self

    async def __anext__(self) -> str:
        return await self._iter.__anext__()

    async def aclose(self) -> None:
        """Stop the stream early, releasing the underlying HTTP response."""
        aclose = getattr(self._iter, "aclose", None)
        if aclose is not None:
            await aclose()


class Attachment(BaseModel):
    """Image (or other binary) sent inline with a user turn."""

    model_config = ConfigDict(frozen=True)

    data: str = Field(description="Base64-encoded bytes")
    mime_type: str = Field(description="MIME type such as 'image/png'")

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


class ChatMessage(BaseModel):
    """One provider-neutral message: system prompt, student turn or tutor turn."""

    model_config = ConfigDict(frozen=True)

    role: str = Field(description="'system', 'user' or 'assistant'")
    content: str = Field(description="Text of the message")
    attachments: tuple[Attachment, ...] = Field(
        default=(),
        description="Inline attachments (user turns only)"
    )


class LLMResponse(BaseModel):
    """A complete, non-streamed reply."""

    model_config = ConfigDict(frozen=True)

    content: str
    model: str = Field(description="Model that produced the reply")
    usage: dict[str, int] | None = None
