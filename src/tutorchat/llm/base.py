from abc import ABC, abstractmethod
from typing import Any

from .models import ChatMessage, LLMResponse, StreamingResponse


class LLMProvider(ABC):
    """A chat model the tutor can talk to.

    Hides which vendor SDK answers, how the system prompt and inline images
    are encoded for it, and how token usage is read back. Tutor turns use
    ``chat_completion_stream``; quizzes and flashcards use
    ``chat_completion`` with ``json_output=True``.

    Providers are async context managers:
        async with create_llm_provider("gemini", api_key=key) as provider:
            reply = await provider.chat_completion(messages)
    """

    @property
    @abstractmethod
    def model(self) -> str:
        """Model used when a call does not name one."""

    @abstractmethod
    async def chat_completion(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        json_output: bool = False,
        **kwargs: Any
    ) -> LLMResponse:
        """Return the whole reply at once.

        Args:
            messages: System prompt followed by the conversation
            model: Overrides the provider's default model
            temperature: Sampling temperature
            max_tokens: Cap on generated tokens (provider default when None)
            json_output: Ask for a bare JSON document where the vendor
                supports it; others rely on the prompt alone
            **kwargs: Passed through to the vendor SDK

        Raises:
            Exception: Whatever the vendor SDK raises
        """

    @abstractmethod
    async def chat_completion_stream(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        **kwargs: Any
    ) -> StreamingResponse:
        """Start a streamed reply.

        Errors may surface either here or while iterating the stream.
        Token usage is on ``StreamingResponse.usage`` once it is exhausted.
        """

    @abstractmethod
    async def close(self) -> None:
        """Release the SDK client."""

    async def __aenter__(self) -> "LLMProvider":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        # httpx can race the loop shutdown while closing its pool:
        # https://github.com/encode/httpx/issues/914
        try:
            await self.close()
        except RuntimeError as e:
            if "Event loop is closed" not in str(e):
                raise
