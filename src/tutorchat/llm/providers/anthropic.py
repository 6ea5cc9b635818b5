"""Claude models through the ``anthropic`` SDK."""

from collections.abc import AsyncIterator
from typing import Any

from anthropic import AsyncAnthropic

from ..base import LLMProvider
from ..models import Attachment, ChatMessage, LLMResponse, StreamingResponse, token_usage

DEFAULT_MAX_TOKENS = 4096


def _image_block(attachment: Attachment) -> dict[str, Any]:
    source = {"type": "base64", "media_type": attachment.mime_type, "data": attachment.data}
    return {"type": "image", "source": source}


def _split_messages(messages: list[ChatMessage]) -> tuple[str | None, list[dict[str, Any]]]:
    """Pull out the system prompt; images precede the text in a user turn."""
    system = None
    converted = []
    for msg in messages:
        if msg.role == "system":
            system = msg.content
        elif msg.attachments:
            blocks = [_image_block(a) for a in msg.attachments]
            if msg.content:
                blocks.append({"type": "text", "text": msg.content})
            converted.append({"role": msg.role, "content": blocks})
        else:
            converted.append({"role": msg.role, "content": msg.content})
    return system, converted


class AnthropicProvider(LLMProvider):
    """Anthropic Claude.

    The Messages API requires ``max_tokens``, so requests without one use
    ``DEFAULT_MAX_TOKENS``. ``json_output`` is not forwarded; Claude follows
    the format the prompt spells out.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        base_url: str | None = None,
        **client_kwargs: Any
    ):
        self._model = model
        self._client = AsyncAnthropic(api_key=api_key, base_url=base_url, **client_kwargs)

    @property
    def model(self) -> str:
        return self._model

    def _request_params(
        self,
        messages: list[ChatMessage],
        model: str | None,
        temperature: float,
        max_tokens: int | None,
        extra: dict[str, Any],
    ) -> dict[str, Any]:
        system, converted = _split_messages(messages)
        params: dict[str, Any] = {
            "model": model or self._model,
            "messages": converted,
            "temperature": temperature,
            "max_tokens": max_tokens or DEFAULT_MAX_TOKENS,
        }
        if system:
            params["system"] = system
        params.update(extra)
        return params

    async def chat_completion(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        json_output: bool = False,
        **kwargs: Any
    ) -> LLMResponse:
        params = self._request_params(messages, model, temperature, max_tokens, kwargs)
        message = await self._client.messages.create(**params)
        text = "".join(block.text for block in message.content if block.type == "text")
        return LLMResponse(
            content=text,
            model=message.model,
            usage=token_usage(message.usage.input_tokens, message.usage.output_tokens),
        )

    async def chat_completion_stream(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        **kwargs: Any
    ) -> StreamingResponse:
        params = self._request_params(messages, model, temperature, max_tokens, kwargs)
        usage: dict[str, Any] = {}
        return StreamingResponse(self._text_stream(params, usage), usage=usage)

    async def _text_stream(self, params: dict[str, Any], usage: dict[str, Any]) -> AsyncIterator[str]:
        async with self._client.messages.stream(**params) as stream:
            async for text in stream.text_stream:
                yield text
            final = await stream.get_final_message()
        usage.update(token_usage(final.usage.input_tokens, final.usage.output_tokens))

    async def close(self) -> None:
        await self._client.close()
