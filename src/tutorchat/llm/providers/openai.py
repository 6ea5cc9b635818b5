from collections.abc import AsyncIterator
from typing import Any

from openai import AsyncOpenAI

from ..base import LLMProvider
from ..models import ChatMessage, LLMResponse, StreamingResponse, token_usage

DEEPSEEK_BASE_URL = "https://api.deepseek.com"


def _to_openai_message(msg: ChatMessage) -> dict[str, Any]:
    """Chat Completions message; images go in the multi-part form as data URLs."""
    if not msg.attachments:
        return {"role": msg.role, "content": msg.content}

    parts: list[dict[str, Any]] = [{"type": "text", "text": msg.content}] if msg.content else []
    parts += [{"type": "image_url", "image_url": {"url": a.data_url}} for a in msg.attachments]
    return {"role": msg.role, "content": parts}


class OpenAIProvider(LLMProvider):
    """OpenAI Chat Completions, and compatible services such as DeepSeek.

    ``json_output`` is not forwarded: JSON mode only allows objects and the
    study material replies are arrays, so the prompt alone fixes the format.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        organization: str | None = None,
        **client_kwargs: Any
    ):
        self._model = model
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, organization=organization, **client_kwargs)

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
        params: dict[str, Any] = {
            "model": model or self._model,
            "messages": [_to_openai_message(m) for m in messages],
            "temperature": temperature,
        }
        if max_tokens is not None:
            params["max_tokens"] = max_tokens
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
        completion = await self._client.chat.completions.create(**params)

        counts = completion.usage
        return LLMResponse(
            content=completion.choices[0].message.content or "",
            model=completion.model,
            usage=token_usage(counts.prompt_tokens, counts.completion_tokens) if counts else None,
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
        params["stream"] = True
        params["stream_options"] = {"include_usage": True}
        usage: dict[str, Any] = {}
        return StreamingResponse(self._deltas(params, usage), usage=usage)

    async def _deltas(self, params: dict[str, Any], usage: dict[str, Any]) -> AsyncIterator[str]:
        async for chunk in await self._client.chat.completions.create(**params):
            # usage comes alone on the final chunk, with no choices
            if chunk.usage is not None:
                usage.update(token_usage(chunk.usage.prompt_tokens, chunk.usage.completion_tokens))
            if chunk.choices and chunk.choices[0].delta.content:
                yield chunk.choices[0].delta.content

    async def close(self) -> None:
        await self._client.close()
