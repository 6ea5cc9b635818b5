"""Gemini chat models through the ``google-genai`` SDK.

Gemini sometimes answers with no text at all (safety blocks, transient
service trouble). Whole-reply requests are retried a few times before an
empty reply is returned; streams are not retried since the tutor turn
machinery already handles failed streams.
"""

import asyncio
import base64
import logging
from collections.abc import AsyncIterator
from typing import Any

from google import genai
from google.genai import types

from ..base import LLMProvider
from ..models import ChatMessage, LLMResponse, StreamingResponse, token_usage

logger = logging.getLogger(__name__)

_ROLES = {"user": "user", "assistant": "model"}


def _to_part_list(msg: ChatMessage) -> list[types.Part]:
    parts = [types.Part(text=msg.content)] if msg.content else []
    parts.extend(
        types.Part(inline_data=types.Blob(data=base64.b64decode(a.data), mime_type=a.mime_type))
        for a in msg.attachments
    )
    return parts or [types.Part(text="")]


def _reply_text(response: types.GenerateContentResponse) -> str:
    """Visible text of the first candidate, skipping thinking parts."""
    if not response.candidates:
        return ""
    content = response.candidates[0].content
    if content is None or not content.parts:
        return ""
    return "".join(p.text for p in content.parts if p.text and not p.thought)


class GeminiProvider(LLMProvider):
    """Google Gemini (default ``gemini-2.5-flash``).

    The system prompt becomes ``system_instruction``, tutor turns take the
    ``model`` role and images are sent as inline blobs.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash",
        max_retries: int = 3,
        **client_kwargs: Any
    ):
        self._model = model
        self._attempts = max(1, max_retries)
        self._client = genai.Client(api_key=api_key, **client_kwargs)

    @property
    def model(self) -> str:
        return self._model

    def _convert_messages(self, messages: list[ChatMessage]) -> tuple[str | None, list[types.Content]]:
        """Split off the system prompt and build Gemini ``Content`` turns."""
        system = next((m.content for m in reversed(messages) if m.role == "system"), None)
        contents = [
            types.Content(role=_ROLES.get(m.role, "user"), parts=_to_part_list(m))
            for m in messages
            if m.role != "system"
        ]
        return system, contents

    def _build_config(
        self,
        system_instruction: str | None,
        temperature: float,
        max_tokens: int | None,
        json_output: bool = False,
        **kwargs: Any
    ) -> types.GenerateContentConfig:
        if json_output:
            kwargs["response_mime_type"] = "application/json"
        if max_tokens is not None:
            kwargs["max_output_tokens"] = max_tokens
        return types.GenerateContentConfig(
            system_instruction=system_instruction,
            temperature=temperature,
            **kwargs
        )

    @staticmethod
    def _usage(response: types.GenerateContentResponse) -> dict[str, int] | None:
        meta = response.usage_metadata
        if meta is None:
            return None
        return token_usage(meta.prompt_token_count, meta.candidates_token_count)

    async def chat_completion(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        json_output: bool = False,
        **kwargs: Any
    ) -> LLMResponse:
        """Whole reply, retrying when Gemini comes back empty."""
        model_name = model or self._model
        system, contents = self._convert_messages(messages)
        config = self._build_config(system, temperature, max_tokens, json_output, **kwargs)

        attempt = 0
        while True:
            attempt += 1
            response = await self._client.aio.models.generate_content(
                model=model_name, contents=contents, config=config
            )
            text = _reply_text(response)
            if text or attempt >= self._attempts:
                break
            logger.warning("Empty reply from %s (attempt %d of %d)", model_name, attempt, self._attempts)
            await asyncio.sleep(0.5 * attempt)

        return LLMResponse(content=text, model=model_name, usage=self._usage(response))

    async def chat_completion_stream(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        **kwargs: Any
    ) -> StreamingResponse:
        system, contents = self._convert_messages(messages)
        config = self._build_config(system, temperature, max_tokens, **kwargs)
        usage: dict[str, Any] = {}
        chunks = self._chunks(model or self._model, contents, config, usage)
        return StreamingResponse(chunks, usage=usage)

    async def _chunks(
        self,
        model: str,
        contents: list[types.Content],
        config: types.GenerateContentConfig,
        usage: dict[str, Any],
    ) -> AsyncIterator[str]:
        async for chunk in await self._client.aio.models.generate_content_stream(
            model=model, contents=contents, config=config
        ):
            # the last chunk carries the final counts
            counts = self._usage(chunk)
            if counts:
                usage.update(counts)
            text = _reply_text(chunk)
            if text:
                yield text

    async def close(self) -> None:
        """Nothing to release; the genai client holds no open pool."""
