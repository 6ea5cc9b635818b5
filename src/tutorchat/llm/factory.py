from typing import Any

from .base import LLMProvider
from .providers import DEEPSEEK_BASE_URL, AnthropicProvider, GeminiProvider, OpenAIProvider

# name -> (provider class, defaults applied before the caller's config)
_PROVIDERS: dict[str, tuple[type[LLMProvider], dict[str, Any]]] = {
    "gemini": (GeminiProvider, {}),
    "openai": (OpenAIProvider, {}),
    "deepseek": (OpenAIProvider, {"model": "deepseek-chat", "base_url": DEEPSEEK_BASE_URL}),
    "anthropic": (AnthropicProvider, {}),
    "claude": (AnthropicProvider, {}),
}


def create_llm_provider(provider: str, **config: Any) -> LLMProvider:
    """Build the provider registered under ``provider`` (case-insensitive).

    Every provider needs ``api_key``; ``model`` and the client options of
    the matching class are optional. ``deepseek`` is the OpenAI provider
    pointed at DeepSeek's endpoint, ``claude`` an alias of ``anthropic``.

        >>> create_llm_provider("deepseek", api_key="sk-...").model
        'deepseek-chat'

    Raises:
        ValueError: Unknown provider name
        TypeError: ``api_key`` missing
    """
    try:
        cls, defaults = _PROVIDERS[provider.lower()]
    except KeyError:
        raise ValueError(
            f"Unsupported provider: {provider}. Supported providers: 'gemini', 'openai', 'deepseek', 'anthropic'"
        ) from None

    if "api_key" not in config:
        raise TypeError(f"{provider} provider requires 'api_key' in config")
    return cls(**{**defaults, **config})
