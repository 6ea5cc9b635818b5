from .base import LLMProvider
from .factory import create_llm_provider
from .models import Attachment, ChatMessage, LLMResponse, StreamingResponse
from .providers import AnthropicProvider, GeminiProvider, OpenAIProvider

__all__ = [
    "LLMProvider",
    "create_llm_provider",
    "Attachment",
    "ChatMessage",
    "LLMResponse",
    "StreamingResponse",
    "AnthropicProvider",
    "GeminiProvider",
    "OpenAIProvider",
]
