from .anthropic import AnthropicProvider
from .gemini import GeminiProvider
from .openai import DEEPSEEK_BASE_URL, OpenAIProvider

__all__ = ["AnthropicProvider", "DEEPSEEK_BASE_URL", "GeminiProvider", "OpenAIProvider"]
