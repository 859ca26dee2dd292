from .base import BaseLLMProvider
from .openai import OpenAIProvider, approximate_tokens
from .anthropic import AnthropicProvider
from .gemini import GeminiProvider

__all__ = ["BaseLLMProvider", "OpenAIProvider", "AnthropicProvider", "GeminiProvider", "approximate_tokens"]
