"""Pure transformation adapters for the supported inference providers."""

from .ollama import OllamaRequestAdapter
from .openai import ChatCompletionStreamAccumulator, OpenAIRequestAdapter
from .openrouter import OpenRouterRequestAdapter
from .anthropic import AnthropicRequestAdapter, AnthropicStreamAccumulator

__all__ = [
    "OllamaRequestAdapter",
    "OpenAIRequestAdapter",
    "OpenRouterRequestAdapter",
    "ChatCompletionStreamAccumulator",
    "AnthropicRequestAdapter",
    "AnthropicStreamAccumulator",
]
