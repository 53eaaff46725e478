from .base import BaseProviderClient, HttpProviderClient
from .ollama import OllamaClient
from .openrouter import OpenRouterClient
from .openai import OpenAIClient
from .anthropic import AnthropicClient
from .mistral import MistralClient

__all__ = [
    "BaseProviderClient",
    "HttpProviderClient",
    "OllamaClient",
    "OpenRouterClient",
    "OpenAIClient",
    "AnthropicClient",
    "MistralClient",
]
