"""
Provider-agnostic inference client with unified chat(), chat_stream() and
embeddings() methods.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Final, Optional, Type

from agent_bridge._exceptions import ConfigurationError
from agent_bridge.provider import ClientConfig, Provider
from agent_bridge.providers import (
    AnthropicClient,
    BaseProviderClient,
    MistralClient,
    OllamaClient,
    OpenAIClient,
    OpenRouterClient,
)
from agent_bridge.types.chat import (
    ChatRequest,
    ChatResponse,
    ChatStreamChunk,
    EmbeddingsRequest,
    EmbeddingsResponse,
    SchemaSpec,
)

__all__ = ["InferenceClient", "create_provider_client"]

_PROVIDER_REGISTRY: Final[dict[Provider, Type[BaseProviderClient]]] = {
    Provider.OLLAMA: OllamaClient,
    Provider.OPENROUTER: OpenRouterClient,
    Provider.OPENAI: OpenAIClient,
    Provider.ANTHROPIC: AnthropicClient,
    Provider.MISTRAL: MistralClient,
}


def create_provider_client(
    config: ClientConfig,
    *,
    logger: logging.Logger | None = None,
    **provider_kwargs: Any,
) -> BaseProviderClient:
    """
    Factory for the concrete client of ``config.provider``.

    Args:
        config: Which provider to use and how to reach it.
        logger: Optional custom logger.
        **provider_kwargs: Extra args passed through (``transport`` for the
            HTTP providers, ``max_retries`` for the SDK-backed ones).

    Raises:
        ConfigurationError: Unknown provider or missing credentials.
        UnsupportedError: The provider is declared but not implemented.
    """
    try:
        client_cls = _PROVIDER_REGISTRY[config.provider]
    except KeyError as exc:
        raise ConfigurationError(f"Unsupported provider: {config.provider}") from exc
    return client_cls(config, logger=logger, **provider_kwargs)


class InferenceClient:
    """
    Facade over one provider client, selected once from the registry and held
    for the facade's lifetime.

    Example
    -------
    >>> async with InferenceClient(ClientConfig(provider=Provider.OLLAMA)) as client:
    ...     response = await client.chat(ChatRequest(model="qwen3", messages=[Message.user("hi")]))
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        provider_client: Optional[BaseProviderClient] = None,
        logger: Optional[logging.Logger] = None,
        **provider_kwargs: Any,
    ) -> None:
        self._config = config or ClientConfig()
        self._inner = provider_client or create_provider_client(
            self._config, logger=logger, **provider_kwargs
        )

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def provider(self) -> Provider:
        return self._config.provider

    @property
    def provider_client(self) -> BaseProviderClient:
        return self._inner

    async def chat(self, request: ChatRequest) -> ChatResponse:
        return await self._inner.chat(request)

    async def chat_stream(self, request: ChatRequest) -> AsyncIterator[ChatStreamChunk]:
        """Start a streaming request; HTTP errors are raised here, before iteration."""
        return await self._inner.chat_stream(request)

    async def embeddings(self, request: EmbeddingsRequest) -> EmbeddingsResponse:
        return await self._inner.embeddings(request)

    def format_schema(self, spec: SchemaSpec) -> Any:
        """Provider-specific structured-output value for *spec*; may raise UnsupportedError."""
        return self._inner.format_schema(spec)

    async def aclose(self) -> None:
        await self._inner.aclose()

    async def __aenter__(self) -> "InferenceClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
