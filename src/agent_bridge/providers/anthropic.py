from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Optional, Self

from anthropic import AsyncAnthropic

from agent_bridge._exceptions import InferenceClientError, classify_error
from agent_bridge.adapters.anthropic import AnthropicRequestAdapter
from agent_bridge.provider import ClientConfig, Provider, require_api_key
from agent_bridge.providers.base import BaseProviderClient
from agent_bridge.stream_utils import ensure_terminal
from agent_bridge.types.chat import ChatRequest, ChatResponse, ChatStreamChunk


class AnthropicClient(BaseProviderClient):
    """
    Anthropic provider (async‑only), backed by ``AsyncAnthropic``.

    Embeddings and structured output are not offered by the Messages API and
    raise `UnsupportedError`.
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        max_retries: int = 2,
        logger: Optional[logging.Logger] = None,
        name: Optional[str] = None,
    ) -> None:
        super().__init__(config, logger=logger, name=name)
        api_key = require_api_key(Provider.ANTHROPIC, config.api_key)
        self._client = AsyncAnthropic(
            api_key=api_key,
            base_url=config.base_url,
            timeout=config.timeout,
            max_retries=max_retries,
            default_headers=config.extra_headers or None,
        )
        self._adapter = AnthropicRequestAdapter()

    @classmethod
    def from_client(
        cls,
        client: AsyncAnthropic,
        *,
        config: Optional[ClientConfig] = None,
        logger: Optional[logging.Logger] = None,
        name: Optional[str] = None,
    ) -> Self:
        """
        Wrap an existing ``AsyncAnthropic`` client.
        """
        if not isinstance(client, AsyncAnthropic):
            raise TypeError(
                f"AnthropicClient.from_client expects AsyncAnthropic; got {type(client).__name__}"
            )

        self = cls.__new__(cls)  # bypass __init__
        BaseProviderClient.__init__(
            self, config or ClientConfig(provider=Provider.ANTHROPIC), logger=logger, name=name
        )
        self._client = client
        self._adapter = AnthropicRequestAdapter()
        return self

    @property
    def adapter(self) -> AnthropicRequestAdapter:
        return self._adapter

    async def chat(self, request: ChatRequest) -> ChatResponse:
        args = self._adapter.to_provider(request)
        self._log(f"Sending request to Anthropic model {request.model} (Stream: False)")
        try:
            message = await self._client.messages.create(**args)
        except Exception as exc:
            raise classify_error(exc, self.logger) from exc
        return self._adapter.from_provider(message)

    async def chat_stream(self, request: ChatRequest) -> AsyncIterator[ChatStreamChunk]:
        args = self._adapter.to_provider(request)
        self._log(f"Sending request to Anthropic model {request.model} (Stream: True)")
        try:
            stream = await self._client.messages.create(**args, stream=True)
        except Exception as exc:
            raise classify_error(exc, self.logger) from exc
        return ensure_terminal(self._iter_stream(stream))

    async def _iter_stream(self, stream: Any) -> AsyncIterator[ChatStreamChunk]:
        accumulator = self._adapter.stream_accumulator()
        try:
            async for event in stream:
                chunk = accumulator.parse(event)
                if chunk is not None:
                    yield chunk
        except InferenceClientError:
            raise
        except Exception as exc:
            raise classify_error(exc, self.logger) from exc

    async def aclose(self) -> None:
        await self._client.close()
