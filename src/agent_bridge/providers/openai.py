from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Optional, Self

from openai import AsyncOpenAI

from agent_bridge._exceptions import InferenceClientError, classify_error
from agent_bridge.adapters.openai import OpenAIRequestAdapter
from agent_bridge.provider import ClientConfig, Provider, require_api_key
from agent_bridge.providers.base import BaseProviderClient
from agent_bridge.stream_utils import ensure_terminal
from agent_bridge.types.chat import (
    ChatRequest,
    ChatResponse,
    ChatStreamChunk,
    EmbeddingsRequest,
    EmbeddingsResponse,
    SchemaSpec,
)


class OpenAIClient(BaseProviderClient):
    """
    OpenAI provider (async‑only), backed by ``AsyncOpenAI``.

    Use ``OpenAIClient.from_client`` when you already have an ``AsyncOpenAI`` instance.
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
        api_key = require_api_key(Provider.OPENAI, config.api_key)
        self._client = AsyncOpenAI(
            api_key=api_key,
            organization=config.organization,
            base_url=config.base_url,
            timeout=config.timeout,
            max_retries=max_retries,
            default_headers=config.extra_headers or None,
        )
        self._adapter = OpenAIRequestAdapter()

    @classmethod
    def from_client(
        cls,
        client: AsyncOpenAI,
        *,
        config: Optional[ClientConfig] = None,
        logger: Optional[logging.Logger] = None,
        name: Optional[str] = None,
    ) -> Self:
        """
        Build an ``OpenAIClient`` around an already‑configured ``AsyncOpenAI`` client.
        """
        if not isinstance(client, AsyncOpenAI):
            raise TypeError(
                f"OpenAIClient.from_client expects AsyncOpenAI; got {type(client).__name__}"
            )

        self = cls.__new__(cls)  # bypass __init__
        BaseProviderClient.__init__(
            self, config or ClientConfig(provider=Provider.OPENAI), logger=logger, name=name
        )
        self._client = client
        self._adapter = OpenAIRequestAdapter()
        return self

    @property
    def adapter(self) -> OpenAIRequestAdapter:
        return self._adapter

    async def chat(self, request: ChatRequest) -> ChatResponse:
        args = self._adapter.to_provider(request)
        args["stream"] = False
        self._log(f"Sending request to OpenAI model {request.model} (Stream: False)")
        try:
            completion = await self._client.chat.completions.create(**args)
        except Exception as exc:
            raise classify_error(exc, self.logger) from exc
        return self._adapter.from_provider(completion.model_dump())

    async def chat_stream(self, request: ChatRequest) -> AsyncIterator[ChatStreamChunk]:
        args = self._adapter.to_provider(request)
        args["stream"] = True
        self._log(f"Sending request to OpenAI model {request.model} (Stream: True)")
        try:
            stream = await self._client.chat.completions.create(**args)
        except Exception as exc:
            raise classify_error(exc, self.logger) from exc
        return ensure_terminal(self._iter_stream(stream))

    async def _iter_stream(self, stream: Any) -> AsyncIterator[ChatStreamChunk]:
        accumulator = self._adapter.stream_accumulator()
        try:
            async for event in stream:
                chunk = accumulator.parse(event.model_dump())
                if chunk is not None:
                    yield chunk
            # no finish_reason: ensure_terminal reports the truncated stream
            if accumulator.finished:
                yield accumulator.terminal()
        except InferenceClientError:
            raise
        except Exception as exc:
            raise classify_error(exc, self.logger) from exc

    async def embeddings(self, request: EmbeddingsRequest) -> EmbeddingsResponse:
        try:
            result = await self._client.embeddings.create(model=request.model, input=request.input)
        except Exception as exc:
            raise classify_error(exc, self.logger) from exc
        return EmbeddingsResponse(embedding=list(result.data[0].embedding))

    def format_schema(self, spec: SchemaSpec) -> Any:
        return self._adapter.format_schema(spec)

    async def aclose(self) -> None:
        await self._client.close()
