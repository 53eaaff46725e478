from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Optional

import httpx

from agent_bridge._exceptions import DeserializationError, UnsupportedError
from agent_bridge.adapters.openrouter import OpenRouterRequestAdapter
from agent_bridge.provider import ClientConfig, Provider, require_api_key
from agent_bridge.providers.base import HttpProviderClient
from agent_bridge.stream_utils import ensure_terminal, iter_sse_chunks
from agent_bridge.types.chat import (
    ChatRequest,
    ChatResponse,
    ChatStreamChunk,
    EmbeddingsRequest,
    EmbeddingsResponse,
    SchemaSpec,
)


class OpenRouterClient(HttpProviderClient):
    """
    Client for the OpenRouter aggregator (OpenAI-compatible ``/chat/completions``).

    Requires an API key, sent as a bearer token together with any extra
    headers from the config (``HTTP-Referer``, ``X-Title``, ...). Streaming
    responses are Server-Sent Events terminated by ``data: [DONE]``.
    """

    error_prefix = "OpenRouter error"

    def __init__(
        self,
        config: ClientConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[logging.Logger] = None,
        name: Optional[str] = None,
    ) -> None:
        api_key = require_api_key(Provider.OPENROUTER, config.api_key)
        headers = {"Authorization": f"Bearer {api_key}", **config.extra_headers}
        super().__init__(config, headers=headers, transport=transport, logger=logger, name=name)
        self._adapter = OpenRouterRequestAdapter()

    @property
    def adapter(self) -> OpenRouterRequestAdapter:
        return self._adapter

    async def chat(self, request: ChatRequest) -> ChatResponse:
        body = self._adapter.to_provider(request)
        body["stream"] = False
        self._log(f"Sending chat request to OpenRouter model {request.model}")
        raw = await self._post_json("/chat/completions", body)
        try:
            return self._adapter.from_provider(raw)
        except (KeyError, TypeError, AttributeError) as exc:
            raise DeserializationError(f"decode error: {exc!r}", raw=raw) from exc

    async def chat_stream(self, request: ChatRequest) -> AsyncIterator[ChatStreamChunk]:
        body = self._adapter.to_provider(request)
        body["stream"] = True
        self._log(f"Sending streaming chat request to OpenRouter model {request.model}")
        accumulator = self._adapter.stream_accumulator()
        return await self._post_stream(
            "/chat/completions",
            body,
            lambda data: ensure_terminal(
                iter_sse_chunks(data, accumulator.parse, on_done=accumulator.terminal)
            ),
        )

    async def embeddings(self, request: EmbeddingsRequest) -> EmbeddingsResponse:
        raise UnsupportedError("OpenRouter embeddings are not available")

    def format_schema(self, spec: SchemaSpec) -> Any:
        return self._adapter.format_schema(spec)
