from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Optional

import httpx

from agent_bridge._exceptions import DeserializationError
from agent_bridge.adapters.ollama import OllamaRequestAdapter
from agent_bridge.provider import ClientConfig
from agent_bridge.providers.base import HttpProviderClient
from agent_bridge.stream_utils import ensure_terminal, iter_ndjson_chunks
from agent_bridge.types.chat import (
    ChatRequest,
    ChatResponse,
    ChatStreamChunk,
    EmbeddingsRequest,
    EmbeddingsResponse,
    SchemaSpec,
)


class OllamaClient(HttpProviderClient):
    """
    Client for a local Ollama server (``/api/chat``, ``/api/embeddings``).

    Streaming responses are newline-delimited JSON, one chunk per line.
    """

    error_prefix = "Ollama error"

    def __init__(
        self,
        config: ClientConfig,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[logging.Logger] = None,
        name: Optional[str] = None,
    ) -> None:
        headers = dict(config.extra_headers)
        if config.api_key:
            # a reverse proxy in front of Ollama may want one
            headers["Authorization"] = f"Bearer {config.api_key}"
        super().__init__(config, headers=headers, transport=transport, logger=logger, name=name)
        self._adapter = OllamaRequestAdapter()

    @property
    def adapter(self) -> OllamaRequestAdapter:
        return self._adapter

    async def chat(self, request: ChatRequest) -> ChatResponse:
        body = self._adapter.to_provider(request)
        body["stream"] = False
        self._log(f"Sending chat request to Ollama model {request.model}")
        raw = await self._post_json("/api/chat", body)
        try:
            return self._adapter.from_provider(raw)
        except (KeyError, TypeError, ValueError) as exc:
            raise DeserializationError(f"Unexpected chat response: {exc!r}", raw=raw) from exc

    async def chat_stream(self, request: ChatRequest) -> AsyncIterator[ChatStreamChunk]:
        body = self._adapter.to_provider(request)
        body["stream"] = True
        self._log(f"Sending streaming chat request to Ollama model {request.model}")
        return await self._post_stream(
            "/api/chat",
            body,
            lambda data: ensure_terminal(iter_ndjson_chunks(data, self._adapter.parse_chunk)),
        )

    async def embeddings(self, request: EmbeddingsRequest) -> EmbeddingsResponse:
        raw = await self._post_json("/api/embeddings", self._adapter.embeddings_to_provider(request))
        try:
            return self._adapter.embeddings_from_provider(raw)
        except (KeyError, TypeError, ValueError) as exc:
            raise DeserializationError(f"Unexpected embeddings response: {exc!r}", raw=raw) from exc

    def format_schema(self, spec: SchemaSpec) -> Any:
        return self._adapter.format_schema(spec)
