"""Ollama adapter. The neutral wire shape is Ollama's own, so this is mostly identity."""

from __future__ import annotations

from typing import Any

from agent_bridge.stream_utils import raise_for_error_envelope
from agent_bridge.types.chat import (
    ChatRequest,
    ChatResponse,
    ChatStreamChunk,
    EmbeddingsRequest,
    EmbeddingsResponse,
    SchemaSpec,
)


class OllamaRequestAdapter:
    """Adapter for ``/api/chat`` and ``/api/embeddings``."""

    error_prefix = "Ollama error"

    def to_provider(self, request: ChatRequest) -> dict[str, Any]:
        return request.to_dict()

    def from_provider(self, raw: dict[str, Any]) -> ChatResponse:
        raise_for_error_envelope(raw, prefix=self.error_prefix)
        return ChatResponse.from_dict(raw)

    def parse_chunk(self, obj: dict[str, Any]) -> ChatStreamChunk:
        raise_for_error_envelope(obj, prefix=self.error_prefix)
        return ChatStreamChunk.from_dict(obj)

    def embeddings_to_provider(self, request: EmbeddingsRequest) -> dict[str, Any]:
        return request.to_dict()

    def embeddings_from_provider(self, raw: dict[str, Any]) -> EmbeddingsResponse:
        raise_for_error_envelope(raw, prefix=self.error_prefix)
        return EmbeddingsResponse(embedding=[float(x) for x in raw["embedding"]])

    def format_schema(self, spec: SchemaSpec) -> Any:
        # Ollama takes the JSON Schema verbatim as ``format``.
        return spec.schema
