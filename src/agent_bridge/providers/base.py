"""Base classes for provider clients. All implementations are async-first."""
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Callable, Optional

import httpx

from agent_bridge._exceptions import (
    ApiError,
    ConfigurationError,
    DeserializationError,
    UnsupportedError,
    classify_error,
)
from agent_bridge.provider import ClientConfig
from agent_bridge.stream_utils import raise_for_error_envelope
from agent_bridge.types.chat import (
    ChatRequest,
    ChatResponse,
    ChatStreamChunk,
    EmbeddingsRequest,
    EmbeddingsResponse,
    SchemaSpec,
)

__all__ = ["BaseProviderClient", "HttpProviderClient"]


class BaseProviderClient(ABC):
    """
    Base class for every provider client behind `InferenceClient`.

    ``chat_stream`` must raise for connection or HTTP status failures before it
    returns; the iterator it returns then yields chunks in arrival order and
    ends with exactly one terminal chunk (or raises `StreamProtocolError`).
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        logger: Optional[logging.Logger] = None,
        name: Optional[str] = None,
    ) -> None:
        """
        Args:
            config: Resolved client configuration.
            logger: Optional logger instance. If None, a logger named after
                    this module will be used.
            name: Optional name for this component, used in logging.
                  If None, defaults to the concrete class's name.
        """
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.name = name if name is not None else self.__class__.__name__

    @abstractmethod
    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Send a non-streaming chat request."""
        ...

    @abstractmethod
    async def chat_stream(self, request: ChatRequest) -> AsyncIterator[ChatStreamChunk]:
        """Send a streaming chat request and return the chunk iterator."""
        ...

    async def embeddings(self, request: EmbeddingsRequest) -> EmbeddingsResponse:
        raise UnsupportedError(f"{self.name} does not support embeddings")

    def format_schema(self, spec: SchemaSpec) -> Any:
        """Negotiate the provider-specific structured-output value for *spec*."""
        raise UnsupportedError(f"{self.name} does not support structured output")

    async def aclose(self) -> None:
        """Release network resources. Safe to call multiple times."""

    def _log(self, message: str, level: int = logging.INFO) -> None:
        self.logger.log(level, f"[{self.name}] {message}")

    async def __aenter__(self) -> "BaseProviderClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()


class HttpProviderClient(BaseProviderClient):
    """Shared plumbing for providers spoken to over raw HTTP with ``httpx``.

    Base URL and headers are resolved once, here; an explicit *transport* is
    handed to ``httpx`` unchanged (tests pass ``httpx.MockTransport``).
    """

    error_prefix = "Provider error"

    def __init__(
        self,
        config: ClientConfig,
        *,
        headers: Optional[dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[logging.Logger] = None,
        name: Optional[str] = None,
    ) -> None:
        super().__init__(config, logger=logger, name=name)
        self.base_url = (config.resolved_base_url() or "").rstrip("/")
        all_headers = {"Content-Type": "application/json", **(headers or {})}
        try:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=all_headers,
                timeout=httpx.Timeout(config.timeout),
                transport=transport,
            )
        except (ValueError, TypeError) as exc:
            # httpx rejects non-ASCII or otherwise unencodable header values
            raise ConfigurationError(f"Invalid client headers: {exc}") from exc

    async def _post_json(self, path: str, body: dict[str, Any]) -> Any:
        """POST *body* and return the decoded JSON response."""
        self._log(f"POST {path}", logging.DEBUG)
        try:
            response = await self._client.post(path, json=body)
        except httpx.HTTPError as exc:
            raise classify_error(exc, self.logger) from exc

        text = response.text
        if response.is_error:
            self._raise_for_status(response.status_code, text)
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            self._log(f"Undecodable response body: {text!r}", logging.ERROR)
            raise DeserializationError(
                f"Error decoding response body: {exc}. Raw JSON was: '{text}'", raw=text
            ) from exc

    async def _post_stream(
        self,
        path: str,
        body: dict[str, Any],
        decode: Callable[[AsyncIterator[bytes]], AsyncIterator[ChatStreamChunk]],
    ) -> AsyncIterator[ChatStreamChunk]:
        """Open a streaming POST, check its status, then hand the bytes to *decode*."""
        self._log(f"POST {path} (stream)", logging.DEBUG)
        request = self._client.build_request("POST", path, json=body)
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise classify_error(exc, self.logger) from exc

        if response.is_error:
            try:
                text = (await response.aread()).decode("utf-8", errors="replace")
            finally:
                await response.aclose()
            self._raise_for_status(response.status_code, text)

        return self._iter_response(response, decode)

    async def _iter_response(
        self,
        response: httpx.Response,
        decode: Callable[[AsyncIterator[bytes]], AsyncIterator[ChatStreamChunk]],
    ) -> AsyncIterator[ChatStreamChunk]:
        try:
            async for chunk in decode(response.aiter_bytes()):
                yield chunk
        except httpx.HTTPError as exc:
            raise classify_error(exc, self.logger) from exc
        finally:
            await response.aclose()

    def _raise_for_status(self, status_code: int, text: str) -> None:
        self._log(f"Request failed: {status_code} - {text}", logging.ERROR)
        try:
            envelope = json.loads(text)
        except json.JSONDecodeError:
            envelope = None
        if envelope is not None:
            try:
                raise_for_error_envelope(envelope, prefix=self.error_prefix)
            except ApiError as exc:
                exc.status_code = status_code
                raise
        raise ApiError(
            f"Request failed: {status_code} - {text}", status_code=status_code, body=text
        )

    async def aclose(self) -> None:
        await self._client.aclose()
