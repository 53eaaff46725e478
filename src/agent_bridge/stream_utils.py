"""Shared streaming utilities: byte framing, chunk decoding and aggregation."""
from __future__ import annotations

import contextlib
import inspect
import json
from typing import (
    Any,
    AsyncIterable,
    AsyncIterator,
    Awaitable,
    Callable,
    Optional,
    Union,
)

from agent_bridge._exceptions import ApiError, DeserializationError, StreamProtocolError
from agent_bridge.types.chat import ChatResponse, ChatStreamChunk
from agent_bridge.types.message import Message, Role, ToolCall

__all__ = [
    "LineBuffer",
    "iter_ndjson_chunks",
    "iter_sse_chunks",
    "ensure_terminal",
    "aggregate_stream",
    "raise_for_error_envelope",
]

ChunkParser = Callable[[Any], Optional[ChatStreamChunk]]
TokenCallback = Callable[[str], Union[Awaitable[None], None]]


class LineBuffer:
    """Accumulates raw bytes and releases complete ``\\n``-terminated lines.

    Partial trailing bytes are retained across `feed` calls, so a line (or a
    multi-byte UTF-8 sequence) split across network reads is reassembled.
    """

    def __init__(self) -> None:
        self._buf = bytearray()

    def feed(self, data: bytes) -> list[str]:
        self._buf.extend(data)
        lines: list[str] = []
        while True:
            idx = self._buf.find(b"\n")
            if idx < 0:
                break
            raw = bytes(self._buf[:idx])
            del self._buf[: idx + 1]
            lines.append(self._decode(raw))
        return lines

    def flush(self) -> Optional[str]:
        """Return the unterminated remainder, if any, and reset."""
        if not self._buf:
            return None
        raw = bytes(self._buf)
        self._buf.clear()
        return self._decode(raw)

    @staticmethod
    def _decode(raw: bytes) -> str:
        if raw.endswith(b"\r"):
            raw = raw[:-1]
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DeserializationError(f"Stream line is not valid UTF-8: {exc}", raw=raw) from exc


async def _lines(byte_stream: AsyncIterable[bytes]) -> AsyncIterator[str]:
    buffer = LineBuffer()
    async for data in byte_stream:
        for line in buffer.feed(data):
            yield line
    tail = buffer.flush()
    if tail is not None:
        yield tail


def _load(payload: str) -> Any:
    try:
        return json.loads(payload)
    except json.JSONDecodeError as exc:
        raise DeserializationError(f"Invalid JSON in stream: {exc}", raw=payload) from exc


def _to_chunk(obj: Any, payload: str, parse: ChunkParser) -> Optional[ChatStreamChunk]:
    try:
        return parse(obj)
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise DeserializationError(
            f"Stream payload does not describe a chunk: {exc!r}", raw=payload
        ) from exc


async def iter_ndjson_chunks(
    byte_stream: AsyncIterable[bytes],
    parse: ChunkParser = ChatStreamChunk.from_dict,
) -> AsyncIterator[ChatStreamChunk]:
    """Decode newline-delimited JSON: one object per line, one chunk per object."""
    async for line in _lines(byte_stream):
        if not line.strip():
            continue
        chunk = _to_chunk(_load(line), line, parse)
        if chunk is not None:
            yield chunk


def _done_chunk() -> ChatStreamChunk:
    return ChatStreamChunk.terminal("stop")


async def iter_sse_chunks(
    byte_stream: AsyncIterable[bytes],
    parse: ChunkParser,
    on_done: Callable[[], ChatStreamChunk] = _done_chunk,
) -> AsyncIterator[ChatStreamChunk]:
    """Decode Server-Sent Events carrying JSON payloads in ``data:`` fields.

    The ``[DONE]`` sentinel produces the terminal chunk returned by *on_done*.
    An ``{"error": ...}`` payload raises `ApiError`. *parse* may return None to
    skip a payload.
    """
    async for line in _lines(byte_stream):
        if not line.startswith("data:"):
            continue
        payload = line[5:].strip()
        if not payload:
            continue
        if payload == "[DONE]":
            yield on_done()
            return
        obj = _load(payload)
        raise_for_error_envelope(obj, prefix="Stream error")
        chunk = _to_chunk(obj, payload, parse)
        if chunk is not None:
            yield chunk


def raise_for_error_envelope(obj: Any, *, prefix: str = "Provider error") -> None:
    """Raise `ApiError` when *obj* is an ``{"error": {"message", "code"}}`` envelope."""
    if not isinstance(obj, dict) or "error" not in obj:
        return
    error = obj["error"]
    if isinstance(error, dict):
        code = error.get("code")
        message = error.get("message", "unknown error")
    else:
        code, message = None, str(error)
    label = f"{prefix} {code}" if code is not None else prefix
    raise ApiError(
        f"{label}: {message}",
        status_code=code if isinstance(code, int) else None,
        body=obj,
    )


async def ensure_terminal(
    chunks: AsyncIterator[ChatStreamChunk],
) -> AsyncIterator[ChatStreamChunk]:
    """Stop after the first terminal chunk; raise if the source ends before one."""
    try:
        async for chunk in chunks:
            yield chunk
            if chunk.done:
                return
    finally:
        close = getattr(chunks, "aclose", None)
        if close is not None:
            await close()
    raise StreamProtocolError("Stream ended without a terminal chunk")


def _closing(chunks: AsyncIterable[ChatStreamChunk]) -> Any:
    if hasattr(chunks, "aclose"):
        return contextlib.aclosing(chunks)
    return contextlib.nullcontext(chunks)


async def aggregate_stream(
    chunks: AsyncIterable[ChatStreamChunk],
    on_token: Optional[TokenCallback] = None,
) -> ChatResponse:
    """Fold a chunk stream into the final ChatResponse.

    Content pieces are concatenated (and reported to *on_token* as they
    arrive); tool calls are collected from every chunk; completion metadata
    comes from the terminal chunk.
    """
    parts: list[str] = []
    tool_calls: list[ToolCall] = []
    role = Role.ASSISTANT
    async with _closing(chunks) as source:
        async for chunk in source:
            message = chunk.message
            if message is not None:
                role = message.role
                if message.content:
                    parts.append(message.content)
                    if on_token is not None:
                        result = on_token(message.content)
                        if inspect.isawaitable(result):
                            await result
                if message.tool_calls:
                    tool_calls.extend(message.tool_calls)
            if chunk.done:
                final = Message(
                    role=role,
                    content="".join(parts),
                    tool_calls=tool_calls or None,
                )
                return chunk.to_response(final)
    raise StreamProtocolError("Stream ended without a terminal chunk")
