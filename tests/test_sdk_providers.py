"""Tests for the SDK-backed clients, with the SDKs talking to httpx.MockTransport."""

import json

import httpx
import pytest
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from agent_bridge import (
    ApiError,
    ChatRequest,
    EmbeddingsRequest,
    Message,
    SchemaSpec,
    StreamProtocolError,
    TransportError,
    UnsupportedError,
)
from agent_bridge.providers.anthropic import AnthropicClient
from agent_bridge.providers.openai import OpenAIClient
from agent_bridge.stream_utils import aggregate_stream

from conftest import recording_transport

REQUEST = ChatRequest(model="m", messages=[Message.user("Hello")])


def openai_client(handler):
    transport = recording_transport(handler)
    sdk = AsyncOpenAI(
        api_key="sk-test",
        base_url="https://api.test/v1",
        max_retries=0,
        http_client=httpx.AsyncClient(transport=transport),
    )
    return OpenAIClient.from_client(sdk), transport


def anthropic_client(handler):
    transport = recording_transport(handler)
    sdk = AsyncAnthropic(
        api_key="sk-test",
        base_url="https://api.test",
        max_retries=0,
        http_client=httpx.AsyncClient(transport=transport),
    )
    return AnthropicClient.from_client(sdk), transport


def sse(events, *, named=False, done=False):
    """Encode *events* as an event-stream response body."""
    frames = []
    for event in events:
        head = f"event: {event['type']}\n" if named else ""
        frames.append(f"{head}data: {json.dumps(event)}\n\n")
    if done:
        frames.append("data: [DONE]\n\n")
    return "".join(frames).encode()


def event_stream(body):
    return lambda request: httpx.Response(
        200, content=body, headers={"content-type": "text/event-stream"}
    )


def completion_chunk(choices, **extra):
    return {
        "id": "chunk-1",
        "object": "chat.completion.chunk",
        "created": 1,
        "model": "gpt-4o",
        "choices": choices,
        **extra,
    }


async def drain(chunks):
    return [chunk async for chunk in chunks]


class TestOpenAIClient:
    @pytest.mark.asyncio
    async def test_chat_round_trip(self):
        client, transport = openai_client(
            lambda request: httpx.Response(
                200,
                json={
                    "id": "cmpl-1",
                    "object": "chat.completion",
                    "created": 1,
                    "model": "gpt-4o",
                    "choices": [
                        {
                            "index": 0,
                            "finish_reason": "stop",
                            "message": {"role": "assistant", "content": "Hi!"},
                        }
                    ],
                    "usage": {"prompt_tokens": 4, "completion_tokens": 2, "total_tokens": 6},
                },
            )
        )

        async with client:
            response = await client.chat(REQUEST)

        sent, body = transport.seen[0]
        assert sent.url == "https://api.test/v1/chat/completions"
        assert body["model"] == "m"
        assert body["stream"] is False
        assert body["messages"][-1]["content"] == "Hello"
        assert response.content == "Hi!"
        assert response.done_reason == "stop"
        assert (response.prompt_eval_count, response.eval_count) == (4, 2)

    @pytest.mark.asyncio
    async def test_stream_accumulates_tool_calls_and_usage(self):
        body = sse(
            [
                completion_chunk([{"index": 0, "delta": {"role": "assistant", "content": "Checking"}}]),
                completion_chunk(
                    [
                        {
                            "index": 0,
                            "delta": {
                                "tool_calls": [
                                    {
                                        "index": 0,
                                        "id": "c1",
                                        "type": "function",
                                        "function": {"name": "lookup", "arguments": '{"query":'},
                                    }
                                ]
                            },
                        }
                    ]
                ),
                completion_chunk(
                    [
                        {
                            "index": 0,
                            "delta": {"tool_calls": [{"index": 0, "function": {"arguments": ' "x"}'}}]},
                            "finish_reason": "tool_calls",
                        }
                    ]
                ),
                completion_chunk([], usage={"prompt_tokens": 7, "completion_tokens": 3, "total_tokens": 10}),
            ],
            done=True,
        )
        client, transport = openai_client(event_stream(body))

        response = await aggregate_stream(await client.chat_stream(REQUEST))

        assert transport.seen[0][1]["stream"] is True
        assert response.message.content == "Checking"
        assert response.done_reason == "tool_calls"
        call = response.message.tool_calls[0]
        assert (call.id, call.name, call.arguments) == ("c1", "lookup", {"query": "x"})
        assert (response.prompt_eval_count, response.eval_count) == (7, 3)

    @pytest.mark.asyncio
    async def test_truncated_stream(self):
        """A stream that ends before any finish_reason has no terminal chunk."""
        body = sse([completion_chunk([{"index": 0, "delta": {"content": "Hal"}}])])
        client, _ = openai_client(event_stream(body))

        chunks = await client.chat_stream(REQUEST)

        with pytest.raises(StreamProtocolError):
            await drain(chunks)

    @pytest.mark.asyncio
    async def test_status_error(self):
        client, _ = openai_client(
            lambda request: httpx.Response(
                404,
                json={"error": {"message": "model 'm' not found", "type": "invalid_request_error"}},
            )
        )

        with pytest.raises(ApiError) as excinfo:
            await client.chat(REQUEST)

        assert excinfo.value.status_code == 404
        assert "not found" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client, _ = openai_client(refuse)

        with pytest.raises(TransportError):
            await client.chat_stream(REQUEST)

    @pytest.mark.asyncio
    async def test_embeddings(self):
        client, transport = openai_client(
            lambda request: httpx.Response(
                200,
                json={
                    "object": "list",
                    "data": [{"object": "embedding", "index": 0, "embedding": [0.5, -0.25]}],
                    "model": "text-embedding-3-small",
                    "usage": {"prompt_tokens": 1, "total_tokens": 1},
                },
            )
        )

        response = await client.embeddings(
            EmbeddingsRequest(model="text-embedding-3-small", input="text")
        )

        assert response.embedding == [0.5, -0.25]
        sent, body = transport.seen[0]
        assert sent.url.path == "/v1/embeddings"
        assert body["input"] == "text"

    def test_from_client_rejects_other_clients(self):
        with pytest.raises(TypeError, match="AsyncOpenAI"):
            OpenAIClient.from_client(object())


class TestAnthropicClient:
    @pytest.mark.asyncio
    async def test_chat_round_trip(self):
        client, transport = anthropic_client(
            lambda request: httpx.Response(
                200,
                json={
                    "id": "msg_1",
                    "type": "message",
                    "role": "assistant",
                    "model": "claude-test",
                    "content": [{"type": "text", "text": "Hi!"}],
                    "stop_reason": "end_turn",
                    "stop_sequence": None,
                    "usage": {"input_tokens": 5, "output_tokens": 2},
                },
            )
        )
        request = ChatRequest(
            model="claude-test",
            messages=[Message.system("Be brief."), Message.user("Hello")],
        )

        async with client:
            response = await client.chat(request)

        sent, body = transport.seen[0]
        assert sent.url.path == "/v1/messages"
        assert body["system"] == "Be brief."
        assert body["messages"] == [{"role": "user", "content": "Hello"}]
        assert "max_tokens" in body
        assert response.content == "Hi!"
        assert response.done_reason == "end_turn"
        assert (response.prompt_eval_count, response.eval_count) == (5, 2)

    @pytest.mark.asyncio
    async def test_stream_ends_on_message_stop(self):
        body = sse(
            [
                {
                    "type": "message_start",
                    "message": {
                        "id": "msg_1",
                        "type": "message",
                        "role": "assistant",
                        "model": "claude-test",
                        "content": [],
                        "stop_reason": None,
                        "stop_sequence": None,
                        "usage": {"input_tokens": 5, "output_tokens": 1},
                    },
                },
                {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
                {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hel"}},
                {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "lo"}},
                {"type": "content_block_stop", "index": 0},
                {
                    "type": "content_block_start",
                    "index": 1,
                    "content_block": {"type": "tool_use", "id": "tu1", "name": "lookup", "input": {}},
                },
                {
                    "type": "content_block_delta",
                    "index": 1,
                    "delta": {"type": "input_json_delta", "partial_json": '{"query": "x"}'},
                },
                {"type": "content_block_stop", "index": 1},
                {
                    "type": "message_delta",
                    "delta": {"stop_reason": "tool_use", "stop_sequence": None},
                    "usage": {"output_tokens": 12},
                },
                {"type": "message_stop"},
            ],
            named=True,
        )
        client, transport = anthropic_client(event_stream(body))

        chunks = await drain(await client.chat_stream(REQUEST))

        assert transport.seen[0][1]["stream"] is True
        assert [c.message.content for c in chunks[:-1]] == ["Hel", "lo"]
        terminal = chunks[-1]
        assert terminal.done and terminal.done_reason == "tool_use"
        assert terminal.message.tool_calls[0].arguments == {"query": "x"}
        assert (terminal.prompt_eval_count, terminal.eval_count) == (5, 12)

    @pytest.mark.asyncio
    async def test_stream_without_message_stop(self):
        body = sse(
            [{"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hel"}}],
            named=True,
        )
        client, _ = anthropic_client(event_stream(body))

        chunks = await client.chat_stream(REQUEST)

        with pytest.raises(StreamProtocolError):
            await drain(chunks)

    @pytest.mark.asyncio
    async def test_status_error(self):
        client, _ = anthropic_client(
            lambda request: httpx.Response(
                400,
                json={
                    "type": "error",
                    "error": {"type": "invalid_request_error", "message": "max_tokens too large"},
                },
            )
        )

        with pytest.raises(ApiError) as excinfo:
            await client.chat(REQUEST)

        assert excinfo.value.status_code == 400
        assert "max_tokens too large" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_unsupported_capabilities(self):
        client, transport = anthropic_client(lambda request: httpx.Response(500))

        with pytest.raises(UnsupportedError):
            await client.embeddings(EmbeddingsRequest(model="m", input="x"))
        with pytest.raises(UnsupportedError):
            client.format_schema(SchemaSpec.from_value({"type": "object"}))
        assert transport.seen == []

    def test_from_client_rejects_other_clients(self):
        with pytest.raises(TypeError, match="AsyncAnthropic"):
            AnthropicClient.from_client(AsyncOpenAI(api_key="sk-test"))
