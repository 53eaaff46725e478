"""Tests for the HTTP provider clients against httpx.MockTransport."""

import json

import httpx
import pytest

from agent_bridge import (
    ApiError,
    ChatRequest,
    ClientConfig,
    ConfigurationError,
    DeserializationError,
    EmbeddingsRequest,
    InferenceClient,
    InferenceOptions,
    Message,
    Provider,
    Role,
    SchemaSpec,
    StreamProtocolError,
    ToolCall,
    ToolCallFunction,
    TransportError,
    UnsupportedError,
)
from agent_bridge.stream_utils import aggregate_stream

from conftest import recording_transport

WINDY_SCHEMA = {
    "type": "object",
    "properties": {"windy": {"type": "boolean"}},
    "required": ["windy"],
}


def ollama_client(handler):
    transport = recording_transport(handler)
    return InferenceClient(ClientConfig(provider=Provider.OLLAMA), transport=transport), transport


def openrouter_client(handler, **config):
    transport = recording_transport(handler)
    config.setdefault("api_key", "sk-test")
    client = InferenceClient(
        ClientConfig(provider=Provider.OPENROUTER, **config), transport=transport
    )
    return client, transport


class TestOllama:
    @pytest.mark.asyncio
    async def test_chat_request_and_response(self):
        """Options are nested; unset options never appear."""
        client, transport = ollama_client(
            lambda request: httpx.Response(
                200,
                json={
                    "model": "qwen3",
                    "created_at": "2025-01-01T00:00:00Z",
                    "message": {"role": "assistant", "content": "Hi!"},
                    "done": True,
                    "done_reason": "stop",
                    "eval_count": 2,
                },
            )
        )
        request = ChatRequest(
            model="qwen3",
            messages=[Message.user("Hello")],
            options=InferenceOptions(temperature=0.2),
            keep_alive="5m",
        )

        async with client:
            response = await client.chat(request)

        sent, body = transport.seen[0]
        assert sent.url == "http://localhost:11434/api/chat"
        assert body == {
            "model": "qwen3",
            "options": {"temperature": 0.2},
            "stream": False,
            "keep_alive": "5m",
            "messages": [{"role": "user", "content": "Hello"}],
        }
        assert response.content == "Hi!"
        assert response.eval_count == 2

    @pytest.mark.asyncio
    async def test_structured_output_is_raw_schema(self):
        client, _ = ollama_client(lambda request: httpx.Response(200))

        assert client.format_schema(SchemaSpec.from_value(WINDY_SCHEMA)) == WINDY_SCHEMA

    @pytest.mark.asyncio
    async def test_stream(self):
        lines = [
            {"model": "qwen3", "message": {"role": "assistant", "content": "He"}, "done": False},
            {"model": "qwen3", "message": {"role": "assistant", "content": "y"}, "done": False},
            {"model": "qwen3", "message": {"role": "assistant", "content": ""}, "done": True},
        ]
        payload = "".join(json.dumps(line) + "\n" for line in lines).encode()
        client, transport = ollama_client(lambda request: httpx.Response(200, content=payload))

        chunks = await client.chat_stream(ChatRequest(model="qwen3", messages=[]))
        contents = [chunk.message.content async for chunk in chunks]

        assert contents == ["He", "y", ""]
        assert transport.seen[0][1]["stream"] is True

    @pytest.mark.asyncio
    async def test_stream_without_done_chunk(self):
        payload = b'{"model":"m","message":{"role":"assistant","content":"x"},"done":false}\n'
        client, _ = ollama_client(lambda request: httpx.Response(200, content=payload))

        chunks = await client.chat_stream(ChatRequest(model="m"))
        with pytest.raises(StreamProtocolError):
            async for _ in chunks:
                pass

    @pytest.mark.asyncio
    async def test_http_error_keeps_status_and_body(self):
        client, _ = ollama_client(lambda request: httpx.Response(500, text="boom"))

        with pytest.raises(ApiError) as excinfo:
            await client.chat(ChatRequest(model="m"))

        assert excinfo.value.status_code == 500
        assert str(excinfo.value) == "Request failed: 500 - boom"

    @pytest.mark.asyncio
    async def test_stream_status_checked_before_iteration(self):
        client, _ = ollama_client(
            lambda request: httpx.Response(404, json={"error": "model 'x' not found"})
        )

        with pytest.raises(ApiError) as excinfo:
            await client.chat_stream(ChatRequest(model="x"))

        assert excinfo.value.status_code == 404
        assert "not found" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_undecodable_body(self):
        client, _ = ollama_client(lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(DeserializationError) as excinfo:
            await client.chat(ChatRequest(model="m"))

        assert "Raw JSON was: '<html>'" in str(excinfo.value)
        assert excinfo.value.raw == "<html>"

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client, _ = ollama_client(refuse)

        with pytest.raises(TransportError) as excinfo:
            await client.chat(ChatRequest(model="m"))

        assert isinstance(excinfo.value.__cause__, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_embeddings(self):
        client, transport = ollama_client(
            lambda request: httpx.Response(200, json={"embedding": [0.1, 0.2]})
        )

        response = await client.embeddings(EmbeddingsRequest(model="nomic", input="text"))

        assert response.embedding == [0.1, 0.2]
        sent, body = transport.seen[0]
        assert sent.url.path == "/api/embeddings"
        assert body["input"] == "text"


class TestOpenRouter:
    @pytest.mark.asyncio
    async def test_structured_output_envelope(self):
        """The schema is wrapped with a default name and strict=False."""
        client, transport = openrouter_client(
            lambda request: httpx.Response(
                200,
                json={
                    "model": "openai/gpt-4o-mini",
                    "choices": [
                        {
                            "message": {"role": "assistant", "content": '{"windy": true}'},
                            "finish_reason": "stop",
                        }
                    ],
                    "usage": {"prompt_tokens": 5, "completion_tokens": 4},
                },
            )
        )
        request = ChatRequest(
            model="openai/gpt-4o-mini",
            messages=[Message.user("Is it windy?")],
            format=client.format_schema(SchemaSpec.from_value(WINDY_SCHEMA)),
        )

        response = await client.chat(request)

        sent, body = transport.seen[0]
        assert body["response_format"] == {
            "type": "json_schema",
            "json_schema": {"name": "schema", "strict": False, "schema": WINDY_SCHEMA},
        }
        assert sent.url == "https://openrouter.ai/api/v1/chat/completions"
        assert sent.headers["Authorization"] == "Bearer sk-test"
        assert response.content == '{"windy": true}'
        assert response.prompt_eval_count == 5
        assert response.eval_count == 4
        assert response.done_reason == "stop"

    @pytest.mark.asyncio
    async def test_option_and_message_mapping(self):
        client, transport = openrouter_client(
            lambda request: httpx.Response(
                200, json={"choices": [{"message": {"content": "ok"}, "finish_reason": "stop"}]}
            ),
            extra_headers={"X-Title": "tests"},
        )
        call = ToolCall(function=ToolCallFunction("lookup", {"q": "x"}), id="call-1")
        request = ChatRequest(
            model="m",
            messages=[
                Message.developer("Be brief."),
                Message(role=Role.ASSISTANT, content=None, tool_calls=[call]),
                Message.tool("found", "call-1"),
            ],
            options=InferenceOptions(
                repeat_penalty=1.1, num_predict=64, stop="END", num_ctx=4096, top_k=20
            ),
            keep_alive="5m",
        )

        await client.chat(request)

        sent, body = transport.seen[0]
        assert sent.headers["X-Title"] == "tests"
        assert body["repetition_penalty"] == 1.1
        assert body["max_tokens"] == 64
        assert body["stop"] == ["END"]
        assert body["top_k"] == 20
        assert "num_ctx" not in body and "keep_alive" not in body
        assert body["messages"][0] == {"role": "system", "content": "Be brief."}
        assert body["messages"][1]["content"] is None
        assert body["messages"][1]["tool_calls"][0]["function"] == {
            "name": "lookup",
            "arguments": '{"q": "x"}',
        }
        assert body["messages"][2]["tool_call_id"] == "call-1"

    @pytest.mark.asyncio
    async def test_error_envelope_on_success_status(self):
        client, _ = openrouter_client(
            lambda request: httpx.Response(
                200, json={"error": {"message": "No credits", "code": 402}}
            )
        )

        with pytest.raises(ApiError) as excinfo:
            await client.chat(ChatRequest(model="m"))

        assert excinfo.value.status_code == 402
        assert "No credits" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_sse_stream_accumulates_tool_calls(self):
        events = [
            {"model": "m", "choices": [{"delta": {"content": "Let me check"}}]},
            {
                "choices": [
                    {
                        "delta": {
                            "tool_calls": [
                                {"index": 0, "id": "c1", "function": {"name": "look", "arguments": '{"q":'}}
                            ]
                        }
                    }
                ]
            },
            {
                "choices": [
                    {
                        "delta": {"tool_calls": [{"index": 0, "function": {"name": "up", "arguments": '"x"}'}}]},
                        "finish_reason": "tool_calls",
                    }
                ]
            },
        ]
        payload = "".join(f"data: {json.dumps(e)}\n\n" for e in events) + "data: [DONE]\n\n"
        client, _ = openrouter_client(lambda request: httpx.Response(200, content=payload.encode()))

        chunks = [c async for c in await client.chat_stream(ChatRequest(model="m"))]

        assert chunks[0].message.content == "Let me check"
        terminal = chunks[-1]
        assert terminal.done and terminal.done_reason == "tool_calls"
        assert terminal.message.tool_calls[0].name == "lookup"
        assert terminal.message.tool_calls[0].arguments == {"q": "x"}
        assert terminal.message.tool_calls[0].id == "c1"

    @pytest.mark.asyncio
    async def test_done_sentinel_is_terminal(self):
        payload = (
            'data: {"choices":[{"delta":{"content":"hi"}}]}\n\n'
            "data: [DONE]\n\n"
        )
        client, _ = openrouter_client(lambda request: httpx.Response(200, content=payload.encode()))

        chunks = [c async for c in await client.chat_stream(ChatRequest(model="m"))]

        assert [c.done for c in chunks] == [False, True]
        assert chunks[-1].done_reason == "stop"

    @pytest.mark.asyncio
    async def test_usage_frame_after_finish_reason(self):
        """Usage reported after the finishing choice still reaches the terminal chunk."""
        events = [
            {"model": "m", "choices": [{"delta": {"content": "Hi"}}]},
            {"choices": [{"delta": {}, "finish_reason": "stop"}]},
            {"choices": [], "usage": {"prompt_tokens": 7, "completion_tokens": 3}},
        ]
        payload = "".join(f"data: {json.dumps(e)}\n\n" for e in events) + "data: [DONE]\n\n"
        client, _ = openrouter_client(lambda request: httpx.Response(200, content=payload.encode()))

        response = await aggregate_stream(await client.chat_stream(ChatRequest(model="m")))

        assert response.message.content == "Hi"
        assert response.done_reason == "stop"
        assert response.prompt_eval_count == 7
        assert response.eval_count == 3

    @pytest.mark.asyncio
    async def test_stream_error_envelope(self):
        payload = 'data: {"error":{"message":"overloaded","code":503}}\n\n'
        client, _ = openrouter_client(lambda request: httpx.Response(200, content=payload.encode()))

        chunks = await client.chat_stream(ChatRequest(model="m"))
        with pytest.raises(ApiError, match="overloaded"):
            async for _ in chunks:
                pass

    @pytest.mark.asyncio
    async def test_embeddings_unsupported(self):
        client, _ = openrouter_client(lambda request: httpx.Response(200))

        with pytest.raises(UnsupportedError):
            await client.embeddings(EmbeddingsRequest(model="m", input="x"))

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.setenv("OPENROUTER_API_KEY", "")

        with pytest.raises(ConfigurationError, match="OPENROUTER_API_KEY"):
            InferenceClient(ClientConfig(provider=Provider.OPENROUTER))


class TestRegistry:
    def test_unknown_provider(self):
        with pytest.raises(ConfigurationError):
            ClientConfig(provider="bogus")

    def test_mistral_is_declared_but_unsupported(self, monkeypatch):
        monkeypatch.setenv("MISTRAL_API_KEY", "key")

        with pytest.raises(UnsupportedError):
            InferenceClient(ClientConfig(provider=Provider.MISTRAL))

    def test_invalid_header_value(self):
        with pytest.raises(ConfigurationError):
            InferenceClient(
                ClientConfig(provider=Provider.OLLAMA, extra_headers={"X-Bad": "café\n"})
            )
