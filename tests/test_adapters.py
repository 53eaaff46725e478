"""Tests for the pure OpenAI and Anthropic request/response adapters."""

from types import SimpleNamespace

import pytest
from openai.types.chat import ChatCompletion

from agent_bridge import (
    ApiError,
    ChatRequest,
    InferenceOptions,
    Message,
    Role,
    SchemaSpec,
    ToolCall,
    ToolCallFunction,
)
from agent_bridge.adapters import AnthropicRequestAdapter, OpenAIRequestAdapter

from conftest import make_tool


def completion(message, finish_reason="stop"):
    """A Chat Completions body as the SDK dumps it."""
    return ChatCompletion.model_validate(
        {
            "id": "cmpl-1",
            "object": "chat.completion",
            "created": 0,
            "model": "gpt-4o",
            "choices": [{"index": 0, "finish_reason": finish_reason, "message": message}],
            "usage": {"prompt_tokens": 3, "completion_tokens": 7, "total_tokens": 10},
        }
    ).model_dump()


class TestOpenAIAdapter:
    def test_to_provider_basic(self):
        """Sampling options map onto top-level parameters."""
        adapter = OpenAIRequestAdapter()
        request = ChatRequest(
            model="gpt-4o",
            messages=[Message.system("You are helpful"), Message.user("Hello")],
            options=InferenceOptions(temperature=0.7, max_tokens=100, top_k=5, min_p=0.1),
        )

        body = adapter.to_provider(request)

        assert body["temperature"] == 0.7
        assert body["max_tokens"] == 100
        assert "top_k" not in body and "min_p" not in body
        assert [m["role"] for m in body["messages"]] == ["system", "user"]
        assert "stream" not in body

    def test_tools_are_attached(self):
        tool, _ = make_tool("lookup")
        body = OpenAIRequestAdapter().to_provider(
            ChatRequest(model="gpt-4o", messages=[], tools=[tool])
        )

        assert body["tools"][0]["function"]["name"] == "lookup"
        assert body["tools"][0]["function"]["parameters"]["required"] == ["query"]

    def test_named_strict_schema(self):
        spec = SchemaSpec.from_value({"type": "object"}).with_name("weather").with_strict(True)

        assert OpenAIRequestAdapter().format_schema(spec)["json_schema"] == {
            "name": "weather",
            "strict": True,
            "schema": {"type": "object"},
        }

    def test_from_provider_with_tool_calls(self):
        raw = completion(
            {
                "role": "assistant",
                "content": None,
                "tool_calls": [
                    {
                        "id": "id1",
                        "type": "function",
                        "function": {"name": "lookup", "arguments": '{"query": "x"}'},
                    }
                ],
            },
            finish_reason="tool_calls",
        )

        response = OpenAIRequestAdapter().from_provider(raw)

        assert response.message.content == ""
        assert response.message.tool_calls == [
            ToolCall(function=ToolCallFunction("lookup", {"query": "x"}), id="id1")
        ]
        assert response.done_reason == "tool_calls"
        assert response.prompt_eval_count == 3
        assert response.eval_count == 7

    def test_invalid_tool_call_arguments_are_kept_as_text(self):
        """Unparseable arguments reach the tool as raw text instead of being dropped."""
        raw = completion(
            {
                "role": "assistant",
                "tool_calls": [
                    {
                        "id": "id1",
                        "type": "function",
                        "function": {"name": "test", "arguments": "{not valid json"},
                    }
                ],
            }
        )

        tool_calls = OpenAIRequestAdapter().from_provider(raw).message.tool_calls

        assert tool_calls[0].name == "test"
        assert tool_calls[0].arguments == "{not valid json"

    def test_error_envelope(self):
        with pytest.raises(ApiError, match="OpenAI error 500: down"):
            OpenAIRequestAdapter().from_provider({"error": {"message": "down", "code": 500}})

    def test_images_become_content_parts(self):
        message = Message(role=Role.USER, content="What is this?", images=["aGVsbG8="])

        wire = OpenAIRequestAdapter().build_messages([message])[0]

        assert wire["content"][0] == {"type": "text", "text": "What is this?"}
        assert wire["content"][1]["image_url"]["url"] == "data:image/png;base64,aGVsbG8="


    def test_stream_accumulator_waits_for_end_of_stream(self):
        """A finish_reason only marks the stream finished; usage may still follow."""
        accumulator = OpenAIRequestAdapter().stream_accumulator()

        first = accumulator.parse(
            {"model": "gpt-4o", "choices": [{"delta": {"content": "Hi"}, "finish_reason": "stop"}]}
        )
        usage = accumulator.parse(
            {"choices": [], "usage": {"prompt_tokens": 7, "completion_tokens": 3}}
        )
        terminal = accumulator.terminal()

        assert first.message.content == "Hi" and not first.done
        assert usage is None
        assert accumulator.finished
        assert terminal.done and terminal.done_reason == "stop"
        assert (terminal.prompt_eval_count, terminal.eval_count) == (7, 3)


class TestAnthropicAdapter:
    def test_system_split_and_tool_results_folded(self):
        """Consecutive tool replies share one user turn of tool_result blocks."""
        call_a = ToolCall(function=ToolCallFunction("a", {"x": 1}), id="ta")
        call_b = ToolCall(function=ToolCallFunction("b", {}), id="tb")
        messages = [
            Message.system("Be brief."),
            Message.developer("Use tools."),
            Message.user("Go"),
            Message(role=Role.ASSISTANT, content="", tool_calls=[call_a, call_b]),
            Message.tool("A", "ta"),
            Message.tool("B", "tb"),
        ]

        system, wire = AnthropicRequestAdapter().build_messages(messages)

        assert system == "Be brief.\n\nUse tools."
        assert [m["role"] for m in wire] == ["user", "assistant", "user"]
        assert [b["type"] for b in wire[1]["content"]] == ["tool_use", "tool_use"]
        assert [b["tool_use_id"] for b in wire[2]["content"]] == ["ta", "tb"]

    def test_params(self):
        adapter = AnthropicRequestAdapter()

        assert adapter.build_params(None) == {"max_tokens": 4096}
        assert adapter.build_params(InferenceOptions(num_predict=10, stop="END")) == {
            "max_tokens": 10,
            "stop_sequences": ["END"],
        }

    def test_tools_use_input_schema(self):
        tool, _ = make_tool("lookup")

        body = AnthropicRequestAdapter().to_provider(
            ChatRequest(model="claude", messages=[Message.user("hi")], tools=[tool])
        )

        assert body["tools"][0]["name"] == "lookup"
        assert body["tools"][0]["input_schema"]["type"] == "object"
        assert "system" not in body

    def test_from_provider(self):
        raw = SimpleNamespace(
            model="claude",
            stop_reason="tool_use",
            usage=SimpleNamespace(input_tokens=4, output_tokens=6),
            content=[
                SimpleNamespace(type="text", text="Checking."),
                SimpleNamespace(type="tool_use", id="tu1", name="lookup", input={"query": "x"}),
            ],
        )

        response = AnthropicRequestAdapter().from_provider(raw)

        assert response.message.content == "Checking."
        assert response.message.tool_calls[0].id == "tu1"
        assert response.message.tool_calls[0].arguments == {"query": "x"}
        assert response.done_reason == "tool_use"
        assert response.prompt_eval_count == 4

    def test_stream_accumulator(self):
        accumulator = AnthropicRequestAdapter().stream_accumulator()
        events = [
            SimpleNamespace(
                type="message_start",
                message=SimpleNamespace(model="claude", usage=SimpleNamespace(input_tokens=2)),
            ),
            SimpleNamespace(
                type="content_block_delta",
                index=0,
                delta=SimpleNamespace(type="text_delta", text="Hi"),
            ),
            SimpleNamespace(
                type="content_block_start",
                index=1,
                content_block=SimpleNamespace(type="tool_use", id="tu1", name="lookup"),
            ),
            SimpleNamespace(
                type="content_block_delta",
                index=1,
                delta=SimpleNamespace(type="input_json_delta", partial_json='{"query":'),
            ),
            SimpleNamespace(
                type="content_block_delta",
                index=1,
                delta=SimpleNamespace(type="input_json_delta", partial_json=' "x"}'),
            ),
            SimpleNamespace(
                type="message_delta",
                delta=SimpleNamespace(stop_reason="tool_use"),
                usage=SimpleNamespace(output_tokens=9),
            ),
            SimpleNamespace(type="message_stop"),
        ]

        chunks = [chunk for chunk in map(accumulator.parse, events) if chunk is not None]

        assert chunks[0].message.content == "Hi"
        terminal = chunks[-1]
        assert terminal.done and terminal.done_reason == "tool_use"
        assert terminal.message.tool_calls[0].arguments == {"query": "x"}
        assert terminal.eval_count == 9
