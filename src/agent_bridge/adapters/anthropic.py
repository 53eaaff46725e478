"""Anthropic adapter for pure request/response transformations."""

from __future__ import annotations

from typing import Any, Optional, Sequence

from agent_bridge.adapters.openai import decode_arguments
from agent_bridge.types.chat import ChatRequest, ChatResponse, ChatStreamChunk, InferenceOptions
from agent_bridge.types.message import Message, Role, ToolCall, ToolCallFunction

DEFAULT_MAX_TOKENS = 4096


class AnthropicRequestAdapter:
    """Adapter for converting between the neutral model and the Messages API."""

    def build_messages(self, messages: Sequence[Message]) -> tuple[str, list[dict[str, Any]]]:
        """Split out the system prompt and convert the rest.

        Tool replies become ``tool_result`` blocks on a user turn; consecutive
        replies are folded into the same turn since roles must alternate.
        """
        system_parts: list[str] = []
        out: list[dict[str, Any]] = []

        for msg in messages:
            if msg.role in (Role.SYSTEM, Role.DEVELOPER):
                if msg.content:
                    system_parts.append(msg.content)
                continue

            if msg.role == Role.TOOL:
                block = {
                    "type": "tool_result",
                    "tool_use_id": msg.tool_call_id or "",
                    "content": msg.content or "",
                }
                previous = out[-1] if out else None
                if (
                    previous is not None
                    and previous["role"] == "user"
                    and isinstance(previous["content"], list)
                    and all(b.get("type") == "tool_result" for b in previous["content"])
                ):
                    previous["content"].append(block)
                else:
                    out.append({"role": "user", "content": [block]})
                continue

            if msg.role == Role.ASSISTANT and msg.tool_calls:
                blocks: list[dict[str, Any]] = []
                if msg.content:
                    blocks.append({"type": "text", "text": msg.content})
                for tc in msg.tool_calls:
                    blocks.append(
                        {
                            "type": "tool_use",
                            "id": tc.correlation_id,
                            "name": tc.name,
                            "input": tc.arguments if isinstance(tc.arguments, dict) else {},
                        }
                    )
                out.append({"role": "assistant", "content": blocks})
                continue

            out.append({"role": msg.role.value, "content": msg.content or ""})

        return "\n\n".join(system_parts), out

    def build_params(self, options: Optional[InferenceOptions]) -> dict[str, Any]:
        params: dict[str, Any] = {}
        if options is not None:
            for key in ("temperature", "top_p", "top_k"):
                value = getattr(options, key)
                if value is not None:
                    params[key] = value
            max_tokens = options.max_tokens if options.max_tokens is not None else options.num_predict
            if max_tokens is not None:
                params["max_tokens"] = max_tokens
            if options.stop is not None:
                params["stop_sequences"] = [options.stop]
        # Anthropic requires max_tokens
        params.setdefault("max_tokens", DEFAULT_MAX_TOKENS)
        return params

    def to_provider(self, request: ChatRequest) -> dict[str, Any]:
        system, messages = self.build_messages(request.messages)
        body: dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            **self.build_params(request.options),
        }
        if system:
            body["system"] = system
        if request.tools:
            body["tools"] = [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "input_schema": tool.parameters.to_dict(),
                }
                for tool in request.tools
            ]
        return body

    def from_provider(self, raw: Any) -> ChatResponse:
        """Convert an Anthropic ``Message`` to a ChatResponse."""
        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        for block in raw.content or []:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append(
                    ToolCall(
                        id=block.id,
                        function=ToolCallFunction(
                            name=block.name,
                            arguments=dict(block.input) if hasattr(block.input, "items") else {},
                        ),
                    )
                )
        usage = getattr(raw, "usage", None)
        return ChatResponse(
            model=raw.model,
            message=Message(
                role=Role.ASSISTANT,
                content="".join(text_parts),
                tool_calls=tool_calls or None,
            ),
            done=True,
            done_reason=raw.stop_reason,
            prompt_eval_count=getattr(usage, "input_tokens", None),
            eval_count=getattr(usage, "output_tokens", None),
        )

    def stream_accumulator(self) -> "AnthropicStreamAccumulator":
        return AnthropicStreamAccumulator()


class AnthropicStreamAccumulator:
    """Turns raw Messages API stream events into neutral stream chunks.

    Text deltas are emitted as they arrive; ``tool_use`` blocks are assembled
    from their ``input_json_delta`` fragments and released with
    ``message_stop``, which is the terminal chunk.
    """

    def __init__(self) -> None:
        self._model = ""
        self._stop_reason: Optional[str] = None
        self._input_tokens: Optional[int] = None
        self._output_tokens: Optional[int] = None
        self._tool_blocks: dict[int, dict[str, Any]] = {}

    def parse(self, event: Any) -> Optional[ChatStreamChunk]:
        kind = getattr(event, "type", None)

        if kind == "message_start":
            self._model = event.message.model
            self._input_tokens = getattr(event.message.usage, "input_tokens", None)
        elif kind == "content_block_start":
            block = event.content_block
            if block.type == "tool_use":
                self._tool_blocks[event.index] = {"id": block.id, "name": block.name, "json": ""}
        elif kind == "content_block_delta":
            delta = event.delta
            if delta.type == "text_delta" and delta.text:
                return ChatStreamChunk(model=self._model, message=Message.assistant(delta.text))
            if delta.type == "input_json_delta" and event.index in self._tool_blocks:
                self._tool_blocks[event.index]["json"] += delta.partial_json
        elif kind == "message_delta":
            self._stop_reason = getattr(event.delta, "stop_reason", None) or self._stop_reason
            self._output_tokens = getattr(event.usage, "output_tokens", None)
        elif kind == "message_stop":
            return self._terminal()
        return None

    def _terminal(self) -> ChatStreamChunk:
        tool_calls = [
            ToolCall(
                id=block["id"],
                function=ToolCallFunction(
                    name=block["name"], arguments=decode_arguments(block["json"])
                ),
            )
            for _, block in sorted(self._tool_blocks.items())
        ]
        return ChatStreamChunk(
            model=self._model,
            message=Message(role=Role.ASSISTANT, content="", tool_calls=tool_calls)
            if tool_calls
            else None,
            done=True,
            done_reason=self._stop_reason or "stop",
            prompt_eval_count=self._input_tokens,
            eval_count=self._output_tokens,
        )
