"""OpenAI-compatible adapter for pure request/response transformations.

The Chat Completions wire format is shared by OpenAI itself and by the
OpenRouter aggregator; `adapters.openrouter` only widens the option mapping.
"""

from __future__ import annotations

import json
from typing import Any, ClassVar, Optional, Sequence

from agent_bridge.stream_utils import raise_for_error_envelope
from agent_bridge.types.chat import (
    ChatRequest,
    ChatResponse,
    ChatStreamChunk,
    InferenceOptions,
    SchemaSpec,
)
from agent_bridge.types.message import Message, Role, ToolCall, ToolCallFunction


def decode_arguments(raw_args: Any) -> Any:
    if isinstance(raw_args, str):
        if not raw_args.strip():
            return {}
        try:
            return json.loads(raw_args)
        except json.JSONDecodeError:
            # Left as text; the tool executor reports the parsing failure.
            return raw_args
    return raw_args if raw_args is not None else {}


def _encode_arguments(arguments: Any) -> str:
    return arguments if isinstance(arguments, str) else json.dumps(arguments)


def _image_part(image: str) -> dict[str, Any]:
    url = image if image.startswith(("http://", "https://", "data:")) else f"data:image/png;base64,{image}"
    return {"type": "image_url", "image_url": {"url": url}}


class OpenAIRequestAdapter:
    """Adapter for converting between the neutral model and Chat Completions."""

    error_prefix: ClassVar[str] = "OpenAI error"

    def build_messages(self, messages: Sequence[Message]) -> list[dict[str, Any]]:
        """Convert neutral messages to the Chat Completions shape."""
        out: list[dict[str, Any]] = []
        for msg in messages:
            # developer prompts are sent as system prompts
            role = Role.SYSTEM if msg.role == Role.DEVELOPER else msg.role
            wire: dict[str, Any] = {"role": role.value}

            if msg.images and role == Role.USER:
                parts: list[dict[str, Any]] = [{"type": "text", "text": msg.content or ""}]
                parts.extend(_image_part(img) for img in msg.images)
                wire["content"] = parts
            else:
                wire["content"] = msg.content or ""

            if msg.tool_calls:
                wire["tool_calls"] = [
                    {
                        "id": tc.correlation_id,
                        "type": "function",
                        "function": {
                            "name": tc.name,
                            "arguments": _encode_arguments(tc.arguments),
                        },
                    }
                    for tc in msg.tool_calls
                ]
                # content must be null when only tool calls are present
                if not msg.content:
                    wire["content"] = None

            if msg.tool_call_id:
                wire["tool_call_id"] = msg.tool_call_id

            out.append(wire)
        return out

    def build_params(self, options: Optional[InferenceOptions]) -> dict[str, Any]:
        """Map neutral sampling options onto Chat Completions parameters."""
        if options is None:
            return {}
        params: dict[str, Any] = {}
        for key in ("temperature", "top_p", "presence_penalty", "frequency_penalty", "seed"):
            value = getattr(options, key)
            if value is not None:
                params[key] = value
        max_tokens = options.max_tokens if options.max_tokens is not None else options.num_predict
        if max_tokens is not None:
            params["max_tokens"] = max_tokens
        if options.stop is not None:
            params["stop"] = [options.stop]
        return params

    def to_provider(self, request: ChatRequest) -> dict[str, Any]:
        """Build the request body. ``keep_alive`` has no equivalent and is dropped."""
        body: dict[str, Any] = {
            "model": request.model,
            "messages": self.build_messages(request.messages),
            **self.build_params(request.options),
        }
        if request.stream is not None:
            body["stream"] = request.stream
        if request.tools:
            body["tools"] = [tool.to_dict() for tool in request.tools]
        if request.format is not None:
            body["response_format"] = request.format
        return body

    def format_schema(self, spec: SchemaSpec) -> dict[str, Any]:
        return {
            "type": "json_schema",
            "json_schema": {
                "name": spec.name or "schema",
                "strict": spec.strict or False,
                "schema": spec.schema,
            },
        }

    def from_provider(self, raw: dict[str, Any]) -> ChatResponse:
        """Convert a decoded Chat Completions body to a ChatResponse."""
        raise_for_error_envelope(raw, prefix=self.error_prefix)

        choices = raw.get("choices") or []
        choice = choices[0] if choices else {}
        wire_msg = choice.get("message") or {}

        tool_calls = [
            ToolCall(
                id=tc.get("id"),
                function=ToolCallFunction(
                    name=tc["function"]["name"],
                    arguments=decode_arguments(tc["function"].get("arguments")),
                ),
            )
            for tc in wire_msg.get("tool_calls") or []
        ]
        usage = raw.get("usage") or {}

        return ChatResponse(
            model=raw.get("model", ""),
            created_at=str(raw.get("created", "")),
            message=Message(
                role=Role.ASSISTANT,
                content=wire_msg.get("content") or "",
                tool_calls=tool_calls or None,
            ),
            done=True,
            done_reason=choice.get("finish_reason"),
            prompt_eval_count=usage.get("prompt_tokens"),
            eval_count=usage.get("completion_tokens"),
        )

    def stream_accumulator(self) -> "ChatCompletionStreamAccumulator":
        return ChatCompletionStreamAccumulator()


class ChatCompletionStreamAccumulator:
    """Turns ``chat.completion.chunk`` payloads into neutral stream chunks.

    Tool-call fragments arrive spread over many deltas, keyed by index; they
    are reassembled here and released on the terminal chunk. The terminal
    chunk is built by `terminal` once the stream has ended (``[DONE]`` or SDK
    exhaustion), not on ``finish_reason``: a usage-only frame may follow it.
    """

    def __init__(self) -> None:
        self._model = ""
        self._created = ""
        self._usage: dict[str, Any] = {}
        self._tool_calls: dict[int, dict[str, Any]] = {}
        self._finish_reason: Optional[str] = None

    @property
    def finished(self) -> bool:
        """True once a choice has reported its ``finish_reason``."""
        return self._finish_reason is not None

    def parse(self, obj: dict[str, Any]) -> Optional[ChatStreamChunk]:
        self._model = obj.get("model") or self._model
        if obj.get("created"):
            self._created = str(obj["created"])
        if obj.get("usage"):
            self._usage = obj["usage"]

        choices = obj.get("choices") or []
        if not choices:
            return None
        choice = choices[0]
        delta = choice.get("delta") or {}

        for fragment in delta.get("tool_calls") or []:
            agg = self._tool_calls.setdefault(
                fragment.get("index", 0), {"id": "", "name": "", "arguments": ""}
            )
            if fragment.get("id"):
                agg["id"] = fragment["id"]
            function = fragment.get("function") or {}
            if function.get("name"):
                agg["name"] += function["name"]
            if function.get("arguments"):
                agg["arguments"] += function["arguments"]

        content = delta.get("content")
        if choice.get("finish_reason"):
            self._finish_reason = choice["finish_reason"]
        if content:
            return ChatStreamChunk(
                model=self._model,
                created_at=self._created,
                message=Message.assistant(content),
            )
        return None

    def terminal(self, done_reason: Optional[str] = None) -> ChatStreamChunk:
        """Terminal chunk carrying the assembled tool calls and the usage seen so far."""
        tool_calls = [
            ToolCall(
                id=agg["id"] or None,
                function=ToolCallFunction(
                    name=agg["name"], arguments=decode_arguments(agg["arguments"])
                ),
            )
            for _, agg in sorted(self._tool_calls.items())
            if agg["name"]
        ]
        self._tool_calls.clear()
        message = None
        if tool_calls:
            message = Message(role=Role.ASSISTANT, content="", tool_calls=tool_calls)
        return ChatStreamChunk(
            model=self._model,
            created_at=self._created,
            message=message,
            done=True,
            done_reason=done_reason or self._finish_reason or "stop",
            prompt_eval_count=self._usage.get("prompt_tokens"),
            eval_count=self._usage.get("completion_tokens"),
        )
