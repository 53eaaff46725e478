"""Wire-neutral chat request/response types."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Optional, Type

from pydantic import BaseModel

from agent_bridge.types.message import Message
from agent_bridge.types.tool import Tool

__all__ = [
    "InferenceOptions",
    "ChatRequest",
    "ChatResponse",
    "ChatStreamChunk",
    "EmbeddingsRequest",
    "EmbeddingsResponse",
    "SchemaSpec",
    "DEFAULT_KEEP_ALIVE",
]

DEFAULT_KEEP_ALIVE = "5m"


@dataclass
class InferenceOptions:
    """Sampling options. Every field is optional; unset fields never reach the wire."""

    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    min_p: Optional[float] = None
    presence_penalty: Optional[float] = None
    frequency_penalty: Optional[float] = None
    num_ctx: Optional[int] = None
    repeat_penalty: Optional[float] = None
    repeat_last_n: Optional[int] = None
    seed: Optional[int] = None
    stop: Optional[str] = None
    num_predict: Optional[int] = None
    max_tokens: Optional[int] = None

    def as_dict(self, exclude_none: bool = True) -> dict[str, Any]:
        """
        Convert to dictionary, optionally excluding None values.

        Args:
            exclude_none: If True, exclude fields with None values

        Returns:
            Dictionary representation of the options
        """
        result = asdict(self)
        if exclude_none:
            return {k: v for k, v in result.items() if v is not None}
        return result

    def is_empty(self) -> bool:
        return not self.as_dict()

    def merged(self, overrides: Optional["InferenceOptions"]) -> "InferenceOptions":
        """
        Field-by-field merge: an explicit override wins, otherwise our value is kept.

        Args:
            overrides: Per-call options; None leaves this instance unchanged.

        Returns:
            New InferenceOptions instance
        """
        if overrides is None:
            return replace(self)
        return replace(self, **overrides.as_dict())

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "InferenceOptions":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})


@dataclass
class ChatRequest:
    """Provider-agnostic chat request.

    ``format`` holds the structured-output value already negotiated for the
    target provider (see `InferenceClient.format_schema`).
    """

    model: str
    messages: list[Message] = field(default_factory=list)
    format: Any = None
    options: Optional[InferenceOptions] = None
    stream: Optional[bool] = None
    keep_alive: Optional[str] = None
    tools: Optional[list[Tool]] = None

    def to_dict(self) -> dict[str, Any]:
        """Neutral wire shape; unset fields are omitted, never sent as null."""
        data: dict[str, Any] = {"model": self.model}
        if self.format is not None:
            data["format"] = self.format
        if self.options is not None and not self.options.is_empty():
            data["options"] = self.options.as_dict()
        if self.stream is not None:
            data["stream"] = self.stream
        if self.keep_alive is not None:
            data["keep_alive"] = self.keep_alive
        data["messages"] = [m.to_dict() for m in self.messages]
        if self.tools:
            data["tools"] = [t.to_dict() for t in self.tools]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChatRequest":
        """Inverse of `to_dict`.

        Tool definitions are not restored: executors cannot be rehydrated from JSON.
        """
        options = data.get("options")
        return cls(
            model=data["model"],
            messages=[Message.from_dict(m) for m in data.get("messages", [])],
            format=data.get("format"),
            options=InferenceOptions.from_dict(options) if options else None,
            stream=data.get("stream"),
            keep_alive=data.get("keep_alive"),
        )


_METADATA_FIELDS = (
    "done_reason",
    "total_duration",
    "load_duration",
    "prompt_eval_count",
    "prompt_eval_duration",
    "eval_count",
    "eval_duration",
)


@dataclass
class ChatResponse:
    """A finished model reply plus completion metadata."""

    model: str
    message: Message
    created_at: str = ""
    done: bool = True
    done_reason: Optional[str] = None
    total_duration: Optional[int] = None
    load_duration: Optional[int] = None
    prompt_eval_count: Optional[int] = None
    prompt_eval_duration: Optional[int] = None
    eval_count: Optional[int] = None
    eval_duration: Optional[int] = None

    @property
    def content(self) -> str:
        return self.message.content or ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "model": self.model,
            "created_at": self.created_at,
            "message": self.message.to_dict(),
            "done": self.done,
        }
        for name in _METADATA_FIELDS:
            value = getattr(self, name)
            if value is not None:
                data[name] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChatResponse":
        return cls(
            model=data.get("model", ""),
            created_at=str(data.get("created_at", "")),
            message=Message.from_dict(data["message"]),
            done=bool(data.get("done", True)),
            **{name: data.get(name) for name in _METADATA_FIELDS},
        )


@dataclass
class ChatStreamChunk:
    """A partial ChatResponse. Exactly one chunk of a stream has ``done=True``."""

    model: str = ""
    created_at: str = ""
    message: Optional[Message] = None
    done: bool = False
    done_reason: Optional[str] = None
    total_duration: Optional[int] = None
    load_duration: Optional[int] = None
    prompt_eval_count: Optional[int] = None
    prompt_eval_duration: Optional[int] = None
    eval_count: Optional[int] = None
    eval_duration: Optional[int] = None

    @classmethod
    def terminal(cls, done_reason: Optional[str] = "stop", **kwargs: Any) -> "ChatStreamChunk":
        return cls(done=True, done_reason=done_reason, **kwargs)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChatStreamChunk":
        if "done" not in data:
            raise KeyError("done")
        message = data.get("message")
        return cls(
            model=data.get("model", ""),
            created_at=str(data.get("created_at", "")),
            message=Message.from_dict(message) if message else None,
            done=bool(data["done"]),
            **{name: data.get(name) for name in _METADATA_FIELDS},
        )

    def to_response(self, message: Message) -> ChatResponse:
        """Build the final response from this (terminal) chunk's metadata."""
        return ChatResponse(
            model=self.model,
            created_at=self.created_at,
            message=message,
            done=self.done,
            **{name: getattr(self, name) for name in _METADATA_FIELDS},
        )


@dataclass
class EmbeddingsRequest:
    model: str
    input: str
    options: Optional[dict[str, Any]] = None
    keep_alive: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"model": self.model, "input": self.input}
        if self.options is not None:
            data["options"] = self.options
        if self.keep_alive is not None:
            data["keep_alive"] = self.keep_alive
        return data


@dataclass
class EmbeddingsResponse:
    embedding: list[float]


@dataclass
class SchemaSpec:
    """Neutral structured-output request: a raw JSON Schema plus optional hints.

    ``name`` and ``strict`` are only used by providers that want them.
    """

    schema: Any
    name: Optional[str] = None
    strict: Optional[bool] = None

    @classmethod
    def from_value(cls, schema: Any) -> "SchemaSpec":
        return cls(schema=schema)

    @classmethod
    def from_str(cls, raw: str) -> "SchemaSpec":
        """Parse a JSON schema string; raises ValueError when it is not JSON."""
        return cls(schema=json.loads(raw.strip()))

    @classmethod
    def from_model(cls, model: Type[BaseModel]) -> "SchemaSpec":
        """Derive the schema from a pydantic model class."""
        return cls(schema=model.model_json_schema(), name=model.__name__)

    def with_name(self, name: str) -> "SchemaSpec":
        return replace(self, name=name)

    def with_strict(self, strict: bool) -> "SchemaSpec":
        return replace(self, strict=strict)
