"""
Provider‑neutral message and tool‑call dataclasses.

They are intentionally minimal: everything provider‑specific lives in adapters.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Optional

__all__ = ["Role", "Message", "ToolCall", "ToolCallFunction"]


class Role(StrEnum):
    SYSTEM = "system"
    DEVELOPER = "developer"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass(slots=True)
class ToolCallFunction:
    """Name and raw (not yet validated) JSON arguments of a requested call."""
    name: str
    arguments: Any = field(default_factory=dict)


@dataclass(slots=True)
class ToolCall:
    """A model‑agnostic request emitted by the LLM to call a registered tool."""
    function: ToolCallFunction
    id: Optional[str] = None

    @property
    def name(self) -> str:
        return self.function.name

    @property
    def arguments(self) -> Any:
        return self.function.arguments

    @property
    def correlation_id(self) -> str:
        """Id a Tool reply must carry: the call id, or the function name if absent."""
        return self.id if self.id else self.function.name

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "function": {"name": self.function.name, "arguments": self.function.arguments}
        }
        if self.id is not None:
            data["id"] = self.id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolCall":
        function = data.get("function") or {}
        return cls(
            id=data.get("id"),
            function=ToolCallFunction(
                name=function.get("name", ""),
                arguments=function.get("arguments", {}),
            ),
        )


@dataclass
class Message:
    """One conversational turn."""

    role: Role
    content: Optional[str] = None
    images: Optional[list[str]] = None
    tool_calls: Optional[list[ToolCall]] = None
    tool_call_id: Optional[str] = None
    id: str = field(default_factory=_new_id)

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def developer(cls, content: str) -> "Message":
        return cls(role=Role.DEVELOPER, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(role=Role.ASSISTANT, content=content)

    @classmethod
    def tool(cls, content: str, tool_call_id: str) -> "Message":
        return cls(role=Role.TOOL, content=content, tool_call_id=tool_call_id)

    def to_dict(self) -> dict[str, Any]:
        """Wire form. The id is local bookkeeping and never leaves the process."""
        data: dict[str, Any] = {"role": self.role.value}
        if self.content is not None:
            data["content"] = self.content
        if self.images is not None:
            data["images"] = list(self.images)
        if self.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            data["tool_call_id"] = self.tool_call_id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        tool_calls = data.get("tool_calls")
        return cls(
            role=Role(data.get("role", Role.ASSISTANT)),
            content=data.get("content"),
            images=data.get("images"),
            tool_calls=[ToolCall.from_dict(tc) for tc in tool_calls] if tool_calls else None,
            tool_call_id=data.get("tool_call_id"),
        )
