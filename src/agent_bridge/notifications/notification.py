"""
Notification values emitted by agents while they work.

Every variant serializes to ``{"type": <tag>, ...}`` so a stream can be
relayed over a process boundary (e.g. inside a tool server's progress
messages) and rebuilt on the other side with `Notification.from_dict`.
"""
from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, ClassVar, Optional, Type

from agent_bridge.types.chat import ChatRequest, ChatResponse
from agent_bridge.types.message import ToolCall

__all__ = [
    "NotificationType",
    "NotificationContent",
    "Done",
    "PromptRequest",
    "PromptSuccess",
    "PromptError",
    "ToolCallRequest",
    "ToolCallSuccess",
    "ToolCallError",
    "Token",
    "ProviderEvent",
    "Custom",
    "ProgressEnvelope",
    "Notification",
]


class NotificationType(StrEnum):
    DONE = "done"
    PROMPT_REQUEST = "prompt_request"
    PROMPT_SUCCESS = "prompt_success"
    PROMPT_ERROR = "prompt_error"
    TOOL_CALL_REQUEST = "tool_call_request"
    TOOL_CALL_SUCCESS = "tool_call_success"
    TOOL_CALL_ERROR = "tool_call_error"
    TOKEN = "token"
    PROVIDER_EVENT = "provider_event"
    CUSTOM = "custom"


_CONTENT_TYPES: dict[NotificationType, Type["NotificationContent"]] = {}


class NotificationContent:
    """Base of the tagged notification variants."""

    type: ClassVar[NotificationType]

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        _CONTENT_TYPES[cls.type] = cls

    def _payload(self) -> dict[str, Any]:
        raise NotImplementedError

    @classmethod
    def _from_payload(cls, data: dict[str, Any]) -> "NotificationContent":
        raise NotImplementedError

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, **self._payload()}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "NotificationContent":
        try:
            cls = _CONTENT_TYPES[NotificationType(data["type"])]
        except (KeyError, ValueError) as exc:
            raise ValueError(f"Unknown notification content: {data!r}") from exc
        return cls._from_payload(data)


@dataclass(slots=True)
class Done(NotificationContent):
    """The invocation finished. ``response`` is the final text, if any."""

    type: ClassVar[NotificationType] = NotificationType.DONE
    success: bool
    response: Optional[str] = None

    def _payload(self) -> dict[str, Any]:
        return {"success": self.success, "response": self.response}

    @classmethod
    def _from_payload(cls, data: dict[str, Any]) -> "Done":
        return cls(success=bool(data["success"]), response=data.get("response"))


@dataclass(slots=True)
class PromptRequest(NotificationContent):
    type: ClassVar[NotificationType] = NotificationType.PROMPT_REQUEST
    request: ChatRequest

    def _payload(self) -> dict[str, Any]:
        return {"request": self.request.to_dict()}

    @classmethod
    def _from_payload(cls, data: dict[str, Any]) -> "PromptRequest":
        return cls(request=ChatRequest.from_dict(data["request"]))


@dataclass(slots=True)
class PromptSuccess(NotificationContent):
    type: ClassVar[NotificationType] = NotificationType.PROMPT_SUCCESS
    response: ChatResponse

    def _payload(self) -> dict[str, Any]:
        return {"response": self.response.to_dict()}

    @classmethod
    def _from_payload(cls, data: dict[str, Any]) -> "PromptSuccess":
        return cls(response=ChatResponse.from_dict(data["response"]))


@dataclass(slots=True)
class PromptError(NotificationContent):
    type: ClassVar[NotificationType] = NotificationType.PROMPT_ERROR
    error: str

    def _payload(self) -> dict[str, Any]:
        return {"error": self.error}

    @classmethod
    def _from_payload(cls, data: dict[str, Any]) -> "PromptError":
        return cls(error=str(data["error"]))


@dataclass(slots=True)
class ToolCallRequest(NotificationContent):
    type: ClassVar[NotificationType] = NotificationType.TOOL_CALL_REQUEST
    tool_call: ToolCall

    def _payload(self) -> dict[str, Any]:
        return {"tool_call": self.tool_call.to_dict()}

    @classmethod
    def _from_payload(cls, data: dict[str, Any]) -> "ToolCallRequest":
        return cls(tool_call=ToolCall.from_dict(data["tool_call"]))


@dataclass(slots=True)
class ToolCallSuccess(NotificationContent):
    type: ClassVar[NotificationType] = NotificationType.TOOL_CALL_SUCCESS
    result: str

    def _payload(self) -> dict[str, Any]:
        return {"result": self.result}

    @classmethod
    def _from_payload(cls, data: dict[str, Any]) -> "ToolCallSuccess":
        return cls(result=str(data["result"]))


@dataclass(slots=True)
class ToolCallError(NotificationContent):
    type: ClassVar[NotificationType] = NotificationType.TOOL_CALL_ERROR
    error: str

    def _payload(self) -> dict[str, Any]:
        return {"error": self.error}

    @classmethod
    def _from_payload(cls, data: dict[str, Any]) -> "ToolCallError":
        return cls(error=str(data["error"]))


@dataclass(slots=True)
class Token(NotificationContent):
    """One streamed content piece. ``tag`` labels where it came from."""

    type: ClassVar[NotificationType] = NotificationType.TOKEN
    value: str
    tag: Optional[str] = None

    def _payload(self) -> dict[str, Any]:
        return {"tag": self.tag, "value": self.value}

    @classmethod
    def _from_payload(cls, data: dict[str, Any]) -> "Token":
        return cls(value=str(data["value"]), tag=data.get("tag"))


@dataclass(slots=True)
class ProviderEvent(NotificationContent):
    """Opaque passthrough from a tool server or provider (a serialized JSON string)."""

    type: ClassVar[NotificationType] = NotificationType.PROVIDER_EVENT
    payload: str

    def _payload(self) -> dict[str, Any]:
        return {"payload": self.payload}

    @classmethod
    def _from_payload(cls, data: dict[str, Any]) -> "ProviderEvent":
        return cls(payload=str(data["payload"]))


@dataclass(slots=True)
class Custom(NotificationContent):
    type: ClassVar[NotificationType] = NotificationType.CUSTOM
    value: Any = None

    def _payload(self) -> dict[str, Any]:
        return {"value": self.value}

    @classmethod
    def _from_payload(cls, data: dict[str, Any]) -> "Custom":
        return cls(value=data.get("value"))


@dataclass(slots=True)
class ProgressEnvelope:
    """Progress data of the tool-server message a notification was carried in."""

    progress_token: Any
    progress: Any

    def to_dict(self) -> dict[str, Any]:
        return {"progressToken": self.progress_token, "progress": self.progress}


def _now_millis() -> int:
    return time.time_ns() // 1_000_000


@dataclass
class Notification:
    """A content value stamped with the emitting agent's name and a timestamp (ms)."""

    agent: str
    content: NotificationContent
    timestamp: int = field(default_factory=_now_millis)
    envelope: Optional[ProgressEnvelope] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "agent": self.agent,
            "content": self.content.to_dict(),
            "timestamp": self.timestamp,
        }
        if self.envelope is not None:
            data["envelope"] = self.envelope.to_dict()
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Notification":
        envelope = data.get("envelope")
        return cls(
            agent=str(data["agent"]),
            content=NotificationContent.from_dict(data["content"]),
            timestamp=int(data.get("timestamp", 0)),
            envelope=ProgressEnvelope(envelope.get("progressToken"), envelope.get("progress"))
            if envelope
            else None,
        )

    def unwrap(self) -> "Notification":
        """
        Recover a notification that travelled inside a provider event.

        A `ProviderEvent` whose payload is ``{"progressToken", "progress",
        "message"}`` with ``message`` being a serialized `Notification` yields
        that nested notification (recursively unwrapped) carrying the progress
        envelope. Anything else is returned unchanged.
        """
        if not isinstance(self.content, ProviderEvent):
            return self
        try:
            raw = json.loads(self.content.payload)
            message = raw["message"]
            nested_data = json.loads(message) if isinstance(message, str) else message
            nested = Notification.from_dict(nested_data)
            nested.envelope = ProgressEnvelope(raw["progressToken"], raw["progress"])
        except (ValueError, KeyError, TypeError):
            return self
        return nested.unwrap()
