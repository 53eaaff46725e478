"""Shared fixtures: a scripted provider client and agent factories."""

import json
from collections import deque
from typing import Any, Callable, Iterable, Union

import httpx
import pytest

from agent_bridge import (
    AgentBuilder,
    ChatRequest,
    ChatResponse,
    ChatStreamChunk,
    ClientConfig,
    InferenceClient,
    Message,
    Role,
    SchemaSpec,
    ToolBuilder,
    ToolCall,
    ToolCallFunction,
)
from agent_bridge.providers.base import BaseProviderClient

Scripted = Union[Message, ChatResponse, Exception, Callable[[ChatRequest], Message]]


class ScriptedProviderClient(BaseProviderClient):
    """Replays canned replies in order and records every request it receives."""

    def __init__(self, replies: Iterable[Scripted] = ()) -> None:
        super().__init__(ClientConfig(), name="ScriptedProviderClient")
        self.replies: deque[Scripted] = deque(replies)
        self.requests: list[ChatRequest] = []
        self.closed = False

    def queue(self, *replies: Scripted) -> None:
        self.replies.extend(replies)

    async def chat(self, request: ChatRequest) -> ChatResponse:
        self.requests.append(request)
        if not self.replies:
            raise AssertionError("No scripted reply left")
        reply = self.replies.popleft()
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            reply = reply(request)
        if isinstance(reply, ChatResponse):
            return reply
        return ChatResponse(model=request.model, message=reply, done_reason="stop")

    async def chat_stream(self, request: ChatRequest):
        response = await self.chat(request)
        content = response.message.content or ""

        async def chunks():
            for start in range(0, len(content), 4):
                yield ChatStreamChunk(
                    model=request.model,
                    message=Message.assistant(content[start : start + 4]),
                )
            yield ChatStreamChunk.terminal(
                "stop",
                model=request.model,
                message=Message(
                    role=Role.ASSISTANT, content="", tool_calls=response.message.tool_calls
                ),
            )

        return chunks()

    def format_schema(self, spec: SchemaSpec) -> Any:
        return spec.schema

    async def aclose(self) -> None:
        self.closed = True


def assistant(content: str = "", *calls: tuple) -> Message:
    """Assistant reply; each call is ``(name, arguments)`` or ``(name, arguments, id)``."""
    tool_calls = [
        ToolCall(
            function=ToolCallFunction(name=call[0], arguments=call[1]),
            id=call[2] if len(call) > 2 else None,
        )
        for call in calls
    ]
    return Message(role=Role.ASSISTANT, content=content, tool_calls=tool_calls or None)


def make_tool(name: str, result: str = "ok", fail: bool = False):
    calls: list[Any] = []

    async def executor(arguments: Any) -> str:
        calls.append(arguments)
        if fail:
            raise RuntimeError("boom")
        return result

    tool = (
        ToolBuilder()
        .function_name(name)
        .function_description(f"The {name} tool")
        .add_required_property("query", "string", "What to look up")
        .executor(executor)
        .build()
    )
    return tool, calls


@pytest.fixture
def scripted():
    return ScriptedProviderClient()


@pytest.fixture
def builder(scripted):
    """AgentBuilder wired to the scripted client."""
    return AgentBuilder().set_model("test-model").set_client(
        InferenceClient(provider_client=scripted)
    )


def recording_transport(handler):
    """MockTransport that stores each request (with its decoded JSON body) on ``.seen``."""
    seen = []

    def wrapped(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        seen.append((request, body))
        return handler(request)

    transport = httpx.MockTransport(wrapped)
    transport.seen = seen
    return transport
