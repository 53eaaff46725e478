"""
Request building and single model calls.

Every model call made by a flow goes through `call_model`, which reports the
request, the streamed tokens and the outcome to the agent's notification hub.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Optional

from agent_bridge.client import InferenceClient
from agent_bridge.dispatch import call_tools
from agent_bridge.notifications.hub import NotificationHub
from agent_bridge.provider import ClientConfig
from agent_bridge.stream_utils import aggregate_stream
from agent_bridge.types.chat import ChatRequest, ChatResponse, InferenceOptions
from agent_bridge.types.message import Message
from agent_bridge.types.tool import Tool

if TYPE_CHECKING:
    from agent_bridge.agent import Agent

__all__ = [
    "THINK_END_TAG",
    "strip_think_prefix",
    "merge_options",
    "build_request",
    "build_custom_request",
    "call_model",
    "invoke",
    "invoke_without_tools",
    "invoke_with_tool_calls",
    "InvocationBuilder",
]

THINK_END_TAG = "</think>"


def strip_think_prefix(text: str) -> str:
    """Drop everything up to and including the first ``</think>``; text without one is unchanged."""
    _, sep, rest = text.partition(THINK_END_TAG)
    return rest if sep else text


def merge_options(
    base: Optional[InferenceOptions], overrides: Optional[InferenceOptions]
) -> Optional[InferenceOptions]:
    """Per-call values win field by field; None when nothing ends up set."""
    merged = (base or InferenceOptions()).merged(overrides)
    return None if merged.is_empty() else merged


async def build_request(
    agent: "Agent",
    *,
    use_tools: bool = True,
    stream: Optional[bool] = None,
    options: Optional[InferenceOptions] = None,
) -> ChatRequest:
    """Snapshot the agent's state into a request. The history is copied."""
    tools = await agent.compile_tools() if use_tools else None
    return ChatRequest(
        model=agent.model,
        messages=list(agent.history),
        format=agent.response_format,
        options=merge_options(agent.options, options),
        stream=agent.stream if stream is None else stream,
        keep_alive=agent.keep_alive,
        tools=tools or None,
    )


def build_custom_request(
    agent: "Agent",
    messages: Iterable[Message],
    tools: Optional[list[Tool]] = None,
) -> ChatRequest:
    """Request on an explicit message list, keeping the agent's model settings."""
    return ChatRequest(
        model=agent.model,
        messages=list(messages),
        format=agent.response_format,
        options=merge_options(agent.options, None),
        stream=agent.stream,
        keep_alive=agent.keep_alive,
        tools=tools or None,
    )


async def call_model(
    client: InferenceClient,
    request: ChatRequest,
    *,
    hub: Optional[NotificationHub] = None,
    strip_thinking: bool = False,
) -> ChatResponse:
    """
    Run one chat call, streaming when ``request.stream`` is set.

    Emits ``prompt_request`` before the call, one ``token`` per streamed
    content piece, then ``prompt_success`` or ``prompt_error``. Errors are
    re-raised unchanged.
    """
    if hub is not None:
        await hub.notify_prompt_request(request)
    try:
        if request.stream:
            on_token = hub.notify_token if hub is not None else None
            response = await aggregate_stream(await client.chat_stream(request), on_token=on_token)
        else:
            response = await client.chat(request)
    except Exception as exc:
        if hub is not None:
            await hub.notify_prompt_error(str(exc))
        raise

    if strip_thinking and response.message.content:
        response.message.content = strip_think_prefix(response.message.content)
    if hub is not None:
        await hub.notify_prompt_success(response)
    return response


async def _invoke(agent: "Agent", *, use_tools: bool) -> ChatResponse:
    request = await build_request(agent, use_tools=use_tools)
    return await call_model(
        agent.client,
        request,
        hub=agent.notifications,
        strip_thinking=agent.strip_thinking,
    )


async def invoke(agent: "Agent") -> ChatResponse:
    """One call with the agent's tools attached. History is not modified."""
    return await _invoke(agent, use_tools=True)


async def invoke_without_tools(agent: "Agent") -> ChatResponse:
    return await _invoke(agent, use_tools=False)


async def invoke_with_tool_calls(agent: "Agent") -> ChatResponse:
    """
    One call with tools; the reply is appended to history and any requested
    tool calls are dispatched, their Tool replies appended after it.
    """
    response = await invoke(agent)
    agent.history.append(response.message)
    if response.message.tool_calls:
        agent.history.extend(await call_tools(agent, response.message.tool_calls))
    return response


class InvocationBuilder:
    """
    Fluent one-off invocation.

    Bound to an agent (`invoke_with`) it overrides that agent's settings for a
    single call. Without an agent it builds a request from scratch:

    >>> response = await (
    ...     InvocationBuilder()
    ...     .model("qwen3:0.6b")
    ...     .add_message(Message.user("hello"))
    ...     .invoke()
    ... )
    """

    def __init__(self) -> None:
        self._stream: Optional[bool] = None
        self._use_tools: Optional[bool] = None
        self._strip_thinking: Optional[bool] = None
        self._options: Optional[InferenceOptions] = None
        self._model: Optional[str] = None
        self._client_config: Optional[ClientConfig] = None
        self._client: Optional[InferenceClient] = None
        self._messages: list[Message] = []
        self._tools: list[Tool] = []

    def stream(self, value: bool = True) -> "InvocationBuilder":
        self._stream = value
        return self

    def use_tools(self, value: bool = True) -> "InvocationBuilder":
        self._use_tools = value
        return self

    def strip_thinking(self, value: bool = True) -> "InvocationBuilder":
        self._strip_thinking = value
        return self

    def options(self, options: InferenceOptions) -> "InvocationBuilder":
        self._options = options
        return self

    def model(self, model: str) -> "InvocationBuilder":
        self._model = model
        return self

    def client_config(self, config: ClientConfig) -> "InvocationBuilder":
        self._client_config = config
        return self

    def client(self, client: InferenceClient) -> "InvocationBuilder":
        self._client = client
        return self

    def add_message(self, message: Message) -> "InvocationBuilder":
        self._messages.append(message)
        return self

    def set_messages(self, messages: Iterable[Message]) -> "InvocationBuilder":
        self._messages = list(messages)
        return self

    def tools(self, tools: Iterable[Tool]) -> "InvocationBuilder":
        self._tools = list(tools)
        return self

    async def invoke_with(self, agent: "Agent") -> ChatResponse:
        """Call *agent*'s model with the overrides and append the reply to its history.

        Tool calls in the reply are not dispatched.
        """
        use_tools = True if self._use_tools is None else self._use_tools
        request = await build_request(
            agent, use_tools=use_tools, stream=self._stream, options=self._options
        )
        strip = agent.strip_thinking if self._strip_thinking is None else self._strip_thinking
        response = await call_model(
            agent.client, request, hub=agent.notifications, strip_thinking=strip
        )
        agent.history.append(response.message)
        return response

    async def invoke(self) -> ChatResponse:
        """Standalone call; requires `model`. Uses an Ollama client unless configured."""
        if not self._model:
            raise ValueError("InvocationBuilder.invoke() requires a model")
        request = ChatRequest(
            model=self._model,
            messages=list(self._messages),
            options=merge_options(None, self._options),
            stream=bool(self._stream),
            tools=(self._tools or None) if self._use_tools is not False else None,
        )
        if self._client is not None:
            return await call_model(
                self._client, request, strip_thinking=bool(self._strip_thinking)
            )
        async with InferenceClient(self._client_config or ClientConfig()) as client:
            return await call_model(client, request, strip_thinking=bool(self._strip_thinking))

    def __repr__(self) -> str:
        return (
            f"InvocationBuilder(model={self._model!r}, messages={len(self._messages)}, "
            f"stream={self._stream}, use_tools={self._use_tools})"
        )
