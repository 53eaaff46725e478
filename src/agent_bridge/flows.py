"""
Invocation flows: the strategy an agent follows to turn a prompt into a reply.

A flow is any ``async fn(agent, prompt) -> Message``. History is only
appended after each step completes, so a cancelled flow leaves the
conversation in a consistent state.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable

from agent_bridge.dispatch import call_tools
from agent_bridge.invocation import invoke, invoke_with_tool_calls, invoke_without_tools
from agent_bridge.types.message import Message

if TYPE_CHECKING:
    from agent_bridge.agent import Agent

__all__ = [
    "DEFAULT_MAX_ITERATIONS",
    "FlowFn",
    "Flow",
    "default_flow",
    "reply_flow",
    "reply_without_tools_flow",
    "call_tools_flow",
    "call_tools_and_reply_flow",
    "simple_loop_flow",
]

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 10

FlowFn = Callable[["Agent", str], Awaitable[Message]]


async def default_flow(agent: "Agent", prompt: str) -> Message:
    """Call the model with tools; if it asked for tools, run them and ask again without tools."""
    agent.history.append(Message.user(prompt))

    response = await invoke(agent)
    agent.history.append(response.message)

    if response.message.tool_calls:
        agent.history.extend(await call_tools(agent, response.message.tool_calls))
        response = await invoke_without_tools(agent)
        agent.history.append(response.message)

    await agent.notifications.notify_done(True, response.message.content)
    return response.message


async def reply_flow(agent: "Agent", prompt: str) -> Message:
    """One call with tools attached; requested tool calls are returned, not run."""
    agent.history.append(Message.user(prompt))
    response = await invoke(agent)
    agent.history.append(response.message)
    await agent.notifications.notify_done(True, response.message.content)
    return response.message


async def reply_without_tools_flow(agent: "Agent", prompt: str) -> Message:
    agent.history.append(Message.user(prompt))
    response = await invoke_without_tools(agent)
    agent.history.append(response.message)
    await agent.notifications.notify_done(True, response.message.content)
    return response.message


async def call_tools_flow(agent: "Agent", prompt: str) -> Message:
    """Run the requested tools and return the tool-calling message itself."""
    agent.history.append(Message.user(prompt))
    response = await invoke_with_tool_calls(agent)
    await agent.notifications.notify_done(True, response.message.content)
    return response.message


async def call_tools_and_reply_flow(agent: "Agent", prompt: str) -> Message:
    """Like `default_flow`, but the follow-up call keeps the tools attached."""
    agent.history.append(Message.user(prompt))
    response = await invoke_with_tool_calls(agent)

    if response.message.tool_calls:
        response = await invoke(agent)
        agent.history.append(response.message)

    await agent.notifications.notify_done(True, response.message.content)
    return response.message


async def simple_loop_flow(agent: "Agent", prompt: str) -> Message:
    """
    Call and dispatch tools until the model is done.

    With a stopword the loop ends once the reply contains it; without one it
    ends on the first reply that requests no tools. It never runs more than
    ``max_iterations`` rounds, though always at least one. ``stop_prompt``,
    when set, is sent as a User message after every round that does not end
    the loop.
    """
    max_iterations = (
        DEFAULT_MAX_ITERATIONS if agent.max_iterations is None else agent.max_iterations
    )
    agent.history.append(Message.user(prompt))

    iteration = 0
    while True:
        iteration += 1
        response = await invoke_with_tool_calls(agent)
        message = response.message

        if agent.stopword is not None:
            finished = agent.stopword in (message.content or "")
        else:
            finished = not message.tool_calls

        if finished or iteration >= max_iterations:
            if not finished:
                logger.info(
                    "[%s] Loop stopped after %d iterations", agent.name, iteration
                )
            await agent.notifications.notify_done(True, message.content)
            return message

        if agent.stop_prompt:
            agent.history.append(Message.user(agent.stop_prompt))


@dataclass(frozen=True, slots=True)
class Flow:
    """The flow an agent runs on `Agent.invoke`."""

    fn: FlowFn
    name: str = "custom"

    @classmethod
    def default(cls) -> "Flow":
        return cls(default_flow, "default")

    @classmethod
    def custom(cls, fn: FlowFn) -> "Flow":
        return cls(fn, getattr(fn, "__name__", "custom"))

    async def run(self, agent: "Agent", prompt: str) -> Message:
        return await self.fn(agent, prompt)
