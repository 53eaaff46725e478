"""Resolution of model-requested tool calls into Tool messages."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Sequence

from agent_bridge.types.message import Message, ToolCall

if TYPE_CHECKING:
    from agent_bridge.agent import Agent

__all__ = ["NO_TOOLS_MESSAGE", "NO_TOOLS_CALL_ID", "call_tools"]

logger = logging.getLogger(__name__)

NO_TOOLS_MESSAGE = "If you want to use a tool specify the name of the available tool."
NO_TOOLS_CALL_ID = "tool"


async def call_tools(agent: "Agent", tool_calls: Sequence[ToolCall]) -> list[Message]:
    """
    Execute *tool_calls* one after another, in order.

    Returns one Tool message per call, correlated by the call id (or the
    function name when the model sent no id). Unknown tools and executor
    failures become error text in the reply; they never abort the turn.

    An agent without any tools gets a single explanatory reply instead.
    """
    tools = await agent.compile_tools()
    hub = agent.notifications

    if not tools:
        logger.warning("[%s] Model requested tools but none are registered", agent.name)
        await hub.notify_tool_error("Agent has no tools available")
        return [Message.tool(NO_TOOLS_MESSAGE, NO_TOOLS_CALL_ID)]

    registry = {tool.name: tool for tool in tools}
    replies: list[Message] = []
    for call in tool_calls:
        await hub.notify_tool_request(call)
        tool = registry.get(call.name)
        if tool is None:
            logger.error("[%s] No tool found with name: %s", agent.name, call.name)
            error = f"Could not find tool: {call.name}"
            await hub.notify_tool_error(error)
            replies.append(Message.tool(error, call.correlation_id))
            continue

        logger.info("[%s] Executing tool %s (call %s)", agent.name, call.name, call.correlation_id)
        try:
            result = await tool.execute(call.arguments)
        except Exception as exc:
            logger.error("[%s] Tool %s failed: %s", agent.name, call.name, exc)
            error = f"Error executing tool {call.name}: {exc}"
            await hub.notify_tool_error(error)
            replies.append(Message.tool(error, call.correlation_id))
            continue

        await hub.notify_tool_success(result)
        replies.append(Message.tool(result, call.correlation_id))
    return replies
