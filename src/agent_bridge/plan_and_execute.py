"""
Plan-and-execute flow.

The parent agent drives four stateless helpers built from its own model
settings, tools and client:

* blueprint: turns the objective into a prose strategy,
* planner: turns the strategy into ``{"steps": [...]}``,
* executor: runs one step with tools until it answers in ``<final>`` tags,
* replanner: rewrites the remaining steps after each result.

Each step and its result are folded into the parent's history, and the
parent finally answers the original prompt from that log.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from agent_bridge._exceptions import FlowRuntimeError
from agent_bridge.agent import Agent, AgentBuilder
from agent_bridge.flows import Flow, reply_without_tools_flow, simple_loop_flow
from agent_bridge.invocation import invoke_without_tools
from agent_bridge.notifications.channel import NotificationReceiver
from agent_bridge.types.message import Message

__all__ = [
    "DEFAULT_MAX_TURNS",
    "PLAN_SCHEMA",
    "REPORTER_PROMPT",
    "get_plan_from_response",
    "format_past_steps",
    "plan_and_execute_flow",
]

logger = logging.getLogger(__name__)

DEFAULT_MAX_TURNS = 5
EXECUTOR_MAX_ITERATIONS = 10
EXECUTOR_STOPWORD = "</final>"

PLAN_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {"steps": {"type": "array", "items": {"type": "string"}}},
    "required": ["steps"],
}

REPORTER_PROMPT = """You are a Chief Analyst and Reporter. You receive an execution log: the user's objective, the tasks that were run (User messages) and what each one found (Assistant messages). The objective is repeated as the last message; answer it.

Write one cohesive report:
1. Open by answering the user's question directly, in a conversational tone and without a heading.
2. Then organise the findings with markdown headings, bold key terms and lists.
3. Elaborate on what was discovered and connect the findings into a narrative.
4. Talk about the information, never about plans, steps or tools.

Do not call tools or re-run tasks. Use only facts present in the log."""

BLUEPRINT_PROMPT = """You are a Chief Strategist. Read the user's objective and describe, in one paragraph of plain prose, the high-level strategy to achieve it: the core question, the key pieces of information needed, the order in which they must be found, and the general kinds of actions required.

Do not write JSON, numbered or bulleted steps, or specific tool names, and do not call tools.

Example objective: "Who was the monarch of the UK when the first person landed on the moon, and what was their full name?"
Example strategy: First establish the exact date of the first moon landing. With the date known, identify the reigning UK monarch at that time, then look up that monarch's full formal name."""

PLANNER_PROMPT = """You are a Tactical Planner. You receive a high-level strategy for a user's objective and turn it into a JSON object with a single key "steps" holding an array of strings. Reply with that JSON object only.

The executor who runs the steps knows nothing about the strategy or the objective, so every step must be a self-contained, specific instruction that embeds all relevant context and says exactly what information to return. Generic steps such as "Use the search tool to find information" are useless.

The last step is always: "Synthesize all the gathered information and provide the final, comprehensive answer to the user's objective."

Example:
{"steps": [
  "Use the search_tool to find the exact date of the first moon landing and return the full date.",
  "Using that date, use the search_tool to find who was the monarch of the United Kingdom at that time and return their common name.",
  "Using that name, use the search_tool to find the monarch's full given name and return it.",
  "Synthesize the gathered information and provide the final answer to the user's objective."
]}"""

REPLANNER_PROMPT = """You are a Re-Planner. You receive the original objective, the current plan and the steps already executed with their results. Produce the remaining plan as a JSON object with a single key "steps".

- Re-read the objective and check whether the results answer it. If they do, reply with {"steps": []}.
- Rewrite the remaining steps so they embed concrete facts already found (dates, names, numbers) instead of references like "the date from the previous step".
- If a step failed or hit a dead end, replace it with an alternative that can work.
- Never repeat executed steps. Every step must be self-contained: the executor knows nothing about the objective or the history."""

EXECUTOR_PROMPT = """You are given a task and a set of tools. Complete the task, using the tools when they help. When your answer is ready, wrap the final response in <final>response</final>."""

BLUEPRINT_TEMPLATE = (
    "# These tools will later be available to the executor agent:\n\n{{tools}}\n\n"
    "User's task to create a strategy for:\n\n{{prompt}}"
)
PLANNER_TEMPLATE = (
    "# These tools will be available to the executor agent:\n\n{{tools}}\n\n"
    "Strategy to create a JSON plan for:\n\n{{prompt}}"
)
REPLANNER_TEMPLATE = (
    "# Tools available to the executor agent:\n\n{{tools}}\n\n"
    "# Objective\n\n{{prompt}}\n\n"
    "# Current plan\n\n{{plan}}\n\n"
    "# Executed steps\n\n{{past_steps}}"
)


def get_plan_from_response(response: Message) -> list[str]:
    """Extract the ``steps`` list from a planner reply."""
    try:
        data = json.loads(response.content or "")
    except ValueError as exc:
        raise FlowRuntimeError(f"Planner failed to return valid JSON: {exc}") from exc
    if not isinstance(data, dict) or "steps" not in data:
        raise FlowRuntimeError("JSON object is missing the required 'steps' key.")
    steps = data["steps"]
    if not isinstance(steps, list) or not all(isinstance(step, str) for step in steps):
        raise FlowRuntimeError(
            f"The 'steps' key is not a valid array of strings: {steps!r}"
        )
    return steps


def format_past_steps(past_steps: list[tuple[str, str]]) -> str:
    return "\n\n".join(f"Step: {step}\nResult: {result}" for step, result in past_steps)


def _sub_agent_builder(parent: Agent, role: str) -> AgentBuilder:
    builder = (
        AgentBuilder()
        .set_name(f"{parent.name}-{role}")
        .set_model(parent.model)
        .set_options(parent.options)
        .set_keep_alive(parent.keep_alive)
        .add_tools(parent.local_tools)
        .set_client(parent.client)
        .strip_thinking(parent.strip_thinking)
        .set_clear_history_on_invoke(True)
    )
    for provider in parent.tool_providers:
        builder.add_tool_provider(provider)
    return builder


@dataclass
class _Team:
    blueprint: Agent
    planner: Agent
    replanner: Agent
    executor: Agent

    @property
    def members(self) -> list[Agent]:
        return [self.blueprint, self.planner, self.replanner, self.executor]

    async def aclose(self) -> None:
        for member in self.members:
            await member.aclose()


def _build_team(parent: Agent) -> _Team:
    blueprint = (
        _sub_agent_builder(parent, "blueprint")
        .set_system_prompt(BLUEPRINT_PROMPT)
        .set_template(BLUEPRINT_TEMPLATE)
        .set_flow(Flow.custom(reply_without_tools_flow))
        .build()
    )
    planner = (
        _sub_agent_builder(parent, "planner")
        .set_system_prompt(PLANNER_PROMPT)
        .set_template(PLANNER_TEMPLATE)
        .set_response_format(PLAN_SCHEMA)
        .set_flow(Flow.custom(reply_without_tools_flow))
        .build()
    )
    replanner = (
        _sub_agent_builder(parent, "replanner")
        .set_system_prompt(REPLANNER_PROMPT)
        .set_template(REPLANNER_TEMPLATE)
        .set_response_format(PLAN_SCHEMA)
        .set_flow(Flow.custom(reply_without_tools_flow))
        .build()
    )
    executor = (
        _sub_agent_builder(parent, "executor")
        .set_system_prompt(EXECUTOR_PROMPT)
        .set_stopword(EXECUTOR_STOPWORD)
        .set_max_iterations(EXECUTOR_MAX_ITERATIONS)
        .strip_thinking(True)
        .set_flow(Flow.custom(simple_loop_flow))
        .build()
    )
    return _Team(blueprint, planner, replanner, executor)


def _attach_notifications(parent: Agent, team: _Team) -> Optional[asyncio.Task[None]]:
    """Merge the team's notifications into the parent's sink, if it has one."""
    if parent.notifications.sender is None:
        return None
    receivers: list[NotificationReceiver] = [
        member.new_notification_channel() for member in team.members
    ]
    return parent.notifications.forward_many(receivers)


async def plan_and_execute_flow(agent: Agent, prompt: str) -> Message:
    """
    Blueprint, plan, then execute and replan step by step for at most
    ``max_iterations`` (default 5) steps before writing the final report.

    Raises:
        FlowRuntimeError: The blueprint is empty, a plan is not valid JSON
            with a ``steps`` array of strings, or no step was executed.
    """
    max_turns = DEFAULT_MAX_TURNS if agent.max_iterations is None else agent.max_iterations
    team = _build_team(agent)
    relay = _attach_notifications(agent, team)
    past_steps: list[tuple[str, str]] = []
    failed = False

    try:
        tools = json.dumps([tool.to_dict() for tool in await agent.compile_tools()], indent=2)

        blueprint = await team.blueprint.invoke_with_template({"tools": tools, "prompt": prompt})
        if not blueprint.content:
            raise FlowRuntimeError("Blueprint was not created")

        plan = get_plan_from_response(
            await team.planner.invoke_with_template({"tools": tools, "prompt": blueprint.content})
        )
        logger.info("[%s] Initial plan has %d steps", agent.name, len(plan))

        for _ in range(max_turns):
            if not plan:
                break
            step = plan.pop(0)
            agent.history.append(Message.user(step))
            result = await team.executor.invoke(step)
            agent.history.append(result)
            past_steps.append((step, result.content or ""))

            plan = get_plan_from_response(
                await team.replanner.invoke_with_template(
                    {
                        "tools": tools,
                        "prompt": prompt,
                        "plan": json.dumps(plan, indent=2),
                        "past_steps": format_past_steps(past_steps),
                    }
                )
            )
    except FlowRuntimeError:
        failed = True
        raise
    finally:
        await team.aclose()
        if relay is not None:
            await relay
        # after the relay so Done is the last event the caller sees
        if failed:
            await agent.notifications.notify_done(False)

    if not past_steps:
        await agent.notifications.notify_done(False)
        raise FlowRuntimeError("Plan-and-Execute failed to produce a result.")

    agent.history.append(Message.user(prompt))
    response = await invoke_without_tools(agent)
    agent.history.append(response.message)
    await agent.notifications.notify_done(True, response.message.content)
    return response.message
