"""
Preconfigured `AgentBuilder`s for the common flows.

`StatefulPrebuild` agents keep their conversation across invocations;
`StatelessPrebuild` agents reset to the system prompt on every invoke.
Each method returns a builder, so the model and anything else can still be
set before ``build()``:

>>> agent = StatelessPrebuild.simple_loop().set_model("qwen3:0.6b").build()
"""
from __future__ import annotations

from agent_bridge.agent import AgentBuilder
from agent_bridge.flows import (
    FlowFn,
    call_tools_and_reply_flow,
    call_tools_flow,
    reply_flow,
    reply_without_tools_flow,
    simple_loop_flow,
)
from agent_bridge.plan_and_execute import REPORTER_PROMPT, plan_and_execute_flow

__all__ = ["StatefulPrebuild", "StatelessPrebuild"]


def _prebuild(prefix: str, name: str, flow: FlowFn, stateless: bool) -> AgentBuilder:
    return (
        AgentBuilder()
        .set_name(f"{prefix}-{name}")
        .set_flow(flow)
        .set_clear_history_on_invoke(stateless)
    )


class StatefulPrebuild:
    @staticmethod
    def reply() -> AgentBuilder:
        return _prebuild("Stateful", "reply", reply_flow, False)

    @staticmethod
    def reply_without_tools() -> AgentBuilder:
        return _prebuild("Stateful", "reply_without_tools", reply_without_tools_flow, False)

    @staticmethod
    def call_tools() -> AgentBuilder:
        return _prebuild("Stateful", "call_tools", call_tools_flow, False)

    @staticmethod
    def call_tools_and_reply() -> AgentBuilder:
        return _prebuild("Stateful", "call_tools_and_reply", call_tools_and_reply_flow, False)

    @staticmethod
    def simple_loop() -> AgentBuilder:
        return _prebuild("Stateful", "simple_loop", simple_loop_flow, False)

    @staticmethod
    def plan_and_execute() -> AgentBuilder:
        """Reporter agent driving the plan-and-execute team; answers at temperature 0."""
        return (
            _prebuild("Stateful", "plan_and_execute", plan_and_execute_flow, False)
            .set_system_prompt(REPORTER_PROMPT)
            .set_temperature(0.0)
        )


class StatelessPrebuild:
    @staticmethod
    def reply() -> AgentBuilder:
        return _prebuild("Stateless", "reply", reply_flow, True)

    @staticmethod
    def reply_without_tools() -> AgentBuilder:
        return _prebuild("Stateless", "reply_without_tools", reply_without_tools_flow, True)

    @staticmethod
    def call_tools() -> AgentBuilder:
        return _prebuild("Stateless", "call_tools", call_tools_flow, True)

    @staticmethod
    def call_tools_and_reply() -> AgentBuilder:
        return _prebuild("Stateless", "call_tools_and_reply", call_tools_and_reply_flow, True)

    @staticmethod
    def simple_loop() -> AgentBuilder:
        return _prebuild("Stateless", "simple_loop", simple_loop_flow, True)

    @staticmethod
    def plan_and_execute() -> AgentBuilder:
        return (
            _prebuild("Stateless", "plan_and_execute", plan_and_execute_flow, True)
            .set_system_prompt(REPORTER_PROMPT)
            .set_temperature(0.0)
        )
