"""
Agents: a model, a conversation history, tools and a flow.

Build them with `AgentBuilder` (or start from one of the `prebuilds`), then
``await agent.invoke("...")``.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field, replace
from typing import (
    Any,
    Iterable,
    Mapping,
    Optional,
    Protocol,
    Type,
    TypeVar,
    Union,
    runtime_checkable,
)

from pydantic import BaseModel, ValidationError

from agent_bridge._exceptions import (
    AgentBuildError,
    FlowRuntimeError,
    InferenceClientError,
    StructuredOutputError,
    ToolExecutionError,
    UnsupportedError,
)
from agent_bridge.client import InferenceClient
from agent_bridge.flows import Flow, FlowFn
from agent_bridge.notifications.channel import (
    DEFAULT_CHANNEL_SIZE,
    NotificationReceiver,
    channel,
)
from agent_bridge.notifications.hub import NotificationHub
from agent_bridge.provider import ClientConfig, Provider
from agent_bridge.templates import Template
from agent_bridge.types.chat import DEFAULT_KEEP_ALIVE, InferenceOptions, SchemaSpec
from agent_bridge.types.message import Message
from agent_bridge.types.tool import Tool, ToolBuilder

__all__ = [
    "DEFAULT_SYSTEM_PROMPT",
    "ToolProvider",
    "ModelConfig",
    "PromptConfig",
    "Agent",
    "AgentBuilder",
    "SharedAgent",
]

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful agent."

M = TypeVar("M", bound=BaseModel)

# background closes of clients discarded by a failed build
_pending_closes: set[asyncio.Task[None]] = set()


def _discard_client(client: InferenceClient) -> None:
    """Close a client built for an agent that will never exist."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        asyncio.run(client.aclose())
        return
    task = loop.create_task(client.aclose())
    _pending_closes.add(task)
    task.add_done_callback(_pending_closes.discard)


@runtime_checkable
class ToolProvider(Protocol):
    """A source of ready-made tools, e.g. a connection to an external tool server."""

    async def list_tools(self) -> list[Tool]: ...


@dataclass
class ModelConfig:
    """Exported model selection and sampling options."""

    model: Optional[str] = None
    options: InferenceOptions = field(default_factory=InferenceOptions)


@dataclass
class PromptConfig:
    """Exported prompt-side configuration of an agent."""

    system_prompt: Optional[str] = None
    template: Optional[Template] = None
    tools: list[Tool] = field(default_factory=list)
    tool_providers: list[ToolProvider] = field(default_factory=list)
    response_format: Optional[SchemaSpec] = None
    stop_prompt: Optional[str] = None
    stopword: Optional[str] = None
    strip_thinking: Optional[bool] = None
    max_iterations: Optional[int] = None
    clear_history_on_invoke: Optional[bool] = None
    stream: bool = False


class Agent:
    """
    A conversational agent.

    The history always starts with the system prompt. `invoke` runs the
    agent's flow, which appends the exchange to the history and reports
    progress through ``notifications``.
    """

    def __init__(
        self,
        *,
        name: str,
        model: str,
        client: InferenceClient,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        local_tools: Optional[Iterable[Tool]] = None,
        tool_providers: Optional[Iterable[ToolProvider]] = None,
        schema: Optional[SchemaSpec] = None,
        response_format: Any = None,
        stop_prompt: Optional[str] = None,
        stopword: Optional[str] = None,
        strip_thinking: bool = True,
        options: Optional[InferenceOptions] = None,
        keep_alive: Optional[str] = DEFAULT_KEEP_ALIVE,
        stream: bool = False,
        template: Optional[Template] = None,
        max_iterations: Optional[int] = None,
        clear_history_on_invoke: bool = False,
        state: Optional[dict[str, Any]] = None,
        flow: Optional[Flow] = None,
        notifications: Optional[NotificationHub] = None,
        owns_client: bool = True,
    ) -> None:
        self.name = name
        self.model = model
        self.client = client
        self.system_prompt = system_prompt
        self.history: list[Message] = [Message.system(system_prompt)]
        self.local_tools: list[Tool] = list(local_tools or [])
        self.tool_providers: list[ToolProvider] = list(tool_providers or [])
        self.tools: Optional[list[Tool]] = None
        self.schema = schema
        self.response_format = response_format
        self.stop_prompt = stop_prompt
        self.stopword = stopword
        self.strip_thinking = strip_thinking
        self.options = options or InferenceOptions()
        self.keep_alive = keep_alive
        self.stream = stream
        self.template = template
        self.max_iterations = max_iterations
        self.clear_history_on_invoke = clear_history_on_invoke
        self.state: dict[str, Any] = state if state is not None else {}
        self.flow = flow or Flow.default()
        self.notifications = notifications or NotificationHub(name)
        self._owns_client = owns_client

    def _log(self, message: str, level: int = logging.INFO) -> None:
        logger.log(level, f"[{self.name}] {message}")

    # --- invocation -----------------------------------------------------------
    async def invoke(self, prompt: str) -> Message:
        """Run the agent's flow on *prompt* and return the final message."""
        if self.clear_history_on_invoke:
            self.clear_history()
        self._log(f"Invoking flow '{self.flow.name}'", logging.DEBUG)
        return await self.flow.run(self, prompt)

    async def invoke_structured(
        self, prompt: str, output_type: Union[Type[M], Type[dict]] = dict
    ) -> Union[M, dict[str, Any]]:
        """
        Invoke and parse the reply as JSON.

        ``output_type`` is a pydantic model class or ``dict``.

        Raises:
            StructuredOutputError: The reply is not valid for *output_type*.
        """
        message = await self.invoke(prompt)
        return _parse_structured(message.content or "", output_type)

    async def invoke_with_template(self, data: Optional[Mapping[str, Any]] = None) -> Message:
        """Compile the agent's template with *data* and invoke with the result."""
        if self.template is None:
            raise FlowRuntimeError(f"Agent '{self.name}' has no template")
        return await self.invoke(await self.template.compile(data))

    async def invoke_with_template_structured(
        self,
        data: Optional[Mapping[str, Any]] = None,
        output_type: Union[Type[M], Type[dict]] = dict,
    ) -> Union[M, dict[str, Any]]:
        message = await self.invoke_with_template(data)
        return _parse_structured(message.content or "", output_type)

    # --- state ----------------------------------------------------------------
    def clear_history(self) -> None:
        """Reset the history to the system prompt alone."""
        self.history = [Message.system(self.system_prompt)]

    def new_notification_channel(
        self, maxsize: int = DEFAULT_CHANNEL_SIZE
    ) -> NotificationReceiver:
        """Attach a fresh channel as the notification sink; the previous one is closed."""
        sender, receiver = channel(maxsize)
        self.notifications.set_sender(sender)
        return receiver

    async def compile_tools(self, *, refresh: bool = False) -> list[Tool]:
        """Local tools plus every provider's tools, cached after the first call."""
        if self.tools is None or refresh:
            tools = list(self.local_tools)
            for provider in self.tool_providers:
                tools.extend(await provider.list_tools())
            self.tools = tools
        return self.tools

    async def get_tool(self, name: str) -> Optional[Tool]:
        for tool in await self.compile_tools():
            if tool.name == name:
                return tool
        return None

    # --- config export --------------------------------------------------------
    def export_model_config(self) -> ModelConfig:
        return ModelConfig(model=self.model, options=replace(self.options))

    def export_client_config(self) -> ClientConfig:
        return self.client.config.copy()

    def export_prompt_config(self) -> PromptConfig:
        return PromptConfig(
            system_prompt=self.system_prompt,
            template=self.template,
            tools=list(self.local_tools),
            tool_providers=list(self.tool_providers),
            response_format=self.schema,
            stop_prompt=self.stop_prompt,
            stopword=self.stopword,
            strip_thinking=self.strip_thinking,
            max_iterations=self.max_iterations,
            clear_history_on_invoke=self.clear_history_on_invoke,
            stream=self.stream,
        )

    async def aclose(self) -> None:
        """Stop forwarders, close the notification sender and, if owned, the client."""
        await self.notifications.aclose()
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "Agent":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        return f"Agent(name={self.name!r}, model={self.model!r}, flow={self.flow.name!r})"


def _parse_structured(text: str, output_type: Any) -> Any:
    if isinstance(output_type, type) and issubclass(output_type, BaseModel):
        try:
            return output_type.model_validate_json(text)
        except ValidationError as exc:
            raise StructuredOutputError(
                f"Reply does not match {output_type.__name__}: {exc}", raw=text
            ) from exc
    try:
        value = json.loads(text)
    except ValueError as exc:
        raise StructuredOutputError(f"Reply is not valid JSON: {exc}", raw=text) from exc
    if output_type is dict and not isinstance(value, dict):
        raise StructuredOutputError("Reply is not a JSON object", raw=text)
    return value


class AgentBuilder:
    """
    Fluent builder for `Agent`.

    Example
    -------
    >>> agent = (
    ...     AgentBuilder()
    ...     .set_model("qwen3:0.6b")
    ...     .set_system_prompt("You are terse.")
    ...     .add_tool(weather_tool)
    ...     .build()
    ... )
    """

    def __init__(self) -> None:
        self._name: Optional[str] = None
        self._model: Optional[str] = None
        self._system_prompt: str = DEFAULT_SYSTEM_PROMPT
        self._stop_prompt: Optional[str] = None
        self._stopword: Optional[str] = None
        self._strip_thinking: bool = True
        self._options = InferenceOptions()
        self._keep_alive: Optional[str] = DEFAULT_KEEP_ALIVE
        self._stream: bool = False
        self._template: Optional[Template] = None
        self._max_iterations: Optional[int] = None
        self._clear_history_on_invoke: bool = False
        self._state: dict[str, Any] = {}
        self._flow: Optional[Flow] = None
        self._tools: list[Tool] = []
        self._tool_providers: list[ToolProvider] = []
        self._schema: Optional[SchemaSpec] = None
        self._schema_raw: Optional[str] = None
        self._schema_name: Optional[str] = None
        self._schema_strict: Optional[bool] = None
        self._client_config = ClientConfig()
        self._client: Optional[InferenceClient] = None
        self._provider_kwargs: dict[str, Any] = {}

    # --- identity and prompts -------------------------------------------------
    def set_name(self, name: str) -> "AgentBuilder":
        self._name = name
        return self

    def set_model(self, model: str) -> "AgentBuilder":
        self._model = model
        return self

    def set_system_prompt(self, prompt: str) -> "AgentBuilder":
        self._system_prompt = prompt
        return self

    def set_stop_prompt(self, prompt: str) -> "AgentBuilder":
        self._stop_prompt = prompt
        return self

    def set_stopword(self, stopword: str) -> "AgentBuilder":
        self._stopword = stopword
        return self

    def strip_thinking(self, value: bool = True) -> "AgentBuilder":
        self._strip_thinking = value
        return self

    def set_template(self, template: Union[Template, str]) -> "AgentBuilder":
        self._template = Template.simple(template) if isinstance(template, str) else template
        return self

    # --- sampling -------------------------------------------------------------
    def set_options(self, options: InferenceOptions) -> "AgentBuilder":
        self._options = replace(options)
        return self

    def _option(self, name: str, value: Any) -> "AgentBuilder":
        setattr(self._options, name, value)
        return self

    def set_temperature(self, value: float) -> "AgentBuilder":
        return self._option("temperature", value)

    def set_top_p(self, value: float) -> "AgentBuilder":
        return self._option("top_p", value)

    def set_top_k(self, value: int) -> "AgentBuilder":
        return self._option("top_k", value)

    def set_min_p(self, value: float) -> "AgentBuilder":
        return self._option("min_p", value)

    def set_presence_penalty(self, value: float) -> "AgentBuilder":
        return self._option("presence_penalty", value)

    def set_frequency_penalty(self, value: float) -> "AgentBuilder":
        return self._option("frequency_penalty", value)

    def set_num_ctx(self, value: int) -> "AgentBuilder":
        return self._option("num_ctx", value)

    def set_repeat_penalty(self, value: float) -> "AgentBuilder":
        return self._option("repeat_penalty", value)

    def set_repeat_last_n(self, value: int) -> "AgentBuilder":
        return self._option("repeat_last_n", value)

    def set_seed(self, value: int) -> "AgentBuilder":
        return self._option("seed", value)

    def set_stop(self, value: str) -> "AgentBuilder":
        return self._option("stop", value)

    def set_num_predict(self, value: int) -> "AgentBuilder":
        return self._option("num_predict", value)

    def set_max_tokens(self, value: int) -> "AgentBuilder":
        return self._option("max_tokens", value)

    def set_keep_alive(self, value: Optional[str]) -> "AgentBuilder":
        self._keep_alive = value
        return self

    def set_stream(self, value: bool = True) -> "AgentBuilder":
        self._stream = value
        return self

    # --- behaviour ------------------------------------------------------------
    def set_max_iterations(self, value: int) -> "AgentBuilder":
        self._max_iterations = value
        return self

    def set_clear_history_on_invoke(self, value: bool = True) -> "AgentBuilder":
        self._clear_history_on_invoke = value
        return self

    def set_state(self, state: Mapping[str, Any]) -> "AgentBuilder":
        self._state = dict(state)
        return self

    def set_flow(self, flow: Union[Flow, FlowFn]) -> "AgentBuilder":
        self._flow = flow if isinstance(flow, Flow) else Flow.custom(flow)
        return self

    # --- tools ----------------------------------------------------------------
    def add_tool(self, tool: Tool) -> "AgentBuilder":
        self._tools.append(tool)
        return self

    def add_tools(self, tools: Iterable[Tool]) -> "AgentBuilder":
        self._tools.extend(tools)
        return self

    def add_tool_provider(self, provider: ToolProvider) -> "AgentBuilder":
        self._tool_providers.append(provider)
        return self

    # --- structured output ----------------------------------------------------
    def set_response_format(
        self, schema: Union[str, dict[str, Any], SchemaSpec, Type[BaseModel]]
    ) -> "AgentBuilder":
        """
        Request structured output.

        A string is kept raw and parsed at build time; a dict, a `SchemaSpec`
        or a pydantic model class is used as given.
        """
        if isinstance(schema, str):
            self._schema_raw = schema
        elif isinstance(schema, SchemaSpec):
            self._schema = schema
        elif isinstance(schema, type) and issubclass(schema, BaseModel):
            self._schema = SchemaSpec.from_model(schema)
        else:
            self._schema = SchemaSpec.from_value(schema)
        return self

    def set_schema_name(self, name: str) -> "AgentBuilder":
        self._schema_name = name
        return self

    def set_schema_strict(self, strict: bool = True) -> "AgentBuilder":
        self._schema_strict = strict
        return self

    # --- client ---------------------------------------------------------------
    def set_client_config(self, config: ClientConfig) -> "AgentBuilder":
        self._client_config = config.copy()
        return self

    def set_provider(self, provider: Union[Provider, str]) -> "AgentBuilder":
        self._client_config = replace(self._client_config, provider=provider)
        return self

    def set_base_url(self, base_url: str) -> "AgentBuilder":
        self._client_config.base_url = base_url
        return self

    def set_api_key(self, api_key: str) -> "AgentBuilder":
        self._client_config.api_key = api_key
        return self

    def set_client(self, client: InferenceClient) -> "AgentBuilder":
        """Use an existing client; the built agent will not close it."""
        self._client = client
        return self

    def set_provider_kwargs(self, **kwargs: Any) -> "AgentBuilder":
        """Extra arguments for the provider client (``transport``, ``max_retries``)."""
        self._provider_kwargs.update(kwargs)
        return self

    # --- config import --------------------------------------------------------
    def import_model_config(self, config: ModelConfig) -> "AgentBuilder":
        if config.model is not None:
            self._model = config.model
        self._options = self._options.merged(config.options)
        return self

    def import_client_config(self, config: ClientConfig) -> "AgentBuilder":
        return self.set_client_config(config)

    def import_prompt_config(self, config: PromptConfig) -> "AgentBuilder":
        if config.system_prompt is not None:
            self._system_prompt = config.system_prompt
        if config.template is not None:
            self._template = config.template
        self._tools.extend(config.tools)
        self._tool_providers.extend(config.tool_providers)
        if config.response_format is not None:
            self._schema = config.response_format
        if config.stop_prompt is not None:
            self._stop_prompt = config.stop_prompt
        if config.stopword is not None:
            self._stopword = config.stopword
        if config.strip_thinking is not None:
            self._strip_thinking = config.strip_thinking
        if config.max_iterations is not None:
            self._max_iterations = config.max_iterations
        if config.clear_history_on_invoke is not None:
            self._clear_history_on_invoke = config.clear_history_on_invoke
        self._stream = config.stream
        return self

    # --- build ----------------------------------------------------------------
    def _resolve_schema(self) -> Optional[SchemaSpec]:
        if self._schema_raw is not None and self._schema is not None:
            raise AgentBuildError(
                "Response format set twice: both a raw schema string and a typed schema were given"
            )
        spec = self._schema
        if self._schema_raw is not None:
            try:
                spec = SchemaSpec.from_str(self._schema_raw)
            except ValueError as exc:
                raise AgentBuildError(f"Failed to parse JSON schema: {exc}") from exc
        if spec is None:
            return None
        if self._schema_name is not None:
            spec = spec.with_name(self._schema_name)
        if self._schema_strict is not None:
            spec = spec.with_strict(self._schema_strict)
        return spec

    def _resolve_client(self) -> tuple[InferenceClient, bool]:
        if self._client is not None:
            return self._client, False
        try:
            return InferenceClient(self._client_config.copy(), **self._provider_kwargs), True
        except InferenceClientError as exc:
            raise AgentBuildError(f"Failed to create inference client: {exc}") from exc

    def build(self) -> Agent:
        """
        Build the agent.

        Raises:
            AgentBuildError: No model, an unparseable or doubly-set schema, a
                provider that cannot be constructed, or one without
                structured-output support.
        """
        if not self._model:
            raise AgentBuildError("Model is not set")
        schema = self._resolve_schema()
        client, owns_client = self._resolve_client()

        response_format = None
        if schema is not None:
            try:
                response_format = client.format_schema(schema)
            except UnsupportedError as exc:
                if owns_client:
                    _discard_client(client)
                raise AgentBuildError(
                    f"{client.provider} does not support structured output: {exc}"
                ) from exc

        name = self._name or f"Agent-{self._model}"
        return Agent(
            name=name,
            model=self._model,
            client=client,
            system_prompt=self._system_prompt,
            local_tools=self._tools,
            tool_providers=self._tool_providers,
            schema=schema,
            response_format=response_format,
            stop_prompt=self._stop_prompt,
            stopword=self._stopword,
            strip_thinking=self._strip_thinking,
            options=replace(self._options),
            keep_alive=self._keep_alive,
            stream=self._stream,
            template=self._template,
            max_iterations=self._max_iterations,
            clear_history_on_invoke=self._clear_history_on_invoke,
            state=dict(self._state),
            flow=self._flow,
            notifications=NotificationHub(name),
            owns_client=owns_client,
        )

    def build_with_notification(
        self, maxsize: int = DEFAULT_CHANNEL_SIZE
    ) -> tuple[Agent, NotificationReceiver]:
        """Build the agent with a notification channel already attached."""
        agent = self.build()
        return agent, agent.new_notification_channel(maxsize)


_TOOL_NAME_RE = re.compile(r"[^a-zA-Z0-9_-]")


class SharedAgent:
    """
    An agent shared between tasks. Invocations are serialized by a lock, so
    concurrent callers never interleave on the history.
    """

    def __init__(self, agent: Agent) -> None:
        self._agent = agent
        self._lock = asyncio.Lock()

    @property
    def agent(self) -> Agent:
        return self._agent

    @property
    def name(self) -> str:
        return self._agent.name

    async def invoke(self, prompt: str) -> Message:
        async with self._lock:
            return await self._agent.invoke(prompt)

    async def invoke_structured(
        self, prompt: str, output_type: Union[Type[M], Type[dict]] = dict
    ) -> Union[M, dict[str, Any]]:
        async with self._lock:
            return await self._agent.invoke_structured(prompt, output_type)

    def as_tool(
        self,
        name: Optional[str] = None,
        description: Optional[str] = None,
        argument: str = "prompt",
    ) -> Tool:
        """Wrap the agent as a tool taking one string argument and returning its reply."""

        async def run_agent(arguments: Any) -> str:
            prompt = arguments.get(argument) if isinstance(arguments, dict) else arguments
            if not isinstance(prompt, str) or not prompt:
                raise ToolExecutionError.argument_parsing(
                    f"Expected a non-empty '{argument}' string argument"
                )
            message = await self.invoke(prompt)
            return message.content or ""

        return (
            ToolBuilder()
            .function_name(name or _TOOL_NAME_RE.sub("_", self._agent.name))
            .function_description(description or f"Ask the {self._agent.name} agent.")
            .add_required_property(argument, "string", "The request for the agent")
            .executor(run_agent)
            .build()
        )
