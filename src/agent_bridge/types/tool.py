"""Tool definitions the model can call, and a fluent builder for them."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from agent_bridge._exceptions import ToolExecutionError

__all__ = [
    "AsyncToolFn",
    "Property",
    "FunctionParameters",
    "Tool",
    "ToolBuilder",
]

# Executor signature: JSON arguments in, text out. May raise ToolExecutionError.
AsyncToolFn = Callable[[Any], Awaitable[str]]


@dataclass(slots=True)
class Property:
    type: str
    description: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "description": self.description}


@dataclass(slots=True)
class FunctionParameters:
    type: str = "object"
    properties: dict[str, Property] = field(default_factory=dict)
    required: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "properties": {k: v.to_dict() for k, v in self.properties.items()},
            "required": list(self.required),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FunctionParameters":
        properties = {
            name: Property(
                type=str(spec.get("type", "string")),
                description=str(spec.get("description", "")),
            )
            for name, spec in (data.get("properties") or {}).items()
        }
        return cls(
            type=data.get("type", "object"),
            properties=properties,
            required=list(data.get("required") or []),
        )


@dataclass(eq=False)
class Tool:
    """A named capability with a declared schema and an async executor.

    Tools are shared values: the same instance may be registered on several
    agents at once.
    """

    name: str
    description: str
    parameters: FunctionParameters
    executor: AsyncToolFn = field(repr=False)

    async def execute(self, arguments: Any) -> str:
        return await self.executor(arguments)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters.to_dict(),
            },
        }


class ToolBuilder:
    """Fluent builder for `Tool`.

    Example
    -------
    >>> tool = (
    ...     ToolBuilder()
    ...     .function_name("get_current_weather")
    ...     .function_description("Returns a weather forecast for a given location")
    ...     .add_required_property("location", "string", "City name")
    ...     .executor(weather)
    ...     .build()
    ... )
    """

    def __init__(self) -> None:
        self._name: Optional[str] = None
        self._description: str = ""
        self._properties: dict[str, Property] = {}
        self._required: list[str] = []
        self._executor: Optional[AsyncToolFn] = None

    def function_name(self, name: str) -> "ToolBuilder":
        self._name = name
        return self

    def function_description(self, description: str) -> "ToolBuilder":
        self._description = description
        return self

    def add_property(self, name: str, type_: str, description: str) -> "ToolBuilder":
        self._properties[name] = Property(type=type_, description=description)
        return self

    def add_required_property(
        self, name: str, type_: Optional[str] = None, description: Optional[str] = None
    ) -> "ToolBuilder":
        """Mark *name* required, declaring it at the same time when a type is given."""
        if type_ is not None:
            self.add_property(name, type_, description or "")
        if name not in self._required:
            self._required.append(name)
        return self

    def executor(self, fn: AsyncToolFn) -> "ToolBuilder":
        self._executor = fn
        return self

    def build(self) -> Tool:
        if not self._name:
            raise ToolExecutionError.argument_parsing("Tool name is required")
        if self._executor is None:
            raise ToolExecutionError.argument_parsing(
                f"Tool '{self._name}' has no executor"
            )
        return Tool(
            name=self._name,
            description=self._description,
            parameters=FunctionParameters(
                properties=dict(self._properties),
                required=list(self._required),
            ),
            executor=self._executor,
        )
