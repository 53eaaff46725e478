"""Minimal ``{{placeholder}}`` prompt templates."""
from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol, runtime_checkable

__all__ = ["Template", "TemplateDataSource"]


@runtime_checkable
class TemplateDataSource(Protocol):
    """Supplies default values on every compile (the current time, a user profile, ...)."""

    async def get_values(self) -> Mapping[str, Any]: ...


class Template:
    """
    Text with ``{{key}}`` placeholders.

    Values passed to `compile` win over those from the data source; unknown
    placeholders are left in place.
    """

    def __init__(self, content: str, data_source: Optional[TemplateDataSource] = None) -> None:
        self.content = content
        self.data_source = data_source

    @classmethod
    def simple(cls, content: str) -> "Template":
        return cls(content)

    async def compile(self, data: Optional[Mapping[str, Any]] = None) -> str:
        values: dict[str, Any] = {}
        if self.data_source is not None:
            values.update(await self.data_source.get_values())
        if data:
            values.update(data)

        filled = self.content
        for key, value in values.items():
            filled = filled.replace(f"{{{{{key}}}}}", str(value))
        return filled

    def __repr__(self) -> str:
        return f"Template({self.content!r})"
