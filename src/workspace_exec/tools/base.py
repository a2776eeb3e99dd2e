"""Tool interface through which an agent invokes workspace scripts."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


class ToolExecutionError(RuntimeError):
    """Raised when a tool is called with arguments it cannot accept."""


@dataclass(frozen=True)
class ToolResult:
    """What a tool hands back to the agent.

    Attributes:
        name: Name of the tool that ran.
        success: Whether the underlying command finished cleanly.
        output: Text shown to the agent, or None when nothing was executed.
        error: Failure description, if any.
        exit_code: Exit code of the underlying command when one ran.
    """

    name: str
    success: bool
    output: str | None = None
    error: str | None = None
    exit_code: int | None = None


class Tool(ABC):
    """A named, self-describing action an agent can call."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the unique tool name."""

    @property
    @abstractmethod
    def description(self) -> str:
        """Return the one-line description shown to the agent."""

    @property
    @abstractmethod
    def input_schema(self) -> dict[str, Any]:
        """Return a JSON schema for the accepted arguments."""

    @abstractmethod
    def execute(self, arguments: dict[str, Any]) -> ToolResult:
        """Run the tool.

        Raises:
            ToolExecutionError: If ``arguments`` do not match the schema.
        """

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


def string_list_argument(arguments: dict[str, Any], key: str) -> list[str]:
    """Return ``arguments[key]`` as a list of strings; missing or null means empty."""

    value = arguments.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ToolExecutionError(f"'{key}' must be a list of strings")
    return list(value)
