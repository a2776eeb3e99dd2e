"""Name-indexed collection of the tools an agent may call."""

from __future__ import annotations

from typing import Any

from workspace_exec.tools.base import Tool, ToolResult


class ToolRegistryError(RuntimeError):
    """Raised when tool registry operations fail."""


class ToolNotFoundError(ToolRegistryError):
    """Raised when a tool name is not registered."""


class ToolRegistrationError(ToolRegistryError):
    """Raised when a tool name is already taken."""


class ToolRegistry:
    """Holds tools by name.

    Script tools are re-registered whenever the scripts directory is scanned
    again, so the registry supports removing a whole name prefix at once.
    """

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def register(self, tool: Tool, *, replace: bool = False) -> None:
        """Add ``tool`` under its name.

        Raises:
            ToolRegistrationError: If the name is taken and ``replace`` is false.
        """

        if tool.name in self._tools and not replace:
            raise ToolRegistrationError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> Tool:
        try:
            return self._tools.pop(name)
        except KeyError as exc:
            raise ToolNotFoundError(f"Tool '{name}' is not registered") from exc

    def unregister_prefix(self, prefix: str) -> list[str]:
        """Remove every tool whose name starts with ``prefix``; return their names."""

        removed = sorted(name for name in self._tools if name.startswith(prefix))
        for name in removed:
            del self._tools[name]
        return removed

    def get(self, name: str) -> Tool:
        try:
            return self._tools[name]
        except KeyError as exc:
            raise ToolNotFoundError(f"Tool '{name}' is not registered") from exc

    def names(self) -> list[str]:
        return sorted(self._tools)

    def describe(self) -> list[dict[str, Any]]:
        """Return name, description and schema of every tool, sorted by name."""

        return [self._tools[name].describe() for name in self.names()]

    def execute(self, name: str, arguments: dict[str, Any]) -> ToolResult:
        return self.get(name).execute(dict(arguments))
