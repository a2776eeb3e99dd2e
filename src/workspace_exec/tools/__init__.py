"""Agent tools backed by workspace scripts."""

from workspace_exec.tools.base import Tool, ToolExecutionError, ToolResult, string_list_argument
from workspace_exec.tools.registry import (
    ToolNotFoundError,
    ToolRegistrationError,
    ToolRegistry,
    ToolRegistryError,
)
from workspace_exec.tools.scripts import (
    NO_STDOUT,
    SCRIPT_TOOL_PREFIX,
    ScriptTool,
    register_script_tools,
    script_tool_name,
)

__all__ = [
    "NO_STDOUT",
    "SCRIPT_TOOL_PREFIX",
    "ScriptTool",
    "Tool",
    "ToolExecutionError",
    "ToolNotFoundError",
    "ToolRegistrationError",
    "ToolRegistry",
    "ToolRegistryError",
    "ToolResult",
    "register_script_tools",
    "script_tool_name",
    "string_list_argument",
]
