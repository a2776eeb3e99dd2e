"""Expose executable workspace scripts as agent tools."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from workspace_exec.execution.base import OutputLimits
from workspace_exec.runtime.base import Runtime, RuntimeExecError
from workspace_exec.scripts.discovery import WorkspaceScript, list_scripts
from workspace_exec.scripts.runner import RunScriptOptions, run_script
from workspace_exec.tools.base import Tool, ToolResult, string_list_argument
from workspace_exec.tools.registry import ToolRegistry
from workspace_exec.util.logging import get_logger, redact_secrets

NO_STDOUT = "(no stdout)"
SCRIPT_TOOL_PREFIX = "script_"

_LOGGER = get_logger("workspace_exec.tools.scripts")


def script_tool_name(script_name: str) -> str:
    """Return the tool name for a script, e.g. ``deploy-prod`` -> ``script_deploy_prod``."""

    return SCRIPT_TOOL_PREFIX + re.sub(r"[^A-Za-z0-9_]", "_", script_name)


@dataclass
class ScriptTool(Tool):
    """Tool that runs one workspace script with spilled-log overflow handling."""

    script: WorkspaceScript
    runtime: Runtime
    workspace_root: str
    persistent_temp_dir: str | None = None
    timeout_s: float = 300.0
    env: dict[str, str] = field(default_factory=dict)
    secrets: dict[str, str] = field(default_factory=dict)
    limits: OutputLimits | None = None

    @property
    def name(self) -> str:
        return script_tool_name(self.script.name)

    @property
    def description(self) -> str:
        return self.script.description or f"Run the workspace script '{self.script.name}'."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "args": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Positional arguments passed to the script.",
                }
            },
            "additionalProperties": False,
        }

    def execute(self, arguments: dict[str, Any]) -> ToolResult:
        args = string_list_argument(arguments, "args")

        outcome = run_script(
            self.runtime,
            self.workspace_root,
            self.script.name,
            args,
            RunScriptOptions(
                env=dict(self.env),
                secrets=dict(self.secrets),
                timeout_s=self.timeout_s,
                overflow_policy="tmpfile",
                persistent_temp_dir=self.persistent_temp_dir,
                limits=self.limits,
            ),
        )
        if not outcome.success or outcome.data is None:
            message = str(outcome.error) if outcome.error else "Script execution failed"
            return ToolResult(name=self.name, success=False, error=message)

        data = outcome.data
        text = data.stdout or NO_STDOUT
        if data.exit_code != 0 or data.stderr:
            text = f"{text}\n\nError: {data.stderr}\n(Exit Code: {data.exit_code})"
        secrets = self.secrets.values()
        return ToolResult(
            name=self.name,
            success=data.raw_result.success,
            output=redact_secrets(text, secrets),
            error=redact_secrets(data.stderr, secrets) or None,
            exit_code=data.exit_code,
        )


def register_script_tools(
    registry: ToolRegistry,
    runtime: Runtime,
    workspace_root: str,
    *,
    persistent_temp_dir: str | None = None,
    timeout_s: float = 300.0,
    env: dict[str, str] | None = None,
    secrets: dict[str, str] | None = None,
    limits: OutputLimits | None = None,
    refresh: bool = False,
) -> list[str]:
    """Register a tool for every executable script in the workspace.

    With ``refresh`` the previously registered script tools are replaced, so
    scripts deleted since the last scan disappear from the registry. Discovery
    failures are logged and leave the registry untouched.

    Returns:
        Names of the registered tools.
    """

    try:
        scripts = list_scripts(runtime, workspace_root)
    except (OSError, RuntimeExecError) as exc:
        _LOGGER.error("Failed to discover workspace scripts in %s: %s", workspace_root, exc)
        return []

    if refresh:
        removed = registry.unregister_prefix(SCRIPT_TOOL_PREFIX)
        _LOGGER.debug("Dropped %d script tools before re-registering", len(removed))

    registered: list[str] = []
    for script in scripts:
        if not script.is_executable:
            _LOGGER.debug("Skipping non-executable script %s", script.name)
            continue
        tool = ScriptTool(
            script=script,
            runtime=runtime,
            workspace_root=workspace_root,
            persistent_temp_dir=persistent_temp_dir,
            timeout_s=timeout_s,
            env=dict(env or {}),
            secrets=dict(secrets or {}),
            limits=limits,
        )
        registry.register(tool, replace=refresh)
        registered.append(tool.name)
    return registered
