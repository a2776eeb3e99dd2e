"""Workspace script discovery and execution."""

from workspace_exec.scripts.discovery import (
    LEGACY_SCRIPTS_DIR,
    SCRIPTS_DIR,
    WorkspaceScript,
    list_scripts,
    parse_script_description,
)
from workspace_exec.scripts.runner import (
    RunScriptOptions,
    ScriptErrorKind,
    ScriptExecutionResult,
    ScriptFailure,
    ScriptRunResult,
    arun_script,
    build_script_command,
    run_script,
)

__all__ = [
    "LEGACY_SCRIPTS_DIR",
    "RunScriptOptions",
    "SCRIPTS_DIR",
    "ScriptErrorKind",
    "ScriptExecutionResult",
    "ScriptFailure",
    "ScriptRunResult",
    "WorkspaceScript",
    "arun_script",
    "build_script_command",
    "list_scripts",
    "parse_script_description",
    "run_script",
]
