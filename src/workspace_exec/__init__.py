"""Workspace script execution over local and remote runtimes."""

from workspace_exec.runtime import LocalRuntime, Runtime, SSHRuntime
from workspace_exec.scripts import (
    RunScriptOptions,
    ScriptErrorKind,
    ScriptExecutionResult,
    ScriptRunResult,
    arun_script,
    list_scripts,
    run_script,
)
from workspace_exec.util.circular_buffer import CircularBuffer

__all__ = [
    "CircularBuffer",
    "LocalRuntime",
    "RunScriptOptions",
    "Runtime",
    "SSHRuntime",
    "ScriptErrorKind",
    "ScriptExecutionResult",
    "ScriptRunResult",
    "arun_script",
    "list_scripts",
    "run_script",
]

__version__ = "0.1.0"
