"""Runtime backends: where workspace commands run and files live."""

from workspace_exec.runtime.background import (
    BackgroundHandle,
    LocalBackgroundHandle,
    SSHBackgroundHandle,
)
from workspace_exec.runtime.base import (
    ExecResult,
    FileStat,
    Runtime,
    RuntimeExecError,
    SpawnOptions,
    shell_quote,
)
from workspace_exec.runtime.local import LocalRuntime
from workspace_exec.runtime.ssh import SSHRuntime

__all__ = [
    "BackgroundHandle",
    "ExecResult",
    "FileStat",
    "LocalBackgroundHandle",
    "LocalRuntime",
    "Runtime",
    "RuntimeExecError",
    "SSHBackgroundHandle",
    "SSHRuntime",
    "SpawnOptions",
    "shell_quote",
]
