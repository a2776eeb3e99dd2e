"""Runtime abstraction shared by the local and remote execution backends."""

from __future__ import annotations

import stat as stat_module
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from workspace_exec.runtime.background import BackgroundHandle

TIMEOUT_EXIT_CODE = 124


class RuntimeExecError(RuntimeError):
    """Raised when a runtime cannot carry out a control operation."""


@dataclass(frozen=True)
class FileStat:
    """Subset of file metadata reported by a runtime.

    Attributes:
        is_directory: Whether the path is a directory.
        is_file: Whether the path is a regular file.
        size: Size in bytes.
        mode: Raw ``st_mode`` bits.
    """

    is_directory: bool
    is_file: bool
    size: int
    mode: int

    @property
    def is_executable(self) -> bool:
        """Return whether any execute bit is set."""

        return bool(self.mode & (stat_module.S_IXUSR | stat_module.S_IXGRP | stat_module.S_IXOTH))

    @classmethod
    def from_mode(cls, mode: int, size: int) -> FileStat:
        return cls(
            is_directory=stat_module.S_ISDIR(mode),
            is_file=stat_module.S_ISREG(mode),
            size=size,
            mode=mode,
        )


@dataclass(frozen=True)
class ExecResult:
    """Result of a buffered command.

    Attributes:
        exit_code: Exit code of the command (124 when the timeout was hit).
        stdout: Captured standard output.
        stderr: Captured standard error.
        duration_ms: Wall-clock duration in milliseconds.
    """

    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int


@dataclass(frozen=True)
class SpawnOptions:
    """Options for starting a background process.

    Attributes:
        cwd: Working directory on the runtime.
        env: Extra environment variables layered over the runtime's environment.
    """

    cwd: str
    env: dict[str, str] = field(default_factory=dict)


class Runtime(ABC):
    """Uniform filesystem and process operations over one execution backend.

    All paths are strings in the backend's own namespace, so callers never need
    to know whether the workspace lives on this machine or on a remote host.
    """

    @abstractmethod
    def resolve_path(self, path: str) -> str:
        """Return the absolute, symlink-resolved form of ``path``.

        The path does not need to exist.

        Raises:
            RuntimeExecError: If the backend cannot resolve the path.
        """

    @abstractmethod
    def normalize_path(self, path: str, base: str) -> str:
        """Return ``path`` normalized for prefix comparison.

        Relative paths are interpreted against ``base``. Trailing separators are
        removed.
        """

    @abstractmethod
    def stat(self, path: str) -> FileStat:
        """Return metadata for ``path``, following symlinks.

        Raises:
            FileNotFoundError: If the path does not exist.
        """

    @abstractmethod
    def exec_buffered(
        self,
        command: str,
        *,
        cwd: str | None = None,
        timeout_s: float | None = None,
        env: dict[str, str] | None = None,
        stdin: str | None = None,
    ) -> ExecResult:
        """Run ``command`` with bash to completion and buffer its output.

        Args:
            command: Shell command text.
            cwd: Optional working directory.
            timeout_s: Optional timeout in seconds.
            env: Optional environment variables to include.
            stdin: Optional text written to the command's standard input.

        Returns:
            ExecResult with exit code, output and duration.
        """

    @abstractmethod
    def spawn_background(self, command: str, options: SpawnOptions) -> BackgroundHandle:
        """Start ``command`` in its own process group and return immediately."""

    @abstractmethod
    def write_file(self, path: str, data: bytes) -> None:
        """Write ``data`` to ``path``, creating parent directories.

        Raises:
            RuntimeExecError: If the file cannot be written.
        """


def shell_quote(value: str) -> str:
    """Wrap ``value`` in single quotes, escaping embedded single quotes."""

    return "'" + value.replace("'", "'\\''") + "'"
