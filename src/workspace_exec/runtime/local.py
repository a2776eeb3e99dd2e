"""Local runtime implementation."""

from __future__ import annotations

import os
import subprocess
import time
from pathlib import Path

from workspace_exec.runtime.background import (
    DEFAULT_TERMINATE_GRACE_S,
    LocalBackgroundHandle,
)
from workspace_exec.runtime.base import (
    TIMEOUT_EXIT_CODE,
    ExecResult,
    FileStat,
    Runtime,
    RuntimeExecError,
    SpawnOptions,
)


class LocalRuntime(Runtime):
    """Run commands and inspect files on the local host."""

    def __init__(self, terminate_grace_s: float = DEFAULT_TERMINATE_GRACE_S) -> None:
        """Initialize the runtime.

        Args:
            terminate_grace_s: Seconds background handles wait between SIGTERM
                and SIGKILL.
        """

        self._terminate_grace_s = terminate_grace_s

    def resolve_path(self, path: str) -> str:
        return str(Path(os.path.expanduser(path)).resolve(strict=False))

    def normalize_path(self, path: str, base: str) -> str:
        if not os.path.isabs(path):
            path = os.path.join(base, path)
        normalized = os.path.normpath(path)
        if len(normalized) > 1:
            normalized = normalized.rstrip(os.sep)
        return normalized

    def stat(self, path: str) -> FileStat:
        info = os.stat(path)
        return FileStat.from_mode(info.st_mode, info.st_size)

    def exec_buffered(
        self,
        command: str,
        *,
        cwd: str | None = None,
        timeout_s: float | None = None,
        env: dict[str, str] | None = None,
        stdin: str | None = None,
    ) -> ExecResult:
        """Run a bash command locally and capture its output.

        Args:
            command: Shell command text.
            cwd: Optional working directory.
            timeout_s: Optional timeout in seconds.
            env: Optional environment variables to include.
            stdin: Optional text for standard input.

        Returns:
            ExecResult with stdout, stderr, exit code, and duration.
        """

        start = time.monotonic()
        try:
            completed = subprocess.run(
                ["bash", "-c", command],
                cwd=cwd,
                env=_merge_env(env),
                input=stdin,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout_s,
                start_new_session=True,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            return ExecResult(
                exit_code=TIMEOUT_EXIT_CODE,
                stdout=_as_text(exc.stdout),
                stderr=_as_text(exc.stderr) or f"Command timed out after {timeout_s}s",
                duration_ms=_elapsed_ms(start),
            )

        return ExecResult(
            exit_code=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
            duration_ms=_elapsed_ms(start),
        )

    def spawn_background(self, command: str, options: SpawnOptions) -> LocalBackgroundHandle:
        process = subprocess.Popen(
            ["bash", "-c", command],
            cwd=options.cwd,
            env=_merge_env(options.env),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            start_new_session=True,
        )
        return LocalBackgroundHandle(process, terminate_grace_s=self._terminate_grace_s)

    def write_file(self, path: str, data: bytes) -> None:
        target = Path(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as exc:
            raise RuntimeExecError(f"Failed to write {path}: {exc}") from exc


def _merge_env(env: dict[str, str] | None) -> dict[str, str]:
    merged_env = os.environ.copy()
    if env:
        merged_env.update(env)
    return merged_env


def _as_text(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
