"""SSH-backed runtime implementation."""

from __future__ import annotations

import errno
import posixpath
import re
import subprocess
import time
import uuid
from collections.abc import Sequence

from workspace_exec.runtime.background import DEFAULT_TERMINATE_GRACE_S, SSHBackgroundHandle
from workspace_exec.runtime.base import (
    TIMEOUT_EXIT_CODE,
    ExecResult,
    FileStat,
    Runtime,
    RuntimeExecError,
    SpawnOptions,
    shell_quote,
)
from workspace_exec.util.logging import get_logger

_ENV_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


class SSHRuntime(Runtime):
    """Run commands and inspect files on a remote host over ssh.

    Every operation is a single ``ssh`` invocation whose remote command is plain
    POSIX shell, so the remote host only needs bash and coreutils.
    """

    def __init__(
        self,
        host: str,
        *,
        port: int | None = None,
        identity_file: str | None = None,
        ssh_options: Sequence[str] = (),
        ssh_binary: str = "ssh",
        control_dir: str = "/tmp",
        terminate_grace_s: float = DEFAULT_TERMINATE_GRACE_S,
    ) -> None:
        """Initialize the runtime.

        Args:
            host: Destination passed to ssh (``user@host`` or a config alias).
            port: Optional ssh port.
            identity_file: Optional private key path.
            ssh_options: Extra ``-o`` options such as ``StrictHostKeyChecking=no``.
            ssh_binary: ssh client executable.
            control_dir: Remote directory for background pid files.
            terminate_grace_s: Seconds between SIGTERM and SIGKILL for handles.
        """

        if not host:
            raise ValueError("SSH runtime requires a host.")
        self._host = host
        self._port = port
        self._identity_file = identity_file
        self._ssh_options = list(ssh_options)
        self._ssh_binary = ssh_binary
        self._control_dir = control_dir.rstrip("/") or "/"
        self._terminate_grace_s = terminate_grace_s
        self._logger = get_logger(self.__class__.__name__)

    @property
    def host(self) -> str:
        return self._host

    def resolve_path(self, path: str) -> str:
        if path == "~" or path.startswith("~/"):
            target = '"$HOME"' + (shell_quote(path[1:]) if len(path) > 1 else "")
        else:
            target = shell_quote(path)
        result = self.exec_buffered(f"realpath -m -- {target}", timeout_s=30)
        resolved = result.stdout.strip()
        if result.exit_code != 0 or not resolved:
            raise RuntimeExecError(
                f"Failed to resolve path {path!r} on {self._host}: {result.stderr.strip()}"
            )
        return resolved

    def normalize_path(self, path: str, base: str) -> str:
        if not posixpath.isabs(path):
            path = posixpath.join(base, path)
        normalized = posixpath.normpath(path)
        if len(normalized) > 1:
            normalized = normalized.rstrip("/")
        return normalized

    def stat(self, path: str) -> FileStat:
        result = self.exec_buffered(
            f"stat -L -c '%f %s' -- {shell_quote(path)}",
            timeout_s=30,
        )
        if result.exit_code != 0:
            raise FileNotFoundError(errno.ENOENT, "No such file or directory", path)
        try:
            raw_mode, raw_size = result.stdout.split()
            return FileStat.from_mode(int(raw_mode, 16), int(raw_size))
        except ValueError as exc:
            raise RuntimeExecError(
                f"Unexpected stat output for {path!r}: {result.stdout!r}"
            ) from exc

    def exec_buffered(
        self,
        command: str,
        *,
        cwd: str | None = None,
        timeout_s: float | None = None,
        env: dict[str, str] | None = None,
        stdin: str | None = None,
    ) -> ExecResult:
        """Run a bash command on the remote host and capture its output.

        Args:
            command: Shell command text.
            cwd: Optional remote working directory.
            timeout_s: Optional timeout in seconds.
            env: Optional environment variables to export remotely.
            stdin: Optional text for standard input.

        Returns:
            ExecResult with stdout, stderr, exit code, and duration.
        """

        remote_command = self._build_remote_command(
            f"bash -c {shell_quote(command)}", cwd=cwd, env=env
        )
        start = time.monotonic()
        try:
            completed = subprocess.run(
                self._build_ssh_command(remote_command),
                input=stdin,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout_s,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            partial = exc.stdout or b""
            if isinstance(partial, bytes):
                partial = partial.decode("utf-8", errors="replace")
            return ExecResult(
                exit_code=TIMEOUT_EXIT_CODE,
                stdout=partial,
                stderr=f"Command timed out after {timeout_s}s",
                duration_ms=int((time.monotonic() - start) * 1000),
            )

        return ExecResult(
            exit_code=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
            duration_ms=int((time.monotonic() - start) * 1000),
        )

    def spawn_background(self, command: str, options: SpawnOptions) -> SSHBackgroundHandle:
        pid_file = f"{self._control_dir}/workspace-exec-{uuid.uuid4().hex}.pid"
        # setsid makes the remote bash a group leader, so $$ is also its group id.
        leader = f"echo $$ > {shell_quote(pid_file)}; exec bash -c {shell_quote(command)}"
        remote_command = self._build_remote_command(
            f"exec setsid -w bash -c {shell_quote(leader)}",
            cwd=options.cwd,
            env=options.env,
        )
        self._logger.debug("Spawning background command on %s: %s", self._host, command)
        process = subprocess.Popen(
            self._build_ssh_command(remote_command),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            start_new_session=True,
        )
        return SSHBackgroundHandle(
            process,
            runtime=self,
            pid_file=pid_file,
            terminate_grace_s=self._terminate_grace_s,
        )

    def write_file(self, path: str, data: bytes) -> None:
        parent = posixpath.dirname(path) or "."
        remote_command = self._build_remote_command(
            f"mkdir -p {shell_quote(parent)} && cat > {shell_quote(path)}"
        )
        completed = subprocess.run(
            self._build_ssh_command(remote_command),
            input=data,
            capture_output=True,
            check=False,
        )
        if completed.returncode != 0:
            raise RuntimeExecError(
                f"Failed to write {path} on {self._host}: "
                f"{completed.stderr.decode('utf-8', errors='replace').strip()}"
            )

    def _build_ssh_command(self, remote_command: str) -> list[str]:
        ssh_command = [self._ssh_binary, "-o", "BatchMode=yes"]
        if self._port is not None:
            ssh_command.extend(["-p", str(self._port)])
        if self._identity_file:
            ssh_command.extend(["-i", self._identity_file])
        for option in self._ssh_options:
            ssh_command.extend(["-o", option])
        ssh_command.append(self._host)
        ssh_command.append(remote_command)
        return ssh_command

    def _build_remote_command(
        self,
        command: str,
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> str:
        parts: list[str] = []
        if cwd is not None:
            parts.append(f"cd {shell_quote(cwd)}")
        for key, value in (env or {}).items():
            if not _ENV_NAME.fullmatch(key):
                raise ValueError(f"Invalid environment variable name: {key!r}")
            parts.append(f"export {key}={shell_quote(value)}")
        parts.append(command)
        return " && ".join(parts)
