"""Handles for detached processes started by a runtime."""

from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from abc import ABC, abstractmethod
from typing import IO, TYPE_CHECKING, Callable, Generic, TypeVar

from workspace_exec.runtime.base import shell_quote
from workspace_exec.util.logging import get_logger

if TYPE_CHECKING:
    from workspace_exec.runtime.ssh import SSHRuntime

T = TypeVar("T")

DEFAULT_TERMINATE_GRACE_S = 2.0
# How long output readers may keep draining after the process is reaped. A
# detached child that inherited the pipes can hold them open indefinitely.
DEFAULT_DRAIN_GRACE_S = 0.5

_LOGGER = get_logger("workspace_exec.runtime.background")


class _EventChannel(Generic[T]):
    """Queues events until a callback is attached, then delivers directly.

    Each channel has a single writer (one reader thread per stream). Attaching a
    callback flushes the queued events in arrival order under the same lock the
    writer uses, so no event can slip between the flush and direct delivery.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._callback: Callable[[T], None] | None = None
        self._pending: list[T] = []

    def emit(self, event: T) -> None:
        with self._lock:
            if self._callback is None:
                self._pending.append(event)
                return
            self._callback(event)

    def attach(self, callback: Callable[[T], None]) -> None:
        with self._lock:
            self._callback = callback
            pending, self._pending = self._pending, []
            for event in pending:
                callback(event)

    def detach(self) -> None:
        """Discard pending and future events."""

        with self._lock:
            self._callback = _discard
            self._pending = []


def _discard(event: object) -> None:
    return None


class _ExitChannel:
    """Single-shot channel for the exit code; delivers at most once."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._callback: Callable[[int], None] | None = None
        self._pending: int | None = None
        self._delivered = False

    def emit(self, exit_code: int) -> None:
        with self._lock:
            if self._delivered or self._pending is not None:
                return
            if self._callback is None:
                self._pending = exit_code
                return
            self._delivered = True
            self._callback(exit_code)

    def attach(self, callback: Callable[[int], None]) -> None:
        with self._lock:
            self._callback = callback
            if self._pending is not None and not self._delivered:
                self._delivered = True
                exit_code, self._pending = self._pending, None
                callback(exit_code)


class BackgroundHandle(ABC):
    """Owns one spawned process and delivers its output line by line.

    Output that arrives before ``on_stdout``/``on_stderr``/``on_exit`` is called
    is queued per channel and replayed at registration. The exit code is emitted
    once the process is reaped and both output streams have drained, or once
    ``drain_grace_s`` has passed, whichever comes first; lines from a detached
    child still holding the pipes keep flowing after the exit.
    """

    def __init__(
        self,
        process: subprocess.Popen[bytes],
        *,
        terminate_grace_s: float = DEFAULT_TERMINATE_GRACE_S,
        drain_grace_s: float = DEFAULT_DRAIN_GRACE_S,
    ) -> None:
        self._process = process
        self._terminate_grace_s = terminate_grace_s
        self._drain_grace_s = drain_grace_s
        self._stdout = _EventChannel[str]()
        self._stderr = _EventChannel[str]()
        self._exit = _ExitChannel()
        self._exit_code: int | None = None
        self._exited = threading.Event()
        self._terminate_lock = threading.Lock()
        self._terminated = False
        self._readers = [
            threading.Thread(
                target=self._pump, args=(process.stdout, self._stdout), daemon=True
            ),
            threading.Thread(
                target=self._pump, args=(process.stderr, self._stderr), daemon=True
            ),
        ]
        for reader in self._readers:
            reader.start()
        self._watcher = threading.Thread(target=self._watch_exit, daemon=True)
        self._watcher.start()

    @property
    def pid(self) -> int:
        """Return the PID of the spawned process (also its process group id)."""

        return self._process.pid

    def on_stdout(self, callback: Callable[[str], None]) -> None:
        """Register the stdout line callback, replaying queued lines first."""

        self._stdout.attach(callback)

    def on_stderr(self, callback: Callable[[str], None]) -> None:
        """Register the stderr line callback, replaying queued lines first."""

        self._stderr.attach(callback)

    def on_exit(self, callback: Callable[[int], None]) -> None:
        """Register the exit callback; fires at most once."""

        self._exit.attach(callback)

    def is_running(self) -> bool:
        """Return whether the process has neither exited nor been killed."""

        return self._process.poll() is None

    def wait(self, timeout: float | None = None) -> int | None:
        """Block until the exit code is available (see the class docstring).

        Returns:
            The exit code, or None if ``timeout`` elapsed first.
        """

        if not self._exited.wait(timeout):
            return None
        return self._exit_code

    def terminate(self) -> None:
        """Stop the whole process group: SIGTERM, grace window, then SIGKILL.

        Safe to call repeatedly and after the process has already exited.
        """

        with self._terminate_lock:
            if self._terminated:
                return
            try:
                _LOGGER.debug("Sending SIGTERM to process group %s", self.pid)
                self._signal_group(signal.SIGTERM)
                try:
                    self._process.wait(timeout=self._terminate_grace_s)
                except subprocess.TimeoutExpired:
                    pass
                if self.is_running():
                    _LOGGER.debug("Process group %s still running, sending SIGKILL", self.pid)
                    self._signal_group(signal.SIGKILL)
            except (ProcessLookupError, PermissionError) as exc:
                _LOGGER.debug("Process group %s already gone: %s", self.pid, exc)
            finally:
                self._terminated = True

    def dispose(self) -> None:
        """Release pipes and reader threads. Safe after ``terminate``.

        Output arriving after this call is dropped.
        """

        streams = (self._process.stdout, self._process.stderr)
        for reader, stream in zip(self._readers, streams):
            reader.join(timeout=self._drain_grace_s)
            # A reader still blocked in readline holds the stream lock; a surviving
            # grandchild owns the pipe and the daemon thread ends with it.
            if stream is not None and not reader.is_alive():
                stream.close()
        self._stdout.detach()
        self._stderr.detach()

    @abstractmethod
    def _signal_group(self, sig: signal.Signals) -> None:
        """Deliver ``sig`` to every process in the spawned group."""

    def _pump(self, stream: IO[bytes] | None, channel: _EventChannel[str]) -> None:
        if stream is None:
            return
        try:
            for raw in iter(stream.readline, b""):
                channel.emit(raw.decode("utf-8", errors="replace").rstrip("\r\n"))
        except (OSError, ValueError):
            # Pipe closed by dispose() while the process was still writing.
            return

    def _watch_exit(self) -> None:
        returncode = self._process.wait()
        drain_deadline = time.monotonic() + self._drain_grace_s
        for reader in self._readers:
            reader.join(timeout=max(0.0, drain_deadline - time.monotonic()))
        if any(reader.is_alive() for reader in self._readers):
            _LOGGER.debug(
                "Process %s exited with its output pipes still open; not waiting for EOF",
                self.pid,
            )
        # Signal deaths are reported with the shell convention (128 + signal).
        self._exit_code = returncode if returncode >= 0 else 128 - returncode
        self._exited.set()
        self._exit.emit(self._exit_code)


class LocalBackgroundHandle(BackgroundHandle):
    """Handle for a process group on this machine."""

    def _signal_group(self, sig: signal.Signals) -> None:
        os.killpg(self.pid, sig)


class SSHBackgroundHandle(BackgroundHandle):
    """Handle for a remote process group reached through a local ssh client.

    The remote wrapper records its process group id in ``pid_file``; signals go
    to that remote group, and SIGKILL also takes down the local ssh client.
    """

    def __init__(
        self,
        process: subprocess.Popen[bytes],
        *,
        runtime: SSHRuntime,
        pid_file: str,
        terminate_grace_s: float = DEFAULT_TERMINATE_GRACE_S,
    ) -> None:
        self._runtime = runtime
        self._pid_file = pid_file
        super().__init__(process, terminate_grace_s=terminate_grace_s)

    @property
    def pid_file(self) -> str:
        return self._pid_file

    def _signal_group(self, sig: signal.Signals) -> None:
        quoted = shell_quote(self._pid_file)
        result = self._runtime.exec_buffered(
            f"[ -s {quoted} ] && kill -{sig.name[3:]} -- -$(cat {quoted})",
            timeout_s=10,
        )
        if result.exit_code != 0:
            _LOGGER.debug(
                "Remote kill -%s for %s exited %s: %s",
                sig.name[3:],
                self._pid_file,
                result.exit_code,
                result.stderr.strip(),
            )
        if sig == signal.SIGKILL:
            os.killpg(self.pid, sig)

    def dispose(self) -> None:
        super().dispose()
        self._runtime.exec_buffered(f"rm -f {shell_quote(self._pid_file)}", timeout_s=10)
