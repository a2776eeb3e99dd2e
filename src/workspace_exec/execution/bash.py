"""Bash execution engine: spawn, capture, bound and time out one command."""

from __future__ import annotations

import posixpath
import time
import uuid

from workspace_exec.execution.base import (
    ABORTED_EXIT_CODE,
    OVERFLOW_MARKER,
    TIMEOUT_EXIT_CODE,
    BashInvocation,
    BashResult,
    OutputLimits,
)
from workspace_exec.execution.output import OutputCollector
from workspace_exec.runtime.background import BackgroundHandle
from workspace_exec.runtime.base import Runtime, SpawnOptions
from workspace_exec.util.logging import get_logger, redact_secrets

_POLL_INTERVAL_S = 0.05
_EXIT_AFTER_TERMINATE_S = 1.0


class BashEngine:
    """Run bash commands on a runtime with output limits and a deadline."""

    def __init__(self, runtime: Runtime, limits: OutputLimits | None = None) -> None:
        """Initialize the engine.

        Args:
            runtime: Runtime that spawns the process and stores spill files.
            limits: Output bounds; defaults to ``OutputLimits()``.
        """

        self._runtime = runtime
        self._limits = limits or OutputLimits()
        self._logger = get_logger(self.__class__.__name__)

    def run(self, invocation: BashInvocation) -> BashResult:
        """Run a command and classify its outcome.

        Timeouts, aborts, non-zero exits and output overflow all come back as a
        failed ``BashResult``. Exceptions raised while spawning the process or
        writing the spill file propagate to the caller.

        Args:
            invocation: Command, working directory and limits for this run.

        Returns:
            BashResult describing the run.
        """

        env = {**invocation.env, **invocation.secrets, "TMPDIR": invocation.temp_dir}
        collector = OutputCollector(self._limits, invocation.overflow_policy)
        start = time.monotonic()

        self._logger.debug(
            "Running bash command in %s: %s",
            invocation.cwd,
            redact_secrets(invocation.script, invocation.secrets.values()),
        )
        handle = self._runtime.spawn_background(
            invocation.script, SpawnOptions(cwd=invocation.cwd, env=env)
        )
        try:
            handle.on_stdout(collector.add)
            handle.on_stderr(collector.add)
            exit_code, stop_reason = self._wait(handle, invocation, collector, start)
            if stop_reason is not None:
                handle.terminate()
            if stop_reason == "spill_limit":
                exit_code = handle.wait(timeout=_EXIT_AFTER_TERMINATE_S)
        finally:
            handle.dispose()

        duration_ms = int((time.monotonic() - start) * 1000)
        if stop_reason == "timeout":
            return BashResult(
                success=False,
                output=collector.text(),
                exit_code=TIMEOUT_EXIT_CODE,
                wall_duration_ms=duration_ms,
                error=f"Command exceeded timeout of {invocation.timeout_s:g} seconds",
            )
        if stop_reason == "aborted":
            return BashResult(
                success=False,
                output=collector.text(),
                exit_code=ABORTED_EXIT_CODE,
                wall_duration_ms=duration_ms,
                error="Command execution was aborted",
            )

        if exit_code is None:
            # A terminated group that has not been reaped yet.
            exit_code = ABORTED_EXIT_CODE
        if collector.overflow_reason is not None:
            return self._overflow_result(invocation, collector, exit_code, duration_ms)
        if exit_code != 0:
            return BashResult(
                success=False,
                output=collector.text(),
                exit_code=exit_code,
                wall_duration_ms=duration_ms,
                error=f"Command exited with code {exit_code}",
            )
        return BashResult(
            success=True,
            output=collector.text(),
            exit_code=0,
            wall_duration_ms=duration_ms,
        )

    def _wait(
        self,
        handle: BackgroundHandle,
        invocation: BashInvocation,
        collector: OutputCollector,
        start: float,
    ) -> tuple[int | None, str | None]:
        deadline = start + invocation.timeout_s
        while True:
            if invocation.abort_signal is not None and invocation.abort_signal.is_set():
                self._logger.info("Bash command aborted after %.2fs", time.monotonic() - start)
                return None, "aborted"
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._logger.warning(
                    "Bash command exceeded timeout of %ss; terminating", invocation.timeout_s
                )
                return None, "timeout"
            if collector.spill_limit_reached:
                self._logger.warning(
                    "Bash command output passed %s bytes; terminating",
                    self._limits.max_spill_bytes,
                )
                return None, "spill_limit"
            exit_code = handle.wait(timeout=min(_POLL_INTERVAL_S, remaining))
            if exit_code is not None:
                return exit_code, None

    def _overflow_result(
        self,
        invocation: BashInvocation,
        collector: OutputCollector,
        exit_code: int,
        duration_ms: int,
    ) -> BashResult:
        reason = collector.overflow_reason
        if invocation.overflow_policy == "tmpfile":
            stopped = (
                f"Output passed {self._limits.max_spill_bytes} bytes, so the command was "
                "terminated and the saved log is incomplete.\n"
                if collector.spill_limit_reached
                else ""
            )
            path = posixpath.join(invocation.temp_dir, f"bash-{uuid.uuid4().hex[:8]}.txt")
            self._runtime.write_file(path, collector.full_text().encode("utf-8"))
            self._logger.info("Output overflow (%s); full output saved to %s", reason, path)
            error = (
                f"[{OVERFLOW_MARKER} - {reason}]\n"
                f"Command exited with code {exit_code} after writing "
                f"{collector.total_lines} lines ({collector.total_bytes} bytes).\n"
                f"{stopped}"
                "Inspect the log with head, tail or grep instead of printing it in full.\n"
                f"Full output saved to {path}"
            )
            return BashResult(
                success=False,
                output="",
                exit_code=exit_code,
                wall_duration_ms=duration_ms,
                error=error,
            )

        error = (
            f"[{OVERFLOW_MARKER} - {reason}] Output truncated to the first and last lines; "
            f"command exited with code {exit_code} after writing {collector.total_lines} lines."
        )
        return BashResult(
            success=False,
            output=collector.text(),
            exit_code=exit_code,
            wall_duration_ms=duration_ms,
            error=error,
        )
