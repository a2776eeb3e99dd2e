"""Run a workspace script safely on a runtime."""

from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass, field
from enum import Enum

from workspace_exec.execution.base import (
    DEFAULT_TIMEOUT_S,
    OVERFLOW_MARKER,
    BashInvocation,
    BashResult,
    OutputLimits,
    OverflowPolicy,
)
from workspace_exec.execution.bash import BashEngine
from workspace_exec.runtime.base import Runtime, RuntimeExecError, shell_quote
from workspace_exec.scripts.discovery import (
    SCRIPTS_DIR,
    get_legacy_script_path,
    get_legacy_scripts_dir,
    get_script_path,
    get_scripts_dir,
)
from workspace_exec.util.logging import get_logger
from workspace_exec.util.observability import ObservabilityManager

_TEMP_DIR_TIMEOUT_S = 5
_LOGGER = get_logger("workspace_exec.scripts.runner")


class ScriptErrorKind(str, Enum):
    """Reasons a script run is rejected before or around execution."""

    INVALID_SCRIPT_NAME = "invalid_script_name"
    PATH_ESCAPE = "path_escape"
    NOT_FOUND = "not_found"
    IS_DIRECTORY = "is_directory"
    TEMP_DIR_ALLOCATION = "temp_dir_allocation"
    EXECUTION_FAILED = "execution_failed"


@dataclass(frozen=True)
class ScriptFailure:
    """Typed failure returned instead of raising."""

    kind: ScriptErrorKind
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class ScriptExecutionResult:
    """Output of a script that was executed.

    ``stdout`` is the agent-visible output. ``stderr`` is empty on success and
    holds the engine's error text otherwise (for example an overflow notice that
    names the spilled log file).

    Attributes:
        exit_code: Exit code reported by the engine.
        stdout: Captured output.
        stderr: Engine error text.
        raw_result: The engine result the fields were derived from.
    """

    exit_code: int
    stdout: str
    stderr: str
    raw_result: BashResult


@dataclass(frozen=True)
class ScriptRunResult:
    """Result of ``run_script``.

    Attributes:
        success: Whether the script was executed (it may still have failed).
        data: Execution result when ``success`` is true.
        error: Failure when the script could not be executed.
    """

    success: bool
    data: ScriptExecutionResult | None = None
    error: ScriptFailure | None = None

    @classmethod
    def ok(cls, data: ScriptExecutionResult) -> ScriptRunResult:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, kind: ScriptErrorKind, message: str) -> ScriptRunResult:
        return cls(success=False, error=ScriptFailure(kind=kind, message=message))


@dataclass(frozen=True)
class RunScriptOptions:
    """Options for a single script run.

    Attributes:
        env: Extra environment variables for the script.
        secrets: Secret environment variables layered over ``env``.
        timeout_s: Wall-clock limit in seconds.
        abort_signal: Event that cancels the run when set.
        overflow_policy: ``truncate`` or ``tmpfile``.
        persistent_temp_dir: Longer-lived root in which the per-run temp
            directory is created, so spilled logs can outlive the call.
        limits: Optional output limits for the engine.
    """

    env: dict[str, str] = field(default_factory=dict)
    secrets: dict[str, str] = field(default_factory=dict)
    timeout_s: float = DEFAULT_TIMEOUT_S
    abort_signal: threading.Event | None = None
    overflow_policy: OverflowPolicy = "truncate"
    persistent_temp_dir: str | None = None
    limits: OutputLimits | None = None


def build_script_command(script_path: str, args: list[str]) -> str:
    """Return ``'<script>' '<arg1>' ...`` with every segment single-quoted."""

    return " ".join(shell_quote(segment) for segment in [script_path, *args])


def run_script(
    runtime: Runtime,
    workspace_root: str,
    script_name: str,
    args: list[str] | None = None,
    options: RunScriptOptions | None = None,
    *,
    observability: ObservabilityManager | None = None,
) -> ScriptRunResult:
    """Validate, locate and execute a workspace script.

    Args:
        runtime: Runtime that owns the workspace.
        workspace_root: Workspace root path on the runtime.
        script_name: Bare script file name.
        args: Positional arguments passed to the script.
        options: Execution options; defaults to ``RunScriptOptions()``.
        observability: Optional event and metrics sink.

    Returns:
        ScriptRunResult carrying either the execution result or a typed failure.
    """

    args = list(args or [])
    options = options or RunScriptOptions()
    if observability is not None and options.secrets:
        observability = observability.with_secrets(options.secrets.values())

    if "/" in script_name or "\\" in script_name or ".." in script_name:
        return _reject(
            observability,
            ScriptErrorKind.INVALID_SCRIPT_NAME,
            f"Invalid script name: {script_name}. Script names must not contain path separators.",
        )

    try:
        script_path, scripts_dir = _resolve_script(runtime, workspace_root, script_name)
    except (OSError, RuntimeExecError) as exc:
        return _reject(
            observability,
            ScriptErrorKind.NOT_FOUND,
            f"Script not found: {SCRIPTS_DIR}/{script_name}. Could not resolve its path: {exc}",
        )

    normalized_script = runtime.normalize_path(script_path, workspace_root)
    normalized_dir = runtime.normalize_path(scripts_dir, workspace_root)
    separator = "\\" if "\\" in normalized_dir else "/"
    if not normalized_script.startswith(normalized_dir + separator):
        _LOGGER.warning("Rejected script %s resolving to %s", script_name, script_path)
        return _reject(
            observability,
            ScriptErrorKind.PATH_ESCAPE,
            f"Invalid script name: {script_name}. Script path escapes scripts directory.",
        )

    try:
        info = runtime.stat(script_path)
    except (OSError, RuntimeExecError):
        return _reject(
            observability,
            ScriptErrorKind.NOT_FOUND,
            f"Script not found: {SCRIPTS_DIR}/{script_name}. Create the script in your "
            "workspace and make it executable (chmod +x).",
        )
    if info.is_directory:
        return _reject(
            observability, ScriptErrorKind.IS_DIRECTORY, f"Script is a directory: {script_name}"
        )

    temp_dir = _allocate_temp_dir(runtime, workspace_root, options.persistent_temp_dir)
    if isinstance(temp_dir, ScriptFailure):
        return _reject(observability, temp_dir.kind, temp_dir.message)

    if observability is not None:
        observability.metrics.increment("script.runs")
        observability.log_event(
            "script.run.started",
            {
                "script": script_name,
                "args": args,
                "env": {**options.env, **options.secrets},
                "temp_dir": temp_dir,
                "overflow_policy": options.overflow_policy,
            },
        )

    engine = BashEngine(runtime, limits=options.limits)
    invocation = BashInvocation(
        script=build_script_command(script_path, args),
        cwd=workspace_root,
        temp_dir=temp_dir,
        timeout_s=options.timeout_s,
        env=dict(options.env),
        secrets=dict(options.secrets),
        overflow_policy=options.overflow_policy,
        abort_signal=options.abort_signal,
    )
    start = time.perf_counter()
    try:
        raw_result = engine.run(invocation)
    except Exception as exc:
        _LOGGER.exception("Script %s failed to execute", script_name)
        _schedule_cleanup(runtime, workspace_root, temp_dir)
        if observability is not None:
            observability.metrics.increment("script.failures")
            observability.log_event(
                "script.run.failed", {"script": script_name, "error": str(exc)}, level="ERROR"
            )
        return ScriptRunResult.fail(
            ScriptErrorKind.EXECUTION_FAILED, f"Script execution failed: {exc}"
        )

    keeps_spilled_log = (
        options.persistent_temp_dir is not None
        and options.persistent_temp_dir.strip() != ""
        and options.overflow_policy == "tmpfile"
        and not raw_result.success
        and raw_result.error is not None
        and OVERFLOW_MARKER in raw_result.error
    )
    if keeps_spilled_log:
        _LOGGER.info("Keeping %s for the spilled output of %s", temp_dir, script_name)
    else:
        _schedule_cleanup(runtime, workspace_root, temp_dir)

    if raw_result.success:
        result = ScriptExecutionResult(
            exit_code=raw_result.exit_code,
            stdout=raw_result.output,
            stderr="",
            raw_result=raw_result,
        )
    else:
        result = ScriptExecutionResult(
            exit_code=raw_result.exit_code,
            stdout=raw_result.output or "",
            stderr=raw_result.error or "",
            raw_result=raw_result,
        )

    if observability is not None:
        observability.metrics.record_duration("script.run", time.perf_counter() - start)
        if not raw_result.success:
            observability.metrics.increment("script.failures")
        observability.log_event(
            "script.run.completed",
            {
                "script": script_name,
                "exit_code": raw_result.exit_code,
                "success": raw_result.success,
                "wall_duration_ms": raw_result.wall_duration_ms,
            },
        )
    return ScriptRunResult.ok(result)


async def arun_script(
    runtime: Runtime,
    workspace_root: str,
    script_name: str,
    args: list[str] | None = None,
    options: RunScriptOptions | None = None,
    *,
    observability: ObservabilityManager | None = None,
) -> ScriptRunResult:
    """Run ``run_script`` in a worker thread so event loops are not blocked."""

    return await asyncio.to_thread(
        run_script,
        runtime,
        workspace_root,
        script_name,
        args,
        options,
        observability=observability,
    )


def _resolve_script(runtime: Runtime, workspace_root: str, script_name: str) -> tuple[str, str]:
    """Return the resolved script path and the resolved directory it belongs to.

    Tries the canonical directory, then the legacy one. When neither holds the
    script the canonical locations are returned so the missing-file error names
    the expected path.
    """

    candidates = (
        (get_script_path(workspace_root, script_name), get_scripts_dir(workspace_root)),
        (
            get_legacy_script_path(workspace_root, script_name),
            get_legacy_scripts_dir(workspace_root),
        ),
    )
    for script_path, scripts_dir in candidates:
        try:
            resolved = runtime.resolve_path(script_path)
            runtime.stat(resolved)
            return resolved, runtime.resolve_path(scripts_dir)
        except (OSError, RuntimeExecError):
            continue
    script_path, scripts_dir = candidates[0]
    return runtime.resolve_path(script_path), runtime.resolve_path(scripts_dir)


def _allocate_temp_dir(
    runtime: Runtime,
    workspace_root: str,
    persistent_temp_dir: str | None,
) -> str | ScriptFailure:
    base = (persistent_temp_dir or "").strip().replace("\\", "/").rstrip("/")
    if base:
        command = (
            f"mkdir -p {shell_quote(base)} && mktemp -d {shell_quote(base + '/script-XXXXXX')}"
        )
    else:
        command = "mktemp -d 2>/dev/null || mktemp -d -t 'workspace-script'"

    try:
        result = runtime.exec_buffered(command, cwd=workspace_root, timeout_s=_TEMP_DIR_TIMEOUT_S)
    except (OSError, RuntimeExecError) as exc:
        return ScriptFailure(
            ScriptErrorKind.TEMP_DIR_ALLOCATION,
            f"Failed to prepare script environment: {exc}",
        )
    if result.exit_code != 0:
        return ScriptFailure(
            ScriptErrorKind.TEMP_DIR_ALLOCATION,
            f"Failed to prepare script environment: {result.stderr.strip() or 'mkdir failed'}",
        )
    temp_dir = result.stdout.strip()
    if not temp_dir:
        return ScriptFailure(
            ScriptErrorKind.TEMP_DIR_ALLOCATION,
            "Failed to prepare script environment: runtime temp directory was empty",
        )
    return temp_dir


def _schedule_cleanup(runtime: Runtime, workspace_root: str, temp_dir: str) -> None:
    """Remove ``temp_dir`` on a daemon thread without waiting for it."""

    threading.Thread(
        target=_remove_temp_dir,
        args=(runtime, workspace_root, temp_dir),
        name="workspace-exec-cleanup",
        daemon=True,
    ).start()


def _remove_temp_dir(runtime: Runtime, workspace_root: str, temp_dir: str) -> None:
    try:
        result = runtime.exec_buffered(
            f"rm -rf {shell_quote(temp_dir)}",
            cwd=workspace_root,
            timeout_s=_TEMP_DIR_TIMEOUT_S,
        )
    except (OSError, RuntimeExecError) as exc:
        _LOGGER.warning("Failed to remove temp dir %s: %s", temp_dir, exc)
        return
    if result.exit_code != 0:
        _LOGGER.warning("Failed to remove temp dir %s: %s", temp_dir, result.stderr.strip())


def _reject(
    observability: ObservabilityManager | None,
    kind: ScriptErrorKind,
    message: str,
) -> ScriptRunResult:
    if observability is not None:
        observability.metrics.increment(f"script.rejected.{kind.value}")
        observability.log_event(
            "script.run.rejected", {"kind": kind.value, "message": message}, level="WARNING"
        )
    return ScriptRunResult.fail(kind, message)
