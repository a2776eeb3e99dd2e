from __future__ import annotations

import asyncio
import re
import time
from pathlib import Path

import pytest

from workspace_exec.execution.base import OVERFLOW_MARKER, OutputLimits
from workspace_exec.runtime.background import BackgroundHandle
from workspace_exec.runtime.base import (
    ExecResult,
    FileStat,
    Runtime,
    SpawnOptions,
)
from workspace_exec.runtime.local import LocalRuntime
from workspace_exec.scripts.runner import (
    RunScriptOptions,
    ScriptErrorKind,
    arun_script,
    build_script_command,
    run_script,
)
from workspace_exec.util.observability import create_observability_manager

_SMALL_LIMITS = OutputLimits(
    max_lines=20,
    max_total_bytes=64 * 1024,
    max_line_bytes=1024,
    truncate_head_lines=5,
    truncate_tail_lines=5,
)


class RecordingRuntime(Runtime):
    """Runtime that records every call and never touches the system."""

    def __init__(self) -> None:
        self.calls: list[str] = []

    def resolve_path(self, path: str) -> str:
        self.calls.append("resolve_path")
        return path

    def normalize_path(self, path: str, base: str) -> str:
        self.calls.append("normalize_path")
        return path

    def stat(self, path: str) -> FileStat:
        self.calls.append("stat")
        raise FileNotFoundError(path)

    def exec_buffered(self, command: str, **kwargs: object) -> ExecResult:
        self.calls.append("exec_buffered")
        return ExecResult(exit_code=1, stdout="", stderr="", duration_ms=0)

    def spawn_background(self, command: str, options: SpawnOptions) -> BackgroundHandle:
        self.calls.append("spawn_background")
        raise AssertionError("spawn_background should not be called")

    def write_file(self, path: str, data: bytes) -> None:
        self.calls.append("write_file")


class ExplodingRuntime(LocalRuntime):
    def spawn_background(self, command: str, options: SpawnOptions) -> BackgroundHandle:
        raise RuntimeError("spawn exploded")


def _write_script(
    workspace: Path,
    name: str,
    body: str,
    *,
    directory: str = ".workspace/scripts",
    executable: bool = True,
) -> Path:
    scripts_dir = workspace / directory
    scripts_dir.mkdir(parents=True, exist_ok=True)
    path = scripts_dir / name
    path.write_text(body, encoding="utf-8")
    path.chmod(0o755 if executable else 0o644)
    return path


def _wait_until(predicate, timeout_s: float = 10.0) -> bool:
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


def test_build_script_command_quotes_every_segment() -> None:
    command = build_script_command("/ws/.workspace/scripts/run", ["a b", "it's", "$HOME"])

    assert command == "'/ws/.workspace/scripts/run' 'a b' 'it'\\''s' '$HOME'"


@pytest.mark.parametrize("name", ["../evil", "sub/dir", "back\\slash", "..", "a..b"])
def test_invalid_names_are_rejected_before_touching_runtime(name: str) -> None:
    runtime = RecordingRuntime()

    outcome = run_script(runtime, "/ws", name)

    assert not outcome.success
    assert outcome.error is not None
    assert outcome.error.kind is ScriptErrorKind.INVALID_SCRIPT_NAME
    assert str(outcome.error) == (
        f"Invalid script name: {name}. Script names must not contain path separators."
    )
    assert runtime.calls == []


def test_runs_script_with_arguments(tmp_path: Path) -> None:
    _write_script(
        tmp_path,
        "greet",
        '#!/bin/bash\nfor arg in "$@"; do echo "[$arg]"; done\necho "cwd=$(pwd)"\n',
    )

    outcome = run_script(LocalRuntime(), str(tmp_path), "greet", ["hello world", "it's", "$HOME"])

    assert outcome.success
    assert outcome.data is not None
    assert outcome.data.exit_code == 0
    assert outcome.data.stderr == ""
    assert outcome.data.stdout.splitlines() == [
        "[hello world]",
        "[it's]",
        "[$HOME]",
        f"cwd={tmp_path.resolve()}",
    ]
    assert outcome.data.raw_result.success


def test_failing_script_reports_exit_code(tmp_path: Path) -> None:
    _write_script(tmp_path, "fail", "#!/bin/bash\necho nope\nexit 3\n")

    outcome = run_script(LocalRuntime(), str(tmp_path), "fail")

    assert outcome.success
    assert outcome.data is not None
    assert outcome.data.exit_code == 3
    assert outcome.data.stdout == "nope"
    assert outcome.data.stderr == "Command exited with code 3"


def test_legacy_directory_fallback(tmp_path: Path) -> None:
    body = "#!/bin/bash\necho legacy-ok\n"
    _write_script(tmp_path, "old", body, directory=".scripts")

    outcome = run_script(LocalRuntime(), str(tmp_path), "old")

    assert outcome.success
    assert outcome.data is not None
    assert outcome.data.stdout == "legacy-ok"


def test_canonical_directory_is_preferred(tmp_path: Path) -> None:
    _write_script(tmp_path, "both", "#!/bin/bash\necho legacy\n", directory=".scripts")
    _write_script(tmp_path, "both", "#!/bin/bash\necho canonical\n")

    outcome = run_script(LocalRuntime(), str(tmp_path), "both")

    assert outcome.data is not None
    assert outcome.data.stdout == "canonical"


def test_symlink_escaping_scripts_dir_is_rejected(tmp_path: Path) -> None:
    outside = tmp_path / "outside.sh"
    outside.write_text("#!/bin/bash\necho escaped\n", encoding="utf-8")
    outside.chmod(0o755)
    scripts_dir = tmp_path / ".workspace" / "scripts"
    scripts_dir.mkdir(parents=True)
    (scripts_dir / "sneaky").symlink_to(outside)

    outcome = run_script(LocalRuntime(), str(tmp_path), "sneaky")

    assert not outcome.success
    assert outcome.error is not None
    assert outcome.error.kind is ScriptErrorKind.PATH_ESCAPE
    assert str(outcome.error) == (
        "Invalid script name: sneaky. Script path escapes scripts directory."
    )


def test_symlink_inside_scripts_dir_is_allowed(tmp_path: Path) -> None:
    target = _write_script(tmp_path, "real", "#!/bin/bash\necho real\n")
    (target.parent / "alias").symlink_to(target)

    outcome = run_script(LocalRuntime(), str(tmp_path), "alias")

    assert outcome.success
    assert outcome.data is not None
    assert outcome.data.stdout == "real"


def test_missing_script_message(tmp_path: Path) -> None:
    outcome = run_script(LocalRuntime(), str(tmp_path), "missing")

    assert not outcome.success
    assert outcome.error is not None
    assert outcome.error.kind is ScriptErrorKind.NOT_FOUND
    assert str(outcome.error) == (
        "Script not found: .workspace/scripts/missing. Create the script in your "
        "workspace and make it executable (chmod +x)."
    )


def test_directory_is_rejected(tmp_path: Path) -> None:
    (tmp_path / ".workspace" / "scripts" / "tools").mkdir(parents=True)

    outcome = run_script(LocalRuntime(), str(tmp_path), "tools")

    assert outcome.error is not None
    assert outcome.error.kind is ScriptErrorKind.IS_DIRECTORY
    assert str(outcome.error) == "Script is a directory: tools"


def test_temp_dir_allocation_failure(tmp_path: Path) -> None:
    _write_script(tmp_path, "ok", "#!/bin/bash\necho ok\n")
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")

    outcome = run_script(
        LocalRuntime(),
        str(tmp_path),
        "ok",
        options=RunScriptOptions(persistent_temp_dir=str(blocker / "tmp")),
    )

    assert outcome.error is not None
    assert outcome.error.kind is ScriptErrorKind.TEMP_DIR_ALLOCATION
    assert str(outcome.error).startswith("Failed to prepare script environment:")


def test_engine_exceptions_become_execution_failures(tmp_path: Path) -> None:
    _write_script(tmp_path, "ok", "#!/bin/bash\necho ok\n")

    outcome = run_script(ExplodingRuntime(), str(tmp_path), "ok")

    assert not outcome.success
    assert outcome.error is not None
    assert outcome.error.kind is ScriptErrorKind.EXECUTION_FAILED
    assert str(outcome.error) == "Script execution failed: spawn exploded"


def test_temp_dir_is_exported_and_removed_after_run(tmp_path: Path) -> None:
    _write_script(tmp_path, "tmp", '#!/bin/bash\necho "$TMPDIR"\ntouch "$TMPDIR/scratch"\n')
    persist = tmp_path / "persist"

    outcome = run_script(
        LocalRuntime(),
        str(tmp_path),
        "tmp",
        options=RunScriptOptions(persistent_temp_dir=str(persist)),
    )

    assert outcome.data is not None
    temp_dir = Path(outcome.data.stdout.strip())
    assert temp_dir.parent == persist
    assert temp_dir.name.startswith("script-")
    assert _wait_until(lambda: not temp_dir.exists())
    assert list(persist.iterdir()) == []


def test_tmpfile_overflow_log_survives_in_persistent_root(tmp_path: Path) -> None:
    _write_script(tmp_path, "noisy", "#!/bin/bash\nseq 1 500\n")
    persist = tmp_path / "persist"

    outcome = run_script(
        LocalRuntime(),
        str(tmp_path),
        "noisy",
        options=RunScriptOptions(
            overflow_policy="tmpfile",
            persistent_temp_dir=str(persist),
            limits=_SMALL_LIMITS,
        ),
    )

    assert outcome.success
    assert outcome.data is not None
    assert outcome.data.stdout == ""
    assert OVERFLOW_MARKER in outcome.data.stderr
    match = re.search(r"saved to (.+)$", outcome.data.stderr)
    assert match is not None
    log_path = Path(match.group(1).strip())
    assert log_path.is_relative_to(persist)
    time.sleep(0.2)
    assert log_path.exists()
    assert log_path.read_text(encoding="utf-8").splitlines()[-1] == "500"


def test_tmpfile_overflow_without_persistent_root_is_cleaned(tmp_path: Path) -> None:
    _write_script(tmp_path, "noisy", "#!/bin/bash\nseq 1 500\n")

    outcome = run_script(
        LocalRuntime(),
        str(tmp_path),
        "noisy",
        options=RunScriptOptions(overflow_policy="tmpfile", limits=_SMALL_LIMITS),
    )

    assert outcome.data is not None
    match = re.search(r"saved to (.+)$", outcome.data.stderr)
    assert match is not None
    log_path = Path(match.group(1).strip())
    assert _wait_until(lambda: not log_path.exists())


def test_truncate_overflow_returns_head_and_tail(tmp_path: Path) -> None:
    _write_script(tmp_path, "noisy", "#!/bin/bash\nseq 1 500\n")

    outcome = run_script(
        LocalRuntime(),
        str(tmp_path),
        "noisy",
        options=RunScriptOptions(limits=_SMALL_LIMITS),
    )

    assert outcome.data is not None
    lines = outcome.data.stdout.splitlines()
    assert lines[:5] == ["1", "2", "3", "4", "5"]
    assert lines[-1] == "500"
    assert "[... 490 lines omitted ...]" in lines
    assert outcome.data.stderr.startswith(f"[{OVERFLOW_MARKER}")


def test_env_and_secrets_reach_the_script(tmp_path: Path) -> None:
    _write_script(tmp_path, "env", '#!/bin/bash\necho "$APP_MODE:$API_KEY"\n')

    outcome = run_script(
        LocalRuntime(),
        str(tmp_path),
        "env",
        options=RunScriptOptions(env={"APP_MODE": "test"}, secrets={"API_KEY": "s3cret"}),
    )

    assert outcome.data is not None
    assert outcome.data.stdout == "test:s3cret"


def test_timeout_is_reported(tmp_path: Path) -> None:
    _write_script(tmp_path, "slow", "#!/bin/bash\nsleep 30\n")

    outcome = run_script(
        LocalRuntime(terminate_grace_s=0.5),
        str(tmp_path),
        "slow",
        options=RunScriptOptions(timeout_s=0.5),
    )

    assert outcome.success
    assert outcome.data is not None
    assert outcome.data.exit_code == -1
    assert "timeout" in outcome.data.stderr


def test_observability_records_runs(tmp_path: Path) -> None:
    _write_script(tmp_path, "ok", "#!/bin/bash\necho ok\n")
    _write_script(tmp_path, "bad", "#!/bin/bash\nexit 2\n")
    manager = create_observability_manager()

    run_script(LocalRuntime(), str(tmp_path), "ok", observability=manager)
    run_script(LocalRuntime(), str(tmp_path), "bad", observability=manager)
    run_script(LocalRuntime(), str(tmp_path), "missing", observability=manager)

    snapshot = manager.metrics.snapshot()
    assert snapshot["counters"]["script.runs"] == 2
    assert snapshot["counters"]["script.rejected.not_found"] == 1
    assert snapshot["counters"]["script.failures"] == 1
    assert snapshot["durations"]["script.run"]["count"] == 2.0


def test_arun_script(tmp_path: Path) -> None:
    _write_script(tmp_path, "ok", "#!/bin/bash\necho async-ok\n")

    outcome = asyncio.run(arun_script(LocalRuntime(), str(tmp_path), "ok"))

    assert outcome.data is not None
    assert outcome.data.stdout == "async-ok"
