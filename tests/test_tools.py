from __future__ import annotations

from pathlib import Path

import pytest

from workspace_exec.execution.base import OVERFLOW_MARKER, OutputLimits
from workspace_exec.runtime.base import ExecResult
from workspace_exec.runtime.local import LocalRuntime
from workspace_exec.scripts.discovery import WorkspaceScript
from workspace_exec.tools.base import ToolExecutionError
from workspace_exec.tools.registry import (
    ToolNotFoundError,
    ToolRegistrationError,
    ToolRegistry,
)
from workspace_exec.tools.scripts import (
    NO_STDOUT,
    ScriptTool,
    register_script_tools,
    script_tool_name,
)


def _write_script(workspace: Path, name: str, body: str, executable: bool = True) -> None:
    scripts_dir = workspace / ".workspace" / "scripts"
    scripts_dir.mkdir(parents=True, exist_ok=True)
    path = scripts_dir / name
    path.write_text(body, encoding="utf-8")
    path.chmod(0o755 if executable else 0o644)


def _tool(workspace: Path, name: str, **kwargs: object) -> ScriptTool:
    return ScriptTool(
        script=WorkspaceScript(name=name, description="", is_executable=True),
        runtime=LocalRuntime(),
        workspace_root=str(workspace),
        **kwargs,
    )


def test_script_tool_name_sanitizes() -> None:
    assert script_tool_name("deploy-prod") == "script_deploy_prod"
    assert script_tool_name("lint.sh") == "script_lint_sh"
    assert script_tool_name("build") == "script_build"


def test_script_tool_returns_stdout(tmp_path: Path) -> None:
    _write_script(tmp_path, "hello", '#!/bin/bash\necho "hi $1"\n')

    result = _tool(tmp_path, "hello").execute({"args": ["there"]})

    assert result.success
    assert result.name == "script_hello"
    assert result.output == "hi there"
    assert result.error is None


def test_script_tool_reports_empty_stdout(tmp_path: Path) -> None:
    _write_script(tmp_path, "quiet", "#!/bin/bash\ntrue\n")

    result = _tool(tmp_path, "quiet").execute({})

    assert result.success
    assert result.output == NO_STDOUT


def test_script_tool_formats_failures(tmp_path: Path) -> None:
    _write_script(tmp_path, "fail", "#!/bin/bash\necho nope\nexit 3\n")

    result = _tool(tmp_path, "fail").execute({"args": None})

    assert not result.success
    assert result.output == "nope\n\nError: Command exited with code 3\n(Exit Code: 3)"
    assert result.error == "Command exited with code 3"


def test_script_tool_spills_overflow_to_log(tmp_path: Path) -> None:
    _write_script(tmp_path, "noisy", "#!/bin/bash\nseq 1 400\n")
    limits = OutputLimits(max_lines=50, truncate_head_lines=5, truncate_tail_lines=5)

    result = _tool(
        tmp_path,
        "noisy",
        persistent_temp_dir=str(tmp_path / "persist"),
        limits=limits,
    ).execute({})

    assert not result.success
    assert result.output.startswith(f"{NO_STDOUT}\n\nError: [{OVERFLOW_MARKER}")
    assert result.output.endswith("(Exit Code: 0)")
    logs = list((tmp_path / "persist").glob("script-*/bash-*.txt"))
    assert len(logs) == 1
    assert logs[0].read_text(encoding="utf-8").splitlines()[-1] == "400"


def test_script_tool_returns_runner_failures(tmp_path: Path) -> None:
    result = _tool(tmp_path, "gone").execute({})

    assert not result.success
    assert result.output is None
    assert result.error is not None
    assert result.error.startswith("Script not found: .workspace/scripts/gone.")


def test_script_tool_rejects_bad_arguments(tmp_path: Path) -> None:
    with pytest.raises(ToolExecutionError):
        _tool(tmp_path, "x").execute({"args": "not-a-list"})
    with pytest.raises(ToolExecutionError):
        _tool(tmp_path, "x").execute({"args": [1, 2]})


def test_register_script_tools_skips_non_executable(tmp_path: Path) -> None:
    _write_script(tmp_path, "deploy-prod", "#!/bin/bash\n# Description: Deploy\necho ok\n")
    _write_script(tmp_path, "README", "notes\n", executable=False)
    registry = ToolRegistry()

    names = register_script_tools(registry, LocalRuntime(), str(tmp_path))

    assert names == ["script_deploy_prod"]
    assert registry.names() == ["script_deploy_prod"]
    tool = registry.get("script_deploy_prod")
    assert tool.description == "Deploy"
    assert registry.execute("script_deploy_prod", {}).output == "ok"
    with pytest.raises(ToolNotFoundError):
        registry.get("script_README")


def test_register_script_tools_logs_discovery_failure(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    runtime = LocalRuntime()
    monkeypatch.setattr(
        runtime,
        "exec_buffered",
        lambda *args, **kwargs: ExecResult(exit_code=1, stdout="", stderr="boom", duration_ms=0),
    )
    registry = ToolRegistry()

    names = register_script_tools(registry, runtime, str(tmp_path))

    assert names == []
    assert registry.names() == []
    assert "Failed to discover workspace scripts" in caplog.text


def test_registry_rejects_duplicates(tmp_path: Path) -> None:
    registry = ToolRegistry()
    registry.register(_tool(tmp_path, "same"))

    with pytest.raises(ToolRegistrationError):
        registry.register(_tool(tmp_path, "same"))


def test_script_tool_reports_exit_code_and_schema(tmp_path: Path) -> None:
    _write_script(tmp_path, "fail", "#!/bin/bash\nexit 4\n")
    tool = _tool(tmp_path, "fail")

    result = tool.execute({})

    assert result.exit_code == 4
    assert tool.input_schema["properties"]["args"]["type"] == "array"
    assert tool.describe()["name"] == "script_fail"


def test_script_tool_redacts_secret_values(tmp_path: Path) -> None:
    _write_script(tmp_path, "leak", '#!/bin/bash\necho "token=$API_TOKEN"\nexit 1\n')

    result = _tool(tmp_path, "leak", secrets={"API_TOKEN": "hunter2-secret"}).execute({})

    assert result.output is not None
    assert "hunter2-secret" not in result.output
    assert "token=<redacted>" in result.output


def test_register_script_tools_refresh_drops_deleted_scripts(tmp_path: Path) -> None:
    _write_script(tmp_path, "keep", "#!/bin/bash\necho keep\n")
    _write_script(tmp_path, "gone", "#!/bin/bash\necho gone\n")
    registry = ToolRegistry()
    runtime = LocalRuntime()
    assert register_script_tools(registry, runtime, str(tmp_path)) == [
        "script_gone",
        "script_keep",
    ]

    (tmp_path / ".workspace" / "scripts" / "gone").unlink()
    names = register_script_tools(registry, runtime, str(tmp_path), refresh=True)

    assert names == ["script_keep"]
    assert registry.names() == ["script_keep"]
    assert "script_gone" not in registry


def test_registry_describe_and_unregister(tmp_path: Path) -> None:
    registry = ToolRegistry()
    registry.register(_tool(tmp_path, "b"))
    registry.register(_tool(tmp_path, "a"))

    described = registry.describe()

    assert [entry["name"] for entry in described] == ["script_a", "script_b"]
    assert described[0]["description"] == "Run the workspace script 'a'."
    registry.unregister("script_a")
    assert len(registry) == 1
    with pytest.raises(ToolNotFoundError):
        registry.unregister("script_a")
