"""CLI entrypoints for workspace-exec."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer

from workspace_exec.app import (
    AppConfigError,
    initialize_config,
    list_workspace_scripts,
    run_workspace_script,
)
from workspace_exec.util.logging import configure_logging

app = typer.Typer(help="Run workspace scripts on a local or remote runtime.")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Logging level (e.g., DEBUG, INFO). Defaults to $WORKSPACE_EXEC_LOG_LEVEL or WARNING.",
    ),
) -> None:
    """Configure CLI-level options."""

    configure_logging(log_level)


@app.command()
def init(
    workspace: Path = typer.Argument(Path("."), help="Workspace to initialize."),
    runtime_mode: str = typer.Option("local", "--runtime", help="Runtime mode: local|ssh"),
    host: Optional[str] = typer.Option(None, "--host", help="SSH destination for --runtime ssh."),
    remote_root: Optional[str] = typer.Option(
        None, "--remote-root", help="Workspace path on the SSH host (defaults to the local path)."
    ),
    force: bool = typer.Option(False, "--force", help="Replace an existing config file."),
) -> None:
    """Write a default workspace_exec.yaml for a workspace."""

    try:
        config_path = initialize_config(
            workspace, runtime_mode=runtime_mode, host=host, remote_root=remote_root, force=force
        )
    except AppConfigError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1) from exc
    typer.echo(f"Wrote {config_path}")


@app.command("list")
def list_command(
    workspace: Path = typer.Option(
        Path("."),
        "--workspace",
        "-w",
        help="Path to the workspace root.",
    ),
    runtime_mode: Optional[str] = typer.Option(
        None,
        "--runtime",
        help="Runtime mode override: local|ssh",
    ),
) -> None:
    """List executable workspace scripts."""

    try:
        scripts = list_workspace_scripts(workspace, runtime_mode=runtime_mode)
    except Exception as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1) from exc

    executable = [script for script in scripts if script.is_executable]
    if not executable:
        typer.echo("No executable scripts found.")
        return
    for script in executable:
        suffix = f" - {script.description}" if script.description else ""
        typer.echo(f"{script.name}{suffix}")


@app.command("run")
def run_command(
    script_name: str = typer.Argument(..., help="Script name to run."),
    args: Optional[List[str]] = typer.Argument(None, help="Arguments passed to the script."),
    workspace: Path = typer.Option(
        Path("."),
        "--workspace",
        "-w",
        help="Path to the workspace root.",
    ),
    runtime_mode: Optional[str] = typer.Option(
        None,
        "--runtime",
        help="Runtime mode override: local|ssh",
    ),
    timeout_s: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Timeout in seconds (default from config, 300).",
    ),
    overflow_policy: Optional[str] = typer.Option(
        None,
        "--overflow-policy",
        help="Overflow policy: truncate|tmpfile",
    ),
    persistent_temp_dir: Optional[str] = typer.Option(
        None,
        "--persistent-temp-dir",
        help="Temp root whose overflow logs outlive the run.",
    ),
    env: Optional[List[str]] = typer.Option(
        None,
        "--env",
        "-e",
        help="Extra environment variable as KEY=VALUE (repeatable).",
    ),
) -> None:
    """Run a workspace script and exit with its exit code."""

    try:
        env_map = _parse_env(env or [])
        outcome = run_workspace_script(
            script_name,
            list(args or []),
            workspace,
            runtime_mode=runtime_mode,
            timeout_s=timeout_s,
            overflow_policy=overflow_policy,
            persistent_temp_dir=persistent_temp_dir,
            env=env_map,
        )
    except (AppConfigError, typer.BadParameter) as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=1) from exc

    if not outcome.success or outcome.data is None:
        typer.echo(f"Error: {outcome.error}", err=True)
        raise typer.Exit(code=1)

    data = outcome.data
    if data.stdout:
        typer.echo(data.stdout)
    if data.stderr:
        typer.echo(data.stderr, err=True)
    if data.exit_code != 0:
        raise typer.Exit(code=data.exit_code if data.exit_code > 0 else 1)
    if not data.raw_result.success:
        raise typer.Exit(code=1)


def _parse_env(entries: list[str]) -> dict[str, str]:
    env: dict[str, str] = {}
    for entry in entries:
        key, separator, value = entry.partition("=")
        if not separator or not key:
            raise typer.BadParameter(f"Expected KEY=VALUE, got {entry!r}")
        env[key] = value
    return env
