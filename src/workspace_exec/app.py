"""Application wiring for CLI-friendly script execution."""

from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path

from workspace_exec.config import (
    CONFIG_FILENAMES,
    AppConfig,
    RuntimeConfig,
    config_to_dict,
    load_config,
    update_runtime_mode,
    update_workspace_root,
)
from workspace_exec.execution.base import OVERFLOW_POLICIES
from workspace_exec.runtime.base import Runtime
from workspace_exec.runtime.local import LocalRuntime
from workspace_exec.runtime.ssh import SSHRuntime
from workspace_exec.scripts.discovery import WorkspaceScript, list_scripts
from workspace_exec.scripts.runner import RunScriptOptions, ScriptRunResult, run_script
from workspace_exec.util.logging import get_logger
from workspace_exec.util.observability import ObservabilityManager, create_observability_manager


class AppConfigError(RuntimeError):
    """Raised when configuration or runtime setup fails."""


_LOGGER = get_logger("workspace_exec.app")


def initialize_config(
    workspace: Path,
    *,
    runtime_mode: str = "local",
    host: str | None = None,
    remote_root: str | None = None,
    force: bool = False,
) -> Path:
    """Write a default ``workspace_exec.yaml`` (JSON content) into ``workspace``.

    Args:
        workspace: Workspace directory; also recorded as ``workspace_root``.
        runtime_mode: Runtime to configure, ``local`` or ``ssh``.
        host: SSH destination, required for the ``ssh`` runtime.
        remote_root: Workspace path on the SSH host, when it differs from the
            local path.
        force: Overwrite an existing config file.

    Returns:
        Path of the written file.

    Raises:
        AppConfigError: If the file exists and ``force`` is false, or the runtime
            settings are invalid.
    """

    root = workspace.resolve()
    target = root / CONFIG_FILENAMES[0]
    if target.exists() and not force:
        raise AppConfigError(f"Config file already exists at {target}. Use --force to replace it.")
    try:
        config = update_runtime_mode(AppConfig(workspace_root=root), runtime_mode)
    except ValueError as exc:
        raise AppConfigError(str(exc)) from exc
    if config.runtime.mode == "ssh":
        if not host:
            raise AppConfigError("SSH runtime requires a host.")
        if remote_root is not None and not remote_root.startswith("/"):
            raise AppConfigError("Remote workspace root must be an absolute path.")
        config = replace(
            config, runtime=replace(config.runtime, host=host, remote_root=remote_root)
        )

    target.write_text(json.dumps(config_to_dict(config), indent=2) + "\n", encoding="utf-8")
    _LOGGER.info("Wrote %s runtime configuration to %s", config.runtime.mode, target)
    return target


def create_runtime(config: RuntimeConfig, terminate_grace_s: float = 2.0) -> Runtime:
    """Build the runtime backend named by ``config.mode``."""

    if config.mode == "local":
        return LocalRuntime(terminate_grace_s=terminate_grace_s)
    if config.mode == "ssh":
        if not config.host:
            raise AppConfigError("SSH runtime requires runtime.host to be configured.")
        return SSHRuntime(
            config.host,
            port=config.port,
            identity_file=config.identity_file,
            ssh_options=config.ssh_options,
            ssh_binary=config.ssh_binary,
            terminate_grace_s=terminate_grace_s,
        )
    raise ValueError(f"Unsupported runtime mode: {config.mode}")


def runtime_workspace_root(config: AppConfig) -> str:
    """Return the workspace path as seen by the configured runtime."""

    if config.runtime.mode == "ssh" and config.runtime.remote_root:
        return config.runtime.remote_root
    return str(config.workspace_root)


def list_workspace_scripts(
    workspace: Path,
    runtime_mode: str | None = None,
) -> list[WorkspaceScript]:
    """List the scripts of a workspace using its configured runtime."""

    config = _load_workspace_config(workspace, runtime_mode)
    runtime = create_runtime(config.runtime, config.execution.terminate_grace_s)
    return list_scripts(runtime, runtime_workspace_root(config))


def run_workspace_script(
    script_name: str,
    args: list[str],
    workspace: Path,
    *,
    runtime_mode: str | None = None,
    timeout_s: float | None = None,
    overflow_policy: str | None = None,
    persistent_temp_dir: str | None = None,
    env: dict[str, str] | None = None,
    observability: ObservabilityManager | None = None,
) -> ScriptRunResult:
    """Run one workspace script with configuration defaults and overrides.

    Args:
        script_name: Script file name.
        args: Positional arguments for the script.
        workspace: Path to the workspace root (or its config file directory).
        runtime_mode: Optional override for the runtime mode.
        timeout_s: Optional timeout override.
        overflow_policy: Optional overflow policy override.
        persistent_temp_dir: Optional persistent temp root override.
        env: Extra environment variables merged over the configured ones.
        observability: Optional observability manager; a default one is created.

    Returns:
        ScriptRunResult from the runner.
    """

    config = _load_workspace_config(workspace, runtime_mode)
    execution = config.execution
    if overflow_policy is not None and overflow_policy not in OVERFLOW_POLICIES:
        raise AppConfigError(
            f"Unsupported overflow policy: {overflow_policy}. "
            f"Expected one of {', '.join(OVERFLOW_POLICIES)}."
        )
    runtime = create_runtime(config.runtime, execution.terminate_grace_s)
    workspace_root = runtime_workspace_root(config)
    options = RunScriptOptions(
        env={**execution.env, **(env or {})},
        timeout_s=timeout_s if timeout_s is not None else execution.timeout_s,
        overflow_policy=overflow_policy or execution.overflow_policy,  # type: ignore[arg-type]
        persistent_temp_dir=persistent_temp_dir or execution.persistent_temp_dir,
        limits=execution.limits,
    )
    return run_script(
        runtime,
        workspace_root,
        script_name,
        args,
        options,
        observability=observability
        or create_observability_manager({"workspace": workspace_root}),
    )


def _load_workspace_config(workspace: Path, runtime_mode: str | None) -> AppConfig:
    workspace = workspace.resolve()
    try:
        config = load_config(workspace)
        if config.workspace_root == Path("."):
            config = update_workspace_root(config, workspace)
        if runtime_mode is not None:
            config = update_runtime_mode(config, runtime_mode)
    except ValueError as exc:
        raise AppConfigError(str(exc)) from exc
    if config.runtime.mode == "ssh" and not config.runtime.host:
        raise AppConfigError("SSH runtime requires runtime.host to be configured.")
    return config
