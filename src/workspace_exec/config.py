"""Configuration models and loaders for workspace-exec."""

from __future__ import annotations

import json
import os
import tomllib
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, TypeVar

from workspace_exec.execution.base import DEFAULT_TIMEOUT_S, OVERFLOW_POLICIES, OutputLimits

T = TypeVar("T")

RUNTIME_MODES: tuple[str, ...] = ("local", "ssh")
CONFIG_FILENAMES: tuple[str, ...] = ("workspace_exec.yaml", "workspace_exec.yml", "pyproject.toml")
CONFIG_PATH_ENV = "WORKSPACE_EXEC_CONFIG"


@dataclass(frozen=True)
class AppConfig:
    """Top-level configuration for the application.

    Attributes:
        workspace_root: Root path of the workspace whose scripts are run.
        runtime: Which backend the workspace lives on.
        execution: Defaults applied to every script run.
    """

    workspace_root: Path = Path(".")
    runtime: RuntimeConfig = field(default_factory=lambda: RuntimeConfig())
    execution: ExecutionConfig = field(default_factory=lambda: ExecutionConfig())


@dataclass(frozen=True)
class RuntimeConfig:
    """Where scripts run: ``local`` or over ``ssh`` to ``host``.

    ``remote_root`` is the workspace path on the SSH host. When it is unset the
    local ``workspace_root`` path is used on the host as well.
    """

    mode: str = "local"
    host: str | None = None
    port: int | None = None
    identity_file: str | None = None
    ssh_options: list[str] = field(default_factory=list)
    ssh_binary: str = "ssh"
    remote_root: str | None = None


@dataclass(frozen=True)
class ExecutionConfig:
    """Per-run defaults; CLI flags override them."""

    timeout_s: float = DEFAULT_TIMEOUT_S
    overflow_policy: str = "truncate"
    persistent_temp_dir: str | None = None
    terminate_grace_s: float = 2.0
    env: dict[str, str] = field(default_factory=dict)
    limits: OutputLimits = field(default_factory=OutputLimits)


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration for a workspace.

    Args:
        path: A config file, or a directory searched for ``CONFIG_FILENAMES`` in
            order. Without it, ``WORKSPACE_EXEC_CONFIG`` and then the current
            directory are used.

    Returns:
        Parsed AppConfig; defaults when no config file exists.

    Raises:
        ValueError: If the file is malformed or holds invalid values.
    """

    config_file = find_config_file(path)
    if config_file is None:
        return AppConfig()
    return _parse_app_config(_read_mapping(config_file), base_path=config_file.parent)


def find_config_file(path: Path | None = None) -> Path | None:
    """Return the config file ``load_config`` would read, or None."""

    if path is None:
        from_env = os.environ.get(CONFIG_PATH_ENV)
        path = Path(from_env) if from_env else Path(".")
    if not path.is_dir():
        return path if path.exists() else None
    for name in CONFIG_FILENAMES:
        candidate = path / name
        if candidate.is_file():
            return candidate
    return None


def config_to_dict(config: AppConfig) -> dict[str, Any]:
    """Serialize an AppConfig into a JSON-compatible dictionary."""

    runtime = config.runtime
    execution = config.execution
    return {
        "workspace_root": str(config.workspace_root),
        "runtime": {
            "mode": runtime.mode,
            "host": runtime.host,
            "port": runtime.port,
            "identity_file": runtime.identity_file,
            "ssh_options": list(runtime.ssh_options),
            "ssh_binary": runtime.ssh_binary,
            "remote_root": runtime.remote_root,
        },
        "execution": {
            "timeout_s": execution.timeout_s,
            "overflow_policy": execution.overflow_policy,
            "persistent_temp_dir": execution.persistent_temp_dir,
            "terminate_grace_s": execution.terminate_grace_s,
            "env": dict(execution.env),
            "limits": {
                limit.name: getattr(execution.limits, limit.name)
                for limit in fields(OutputLimits)
            },
        },
    }


def update_workspace_root(config: AppConfig, workspace_root: Path) -> AppConfig:
    return replace(config, workspace_root=workspace_root)


def update_runtime_mode(config: AppConfig, mode: str) -> AppConfig:
    """Return a copy using runtime ``mode``; unknown modes raise ValueError."""

    return replace(config, runtime=replace(config.runtime, mode=_validate_mode(mode)))


def _read_mapping(config_file: Path) -> dict[str, Any]:
    if config_file.suffix in (".yaml", ".yml"):
        data = _parse_yaml_text(config_file.read_text(encoding="utf-8"))
    elif config_file.suffix == ".toml":
        with config_file.open("rb") as handle:
            data = tomllib.load(handle)
        if config_file.name == "pyproject.toml":
            data = data.get("tool", {}).get("workspace_exec", {})
    else:
        raise ValueError(f"Unsupported config file type: {config_file}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration in {config_file} must be a mapping.")
    return data


def _parse_yaml_text(text: str) -> Any:
    # Files written by ``init`` are JSON, which needs no YAML parser.
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    import yaml

    return yaml.safe_load(text)


def _parse_app_config(raw: dict[str, Any], base_path: Path) -> AppConfig:
    workspace_root = Path(str(raw.get("workspace_root") or "."))
    if not workspace_root.is_absolute():
        workspace_root = (base_path / workspace_root).resolve()
    return AppConfig(
        workspace_root=workspace_root,
        runtime=_parse_runtime_config(_section(raw, "runtime")),
        execution=_parse_execution_config(_section(raw, "execution")),
    )


def _parse_runtime_config(raw: dict[str, Any]) -> RuntimeConfig:
    ssh_options = raw.get("ssh_options") or []
    if not isinstance(ssh_options, list):
        raise ValueError("runtime.ssh_options must be a list of strings.")
    config = RuntimeConfig(
        mode=_validate_mode(str(raw.get("mode", "local"))),
        host=_optional(raw.get("host"), str),
        port=_optional(raw.get("port"), int),
        identity_file=_optional(raw.get("identity_file"), str),
        ssh_options=[str(option) for option in ssh_options],
        ssh_binary=str(raw.get("ssh_binary", "ssh")),
        remote_root=_optional(raw.get("remote_root"), str),
    )
    if config.remote_root is not None and not config.remote_root.startswith("/"):
        raise ValueError("runtime.remote_root must be an absolute path.")
    if config.mode == "ssh" and not config.host:
        raise ValueError("runtime.host is required when runtime.mode is 'ssh'.")
    return config


def _parse_execution_config(raw: dict[str, Any]) -> ExecutionConfig:
    overflow_policy = str(raw.get("overflow_policy", "truncate"))
    if overflow_policy not in OVERFLOW_POLICIES:
        raise ValueError(
            f"execution.overflow_policy must be one of {', '.join(OVERFLOW_POLICIES)}."
        )
    env = _section(raw, "env", label="execution.env")
    return ExecutionConfig(
        timeout_s=float(raw.get("timeout_s", DEFAULT_TIMEOUT_S)),
        overflow_policy=overflow_policy,
        persistent_temp_dir=_optional(raw.get("persistent_temp_dir"), str),
        terminate_grace_s=float(raw.get("terminate_grace_s", 2.0)),
        env={str(key): str(value) for key, value in env.items()},
        limits=_parse_limits(_section(raw, "limits", label="execution.limits")),
    )


def _parse_limits(raw: dict[str, Any]) -> OutputLimits:
    known = {limit.name for limit in fields(OutputLimits)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValueError(f"Unknown execution.limits keys: {', '.join(unknown)}")
    return OutputLimits(**{key: int(value) for key, value in raw.items()})


def _section(raw: dict[str, Any], key: str, *, label: str | None = None) -> dict[str, Any]:
    value = raw.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{label or key} must be a mapping.")
    return value


def _validate_mode(mode: str) -> str:
    if mode not in RUNTIME_MODES:
        raise ValueError(f"Unsupported runtime mode: {mode}")
    return mode


def _optional(value: Any, cast: Callable[[Any], T]) -> T | None:
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    return cast(value)
