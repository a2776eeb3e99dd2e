"""Locate workspace scripts and read their descriptions."""

from __future__ import annotations

import posixpath
import re
from dataclasses import dataclass
from typing import Final

from workspace_exec.runtime.base import Runtime, RuntimeExecError, shell_quote

SCRIPTS_DIR: Final[str] = ".workspace/scripts"
LEGACY_SCRIPTS_DIR: Final[str] = ".scripts"

_HEADER_LINES = 20
_RECORD_MARKER = "@@workspace-script@@"
_DESCRIPTION_PATTERN = re.compile(r"^#\s*description:\s*(.*)$", re.IGNORECASE)


@dataclass(frozen=True)
class WorkspaceScript:
    """A script found in a workspace scripts directory.

    Attributes:
        name: File name of the script, used as its invocation name.
        description: Text of the ``# Description:`` header, or empty.
        is_executable: Whether the file has an execute bit set.
    """

    name: str
    description: str
    is_executable: bool


def get_scripts_dir(workspace_root: str) -> str:
    return posixpath.join(workspace_root, SCRIPTS_DIR)


def get_legacy_scripts_dir(workspace_root: str) -> str:
    return posixpath.join(workspace_root, LEGACY_SCRIPTS_DIR)


def get_script_path(workspace_root: str, script_name: str) -> str:
    return posixpath.join(get_scripts_dir(workspace_root), script_name)


def get_legacy_script_path(workspace_root: str, script_name: str) -> str:
    return posixpath.join(get_legacy_scripts_dir(workspace_root), script_name)


def parse_script_description(header: str) -> str:
    """Extract the ``# Description:`` value from a script's leading comments.

    Only the initial comment block is searched; the first non-comment,
    non-blank line ends it. A shebang on the first line is skipped.
    """

    for index, raw_line in enumerate(header.splitlines()):
        line = raw_line.strip()
        if index == 0 and line.startswith("#!"):
            continue
        if not line:
            continue
        if not line.startswith("#"):
            break
        match = _DESCRIPTION_PATTERN.match(line)
        if match:
            return match.group(1).strip()
    return ""


def list_scripts(runtime: Runtime, workspace_root: str) -> list[WorkspaceScript]:
    """List scripts from the canonical and legacy directories.

    A name present in both directories is reported from the canonical one.

    Args:
        runtime: Runtime the workspace lives on.
        workspace_root: Workspace root path on that runtime.

    Returns:
        Scripts sorted by name.
    """

    found: dict[str, WorkspaceScript] = {}
    for directory in (get_legacy_scripts_dir(workspace_root), get_scripts_dir(workspace_root)):
        for script in _list_directory(runtime, directory):
            found[script.name] = script
    return [found[name] for name in sorted(found)]


def _list_directory(runtime: Runtime, directory: str) -> list[WorkspaceScript]:
    command = (
        f"cd {shell_quote(directory)} 2>/dev/null || exit 0\n"
        "tab=$(printf '\\t'); nl=$(printf '\\nx'); nl=${nl%x}\n"
        "for f in *; do\n"
        '  [ -f "$f" ] || continue\n'
        '  case "$f" in *"$tab"*|*"$nl"*) continue ;; esac\n'
        '  if [ -x "$f" ]; then x=1; else x=0; fi\n'
        f"  printf '%s\\t%s\\t%s\\n' {shell_quote(_RECORD_MARKER)} \"$x\" \"$f\"\n"
        f'  head -n {_HEADER_LINES} -- "$f" 2>/dev/null | sed "s/^/|/" || true\n'
        "done\n"
    )
    result = runtime.exec_buffered(command, timeout_s=30)
    if result.exit_code != 0:
        raise RuntimeExecError(
            f"Failed to list scripts in {directory}: {result.stderr.strip() or result.exit_code}"
        )

    scripts: list[WorkspaceScript] = []
    name: str | None = None
    executable = False
    header: list[str] = []
    for line in result.stdout.splitlines():
        if line.startswith(_RECORD_MARKER + "\t"):
            if name is not None:
                scripts.append(_make_script(name, executable, header))
            _, flag, name = line.split("\t", 2)
            executable = flag == "1"
            header = []
        elif name is not None and line.startswith("|"):
            header.append(line[1:])
    if name is not None:
        scripts.append(_make_script(name, executable, header))
    return scripts


def _make_script(name: str, executable: bool, header: list[str]) -> WorkspaceScript:
    return WorkspaceScript(
        name=name,
        description=parse_script_description("\n".join(header)),
        is_executable=executable,
    )
