"""Bash execution engine types."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Final, Literal

OverflowPolicy = Literal["truncate", "tmpfile"]

OVERFLOW_POLICIES: Final[tuple[str, ...]] = ("truncate", "tmpfile")
OVERFLOW_MARKER: Final[str] = "OUTPUT OVERFLOW"
DEFAULT_TIMEOUT_S: Final[float] = 300.0

TIMEOUT_EXIT_CODE: Final[int] = -1
ABORTED_EXIT_CODE: Final[int] = -2


@dataclass(frozen=True)
class OutputLimits:
    """Bounds applied to captured command output.

    Attributes:
        max_lines: Line count above which output overflows.
        max_total_bytes: Byte count above which output overflows.
        max_line_bytes: Size above which a single line overflows.
        truncate_head_lines: Leading lines kept by the truncate policy.
        truncate_tail_lines: Trailing lines kept by the truncate policy.
        max_spill_bytes: Bytes the tmpfile policy holds for its spill file; a
            command still writing past it is terminated.
    """

    max_lines: int = 300
    max_total_bytes: int = 16 * 1024
    max_line_bytes: int = 1024
    truncate_head_lines: int = 50
    truncate_tail_lines: int = 100
    max_spill_bytes: int = 8 * 1024 * 1024

    def __post_init__(self) -> None:
        if min(self.max_lines, self.max_total_bytes, self.max_line_bytes, self.max_spill_bytes) < 1:
            raise ValueError("Output limits must be positive.")
        if self.truncate_head_lines < 0 or self.truncate_tail_lines < 1:
            raise ValueError("Truncation windows must be non-negative with at least one tail line.")


@dataclass(frozen=True)
class BashInvocation:
    """One bash command to run through the engine.

    Attributes:
        script: Shell command text, already quoted by the caller.
        cwd: Working directory on the runtime.
        temp_dir: Execution-scoped temp directory; exported as TMPDIR and used
            for overflow spill files.
        timeout_s: Wall-clock limit in seconds.
        env: Extra environment variables.
        secrets: Secret environment variables layered over ``env``.
        overflow_policy: What to do when output exceeds the limits.
        abort_signal: Optional event that cancels the command when set.
    """

    script: str
    cwd: str
    temp_dir: str
    timeout_s: float = DEFAULT_TIMEOUT_S
    env: dict[str, str] = field(default_factory=dict)
    secrets: dict[str, str] = field(default_factory=dict)
    overflow_policy: OverflowPolicy = "truncate"
    abort_signal: threading.Event | None = None


@dataclass(frozen=True)
class BashResult:
    """Outcome of a bash invocation.

    Attributes:
        success: Whether the command exited 0 without overflow.
        output: Captured output (truncated, or empty after a tmpfile spill).
        exit_code: Process exit code; -1 on timeout and -2 on abort.
        wall_duration_ms: Wall-clock duration in milliseconds.
        error: Failure description when ``success`` is false.
    """

    success: bool
    output: str
    exit_code: int
    wall_duration_ms: int
    error: str | None = None

    @property
    def overflowed(self) -> bool:
        return self.error is not None and OVERFLOW_MARKER in self.error
