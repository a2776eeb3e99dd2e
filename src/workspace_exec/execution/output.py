"""Bounded collection of command output lines."""

from __future__ import annotations

import threading

from workspace_exec.execution.base import OutputLimits, OverflowPolicy
from workspace_exec.util.circular_buffer import CircularBuffer


class OutputCollector:
    """Accumulates output lines until the configured limits are exceeded.

    Before overflow every line is retained. At the first overflow the truncate
    policy keeps the leading lines and moves everything else into a ring buffer
    that only remembers the most recent lines. The tmpfile policy keeps the full
    output for the spill file up to ``max_spill_bytes``; past that it stops
    retaining lines and raises ``spill_limit_reached`` so the engine can stop
    the command.

    ``add`` may be called from the stdout and stderr reader threads at once.
    """

    def __init__(self, limits: OutputLimits, policy: OverflowPolicy) -> None:
        self._limits = limits
        self._policy = policy
        self._lock = threading.Lock()
        self._lines: list[str] = []
        self._head: list[str] = []
        self._tail: CircularBuffer[str] = CircularBuffer(limits.truncate_tail_lines)
        self._total_lines = 0
        self._total_bytes = 0
        self._retained_bytes = 0
        self._spill_limit_reached = False
        self._overflow_reason: str | None = None

    @property
    def overflow_reason(self) -> str | None:
        return self._overflow_reason

    @property
    def total_lines(self) -> int:
        return self._total_lines

    @property
    def total_bytes(self) -> int:
        return self._total_bytes

    @property
    def spill_limit_reached(self) -> bool:
        return self._spill_limit_reached

    @property
    def retained_lines(self) -> int:
        """Number of lines currently held in memory."""

        with self._lock:
            return len(self._lines) + len(self._head) + len(self._tail)

    def add(self, line: str) -> None:
        """Record one output line (without its trailing newline)."""

        line_bytes = len(line.encode("utf-8"))
        with self._lock:
            self._total_lines += 1
            self._total_bytes += line_bytes + 1
            if self._overflow_reason is None:
                self._overflow_reason = self._check_limits(line_bytes)
                if self._overflow_reason is not None and self._policy == "truncate":
                    self._start_truncating()
            if self._overflow_reason is None:
                self._retain(line, line_bytes)
            elif self._policy == "tmpfile":
                if (
                    self._spill_limit_reached
                    or self._retained_bytes + line_bytes + 1 > self._limits.max_spill_bytes
                ):
                    self._spill_limit_reached = True
                else:
                    self._retain(line, line_bytes)
            else:
                self._tail.push(self._clip(line))

    def text(self) -> str:
        """Return the output as the agent should see it."""

        with self._lock:
            if self._overflow_reason is None or self._policy == "tmpfile":
                return "\n".join(self._lines)
            tail = self._tail.to_list()
            omitted = self._total_lines - len(self._head) - len(tail)
            parts = list(self._head)
            if omitted > 0:
                parts.append(f"[... {omitted} lines omitted ...]")
            parts.extend(tail)
            return "\n".join(parts)

    def full_text(self) -> str:
        """Return every line captured by the tmpfile policy."""

        with self._lock:
            return "\n".join(self._lines) + ("\n" if self._lines else "")

    def _retain(self, line: str, line_bytes: int) -> None:
        self._lines.append(line)
        self._retained_bytes += line_bytes + 1

    def _check_limits(self, line_bytes: int) -> str | None:
        limits = self._limits
        if line_bytes > limits.max_line_bytes:
            return f"line {self._total_lines} exceeded {limits.max_line_bytes} bytes"
        if self._total_lines > limits.max_lines:
            return f"exceeded {limits.max_lines} lines"
        if self._total_bytes > limits.max_total_bytes:
            return f"exceeded {limits.max_total_bytes} bytes"
        return None

    def _start_truncating(self) -> None:
        head_count = self._limits.truncate_head_lines
        self._head = [self._clip(line) for line in self._lines[:head_count]]
        for line in self._lines[head_count:]:
            self._tail.push(self._clip(line))
        self._lines = []
        self._retained_bytes = 0

    def _clip(self, line: str) -> str:
        limit = self._limits.max_line_bytes
        encoded = line.encode("utf-8")
        if len(encoded) <= limit:
            return line
        return encoded[:limit].decode("utf-8", errors="ignore") + " [line truncated]"
