"""Bash execution engine package."""

from workspace_exec.execution.base import (
    OVERFLOW_MARKER,
    OVERFLOW_POLICIES,
    BashInvocation,
    BashResult,
    OutputLimits,
    OverflowPolicy,
)
from workspace_exec.execution.bash import BashEngine
from workspace_exec.execution.output import OutputCollector

__all__ = [
    "BashEngine",
    "BashInvocation",
    "BashResult",
    "OVERFLOW_MARKER",
    "OVERFLOW_POLICIES",
    "OutputCollector",
    "OutputLimits",
    "OverflowPolicy",
]
