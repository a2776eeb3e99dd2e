"""Utility helpers package."""

from workspace_exec.util.circular_buffer import CircularBuffer
from workspace_exec.util.logging import configure_logging, get_logger, redact_secrets
from workspace_exec.util.observability import (
    EventLogger,
    MetricsCollector,
    ObservabilityManager,
    create_observability_manager,
)

__all__ = [
    "CircularBuffer",
    "EventLogger",
    "MetricsCollector",
    "ObservabilityManager",
    "configure_logging",
    "create_observability_manager",
    "get_logger",
    "redact_secrets",
]
