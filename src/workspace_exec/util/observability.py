"""Structured run events and metrics for script executions."""

from __future__ import annotations

import json
import time
from collections.abc import Iterable
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from typing import Any, Iterator

from workspace_exec.util.logging import get_logger, normalize_level, redact_secrets

EVENTS_LOGGER_NAME = "workspace_exec.events"


@dataclass(frozen=True)
class LogEvent:
    """One machine-readable event.

    Attributes:
        event_type: Dotted event name, e.g. ``script.run.completed``.
        timestamp: Unix timestamp in seconds.
        payload: Event data, already scrubbed of secrets.
        context: Fields shared by every event of a logger.
    """

    event_type: str
    timestamp: float
    payload: dict[str, Any]
    context: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True, default=str)


class EventLogger:
    """Emits ``LogEvent`` records as JSON lines on a stdlib logger.

    Payload strings have known secret values replaced, and any ``env`` mapping
    is reduced to its sorted keys so variable values never reach the log.
    """

    def __init__(
        self,
        logger_name: str,
        context: dict[str, Any] | None = None,
        redact_values: Iterable[str] = (),
    ) -> None:
        self._logger_name = logger_name
        self._logger = get_logger(logger_name)
        self._context = dict(context or {})
        self._redact_values = tuple(redact_values)

    def with_redactions(self, values: Iterable[str]) -> EventLogger:
        """Return a logger sharing this one's output that also hides ``values``."""

        return EventLogger(
            self._logger_name,
            context=self._context,
            redact_values=(*self._redact_values, *values),
        )

    def log(
        self,
        event_type: str,
        payload: dict[str, Any],
        *,
        level: str = "INFO",
        context: dict[str, Any] | None = None,
    ) -> None:
        event = LogEvent(
            event_type=event_type,
            timestamp=time.time(),
            payload=self._sanitize(payload),
            context={**self._context, **(context or {})},
        )
        self._logger.log(normalize_level(level), event.to_json())

    def _sanitize(self, value: Any) -> Any:
        if isinstance(value, str):
            return redact_secrets(value, self._redact_values)
        if isinstance(value, (list, tuple)):
            return [self._sanitize(item) for item in value]
        if isinstance(value, dict):
            cleaned: dict[str, Any] = {}
            for key, item in value.items():
                if key == "env" and isinstance(item, dict):
                    cleaned["env_keys"] = sorted(str(name) for name in item)
                    continue
                cleaned[str(key)] = self._sanitize(item)
            return cleaned
        return value


@dataclass
class MetricsCollector:
    """In-memory counters and timings for script runs.

    Counter names used by the runner: ``script.runs``, ``script.failures`` and
    ``script.rejected.<kind>``. Durations: ``script.run``.
    """

    counters: dict[str, int] = field(default_factory=dict)
    durations: dict[str, list[float]] = field(default_factory=dict)

    def increment(self, name: str, value: int = 1) -> None:
        self.counters[name] = self.counters.get(name, 0) + value

    def record_duration(self, name: str, duration_s: float) -> None:
        self.durations.setdefault(name, []).append(duration_s)

    def snapshot(self) -> dict[str, Any]:
        """Return counters plus count/total/avg/max per duration metric."""

        timings: dict[str, dict[str, float]] = {}
        for name, values in self.durations.items():
            total = sum(values)
            timings[name] = {
                "count": float(len(values)),
                "total_s": total,
                "avg_s": total / len(values) if values else 0.0,
                "max_s": max(values, default=0.0),
            }
        return {"counters": dict(self.counters), "durations": timings}


@dataclass(frozen=True)
class ObservabilityManager:
    """Event logger and metrics handed to the runner as one object."""

    events: EventLogger
    metrics: MetricsCollector

    def log_event(self, event_type: str, payload: dict[str, Any], *, level: str = "INFO") -> None:
        self.events.log(event_type, payload, level=level)

    def with_secrets(self, secrets: Iterable[str]) -> ObservabilityManager:
        """Return a manager whose events hide ``secrets``; metrics stay shared."""

        return ObservabilityManager(
            events=self.events.with_redactions(secrets), metrics=self.metrics
        )

    @contextmanager
    def track_duration(self, metric_name: str) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            self.metrics.record_duration(metric_name, time.perf_counter() - start)


def create_observability_manager(context: dict[str, Any] | None = None) -> ObservabilityManager:
    """Create a manager logging to ``workspace_exec.events`` with fresh metrics."""

    return ObservabilityManager(
        events=EventLogger(EVENTS_LOGGER_NAME, context=context),
        metrics=MetricsCollector(),
    )
