"""Telemetry settings and reporter interfaces.

No-op unless a call carries ``TelemetrySettings(enabled=True)`` and at least
one reporter is registered.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Protocol, runtime_checkable

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class TelemetrySettings:
    """Per-call telemetry flag handed to the streaming backend."""

    enabled: bool = False
    #: Groups calls in reporter output (e.g. the feature that issued them).
    function_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class TelemetryReporter(Protocol):
    """Duck-typed protocol for telemetry reporters."""

    def record_timing(self, scope: str, duration: float, **metadata: Any) -> None: ...  # noqa: D102
    def record_metric(self, scope: str, value: Any, **metadata: Any) -> None: ...  # noqa: D102


class LoggingReporter:
    """Reporter that writes every record to the ``switchyard.telemetry`` logger."""

    def __init__(self, level: int = logging.DEBUG) -> None:
        self.level = level

    def record_timing(self, scope: str, duration: float, **metadata: Any) -> None:
        log.log(self.level, "%s took %.3fs %s", scope, duration, metadata)

    def record_metric(self, scope: str, value: Any, **metadata: Any) -> None:
        log.log(self.level, "%s=%s %s", scope, value, metadata)


_reporters: list[TelemetryReporter] = []


def register_reporter(reporter: TelemetryReporter) -> None:
    if not isinstance(reporter, TelemetryReporter):
        raise TypeError(
            f"{type(reporter).__name__} does not implement TelemetryReporter"
        )
    _reporters.append(reporter)


def unregister_reporter(reporter: TelemetryReporter) -> None:
    if reporter in _reporters:
        _reporters.remove(reporter)


def report_call(
    settings: TelemetrySettings | None,
    scope: str,
    *,
    duration: float,
    metrics: dict[str, Any],
    **metadata: Any,
) -> None:
    """Send one call's timing and metrics to every registered reporter.

    Reporter failures are logged and never propagate into the stream.
    """
    if settings is None or not settings.enabled or not _reporters:
        return
    metadata = {**settings.metadata, **metadata}
    if settings.function_id is not None:
        metadata["function_id"] = settings.function_id
    for reporter in list(_reporters):
        try:
            reporter.record_timing(scope, duration, **metadata)
            for name, value in metrics.items():
                reporter.record_metric(f"{scope}.{name}", value, **metadata)
        except Exception as exc:
            log.warning("Telemetry reporter %r failed: %s", reporter, exc)
