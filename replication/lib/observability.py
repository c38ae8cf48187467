"""Metrics for dump and load runs.

Collects phase timings and counters so each replication run can emit a
structured summary alongside its logs.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Generator, List, Optional

__all__ = ["CycleMetrics", "MetricPoint", "PhaseTimer"]


@dataclass
class MetricPoint:
    """A single metric data point."""

    name: str
    value: Any
    timestamp: datetime
    unit: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "name": self.name,
            "value": self.value,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.unit:
            result["unit"] = self.unit
        return result


@dataclass
class PhaseTimer:
    """Timer tracking a named phase."""

    name: str
    start_time: float = field(default_factory=time.monotonic)
    end_time: Optional[float] = None

    def stop(self) -> float:
        self.end_time = time.monotonic()
        return self.duration

    @property
    def duration(self) -> float:
        end = self.end_time if self.end_time is not None else time.monotonic()
        return end - self.start_time


class CycleMetrics:
    """Metrics for one dump or load invocation.

    Example:
        metrics = CycleMetrics("dump", "sales")
        with metrics.time_phase("manifest"):
            write_manifest(...)
        metrics.record("manifest_entries", 4, unit="tables")
        logger.info("Dump finished", extra=metrics.to_log_dict())
    """

    def __init__(self, operation: str, database: str) -> None:
        self.operation = operation
        self.database = database
        self._start_time = time.monotonic()
        self._end_time: Optional[float] = None
        self._phases: List[PhaseTimer] = []
        self._metrics: List[MetricPoint] = []

    @contextmanager
    def time_phase(self, name: str) -> Generator[PhaseTimer, None, None]:
        """Context manager that tracks a phase duration."""
        timer = PhaseTimer(name=name)
        self._phases.append(timer)
        try:
            yield timer
        finally:
            timer.stop()

    def record(self, name: str, value: Any, unit: Optional[str] = None) -> None:
        self._metrics.append(
            MetricPoint(
                name=name,
                value=value,
                timestamp=datetime.now(timezone.utc),
                unit=unit,
            )
        )

    def get(self, name: str) -> Any:
        """Latest recorded value of a metric, or None."""
        for point in reversed(self._metrics):
            if point.name == name:
                return point.value
        return None

    def finish(self) -> None:
        if self._end_time is None:
            self._end_time = time.monotonic()

    @property
    def total_duration(self) -> float:
        end = self._end_time if self._end_time is not None else time.monotonic()
        return end - self._start_time

    def summary(self) -> Dict[str, Any]:
        self.finish()
        return {
            "operation": self.operation,
            "database": self.database,
            "timing": {
                "total_seconds": round(self.total_duration, 3),
                "phases": {p.name: round(p.duration, 3) for p in self._phases},
            },
            "metrics": [m.to_dict() for m in self._metrics],
        }

    def to_log_dict(self) -> Dict[str, Any]:
        """Flatten metrics for structured logging."""
        result: Dict[str, Any] = {
            "repl_operation": self.operation,
            "repl_database": self.database,
            "total_duration_seconds": round(self.total_duration, 3),
        }
        for phase in self._phases:
            result[f"phase_{phase.name}_seconds"] = round(phase.duration, 3)
        for metric in self._metrics:
            result[f"metric_{metric.name}"] = metric.value
        return result
