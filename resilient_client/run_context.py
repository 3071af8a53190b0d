"""Per-run statistics: scenario outcomes and latency samples for one test run."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from loguru import logger

from .descriptors import LatencyMeasurement
from .errors import ApiClientError


@dataclass(frozen=True)
class ScenarioRecord:
    name: str
    passed: bool
    duration: Optional[float] = None


class RunContext:
    """
    Counters for one run, owned by whoever starts the run.

    Usage:
        >>> with RunContext() as run:
        ...     run.record_scenario("login works", passed=True)
        >>> run.summary()["passed"]
        1
    """

    def __init__(self, name: str = "api-run") -> None:
        self.name = name
        self.scenarios: List[ScenarioRecord] = []
        self.latencies: List[LatencyMeasurement] = []
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None

    def __enter__(self) -> "RunContext":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def active(self) -> bool:
        return self.started_at is not None and self.finished_at is None

    def start(self) -> "RunContext":
        if self.started_at is None:
            self.started_at = datetime.now(timezone.utc)
            logger.info(f"Run '{self.name}' started")
        return self

    def close(self) -> Dict[str, Any]:
        """Finish the run and return its summary."""
        if self.finished_at is None:
            self.finished_at = datetime.now(timezone.utc)
            summary = self.summary()
            logger.info(
                f"Run '{self.name}' finished: {summary['passed']}/{summary['total']} passed, "
                f"avg latency {summary['average_latency_ms']:.1f} ms"
            )
        return self.summary()

    def _ensure_open(self) -> None:
        if self.finished_at is not None:
            raise ApiClientError(f"Run '{self.name}' is closed; no further records accepted")
        self.start()

    def record_scenario(self, name: str, passed: bool, duration: Optional[float] = None) -> None:
        self._ensure_open()
        self.scenarios.append(ScenarioRecord(name, passed, duration))

    def record_latency(self, measurement: LatencyMeasurement) -> None:
        self._ensure_open()
        self.latencies.append(measurement)

    @property
    def total(self) -> int:
        return len(self.scenarios)

    @property
    def passed(self) -> int:
        return sum(1 for s in self.scenarios if s.passed)

    @property
    def failed(self) -> int:
        return self.total - self.passed

    @property
    def average_latency_ms(self) -> float:
        if not self.latencies:
            return 0.0
        return sum(m.elapsed_ms for m in self.latencies) / len(self.latencies)

    def summary(self) -> Dict[str, Any]:
        duration = None
        if self.started_at is not None:
            end = self.finished_at or datetime.now(timezone.utc)
            duration = (end - self.started_at).total_seconds()
        return {
            "name": self.name,
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "latency_samples": len(self.latencies),
            "average_latency_ms": self.average_latency_ms,
            "duration_seconds": duration,
        }


__all__ = ["RunContext", "ScenarioRecord"]
