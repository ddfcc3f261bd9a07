"""
Health reporting for liveness/readiness probes.

The reporter runs a set of named checks and returns the most severe result
(DOWN > DEGRADED > UP). Out of the box it has a single check that always
reports UP; real dependency checks are added with `add_check` and need no
change to the HTTP routes.

## Usage

    reporter = HealthReporter()
    reporter.add_check("database", lambda: HealthReport(HealthStatus.UP))

    report = reporter.check()
    if report.status is HealthStatus.DOWN:
        ...
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

import structlog


logger = structlog.get_logger(__name__)


class HealthStatus(str, Enum):
    """Health status levels."""

    UP = "UP"
    DEGRADED = "DEGRADED"
    DOWN = "DOWN"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {
    HealthStatus.UP: 0,
    HealthStatus.DEGRADED: 1,
    HealthStatus.DOWN: 2,
}


@dataclass(frozen=True)
class HealthReport:
    status: HealthStatus
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"status": self.status.value}
        if self.reason:
            payload["reason"] = self.reason
        return payload


HealthCheck = Callable[[], HealthReport]


def always_up() -> HealthReport:
    return HealthReport(HealthStatus.UP)


def most_severe(reports: Iterable[HealthReport]) -> HealthReport:
    """Fold reports into one: worst status wins, reasons of the worst are kept."""
    reports = list(reports)
    if not reports:
        return HealthReport(HealthStatus.UP)

    worst = max(reports, key=lambda r: r.status.severity).status
    reasons = [r.reason for r in reports if r.status is worst and r.reason]
    return HealthReport(worst, "; ".join(reasons) or None)


class HealthReporter:
    """Runs named health checks and aggregates them."""

    def __init__(self, checks: Optional[Mapping[str, HealthCheck]] = None) -> None:
        self._lock = Lock()
        self._checks: Dict[str, HealthCheck] = (
            dict(checks) if checks is not None else {"process": always_up}
        )

    def add_check(self, name: str, check: HealthCheck) -> None:
        with self._lock:
            if name in self._checks:
                raise ValueError(f"health check already registered: {name}")
            self._checks[name] = check

    def check(self) -> HealthReport:
        """Run all checks and return the aggregate status."""
        with self._lock:
            checks = list(self._checks.items())

        report = most_severe(self._run(name, fn) for name, fn in checks)
        if report.status is not HealthStatus.UP:
            logger.warning("health_check_not_up", status=report.status.value, reason=report.reason)
        return report

    def liveness(self) -> HealthReport:
        # The process answered, so it is alive; dependencies only affect readiness.
        return HealthReport(HealthStatus.UP)

    @staticmethod
    def _run(name: str, check: HealthCheck) -> HealthReport:
        try:
            report = check()
        except Exception as e:
            logger.warning("health_check_error", check=name, exc_info=True)
            return HealthReport(HealthStatus.DOWN, f"{name}: {e}")

        if report.status is HealthStatus.UP:
            return report
        reason = f"{name}: {report.reason}" if report.reason else name
        return HealthReport(report.status, reason)
