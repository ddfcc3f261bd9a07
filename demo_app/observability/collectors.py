"""
Default process metrics, sampled on every scrape.

The process series come from `prometheus_client.ProcessCollector`, which reads
``/proc`` and silently leaves out whatever the platform cannot provide. On top
of it this module adds ``process_uptime_seconds`` (derived from the start time),
a CPU-time fallback from ``os.times`` where ``/proc`` is missing, and optional
extra scalar samplers. A sampler that cannot produce a value raises
`SamplingUnavailable` and only its metric is left out of that scrape.

The time budget is checked before each extra sampler, not inside one: a call
that is already running is not interrupted, so a single blocking read can still
overrun the budget. Samplers reached after the deadline are skipped for that
scrape. Sampled descriptors registered directly on the `MetricRegistry` are not
covered by this budget.
"""

from __future__ import annotations

import os
import platform
import time
from dataclasses import dataclass
from typing import Callable, Iterator, Sequence

import structlog
from prometheus_client import GCCollector, PlatformCollector, ProcessCollector
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric
from prometheus_client.registry import Collector

from demo_app.errors import DuplicateNameError, SamplingUnavailable
from demo_app.observability.registry import MetricKind, MetricRegistry, metric_family


logger = structlog.get_logger(__name__)

DEFAULT_SAMPLE_TIMEOUT_SECONDS = 0.25

PROCESS_SERIES = (
    ("process_virtual_memory_bytes", MetricKind.GAUGE),
    ("process_resident_memory_bytes", MetricKind.GAUGE),
    ("process_start_time_seconds", MetricKind.GAUGE),
    ("process_cpu_seconds_total", MetricKind.COUNTER),
    ("process_open_fds", MetricKind.GAUGE),
    ("process_max_fds", MetricKind.GAUGE),
    ("process_uptime_seconds", MetricKind.GAUGE),
)


@dataclass(frozen=True)
class Sampler:
    name: str
    documentation: str
    kind: MetricKind
    sample: Callable[[], float]


class ProcessMetricsCollector(Collector):
    """Process metrics plus uptime, bounded by a per-scrape time budget."""

    def __init__(
        self,
        process: Collector | None = None,
        samplers: Sequence[Sampler] = (),
        timeout: float = DEFAULT_SAMPLE_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._process = process if process is not None else ProcessCollector(registry=None)
        self.samplers = tuple(samplers)
        self.timeout = timeout
        self._clock = clock

    def describe(self) -> Iterator[Metric]:
        for name, kind in PROCESS_SERIES:
            yield metric_family(name, name, kind, [])
        for sampler in self.samplers:
            yield metric_family(sampler.name, sampler.documentation, sampler.kind, [])

    def _process_families(self) -> list[Metric]:
        try:
            return list(self._process.collect())
        except Exception:
            logger.warning("process_metrics_failed", exc_info=True)
            return []

    def collect(self) -> Iterator[Metric]:
        deadline = self._clock() + self.timeout

        families = self._process_families()
        start_time = None
        for family in families:
            if family.name == "process_start_time_seconds" and family.samples:
                start_time = family.samples[0].value
            yield family

        if not any(f.name == "process_cpu_seconds" for f in families):
            times = os.times()
            cpu = CounterMetricFamily("process_cpu_seconds_total", "Total user and system CPU time spent in seconds.")
            cpu.add_metric([], times.user + times.system)
            yield cpu

        if start_time is not None:
            yield GaugeMetricFamily(
                "process_uptime_seconds",
                "Seconds since the process started.",
                value=max(0.0, time.time() - start_time),
            )

        for index, sampler in enumerate(self.samplers):
            if self._clock() > deadline:
                logger.warning(
                    "metric_sampling_budget_exceeded",
                    timeout_seconds=self.timeout,
                    skipped=[s.name for s in self.samplers[index:]],
                )
                return

            try:
                value = float(sampler.sample())
            except SamplingUnavailable as exc:
                logger.debug("metric_sample_unavailable", metric=sampler.name, reason=str(exc))
                continue
            except Exception:
                logger.warning("metric_sample_failed", metric=sampler.name, exc_info=True)
                continue

            family = metric_family(sampler.name, sampler.documentation, sampler.kind, [])
            family.add_metric([], value)
            yield family


def register_default_collectors(
    registry: MetricRegistry,
    timeout: float = DEFAULT_SAMPLE_TIMEOUT_SECONDS,
) -> ProcessMetricsCollector:
    """Install process metrics plus the Python runtime collectors."""

    process = ProcessMetricsCollector(timeout=timeout)
    registry.register_collector(process, "process")
    registry.register_collector(PlatformCollector(registry=None), "python_info")

    # gc.get_stats() is CPython-only; GCCollector registers itself on construction.
    if platform.python_implementation() == "CPython":
        try:
            GCCollector(registry=registry.prometheus_registry)
        except ValueError as exc:
            raise DuplicateNameError("python_gc") from exc
    return process
