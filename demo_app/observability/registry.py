"""
Metric registry rendered in the Prometheus text exposition format.

`MetricRegistry` wraps a `prometheus_client.CollectorRegistry` and adds what the
service relies on:

- names are unique: registering the same name twice raises `DuplicateNameError`
  instead of `prometheus_client`'s bare `ValueError`;
- rendering never escalates a failing sampler. Sampled metrics whose sampler
  raises are dropped from that snapshot, and `snapshot()` returns a result value
  so the HTTP layer decides the status code;
- counters are named as exposed (`jobs_total`), so each registered name shows
  up as exactly one series name in the output.

Sampled metrics are read synchronously during `render()`; a slow sampler
slows the scrape, since no deadline applies to them.

## Usage

    registry = MetricRegistry()
    jobs = registry.register(MetricDescriptor("jobs_total", "Jobs processed", MetricKind.COUNTER))
    jobs.inc()

    registry.register(MetricDescriptor("queue_depth", "Items queued", sampler=queue.qsize))

    text = registry.render()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from threading import Lock
from types import MappingProxyType
from typing import Any, Callable, Iterator, Mapping

import structlog
from prometheus_client import CollectorRegistry, Counter, Gauge, disable_created_metrics, generate_latest
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric
from prometheus_client.registry import Collector

from demo_app.errors import DuplicateNameError, RenderError, SamplingUnavailable


logger = structlog.get_logger(__name__)

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


class MetricKind(str, Enum):
    COUNTER = "counter"
    GAUGE = "gauge"


@dataclass(frozen=True)
class MetricDescriptor:
    """Identity of a metric: fixed once registered.

    `labels` are constant label pairs attached to every sample. When `sampler`
    is set the value is produced on demand at render time instead of being held.
    """

    name: str
    help: str = ""
    kind: MetricKind = MetricKind.GAUGE
    labels: Mapping[str, str] = field(default_factory=dict)
    sampler: Callable[[], float] | None = None

    def __post_init__(self) -> None:
        if self.kind is MetricKind.COUNTER and not self.name.endswith("_total"):
            raise ValueError(f"counter names must end in _total: {self.name}")
        object.__setattr__(self, "labels", MappingProxyType(dict(self.labels)))


def metric_family(name: str, documentation: str, kind: MetricKind, labels: list[str]) -> Metric:
    if kind is MetricKind.COUNTER:
        return CounterMetricFamily(name, documentation, labels=labels)
    return GaugeMetricFamily(name, documentation, labels=labels)


class SampledCollector(Collector):
    """Collector producing one sample per render from a descriptor's sampler."""

    def __init__(self, descriptor: MetricDescriptor) -> None:
        if descriptor.sampler is None:
            raise ValueError(f"{descriptor.name} has no sampler")
        self.descriptor = descriptor

    def _family(self) -> Metric:
        d = self.descriptor
        return metric_family(d.name, d.help or d.name, d.kind, list(d.labels))

    def describe(self) -> Iterator[Metric]:
        yield self._family()

    def collect(self) -> Iterator[Metric]:
        try:
            value = float(self.descriptor.sampler())  # type: ignore[misc]
        except SamplingUnavailable as exc:
            logger.debug("metric_sample_unavailable", metric=self.descriptor.name, reason=str(exc))
            return
        except Exception:
            logger.warning("metric_sample_failed", metric=self.descriptor.name, exc_info=True)
            return

        family = self._family()
        family.add_metric(list(self.descriptor.labels.values()), value)
        yield family


class RegistrationHandle:
    """Value-side access to a registered metric. Identity stays read-only."""

    def __init__(self, descriptor: MetricDescriptor, child: Any | None) -> None:
        self._descriptor = descriptor
        self._child = child

    @property
    def descriptor(self) -> MetricDescriptor:
        return self._descriptor

    @property
    def name(self) -> str:
        return self._descriptor.name

    @property
    def kind(self) -> MetricKind:
        return self._descriptor.kind

    def _writable(self, operation: str, gauge_only: bool = False) -> Any:
        if self._child is None:
            raise TypeError(f"{self.name} is sampled; {operation}() is not supported")
        if gauge_only and self.kind is not MetricKind.GAUGE:
            raise TypeError(f"{self.name} is a {self.kind.value}; {operation}() needs a gauge")
        return self._child

    def inc(self, amount: float = 1.0) -> None:
        # prometheus_client rejects negative counter increments with ValueError.
        self._writable("inc").inc(amount)

    def dec(self, amount: float = 1.0) -> None:
        self._writable("dec", gauge_only=True).dec(amount)

    def set(self, value: float) -> None:
        self._writable("set", gauge_only=True).set(value)


@dataclass(frozen=True)
class RenderResult:
    text: str | None = None
    error: RenderError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def error_kind(self) -> str | None:
        if self.error is None:
            return None
        cause = self.error.__cause__
        return type(cause).__name__ if cause is not None else type(self.error).__name__


class MetricRegistry:
    """Insertion-ordered, name-unique set of metrics for one process."""

    content_type = CONTENT_TYPE

    def __init__(self) -> None:
        self._lock = Lock()
        self._descriptors: dict[str, MetricDescriptor] = {}
        # One registered name, one exposed series: no <name>_created companions.
        disable_created_metrics()
        self._registry = CollectorRegistry(auto_describe=True)

    @property
    def prometheus_registry(self) -> CollectorRegistry:
        """Underlying registry, for libraries that register their own metrics."""
        return self._registry

    def register(self, descriptor: MetricDescriptor) -> RegistrationHandle:
        with self._lock:
            if descriptor.name in self._descriptors:
                raise DuplicateNameError(descriptor.name)

            if descriptor.sampler is not None:
                self._register(SampledCollector(descriptor), descriptor.name)
                child = None
            else:
                metric = self._build(descriptor)
                self._register(metric, descriptor.name)
                child = metric.labels(**descriptor.labels) if descriptor.labels else metric

            self._descriptors[descriptor.name] = descriptor

        logger.debug("metric_registered", metric=descriptor.name, kind=descriptor.kind.value)
        return RegistrationHandle(descriptor, child)

    def register_collector(self, collector: Collector, name: str | None = None) -> None:
        with self._lock:
            self._register(collector, name or type(collector).__name__)

    def _register(self, collector: Any, name: str) -> None:
        try:
            self._registry.register(collector)
        except ValueError as exc:
            # Raised for series already claimed, e.g. "jobs" vs "jobs_total".
            raise DuplicateNameError(name) from exc

    @staticmethod
    def _build(descriptor: MetricDescriptor) -> Counter | Gauge:
        cls = Counter if descriptor.kind is MetricKind.COUNTER else Gauge
        return cls(
            descriptor.name,
            descriptor.help or descriptor.name,
            labelnames=tuple(descriptor.labels),
            registry=None,
        )

    def render(self) -> str:
        try:
            return generate_latest(self._registry).decode("utf-8")
        except Exception as exc:
            raise RenderError(f"failed to render metrics: {exc}") from exc

    def snapshot(self) -> RenderResult:
        try:
            return RenderResult(text=self.render())
        except RenderError as exc:
            return RenderResult(error=exc)

    def value(self, name: str, labels: Mapping[str, str] | None = None) -> float | None:
        """Current value of one sample, or None if it is not exposed."""
        return self._registry.get_sample_value(name, dict(labels or {}))
