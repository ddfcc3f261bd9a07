"""
Observability: metric registry, default process collectors, health reporting.
"""

from .collectors import ProcessMetricsCollector, Sampler, register_default_collectors
from .health import HealthReport, HealthReporter, HealthStatus, most_severe
from .logging import configure_logging
from .registry import (
    CONTENT_TYPE,
    MetricDescriptor,
    MetricKind,
    MetricRegistry,
    RegistrationHandle,
    RenderResult,
)

__all__ = [
    "CONTENT_TYPE",
    "configure_logging",
    "HealthReport",
    "HealthReporter",
    "HealthStatus",
    "MetricDescriptor",
    "MetricKind",
    "MetricRegistry",
    "most_severe",
    "ProcessMetricsCollector",
    "register_default_collectors",
    "RegistrationHandle",
    "RenderResult",
    "Sampler",
]
