"""
FastAPI application for a containerized demo deployed on Kubernetes.

Features
--------
- Root endpoint (`/`) that returns a simple JSON message.
- Health endpoint (`/health`) reporting the aggregate `HealthReporter` status;
  503 when the status is DOWN.
- Liveness probe (`/livez`) and readiness probe (`/readyz`) for Kubernetes.
- Prometheus metrics at (`/metrics`): process collectors, Python runtime info,
  HTTP request metrics via `prometheus-fastapi-instrumentator`, plus anything
  registered on the injected `MetricRegistry`.

Notes
-----
- Routes come from an explicit table (`ROUTES`) that is checked for duplicate
  (method, path) pairs when the app is built. No docs/openapi routes are mounted.
- The registry and health reporter are built once per process and passed into
  `create_app`; handlers reach them through `app.state`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from prometheus_fastapi_instrumentator import Instrumentator

from demo_app.config import Settings, get_settings
from demo_app.errors import DuplicateRouteError
from demo_app.observability.collectors import register_default_collectors
from demo_app.observability.health import HealthReport, HealthReporter, HealthStatus
from demo_app.observability.middleware import RequestContextMiddleware
from demo_app.observability.registry import MetricDescriptor, MetricRegistry


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Route:
    method: str
    path: str
    endpoint: Callable[..., Any]
    name: str


def get_registry(request: Request) -> MetricRegistry:
    return request.app.state.registry


def get_reporter(request: Request) -> HealthReporter:
    return request.app.state.reporter


def _health_response(report: HealthReport) -> JSONResponse:
    status_code = 503 if report.status is HealthStatus.DOWN else 200
    return JSONResponse(content=report.to_dict(), status_code=status_code)


def root(request: Request) -> dict[str, str]:
    return {"message": request.app.state.settings.greeting}


def health(reporter: HealthReporter = Depends(get_reporter)) -> JSONResponse:
    return _health_response(reporter.check())


def livez(reporter: HealthReporter = Depends(get_reporter)) -> JSONResponse:
    return _health_response(reporter.liveness())


def metrics(registry: MetricRegistry = Depends(get_registry)) -> Response:
    result = registry.snapshot()
    if not result.ok:
        logger.error("metrics_render_failed", error_kind=result.error_kind, error=str(result.error))
        return PlainTextResponse("metrics rendering failed\n", status_code=500)
    return Response(content=result.text, media_type=registry.content_type)


ROUTES: tuple[Route, ...] = (
    Route("GET", "/", root, "root"),
    Route("GET", "/health", health, "health"),
    Route("GET", "/livez", livez, "livez"),
    Route("GET", "/readyz", health, "readyz"),
    Route("GET", "/metrics", metrics, "metrics"),
)


def check_routes(routes: Iterable[Route]) -> None:
    seen: set[tuple[str, str]] = set()
    for route in routes:
        key = (route.method.upper(), route.path)
        if key in seen:
            raise DuplicateRouteError(f"duplicate route: {key[0]} {key[1]}")
        seen.add(key)


def build_registry(settings: Settings) -> MetricRegistry:
    """Registry with the default collector set and the app info gauge."""

    registry = MetricRegistry()
    register_default_collectors(registry, timeout=settings.metrics_sample_timeout_seconds)
    info = registry.register(
        MetricDescriptor(
            "demo_app_info",
            "Application build information.",
            labels={"version": settings.app_version},
        )
    )
    info.set(1)
    return registry


def create_app(
    settings: Settings | None = None,
    registry: MetricRegistry | None = None,
    reporter: HealthReporter | None = None,
    routes: Iterable[Route] = ROUTES,
) -> FastAPI:
    settings = settings or get_settings()
    routes = tuple(routes)
    check_routes(routes)

    app = FastAPI(
        title="k8s-demo-app",
        version=settings.app_version,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = settings
    app.state.registry = registry if registry is not None else build_registry(settings)
    app.state.reporter = reporter if reporter is not None else HealthReporter()

    for route in routes:
        app.add_api_route(route.path, route.endpoint, methods=[route.method.upper()], name=route.name)

    # instrument into the injected registry; /metrics scrapes are not counted
    if settings.instrument_http:
        Instrumentator(
            excluded_handlers=["^/metrics$"],
            registry=app.state.registry.prometheus_registry,
        ).instrument(app)

    app.add_middleware(RequestContextMiddleware)
    return app
