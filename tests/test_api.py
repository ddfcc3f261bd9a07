import asyncio

import pytest
from httpx import ASGITransport, AsyncClient

from demo_app.errors import DuplicateRouteError
from demo_app.main import ROUTES, Route, create_app
from demo_app.observability.health import HealthReport, HealthReporter, HealthStatus
from demo_app.observability.registry import MetricDescriptor, MetricKind

from tests.test_registry import assert_valid_exposition, sample_lines


async def test_root_returns_greeting(api_client) -> None:
    resp = await api_client.get("/")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/json")
    assert resp.json() == {"message": "Hello from tests"}


async def test_health_is_up(api_client) -> None:
    resp = await api_client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "UP"}


async def test_probe_routes(api_client) -> None:
    livez = await api_client.get("/livez")
    readyz = await api_client.get("/readyz")
    assert livez.status_code == 200
    assert livez.json() == {"status": "UP"}
    assert readyz.status_code == 200
    assert readyz.json() == {"status": "UP"}


async def test_health_down_returns_503(api_client, reporter: HealthReporter) -> None:
    reporter.add_check("database", lambda: HealthReport(HealthStatus.DOWN, "connection refused"))

    resp = await api_client.get("/health")
    ready = await api_client.get("/readyz")
    live = await api_client.get("/livez")

    assert resp.status_code == 503
    assert resp.json() == {"status": "DOWN", "reason": "database: connection refused"}
    assert ready.status_code == 503
    assert live.status_code == 200


async def test_health_degraded_still_200(api_client, reporter: HealthReporter) -> None:
    reporter.add_check("cache", lambda: HealthReport(HealthStatus.DEGRADED, "slow"))

    resp = await api_client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "DEGRADED", "reason": "cache: slow"}


async def test_metrics_exposition(api_client) -> None:
    resp = await api_client.get("/metrics")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain; version=0.0.4")
    assert_valid_exposition(resp.text)
    assert 'demo_app_info{version="0.1.0"} 1.0' in resp.text
    assert len(sample_lines(resp.text, "process_cpu_seconds_total")) == 1


async def test_metrics_include_application_metrics(api_client, registry) -> None:
    jobs = registry.register(MetricDescriptor("jobs_total", "Jobs processed", MetricKind.COUNTER))
    jobs.inc(4)

    resp = await api_client.get("/metrics")

    assert sample_lines(resp.text, "jobs_total") == ["jobs_total 4.0"]


async def test_http_requests_are_instrumented(api_client) -> None:
    await api_client.get("/")
    await api_client.get("/metrics")

    resp = await api_client.get("/metrics")

    counted = [line for line in sample_lines(resp.text, "http_requests_total") if 'handler="/"' in line]
    assert counted
    assert not [line for line in sample_lines(resp.text, "http_requests_total") if 'handler="/metrics"' in line]


async def test_metrics_survive_unavailable_sampler(api_client, registry) -> None:
    def unavailable() -> float:
        raise OSError("no such file")

    registry.register(MetricDescriptor("flaky_gauge", sampler=unavailable))

    resp = await api_client.get("/metrics")

    assert resp.status_code == 200
    assert sample_lines(resp.text, "flaky_gauge") == []


class _ExplodingCollector:
    def describe(self):
        return []

    def collect(self):
        raise RuntimeError("collector exploded")


async def test_metrics_render_failure_is_500(api_client, registry) -> None:
    registry.register_collector(_ExplodingCollector())

    resp = await api_client.get("/metrics")

    assert resp.status_code == 500

    # the service keeps answering
    assert (await api_client.get("/health")).status_code == 200


async def test_unknown_path_is_404(api_client) -> None:
    resp = await api_client.get("/nonexistent")
    assert resp.status_code == 404


async def test_docs_are_not_mounted(api_client) -> None:
    for path in ("/docs", "/redoc", "/openapi.json"):
        assert (await api_client.get(path)).status_code == 404


async def test_responses_include_x_request_id(api_client) -> None:
    resp = await api_client.get("/health")
    assert resp.headers.get("x-request-id")


async def test_handler_error_becomes_500(settings, registry, reporter) -> None:
    def boom() -> dict:
        raise RuntimeError("handler bug")

    app = create_app(settings, registry=registry, reporter=reporter, routes=ROUTES + (Route("GET", "/boom", boom, "boom"),))
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/boom")
        after = await client.get("/")

    assert resp.status_code == 500
    assert resp.json() == {"detail": "Internal Server Error"}
    assert resp.headers.get("x-request-id")
    assert after.status_code == 200


def test_duplicate_routes_rejected(settings, registry) -> None:
    with pytest.raises(DuplicateRouteError):
        create_app(settings, registry=registry, routes=ROUTES + (Route("get", "/health", lambda: {}, "again"),))


async def test_concurrent_requests(api_client) -> None:
    paths = ["/metrics", "/health", "/"] * 10

    responses = await asyncio.gather(*(api_client.get(p) for p in paths))

    assert all(r.status_code == 200 for r in responses)
    for resp in responses:
        if resp.request.url.path == "/metrics":
            assert_valid_exposition(resp.text)


async def test_instrumentation_can_be_disabled(monkeypatch) -> None:
    from demo_app.config import get_settings

    monkeypatch.setenv("INSTRUMENT_HTTP", "false")
    get_settings.cache_clear()
    app = create_app()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        await client.get("/")
        resp = await client.get("/metrics")

    assert "http_requests_total" not in resp.text
