from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient

from demo_app.config import Settings, get_settings
from demo_app.main import build_registry, create_app
from demo_app.observability.health import HealthReporter
from demo_app.observability.registry import MetricRegistry


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GREETING", "Hello from tests")
    monkeypatch.setenv("PORT", "0")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def registry(settings: Settings) -> MetricRegistry:
    return build_registry(settings)


@pytest.fixture
def reporter() -> HealthReporter:
    return HealthReporter()


@pytest.fixture
def app(settings: Settings, registry: MetricRegistry, reporter: HealthReporter):
    return create_app(settings, registry=registry, reporter=reporter)


@pytest.fixture
async def api_client(app) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
