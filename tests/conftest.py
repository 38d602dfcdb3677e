"""Pytest fixtures for pgvector provider tests."""

from collections.abc import Generator

import pytest
from prometheus_client import CollectorRegistry

from src.config.settings import Settings, get_settings
from src.observability.metrics import MetricsCollector


@pytest.fixture(autouse=True)
def _reset_settings_cache() -> Generator[None, None, None]:
    """Environment changes made by a test must not leak through the settings cache."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def test_settings() -> Settings:
    """Settings configured for testing."""
    return Settings(
        _env_file=None,
        environment="development",
        log_level="DEBUG",
        postgres_host="localhost",
        postgres_port=5432,
        postgres_username="vdb",
        postgres_password="vdb_password",
        postgres_default_database="vectors",
    )


@pytest.fixture
def metrics_registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture
def metrics(metrics_registry) -> MetricsCollector:
    """Metrics collector on a private registry."""
    return MetricsCollector(registry=metrics_registry)
