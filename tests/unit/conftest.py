"""Unit test environment helpers."""

import pytest

from common.observability.telemetry import InMemoryTelemetryBackend, telemetry
from common.stores.in_memory import InMemoryRecordStore


@pytest.fixture(autouse=True)
def _minimal_env(monkeypatch):
    """Keep unit tests independent of exporters and local .env files."""
    monkeypatch.delenv("RUNTIME_METRICS_ENABLED", raising=False)
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_METRICS_ENDPOINT", raising=False)
    monkeypatch.setenv("TELEMETRY_BACKEND", "none")
    yield


@pytest.fixture(autouse=True)
def in_memory_telemetry():
    """Capture spans in memory for the duration of a test."""
    original = telemetry.backend
    backend = InMemoryTelemetryBackend()
    telemetry.set_backend(backend)
    yield backend
    telemetry.set_backend(original)


@pytest.fixture
def store():
    """Fresh in-memory record store."""
    return InMemoryRecordStore()
