"""Tests for structured events, optional metrics and the telemetry service."""

import json
import logging

import pytest

from common.observability.events import log_event
from common.observability.metrics import (
    OptionalMetrics,
    _normalize_attributes,
    is_metrics_enabled,
)
from common.observability.telemetry import (
    InMemoryTelemetryBackend,
    NoOpTelemetryBackend,
    SpanType,
    TelemetryService,
    bound_attribute,
)


def test_log_event_emits_json(caplog):
    """Events are logged as one JSON object with a UTC timestamp."""
    with caplog.at_level(logging.INFO, logger="runtime.events"):
        log_event("job_completed", job_id="j-1", attempts=2)

    payload = json.loads(caplog.records[-1].getMessage())
    assert payload["event"] == "job_completed"
    assert payload["job_id"] == "j-1"
    assert payload["attempts"] == 2
    assert payload["timestamp"].endswith("Z")


def test_metrics_enablement(monkeypatch):
    """An explicit flag wins; otherwise an OTLP endpoint enables metrics."""
    assert is_metrics_enabled("RUNTIME_METRICS_ENABLED") is False

    monkeypatch.setenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://collector:4317")
    assert is_metrics_enabled("RUNTIME_METRICS_ENABLED") is True

    monkeypatch.setenv("RUNTIME_METRICS_ENABLED", "false")
    assert is_metrics_enabled("RUNTIME_METRICS_ENABLED") is False


def test_disabled_metrics_do_not_touch_the_meter():
    """With metrics off, counters and histograms are no-ops."""
    metrics = OptionalMetrics(meter_name="test", enabled_env_var="RUNTIME_METRICS_ENABLED")

    metrics.add_counter("jobs", attributes={"queue": "q"})
    metrics.record_histogram("latency", 1.5)

    assert metrics._meter is None


def test_metric_attributes_are_normalized():
    """Booleans become strings, enums their values, and None is dropped."""
    normalized = _normalize_attributes(
        {"ok": True, "type": SpanType.JOB, "count": 3, "missing": None}
    )

    assert normalized == {"ok": "true", "type": "JOB", "count": 3}


def test_bound_attribute_coerces_values():
    """Structures are JSON encoded and long strings truncated."""
    assert bound_attribute(None) == ""
    assert bound_attribute({"a": 1}) == '{"a": 1}'
    assert bound_attribute(SpanType.TOOL) == "TOOL"
    long_value = bound_attribute("x" * 10_000)
    assert long_value.endswith("...")
    assert len(long_value) < 10_000


def test_spans_record_errors_and_attributes():
    """Exceptions escaping a span are recorded before propagating."""
    backend = InMemoryTelemetryBackend()
    service = TelemetryService(backend)

    with pytest.raises(ValueError):
        with service.start_span("op", span_type=SpanType.TOOL, attributes={"tool.name": "x"}):
            raise ValueError("bad")

    span = backend.spans_named("op")[0]
    assert span.attributes["tool.name"] == "x"
    assert span.attributes["event.type"] == "TOOL"
    assert span.error is not None
    assert span.is_finished


def test_backend_selection_from_env(monkeypatch):
    """TELEMETRY_BACKEND=none selects the no-op backend."""
    monkeypatch.setenv("TELEMETRY_BACKEND", "none")

    assert isinstance(TelemetryService().backend, NoOpTelemetryBackend)
