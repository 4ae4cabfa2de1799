"""Telemetry service for abstracting tracing and observability.

The runtime, workflow executor and queue workers open spans through the global
``telemetry`` service and stay agnostic of the configured backend (OTEL, in-memory
for tests, or no-op).
"""

import abc
import contextlib
import json
import logging
import os
from enum import Enum
from typing import Any, Dict, Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Status, StatusCode

from common.config.env import get_env_str
from common.sanitization.pii import redact_pii_recursive

logger = logging.getLogger(__name__)

MAX_ATTRIBUTE_LENGTH = 1024

_otel_initialized = False


def _setup_otel_sdk() -> None:
    """Configure the OTEL SDK once."""
    global _otel_initialized
    if _otel_initialized:
        return

    service_name = get_env_str("OTEL_SERVICE_NAME", "agent-builder-runtime")
    provider = TracerProvider(resource=Resource.create({SERVICE_NAME: service_name}))

    if (
        "PYTEST_CURRENT_TEST" in os.environ
        and os.environ.get("OTEL_ENABLE_IN_TESTS", "").lower() != "true"
    ):
        trace.set_tracer_provider(provider)
        _otel_initialized = True
        logger.info("OTEL SDK initialized in TEST mode (No-op exporter)")
        return

    endpoint = get_env_str("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")
    if get_env_str("OTEL_EXPORTER_OTLP_PROTOCOL", "grpc") == "grpc":
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    else:
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)
    _otel_initialized = True
    logger.info("OTEL SDK initialized with endpoint: %s", endpoint)


def bound_attribute(value: Any) -> Any:
    """Coerce an attribute value into something OTEL accepts, truncating long strings."""
    if value is None:
        return ""
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, (bool, int, float)):
        return value
    if not isinstance(value, str):
        try:
            value = json.dumps(value, default=str)
        except (TypeError, ValueError):
            value = str(value)
    if len(value) > MAX_ATTRIBUTE_LENGTH:
        return value[: MAX_ATTRIBUTE_LENGTH - 3] + "..."
    return value


def _prepare_attributes(attributes: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    redacted = redact_pii_recursive(dict(attributes or {}))
    return {key: bound_attribute(value) for key, value in redacted.items()}


class SpanType(Enum):
    """Semantic span types mapping to OTEL concepts."""

    AGENT_RUN = "AGENT_RUN"
    AGENT_STEP = "AGENT_STEP"
    CHAT_MODEL = "CHAT_MODEL"
    TOOL = "TOOL"
    WORKFLOW = "WORKFLOW"
    WORKFLOW_NODE = "WORKFLOW_NODE"
    JOB = "JOB"
    UNKNOWN = "UNKNOWN"


class TelemetrySpan(abc.ABC):
    """Abstract interface for a telemetry span."""

    @abc.abstractmethod
    def set_attribute(self, key: str, value: Any) -> None:
        """Set a single span attribute."""

    @abc.abstractmethod
    def set_attributes(self, attributes: Dict[str, Any]) -> None:
        """Set multiple span attributes."""

    @abc.abstractmethod
    def add_event(self, name: str, attributes: Optional[Dict[str, Any]] = None) -> None:
        """Add a timed event to the span."""

    @abc.abstractmethod
    def record_error(self, error: BaseException) -> None:
        """Mark the span as failed."""


class TelemetryBackend(abc.ABC):
    """Abstract base class for telemetry backends."""

    def configure(self, **kwargs) -> None:
        """Configure the backend."""

    @abc.abstractmethod
    @contextlib.contextmanager
    def start_span(
        self,
        name: str,
        span_type: SpanType = SpanType.UNKNOWN,
        attributes: Optional[Dict[str, Any]] = None,
    ):
        """Start a span as a context manager."""
        yield None

    @abc.abstractmethod
    def get_current_trace_id(self) -> Optional[str]:
        """Get the current trace ID as a 32-char hex string."""

    def flush(self, timeout_ms: int = 1000) -> bool:
        """Force flush all captured spans to the exporter."""
        return True


class OTELTelemetrySpan(TelemetrySpan):
    """OpenTelemetry implementation of TelemetrySpan."""

    def __init__(self, otel_span):
        self._span = otel_span

    def set_attribute(self, key: str, value: Any) -> None:
        try:
            self._span.set_attributes(_prepare_attributes({key: value}))
        except Exception as e:
            logger.debug(f"Failed to set telemetry attribute {key}: {e}")

    def set_attributes(self, attributes: Dict[str, Any]) -> None:
        try:
            self._span.set_attributes(_prepare_attributes(attributes))
        except Exception as e:
            logger.debug(f"Failed to set telemetry attributes: {e}")

    def add_event(self, name: str, attributes: Optional[Dict[str, Any]] = None) -> None:
        try:
            self._span.add_event(name, _prepare_attributes(attributes))
        except Exception as e:
            logger.debug(f"Failed to add telemetry event {name}: {e}")

    def record_error(self, error: BaseException) -> None:
        try:
            self._span.set_attribute("error.type", type(error).__name__)
            self._span.set_status(Status(StatusCode.ERROR, description=str(error)))
        except Exception as e:
            logger.debug(f"Failed to record span error: {e}")


class OTELTelemetryBackend(TelemetryBackend):
    """OpenTelemetry implementation of TelemetryBackend."""

    def __init__(self, tracer_name: str = "agent-builder-runtime"):
        self.tracer_name = tracer_name
        self._tracer = None

    def _ensure_tracer(self):
        if self._tracer is None:
            self._tracer = trace.get_tracer(self.tracer_name)
        return self._tracer

    def configure(self, **kwargs) -> None:
        """Configure OTEL SDK and initialize tracer."""
        _setup_otel_sdk()
        self._ensure_tracer()

    @contextlib.contextmanager
    def start_span(
        self,
        name: str,
        span_type: SpanType = SpanType.UNKNOWN,
        attributes: Optional[Dict[str, Any]] = None,
    ):
        base_attrs = {"span.type": span_type.value, "service.name": self.tracer_name}
        base_attrs.update(attributes or {})
        with self._ensure_tracer().start_as_current_span(
            name=name, kind=trace.SpanKind.INTERNAL, attributes=base_attrs
        ) as otel_span:
            yield OTELTelemetrySpan(otel_span)

    def get_current_trace_id(self) -> Optional[str]:
        span = trace.get_current_span()
        if span == trace.INVALID_SPAN:
            return None
        ctx = span.get_span_context()
        return format(ctx.trace_id, "032x") if ctx.is_valid else None

    def flush(self, timeout_ms: int = 1000) -> bool:
        try:
            provider = trace.get_tracer_provider()
            if hasattr(provider, "force_flush"):
                return provider.force_flush(timeout_millis=timeout_ms)
            return True
        except Exception as e:
            logger.debug(f"Telemetry flush failed: {e}")
            return False


class InMemoryTelemetrySpan(TelemetrySpan):
    """In-memory implementation of TelemetrySpan for testing."""

    def __init__(self, name: str, span_type: SpanType):
        self.name = name
        self.span_type = span_type
        self.attributes: Dict[str, Any] = {}
        self.events: list = []
        self.error: Optional[str] = None
        self.is_finished = False

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes.update(_prepare_attributes({key: value}))

    def set_attributes(self, attributes: Dict[str, Any]) -> None:
        self.attributes.update(_prepare_attributes(attributes))

    def add_event(self, name: str, attributes: Optional[Dict[str, Any]] = None) -> None:
        self.events.append({"name": name, "attributes": attributes or {}})

    def record_error(self, error: BaseException) -> None:
        self.error = str(error)


class InMemoryTelemetryBackend(TelemetryBackend):
    """In-memory implementation of TelemetryBackend for testing."""

    def __init__(self):
        self.spans: list = []

    @contextlib.contextmanager
    def start_span(
        self,
        name: str,
        span_type: SpanType = SpanType.UNKNOWN,
        attributes: Optional[Dict[str, Any]] = None,
    ):
        span = InMemoryTelemetrySpan(name, span_type)
        if attributes:
            span.set_attributes(attributes)
        self.spans.append(span)
        try:
            yield span
        finally:
            span.is_finished = True

    def get_current_trace_id(self) -> Optional[str]:
        if self.spans and not self.spans[-1].is_finished:
            return "0" * 32
        return None

    def spans_named(self, name: str) -> list:
        """Return finished or open spans with the given name."""
        return [span for span in self.spans if span.name == name]


class NoOpTelemetrySpan(TelemetrySpan):
    """No-op implementation of TelemetrySpan."""

    def set_attribute(self, key: str, value: Any) -> None:
        pass

    def set_attributes(self, attributes: Dict[str, Any]) -> None:
        pass

    def add_event(self, name: str, attributes: Optional[Dict[str, Any]] = None) -> None:
        pass

    def record_error(self, error: BaseException) -> None:
        pass


class NoOpTelemetryBackend(TelemetryBackend):
    """No-op implementation of TelemetryBackend."""

    @contextlib.contextmanager
    def start_span(
        self,
        name: str,
        span_type: SpanType = SpanType.UNKNOWN,
        attributes: Optional[Dict[str, Any]] = None,
    ):
        yield NoOpTelemetrySpan()

    def get_current_trace_id(self) -> Optional[str]:
        return None


class TelemetryService:
    """Public surface for telemetry calls."""

    def __init__(self, backend: Optional[TelemetryBackend] = None):
        """Initialize the telemetry service.

        Args:
            backend: The telemetry backend to use. If not provided, the backend is
                picked from ``TELEMETRY_BACKEND`` (``otel`` by default, ``none`` disables).
        """
        if backend is not None:
            self._backend = backend
        elif get_env_str("TELEMETRY_BACKEND", "otel").lower() == "none":
            self._backend = NoOpTelemetryBackend()
        else:
            self._backend = OTELTelemetryBackend()

    @property
    def backend(self) -> TelemetryBackend:
        return self._backend

    def set_backend(self, backend: TelemetryBackend) -> None:
        """Switch backend at runtime (useful for testing)."""
        self._backend = backend

    def configure(self, **kwargs) -> None:
        self._backend.configure(**kwargs)

    @contextlib.contextmanager
    def start_span(
        self,
        name: str,
        span_type: SpanType = SpanType.UNKNOWN,
        attributes: Optional[Dict[str, Any]] = None,
    ):
        """Start a new span; exceptions escaping the block are recorded on it."""
        final_attributes = _prepare_attributes(attributes)
        final_attributes.setdefault("event.type", span_type.value)
        final_attributes.setdefault("event.name", name)
        with self._backend.start_span(
            name=name, span_type=span_type, attributes=final_attributes
        ) as span:
            try:
                yield span
            except BaseException as exc:
                span.record_error(exc)
                raise

    def get_current_trace_id(self) -> Optional[str]:
        return self._backend.get_current_trace_id()

    def flush(self, timeout_ms: int = 1000) -> bool:
        return self._backend.flush(timeout_ms=timeout_ms)


# Global instance for easy access
telemetry = TelemetryService()
