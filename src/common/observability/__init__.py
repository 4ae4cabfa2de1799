"""Shared observability helpers."""

from common.observability.events import log_event
from common.observability.metrics import runtime_metrics
from common.observability.telemetry import SpanType, telemetry

__all__ = ["SpanType", "log_event", "runtime_metrics", "telemetry"]
