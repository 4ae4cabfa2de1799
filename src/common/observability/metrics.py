"""Optional low-cardinality metrics helpers."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from opentelemetry import metrics

from common.config.env import get_env_bool

logger = logging.getLogger(__name__)


def is_metrics_enabled(enabled_env_var: str) -> bool:
    """An explicit flag wins; otherwise metrics follow whether an OTLP endpoint is set."""
    raw = os.getenv(enabled_env_var)
    if raw is None:
        return bool(
            (os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or "").strip()
            or (os.getenv("OTEL_EXPORTER_OTLP_METRICS_ENDPOINT") or "").strip()
        )
    try:
        return get_env_bool(enabled_env_var, False) is True
    except ValueError:
        logger.warning("Invalid %s value '%s'; metrics disabled.", enabled_env_var, raw)
        return False


def _normalize_attributes(attributes: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    normalized: Dict[str, Any] = {}
    for key, value in (attributes or {}).items():
        if value is None:
            continue
        if isinstance(value, bool):
            normalized[key] = "true" if value else "false"
        elif isinstance(value, (str, int, float)):
            normalized[key] = value
        else:
            normalized[key] = str(getattr(value, "value", value))
    return normalized


@dataclass
class OptionalMetrics:
    """Thin wrapper around OTEL metrics with env-based enablement."""

    meter_name: str
    enabled_env_var: str
    _meter: Any = None
    _instruments: dict[str, Any] = field(default_factory=dict)

    def _get_meter(self):
        if self._meter is None:
            self._meter = metrics.get_meter(self.meter_name)
        return self._meter

    def _instrument(self, kind: str, name: str, description: str, unit: str):
        key = f"{kind}:{name}"
        instrument = self._instruments.get(key)
        if instrument is None:
            meter = self._get_meter()
            factory = meter.create_counter if kind == "counter" else meter.create_histogram
            instrument = factory(name=name, description=description, unit=unit)
            self._instruments[key] = instrument
        return instrument

    def add_counter(
        self,
        name: str,
        value: int = 1,
        *,
        description: str = "",
        unit: str = "1",
        attributes: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Add to a monotonic counter when metrics are enabled."""
        if not is_metrics_enabled(self.enabled_env_var):
            return
        try:
            counter = self._instrument("counter", name, description, unit)
            counter.add(int(value), _normalize_attributes(attributes))
        except Exception as exc:
            logger.debug("Counter metric emission failed for %s: %s", name, exc)

    def record_histogram(
        self,
        name: str,
        value: float,
        *,
        description: str = "",
        unit: str = "1",
        attributes: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Record a histogram datapoint when metrics are enabled."""
        if not is_metrics_enabled(self.enabled_env_var):
            return
        try:
            histogram = self._instrument("histogram", name, description, unit)
            histogram.record(float(value), _normalize_attributes(attributes))
        except Exception as exc:
            logger.debug("Histogram metric emission failed for %s: %s", name, exc)


runtime_metrics = OptionalMetrics(
    meter_name="agent-builder-runtime",
    enabled_env_var="RUNTIME_METRICS_ENABLED",
)
