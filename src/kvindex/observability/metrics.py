"""Prometheus metrics for indexing and search, mirrored to OpenTelemetry instruments."""

from __future__ import annotations

from contextlib import contextmanager
import time
from typing import TYPE_CHECKING, Any

from opentelemetry import metrics as otel_metrics
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest


if TYPE_CHECKING:
    from collections.abc import Generator


_meter_holder: dict[str, Any] = {"meter": None}


def _get_meter():
    meter = _meter_holder.get("meter")
    if meter is None:
        meter = otel_metrics.get_meter(__name__)
        _meter_holder["meter"] = meter
    return meter


class _BoundMetric:
    def __init__(self, wrapper: MetricBridge, labels: dict[str, str]) -> None:
        self._wrapper = wrapper
        self._labels = labels

    def inc(self, amount: float = 1.0) -> None:
        self._wrapper.inc(self._labels, amount)

    def observe(self, value: float) -> None:
        self._wrapper.observe(self._labels, value)


class MetricBridge:
    """Bridge a Prometheus metric to an OpenTelemetry instrument of the same name."""

    def __init__(
        self,
        prom_metric: Counter | Histogram,
        *,
        otel_name: str,
        otel_description: str,
        otel_kind: str,
    ) -> None:
        self._prom_metric = prom_metric
        self._otel_name = otel_name
        self._otel_description = otel_description
        self._otel_kind = otel_kind
        self._otel_instrument = None

    def labels(self, **labels: str) -> _BoundMetric:
        return _BoundMetric(self, labels)

    def _ensure_otel_instrument(self):
        if self._otel_instrument is not None:
            return self._otel_instrument
        meter = _get_meter()
        if self._otel_kind == "counter":
            self._otel_instrument = meter.create_counter(self._otel_name, description=self._otel_description)
        elif self._otel_kind == "histogram":
            self._otel_instrument = meter.create_histogram(self._otel_name, description=self._otel_description)
        else:
            raise ValueError(f"Unknown metric kind: {self._otel_kind}")
        return self._otel_instrument

    def inc(self, labels: dict[str, str], amount: float) -> None:
        self._prom_metric.labels(**labels).inc(amount)
        self._ensure_otel_instrument().add(amount, labels)

    def observe(self, labels: dict[str, str], value: float) -> None:
        self._prom_metric.labels(**labels).observe(value)
        self._ensure_otel_instrument().record(value, labels)


_DOCUMENTS_INDEXED_PROM = Counter(
    "kvindex_documents_indexed_total",
    "Documents indexed",
    ["namespace"],
)

_DOCUMENTS_REMOVED_PROM = Counter(
    "kvindex_documents_removed_total",
    "Documents removed from the index",
    ["namespace"],
)

_SEARCH_LATENCY_PROM = Histogram(
    "kvindex_search_latency_seconds",
    "Search latency in seconds",
    ["namespace", "mode"],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
)

_SEARCH_OUTCOMES_PROM = Counter(
    "kvindex_search_outcomes_total",
    "Search outcomes by mode (matches / no_results)",
    ["namespace", "mode", "outcome"],
)

_STORE_CALLS_PROM = Counter(
    "kvindex_store_calls_total",
    "Round trips to backing stores",
    ["store", "operation"],
)

DOCUMENTS_INDEXED = MetricBridge(
    _DOCUMENTS_INDEXED_PROM,
    otel_name="kvindex_documents_indexed_total",
    otel_description="Documents indexed",
    otel_kind="counter",
)

DOCUMENTS_REMOVED = MetricBridge(
    _DOCUMENTS_REMOVED_PROM,
    otel_name="kvindex_documents_removed_total",
    otel_description="Documents removed from the index",
    otel_kind="counter",
)

SEARCH_LATENCY = MetricBridge(
    _SEARCH_LATENCY_PROM,
    otel_name="kvindex_search_latency_seconds",
    otel_description="Search latency in seconds",
    otel_kind="histogram",
)

SEARCH_OUTCOMES = MetricBridge(
    _SEARCH_OUTCOMES_PROM,
    otel_name="kvindex_search_outcomes_total",
    otel_description="Search outcomes by mode",
    otel_kind="counter",
)

STORE_CALLS = MetricBridge(
    _STORE_CALLS_PROM,
    otel_name="kvindex_store_calls_total",
    otel_description="Round trips to backing stores",
    otel_kind="counter",
)


@contextmanager
def track_latency(histogram: MetricBridge, **labels: str) -> Generator[None, None, None]:
    """Context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        histogram.labels(**labels).observe(time.perf_counter() - start)


def get_metrics() -> bytes:
    """Render all Prometheus metrics in the text exposition format."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
