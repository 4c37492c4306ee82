"""OpenTelemetry + Prometheus fallback wiring for the OCDash backend.

Every helper is a no-op until `initialize()` has run with
OCDASH_OTEL_ENABLED set, so the engine can call them unconditionally.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, NamedTuple

from fastapi import FastAPI

from ocdash import config

logger = logging.getLogger("ocdash.observability")


class _MetricDef(NamedTuple):
    name: str
    kind: str  # "counter" | "histogram"
    unit: str
    description: str
    label: str


_METRICS: dict[str, _MetricDef] = {
    "snapshot_builds": _MetricDef(
        "ocdash_snapshot_builds_total", "counter", "1", "Count of dashboard snapshot recomputations", "result"
    ),
    "snapshot_latency": _MetricDef(
        "ocdash_snapshot_build_ms", "histogram", "ms", "Latency of dashboard snapshot recomputations", "result"
    ),
    "artifact_skips": _MetricDef(
        "ocdash_artifact_skips_total", "counter", "1", "Artifacts skipped because they were unreadable or malformed", "kind"
    ),
    "tie_breaks": _MetricDef(
        "ocdash_correlation_tie_breaks_total", "counter", "1", "Delegation correlations resolved among multiple candidates", "strategy"
    ),
}

_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None
_otel_instruments: dict[str, Any] = {}
_prom_instruments: dict[str, Any] = {}


def _signal_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip().rstrip("/")
    if not endpoint or endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/v1"):
        endpoint = endpoint[: -len("/v1")]
    return f"{endpoint}{signal_path}"


def _label(value: str) -> str:
    return (value or "").strip() or "unknown"


def _create_otel_instruments(meter: Any) -> None:
    for key, metric in _METRICS.items():
        factory = meter.create_counter if metric.kind == "counter" else meter.create_histogram
        _otel_instruments[key] = factory(metric.name, unit=metric.unit, description=metric.description)


def _start_prometheus_fallback() -> None:
    try:
        from prometheus_client import Counter, Histogram, start_http_server

        start_http_server(config.PROM_PORT)
        for key, metric in _METRICS.items():
            factory = Counter if metric.kind == "counter" else Histogram
            _prom_instruments[key] = factory(metric.name, metric.description, [metric.label])
        logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Prometheus fallback not started: %s", exc)
        _prom_instruments.clear()


def initialize(app: FastAPI | None = None) -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider, _fastapi_instrumentor

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return
    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (OCDASH_OTEL_ENABLED=false)")
        return

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        return

    service_name = config.OTEL_SERVICE_NAME or "ocdash-backend"
    resource = Resource.create({"service.name": service_name, "service.namespace": "ocdash"})

    _trace_provider = TracerProvider(resource=resource)
    _trace_provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=_signal_endpoint(config.OTEL_ENDPOINT, "/v1/traces") or None))
    )
    trace.set_tracer_provider(_trace_provider)
    _tracer = trace.get_tracer("ocdash.backend")

    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=_signal_endpoint(config.OTEL_ENDPOINT, "/v1/metrics") or None)
    )
    _meter_provider = MeterProvider(resource=resource, metric_readers=[reader])
    metrics.set_meter_provider(_meter_provider)
    _create_otel_instruments(metrics.get_meter("ocdash.backend"))

    _fastapi_instrumentor = FastAPIInstrumentor()
    _enabled = True
    if app:
        _fastapi_instrumentor.instrument_app(app)

    if config.PROM_PORT > 0:
        _start_prometheus_fallback()

    logger.info("OpenTelemetry initialized (service=%s endpoint=%s)", service_name, config.OTEL_ENDPOINT)


def shutdown(app: FastAPI | None = None) -> None:
    global _enabled
    if not _initialized:
        return
    steps = (
        ("FastAPI uninstrument", lambda: app and _fastapi_instrumentor and _fastapi_instrumentor.uninstrument_app(app)),
        ("Meter provider shutdown", lambda: _meter_provider and _meter_provider.shutdown()),
        ("Trace provider shutdown", lambda: _trace_provider and _trace_provider.shutdown()),
    )
    for name, step in steps:
        try:
            step()
        except Exception as exc:  # noqa: BLE001
            logger.debug("%s failed: %s", name, exc)
    _enabled = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if not _enabled or _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(name) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        yield span


def _emit(key: str, label_value: str, amount: float = 1.0) -> None:
    metric = _METRICS[key]
    labels = {metric.label: _label(label_value)}
    is_counter = metric.kind == "counter"

    otel_instrument = _otel_instruments.get(key) if _enabled else None
    if otel_instrument is not None:
        if is_counter:
            otel_instrument.add(amount, labels)
        else:
            otel_instrument.record(amount, labels)

    prom_instrument = _prom_instruments.get(key)
    if prom_instrument is not None:
        if is_counter:
            prom_instrument.labels(**labels).inc(amount)
        else:
            prom_instrument.labels(**labels).observe(amount)


def record_snapshot_build(result: str, duration_ms: float) -> None:
    _emit("snapshot_builds", result)
    _emit("snapshot_latency", result, max(0.0, float(duration_ms)))


def record_artifact_skip(kind: str) -> None:
    _emit("artifact_skips", kind)


def record_tie_break(strategy: str, candidates: int) -> None:
    if candidates < 2:
        return
    _emit("tie_breaks", strategy)
