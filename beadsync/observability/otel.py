"""OpenTelemetry + Prometheus fallback wiring for beadsync."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from beadsync import config

logger = logging.getLogger("beadsync.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None

_cli_counter: Any | None = None
_cli_latency_hist: Any | None = None
_reload_counter: Any | None = None
_reload_latency_hist: Any | None = None
_cli_attempts_hist: Any | None = None
_reload_items_hist: Any | None = None

_prom_enabled = False
_prom_cli_counter: Any | None = None
_prom_cli_latency_hist: Any | None = None
_prom_reload_counter: Any | None = None
_prom_reload_latency_hist: Any | None = None


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip()
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/"):
        endpoint = endpoint[:-1]
    if endpoint.endswith("/v1"):
        return f"{endpoint}{signal_path[3:]}"
    return f"{endpoint}{signal_path}"


def _label(value: str) -> str:
    return (value or "").strip() or "unknown"


def _start_prometheus(port: int) -> None:
    global _prom_enabled
    global _prom_cli_counter, _prom_cli_latency_hist, _prom_reload_counter, _prom_reload_latency_hist
    try:
        from prometheus_client import Counter, Histogram, start_http_server

        start_http_server(port)
        _prom_cli_counter = Counter(
            "beadsync_cli_invocations_total",
            "Count of bd invocations by command and outcome",
            ["command", "result"],
        )
        _prom_cli_latency_hist = Histogram(
            "beadsync_cli_latency_ms",
            "Wall-clock latency of bd invocations including retries",
            ["command", "result"],
        )
        _prom_reload_counter = Counter(
            "beadsync_snapshot_reloads_total",
            "Count of snapshot reloads by trigger and outcome",
            ["trigger", "result"],
        )
        _prom_reload_latency_hist = Histogram(
            "beadsync_snapshot_reload_latency_ms",
            "Latency of snapshot reloads",
            ["trigger", "result"],
        )
        _prom_enabled = True
        logger.info("Prometheus fallback metrics server listening on port %s", port)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Prometheus fallback not started: %s", exc)
        _prom_enabled = False


def initialize() -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider
    global _cli_counter, _cli_latency_hist, _reload_counter, _reload_latency_hist
    global _cli_attempts_hist, _reload_items_hist

    if _initialized:
        return
    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (BEADSYNC_OTEL_ENABLED=false)")
        if config.PROM_PORT > 0:
            _start_prometheus(config.PROM_PORT)
        return

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        return

    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    service_name = config.OTEL_SERVICE_NAME or "beadsync"

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "beadsync",
        }
    )

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)

    metric_reader = PeriodicExportingMetricReader(OTLPMetricExporter(endpoint=metrics_endpoint or None))
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("beadsync")

    _cli_counter = meter.create_counter(
        "beadsync_cli_invocations_total",
        unit="1",
        description="Count of bd invocations by command and outcome",
    )
    _cli_latency_hist = meter.create_histogram(
        "beadsync_cli_latency_ms",
        unit="ms",
        description="Wall-clock latency of bd invocations including retries",
    )
    _reload_counter = meter.create_counter(
        "beadsync_snapshot_reloads_total",
        unit="1",
        description="Count of snapshot reloads by trigger and outcome",
    )
    _reload_latency_hist = meter.create_histogram(
        "beadsync_snapshot_reload_latency_ms",
        unit="ms",
        description="Latency of snapshot reloads",
    )
    _cli_attempts_hist = meter.create_histogram(
        "beadsync_cli_attempts",
        unit="1",
        description="Attempts needed per bd invocation",
    )
    _reload_items_hist = meter.create_histogram(
        "beadsync_snapshot_items",
        unit="1",
        description="Items in each successfully reloaded snapshot",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = trace.get_tracer("beadsync")
    _enabled = True

    if config.PROM_PORT > 0:
        _start_prometheus(config.PROM_PORT)

    logger.info(
        "OpenTelemetry initialized (service=%s endpoint=%s)",
        service_name,
        config.OTEL_ENDPOINT,
    )


def shutdown() -> None:
    global _enabled
    if not _initialized:
        return
    for provider in (_meter_provider, _trace_provider):
        if provider is None:
            continue
        try:
            provider.shutdown()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Telemetry provider shutdown failed: %s", exc)
    _enabled = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if not _enabled or _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        yield span


def record_cli_invocation(command: str, result: str, duration_ms: float, attempts: int) -> None:
    labels = {"command": _label(command), "result": _label(result)}
    if _enabled and _cli_counter is not None:
        _cli_counter.add(1, labels)
    if _enabled and _cli_latency_hist is not None:
        _cli_latency_hist.record(max(0.0, float(duration_ms)), labels)
    if _enabled and _cli_attempts_hist is not None:
        _cli_attempts_hist.record(max(1, int(attempts)), labels)
    if _prom_enabled and _prom_cli_counter is not None:
        _prom_cli_counter.labels(**labels).inc()
    if _prom_enabled and _prom_cli_latency_hist is not None:
        _prom_cli_latency_hist.labels(**labels).observe(max(0.0, float(duration_ms)))


def record_snapshot_reload(trigger: str, result: str, duration_ms: float, item_count: int = 0) -> None:
    labels = {"trigger": _label(trigger), "result": _label(result)}
    if _enabled and _reload_counter is not None:
        _reload_counter.add(1, labels)
    if _enabled and _reload_latency_hist is not None:
        _reload_latency_hist.record(max(0.0, float(duration_ms)), labels)
    if _enabled and _reload_items_hist is not None and result == "success":
        _reload_items_hist.record(max(0, int(item_count)), labels)
    if _prom_enabled and _prom_reload_counter is not None:
        _prom_reload_counter.labels(**labels).inc()
    if _prom_enabled and _prom_reload_latency_hist is not None:
        _prom_reload_latency_hist.labels(**labels).observe(max(0.0, float(duration_ms)))
