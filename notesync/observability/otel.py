"""OpenTelemetry + Prometheus fallback wiring for the NoteSync backend."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from notesync import config

logger = logging.getLogger("notesync.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None

_sync_jobs_counter: Any | None = None
_sync_duration_hist: Any | None = None
_sync_retry_counter: Any | None = None
_files_fetched_counter: Any | None = None
_file_failure_counter: Any | None = None
_upload_bytes_counter: Any | None = None
_cache_failure_counter: Any | None = None

_prom_enabled = False
_prom_sync_jobs_counter: Any | None = None
_prom_sync_duration_hist: Any | None = None
_prom_sync_retry_counter: Any | None = None
_prom_files_fetched_counter: Any | None = None
_prom_file_failure_counter: Any | None = None
_prom_upload_bytes_counter: Any | None = None
_prom_cache_failure_counter: Any | None = None


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


def initialize(app: FastAPI | None = None) -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider, _fastapi_instrumentor
    global _sync_jobs_counter, _sync_duration_hist, _sync_retry_counter
    global _files_fetched_counter, _file_failure_counter, _upload_bytes_counter, _cache_failure_counter
    global _prom_enabled
    global _prom_sync_jobs_counter, _prom_sync_duration_hist, _prom_sync_retry_counter
    global _prom_files_fetched_counter, _prom_file_failure_counter
    global _prom_upload_bytes_counter, _prom_cache_failure_counter

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (NOTESYNC_OTEL_ENABLED=false)")
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

    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    service_name = config.OTEL_SERVICE_NAME or "notesync-backend"

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "notesync",
        }
    )

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)
    tracer = trace.get_tracer("notesync.backend")

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=metrics_endpoint or None)
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("notesync.backend")

    _sync_jobs_counter = meter.create_counter(
        "notesync_sync_jobs_total",
        unit="1",
        description="Terminal sync job outcomes",
    )
    _sync_duration_hist = meter.create_histogram(
        "notesync_sync_job_duration_ms",
        unit="ms",
        description="Wall time from pipeline start to terminal phase",
    )
    _sync_retry_counter = meter.create_counter(
        "notesync_sync_retries_total",
        unit="1",
        description="Automatic pipeline retries after transient upstream errors",
    )
    _files_fetched_counter = meter.create_counter(
        "notesync_files_fetched_total",
        unit="1",
        description="Repository files fetched from the upstream host",
    )
    _file_failure_counter = meter.create_counter(
        "notesync_file_fetch_failures_total",
        unit="1",
        description="Individual files skipped because their content could not be read",
    )
    _upload_bytes_counter = meter.create_counter(
        "notesync_index_upload_bytes_total",
        unit="By",
        description="Bytes uploaded to the search index host",
    )
    _cache_failure_counter = meter.create_counter(
        "notesync_cache_write_failures_total",
        unit="1",
        description="Snapshot cache writes that failed",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = tracer
    _fastapi_instrumentor = FastAPIInstrumentor()
    _enabled = True

    if app:
        _fastapi_instrumentor.instrument_app(app)

    if config.PROM_PORT > 0:
        try:
            from prometheus_client import Counter, Histogram, start_http_server

            start_http_server(config.PROM_PORT)
            _prom_enabled = True
            _prom_sync_jobs_counter = Counter(
                "notesync_sync_jobs_total",
                "Terminal sync job outcomes",
                ["result"],
            )
            _prom_sync_duration_hist = Histogram(
                "notesync_sync_job_duration_ms",
                "Wall time from pipeline start to terminal phase",
                ["result"],
            )
            _prom_sync_retry_counter = Counter(
                "notesync_sync_retries_total",
                "Automatic pipeline retries after transient upstream errors",
                ["code"],
            )
            _prom_files_fetched_counter = Counter(
                "notesync_files_fetched_total",
                "Repository files fetched from the upstream host",
            )
            _prom_file_failure_counter = Counter(
                "notesync_file_fetch_failures_total",
                "Individual files skipped because their content could not be read",
            )
            _prom_upload_bytes_counter = Counter(
                "notesync_index_upload_bytes_total",
                "Bytes uploaded to the search index host",
            )
            _prom_cache_failure_counter = Counter(
                "notesync_cache_write_failures_total",
                "Snapshot cache writes that failed",
            )
            logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Prometheus fallback not started: %s", exc)
            _prom_enabled = False

    logger.info(
        "OpenTelemetry initialized (service=%s endpoint=%s)",
        service_name,
        config.OTEL_ENDPOINT,
    )


def shutdown(app: FastAPI | None = None) -> None:
    global _enabled
    if not _initialized:
        return
    try:
        if app and _fastapi_instrumentor:
            _fastapi_instrumentor.uninstrument_app(app)
    except Exception as exc:  # noqa: BLE001
        logger.debug("FastAPI uninstrument failed: %s", exc)
    for provider in (_meter_provider, _trace_provider):
        try:
            if provider is not None:
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


def record_sync_result(result: str, duration_ms: float) -> None:
    labels = {"result": _label(result)}
    duration = max(0.0, float(duration_ms))
    if _enabled and _sync_jobs_counter is not None:
        _sync_jobs_counter.add(1, labels)
    if _enabled and _sync_duration_hist is not None:
        _sync_duration_hist.record(duration, labels)
    if _prom_enabled and _prom_sync_jobs_counter is not None:
        _prom_sync_jobs_counter.labels(**labels).inc()
    if _prom_enabled and _prom_sync_duration_hist is not None:
        _prom_sync_duration_hist.labels(**labels).observe(duration)


def record_sync_retry(code: str) -> None:
    labels = {"code": _label(code)}
    if _enabled and _sync_retry_counter is not None:
        _sync_retry_counter.add(1, labels)
    if _prom_enabled and _prom_sync_retry_counter is not None:
        _prom_sync_retry_counter.labels(**labels).inc()


def record_fetch(fetched: int, failed: int) -> None:
    fetched = max(0, int(fetched))
    failed = max(0, int(failed))
    if _enabled and _files_fetched_counter is not None and fetched:
        _files_fetched_counter.add(fetched)
    if _enabled and _file_failure_counter is not None and failed:
        _file_failure_counter.add(failed)
    if _prom_enabled and _prom_files_fetched_counter is not None and fetched:
        _prom_files_fetched_counter.inc(fetched)
    if _prom_enabled and _prom_file_failure_counter is not None and failed:
        _prom_file_failure_counter.inc(failed)


def record_index_upload(byte_count: int) -> None:
    byte_count = max(0, int(byte_count))
    if not byte_count:
        return
    if _enabled and _upload_bytes_counter is not None:
        _upload_bytes_counter.add(byte_count)
    if _prom_enabled and _prom_upload_bytes_counter is not None:
        _prom_upload_bytes_counter.inc(byte_count)


def record_cache_failure() -> None:
    if _enabled and _cache_failure_counter is not None:
        _cache_failure_counter.add(1)
    if _prom_enabled and _prom_cache_failure_counter is not None:
        _prom_cache_failure_counter.inc()
