from __future__ import annotations

from dataclasses import dataclass
import logging
import os

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.asyncpg import AsyncPGInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricReader, PeriodicExportingMetricReader
from opentelemetry.sdk.resources import DEPLOYMENT_ENVIRONMENT, SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

from edit_url_poller.core.config import Settings

_BASE_LOG_RECORD_FACTORY = logging.getLogRecordFactory()
_NO_TRACE_ID = "0" * 32
_NO_SPAN_ID = "0" * 16
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s trace_id=%(trace_id)s span_id=%(span_id)s %(message)s"
_ASYNCPG_INSTRUMENTOR = AsyncPGInstrumentor()


@dataclass(slots=True)
class TelemetryRuntime:
    enabled: bool
    tracer_provider: TracerProvider | None
    meter_provider: MeterProvider | None


def configure_poller_logging() -> None:
    _install_log_correlation()
    # basicConfig is a no-op when the host process already configured handlers.
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)


def setup_poller_telemetry(settings: Settings) -> TelemetryRuntime:
    if not settings.otel_enabled:
        return TelemetryRuntime(enabled=False, tracer_provider=None, meter_provider=None)

    if settings.otel_log_correlation:
        _install_log_correlation()

    resource = Resource.create(
        {
            SERVICE_NAME: settings.otel_service_name,
            DEPLOYMENT_ENVIRONMENT: settings.environment,
        }
    )
    tracer_provider = TracerProvider(
        resource=resource,
        sampler=TraceIdRatioBased(settings.otel_trace_sample_ratio),
    )
    span_exporter = _build_span_exporter(settings)
    if span_exporter is not None:
        tracer_provider.add_span_processor(BatchSpanProcessor(span_exporter))
    trace.set_tracer_provider(tracer_provider)

    readers: list[MetricReader] = []
    metric_exporter = _build_metric_exporter(settings)
    if metric_exporter is not None:
        readers.append(PeriodicExportingMetricReader(metric_exporter))
    meter_provider = MeterProvider(resource=resource, metric_readers=readers)
    metrics.set_meter_provider(meter_provider)

    _ASYNCPG_INSTRUMENTOR.instrument()
    return TelemetryRuntime(enabled=True, tracer_provider=tracer_provider, meter_provider=meter_provider)


def shutdown_poller_telemetry(runtime: TelemetryRuntime) -> None:
    if not runtime.enabled:
        return
    _ASYNCPG_INSTRUMENTOR.uninstrument()
    if runtime.tracer_provider is not None:
        runtime.tracer_provider.force_flush()
        runtime.tracer_provider.shutdown()
    if runtime.meter_provider is not None:
        runtime.meter_provider.force_flush()
        runtime.meter_provider.shutdown()


def _build_span_exporter(settings: Settings) -> OTLPSpanExporter | None:
    endpoint = _resolve_endpoint(settings, signal="traces")
    if not endpoint:
        logging.getLogger(__name__).info(
            "OTel exporter endpoint not set; spans remain local-only for service=%s",
            settings.otel_service_name,
        )
        return None
    headers = _resolve_headers(settings)
    if headers:
        return OTLPSpanExporter(endpoint=endpoint, headers=headers)
    return OTLPSpanExporter(endpoint=endpoint)


def _build_metric_exporter(settings: Settings) -> OTLPMetricExporter | None:
    endpoint = _resolve_endpoint(settings, signal="metrics")
    if not endpoint:
        logging.getLogger(__name__).info(
            "OTel exporter endpoint not set; metrics are not pushed for service=%s",
            settings.otel_service_name,
        )
        return None
    headers = _resolve_headers(settings)
    if headers:
        return OTLPMetricExporter(endpoint=endpoint, headers=headers)
    return OTLPMetricExporter(endpoint=endpoint)


def _resolve_endpoint(settings: Settings, *, signal: str) -> str | None:
    """Signal-specific env vars win; a base endpoint gets the OTLP/HTTP path appended."""
    specific = os.getenv(f"OTEL_EXPORTER_OTLP_{signal.upper()}_ENDPOINT")
    if specific:
        return specific
    base = settings.otel_exporter_otlp_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not base:
        return None
    return f"{base.rstrip('/')}/v1/{signal}"


def _resolve_headers(settings: Settings) -> dict[str, str]:
    return _parse_headers(settings.otel_exporter_otlp_headers or os.getenv("OTEL_EXPORTER_OTLP_HEADERS"))


def _parse_headers(raw: str | None) -> dict[str, str]:
    """Parse the OTLP `key=value,key2=value2` header list, dropping malformed pairs."""
    pairs = (item.partition("=") for item in (raw or "").split(","))
    return {key.strip(): value.strip() for key, separator, value in pairs if separator and key.strip()}


def _correlated_record_factory(*args: object, **kwargs: object) -> logging.LogRecord:
    record = _BASE_LOG_RECORD_FACTORY(*args, **kwargs)
    context = trace.get_current_span().get_span_context()
    record.trace_id = format(context.trace_id, "032x") if context.is_valid else _NO_TRACE_ID
    record.span_id = format(context.span_id, "016x") if context.is_valid else _NO_SPAN_ID
    return record


def _install_log_correlation() -> None:
    if logging.getLogRecordFactory() is not _correlated_record_factory:
        logging.setLogRecordFactory(_correlated_record_factory)
