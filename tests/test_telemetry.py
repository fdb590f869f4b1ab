import logging

from opentelemetry.sdk.trace import TracerProvider

from edit_url_poller.core import telemetry
from edit_url_poller.core.config import Settings


def test_parse_headers_skips_malformed_items() -> None:
    assert telemetry._parse_headers("api-key=abc, x-team = poller ,broken,=empty") == {
        "api-key": "abc",
        "x-team": "poller",
    }
    assert telemetry._parse_headers(None) == {}


def test_resolve_endpoint_appends_signal_path(monkeypatch) -> None:
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT", raising=False)
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_METRICS_ENDPOINT", raising=False)
    settings = Settings(otel_exporter_otlp_endpoint="http://collector:4318/")

    assert telemetry._resolve_endpoint(settings, signal="traces") == "http://collector:4318/v1/traces"
    assert telemetry._resolve_endpoint(settings, signal="metrics") == "http://collector:4318/v1/metrics"


def test_resolve_endpoint_prefers_signal_specific_env(monkeypatch) -> None:
    monkeypatch.setenv("OTEL_EXPORTER_OTLP_METRICS_ENDPOINT", "http://metrics:9000/push")
    settings = Settings(otel_exporter_otlp_endpoint="http://collector:4318")

    assert telemetry._resolve_endpoint(settings, signal="metrics") == "http://metrics:9000/push"


def test_resolve_endpoint_returns_none_without_configuration(monkeypatch) -> None:
    for name in (
        "OTEL_EXPORTER_OTLP_ENDPOINT",
        "OTEL_EXPORTER_OTLP_TRACES_ENDPOINT",
        "OTEL_EXPORTER_OTLP_METRICS_ENDPOINT",
        "EUP_OTEL_EXPORTER_OTLP_ENDPOINT",
    ):
        monkeypatch.delenv(name, raising=False)

    assert telemetry._resolve_endpoint(Settings(), signal="traces") is None


def test_setup_telemetry_disabled_returns_inert_runtime() -> None:
    runtime = telemetry.setup_poller_telemetry(Settings(otel_enabled=False))

    assert runtime.enabled is False
    assert runtime.tracer_provider is None
    assert runtime.meter_provider is None
    telemetry.shutdown_poller_telemetry(runtime)


def test_log_correlation_installs_once_and_stamps_ids(monkeypatch) -> None:
    monkeypatch.setattr(logging, "_logRecordFactory", logging.getLogRecordFactory())
    telemetry._install_log_correlation()
    installed = logging.getLogRecordFactory()
    telemetry.configure_poller_logging()

    assert logging.getLogRecordFactory() is installed
    record = logging.getLogger("edit_url_poller.test").makeRecord(
        "edit_url_poller.test", logging.INFO, __file__, 1, "polled", None, None
    )
    assert record.trace_id == "0" * 32
    assert record.span_id == "0" * 16

    tracer = TracerProvider().get_tracer("test")
    with tracer.start_as_current_span("poller.cycle") as span:
        inside = logging.getLogger("edit_url_poller.test").makeRecord(
            "edit_url_poller.test", logging.INFO, __file__, 1, "polled", None, None
        )
    assert inside.trace_id == format(span.get_span_context().trace_id, "032x")
    assert inside.span_id == format(span.get_span_context().span_id, "016x")
