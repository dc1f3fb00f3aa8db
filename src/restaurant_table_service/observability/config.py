"""OpenTelemetry and logging configuration for the table service.

Exporters are only installed outside of test runs. Polling fires an HTTP
request every few seconds per view, so the per-request INFO logs of the HTTP
and AWS client libraries are turned down to WARNING.
"""

import logging
import os
from typing import Any

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.botocore import BotocoreInstrumentor
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from pythonjsonlogger import jsonlogger

logger = logging.getLogger(__name__)

SERVICE_NAME = "table-svc"
NOISY_LOGGERS = ("httpx", "httpcore", "botocore", "boto3", "urllib3")


def otlp_endpoint() -> str:
    return os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4318").rstrip("/")


def get_service_resource() -> Resource:
    """Create the resource shared by traces and metrics.

    Returns:
        Resource naming the service, its version and deployment environment
    """
    return Resource.create(
        {
            "service.name": os.getenv("OTEL_SERVICE_NAME", SERVICE_NAME),
            "service.namespace": "restaurant",
            "service.version": os.getenv("SERVICE_VERSION", "0.1.0"),
            "deployment.environment": os.getenv("ENVIRONMENT", "development"),
        }
    )


def setup_tracing(resource: Resource) -> None:
    exporter = OTLPSpanExporter(endpoint=f"{otlp_endpoint()}/v1/traces")
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    logger.info(f"Exporting traces to {otlp_endpoint()}")


def setup_metrics(resource: Resource) -> None:
    """Export metrics periodically.

    OTEL_METRIC_EXPORT_INTERVAL (milliseconds) overrides the one minute default.
    """
    interval_ms = int(os.getenv("OTEL_METRIC_EXPORT_INTERVAL", "60000"))
    exporter = OTLPMetricExporter(endpoint=f"{otlp_endpoint()}/v1/metrics")
    reader = PeriodicExportingMetricReader(exporter, export_interval_millis=interval_ms)
    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=[reader]))

    logger.info(f"Exporting metrics to {otlp_endpoint()} every {interval_ms} ms")


def setup_auto_instrumentation() -> None:
    """Instrument the remote store client (httpx) and the escalation table (botocore).

    Safe to call more than once; already instrumented libraries are skipped.
    """
    for instrumentor in (HTTPXClientInstrumentor(), BotocoreInstrumentor()):
        if not instrumentor.is_instrumented_by_opentelemetry:
            instrumentor.instrument()


def setup_observability(app: Any = None, enable_exporters: bool = True) -> None:
    """Initialize tracing, metrics and auto-instrumentation.

    Args:
        app: Optional FastAPI application to instrument
        enable_exporters: Whether to install OTLP exporters. Always off when ENVIRONMENT=test.
    """
    if os.getenv("ENVIRONMENT", "development") == "test":
        enable_exporters = False

    resource = get_service_resource()
    if enable_exporters:
        setup_tracing(resource)
        setup_metrics(resource)
    else:
        trace.set_tracer_provider(TracerProvider(resource=resource))
        metrics.set_meter_provider(MeterProvider(resource=resource))

    setup_auto_instrumentation()
    if app is not None:
        FastAPIInstrumentor.instrument_app(app)

    logger.info(
        f"Observability configured (exporters {'on' if enable_exporters else 'off'}, "
        f"FastAPI {'instrumented' if app is not None else 'not instrumented'})"
    )


def configure_logging(log_level: str = "INFO") -> None:
    """Send JSON log lines to stderr from the root logger.

    Args:
        log_level: Default level; the LOG_LEVEL environment variable wins
    """
    level_name = os.getenv("LOG_LEVEL", log_level).upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s",
            rename_fields={"levelname": "level"},
            timestamp=True,
        )
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    logger.info(f"JSON logging configured at {level_name}")
