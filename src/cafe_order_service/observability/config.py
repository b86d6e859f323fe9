"""OpenTelemetry configuration and structured logging setup."""

import logging
import os

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.botocore import BotocoreInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from pythonjsonlogger import jsonlogger

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_NAME = "cafe-order-svc"
SERVICE_NAMESPACE = "cafe-pos"
DEFAULT_METRIC_EXPORT_INTERVAL_MS = 60000

# AWS SDK and HTTP transport loggers that flood DEBUG output with wire details
NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "httpcore", "httpx")


def get_service_resource() -> Resource:
    """Create OpenTelemetry resource identifying this order service.

    Returns:
        Resource with service name, namespace, environment and Lambda function attributes
    """
    service_name = os.getenv("OTEL_SERVICE_NAME", DEFAULT_SERVICE_NAME)
    environment = os.getenv("ENVIRONMENT", "development")

    attributes = {
        "service.name": service_name,
        "service.namespace": SERVICE_NAMESPACE,
        "deployment.environment": environment,
    }

    # Set by the Lambda runtime; absent when running locally
    function_name = os.getenv("AWS_LAMBDA_FUNCTION_NAME")
    if function_name:
        attributes["faas.name"] = function_name
        attributes["faas.version"] = os.getenv("AWS_LAMBDA_FUNCTION_VERSION", "$LATEST")

    return Resource.create(attributes)


def setup_tracing(resource: Resource) -> None:
    """Configure OpenTelemetry tracing for order operations.

    Args:
        resource: Service resource for trace identification
    """
    # Create OTLP exporter
    otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4318")
    exporter = OTLPSpanExporter(endpoint=f"{otlp_endpoint}/v1/traces")

    # Create tracer provider with batch processor
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(exporter))

    # Set as global tracer provider
    trace.set_tracer_provider(provider)

    logger.info(f"OpenTelemetry tracing configured with endpoint: {otlp_endpoint}")


def setup_metrics(resource: Resource) -> None:
    """Configure OpenTelemetry metrics for order counters and totals.

    The export interval follows OTEL_METRIC_EXPORT_INTERVAL so short-lived
    Lambda containers can flush more often than the default minute.

    Args:
        resource: Service resource for metric identification
    """
    otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4318")
    interval_ms = int(
        os.getenv("OTEL_METRIC_EXPORT_INTERVAL", str(DEFAULT_METRIC_EXPORT_INTERVAL_MS))
    )

    # Create OTLP metric exporter
    exporter = OTLPMetricExporter(endpoint=f"{otlp_endpoint}/v1/metrics")

    # Create meter provider with periodic reader
    reader = PeriodicExportingMetricReader(exporter, export_interval_millis=interval_ms)
    provider = MeterProvider(resource=resource, metric_readers=[reader])

    # Set as global meter provider
    metrics.set_meter_provider(provider)

    logger.info(
        f"OpenTelemetry metrics configured with endpoint: {otlp_endpoint}, "
        f"export interval: {interval_ms}ms"
    )


def setup_auto_instrumentation() -> None:
    """Configure automatic instrumentation for menu catalog and DynamoDB calls.

    Safe to call more than once per container; instrumentors already active
    are left alone.
    """
    # Instrument httpx for menu catalog lookups
    httpx_instrumentor = HTTPXClientInstrumentor()
    if not httpx_instrumentor.is_instrumented_by_opentelemetry:
        httpx_instrumentor.instrument()

    # Instrument botocore for DynamoDB reads, updates and transactions
    botocore_instrumentor = BotocoreInstrumentor()
    if not botocore_instrumentor.is_instrumented_by_opentelemetry:
        botocore_instrumentor.instrument()

    logger.info("Auto-instrumentation enabled for httpx and botocore")


def setup_observability(enable_exporters: bool = True) -> None:
    """Initialize OpenTelemetry with tracing, metrics, and auto-instrumentation.

    Args:
        enable_exporters: Whether to enable OTLP exporters (default: True, set False for tests)
    """
    # Check if we're in test environment
    if os.getenv("ENVIRONMENT", "development") == "test":
        enable_exporters = False

    resource = get_service_resource()

    if enable_exporters:
        setup_tracing(resource)
        setup_metrics(resource)
    else:
        # Providers without exporters so spans and instruments are still created
        trace.set_tracer_provider(TracerProvider(resource=resource))
        metrics.set_meter_provider(MeterProvider(resource=resource))

    # Setup auto-instrumentation
    setup_auto_instrumentation()

    logger.info("OpenTelemetry observability fully configured")


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structured JSON logging for CloudWatch.

    Records carry "level" and "logger" keys. Decimal order totals and other
    values the json module cannot encode are written as strings. Chatty SDK
    and transport loggers are held at WARNING unless the service itself runs
    at DEBUG.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    # Get log level from environment or use provided default
    level_str = os.getenv("LOG_LEVEL", log_level).upper()
    level = getattr(logging, level_str, logging.INFO)

    # Create JSON formatter
    formatter = jsonlogger.JsonFormatter(
        "%(asctime)s %(name)s %(levelname)s %(message)s",
        rename_fields={"levelname": "level", "name": "logger"},
        json_default=str,
        timestamp=True,
    )

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers, including the one the Lambda runtime installs
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # Add console handler with JSON formatting
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logger.info(f"Structured JSON logging configured at {level_str} level")
