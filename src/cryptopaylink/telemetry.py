import structlog
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SpanExporter,
)

from cryptopaylink import __version__
from cryptopaylink.config import ServerSettings

logger = structlog.get_logger(__name__)


def init_telemetry(settings: ServerSettings) -> TracerProvider:
    """
    Install the global tracer provider for the payment service.

    The provider is returned so the app can flush and shut it down when the
    lifespan ends; spans still queued in the batch processor are lost otherwise.

    Raises:
        ValueError: If the service name is blank
    """
    service_name = settings.otel_service_name.lower().strip()
    if not service_name:
        raise ValueError(
            "service_name must be provided for OpenTelemetry initialization"
        )

    resource = Resource.create(
        {SERVICE_NAME: service_name, SERVICE_VERSION: __version__}
    )
    provider = TracerProvider(resource=resource)
    endpoint = str(settings.otel_exporter_otlp_endpoint)
    provider.add_span_processor(BatchSpanProcessor(_span_exporter(endpoint)))
    trace.set_tracer_provider(provider)

    logger.info("telemetry_initialized", service_name=service_name, endpoint=endpoint)
    return provider


def _span_exporter(endpoint: str) -> SpanExporter:
    try:
        return OTLPSpanExporter(endpoint=endpoint, insecure=endpoint.startswith("http://"))
    except (ValueError, OSError) as e:
        logger.warning("otlp_exporter_unavailable", endpoint=endpoint, error=str(e))
        return ConsoleSpanExporter()
