"""OpenTelemetry tracing for background extraction."""
from typing import Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter

from precision_pdf.utils.logger import logger


def build_exporter(otlp_endpoint: Optional[str]) -> SpanExporter:
    """OTLP over HTTP when an endpoint is configured, console output otherwise."""
    if otlp_endpoint:
        logger.info(f"Exporting spans to {otlp_endpoint}")
        return OTLPSpanExporter(endpoint=otlp_endpoint)
    logger.info("Exporting spans to the console")
    return ConsoleSpanExporter()


def initialize_tracing(
    service_name: str = "precision-pdf",
    service_version: str = "1.0.0",
    otlp_endpoint: Optional[str] = None,
    tracing_enabled: bool = True,
) -> Optional[TracerProvider]:
    """
    Install a tracer provider for the service.

    The ``document.extract`` spans opened by the document processor are the
    parents of the instrumented httpx requests to the extraction backend.

    Args:
        service_name: Name reported as ``service.name``
        service_version: Version reported as ``service.version``
        otlp_endpoint: OTLP HTTP endpoint, e.g. http://localhost:4318/v1/traces
        tracing_enabled: When False nothing is installed

    Returns:
        The installed TracerProvider, or None when tracing is off or failed to start
    """
    if not tracing_enabled:
        logger.info("Tracing is disabled")
        return None

    try:
        tracer_provider = TracerProvider(
            resource=Resource.create({"service.name": service_name, "service.version": service_version})
        )
        tracer_provider.add_span_processor(BatchSpanProcessor(build_exporter(otlp_endpoint)))
        trace.set_tracer_provider(tracer_provider)

        HTTPXClientInstrumentor().instrument(tracer_provider=tracer_provider)
    except Exception as e:
        # Tracing never blocks startup
        logger.error(f"Failed to initialize tracing: {str(e)}", exc_info=True)
        return None

    logger.info(f"Tracing initialized for {service_name} {service_version}")
    return tracer_provider


def shutdown_tracing(tracer_provider: Optional[TracerProvider]) -> None:
    """Stop httpx instrumentation and flush pending spans."""
    if tracer_provider is None:
        return

    try:
        HTTPXClientInstrumentor().uninstrument()
        tracer_provider.shutdown()
    except Exception as e:
        logger.warning(f"Error during tracing shutdown: {str(e)}")
        return
    logger.info("Tracing shutdown completed")
