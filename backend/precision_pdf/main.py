"""FastAPI application entry point."""
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from precision_pdf.api.routes import documents, examples, upload
from precision_pdf.config import Settings
from precision_pdf.container import ServiceContainer, build_container
from precision_pdf.utils.logger import logger
from precision_pdf.utils.tracer import initialize_tracing, shutdown_tracing

SERVICE_NAME = "Precision PDF"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown."""
    settings: Settings = app.state.settings
    logger.info(f"Starting {SERVICE_NAME}")

    # Initialize tracing before services
    tracer_provider = initialize_tracing(
        service_name="precision-pdf",
        service_version=app.version,
        otlp_endpoint=settings.otlp_endpoint if settings.otlp_endpoint else None,
        tracing_enabled=settings.tracing_enabled,
    )

    if app.state.container is None:
        app.state.container = build_container(settings)
    logger.info(
        f"Services initialized (record store: {settings.record_store_backend}, "
        f"extraction: {'landing-ai' if settings.extraction_configured else 'placeholder'})"
    )

    yield

    # Shutdown
    logger.info(f"Shutting down {SERVICE_NAME}")
    await app.state.container.close()
    if tracer_provider:
        shutdown_tracing(tracer_provider)


async def prometheus_metrics():
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def create_app(
    settings: Optional[Settings] = None,
    container: Optional[ServiceContainer] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        settings: Application settings; loaded from the environment when omitted
        container: Prebuilt services; built during startup when omitted

    Returns:
        Configured FastAPI application
    """
    settings = settings or (container.settings if container else Settings())

    app = FastAPI(
        title=SERVICE_NAME,
        description="Document upload, page previews and grounded extraction",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.container = container

    origins = [origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": SERVICE_NAME}

    app.add_api_route("/metrics", prometheus_metrics, methods=["GET"])
    app.add_api_route("/api/metrics", prometheus_metrics, methods=["GET"], tags=["metrics"])

    app.include_router(upload.router, prefix="/api", tags=["upload"])
    app.include_router(documents.router, prefix="/api", tags=["documents"])
    app.include_router(examples.router, prefix="/api", tags=["examples"])

    # Static page images of the bundled examples
    examples_dir = os.path.abspath(settings.examples_path)
    if os.path.isdir(examples_dir):
        app.mount("/examples", StaticFiles(directory=examples_dir), name="examples")
        logger.info(f"Serving example documents from {examples_dir}")
    else:
        logger.info("Examples directory not found, skipping example image serving")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=app.state.settings.api_host, port=app.state.settings.api_port)
