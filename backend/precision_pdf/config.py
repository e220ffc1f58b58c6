"""Application settings."""
import os

from pydantic_settings import BaseSettings


MB = 1024 * 1024


class Settings(BaseSettings):
    """Application settings."""

    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"
    cors_origins: str = "*"  # Comma-separated list of allowed origins

    # Landing AI agentic document analysis
    landing_ai_api_key: str = ""  # Empty = placeholder extraction (degraded mode)
    landing_ai_api_url: str = "https://api.va.landing.ai/v1/tools/agentic-document-analysis"
    extraction_timeout_seconds: float = 0  # 0 = no client-enforced timeout
    placeholder_when_unavailable: bool = True  # Placeholder completion when the backend is unreachable

    # Storage
    blob_store_path: str = "./blob_store"
    blob_base_url: str = "/api/blobs"
    record_store_backend: str = "memory"  # "memory" or "redis"
    redis_url: str = "redis://localhost:6379/0"

    # Upload limits
    max_file_size_mb: int = 250
    max_pages: int = 50

    # Page rendering
    render_scale: float = 2.0  # Fixed scale factor for page previews
    page_image_format: str = "png"  # "png" or "jpeg"

    # Bundled example documents
    examples_path: str = "./examples"

    # OpenTelemetry tracing configuration
    tracing_enabled: bool = False
    otlp_endpoint: str = ""  # OTLP endpoint URL (empty = use console exporter)

    class Config:
        # Look for .env in both backend/ and parent directory
        env_file = os.path.join(os.path.dirname(__file__), "..", "..", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * MB

    @property
    def extraction_configured(self) -> bool:
        return bool(self.landing_ai_api_key.strip())
