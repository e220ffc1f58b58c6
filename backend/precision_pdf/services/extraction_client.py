"""Clients for the remote document extraction backend."""
import time
from typing import Any, List, Optional, Protocol

import httpx

from precision_pdf.exceptions import ExtractionError, ExtractionUnavailableError
from precision_pdf.models.document import Chunk, ExtractionResult
from precision_pdf.utils.logger import logger
from precision_pdf.validators import PDF_MIME_TYPE

PLACEHOLDER_MARKDOWN = (
    "# Document Processing\n\n"
    "> **Placeholder result.** The extraction service is not available, so no "
    "content was extracted from this document."
)


class ExtractionClient(Protocol):
    """Accepts document bytes and returns markdown plus content chunks."""

    async def extract(self, content: bytes, filename: str, mime_type: str) -> ExtractionResult:
        ...

    async def close(self) -> None:
        ...


def parse_extraction_payload(payload: Any) -> ExtractionResult:
    """
    Turn an extraction response body into an ExtractionResult.

    Missing or malformed fields produce empty values instead of errors.
    """
    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, dict):
        data = payload if isinstance(payload, dict) else {}

    markdown = data.get("markdown")
    if not isinstance(markdown, str):
        markdown = ""

    raw_chunks = data.get("chunks")
    if not isinstance(raw_chunks, list):
        raw_chunks = []

    chunks: List[Chunk] = []
    seen_ids = set()
    for index, raw in enumerate(raw_chunks):
        if not isinstance(raw, dict):
            continue
        chunk = Chunk.from_dict(raw, fallback_id=f"chunk-{index}")
        if chunk.chunk_id in seen_ids:
            chunk.chunk_id = f"{chunk.chunk_id}-{index}"
        seen_ids.add(chunk.chunk_id)
        chunks.append(chunk)

    page_count = data.get("num_pages")
    if isinstance(page_count, bool) or not isinstance(page_count, int) or page_count < 0:
        page_count = None

    return ExtractionResult(markdown=markdown, chunks=chunks, page_count=page_count)


class LandingAIExtractionClient:
    """Client for the Landing AI agentic document analysis API."""

    def __init__(
        self,
        api_key: str,
        api_url: str = "https://api.va.landing.ai/v1/tools/agentic-document-analysis",
        timeout_seconds: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize extraction client.

        Args:
            api_key: Landing AI API key
            api_url: Analysis endpoint URL
            timeout_seconds: Request timeout; None leaves the call unbounded
            http_client: Optional preconfigured httpx client
        """
        if not api_key:
            raise ValueError("Landing AI API key is required")

        self.api_key = api_key
        self.api_url = api_url
        self.client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))

    async def extract(self, content: bytes, filename: str, mime_type: str) -> ExtractionResult:
        """
        Send a document for extraction.

        Raises:
            ExtractionUnavailableError: If the backend cannot be reached
            ExtractionError: If the backend answers with an error status
        """
        start_time = time.time()
        field_name = "pdf" if mime_type == PDF_MIME_TYPE else "image"

        try:
            response = await self.client.post(
                self.api_url,
                headers={"Authorization": f"Basic {self.api_key}"},
                files={field_name: (filename, content, mime_type)},
            )
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            raise ExtractionUnavailableError(f"Extraction service unreachable: {str(e)}")
        except httpx.HTTPError as e:
            raise ExtractionError(f"Extraction request failed: {str(e)}")

        if response.status_code >= 400:
            raise ExtractionError(
                f"Extraction failed with status {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError:
            logger.warning("Extraction response is not JSON, completing with empty content")
            payload = {}

        result = parse_extraction_payload(payload)
        logger.info(
            "Extraction response received",
            extra={
                "chunk_count": len(result.chunks),
                "elapsed_seconds": round(time.time() - start_time, 3),
            },
        )
        return result

    async def close(self) -> None:
        await self.client.aclose()


class PlaceholderExtractionClient:
    """Stands in for the extraction backend when it is not configured."""

    async def extract(self, content: bytes, filename: str, mime_type: str) -> ExtractionResult:
        return placeholder_result()

    async def close(self) -> None:
        pass


def placeholder_result() -> ExtractionResult:
    return ExtractionResult(
        markdown=PLACEHOLDER_MARKDOWN,
        chunks=[
            Chunk(
                chunk_id="placeholder-1",
                content="This is placeholder content; no extraction was performed.",
                chunk_type="text",
                extra={"placeholder": True},
            )
        ],
    )


def build_extraction_client(settings) -> "ExtractionClient":
    """Pick the real client when an API key is configured, else the placeholder."""
    if not settings.extraction_configured:
        logger.warning("Landing AI API key not configured; using placeholder extraction")
        return PlaceholderExtractionClient()

    timeout = settings.extraction_timeout_seconds or None
    return LandingAIExtractionClient(
        api_key=settings.landing_ai_api_key,
        api_url=settings.landing_ai_api_url,
        timeout_seconds=timeout,
    )


def is_placeholder_result(result: ExtractionResult) -> bool:
    return any(chunk.extra.get("placeholder") for chunk in result.chunks)
