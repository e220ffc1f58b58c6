"""HTTP client for the document API."""
import json
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from precision_pdf.models.document import DocumentStatus
from precision_pdf.utils.logger import logger


class ApiClientError(Exception):
    """Raised when the document API answers with an error status."""

    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"API request failed with status {status_code}: {detail}")


@dataclass(frozen=True)
class ProbeResult:
    has_extracted_content: bool
    status: Optional[DocumentStatus] = None

    @property
    def is_terminal(self) -> bool:
        return self.status is not None and self.status.is_terminal


def _detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return response.text


def _status(value: Any) -> Optional[DocumentStatus]:
    try:
        return DocumentStatus(value)
    except ValueError:
        return None


class DocumentApiClient:
    """Client for the upload, status and event endpoints."""

    def __init__(
        self,
        base_url: str,
        owner_id: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        """
        Initialize API client.

        Args:
            base_url: Server root, e.g. http://localhost:8000
            owner_id: Sent as X-User-Id on every request
            http_client: Optional preconfigured httpx client
            timeout: Timeout for non-streaming requests
        """
        self.base_url = base_url.rstrip("/")
        self.owner_id = owner_id
        self.timeout = timeout
        self.client = http_client or httpx.AsyncClient(base_url=self.base_url)

    @property
    def headers(self) -> Dict[str, str]:
        return {"X-User-Id": self.owner_id}

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        response = await self.client.request(
            method, self._url(path), headers=self.headers, timeout=self.timeout, **kwargs
        )
        if response.status_code >= 400:
            raise ApiClientError(response.status_code, _detail(response))

        try:
            data = response.json()
        except ValueError:
            raise ApiClientError(response.status_code, "Response body is not valid JSON")
        if not isinstance(data, dict):
            raise ApiClientError(response.status_code, "Response body is not a JSON object")
        return data

    async def upload(self, content: bytes, filename: str, mime_type: str) -> Dict[str, Any]:
        """Upload a file; returns ``{documentId, status, pageCount}``."""
        return await self._request(
            "POST", "/api/upload-document", files={"file": (filename, content, mime_type)}
        )

    async def probe(self, document_id: str) -> ProbeResult:
        data = await self._request(
            "GET", f"/api/documents/{document_id}/status", params={"minimal": "true"}
        )
        return ProbeResult(
            has_extracted_content=bool(data.get("hasExtractedContent")),
            status=_status(data.get("status")),
        )

    async def fetch_document(self, document_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/api/documents/{document_id}/status")

    async def retry(self, document_id: str) -> Dict[str, Any]:
        return await self._request("POST", f"/api/documents/{document_id}/retry")

    async def subscribe(self, document_id: str) -> AsyncIterator[Dict[str, Any]]:
        """
        Yield full document records pushed over Server-Sent Events.

        The stream ends when the server closes it, which it does after a
        terminal record.
        """
        async with self.client.stream(
            "GET",
            self._url(f"/api/documents/{document_id}/events"),
            headers={**self.headers, "Accept": "text/event-stream"},
            timeout=httpx.Timeout(self.timeout, read=None),
        ) as response:
            if response.status_code >= 400:
                await response.aread()
                raise ApiClientError(response.status_code, _detail(response))

            event = "message"
            data_lines = []
            async for line in response.aiter_lines():
                if line == "":
                    if data_lines:
                        payload = "\n".join(data_lines)
                        record = self._decode_event(document_id, event, payload)
                        if record is not None:
                            yield record
                    event, data_lines = "message", []
                elif line.startswith(":"):
                    continue
                elif line.startswith("event:"):
                    event = line[len("event:"):].strip()
                elif line.startswith("data:"):
                    data_lines.append(line[len("data:"):].lstrip())

    @staticmethod
    def _decode_event(document_id: str, event: str, payload: str) -> Optional[Dict[str, Any]]:
        try:
            data = json.loads(payload)
        except ValueError:
            logger.warning(f"Ignoring malformed event for {document_id}", extra={"document_id": document_id})
            return None

        if event == "error":
            detail = data.get("detail", payload) if isinstance(data, dict) else data
            raise ApiClientError(500, str(detail))
        if event not in ("document", "message") or not isinstance(data, dict):
            return None
        return data

    def page_image_url(self, document_id: str, page: int) -> str:
        return self._url(f"/api/documents/{document_id}/page-image/{page}")

    async def close(self) -> None:
        await self.client.aclose()
