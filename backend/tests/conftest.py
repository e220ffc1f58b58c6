"""Pytest configuration and fixtures."""
import asyncio
import io
import os
import shutil
import tempfile
from typing import List, Optional

import fitz  # PyMuPDF
import pytest
from PIL import Image

from precision_pdf.config import Settings
from precision_pdf.models.document import BoundingBox, Chunk, ExtractionResult, Grounding
from precision_pdf.services.blob_store import LocalBlobStore
from precision_pdf.services.record_store import InMemoryDocumentRecordStore


class FakeExtractionClient:
    """Extraction backend double; can be held open with ``gate``."""

    def __init__(self, result: Optional[ExtractionResult] = None, error: Exception = None):
        self.result = result or ExtractionResult(markdown="", chunks=[])
        self.error = error
        self.gate: Optional[asyncio.Event] = None
        self.calls = []
        self.closed = False

    async def extract(self, content: bytes, filename: str, mime_type: str) -> ExtractionResult:
        self.calls.append((filename, mime_type, len(content)))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.result

    async def close(self) -> None:
        self.closed = True


def build_pdf(page_count: int) -> bytes:
    doc = fitz.open()
    for index in range(page_count):
        page = doc.new_page(width=300, height=400)
        page.insert_text((40, 60), f"Page {index + 1}")
    content = doc.tobytes()
    doc.close()
    return content


def build_png() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (20, 10), "white").save(buffer, format="PNG")
    return buffer.getvalue()


def grounded_chunks() -> List[Chunk]:
    """Twelve chunks over three pages, nine of them grounded."""
    chunks = []
    for index in range(12):
        grounding = []
        if index < 9:
            page = index // 3
            top = 0.1 + 0.25 * (index % 3)
            grounding = [Grounding(page=page, box=BoundingBox(0.1, top, 0.9, top + 0.2))]
        chunks.append(
            Chunk(
                chunk_id=f"chunk-{index}",
                content=f"Content of chunk {index}",
                chunk_type="text" if index % 4 else "title",
                grounding=grounding,
            )
        )
    return chunks


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = tempfile.mkdtemp()
    yield temp_path
    shutil.rmtree(temp_path)


@pytest.fixture
def settings(temp_dir):
    """Settings isolated from any local .env file."""
    return Settings(
        _env_file=None,
        landing_ai_api_key="",
        blob_store_path=os.path.join(temp_dir, "blobs"),
        examples_path=os.path.join(temp_dir, "examples"),
        record_store_backend="memory",
        render_scale=1.0,
        tracing_enabled=False,
    )


@pytest.fixture
def blob_store(temp_dir):
    return LocalBlobStore(os.path.join(temp_dir, "blobs"))


@pytest.fixture
def record_store():
    return InMemoryDocumentRecordStore()


@pytest.fixture
def sample_chunks():
    return grounded_chunks()


@pytest.fixture
def extraction_client(sample_chunks):
    return FakeExtractionClient(
        ExtractionResult(markdown="# Sample\n\nExtracted text.", chunks=sample_chunks, page_count=3)
    )


@pytest.fixture
def three_page_pdf():
    return build_pdf(3)


@pytest.fixture
def sample_png():
    return build_png()
