"""Tests for services."""
import asyncio
import json
import logging
from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from conftest import FakeExtractionClient, build_pdf
from precision_pdf.config import MB
from precision_pdf.exceptions import (
    ConversionError,
    DocumentNotFoundError,
    ExtractionError,
    ExtractionUnavailableError,
    FileSizeExceededError,
    FileTypeNotSupportedError,
    InvalidFileNameError,
    InvalidStatusTransitionError,
    PageLimitExceededError,
    StorageError,
)
from precision_pdf.models.document import (
    BoundingBox,
    Chunk,
    Document,
    DocumentStatus,
    ExtractionResult,
    Grounding,
    infer_page_count,
)
from precision_pdf.services.blob_store import content_type_for
from precision_pdf.services.document_processor import DocumentProcessor
from precision_pdf.services.document_service import DocumentService
from precision_pdf.services.document_upload_service import DocumentUploadService
from precision_pdf.services.extraction_client import (
    LandingAIExtractionClient,
    PlaceholderExtractionClient,
    build_extraction_client,
    is_placeholder_result,
    parse_extraction_payload,
)
from precision_pdf.services.rasterizer import PageRasterizer
from precision_pdf.services.record_store import RedisDocumentRecordStore
from precision_pdf.services.task_tracker import BackgroundTaskTracker
from precision_pdf.utils.logger import JSONFormatter
from precision_pdf.validators import UploadValidator, validate_upload

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"
JPEG_MAGIC = b"\xff\xd8"


def make_document(document_id="doc-1", owner_id="user-1"):
    return Document(
        document_id=document_id,
        owner_id=owner_id,
        title="a.pdf",
        mime_type="application/pdf",
        file_size=1,
        status=DocumentStatus.PROCESSING,
    )


def make_upload_service(settings, blob_store, record_store, extraction_client, rasterizer=None):
    document_service = DocumentService(record_store)
    tracker = BackgroundTaskTracker()
    processor = DocumentProcessor(document_service, blob_store, extraction_client)
    service = DocumentUploadService(
        blob_store=blob_store,
        document_service=document_service,
        rasterizer=rasterizer or PageRasterizer(scale=1.0),
        document_processor=processor,
        task_tracker=tracker,
        settings=settings,
    )
    return service, document_service, tracker


class TestUploadValidator:
    """Tests for upload validation."""

    def test_rejects_unsafe_file_names(self):
        for name in ["", "   ", "../secret.pdf", "dir/file.pdf", "bad<name>.pdf", "a" * 256 + ".pdf"]:
            with pytest.raises(InvalidFileNameError):
                UploadValidator.validate_file_name(name)

    def test_declared_type_wins(self):
        assert UploadValidator.validate_file_type("scan.bin", "image/png") == "image/png"

    def test_generic_type_falls_back_to_extension(self):
        assert UploadValidator.validate_file_type("doc.PDF", "application/octet-stream") == "application/pdf"
        assert UploadValidator.validate_file_type("photo.jpeg", "") == "image/jpeg"

    def test_rejects_unsupported_types(self):
        with pytest.raises(FileTypeNotSupportedError):
            UploadValidator.validate_file_type("notes.txt", "text/plain")

    def test_disallowed_declared_type_ignores_extension(self):
        """Only a missing or generic declared type falls back to the extension."""
        with pytest.raises(FileTypeNotSupportedError):
            UploadValidator.validate_file_type("evil.pdf", "text/html")
        with pytest.raises(FileTypeNotSupportedError):
            UploadValidator.validate_file_type("photo.png", "image/gif")

    def test_size_limit_boundary(self):
        """A 251 MB file is rejected and a 249 MB PDF passes."""
        with pytest.raises(FileSizeExceededError):
            validate_upload("big.pdf", "application/pdf", 251 * MB, 250 * MB)

        upload = validate_upload("ok.pdf", "application/pdf", 249 * MB, 250 * MB)
        assert upload.is_pdf
        assert upload.file_size == 249 * MB

    def test_rejects_empty_file(self):
        with pytest.raises(FileSizeExceededError):
            validate_upload("empty.pdf", "application/pdf", 0, 250 * MB)

    def test_page_limit(self):
        UploadValidator.validate_page_count(50, 50)
        with pytest.raises(PageLimitExceededError):
            UploadValidator.validate_page_count(51, 50)


class TestModels:
    """Tests for document models."""

    def test_bounding_box_well_formed(self):
        assert BoundingBox(0.0, 0.0, 1.0, 1.0).is_well_formed()
        assert not BoundingBox(0.5, 0.1, 0.4, 0.2).is_well_formed()
        assert not BoundingBox(0.1, 0.1, 1.2, 0.2).is_well_formed()
        assert not BoundingBox(float("nan"), 0.1, 0.2, 0.2).is_well_formed()

    def test_chunk_from_dict_is_lenient(self):
        chunk = Chunk.from_dict(
            {
                "text": "Hello",
                "grounding": [
                    {"page": 0, "box": {"l": 0.1, "t": 0.1, "r": 0.2, "b": 0.2}},
                    {"page": "x", "box": {}},
                    {"box": {"l": 0.1}},
                    "garbage",
                ],
                "confidence": 0.9,
            },
            fallback_id="chunk-3",
        )

        assert chunk.chunk_id == "chunk-3"
        assert chunk.content == "Hello"
        assert chunk.chunk_type == "text"
        assert len(chunk.grounding) == 1
        assert chunk.extra == {"confidence": 0.9}

    def test_chunk_grounding_inside_metadata(self):
        chunk = Chunk.from_dict(
            {
                "chunk_id": "c1",
                "content": "Table",
                "metadata": {
                    "chunk_type": "table",
                    "grounding": [{"page": 1, "box": {"left": 0, "top": 0, "right": 1, "bottom": 0.5}}],
                },
            }
        )

        assert chunk.chunk_type == "table"
        assert chunk.grounding == [Grounding(page=1, box=BoundingBox(0, 0, 1, 0.5))]
        assert "grounding" not in chunk.extra
        assert "chunk_type" not in chunk.extra

    def test_document_dict_preserves_fields(self, sample_chunks):
        document = Document(
            document_id="doc-1",
            owner_id="user-1",
            title="report.pdf",
            mime_type="application/pdf",
            file_size=10,
            status=DocumentStatus.COMPLETED,
            markdown="# Report",
            chunks=sample_chunks,
            page_images=["a.png", "b.png"],
            page_count=2,
        )

        restored = Document.from_dict(json.loads(json.dumps(document.to_dict())))

        assert restored == document

    def test_infer_page_count(self, sample_chunks):
        assert infer_page_count(sample_chunks) == 3
        assert infer_page_count(sample_chunks, declared=7) == 7
        assert infer_page_count([Chunk(chunk_id="c", content="x")]) == 1
        assert infer_page_count([]) == 0


class TestPageRasterizer:
    """Tests for page rasterization."""

    def test_rasterize_pdf_pages_in_order(self):
        rasterizer = PageRasterizer(scale=2.0)
        images = rasterizer.rasterize(build_pdf(3), "application/pdf")

        assert len(images) == 3
        assert all(image.startswith(PNG_MAGIC) for image in images)

    def test_rasterize_jpeg(self):
        rasterizer = PageRasterizer(scale=1.0, image_format="jpeg")
        images = rasterizer.rasterize(build_pdf(1))

        assert rasterizer.content_type == "image/jpeg"
        assert images[0].startswith(JPEG_MAGIC)

    def test_image_input_is_a_single_page(self, sample_png):
        assert PageRasterizer().rasterize(sample_png, "image/png") == [sample_png]

    def test_corrupt_pdf_raises_conversion_error(self):
        with pytest.raises(ConversionError):
            PageRasterizer().rasterize(b"this is not a pdf at all", "application/pdf")

    def test_count_pages(self):
        assert PageRasterizer().count_pages(build_pdf(4)) == 4

    def test_unsupported_format(self):
        with pytest.raises(ValueError):
            PageRasterizer(image_format="gif")


class TestLocalBlobStore:
    """Tests for the local blob store."""

    @pytest.mark.asyncio
    async def test_put_is_content_addressed(self, blob_store):
        first = await blob_store.put(b"same bytes", "image/png")
        second = await blob_store.put(b"same bytes", "image/png")

        assert first == second
        assert first.endswith(".png")
        assert await blob_store.get(first) == b"same bytes"
        assert blob_store.get_url(first) == f"/api/blobs/{first}"
        assert content_type_for(first) == "image/png"

    @pytest.mark.asyncio
    async def test_concurrent_identical_puts(self, blob_store):
        handles = await asyncio.gather(*(blob_store.put(b"blank page", "image/png") for _ in range(5)))
        assert len(set(handles)) == 1

    @pytest.mark.asyncio
    async def test_missing_and_invalid_handles(self, blob_store):
        with pytest.raises(StorageError):
            await blob_store.get("0" * 64 + ".png")
        with pytest.raises(StorageError):
            await blob_store.get("../../etc/passwd")


class TestInMemoryRecordStore:
    """Tests for the in-memory record store."""

    @pytest.mark.asyncio
    async def test_update_missing_document(self, record_store):
        with pytest.raises(DocumentNotFoundError):
            await record_store.update("missing", status=DocumentStatus.FAILED)

    @pytest.mark.asyncio
    async def test_returned_records_are_detached(self, record_store):
        await record_store.create(make_document())
        fetched = await record_store.get("doc-1")
        fetched.title = "changed"

        assert (await record_store.get("doc-1")).title == "a.pdf"

    @pytest.mark.asyncio
    async def test_subscribe_yields_current_then_updates(self, record_store):
        await record_store.create(make_document())
        updates = record_store.subscribe("doc-1")

        first = await asyncio.wait_for(updates.__anext__(), timeout=1)
        await record_store.update("doc-1", status=DocumentStatus.COMPLETED, markdown="", chunks=[])
        second = await asyncio.wait_for(updates.__anext__(), timeout=1)
        await updates.aclose()

        assert first.status == DocumentStatus.PROCESSING
        assert second.status == DocumentStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_list_by_owner(self, record_store):
        await record_store.create(make_document("doc-1"))
        await record_store.create(make_document("doc-2"))
        await record_store.create(make_document("doc-3", owner_id="someone-else"))

        documents = await record_store.list_by_owner("user-1")

        assert {d.document_id for d in documents} == {"doc-1", "doc-2"}


class TestRedisRecordStore:
    """Tests for the Redis record store, run against fakeredis."""

    @pytest.fixture
    def redis_store(self):
        aioredis = pytest.importorskip("fakeredis.aioredis")
        return RedisDocumentRecordStore(aioredis.FakeRedis(decode_responses=True))

    @pytest.mark.asyncio
    async def test_create_update_list(self, redis_store, sample_chunks):
        document = make_document()
        await redis_store.create(document)

        with pytest.raises(StorageError):
            await redis_store.create(document)

        updated = await redis_store.update(
            "doc-1", status=DocumentStatus.COMPLETED, markdown="# Done", chunks=sample_chunks
        )
        fetched = await redis_store.get("doc-1")

        assert fetched == updated
        assert fetched.chunks == sample_chunks
        assert [d.document_id for d in await redis_store.list_by_owner("user-1")] == ["doc-1"]
        assert await redis_store.get("missing") is None

    @pytest.mark.asyncio
    async def test_update_missing_document(self, redis_store):
        with pytest.raises(DocumentNotFoundError):
            await redis_store.update("missing", status=DocumentStatus.FAILED)


class TestDocumentService:
    """Tests for the document lifecycle."""

    @pytest.fixture
    def service(self, record_store):
        return DocumentService(record_store)

    async def _create(self, service, status=DocumentStatus.PROCESSING):
        return await service.create_document(
            owner_id="user-1",
            title="report.pdf",
            file_handle="f" * 64 + ".pdf",
            file_size=100,
            mime_type="application/pdf",
            status=status,
        )

    @pytest.mark.asyncio
    async def test_uploading_to_completed(self, service, sample_chunks):
        document = await self._create(service, DocumentStatus.UPLOADING)
        await service.mark_uploaded("user-1", document.document_id)
        completed = await service.complete(
            "user-1", document.document_id, ExtractionResult(markdown="# Hi", chunks=sample_chunks)
        )

        assert completed.status == DocumentStatus.COMPLETED
        assert completed.markdown == "# Hi"
        assert len(completed.chunks) == 12
        assert completed.page_count == 3

    @pytest.mark.asyncio
    async def test_complete_writes_empty_content(self, service):
        document = await self._create(service)
        completed = await service.complete("user-1", document.document_id, ExtractionResult("", []))

        assert completed.markdown == ""
        assert completed.chunks == []
        assert completed.has_extracted_content

    @pytest.mark.asyncio
    async def test_terminal_states_reject_transitions(self, service):
        document = await self._create(service)
        await service.fail("user-1", document.document_id, "boom")

        with pytest.raises(InvalidStatusTransitionError):
            await service.complete("user-1", document.document_id, ExtractionResult("", []))
        with pytest.raises(InvalidStatusTransitionError):
            await service.mark_uploaded("user-1", document.document_id)

    @pytest.mark.asyncio
    async def test_create_rejects_terminal_status(self, service):
        with pytest.raises(InvalidStatusTransitionError):
            await self._create(service, DocumentStatus.COMPLETED)

    @pytest.mark.asyncio
    async def test_foreign_owner_is_not_found(self, service):
        document = await self._create(service)

        with pytest.raises(DocumentNotFoundError):
            await service.fail("intruder", document.document_id, "nope")
        with pytest.raises(DocumentNotFoundError):
            await service.get_document("intruder", document.document_id)

        unchanged = await service.get_document("user-1", document.document_id)
        assert unchanged.status == DocumentStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_page_images_never_shrink(self, service):
        document = await self._create(service)
        await service.attach_page_images("user-1", document.document_id, ["a", "b", "c"], 3)
        kept = await service.attach_page_images("user-1", document.document_id, ["a"], 1)

        assert kept.page_images == ["a", "b", "c"]
        assert kept.page_count == 3

    @pytest.mark.asyncio
    async def test_fail_keeps_partial_fields(self, service):
        document = await self._create(service)
        await service.attach_page_images("user-1", document.document_id, ["a", "b"], 2)
        failed = await service.fail("user-1", document.document_id, "")

        assert failed.status == DocumentStatus.FAILED
        assert failed.error_message == "Unknown error"
        assert failed.page_images == ["a", "b"]

    @pytest.mark.asyncio
    async def test_retry_preserves_pages(self, service):
        document = await self._create(service)
        await service.attach_page_images("user-1", document.document_id, ["a", "b"], 2)
        await service.fail("user-1", document.document_id, "boom")

        retried = await service.retry("user-1", document.document_id)

        assert retried.status == DocumentStatus.PROCESSING
        assert retried.error_message is None
        assert retried.page_images == ["a", "b"]
        assert retried.page_count == 2

    @pytest.mark.asyncio
    async def test_retry_requires_terminal_state(self, service):
        document = await self._create(service)
        with pytest.raises(InvalidStatusTransitionError):
            await service.retry("user-1", document.document_id)

    @pytest.mark.asyncio
    async def test_owns_blob(self, service):
        document = await self._create(service)
        await service.attach_page_images("user-1", document.document_id, ["page-a"], 1)

        assert await service.owns_blob("user-1", document.file_handle)
        assert await service.owns_blob("user-1", "page-a")
        assert not await service.owns_blob("user-2", "page-a")
        assert not await service.owns_blob("user-1", "page-b")

    @pytest.mark.asyncio
    async def test_probe(self, service):
        document = await self._create(service)
        assert await service.probe("user-1", document.document_id) == {
            "has_extracted_content": False,
            "status": DocumentStatus.PROCESSING,
        }

    @pytest.mark.asyncio
    async def test_watch_stops_after_terminal_record(self, service):
        document = await self._create(service)

        async def collect():
            return [d.status async for d in service.watch(document.document_id)]

        watcher = asyncio.create_task(collect())
        for _ in range(3):
            await asyncio.sleep(0)
        await service.fail("user-1", document.document_id, "boom")
        statuses = await asyncio.wait_for(watcher, timeout=1)

        assert statuses == [DocumentStatus.PROCESSING, DocumentStatus.FAILED]


class TestExtractionClient:
    """Tests for the Landing AI client and payload parsing."""

    def test_parse_payload_with_missing_fields(self):
        result = parse_extraction_payload({"data": {"markdown": None}})
        assert result.markdown == ""
        assert result.chunks == []

        assert parse_extraction_payload("not a dict").chunks == []

    def test_parse_payload_assigns_unique_ids(self):
        result = parse_extraction_payload(
            {
                "data": {
                    "markdown": "# Doc",
                    "chunks": [
                        {"text": "a"},
                        {"chunk_id": "dup", "text": "b"},
                        {"chunk_id": "dup", "text": "c"},
                    ],
                    "num_pages": 2,
                }
            }
        )

        assert [c.chunk_id for c in result.chunks] == ["chunk-0", "dup", "dup-2"]
        assert result.page_count == 2

    @pytest.mark.asyncio
    async def test_extract_sends_file_and_key(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["authorization"]
            seen["body"] = request.content
            return httpx.Response(200, json={"data": {"markdown": "# Hi", "chunks": []}})

        client = LandingAIExtractionClient(
            api_key="secret",
            api_url="https://extract.test/v1",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        result = await client.extract(b"%PDF", "doc.pdf", "application/pdf")
        await client.close()

        assert result.markdown == "# Hi"
        assert seen["auth"] == "Basic secret"
        assert b'name="pdf"' in seen["body"]

    @pytest.mark.asyncio
    async def test_error_status_is_surfaced_verbatim(self):
        def handler(request):
            return httpx.Response(400, text='{"error": "Unsupported PDF structure"}')

        client = LandingAIExtractionClient(
            api_key="secret",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        with pytest.raises(ExtractionError) as exc_info:
            await client.extract(b"%PDF", "doc.pdf", "application/pdf")

        assert exc_info.value.status_code == 400
        assert "Unsupported PDF structure" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_connection_failure_is_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = LandingAIExtractionClient(
            api_key="secret",
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        with pytest.raises(ExtractionUnavailableError):
            await client.extract(b"\x89PNG", "scan.png", "image/png")

    @pytest.mark.asyncio
    async def test_placeholder_client(self, settings):
        client = build_extraction_client(settings)
        assert isinstance(client, PlaceholderExtractionClient)

        result = await client.extract(b"", "a.pdf", "application/pdf")
        assert is_placeholder_result(result)
        assert "Placeholder" in result.markdown


class TestBackgroundTaskTracker:
    """Tests for detached task tracking."""

    @pytest.mark.asyncio
    async def test_join_waits_for_nested_tasks(self):
        tracker = BackgroundTaskTracker()
        finished = []

        async def inner():
            await asyncio.sleep(0)
            finished.append("inner")

        async def outer():
            await asyncio.sleep(0)
            tracker.spawn(inner(), name="inner")
            finished.append("outer")

        tracker.spawn(outer(), name="outer")
        await tracker.join()

        assert finished == ["outer", "inner"]
        assert len(tracker) == 0

    @pytest.mark.asyncio
    async def test_failing_task_does_not_raise(self):
        tracker = BackgroundTaskTracker()

        async def broken():
            raise RuntimeError("boom")

        task = tracker.spawn(broken(), name="broken")
        await tracker.join()

        assert isinstance(task.exception(), RuntimeError)

    @pytest.mark.asyncio
    async def test_close_cancels_outstanding_tasks(self):
        tracker = BackgroundTaskTracker()
        task = tracker.spawn(asyncio.Event().wait(), name="stuck")

        await tracker.close()

        assert task.cancelled()


class TestDocumentProcessor:
    """Tests for background extraction."""

    async def _processing_document(self, record_store, blob_store, page_images=None):
        service = DocumentService(record_store)
        handle = await blob_store.put(build_pdf(2), "application/pdf")
        document = await service.create_document("user-1", "doc.pdf", handle, 10, "application/pdf")
        if page_images:
            await service.attach_page_images("user-1", document.document_id, page_images, len(page_images))
        return service, document

    @pytest.mark.asyncio
    async def test_success_completes_document(self, record_store, blob_store, extraction_client):
        service, document = await self._processing_document(record_store, blob_store)
        processor = DocumentProcessor(service, blob_store, extraction_client)

        await processor.process(document.document_id, "user-1")

        stored = await service.get_document("user-1", document.document_id)
        assert stored.status == DocumentStatus.COMPLETED
        assert len(stored.chunks) == 12
        assert stored.page_count == 3
        assert not stored.is_placeholder
        assert [call[:2] for call in extraction_client.calls] == [("doc.pdf", "application/pdf")]

    @pytest.mark.asyncio
    async def test_http_400_fails_and_keeps_page_images(self, record_store, blob_store):
        service, document = await self._processing_document(record_store, blob_store, ["p0.png", "p1.png"])

        def handler(request):
            return httpx.Response(400, text="Bad Request: file could not be parsed")

        client = LandingAIExtractionClient(
            api_key="secret", http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
        )
        processor = DocumentProcessor(service, blob_store, client)

        await processor.process(document.document_id, "user-1")

        stored = await service.get_document("user-1", document.document_id)
        assert stored.status == DocumentStatus.FAILED
        assert "file could not be parsed" in stored.error_message
        assert "400" in stored.error_message
        assert stored.page_images == ["p0.png", "p1.png"]

    @pytest.mark.asyncio
    async def test_unreachable_backend_writes_placeholder(self, record_store, blob_store):
        service, document = await self._processing_document(record_store, blob_store)
        client = FakeExtractionClient(error=ExtractionUnavailableError("connection refused"))
        processor = DocumentProcessor(service, blob_store, client)

        await processor.process(document.document_id, "user-1")

        stored = await service.get_document("user-1", document.document_id)
        assert stored.status == DocumentStatus.COMPLETED
        assert stored.is_placeholder
        assert stored.chunks[0].extra["placeholder"] is True

    @pytest.mark.asyncio
    async def test_unreachable_backend_fails_without_placeholder(self, record_store, blob_store):
        service, document = await self._processing_document(record_store, blob_store)
        client = FakeExtractionClient(error=ExtractionUnavailableError("connection refused"))
        processor = DocumentProcessor(service, blob_store, client, placeholder_when_unavailable=False)

        await processor.process(document.document_id, "user-1")

        stored = await service.get_document("user-1", document.document_id)
        assert stored.status == DocumentStatus.FAILED
        assert stored.error_message == "connection refused"

    @pytest.mark.asyncio
    async def test_missing_document_is_ignored(self, record_store, blob_store, extraction_client):
        processor = DocumentProcessor(DocumentService(record_store), blob_store, extraction_client)

        await processor.process("missing", "user-1")

        assert extraction_client.calls == []


class TestDocumentUploadService:
    """Tests for the upload orchestrator."""

    @pytest.mark.asyncio
    async def test_pdf_upload_attaches_pages_before_extraction(
        self, settings, blob_store, record_store, extraction_client
    ):
        extraction_client.gate = asyncio.Event()
        service, document_service, tracker = make_upload_service(
            settings, blob_store, record_store, extraction_client
        )

        result = await service.upload_document("user-1", build_pdf(3), "report.pdf", "application/pdf")

        assert result.status == DocumentStatus.PROCESSING
        assert result.page_count == 3

        document = await document_service.get_document("user-1", result.document_id)
        assert len(document.page_images) == 3
        assert document.markdown is None

        extraction_client.gate.set()
        await tracker.join()

        document = await document_service.get_document("user-1", result.document_id)
        assert document.status == DocumentStatus.COMPLETED
        assert len(document.page_images) == 3

    @pytest.mark.asyncio
    async def test_page_images_keep_page_order(self, settings, blob_store, record_store, extraction_client):
        service, document_service, tracker = make_upload_service(
            settings, blob_store, record_store, extraction_client
        )
        pdf = build_pdf(3)
        rasterized = PageRasterizer(scale=1.0).rasterize(pdf)

        result = await service.upload_document("user-1", pdf, "report.pdf", "application/pdf")
        await tracker.join()

        document = await document_service.get_document("user-1", result.document_id)
        stored = [await blob_store.get(handle) for handle in document.page_images]
        assert stored == rasterized

    @pytest.mark.asyncio
    async def test_image_upload_uses_file_as_single_page(
        self, settings, blob_store, record_store, extraction_client, sample_png
    ):
        service, document_service, tracker = make_upload_service(
            settings, blob_store, record_store, extraction_client
        )

        result = await service.upload_document("user-1", sample_png, "scan.png", "image/png")
        await tracker.join()

        document = await document_service.get_document("user-1", result.document_id)
        assert result.page_count == 1
        assert document.page_images == [document.file_handle]
        assert extraction_client.calls[0][1] == "image/png"

    @pytest.mark.asyncio
    async def test_validation_happens_before_any_network_call(self, settings, record_store, extraction_client):
        blob_store = Mock()
        blob_store.put = AsyncMock()
        settings.max_file_size_mb = 1
        service, _, _ = make_upload_service(settings, blob_store, record_store, extraction_client)

        with pytest.raises(FileSizeExceededError):
            await service.upload_document("user-1", b"x" * (MB + 1), "big.pdf", "application/pdf")
        with pytest.raises(FileTypeNotSupportedError):
            await service.upload_document("user-1", b"hello", "notes.txt", "text/plain")

        blob_store.put.assert_not_called()
        assert await record_store.list_by_owner("user-1") == []

    @pytest.mark.asyncio
    async def test_page_limit_is_enforced_before_upload(self, settings, record_store, extraction_client):
        """An over-limit PDF is rejected without rendering a single page."""
        blob_store = Mock()
        blob_store.put = AsyncMock()
        settings.max_pages = 2
        rasterizer = PageRasterizer(scale=1.0)
        rendered = []
        real_encode = rasterizer._encode

        def counting_encode(pixmap):
            rendered.append(pixmap)
            return real_encode(pixmap)

        rasterizer._encode = counting_encode
        service, _, _ = make_upload_service(
            settings, blob_store, record_store, extraction_client, rasterizer=rasterizer
        )

        with pytest.raises(PageLimitExceededError):
            await service.upload_document("user-1", build_pdf(40), "long.pdf", "application/pdf")

        blob_store.put.assert_not_called()
        assert rendered == []

    @pytest.mark.asyncio
    async def test_unreadable_pdf_continues_without_pages(
        self, settings, blob_store, record_store, extraction_client
    ):
        service, document_service, tracker = make_upload_service(
            settings, blob_store, record_store, extraction_client
        )

        result = await service.upload_document("user-1", b"%PDF-1.7 broken", "broken.pdf", "application/pdf")
        await tracker.join()

        document = await document_service.get_document("user-1", result.document_id)
        assert result.page_count is None
        assert document.page_images is None
        assert document.status == DocumentStatus.COMPLETED
        assert document.page_count == 3

    @pytest.mark.asyncio
    async def test_page_upload_failure_continues_without_pages(
        self, settings, blob_store, record_store, extraction_client
    ):
        real_put = blob_store.put
        calls = []

        async def flaky_put(content, content_type):
            calls.append(content_type)
            if content_type == "image/png":
                raise StorageError("disk full")
            return await real_put(content, content_type)

        blob_store.put = flaky_put
        service, document_service, tracker = make_upload_service(
            settings, blob_store, record_store, extraction_client
        )

        result = await service.upload_document("user-1", build_pdf(2), "report.pdf", "application/pdf")
        await tracker.join()

        document = await document_service.get_document("user-1", result.document_id)
        assert result.page_count is None
        assert document.page_images is None
        assert document.status == DocumentStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_raw_upload_failure_aborts(self, settings, record_store, extraction_client):
        blob_store = Mock()
        blob_store.put = AsyncMock(side_effect=StorageError("bucket unavailable"))
        service, _, tracker = make_upload_service(settings, blob_store, record_store, extraction_client)

        with pytest.raises(StorageError):
            await service.upload_document("user-1", build_pdf(1), "report.pdf", "application/pdf")

        assert await record_store.list_by_owner("user-1") == []
        assert len(tracker) == 0
        assert extraction_client.calls == []

    @pytest.mark.asyncio
    async def test_retry_dispatches_again(self, settings, blob_store, record_store):
        client = FakeExtractionClient(error=ExtractionError("Extraction failed with status 500: oops", 500))
        service, document_service, tracker = make_upload_service(settings, blob_store, record_store, client)

        result = await service.upload_document("user-1", build_pdf(1), "report.pdf", "application/pdf")
        await tracker.join()
        assert (await document_service.get_document("user-1", result.document_id)).status == DocumentStatus.FAILED

        client.error = None
        retried = await service.retry_document("user-1", result.document_id)
        assert retried.status == DocumentStatus.PROCESSING
        await tracker.join()

        document = await document_service.get_document("user-1", result.document_id)
        assert document.status == DocumentStatus.COMPLETED
        assert len(document.page_images) == 1
        assert len(client.calls) == 2


class TestJSONFormatter:
    """Tests for structured log output."""

    def test_structured_fields(self):
        formatter = JSONFormatter()
        record = logging.LogRecord("precision_pdf", logging.INFO, __file__, 1, "Extraction completed", None, None)
        record.document_id = "doc-1"
        record.chunk_count = 12
        record.unrelated = "dropped"

        payload = json.loads(formatter.format(record))

        assert payload["message"] == "Extraction completed"
        assert payload["level"] == "INFO"
        assert payload["document_id"] == "doc-1"
        assert payload["chunk_count"] == 12
        assert "unrelated" not in payload
