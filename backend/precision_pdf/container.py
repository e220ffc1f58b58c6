"""Explicit wiring of the services used by the API."""
from dataclasses import dataclass
from typing import Optional

from precision_pdf.config import Settings
from precision_pdf.services.blob_store import BlobStore, LocalBlobStore
from precision_pdf.services.document_processor import DocumentProcessor
from precision_pdf.services.document_service import DocumentService
from precision_pdf.services.document_upload_service import DocumentUploadService
from precision_pdf.services.example_library import ExampleLibrary
from precision_pdf.services.extraction_client import ExtractionClient, build_extraction_client
from precision_pdf.services.rasterizer import PageRasterizer
from precision_pdf.services.record_store import (
    DocumentRecordStore,
    InMemoryDocumentRecordStore,
    RedisDocumentRecordStore,
)
from precision_pdf.services.task_tracker import BackgroundTaskTracker
from precision_pdf.utils.logger import logger


@dataclass
class ServiceContainer:
    settings: Settings
    blob_store: BlobStore
    record_store: DocumentRecordStore
    extraction_client: ExtractionClient
    rasterizer: PageRasterizer
    task_tracker: BackgroundTaskTracker
    document_service: DocumentService
    document_processor: DocumentProcessor
    upload_service: DocumentUploadService
    example_library: ExampleLibrary

    async def close(self) -> None:
        """Cancel outstanding extractions and release connections."""
        if len(self.task_tracker):
            logger.info(f"Cancelling {len(self.task_tracker)} outstanding background tasks")
        await self.task_tracker.close()
        await self.extraction_client.close()
        await self.record_store.close()


def build_record_store(settings: Settings) -> DocumentRecordStore:
    backend = settings.record_store_backend.lower()
    if backend == "redis":
        return RedisDocumentRecordStore.from_url(settings.redis_url)
    if backend != "memory":
        raise ValueError(f"Unknown record store backend: {settings.record_store_backend}")
    return InMemoryDocumentRecordStore()


def build_container(
    settings: Settings,
    blob_store: Optional[BlobStore] = None,
    record_store: Optional[DocumentRecordStore] = None,
    extraction_client: Optional[ExtractionClient] = None,
    rasterizer: Optional[PageRasterizer] = None,
) -> ServiceContainer:
    """
    Build every service from settings.

    Any collaborator can be passed in to replace the one settings would create.
    """
    blob_store = blob_store or LocalBlobStore(settings.blob_store_path, settings.blob_base_url)
    record_store = record_store or build_record_store(settings)
    extraction_client = extraction_client or build_extraction_client(settings)
    rasterizer = rasterizer or PageRasterizer(
        scale=settings.render_scale, image_format=settings.page_image_format
    )
    task_tracker = BackgroundTaskTracker()

    document_service = DocumentService(record_store)
    document_processor = DocumentProcessor(
        document_service=document_service,
        blob_store=blob_store,
        extraction_client=extraction_client,
        placeholder_when_unavailable=settings.placeholder_when_unavailable,
    )
    upload_service = DocumentUploadService(
        blob_store=blob_store,
        document_service=document_service,
        rasterizer=rasterizer,
        document_processor=document_processor,
        task_tracker=task_tracker,
        settings=settings,
    )

    return ServiceContainer(
        settings=settings,
        blob_store=blob_store,
        record_store=record_store,
        extraction_client=extraction_client,
        rasterizer=rasterizer,
        task_tracker=task_tracker,
        document_service=document_service,
        document_processor=document_processor,
        upload_service=upload_service,
        example_library=ExampleLibrary(settings.examples_path),
    )
