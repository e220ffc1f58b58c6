"""Document upload service: validation, storage, previews and dispatch."""
import asyncio
import time
from dataclasses import dataclass
from typing import List, Optional

from precision_pdf.config import Settings
from precision_pdf.exceptions import ConversionError, StorageError, ValidationError
from precision_pdf.models.document import Document, DocumentStatus
from precision_pdf.services.blob_store import BlobStore
from precision_pdf.services.document_processor import DocumentProcessor
from precision_pdf.services.document_service import DocumentService
from precision_pdf.services.rasterizer import PageRasterizer
from precision_pdf.services.task_tracker import BackgroundTaskTracker
from precision_pdf.utils.logger import logger
from precision_pdf.utils.metrics import (
    DOCUMENTS_UPLOADED,
    PAGE_IMAGE_FAILURES,
    UPLOAD_REJECTIONS,
)
from precision_pdf.validators import UploadValidator, ValidatedUpload, validate_upload


@dataclass
class UploadResult:
    """What the caller learns immediately after an upload."""

    document_id: str
    status: DocumentStatus
    page_count: Optional[int] = None


class DocumentUploadService:
    """Service for handling document uploads and dispatching extraction."""

    def __init__(
        self,
        blob_store: BlobStore,
        document_service: DocumentService,
        rasterizer: PageRasterizer,
        document_processor: DocumentProcessor,
        task_tracker: BackgroundTaskTracker,
        settings: Settings,
    ):
        self.blob_store = blob_store
        self.document_service = document_service
        self.rasterizer = rasterizer
        self.document_processor = document_processor
        self.task_tracker = task_tracker
        self.settings = settings

    async def upload_document(
        self,
        owner_id: str,
        file_content: bytes,
        filename: str,
        mime_type: str,
    ) -> UploadResult:
        """
        Upload a document and start extraction in the background.

        Args:
            owner_id: Requesting owner
            file_content: Raw file content as bytes
            filename: Original filename
            mime_type: Content type declared by the client

        Returns:
            UploadResult with the new document id and the known page count

        Raises:
            ValidationError: If the file is rejected (before any network call)
            StorageError: If the raw file or the record cannot be stored
        """
        start_time = time.time()

        # Step 1: Validate the upload
        try:
            upload = validate_upload(
                filename, mime_type, len(file_content), self.settings.max_file_size_bytes
            )
        except ValidationError as e:
            UPLOAD_REJECTIONS.labels(reason=type(e).__name__).inc()
            raise

        # Step 2: Render page previews locally so the page limit is enforced up front
        page_images = await self._rasterize(upload, file_content)

        # Step 3: Store the raw file
        file_handle = await self.blob_store.put(file_content, upload.mime_type)

        # Step 4: Create the record
        document = await self.document_service.create_document(
            owner_id=owner_id,
            title=upload.filename,
            file_handle=file_handle,
            file_size=upload.file_size,
            mime_type=upload.mime_type,
        )

        # Step 5: Attach page previews
        page_count = await self._store_page_images(document, upload, file_handle, page_images)

        # Step 6: Dispatch extraction
        self.dispatch(document.document_id, owner_id)

        DOCUMENTS_UPLOADED.labels(mime_type=upload.mime_type).inc()
        logger.info(
            f"Document uploaded successfully: {document.document_id}",
            extra={
                "document_id": document.document_id,
                "owner_id": owner_id,
                "uploaded_filename": upload.filename,
                "mime_type": upload.mime_type,
                "file_size": upload.file_size,
                "page_count": page_count,
                "elapsed_seconds": round(time.time() - start_time, 3),
            },
        )

        return UploadResult(
            document_id=document.document_id,
            status=document.status,
            page_count=page_count,
        )

    def dispatch(self, document_id: str, owner_id: str) -> asyncio.Task:
        """Start extraction detached from the caller."""
        return self.task_tracker.spawn(
            self.document_processor.process(document_id, owner_id),
            name=f"extract-{document_id}",
        )

    async def retry_document(self, owner_id: str, document_id: str) -> Document:
        """Re-enter processing for a terminal document and dispatch it again."""
        document = await self.document_service.retry(owner_id, document_id)
        self.dispatch(document_id, owner_id)
        return document

    async def _rasterize(self, upload: ValidatedUpload, file_content: bytes) -> Optional[List[bytes]]:
        if not upload.is_pdf:
            return None

        try:
            page_count = await asyncio.to_thread(self.rasterizer.count_pages, file_content)
        except ConversionError as e:
            # The page limit cannot be checked without a readable PDF; extraction still runs
            self._log_rasterize_failure(upload, e)
            return None

        # Nothing is rendered for a document over the page limit
        try:
            UploadValidator.validate_page_count(page_count, self.settings.max_pages)
        except ValidationError as e:
            UPLOAD_REJECTIONS.labels(reason=type(e).__name__).inc()
            raise

        try:
            return await asyncio.to_thread(
                self.rasterizer.rasterize, file_content, upload.mime_type
            )
        except ConversionError as e:
            self._log_rasterize_failure(upload, e)
            return None

    def _log_rasterize_failure(self, upload: ValidatedUpload, error: ConversionError) -> None:
        logger.warning(
            f"Rasterization failed for {upload.filename}, continuing without page images: {str(error)}",
            extra={"uploaded_filename": upload.filename},
        )
        PAGE_IMAGE_FAILURES.labels(stage="rasterize").inc()

    async def _store_page_images(
        self,
        document: Document,
        upload: ValidatedUpload,
        file_handle: str,
        page_images: Optional[List[bytes]],
    ) -> Optional[int]:
        """Upload page images and attach them; failures leave the document without previews."""
        if not upload.is_pdf:
            handles = [file_handle]
        elif not page_images:
            return None
        else:
            try:
                handles = list(
                    await asyncio.gather(
                        *(
                            self.blob_store.put(image, self.rasterizer.content_type)
                            for image in page_images
                        )
                    )
                )
            except StorageError as e:
                logger.warning(
                    f"Page image upload failed for {document.document_id}, "
                    f"continuing without page images: {str(e)}",
                    extra={"document_id": document.document_id},
                )
                PAGE_IMAGE_FAILURES.labels(stage="upload").inc()
                return None

        try:
            updated = await self.document_service.attach_page_images(
                document.owner_id, document.document_id, handles, len(handles)
            )
        except StorageError as e:
            logger.warning(
                f"Could not attach page images to {document.document_id}: {str(e)}",
                extra={"document_id": document.document_id},
            )
            PAGE_IMAGE_FAILURES.labels(stage="attach").inc()
            return None

        return updated.page_count
