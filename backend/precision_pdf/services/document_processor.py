"""Background extraction of uploaded documents."""
import time

from opentelemetry import trace

from precision_pdf.exceptions import (
    DocumentNotFoundError,
    ExtractionError,
    ExtractionUnavailableError,
    InvalidStatusTransitionError,
    StorageError,
)
from precision_pdf.models.document import DocumentStatus
from precision_pdf.services.blob_store import BlobStore
from precision_pdf.services.document_service import DocumentService
from precision_pdf.services.extraction_client import (
    ExtractionClient,
    is_placeholder_result,
    placeholder_result,
)
from precision_pdf.utils.logger import logger
from precision_pdf.utils.metrics import EXTRACTION_DURATION, EXTRACTION_OUTCOMES

tracer = trace.get_tracer(__name__)


class DocumentProcessor:
    """Runs extraction for one document and writes the terminal state."""

    def __init__(
        self,
        document_service: DocumentService,
        blob_store: BlobStore,
        extraction_client: ExtractionClient,
        placeholder_when_unavailable: bool = True,
    ):
        """
        Initialize document processor.

        Args:
            document_service: Lifecycle service that owns record writes
            blob_store: Store holding the raw uploaded bytes
            extraction_client: Remote extraction backend
            placeholder_when_unavailable: Complete with a labelled placeholder
                when the backend cannot be reached instead of failing
        """
        self.document_service = document_service
        self.blob_store = blob_store
        self.extraction_client = extraction_client
        self.placeholder_when_unavailable = placeholder_when_unavailable

    async def process(self, document_id: str, owner_id: str) -> None:
        """
        Extract one document.

        Extraction problems are recorded on the document rather than raised,
        since nobody is awaiting this call except the task tracker.
        """
        try:
            document = await self.document_service.get_document(owner_id, document_id)
        except DocumentNotFoundError:
            logger.warning(
                f"Document {document_id} disappeared before extraction",
                extra={"document_id": document_id},
            )
            return

        if document.status != DocumentStatus.PROCESSING:
            logger.info(
                f"Skipping extraction of {document_id} in status {document.status.value}",
                extra={"document_id": document_id, "status": document.status.value},
            )
            return

        start_time = time.time()
        with tracer.start_as_current_span("document.extract") as span:
            span.set_attribute("document.id", document_id)
            span.set_attribute("document.mime_type", document.mime_type)

            try:
                if not document.file_handle:
                    raise StorageError("Document has no stored file")
                content = await self.blob_store.get(document.file_handle)
                result = await self.extraction_client.extract(
                    content, document.title, document.mime_type
                )
            except ExtractionUnavailableError as e:
                span.record_exception(e)
                if not self.placeholder_when_unavailable:
                    await self._fail(owner_id, document_id, str(e), "unavailable")
                    return
                logger.warning(
                    f"Extraction backend unavailable for {document_id}, writing placeholder: {str(e)}",
                    extra={"document_id": document_id},
                )
                await self._complete(owner_id, document_id, placeholder_result(), True)
                EXTRACTION_OUTCOMES.labels(outcome="placeholder").inc()
                return
            except (ExtractionError, StorageError) as e:
                span.record_exception(e)
                await self._fail(owner_id, document_id, str(e), "failed")
                return
            finally:
                EXTRACTION_DURATION.observe(time.time() - start_time)

            is_placeholder = is_placeholder_result(result)
            span.set_attribute("document.chunk_count", len(result.chunks))
            await self._complete(owner_id, document_id, result, is_placeholder)
            EXTRACTION_OUTCOMES.labels(
                outcome="placeholder" if is_placeholder else "completed"
            ).inc()

        logger.info(
            f"Extraction completed for {document_id}",
            extra={
                "document_id": document_id,
                "chunk_count": len(result.chunks),
                "elapsed_seconds": round(time.time() - start_time, 3),
            },
        )

    async def _complete(self, owner_id, document_id, result, is_placeholder) -> None:
        try:
            await self.document_service.complete(
                owner_id, document_id, result, is_placeholder=is_placeholder
            )
        except InvalidStatusTransitionError as e:
            # Another writer already moved the document on
            logger.warning(str(e), extra={"document_id": document_id})

    async def _fail(self, owner_id, document_id, error_message, outcome) -> None:
        logger.error(
            f"Extraction failed for {document_id}: {error_message}",
            extra={"document_id": document_id},
        )
        EXTRACTION_OUTCOMES.labels(outcome=outcome).inc()
        try:
            await self.document_service.fail(owner_id, document_id, error_message)
        except InvalidStatusTransitionError as e:
            logger.warning(str(e), extra={"document_id": document_id})
