"""Document lifecycle: record creation, guarded status transitions, queries."""
import uuid
from typing import AsyncIterator, Dict, FrozenSet, List, Optional

from precision_pdf.exceptions import DocumentNotFoundError, InvalidStatusTransitionError
from precision_pdf.models.document import (
    Chunk,
    Document,
    DocumentStatus,
    ExtractionResult,
    infer_page_count,
)
from precision_pdf.services.record_store import DocumentRecordStore
from precision_pdf.utils.logger import logger

# Retry is the only way out of a terminal state and goes through DocumentService.retry
ALLOWED_TRANSITIONS: Dict[DocumentStatus, FrozenSet[DocumentStatus]] = {
    DocumentStatus.UPLOADING: frozenset({DocumentStatus.PROCESSING, DocumentStatus.FAILED}),
    DocumentStatus.PROCESSING: frozenset({DocumentStatus.COMPLETED, DocumentStatus.FAILED}),
    DocumentStatus.COMPLETED: frozenset(),
    DocumentStatus.FAILED: frozenset(),
}

UNKNOWN_ERROR = "Unknown error"


class DocumentService:
    """Owns every write to the document record store."""

    def __init__(self, record_store: DocumentRecordStore):
        self.record_store = record_store

    async def get_document(self, owner_id: str, document_id: str) -> Document:
        """
        Fetch a document on behalf of its owner.

        Raises:
            DocumentNotFoundError: If the document is missing or belongs to another owner
        """
        document = await self.record_store.get(document_id)
        if document is None or document.owner_id != owner_id:
            raise DocumentNotFoundError(document_id)
        return document

    async def list_documents(self, owner_id: str) -> List[Document]:
        return await self.record_store.list_by_owner(owner_id)

    async def owns_blob(self, owner_id: str, handle: str) -> bool:
        """True when the handle is the raw file or a page image of one of the owner's documents."""
        for document in await self.list_documents(owner_id):
            if handle == document.file_handle or handle in (document.page_images or []):
                return True
        return False

    async def probe(self, owner_id: str, document_id: str) -> Dict[str, object]:
        document = await self.get_document(owner_id, document_id)
        return {
            "has_extracted_content": document.has_extracted_content,
            "status": document.status,
        }

    async def watch(self, document_id: str) -> AsyncIterator[Document]:
        """
        Yield the current record and every update until a terminal one.

        Callers check ownership with get_document before watching.
        """
        async for document in self.record_store.subscribe(document_id):
            yield document
            if document.status.is_terminal:
                return

    async def create_document(
        self,
        owner_id: str,
        title: str,
        file_handle: Optional[str],
        file_size: int,
        mime_type: str,
        status: DocumentStatus = DocumentStatus.PROCESSING,
    ) -> Document:
        if status not in (DocumentStatus.UPLOADING, DocumentStatus.PROCESSING):
            raise InvalidStatusTransitionError(None, status.value)

        document = Document(
            document_id=str(uuid.uuid4()),
            owner_id=owner_id,
            title=title,
            mime_type=mime_type,
            file_size=file_size,
            status=status,
            file_handle=file_handle,
        )
        created = await self.record_store.create(document)
        logger.info(
            f"Document record created: {created.document_id}",
            extra={"document_id": created.document_id, "status": created.status.value},
        )
        return created

    async def create_example_document(
        self,
        owner_id: str,
        title: str,
        markdown: str,
        chunks: List[Chunk],
        page_count: int,
        static_base_path: str,
    ) -> Document:
        """Create an already-completed document from pre-processed data."""
        document = Document(
            document_id=str(uuid.uuid4()),
            owner_id=owner_id,
            title=title,
            mime_type="application/pdf",
            file_size=0,
            status=DocumentStatus.COMPLETED,
            markdown=markdown,
            chunks=list(chunks),
            page_count=page_count,
            is_example=True,
            static_base_path=static_base_path,
        )
        return await self.record_store.create(document)

    async def _transition(
        self, owner_id: str, document_id: str, target: DocumentStatus, **fields
    ) -> Document:
        document = await self.get_document(owner_id, document_id)
        if target not in ALLOWED_TRANSITIONS[document.status]:
            raise InvalidStatusTransitionError(document.status.value, target.value)

        updated = await self.record_store.update(document_id, status=target, **fields)
        logger.info(
            f"Document {document_id} moved {document.status.value} -> {target.value}",
            extra={"document_id": document_id, "status": target.value},
        )
        return updated

    async def mark_uploaded(self, owner_id: str, document_id: str) -> Document:
        return await self._transition(owner_id, document_id, DocumentStatus.PROCESSING)

    async def attach_page_images(
        self, owner_id: str, document_id: str, handles: List[str], page_count: int
    ) -> Document:
        """
        Replace the page image list of a document wholesale.

        A populated list is never replaced by a shorter one.
        """
        document = await self.get_document(owner_id, document_id)
        if document.page_images and len(handles) < len(document.page_images):
            logger.warning(
                f"Refusing to shrink page images of {document_id} "
                f"from {len(document.page_images)} to {len(handles)}",
                extra={"document_id": document_id},
            )
            return document

        return await self.record_store.update(
            document_id, page_images=list(handles), page_count=page_count
        )

    async def complete(
        self,
        owner_id: str,
        document_id: str,
        result: ExtractionResult,
        is_placeholder: bool = False,
    ) -> Document:
        document = await self.get_document(owner_id, document_id)
        chunks = list(result.chunks or [])
        page_count = document.page_count or result.page_count or infer_page_count(chunks)

        return await self._transition(
            owner_id,
            document_id,
            DocumentStatus.COMPLETED,
            markdown=result.markdown or "",
            chunks=chunks,
            page_count=page_count,
            error_message=None,
            is_placeholder=is_placeholder,
        )

    async def fail(self, owner_id: str, document_id: str, error_message: str) -> Document:
        return await self._transition(
            owner_id,
            document_id,
            DocumentStatus.FAILED,
            error_message=error_message or UNKNOWN_ERROR,
        )

    async def retry(self, owner_id: str, document_id: str) -> Document:
        """
        Move a terminal document back to processing.

        Page images and page count are kept so recovery does not lose the
        preview that was already produced.
        """
        document = await self.get_document(owner_id, document_id)
        # Examples have no stored file to extract again
        if not document.status.is_terminal or not document.file_handle:
            raise InvalidStatusTransitionError(document.status.value, DocumentStatus.PROCESSING.value)

        updated = await self.record_store.update(
            document_id,
            status=DocumentStatus.PROCESSING,
            error_message=None,
            markdown=None,
            chunks=None,
            is_placeholder=False,
        )
        logger.info(
            f"Document {document_id} re-entered processing",
            extra={"document_id": document_id, "status": updated.status.value},
        )
        return updated
