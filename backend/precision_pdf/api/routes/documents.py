"""Document query, event stream, page image and retry endpoints."""
import json

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse, StreamingResponse
from starlette.responses import Response

from precision_pdf.api.dependencies import (
    get_blob_store,
    get_document_service,
    get_owner_id,
    get_upload_service,
    http_error_for,
)
from precision_pdf.api.schemas import (
    DocumentListResponse,
    DocumentStatusResponse,
    DocumentSummary,
    ProbeResponse,
)
from precision_pdf.exceptions import DocumentProcessingError, StorageError
from precision_pdf.services.blob_store import BlobStore, content_type_for
from precision_pdf.services.document_service import DocumentService
from precision_pdf.services.document_upload_service import DocumentUploadService
from precision_pdf.utils.logger import logger

router = APIRouter()

PAGE_IMAGE_CACHE_CONTROL = "public, max-age=3600"


@router.get("/documents", response_model=DocumentListResponse)
async def list_documents(
    owner_id: str = Depends(get_owner_id),
    document_service: DocumentService = Depends(get_document_service),
):
    """List the requesting owner's documents, newest first."""
    try:
        documents = await document_service.list_documents(owner_id)
    except DocumentProcessingError as e:
        raise http_error_for(e)
    return DocumentListResponse(documents=[DocumentSummary.from_document(d) for d in documents])


@router.get("/documents/{document_id}/status")
async def get_document_status(
    document_id: str,
    minimal: bool = Query(False, description="Only report whether content has arrived"),
    owner_id: str = Depends(get_owner_id),
    document_service: DocumentService = Depends(get_document_service),
):
    """
    Get the status of a document.

    With ``minimal=true`` only ``{hasExtractedContent, status}`` is returned,
    which keeps polling cheap while extraction is still running.
    """
    try:
        if minimal:
            probe = await document_service.probe(owner_id, document_id)
            return ProbeResponse(**probe).model_dump(by_alias=True, mode="json")

        document = await document_service.get_document(owner_id, document_id)
    except DocumentProcessingError as e:
        raise http_error_for(e)

    return DocumentStatusResponse.from_document(document).model_dump(by_alias=True, mode="json")


@router.get("/documents/{document_id}/events")
async def stream_document_events(
    document_id: str,
    owner_id: str = Depends(get_owner_id),
    document_service: DocumentService = Depends(get_document_service),
):
    """
    Stream full document records as Server-Sent Events.

    The current record is sent first; the stream closes after a terminal one.
    """
    try:
        await document_service.get_document(owner_id, document_id)
    except DocumentProcessingError as e:
        raise http_error_for(e)

    async def event_generator():
        logger.debug(f"Event stream opened for {document_id}", extra={"document_id": document_id})
        try:
            async for document in document_service.watch(document_id):
                payload = DocumentStatusResponse.from_document(document).model_dump(
                    by_alias=True, mode="json"
                )
                yield f"event: document\ndata: {json.dumps(payload)}\n\n"
        except StorageError as e:
            logger.error(
                f"Event stream for {document_id} failed: {str(e)}",
                extra={"document_id": document_id},
            )
            yield f"event: error\ndata: {json.dumps({'detail': str(e)})}\n\n"
        finally:
            logger.debug(f"Event stream closed for {document_id}", extra={"document_id": document_id})

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/documents/{document_id}/page-image/{page}")
async def get_page_image(
    document_id: str,
    page: int,
    owner_id: str = Depends(get_owner_id),
    document_service: DocumentService = Depends(get_document_service),
    blob_store: BlobStore = Depends(get_blob_store),
):
    """Serve the preview image of one zero-based page."""
    if page < 0:
        raise HTTPException(status_code=400, detail="Invalid page number")

    try:
        document = await document_service.get_document(owner_id, document_id)
    except DocumentProcessingError as e:
        raise http_error_for(e)

    if document.is_example and document.static_base_path:
        return RedirectResponse(f"{document.static_base_path}/page_{page}.png")

    page_images = document.page_images or []
    if page >= len(page_images):
        raise HTTPException(status_code=404, detail="Page image not found")

    handle = page_images[page]
    try:
        content = await blob_store.get(handle)
    except StorageError as e:
        logger.error(f"Failed to fetch page image: {str(e)}", extra={"document_id": document_id})
        raise HTTPException(status_code=500, detail="Failed to fetch page image")

    return Response(
        content=content,
        media_type=content_type_for(handle),
        headers={"Cache-Control": PAGE_IMAGE_CACHE_CONTROL},
    )


@router.post("/documents/{document_id}/retry", response_model=DocumentStatusResponse)
async def retry_document(
    document_id: str,
    owner_id: str = Depends(get_owner_id),
    upload_service: DocumentUploadService = Depends(get_upload_service),
):
    """Send a completed or failed document through extraction again."""
    try:
        document = await upload_service.retry_document(owner_id, document_id)
    except DocumentProcessingError as e:
        raise http_error_for(e)

    logger.info(f"Retry requested for {document_id}", extra={"document_id": document_id})
    return DocumentStatusResponse.from_document(document)


@router.get("/blobs/{handle}")
async def get_blob(
    handle: str,
    owner_id: str = Depends(get_owner_id),
    document_service: DocumentService = Depends(get_document_service),
    blob_store: BlobStore = Depends(get_blob_store),
):
    """Serve a blob that belongs to one of the requesting owner's documents."""
    try:
        owned = await document_service.owns_blob(owner_id, handle)
    except DocumentProcessingError as e:
        raise http_error_for(e)
    if not owned:
        raise HTTPException(status_code=404, detail="Blob not found")

    try:
        content = await blob_store.get(handle)
    except StorageError:
        raise HTTPException(status_code=404, detail="Blob not found")

    return Response(
        content=content,
        media_type=content_type_for(handle),
        headers={"Cache-Control": PAGE_IMAGE_CACHE_CONTROL},
    )
