"""Endpoint for loading bundled example documents."""
import asyncio

from fastapi import APIRouter, Depends, HTTPException

from precision_pdf.api.dependencies import get_container, get_owner_id, http_error_for
from precision_pdf.api.schemas import DocumentStatusResponse
from precision_pdf.container import ServiceContainer
from precision_pdf.exceptions import DocumentProcessingError
from precision_pdf.services.example_library import ExampleNotFoundError
from precision_pdf.utils.logger import logger

router = APIRouter()


@router.post("/examples/{example_id}", response_model=DocumentStatusResponse)
async def load_example(
    example_id: str,
    owner_id: str = Depends(get_owner_id),
    container: ServiceContainer = Depends(get_container),
):
    """Create a completed document from a bundled, pre-processed example."""
    try:
        example = await asyncio.to_thread(container.example_library.load, example_id)
        document = await container.document_service.create_example_document(
            owner_id=owner_id,
            title=example.title,
            markdown=example.result.markdown,
            chunks=example.result.chunks,
            page_count=example.page_count,
            static_base_path=example.static_base_path,
        )
    except ExampleNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DocumentProcessingError as e:
        raise http_error_for(e)

    logger.info(
        f"Example {example_id} loaded as {document.document_id}",
        extra={"document_id": document.document_id, "chunk_count": len(document.chunks or [])},
    )
    return DocumentStatusResponse.from_document(document)
