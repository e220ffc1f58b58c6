"""Upload endpoint for document processing."""
from typing import Annotated

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from precision_pdf.api.dependencies import get_owner_id, get_upload_service, http_error_for
from precision_pdf.api.schemas import UploadResponse
from precision_pdf.exceptions import DocumentProcessingError
from precision_pdf.services.document_upload_service import DocumentUploadService
from precision_pdf.utils.logger import logger

router = APIRouter()


@router.post("/upload-document", response_model=UploadResponse)
async def upload_document(
    file: Annotated[UploadFile, File(...)],
    owner_id: str = Depends(get_owner_id),
    upload_service: DocumentUploadService = Depends(get_upload_service),
):
    """
    Upload a document (PDF, JPEG, or PNG) and start extraction.

    Returns as soon as the file is stored and page previews are attached;
    extraction continues in the background.

    Args:
        file: Document file to upload
        owner_id: Requesting owner
        upload_service: Document upload service instance

    Returns:
        UploadResponse with document ID, status, and page count
    """
    try:
        file_content = await file.read()

        result = await upload_service.upload_document(
            owner_id=owner_id,
            file_content=file_content,
            filename=file.filename or "",
            mime_type=file.content_type or "",
        )

        return UploadResponse(
            document_id=result.document_id,
            status=result.status,
            page_count=result.page_count,
        )

    except DocumentProcessingError as e:
        logger.warning(f"Upload rejected for {file.filename}: {str(e)}")
        raise http_error_for(e)

    except Exception as e:
        logger.error(f"Unexpected error uploading document: {str(e)}", exc_info=True)
        raise HTTPException(
            status_code=500,
            detail=f"Failed to upload document: {str(e)}"
        )
