"""Dependencies shared by the API routers."""
from typing import Optional

from fastapi import Header, HTTPException, Request

from precision_pdf.container import ServiceContainer
from precision_pdf.exceptions import (
    AuthorizationError,
    DocumentProcessingError,
    InvalidStatusTransitionError,
    ServiceUnavailableError,
    StorageError,
    ValidationError,
)
from precision_pdf.services.blob_store import BlobStore
from precision_pdf.services.document_service import DocumentService
from precision_pdf.services.document_upload_service import DocumentUploadService


def get_container(request: Request) -> ServiceContainer:
    """Get the service container attached to the application."""
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=503, detail="Services not initialized")
    return container


def get_owner_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Identify the requesting owner. Authentication itself happens upstream."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Authentication required")
    return x_user_id.strip()


def get_document_service(request: Request) -> DocumentService:
    return get_container(request).document_service


def get_upload_service(request: Request) -> DocumentUploadService:
    return get_container(request).upload_service


def get_blob_store(request: Request) -> BlobStore:
    return get_container(request).blob_store


def http_error_for(e: DocumentProcessingError) -> HTTPException:
    """Convert pipeline errors to HTTP responses."""
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=str(e))
    elif isinstance(e, AuthorizationError):
        return HTTPException(status_code=404, detail="Document not found")
    elif isinstance(e, InvalidStatusTransitionError):
        return HTTPException(status_code=409, detail=str(e))
    elif isinstance(e, StorageError):
        return HTTPException(status_code=500, detail=str(e))
    elif isinstance(e, ServiceUnavailableError):
        return HTTPException(status_code=503, detail=str(e))
    else:
        return HTTPException(status_code=500, detail=f"Document processing failed: {str(e)}")
