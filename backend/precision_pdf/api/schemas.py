"""Pydantic schemas for API requests and responses."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from precision_pdf.models.document import Chunk, Document, DocumentStatus


class ApiModel(BaseModel):
    """Base schema serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UploadResponse(ApiModel):
    """Response schema for document upload."""

    document_id: str = Field(..., description="Unique identifier for the uploaded document")
    status: DocumentStatus = Field(..., description="Lifecycle status right after upload")
    page_count: Optional[int] = Field(None, description="Number of rendered pages, if known")


class BoxSchema(BaseModel):
    """Bounding box in fractions of the page size."""

    l: float
    t: float
    r: float
    b: float


class GroundingSchema(ApiModel):
    page: int = Field(..., ge=0, description="Zero-based page index")
    box: BoxSchema


class ChunkSchema(ApiModel):
    """Schema for an extracted content chunk."""

    chunk_id: str = Field(..., description="Chunk identifier, unique within the document")
    content: str = Field(..., description="Chunk text content")
    chunk_type: str = Field("text", description="Chunk kind such as text, table or title")
    grounding: List[GroundingSchema] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_chunk(cls, chunk: Chunk) -> "ChunkSchema":
        return cls.model_validate(chunk.to_dict())


class ProbeResponse(ApiModel):
    """Lightweight answer to "has content arrived yet"."""

    has_extracted_content: bool
    status: DocumentStatus


class DocumentStatusResponse(ApiModel):
    """Full record of a document as seen by its owner."""

    document_id: str
    title: str
    status: DocumentStatus
    markdown: Optional[str] = None
    chunks: Optional[List[ChunkSchema]] = None
    error_message: Optional[str] = None
    page_count: Optional[int] = None
    page_image_count: int = Field(0, description="Number of page preview images available")
    is_placeholder: bool = Field(False, description="True when the content is a placeholder, not real extraction")
    is_example: bool = False

    @classmethod
    def from_document(cls, document: Document) -> "DocumentStatusResponse":
        return cls(
            document_id=document.document_id,
            title=document.title,
            status=document.status,
            markdown=document.markdown,
            chunks=None if document.chunks is None else [
                ChunkSchema.from_chunk(chunk) for chunk in document.chunks
            ],
            error_message=document.error_message,
            page_count=document.page_count,
            page_image_count=_page_image_count(document),
            is_placeholder=document.is_placeholder,
            is_example=document.is_example,
        )


class DocumentSummary(ApiModel):
    """Entry in the document list."""

    document_id: str
    title: str
    status: DocumentStatus
    mime_type: str
    file_size: int
    page_count: Optional[int] = None
    is_example: bool = False
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_document(cls, document: Document) -> "DocumentSummary":
        return cls(
            document_id=document.document_id,
            title=document.title,
            status=document.status,
            mime_type=document.mime_type,
            file_size=document.file_size,
            page_count=document.page_count,
            is_example=document.is_example,
            created_at=document.created_at,
            updated_at=document.updated_at,
        )


class DocumentListResponse(ApiModel):
    documents: List[DocumentSummary]


def _page_image_count(document: Document) -> int:
    if document.is_example:
        return document.page_count or 0
    return len(document.page_images or [])
