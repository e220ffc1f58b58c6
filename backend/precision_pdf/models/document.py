"""Document data models."""
import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class DocumentStatus(str, Enum):
    """Lifecycle status of a document."""

    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (DocumentStatus.COMPLETED, DocumentStatus.FAILED)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_float(value: Any) -> float:
    if isinstance(value, bool):
        raise TypeError("boolean is not a coordinate")
    return float(value)


@dataclass(frozen=True)
class BoundingBox:
    """Rectangle in fractions of page width/height."""

    left: float
    top: float
    right: float
    bottom: float

    def is_well_formed(self) -> bool:
        values = (self.left, self.top, self.right, self.bottom)
        if not all(math.isfinite(v) for v in values):
            return False
        return 0.0 <= self.left <= self.right <= 1.0 and 0.0 <= self.top <= self.bottom <= 1.0

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top

    def to_dict(self) -> Dict[str, float]:
        return {"l": self.left, "t": self.top, "r": self.right, "b": self.bottom}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BoundingBox":
        """
        Build a box from its wire form.

        Accepts ``{"l", "t", "r", "b"}`` as well as the long key names.

        Raises:
            KeyError, TypeError, ValueError: If a coordinate is missing or not numeric
        """
        def pick(short: str, long: str) -> float:
            if short in data:
                return _as_float(data[short])
            return _as_float(data[long])

        return cls(
            left=pick("l", "left"),
            top=pick("t", "top"),
            right=pick("r", "right"),
            bottom=pick("b", "bottom"),
        )


@dataclass(frozen=True)
class Grounding:
    """Positional anchor of a chunk on one page (zero-based page index)."""

    page: int
    box: BoundingBox

    def to_dict(self) -> Dict[str, Any]:
        return {"page": self.page, "box": self.box.to_dict()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Grounding":
        page = data["page"]
        if isinstance(page, bool) or not isinstance(page, (int, float)) or page != int(page):
            raise ValueError(f"Invalid page index: {page!r}")
        return cls(page=int(page), box=BoundingBox.from_dict(data["box"]))


CHUNK_CORE_FIELDS = (
    "chunk_id", "chunkId", "id", "content", "text", "chunk_type", "chunkType", "grounding", "metadata",
)


@dataclass
class Chunk:
    """One semantic unit of extracted content."""

    chunk_id: str
    content: str
    chunk_type: str = "text"
    grounding: List[Grounding] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chunk_id": self.chunk_id,
            "content": self.content,
            "chunk_type": self.chunk_type,
            "grounding": [g.to_dict() for g in self.grounding],
            "metadata": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], fallback_id: Optional[str] = None) -> "Chunk":
        """
        Parse a chunk leniently.

        Groundings that cannot be parsed are dropped. Keys outside the core
        schema are kept in ``extra`` next to any ``metadata`` mapping.
        """
        extra: Dict[str, Any] = {}
        metadata = data.get("metadata")
        if isinstance(metadata, dict):
            extra.update(metadata)
        for key, value in data.items():
            if key not in CHUNK_CORE_FIELDS:
                extra[key] = value

        # Older records keep the grounding list inside metadata
        raw_groundings = data.get("grounding")
        if raw_groundings is None:
            raw_groundings = extra.get("grounding")
        extra.pop("grounding", None)

        groundings = []
        if isinstance(raw_groundings, list):
            for raw in raw_groundings:
                if not isinstance(raw, dict):
                    continue
                try:
                    groundings.append(Grounding.from_dict(raw))
                except (KeyError, TypeError, ValueError, OverflowError):
                    continue

        chunk_id = data.get("chunk_id") or data.get("chunkId") or data.get("id") or fallback_id or ""
        content = data.get("content")
        if content is None:
            content = data.get("text")

        return cls(
            chunk_id=str(chunk_id),
            content="" if content is None else str(content),
            chunk_type=str(
                data.get("chunk_type") or data.get("chunkType") or extra.pop("chunk_type", None) or "text"
            ),
            grounding=groundings,
            extra=extra,
        )


@dataclass
class ExtractionResult:
    """Structured output of the extraction backend."""

    markdown: str
    chunks: List[Chunk]
    page_count: Optional[int] = None


@dataclass
class Document:
    """The unit of work tracked by the record store."""

    document_id: str
    owner_id: str
    title: str
    mime_type: str
    file_size: int
    status: DocumentStatus
    file_handle: Optional[str] = None
    error_message: Optional[str] = None
    markdown: Optional[str] = None
    chunks: Optional[List[Chunk]] = None
    page_images: Optional[List[str]] = None
    page_count: Optional[int] = None
    is_placeholder: bool = False
    is_example: bool = False
    static_base_path: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def has_extracted_content(self) -> bool:
        return self.markdown is not None or self.chunks is not None

    def copy(self, **changes: Any) -> "Document":
        """Return a copy with list fields detached from this instance."""
        clone = replace(self, **changes)
        if clone.chunks is not None and "chunks" not in changes:
            clone.chunks = list(clone.chunks)
        if clone.page_images is not None and "page_images" not in changes:
            clone.page_images = list(clone.page_images)
        return clone

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "owner_id": self.owner_id,
            "title": self.title,
            "mime_type": self.mime_type,
            "file_size": self.file_size,
            "status": self.status.value,
            "file_handle": self.file_handle,
            "error_message": self.error_message,
            "markdown": self.markdown,
            "chunks": None if self.chunks is None else [c.to_dict() for c in self.chunks],
            "page_images": None if self.page_images is None else list(self.page_images),
            "page_count": self.page_count,
            "is_placeholder": self.is_placeholder,
            "is_example": self.is_example,
            "static_base_path": self.static_base_path,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Document":
        chunks = data.get("chunks")
        return cls(
            document_id=data["document_id"],
            owner_id=data["owner_id"],
            title=data["title"],
            mime_type=data["mime_type"],
            file_size=data["file_size"],
            status=DocumentStatus(data["status"]),
            file_handle=data.get("file_handle"),
            error_message=data.get("error_message"),
            markdown=data.get("markdown"),
            chunks=None if chunks is None else [
                Chunk.from_dict(c, fallback_id=f"chunk-{i}") for i, c in enumerate(chunks)
            ],
            page_images=data.get("page_images"),
            page_count=data.get("page_count"),
            is_placeholder=data.get("is_placeholder", False),
            is_example=data.get("is_example", False),
            static_base_path=data.get("static_base_path"),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


def infer_page_count(chunks: Optional[List[Chunk]], declared: Optional[int] = None) -> int:
    """
    Work out how many pages a document has.

    A declared count wins. Otherwise the highest grounded page index is
    used, and a document whose chunks carry no grounding at all counts as a
    single page.
    """
    if declared is not None:
        return declared
    if not chunks:
        return 0

    highest_page = max(
        (g.page for chunk in chunks for g in chunk.grounding),
        default=-1,
    )
    return max(highest_page + 1, 1)
