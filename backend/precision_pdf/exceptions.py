"""Custom exception classes for the document pipeline."""


class DocumentProcessingError(Exception):
    """Base exception for document pipeline errors."""
    pass


class ValidationError(DocumentProcessingError):
    """Raised when an uploaded file fails validation."""
    pass


class FileTypeNotSupportedError(ValidationError):
    """Raised when an unsupported file type is encountered."""
    pass


class FileSizeExceededError(ValidationError):
    """Raised when file size exceeds the maximum allowed."""
    pass


class InvalidFileNameError(ValidationError):
    """Raised when a file name is empty, too long, or unsafe."""
    pass


class PageLimitExceededError(ValidationError):
    """Raised when a document exceeds the maximum page limit."""
    pass


class InvalidStatusTransitionError(DocumentProcessingError):
    """Raised when a lifecycle transition is not allowed from the current status."""

    def __init__(self, current, requested):
        self.current = current
        self.requested = requested
        super().__init__(
            f"Cannot move document from '{current}' to '{requested}'"
        )


class AuthorizationError(DocumentProcessingError):
    """Raised when a document does not belong to the requesting owner."""
    pass


class DocumentNotFoundError(AuthorizationError):
    """Raised when a document is missing or owned by someone else."""

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Document not found: {document_id}")


class StorageError(DocumentProcessingError):
    """Raised when blob or record I/O fails."""
    pass


class ConversionError(DocumentProcessingError):
    """Raised when a document cannot be rasterized into page images."""
    pass


class ExtractionError(DocumentProcessingError):
    """Raised when the extraction backend fails or returns an error."""

    def __init__(self, message: str, status_code: int = None):
        self.status_code = status_code
        super().__init__(message)


class ExtractionUnavailableError(ExtractionError):
    """Raised when the extraction backend cannot be reached."""
    pass


class ServiceUnavailableError(DocumentProcessingError):
    """Raised when required services are not available."""
    pass
