"""Upload validation utilities."""
import re
from dataclasses import dataclass
from pathlib import PurePath

from precision_pdf.config import MB
from precision_pdf.exceptions import (
    FileSizeExceededError,
    FileTypeNotSupportedError,
    InvalidFileNameError,
    PageLimitExceededError,
)

PDF_MIME_TYPE = "application/pdf"
IMAGE_MIME_TYPES = ("image/jpeg", "image/png")
ALLOWED_MIME_TYPES = (PDF_MIME_TYPE,) + IMAGE_MIME_TYPES
GENERIC_MIME_TYPES = ("", "application/octet-stream")

EXTENSION_MIME_TYPES = {
    ".pdf": PDF_MIME_TYPE,
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
}

MAX_FILENAME_LENGTH = 255
_INVALID_FILENAME_CHARS = re.compile(r'[<>:"|?*\x00-\x1f]')


@dataclass(frozen=True)
class ValidatedUpload:
    """Result of a successful upload validation."""

    filename: str
    mime_type: str
    file_size: int

    @property
    def is_pdf(self) -> bool:
        return self.mime_type == PDF_MIME_TYPE


class UploadValidator:
    """Validates uploads before any network call is made."""

    @classmethod
    def validate_file_name(cls, filename: str) -> str:
        """Reject empty, overlong, or path-like file names."""
        if not filename or not filename.strip():
            raise InvalidFileNameError("File name cannot be empty")

        if _INVALID_FILENAME_CHARS.search(filename):
            raise InvalidFileNameError("File name contains invalid characters")

        if ".." in filename or "/" in filename or "\\" in filename:
            raise InvalidFileNameError("File name contains invalid path characters")

        if len(filename) > MAX_FILENAME_LENGTH:
            raise InvalidFileNameError(
                f"File name is too long (maximum {MAX_FILENAME_LENGTH} characters)"
            )

        return filename

    @classmethod
    def validate_file_type(cls, filename: str, declared_mime_type: str) -> str:
        """
        Resolve the effective mime type of an upload.

        The declared type wins when it is allowed. The file extension is
        consulted only when the declared type is missing or generic.

        Raises:
            FileTypeNotSupportedError: If the declared type is not allowed, or it is
                generic and the extension is not allowed either
        """
        mime_type = (declared_mime_type or "").split(";")[0].strip().lower()
        if mime_type in ALLOWED_MIME_TYPES:
            return mime_type

        if mime_type in GENERIC_MIME_TYPES:
            extension = PurePath(filename).suffix.lower()
            if extension in EXTENSION_MIME_TYPES:
                return EXTENSION_MIME_TYPES[extension]

        raise FileTypeNotSupportedError(
            "Invalid file type. Only PDF, JPEG, and PNG files are allowed."
        )

    @classmethod
    def validate_file_size(cls, file_size_bytes: int, max_size_bytes: int) -> None:
        if file_size_bytes <= 0:
            raise FileSizeExceededError("File is empty.")
        if file_size_bytes > max_size_bytes:
            raise FileSizeExceededError(
                f"File size ({file_size_bytes / MB:.2f}MB) exceeds maximum limit "
                f"of {max_size_bytes / MB:.0f}MB"
            )

    @classmethod
    def validate_page_count(cls, page_count: int, max_pages: int) -> None:
        if page_count > max_pages:
            raise PageLimitExceededError(
                f"Document has too many pages ({page_count}). "
                f"Maximum allowed is {max_pages} pages."
            )


def validate_upload(
    filename: str,
    declared_mime_type: str,
    file_size_bytes: int,
    max_size_bytes: int,
) -> ValidatedUpload:
    """
    Run every pre-network upload check.

    Args:
        filename: Original file name as sent by the client
        declared_mime_type: Content type declared by the client
        file_size_bytes: Size of the payload in bytes
        max_size_bytes: Upper bound on the payload size

    Returns:
        ValidatedUpload with the effective mime type

    Raises:
        ValidationError subclasses for each failing check
    """
    UploadValidator.validate_file_name(filename)
    mime_type = UploadValidator.validate_file_type(filename, declared_mime_type)
    UploadValidator.validate_file_size(file_size_bytes, max_size_bytes)

    return ValidatedUpload(filename=filename, mime_type=mime_type, file_size=file_size_bytes)
