"""Blob storage for raw uploads and rendered page images."""
import asyncio
import hashlib
import mimetypes
import re
import uuid
from pathlib import Path
from typing import Protocol

from precision_pdf.exceptions import StorageError
from precision_pdf.utils.logger import logger

_HANDLE_PATTERN = re.compile(r"^[0-9a-f]{64}(\.[a-z0-9]+)?$")

_EXTENSIONS = {
    "application/pdf": ".pdf",
    "image/png": ".png",
    "image/jpeg": ".jpg",
}


class BlobStore(Protocol):
    """Opaque byte storage returning a handle per payload."""

    async def put(self, content: bytes, content_type: str) -> str:
        ...

    async def get(self, handle: str) -> bytes:
        ...

    def get_url(self, handle: str) -> str:
        ...


def content_type_for(handle: str) -> str:
    """Guess the content type of a stored blob from its handle."""
    guessed, _ = mimetypes.guess_type(handle)
    return guessed or "application/octet-stream"


class LocalBlobStore:
    """Content-addressed blob store on the local filesystem."""

    def __init__(self, root: str = "./blob_store", base_url: str = "/api/blobs"):
        """
        Initialize blob store.

        Args:
            root: Directory that holds the blobs
            base_url: URL prefix used by get_url
        """
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.base_url = base_url.rstrip("/")
        logger.info(f"Local blob store initialized at {self.root}")

    def _path_for(self, handle: str) -> Path:
        if not _HANDLE_PATTERN.match(handle):
            raise StorageError(f"Invalid blob handle: {handle}")
        return self.root / handle[:2] / handle

    @staticmethod
    def _write(path: Path, content: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            return
        tmp_path = path.with_name(f"{path.name}.{uuid.uuid4().hex}.tmp")
        tmp_path.write_bytes(content)
        tmp_path.replace(path)

    async def put(self, content: bytes, content_type: str) -> str:
        digest = hashlib.sha256(content).hexdigest()
        handle = digest + _EXTENSIONS.get(content_type, "")
        try:
            await asyncio.to_thread(self._write, self._path_for(handle), content)
        except OSError as e:
            raise StorageError(f"Failed to store blob: {str(e)}")

        logger.debug(f"Stored blob {handle} ({len(content)} bytes)")
        return handle

    async def get(self, handle: str) -> bytes:
        path = self._path_for(handle)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            raise StorageError(f"Blob not found: {handle}")
        except OSError as e:
            raise StorageError(f"Failed to read blob {handle}: {str(e)}")

    def get_url(self, handle: str) -> str:
        return f"{self.base_url}/{handle}"
