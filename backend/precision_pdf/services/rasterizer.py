"""Page rasterization for PDF previews."""
import io
from typing import List

import fitz  # PyMuPDF
from PIL import Image

from precision_pdf.exceptions import ConversionError
from precision_pdf.utils.logger import logger
from precision_pdf.validators import PDF_MIME_TYPE

SUPPORTED_FORMATS = ("png", "jpeg")


class PageRasterizer:
    """Renders PDF pages to image buffers at a fixed scale."""

    def __init__(self, scale: float = 2.0, image_format: str = "png"):
        """
        Initialize rasterizer.

        Args:
            scale: Render scale relative to the PDF's 72 dpi user space
            image_format: Output format, "png" or "jpeg"
        """
        if image_format not in SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported page image format: {image_format}")
        self.scale = scale
        self.image_format = image_format

    @property
    def content_type(self) -> str:
        return f"image/{self.image_format}"

    def count_pages(self, content: bytes) -> int:
        doc = self._open(content)
        try:
            return doc.page_count
        finally:
            doc.close()

    def rasterize(self, content: bytes, mime_type: str = PDF_MIME_TYPE) -> List[bytes]:
        """
        Convert a document into one image per page, in page order.

        Raster inputs are returned unchanged as a single page.

        Raises:
            ConversionError: If the PDF is corrupt or a page cannot be rendered
        """
        if mime_type != PDF_MIME_TYPE:
            return [content]

        doc = self._open(content)
        images = []
        try:
            matrix = fitz.Matrix(self.scale, self.scale)
            for page_index in range(doc.page_count):
                try:
                    pixmap = doc[page_index].get_pixmap(matrix=matrix, alpha=False)
                    images.append(self._encode(pixmap))
                except Exception as e:
                    raise ConversionError(
                        f"Failed to render page {page_index + 1}: {str(e)}"
                    )
        finally:
            doc.close()

        logger.info(
            f"Rasterized {len(images)} pages at {self.scale}x",
            extra={"page_count": len(images)},
        )
        return images

    def _open(self, content: bytes) -> "fitz.Document":
        try:
            doc = fitz.open(stream=content, filetype="pdf")
        except Exception as e:
            raise ConversionError(f"Failed to open PDF: {str(e)}")

        if doc.needs_pass:
            doc.close()
            raise ConversionError("PDF is password-protected or encrypted")
        return doc

    def _encode(self, pixmap: "fitz.Pixmap") -> bytes:
        image = Image.frombytes("RGB", (pixmap.width, pixmap.height), pixmap.samples)
        buffer = io.BytesIO()
        if self.image_format == "jpeg":
            image.save(buffer, format="JPEG", quality=90, progressive=True)
        else:
            image.save(buffer, format="PNG", compress_level=6)
        return buffer.getvalue()
