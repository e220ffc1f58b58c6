"""Pre-processed example documents bundled with the application."""
import json
import re
from dataclasses import dataclass
from pathlib import Path

from precision_pdf.exceptions import DocumentProcessingError, StorageError
from precision_pdf.models.document import ExtractionResult, infer_page_count
from precision_pdf.services.extraction_client import parse_extraction_payload

_EXAMPLE_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$")


class ExampleNotFoundError(DocumentProcessingError):
    """Raised when no bundled example exists under the requested id."""
    pass


@dataclass
class ExampleDocument:
    example_id: str
    title: str
    result: ExtractionResult
    page_count: int
    static_base_path: str


class ExampleLibrary:
    """
    Reads examples laid out as ``<root>/<id>/<id>.json`` with page images in
    ``<root>/<id>/images/page_<n>.png``.
    """

    def __init__(self, root: str, url_prefix: str = "/examples"):
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")

    def load(self, example_id: str) -> ExampleDocument:
        if not _EXAMPLE_ID_PATTERN.match(example_id):
            raise ExampleNotFoundError(f"Example not found: {example_id}")

        path = self.root / example_id / f"{example_id}.json"
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise ExampleNotFoundError(f"Example not found: {example_id}")
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to read example {example_id}: {str(e)}")

        result = parse_extraction_payload(data)
        declared = data.get("num_pages") if isinstance(data, dict) else None
        if isinstance(declared, bool) or not isinstance(declared, int) or declared <= 0:
            declared = None

        title = data.get("filename") if isinstance(data, dict) else None
        return ExampleDocument(
            example_id=example_id,
            title=title or f"{example_id}.pdf",
            result=result,
            page_count=infer_page_count(result.chunks, declared=declared),
            static_base_path=f"{self.url_prefix}/{example_id}/images",
        )
