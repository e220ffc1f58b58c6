"""Prometheus metrics for the document pipeline."""
from prometheus_client import Counter, Histogram

DOCUMENTS_UPLOADED = Counter(
    "precision_pdf_documents_uploaded_total",
    "Documents accepted by the upload orchestrator",
    ["mime_type"],
)

UPLOAD_REJECTIONS = Counter(
    "precision_pdf_upload_rejections_total",
    "Uploads rejected before any network call",
    ["reason"],
)

PAGE_IMAGE_FAILURES = Counter(
    "precision_pdf_page_image_failures_total",
    "Uploads that continued without page images",
    ["stage"],
)

EXTRACTION_OUTCOMES = Counter(
    "precision_pdf_extraction_outcomes_total",
    "Terminal outcomes of background extraction",
    ["outcome"],
)

EXTRACTION_DURATION = Histogram(
    "precision_pdf_extraction_duration_seconds",
    "Wall-clock time spent waiting on the extraction backend",
    buckets=(1, 5, 10, 30, 60, 120, 300, 600),
)
