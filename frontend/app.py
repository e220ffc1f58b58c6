"""Streamlit viewer for Precision PDF."""
import io
import os
import time
from typing import Optional

import requests
import streamlit as st
from PIL import Image, ImageDraw

from precision_pdf.client.grounding import PageOverlays, overlays_for
from precision_pdf.client.reconciler import DocumentSnapshot, PollSchedule
from precision_pdf.client.selection import SelectionController

# Page configuration
st.set_page_config(
    page_title="Precision PDF",
    page_icon="📄",
    layout="wide",
    initial_sidebar_state="expanded"
)

# API Configuration
BACKEND_URL = os.getenv("BACKEND_URL", "http://localhost:8000")
API_BASE_URL = f"{BACKEND_URL}/api"
HEALTH_URL = f"{BACKEND_URL}/health"
USER_ID = os.getenv("PRECISION_PDF_USER_ID", "local-user")
HEADERS = {"X-User-Id": USER_ID}

SCHEDULE = PollSchedule()

# Overlay colors (RGBA)
OVERLAY_COLOR = (59, 130, 246, 60)
SELECTED_COLOR = (234, 179, 8, 90)
ACTIVE_OUTLINE = (220, 38, 38, 255)

st.markdown("""
    <style>
        #MainMenu {visibility: hidden;}
        footer {visibility: hidden;}

        .chunk-box {
            background: #ffffff;
            padding: 0.75rem;
            border-radius: 6px;
            border-left: 3px solid #60a5fa;
            margin: 0.25rem 0;
            box-shadow: 0 1px 3px rgba(0,0,0,0.1);
        }

        .chunk-box.selected {
            border-left: 3px solid #eab308;
            background: #fefce8;
        }

        .placeholder-banner {
            background: #fff7ed;
            padding: 1rem;
            border-radius: 8px;
            border-left: 4px solid #f97316;
        }
    </style>
""", unsafe_allow_html=True)

# Initialize session state
if "document_id" not in st.session_state:
    st.session_state.document_id = None
if "poll_attempts" not in st.session_state:
    st.session_state.poll_attempts = 0
if "record" not in st.session_state:
    st.session_state.record = None
if "selection" not in st.session_state:
    st.session_state.selection = SelectionController()
if "current_page" not in st.session_state:
    st.session_state.current_page = 0


def check_backend_health() -> bool:
    """Check if backend is running."""
    try:
        response = requests.get(HEALTH_URL, timeout=2)
        return response.status_code == 200
    except requests.exceptions.RequestException:
        return False


def show_error(response: requests.Response, prefix: str) -> None:
    try:
        detail = response.json().get("detail", "Unknown error")
    except ValueError:
        detail = response.text or "Unknown error"
    st.error(f"{prefix}: {detail}")


def open_document(document_id: str, record: Optional[dict] = None) -> None:
    """Switch the viewer to another document; pending polling is dropped."""
    st.session_state.document_id = document_id
    st.session_state.poll_attempts = 0
    st.session_state.record = record
    st.session_state.current_page = 0
    st.session_state.selection.clear_selection()


def upload_document(file) -> Optional[dict]:
    """Upload a document to the backend."""
    try:
        files = {"file": (file.name, file.getvalue(), file.type or "application/octet-stream")}
        response = requests.post(
            f"{API_BASE_URL}/upload-document", files=files, headers=HEADERS, timeout=300
        )
        if response.status_code == 200:
            return response.json()
        show_error(response, "Upload failed")
        return None
    except requests.exceptions.RequestException as e:
        st.error(f"Connection error: {str(e)}")
        return None


def fetch_record(document_id: str, minimal: bool = False) -> Optional[dict]:
    try:
        response = requests.get(
            f"{API_BASE_URL}/documents/{document_id}/status",
            params={"minimal": "true"} if minimal else None,
            headers=HEADERS,
            timeout=30,
        )
    except requests.exceptions.RequestException as e:
        st.warning(f"Status check failed: {str(e)}")
        return None
    if response.status_code != 200:
        show_error(response, "Status check failed")
        return None
    return response.json()


def list_documents() -> list:
    try:
        response = requests.get(f"{API_BASE_URL}/documents", headers=HEADERS, timeout=10)
    except requests.exceptions.RequestException:
        return []
    if response.status_code != 200:
        return []
    return response.json().get("documents", [])


def load_page_image(document_id: str, page: int) -> Optional[Image.Image]:
    try:
        response = requests.get(
            f"{API_BASE_URL}/documents/{document_id}/page-image/{page}",
            headers=HEADERS,
            timeout=30,
        )
    except requests.exceptions.RequestException:
        return None
    if response.status_code != 200:
        return None
    return Image.open(io.BytesIO(response.content)).convert("RGBA")


def draw_overlays(image: Image.Image, overlays: PageOverlays, page: int, selection: SelectionController) -> Image.Image:
    """Draw chunk boxes of one page; selected chunks are highlighted."""
    layer = Image.new("RGBA", image.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(layer)
    width, height = image.size

    for instance in overlays.instances_on(page):
        box = instance.box
        rect = (box.left * width, box.top * height, box.right * width, box.bottom * height)
        selected = selection.is_selected(instance.chunk_id)
        draw.rectangle(rect, fill=SELECTED_COLOR if selected else OVERLAY_COLOR)
        if selection.is_active(instance.chunk_id):
            draw.rectangle(rect, outline=ACTIVE_OUTLINE, width=3)

    return Image.alpha_composite(image, layer)


def poll_status(document_id: str) -> None:
    """
    One bounded polling step: probe first, fetch the full record only once
    content has arrived, then schedule the next rerun.
    """
    attempts = st.session_state.poll_attempts
    if attempts >= SCHEDULE.max_attempts:
        return

    probe = fetch_record(document_id, minimal=True)
    st.session_state.poll_attempts = attempts + 1
    if probe and (probe.get("hasExtractedContent") or probe.get("status") in ("completed", "failed")):
        record = fetch_record(document_id)
        if record:
            st.session_state.record = record
            if record.get("status") in ("completed", "failed"):
                st.rerun()

    if st.session_state.poll_attempts < SCHEDULE.max_attempts:
        time.sleep(SCHEDULE.delay_for(st.session_state.poll_attempts))
    st.rerun()


# Main UI
st.title("📄 Precision PDF")
st.caption("Upload a PDF or image, preview its pages and explore the extracted content")

if not check_backend_health():
    st.error(f"⚠️ Backend server is not running. Please start the backend server at {BACKEND_URL}")
    st.stop()

with st.sidebar:
    st.header("Documents")
    uploaded_file = st.file_uploader(
        "Choose a document",
        type=["pdf", "jpg", "jpeg", "png"],
        help="PDF (up to 50 pages), JPEG or PNG, up to 250 MB",
    )
    if uploaded_file is not None and st.button("Upload & Process", type="primary"):
        with st.spinner("Uploading and rendering pages..."):
            result = upload_document(uploaded_file)
        if result:
            open_document(result["documentId"])
            time.sleep(SCHEDULE.initial_delay)
            st.rerun()

    st.markdown("---")
    for summary in list_documents():
        label = f"{summary['title']} · {summary['status']}"
        if st.button(label, key=f"open-{summary['documentId']}"):
            open_document(summary["documentId"])
            st.rerun()

document_id = st.session_state.document_id
if document_id is None:
    st.info("📄 Upload a document or open one from the sidebar.")
    st.stop()

if st.session_state.record is None:
    latest = fetch_record(document_id)
    if latest:
        st.session_state.record = latest

record = st.session_state.record
if record is None:
    st.stop()

snapshot = DocumentSnapshot.from_record(record)
selection: SelectionController = st.session_state.selection

st.subheader(snapshot.title)

if snapshot.status.value == "failed":
    st.error(f"Processing failed: {snapshot.error_message or 'Unknown error'}")
    if st.button("Retry"):
        response = requests.post(
            f"{API_BASE_URL}/documents/{document_id}/retry", headers=HEADERS, timeout=30
        )
        if response.status_code == 200:
            open_document(document_id, response.json())
            st.rerun()
        show_error(response, "Retry failed")

if snapshot.is_placeholder:
    st.markdown(
        "<div class='placeholder-banner'>The extraction service was unavailable. "
        "The content below is a placeholder, not extracted text.</div>",
        unsafe_allow_html=True,
    )

chunks = list(snapshot.chunks or [])
page_count = snapshot.page_count or snapshot.page_image_count
overlays = overlays_for(chunks, page_count)

col1, col2 = st.columns([3, 2])

with col1:
    st.header("Pages")
    if overlays.page_count == 0 and snapshot.page_image_count == 0:
        st.info("⏳ Pages are being prepared...")
    else:
        total_pages = max(overlays.page_count, snapshot.page_image_count, 1)
        if selection.active_chunk_id is not None:
            primary = overlays.primary_page(selection.active_chunk_id)
            if primary is not None:
                st.session_state.current_page = primary
        page = st.number_input(
            "Page", min_value=1, max_value=total_pages,
            value=min(st.session_state.current_page + 1, total_pages),
        ) - 1
        st.session_state.current_page = page

        image = load_page_image(document_id, page)
        if image is None:
            st.info("⏳ Page preview is not available yet.")
        else:
            st.image(draw_overlays(image, overlays, page, selection), use_container_width=True)
        st.caption(f"{len(overlays.instances_on(page))} regions on this page")

with col2:
    st.header("Parsed Content")
    if not snapshot.is_terminal:
        if st.session_state.poll_attempts >= SCHEDULE.max_attempts:
            st.info("⏳ Still processing. This is taking longer than usual, check back later.")
        else:
            st.info("⏳ Extracting content...")
    elif snapshot.status.value == "completed":
        multi = st.checkbox("Multi-select (Ctrl/Cmd)", value=False)
        if st.button("Clear selection"):
            selection.clear_selection()
            st.rerun()

        st.caption(f"{len(chunks)} chunks · {overlays.total_instances} regions")
        for chunk in chunks:
            css = "chunk-box selected" if selection.is_selected(chunk.chunk_id) else "chunk-box"
            st.markdown(
                f"<div class='{css}'><b>{chunk.chunk_type}</b><br>{chunk.content[:500]}</div>",
                unsafe_allow_html=True,
            )
            if st.button("Select", key=f"select-{chunk.chunk_id}"):
                selection.click(chunk.chunk_id, is_multi_modifier=multi)
                st.rerun()

        if selection.multi_selected_chunk_ids:
            st.markdown("---")
            st.subheader("Selected")
            by_id = {chunk.chunk_id: chunk for chunk in chunks}
            st.markdown(
                "\n\n".join(
                    by_id[chunk_id].content
                    for chunk_id in selection.multi_selected_chunk_ids
                    if chunk_id in by_id
                )
            )

        with st.expander("Markdown", expanded=False):
            st.markdown(snapshot.markdown or "")

# Polling runs last so the page renders before the next rerun
if not snapshot.is_terminal:
    poll_status(document_id)
