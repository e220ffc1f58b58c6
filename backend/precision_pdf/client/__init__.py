"""Viewer-side synchronization: status reconciliation, overlays and selection."""
from precision_pdf.client.api_client import ApiClientError, DocumentApiClient, ProbeResult
from precision_pdf.client.grounding import PageOverlays, RenderableInstance, map_groundings, overlays_for
from precision_pdf.client.reconciler import (
    DocumentSnapshot,
    FallbackPoller,
    PollerState,
    PollSchedule,
    StatusReconciler,
)
from precision_pdf.client.selection import SelectionController, SelectionState

__all__ = [
    "ApiClientError",
    "DocumentApiClient",
    "ProbeResult",
    "PageOverlays",
    "RenderableInstance",
    "map_groundings",
    "overlays_for",
    "DocumentSnapshot",
    "FallbackPoller",
    "PollerState",
    "PollSchedule",
    "StatusReconciler",
    "SelectionController",
    "SelectionState",
]
