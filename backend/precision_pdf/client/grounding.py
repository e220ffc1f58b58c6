"""Mapping of chunk groundings onto per-page overlays."""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from precision_pdf.models.document import BoundingBox, Chunk, infer_page_count


@dataclass(frozen=True)
class RenderableInstance:
    """One grounding of one chunk, placed on one page."""

    chunk_id: str
    chunk_type: str
    page: int
    box: BoundingBox
    grounding_index: int

    @property
    def instance_key(self) -> str:
        # Stable across re-renders: the grounding index counts every grounding
        # of the chunk, valid or not
        return f"{self.chunk_id}-{self.grounding_index}"


@dataclass
class PageOverlays:
    """Renderable instances per page plus the chunk id -> primary page index."""

    pages: List[List[RenderableInstance]]
    primary_pages: Dict[str, int] = field(default_factory=dict)

    @property
    def page_count(self) -> int:
        return len(self.pages)

    @property
    def total_instances(self) -> int:
        return sum(len(instances) for instances in self.pages)

    def instances_on(self, page: int) -> List[RenderableInstance]:
        if 0 <= page < len(self.pages):
            return self.pages[page]
        return []

    def instances_for_chunk(self, chunk_id: str) -> List[RenderableInstance]:
        return [
            instance
            for instances in self.pages
            for instance in instances
            if instance.chunk_id == chunk_id
        ]

    def primary_page(self, chunk_id: str) -> Optional[int]:
        """Page to scroll to when a chunk is picked from the text panel."""
        return self.primary_pages.get(chunk_id)


def map_groundings(page_count: Optional[int], chunks: Sequence[Chunk]) -> PageOverlays:
    """
    Turn a flat chunk list into per-page overlays.

    Groundings pointing outside ``[0, page_count)`` or carrying a malformed box
    are skipped. A chunk without any valid grounding gets no overlay and no
    primary page. When chunks exist the page count is clamped to at least one
    so there is always a surface to draw on.
    """
    page_count = max(int(page_count or 0), 0)
    if chunks and page_count < 1:
        page_count = 1

    pages: List[List[RenderableInstance]] = [[] for _ in range(page_count)]
    primary_pages: Dict[str, int] = {}

    for chunk in chunks:
        for grounding_index, grounding in enumerate(chunk.grounding):
            if not 0 <= grounding.page < page_count:
                continue
            if not grounding.box.is_well_formed():
                continue

            pages[grounding.page].append(
                RenderableInstance(
                    chunk_id=chunk.chunk_id,
                    chunk_type=chunk.chunk_type,
                    page=grounding.page,
                    box=grounding.box,
                    grounding_index=grounding_index,
                )
            )
            primary_pages.setdefault(chunk.chunk_id, grounding.page)

    return PageOverlays(pages=pages, primary_pages=primary_pages)


def overlays_for(chunks: Sequence[Chunk], page_count: Optional[int] = None) -> PageOverlays:
    """Map groundings using the declared page count, inferring it when unknown."""
    declared = page_count if page_count else None
    return map_groundings(infer_page_count(list(chunks), declared=declared), chunks)
