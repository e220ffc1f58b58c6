"""Chunk selection shared by the page view and the text panel."""
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple


@dataclass(frozen=True)
class SelectionState:
    active_chunk_id: Optional[str] = None
    multi_selected_chunk_ids: Tuple[str, ...] = ()


SelectionListener = Callable[[SelectionState], None]


class SelectionController:
    """
    Tracks the active chunk and the ordered multi-selection.

    Selection is keyed by chunk id only, so a chunk drawn on several pages is
    highlighted everywhere at once. Multi-selection keeps click order.
    """

    def __init__(self):
        self._state = SelectionState()
        self._listeners: List[SelectionListener] = []

    @property
    def state(self) -> SelectionState:
        return self._state

    @property
    def active_chunk_id(self) -> Optional[str]:
        return self._state.active_chunk_id

    @property
    def multi_selected_chunk_ids(self) -> Tuple[str, ...]:
        return self._state.multi_selected_chunk_ids

    def add_listener(self, listener: SelectionListener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def click(self, chunk_id: str, is_multi_modifier: bool = False) -> SelectionState:
        selected = self._state.multi_selected_chunk_ids
        if not is_multi_modifier:
            selected = (chunk_id,)
        elif chunk_id in selected:
            selected = tuple(c for c in selected if c != chunk_id)
        else:
            selected = selected + (chunk_id,)

        return self._set(SelectionState(active_chunk_id=chunk_id, multi_selected_chunk_ids=selected))

    def clear_selection(self) -> SelectionState:
        return self._set(SelectionState())

    def is_selected(self, chunk_id: str) -> bool:
        return chunk_id in self._state.multi_selected_chunk_ids

    def is_active(self, chunk_id: str) -> bool:
        return self._state.active_chunk_id == chunk_id

    def _set(self, state: SelectionState) -> SelectionState:
        if state != self._state:
            self._state = state
            for listener in list(self._listeners):
                listener(state)
        return self._state
