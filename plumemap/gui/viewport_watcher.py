"""
Viewport watcher — re-synchronizes map resources on drag/zoom end.

Data flow
─────────
  surface dragend / zoomend
    → zoom >= zoom_margin and not showing search results?
        yes → filter items by viewport → synchronizer.synchronize()
              → on_enter(id) for added items, on_leave(id) for removed
        no  → on_zoom_out(zoom); low-zoom markers are shown instead

Usage
-----
    watcher = ViewportWatcher(surface, synchronizer, on_zoom_out=print)
    watcher.set_items(items)
    watcher.attach()
"""
from __future__ import annotations

import logging
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Union

from ..geo.items import GeoItem, Viewport
from ..geo.markers import CircleMarker, build_circle_markers
from ..geo.viewport import filter_items
from .surface import DRAG_END, ZOOM_END
from .synchronizer import EventRegistry, ResourceSynchronizer, SyncResult

log = logging.getLogger(__name__)

ZOOM_LEVEL_MARGIN = 4


class ViewportWatcher:
    """Keeps the synchronizer's desired set equal to the items in view."""

    def __init__(
        self,
        surface,
        synchronizer: ResourceSynchronizer,
        zoom_margin: float = ZOOM_LEVEL_MARGIN,
        on_zoom_out: Optional[Callable[[float], None]] = None,
        on_enter: Optional[Callable[[str], None]] = None,
        on_leave: Optional[Callable[[str], None]] = None,
    ):
        self._surface = surface
        self._sync = synchronizer
        self._zoom_margin = zoom_margin
        self._on_zoom_out = on_zoom_out
        self._on_enter = on_enter
        self._on_leave = on_leave
        self._items: Dict[str, GeoItem] = {}
        self._from_search = False
        self._markers_visible = True
        self._bindings = EventRegistry()
        self._attached = False

    @property
    def bindings(self) -> EventRegistry:
        return self._bindings

    @property
    def items(self) -> List[GeoItem]:
        return list(self._items.values())

    @property
    def markers_visible(self) -> bool:
        return self._markers_visible

    @property
    def from_search(self) -> bool:
        return self._from_search

    def set_items(
        self, items: Union[Mapping[str, GeoItem], Iterable[GeoItem], None]
    ) -> SyncResult:
        if not items:
            self._items = {}
        elif isinstance(items, Mapping):
            self._items = dict(items)
        else:
            self._items = {it.item_id: it for it in items}
        return self.refresh()

    def set_from_search(self, flag: bool) -> None:
        """While True, viewport changes do not replace the desired set."""
        self._from_search = bool(flag)

    def attach(self) -> None:
        if self._attached:
            return
        for event in (DRAG_END, ZOOM_END):
            self._bindings.bind(self._surface, None, event, self._handle_viewport_change)
        self._attached = True

    def detach(self) -> None:
        if not self._attached:
            return
        self._bindings.unbind_all(self._surface, None)
        self._attached = False

    def _handle_viewport_change(self, event=None) -> None:
        self.refresh()

    def refresh(self) -> SyncResult:
        """Recompute the visible set and reconcile resources."""
        if not self._surface.is_ready():
            log.debug("refresh: surface not ready")
            return SyncResult()

        zoom = self._surface.get_zoom()
        if zoom < self._zoom_margin:
            self._markers_visible = True
            if self._on_zoom_out is not None:
                self._on_zoom_out(zoom)
            return SyncResult()

        self._markers_visible = False
        if self._from_search:
            return SyncResult()

        viewport = Viewport.from_surface(self._surface)
        visible = filter_items(self._items.values(), viewport)
        result = self._sync.synchronize(visible)
        for item_id in result.added:
            if self._on_enter is not None:
                self._on_enter(item_id)
        for item_id in result.removed:
            if self._on_leave is not None:
                self._on_leave(item_id)
        return result

    def circle_markers(self) -> List[CircleMarker]:
        """Aggregate circles for the low-zoom view (empty when zoomed in)."""
        if not self._markers_visible:
            return []
        return build_circle_markers(self._items.values())
