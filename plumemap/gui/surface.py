"""
Map rendering surface interface.

The synchronizer, playback engine and viewport watcher only talk to the
map through this interface.  A surface holds named resources (raster,
line and fill layers), lets callers toggle their visibility and paint
properties, and dispatches pointer / viewport events to handlers.

Event names
-----------
  click, mouseenter, mouseleave   — per-resource pointer events
  dragend, zoomend                — surface-wide viewport events
                                    (registered with resource_id=None)
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Tuple

Handler = Callable[[Any], None]

CLICK = "click"
MOUSE_ENTER = "mouseenter"
MOUSE_LEAVE = "mouseleave"
DRAG_END = "dragend"
ZOOM_END = "zoomend"


class MapSurface(ABC):
    """Abstract map surface consumed by the rendering core."""

    @abstractmethod
    def is_ready(self) -> bool:
        """False until the surface can accept resources."""

    @abstractmethod
    def add_resource(self, resource_id: str, descriptor: dict) -> None: ...

    @abstractmethod
    def remove_resource(self, resource_id: str) -> None: ...

    @abstractmethod
    def resource_exists(self, resource_id: str) -> bool: ...

    @abstractmethod
    def set_visibility(self, resource_id: str, visible: bool) -> None: ...

    @abstractmethod
    def is_visible(self, resource_id: str) -> bool:
        """False for hidden or unknown resources."""

    @abstractmethod
    def set_paint_property(self, resource_id: str, prop: str, value: Any) -> None: ...

    @abstractmethod
    def on(self, event: str, resource_id: Optional[str], handler: Handler) -> None: ...

    @abstractmethod
    def off(self, event: str, resource_id: Optional[str], handler: Handler) -> None: ...

    @abstractmethod
    def get_viewport_bounds(self) -> Tuple[float, float, float, float]:
        """(west, south, east, north) in lon/lat degrees."""

    @abstractmethod
    def get_zoom(self) -> float: ...

    @abstractmethod
    def query_resources_at(self, point: Tuple[float, float]) -> List[str]:
        """Ids of resources under a (lon, lat) point, topmost first."""

    def add_control(self, control: Any) -> None:
        """Attach a UI control (e.g. a timeline) to the surface."""

    def remove_control(self, control: Any) -> None:
        """Detach a control previously passed to add_control."""
