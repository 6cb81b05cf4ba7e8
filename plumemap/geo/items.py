"""
Geospatial item data model.

A GeoItem is one renderable record from the data layer, usually a STAC
item with a plume polygon, a marker point and a capture time.  The core
never mutates items; it only decides which of them need live map
resources.

A Viewport is a read-only snapshot of the map's visible rectangle and
zoom level, rebuilt on every drag/zoom end.

Example
-------
    item = GeoItem(
        item_id="EMIT_L2B_CH4PLM_001_20230612T143022_000109",
        bbox=(-104.1, 32.2, -104.0, 32.3),
        polygon=box(-104.1, 32.2, -104.0, 32.3),
        timestamp=parse_timestamp("2023-06-12T14:30:22Z"),
    )
    vp = Viewport(west=-105.0, south=32.0, east=-103.0, north=33.0, zoom=6)
    item.polygon.intersects(vp.rect)   # True
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from shapely.geometry import box, mapping

log = logging.getLogger(__name__)


def parse_timestamp(text: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 string into an aware UTC datetime.

    Naive values are assumed to be UTC.  Returns None when *text* is
    empty or unparseable.
    """
    if not text:
        return None
    try:
        dt = datetime.fromisoformat(str(text).replace("Z", "+00:00"))
    except ValueError:
        log.debug("Unparseable timestamp: %r", text)
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class GeoItem:
    """One immutable item supplied by the data layer."""

    item_id: str
    bbox: Tuple[float, ...] = ()                 # (west, south, east, north)
    polygon: Optional[Any] = None                # shapely geometry (lon/lat)
    point: Optional[Tuple[float, float]] = None  # (lon, lat) marker position
    timestamp: Optional[datetime] = None

    # Rendering parameters
    collection: str = ""
    asset: str = ""
    colormap: str = "plasma"
    vmin: float = 0.0
    vmax: float = 1.0
    weight: float = 1.0

    properties: Mapping[str, Any] = field(
        default_factory=dict, compare=False, hash=False,
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "bbox", tuple(self.bbox or ()))
        object.__setattr__(
            self, "properties", MappingProxyType(dict(self.properties)),
        )

    @property
    def has_polygon(self) -> bool:
        return self.polygon is not None and not self.polygon.is_empty

    def as_feature(self) -> Dict[str, Any]:
        """GeoJSON Feature for the item's polygon (geometry may be None)."""
        return {
            "type": "Feature",
            "id": self.item_id,
            "properties": dict(self.properties),
            "geometry": mapping(self.polygon) if self.has_polygon else None,
        }


@dataclass(frozen=True)
class Viewport:
    """Visible map rectangle (lon/lat degrees) plus zoom level."""

    west: float
    south: float
    east: float
    north: float
    zoom: float = 0.0

    @property
    def rect(self):
        """Shapely rectangle covering the viewport."""
        return box(self.west, self.south, self.east, self.north)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        return (self.west, self.south, self.east, self.north)

    @classmethod
    def from_surface(cls, surface) -> "Viewport":
        """Snapshot the current bounds and zoom of a map surface."""
        west, south, east, north = surface.get_viewport_bounds()
        return cls(west, south, east, north, zoom=surface.get_zoom())
