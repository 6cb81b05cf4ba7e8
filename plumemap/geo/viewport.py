"""
Viewport filtering for map items.

Decides which items currently fall inside the visible map rectangle, and
classifies items by the area of their bounding box (small footprints are
shown as pins, large ones as aggregate circles at low zoom).

Usage
-----
    from plumemap.geo.viewport import filter_items, filter_by_bbox_area
    visible = filter_items(items, Viewport.from_surface(surface))
    large = filter_by_bbox_area(items, threshold=0.0, op="gt")
"""
from __future__ import annotations

import logging
from typing import Iterable, List, Sequence

from .items import GeoItem, Viewport

log = logging.getLogger(__name__)


def is_within_bounds(item: GeoItem, viewport: Viewport) -> bool:
    """True when the item's polygon intersects the viewport rectangle.

    Items without polygon geometry never intersect.
    """
    if not item.has_polygon:
        return False
    return item.polygon.intersects(viewport.rect)


def filter_items(items: Iterable[GeoItem], viewport: Viewport) -> List[GeoItem]:
    """Return the items whose polygon intersects *viewport*, in input order."""
    rect = viewport.rect
    visible = [
        item for item in items
        if item.has_polygon and item.polygon.intersects(rect)
    ]
    log.debug(
        "Viewport %.3f,%.3f,%.3f,%.3f z%.1f: %d items visible",
        viewport.west, viewport.south, viewport.east, viewport.north,
        viewport.zoom, len(visible),
    )
    return visible


# ── Bounding-box area ────────────────────────────────────────────────

def bbox_area(bbox: Sequence[float]) -> float:
    """Area of a (west, south, east, north) box in square degrees.

    Anything other than exactly four components counts as area 0.
    """
    if not bbox or len(bbox) != 4:
        return 0.0
    west, south, east, north = bbox
    return abs(east - west) * abs(north - south)


def filter_by_bbox_area(
    items: Iterable[GeoItem],
    threshold: float,
    op: str = "lt",
) -> List[GeoItem]:
    """Keep items whose bbox area is below (``"lt"``) or above (``"gt"``) *threshold*."""
    if op not in ("lt", "gt"):
        raise ValueError(f"op must be 'lt' or 'gt', got {op!r}")
    if items is None:
        return []
    if op == "lt":
        return [it for it in items if bbox_area(it.bbox) < threshold]
    return [it for it in items if bbox_area(it.bbox) > threshold]
