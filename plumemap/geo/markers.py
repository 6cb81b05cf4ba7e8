"""
Low-zoom marker layout.

When the map is zoomed out past the detail threshold, individual plume
resources are not drawn.  Instead items are summarised as:

  - circles — items with a non-degenerate footprint, sized on a log
    scale of their weight (1.5–3 km radius)
  - pins    — items with a small footprint
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List, Tuple

from .items import GeoItem
from .viewport import filter_by_bbox_area

MIN_RADIUS_M = 1500.0
MAX_RADIUS_M = 3000.0

CIRCLE_AREA_THRESHOLD = 0.0   # deg²
PIN_AREA_THRESHOLD = 10.0     # deg²


@dataclass(frozen=True)
class CircleMarker:
    item_id: str
    position: Tuple[float, float]
    radius_m: float
    bbox: Tuple[float, ...]


@dataclass(frozen=True)
class PinMarker:
    item_id: str
    position: Tuple[float, float]


def circle_radius(weight: float, min_weight: float, max_weight: float) -> float:
    """Log-scaled circle radius in metres for *weight* within [min, max]."""
    if min_weight == max_weight:
        return MIN_RADIUS_M
    log_w = math.log(max(weight, 1.0))
    log_min = math.log(max(min_weight, 1.0))
    log_max = math.log(max(max_weight, 1.0))
    if log_max == log_min:
        return MIN_RADIUS_M
    scale = (log_w - log_min) / (log_max - log_min)
    return MIN_RADIUS_M + scale * (MAX_RADIUS_M - MIN_RADIUS_M)


def build_circle_markers(
    items: Iterable[GeoItem],
    threshold: float = CIRCLE_AREA_THRESHOLD,
) -> List[CircleMarker]:
    """Circles for items whose bbox area exceeds *threshold*."""
    selected = [
        it for it in filter_by_bbox_area(items, threshold, op="gt")
        if it.point is not None
    ]
    if not selected:
        return []
    weights = [it.weight for it in selected]
    lo, hi = min(weights), max(weights)
    return [
        CircleMarker(
            item_id=it.item_id,
            position=it.point,
            radius_m=circle_radius(it.weight, lo, hi),
            bbox=it.bbox,
        )
        for it in selected
    ]


def build_pin_markers(
    items: Iterable[GeoItem],
    threshold: float = PIN_AREA_THRESHOLD,
) -> List[PinMarker]:
    """Pins for items whose bbox area is below *threshold*."""
    return [
        PinMarker(item_id=it.item_id, position=it.point)
        for it in filter_by_bbox_area(items, threshold, op="lt")
        if it.point is not None
    ]
