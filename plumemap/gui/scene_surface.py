"""
QGraphicsScene-backed map surface.

Renders plume resources on a zoomable, pannable scene:
  - raster      — tinted footprint rectangle over the item bbox
                  (hidden until set visible)
  - polygon     — outline path with a cosmetic pen whose width follows
                  the ``line-width`` paint property
  - fill        — transparent path that only catches hover and clicks

Coordinate system: lon/lat projected to EPSG:3857 (Web Mercator) metres,
scaled by SCENE_SCALE, Y flipped for Qt's top-down scene axis.

MapView emits the surface-wide ``dragend`` after a pan and ``zoomend``
after wheel zoom.  The surface is not ready until a view is attached.
"""
from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Optional, Tuple

import pyproj
from PyQt5 import QtCore, QtGui, QtWidgets
from shapely.geometry import shape

from .surface import (
    CLICK,
    DRAG_END,
    MOUSE_ENTER,
    MOUSE_LEAVE,
    ZOOM_END,
    Handler,
    MapSurface,
)

log = logging.getLogger(__name__)

WGS84 = pyproj.CRS("EPSG:4326")
WEB_MERCATOR = pyproj.CRS("EPSG:3857")

_to_metric = pyproj.Transformer.from_crs(WGS84, WEB_MERCATOR, always_xy=True)
_to_lonlat = pyproj.Transformer.from_crs(WEB_MERCATOR, WGS84, always_xy=True)

SCENE_SCALE = 1.0 / 1000.0
_Z0_METRES_PER_PIXEL = 156543.03392804097   # zoom 0, 256 px tiles
WORLD_HALF_EXTENT_M = 20037508.342789244


def lonlat_to_scene(lon: float, lat: float) -> QtCore.QPointF:
    x, y = _to_metric.transform(lon, lat)
    return QtCore.QPointF(x * SCENE_SCALE, -y * SCENE_SCALE)


def scene_to_lonlat(point: QtCore.QPointF) -> Tuple[float, float]:
    return _to_lonlat.transform(point.x() / SCENE_SCALE, -point.y() / SCENE_SCALE)


def _polygons_of(geometry) -> list:
    if geometry.geom_type == "Polygon":
        return [geometry]
    return [g for g in getattr(geometry, "geoms", []) if g.geom_type == "Polygon"]


def _geometry_path(feature: Optional[dict]) -> QtGui.QPainterPath:
    path = QtGui.QPainterPath()
    geom = (feature or {}).get("geometry")
    if not geom:
        return path
    for poly in _polygons_of(shape(geom)):
        for ring in [poly.exterior, *poly.interiors]:
            pts = [lonlat_to_scene(lon, lat) for lon, lat in ring.coords]
            if len(pts) >= 3:
                path.addPolygon(QtGui.QPolygonF(pts))
                path.closeSubpath()
    return path


# ── Resource items ───────────────────────────────────────────────────

class RasterItem(QtWidgets.QGraphicsRectItem):
    """Footprint of a tile-backed raster resource."""

    def __init__(self, resource_id: str, descriptor: dict):
        super().__init__()
        self.resource_id = resource_id
        bounds = descriptor.get("bounds") or []
        if len(bounds) == 4:
            west, south, east, north = bounds
            top_left = lonlat_to_scene(west, north)
            bottom_right = lonlat_to_scene(east, south)
            self.setRect(QtCore.QRectF(top_left, bottom_right).normalized())
        self.setPen(QtGui.QPen(QtCore.Qt.NoPen))
        self.setBrush(QtGui.QColor(255, 140, 0, 110))
        tiles = descriptor.get("tiles") or []
        if tiles:
            self.setToolTip(tiles[0])
        self.setZValue(10)
        visibility = (descriptor.get("layout") or {}).get("visibility", "visible")
        self.setVisible(visibility != "none")


class OutlineItem(QtWidgets.QGraphicsPathItem):
    """Polygon outline; width is a paint property."""

    def __init__(self, resource_id: str, descriptor: dict):
        super().__init__(_geometry_path(descriptor.get("data")))
        self.resource_id = resource_id
        paint = descriptor.get("paint") or {}
        pen = QtGui.QPen(QtGui.QColor(paint.get("line-color", "#0098d7")))
        pen.setWidthF(float(paint.get("line-width", 2.0)))
        pen.setCosmetic(True)
        self.setPen(pen)
        self.setBrush(QtGui.QBrush(QtCore.Qt.NoBrush))
        self.setZValue(20)

    def set_line_width(self, width: float) -> None:
        pen = self.pen()
        pen.setWidthF(float(width))
        self.setPen(pen)

    def set_line_color(self, color: str) -> None:
        pen = self.pen()
        pen.setColor(QtGui.QColor(color))
        self.setPen(pen)


class HitItem(QtWidgets.QGraphicsPathItem):
    """Invisible fill used for hit-testing; forwards pointer events."""

    def __init__(self, resource_id: str, descriptor: dict, surface: "SceneSurface"):
        super().__init__(_geometry_path(descriptor.get("data")))
        self.resource_id = resource_id
        self._surface = surface
        self.setPen(QtGui.QPen(QtCore.Qt.NoPen))
        self.setBrush(QtGui.QColor(0, 0, 0, 0))
        self.setZValue(30)
        self.setAcceptHoverEvents(True)
        self.setCursor(QtCore.Qt.PointingHandCursor)

    def hoverEnterEvent(self, event):
        self._surface.dispatch(MOUSE_ENTER, self.resource_id, event)
        super().hoverEnterEvent(event)

    def hoverLeaveEvent(self, event):
        self._surface.dispatch(MOUSE_LEAVE, self.resource_id, event)
        super().hoverLeaveEvent(event)

    def mousePressEvent(self, event):
        self._surface.dispatch(CLICK, self.resource_id, event)
        super().mousePressEvent(event)


# ── View ─────────────────────────────────────────────────────────────

class MapView(QtWidgets.QGraphicsView):
    """Pannable / wheel-zoomable view that reports viewport changes."""

    _ZOOM_STEP = 1.25

    def __init__(self, surface: "SceneSurface", parent: Optional[QtWidgets.QWidget] = None):
        super().__init__(surface.scene, parent)
        self._surface = surface
        self._dragging = False
        self.setDragMode(QtWidgets.QGraphicsView.ScrollHandDrag)
        self.setRenderHint(QtGui.QPainter.Antialiasing)
        self.setTransformationAnchor(QtWidgets.QGraphicsView.AnchorUnderMouse)
        self.setBackgroundBrush(QtGui.QColor(6, 10, 16))
        self.setHorizontalScrollBarPolicy(QtCore.Qt.ScrollBarAlwaysOff)
        self.setVerticalScrollBarPolicy(QtCore.Qt.ScrollBarAlwaysOff)
        self.setMouseTracking(True)
        surface.attach_view(self)

    @property
    def surface(self) -> "SceneSurface":
        return self._surface

    def mouseMoveEvent(self, event):
        if event.buttons() & QtCore.Qt.LeftButton:
            self._dragging = True
        super().mouseMoveEvent(event)

    def mouseReleaseEvent(self, event):
        super().mouseReleaseEvent(event)
        if self._dragging:
            self._dragging = False
            self._surface.dispatch(DRAG_END, None, event)

    def wheelEvent(self, event):
        steps = event.angleDelta().y() / 120.0
        if not steps:
            return
        factor = self._ZOOM_STEP ** steps
        self.scale(factor, factor)
        self._surface.dispatch(ZOOM_END, None, event)


# ── Surface ──────────────────────────────────────────────────────────

class SceneSurface(MapSurface):
    """MapSurface implementation over a QGraphicsScene."""

    def __init__(self, scene: Optional[QtWidgets.QGraphicsScene] = None):
        self.scene = scene if scene is not None else QtWidgets.QGraphicsScene()
        if scene is None:
            half = WORLD_HALF_EXTENT_M * SCENE_SCALE
            self.scene.setSceneRect(-half, -half, 2 * half, 2 * half)
        self._view: Optional[QtWidgets.QGraphicsView] = None
        self._items: Dict[str, QtWidgets.QGraphicsItem] = {}
        self._handlers: Dict[Tuple[str, Optional[str]], List[Handler]] = {}
        self._controls: List[Any] = []

    # ── Readiness / view ──────────────────────────────────────────────

    def attach_view(self, view: QtWidgets.QGraphicsView) -> None:
        self._view = view
        log.info("SceneSurface: view attached")

    def is_ready(self) -> bool:
        return self._view is not None

    @property
    def controls(self) -> List[Any]:
        return list(self._controls)

    # ── Resources ─────────────────────────────────────────────────────

    def add_resource(self, resource_id: str, descriptor: dict) -> None:
        if resource_id in self._items:
            log.debug("SceneSurface: %s already present", resource_id)
            return
        kind = descriptor.get("type")
        if kind == "raster":
            item = RasterItem(resource_id, descriptor)
        elif kind == "line":
            item = OutlineItem(resource_id, descriptor)
        elif kind == "fill":
            item = HitItem(resource_id, descriptor, self)
        else:
            raise ValueError(f"Unsupported resource type {kind!r} for {resource_id}")
        self.scene.addItem(item)
        self._items[resource_id] = item

    def remove_resource(self, resource_id: str) -> None:
        item = self._items.pop(resource_id, None)
        if item is None:
            return
        self.scene.removeItem(item)
        for key in [k for k in self._handlers if k[1] == resource_id]:
            del self._handlers[key]

    def resource_exists(self, resource_id: str) -> bool:
        return resource_id in self._items

    def set_visibility(self, resource_id: str, visible: bool) -> None:
        item = self._items.get(resource_id)
        if item is not None:
            item.setVisible(bool(visible))

    def is_visible(self, resource_id: str) -> bool:
        item = self._items.get(resource_id)
        return item is not None and item.isVisible()

    def set_paint_property(self, resource_id: str, prop: str, value: Any) -> None:
        item = self._items.get(resource_id)
        if item is None:
            return
        if prop == "line-width" and isinstance(item, OutlineItem):
            item.set_line_width(value)
        elif prop == "line-color" and isinstance(item, OutlineItem):
            item.set_line_color(value)
        elif prop.endswith("-opacity"):
            item.setOpacity(float(value))
        else:
            log.debug("SceneSurface: ignoring paint %s on %s", prop, resource_id)

    def line_width(self, resource_id: str) -> Optional[float]:
        item = self._items.get(resource_id)
        if isinstance(item, OutlineItem):
            return item.pen().widthF()
        return None

    # ── Events ────────────────────────────────────────────────────────

    def on(self, event: str, resource_id: Optional[str], handler: Handler) -> None:
        self._handlers.setdefault((event, resource_id), []).append(handler)

    def off(self, event: str, resource_id: Optional[str], handler: Handler) -> None:
        handlers = self._handlers.get((event, resource_id))
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            return
        if not handlers:
            del self._handlers[(event, resource_id)]

    def handler_count(self, resource_id: Optional[str] = None) -> int:
        return sum(len(v) for (_, rid), v in self._handlers.items() if rid == resource_id)

    def dispatch(self, event: str, resource_id: Optional[str], payload: Any = None) -> None:
        for handler in list(self._handlers.get((event, resource_id), [])):
            handler(payload)

    # ── Viewport ──────────────────────────────────────────────────────

    def get_viewport_bounds(self) -> Tuple[float, float, float, float]:
        if self._view is None:
            raise RuntimeError("SceneSurface has no view attached")
        rect = self._view.mapToScene(self._view.viewport().rect()).boundingRect()
        west, south = scene_to_lonlat(rect.bottomLeft())
        east, north = scene_to_lonlat(rect.topRight())
        return (west, south, east, north)

    def get_zoom(self) -> float:
        if self._view is None:
            return 0.0
        px_per_unit = self._view.transform().m11()
        if px_per_unit <= 0:
            return 0.0
        metres_per_px = 1.0 / (SCENE_SCALE * px_per_unit)
        return math.log2(_Z0_METRES_PER_PIXEL / metres_per_px)

    def fit_bounds(self, bbox) -> None:
        """Fit the view to a (west, south, east, north) box."""
        if self._view is None or len(bbox) != 4:
            return
        west, south, east, north = bbox
        rect = QtCore.QRectF(
            lonlat_to_scene(west, north), lonlat_to_scene(east, south),
        ).normalized()
        self._view.fitInView(rect, QtCore.Qt.KeepAspectRatio)

    def query_resources_at(self, point: Tuple[float, float]) -> List[str]:
        pos = lonlat_to_scene(*point)
        ids = []
        for item in self.scene.items(pos):
            rid = getattr(item, "resource_id", None)
            if rid is not None and self._items.get(rid) is item:
                ids.append(rid)
        return ids

    # ── Controls ──────────────────────────────────────────────────────

    def add_control(self, control: Any) -> None:
        if control not in self._controls:
            self._controls.append(control)

    def remove_control(self, control: Any) -> None:
        if control in self._controls:
            self._controls.remove(control)
