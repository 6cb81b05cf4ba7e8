"""
Plume map desktop entry point.

    python -m plumemap                  # browse: resources follow the viewport
    python -m plumemap --animate        # timeline playback of plume rasters
    python -m plumemap --search-mode    # show every item, ignore viewport
    python -m plumemap --mosaic         # one registered mosaic for all rasters
"""
from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from PyQt5 import QtCore, QtGui, QtWidgets

from .config import MapConfig, load_config, validate_config
from .geo.items import GeoItem
from .gui.playback import PlaybackEngine
from .gui.scene_surface import SCENE_SCALE, MapView, SceneSurface, lonlat_to_scene
from .gui.surface import ZOOM_END
from .gui.synchronizer import EventRegistry, LayerStyle, ResourceKind, ResourceSynchronizer
from .gui.timeline import TimelineControl
from .gui.timers import QtScheduler
from .gui.viewport_watcher import ViewportWatcher
from .ingest.stac_client import fetch_geo_items
from .ingest.tile_resolver import ItemTileSource, MosaicTileSource, TileResolver
from .logger import setup_logging
from .storage.ttl_cache import TTLCache

log = logging.getLogger(__name__)


def _union_bbox(items: List[GeoItem]) -> Optional[tuple]:
    boxes = [it.bbox for it in items if len(it.bbox) == 4]
    if not boxes:
        return None
    return (
        min(b[0] for b in boxes), min(b[1] for b in boxes),
        max(b[2] for b in boxes), max(b[3] for b in boxes),
    )


class MainWindow(QtWidgets.QMainWindow):
    """Map view plus status bar; playback adds a small transport toolbar."""

    tile_ready = QtCore.pyqtSignal(str)

    def __init__(
        self,
        config: MapConfig,
        items: List[GeoItem],
        animate: bool = False,
        search_mode: bool = False,
        mosaic: bool = False,
    ):
        super().__init__()
        self.setWindowTitle(f"Plume map - {config.collection_id}")
        self.resize(1280, 820)
        self._config = config
        self._items = items

        self.surface = SceneSurface()
        self.view = MapView(self.surface, self)
        self.setCentralWidget(self.view)
        self._status = QtWidgets.QLabel("")
        self.statusBar().addWidget(self._status, 1)

        self._markers: List[QtWidgets.QGraphicsEllipseItem] = []
        self._watcher: Optional[ViewportWatcher] = None
        self._playback: Optional[PlaybackEngine] = None
        self._view_bindings = EventRegistry()

        self.tile_ready.connect(self._on_tile_ready)
        tile_source = self._build_tile_source(mosaic)
        self._sync = ResourceSynchronizer(
            self.surface,
            tile_source=tile_source,
            style=LayerStyle(),
            on_click=self._on_item_click,
            on_hover=self._on_item_hover,
        )

        if animate:
            self._start_playback(tile_source)
        else:
            self._start_browsing(search_mode)
        QtCore.QTimer.singleShot(0, self._fit_to_items)

    # ── Setup ─────────────────────────────────────────────────────────

    def _build_tile_source(self, mosaic: bool):
        if not mosaic:
            return ItemTileSource(self._config.raster_api_url)
        resolver = TileResolver(
            self._config.raster_api_url,
            TTLCache(self._config.cache_ttl_s),
        )
        return MosaicTileSource(
            resolver,
            self._config.collection_id,
            self._config.asset,
            on_ready=self.tile_ready.emit,
        )

    def _start_browsing(self, search_mode: bool) -> None:
        self._watcher = ViewportWatcher(
            self.surface,
            self._sync,
            zoom_margin=self._config.zoom_margin,
            on_zoom_out=self._on_zoom_out,
            on_enter=lambda item_id: log.debug("Item in view: %s", item_id),
        )
        self._watcher.set_from_search(search_mode)
        self._watcher.attach()
        self._view_bindings.bind(
            self.surface, None, ZOOM_END, lambda event: self._draw_markers(),
        )
        self._watcher.set_items(self._items)
        if search_mode:
            self._sync.synchronize(self._items)
        self._add_layer_toggle()
        self._draw_markers()

    def _start_playback(self, tile_source) -> None:
        frames_sync = ResourceSynchronizer(
            self.surface,
            tile_source=tile_source,
            kinds=(ResourceKind.RASTER,),
        )
        self._scheduler = QtScheduler(self)
        self._playback = PlaybackEngine(
            frames_sync,
            self._scheduler,
            lookahead=self._config.lookahead,
            crossfade_ms=self._config.crossfade_ms,
        )
        control = self._playback.start(self._items)
        if control is None:
            self._status.setText("No timestamped items to animate")
            return
        self._add_transport(control)

    def _add_layer_toggle(self) -> None:
        bar = self.addToolBar("Layers")
        action = bar.addAction("Hide plumes")
        action.setCheckable(True)
        action.toggled.connect(self._on_layer_toggle)

    def _add_transport(self, control: TimelineControl) -> None:
        bar = self.addToolBar("Timeline")
        bar.addAction("⏮", control.step_backward)
        bar.addAction("▶", control.play)
        bar.addAction("⏸", control.pause)
        bar.addAction("⏭", control.step_forward)
        self._date_label = QtWidgets.QLabel(control.format_date(control.current))
        bar.addWidget(self._date_label)

        refresh = QtCore.QTimer(self)
        refresh.setInterval(250)
        refresh.timeout.connect(
            lambda: self._date_label.setText(control.format_date(control.current))
        )
        refresh.start()

    def _fit_to_items(self) -> None:
        bbox = _union_bbox(self._items)
        if bbox is None:
            return
        self.surface.fit_bounds(bbox)
        if self._watcher is not None and not self._watcher.from_search:
            self._watcher.refresh()
            self._draw_markers()

    # ── Low-zoom markers ──────────────────────────────────────────────

    def _draw_markers(self) -> None:
        for marker in self._markers:
            self.surface.scene.removeItem(marker)
        self._markers = []
        if self._watcher is None:
            return
        pen = QtGui.QPen(QtGui.QColor("#0098d7"))
        pen.setCosmetic(True)
        brush = QtGui.QColor(0, 152, 215, 60)
        for marker in self._watcher.circle_markers():
            centre = lonlat_to_scene(*marker.position)
            r = marker.radius_m * SCENE_SCALE
            ellipse = QtWidgets.QGraphicsEllipseItem(
                centre.x() - r, centre.y() - r, 2 * r, 2 * r,
            )
            ellipse.setPen(pen)
            ellipse.setBrush(brush)
            ellipse.setZValue(5)
            ellipse.setToolTip(marker.item_id)
            self.surface.scene.addItem(ellipse)
            self._markers.append(ellipse)

    def _on_zoom_out(self, zoom: float) -> None:
        self._status.setText(f"Zoom {zoom:.1f}: zoom in to load plumes")
        self._draw_markers()

    # ── Callbacks ─────────────────────────────────────────────────────

    @QtCore.pyqtSlot(str)
    def _on_tile_ready(self, template: str) -> None:
        log.info("Mosaic tiles ready, re-synchronizing")
        if self._playback is not None:
            self._playback.rebuffer()
            return
        if self._watcher is None:
            return
        if self._watcher.from_search:
            self._sync.synchronize(self._items)
        else:
            self._watcher.refresh()

    def _on_item_click(self, item_id: str) -> None:
        visible = self._sync.toggle_visible(item_id)
        if visible is not None:
            self._status.setText(f"{item_id} {'shown' if visible else 'hidden'}")

    def _on_layer_toggle(self, hidden: bool) -> None:
        if hidden:
            self._sync.hide_all_rasters()
        else:
            self._sync.restore_rasters()

    def _on_item_hover(self, item_id: Optional[str]) -> None:
        self._status.setText(item_id or "")

    def closeEvent(self, ev):
        self._view_bindings.unbind_all(self.surface, None)
        if self._playback is not None:
            self._playback.teardown()
        if self._watcher is not None:
            self._watcher.detach()
        self._sync.teardown()
        super().closeEvent(ev)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Interactive map of STAC plume items with timeline playback.",
    )
    parser.add_argument(
        "--animate",
        action="store_true",
        help="Play the items back in time order instead of browsing.",
    )
    parser.add_argument(
        "--search-mode",
        action="store_true",
        help="Show every item; viewport changes do not reload resources.",
    )
    parser.add_argument(
        "--mosaic",
        action="store_true",
        help="Use one registered mosaic search for the collection's rasters.",
    )
    parser.add_argument("--collection", default=None, help="STAC collection id.")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
    )
    args = parser.parse_args(argv)

    config = load_config({"collection_id": args.collection})
    setup_logging(args.log_level, config.log_dir)

    ok, missing = validate_config(config)
    if not ok:
        log.error("Cannot start, set %s",
                  ", ".join("PLUMEMAP_" + name.upper() for name in missing))
        return 2

    items = fetch_geo_items(config)
    if not items:
        log.warning("No items fetched for %s", config.collection_id)

    app = QtWidgets.QApplication(sys.argv[:1])
    app.setStyle("Fusion")
    win = MainWindow(
        config,
        items,
        animate=args.animate,
        search_mode=args.search_mode,
        mosaic=args.mosaic,
    )
    win.show()
    return app.exec_()


if __name__ == "__main__":
    sys.exit(main())
