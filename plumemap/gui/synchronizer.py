"""
Resource lifecycle synchronizer — keeps map resources in step with a
desired set of items.

Every live item is backed by up to three surface resources:

    raster-<id>    tile-backed raster (hidden until shown)
    polygon-<id>   outline of the item polygon
    fill-<id>      invisible fill, only used for hit-testing

The interaction (fill) resource carries exactly one click handler and
one mouseenter/mouseleave pair.  Handlers are kept in an EventRegistry
so they can be unbound before the resources are destroyed.

synchronize(items)
──────────────────
  live    = ids materialized by this synchronizer
  desired = ids of *items*
  add     = desired − live  → create resources, bind handlers
  remove  = live − desired  → unbind handlers, destroy resources
  others  → untouched (a second pass with the same set is a no-op)

The whole diff runs synchronously inside one call.  If the surface is
not ready yet the call does nothing; the next trigger retries it.
"""
from __future__ import annotations

import functools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from ..geo.items import GeoItem
from .surface import CLICK, MOUSE_ENTER, MOUSE_LEAVE, Handler, MapSurface

log = logging.getLogger(__name__)

TileSource = Callable[[GeoItem], Optional[str]]


# ── Resource kinds ───────────────────────────────────────────────────

class ResourceKind(Enum):
    RASTER = "raster"
    OUTLINE = "polygon"
    INTERACTION = "fill"

    def resource_id(self, item_id: str) -> str:
        return f"{self.value}-{item_id}"


ALL_KINDS = (ResourceKind.RASTER, ResourceKind.OUTLINE, ResourceKind.INTERACTION)


def resource_id(kind: ResourceKind, item_id: str) -> str:
    return kind.resource_id(item_id)


@dataclass
class LayerStyle:
    """Paint parameters shared by every item's resources."""
    line_color: str = "#0098d7"
    line_width: float = 2.0
    highlight_width: float = 5.0
    tile_size: int = 256


def _raster_descriptor(item: GeoItem, style: LayerStyle, tile_url: Optional[str],
                       visible: bool) -> dict:
    return {
        "type": "raster",
        "tiles": [tile_url],
        "tileSize": style.tile_size,
        "bounds": list(item.bbox),
        "layout": {"visibility": "visible" if visible else "none"},
        "paint": {},
    }


def _outline_descriptor(item: GeoItem, style: LayerStyle, tile_url: Optional[str],
                        visible: bool) -> dict:
    return {
        "type": "line",
        "data": item.as_feature(),
        "layout": {},
        "paint": {"line-color": style.line_color, "line-width": style.line_width},
    }


def _interaction_descriptor(item: GeoItem, style: LayerStyle, tile_url: Optional[str],
                            visible: bool) -> dict:
    return {
        "type": "fill",
        "data": item.as_feature(),
        "layout": {},
        "paint": {"fill-opacity": 0},
    }


_DESCRIPTORS = {
    ResourceKind.RASTER: _raster_descriptor,
    ResourceKind.OUTLINE: _outline_descriptor,
    ResourceKind.INTERACTION: _interaction_descriptor,
}


def build_descriptor(kind: ResourceKind, item: GeoItem, style: LayerStyle,
                     tile_url: Optional[str] = None, visible: bool = True) -> dict:
    return _DESCRIPTORS[kind](item, style, tile_url, visible)


# ── Event bindings ───────────────────────────────────────────────────

@dataclass(frozen=True)
class BindingHandle:
    """Proof of one registration; pass it back to unbind."""
    resource_id: Optional[str]
    event: str
    handler: Handler


class EventRegistry:
    """Resource id → event → handle.  None keys surface-wide events."""

    def __init__(self) -> None:
        self._handles: Dict[Optional[str], Dict[str, BindingHandle]] = {}

    def bind(self, surface: MapSurface, resource_id: Optional[str], event: str,
             handler: Handler) -> BindingHandle:
        existing = self._handles.get(resource_id, {}).get(event)
        if existing is not None:
            self.unbind(surface, existing)
        surface.on(event, resource_id, handler)
        handle = BindingHandle(resource_id, event, handler)
        self._handles.setdefault(resource_id, {})[event] = handle
        return handle

    def unbind(self, surface: MapSurface, handle: BindingHandle) -> None:
        events = self._handles.get(handle.resource_id)
        if not events or events.get(handle.event) is not handle:
            return
        surface.off(handle.event, handle.resource_id, handle.handler)
        del events[handle.event]
        if not events:
            del self._handles[handle.resource_id]

    def unbind_all(self, surface: MapSurface, resource_id: Optional[str]) -> int:
        """Unbind every handler on *resource_id* (None for surface-wide
        events).  Returns how many."""
        handles = list(self._handles.get(resource_id, {}).values())
        for h in handles:
            self.unbind(surface, h)
        return len(handles)

    def handles(self, resource_id: Optional[str]) -> List[BindingHandle]:
        return list(self._handles.get(resource_id, {}).values())

    def __contains__(self, resource_id: Optional[str]) -> bool:
        return resource_id in self._handles

    def __len__(self) -> int:
        return sum(len(v) for v in self._handles.values())


# ── Synchronizer ─────────────────────────────────────────────────────

@dataclass
class SyncResult:
    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


class ResourceSynchronizer:
    """Creates and destroys map resources so that live ids == desired ids.

    Parameters
    ----------
    surface : MapSurface
        Target map surface.
    tile_source : callable
        ``item -> tile URL template`` (or None while unavailable).  Only
        consulted when RASTER is among *kinds*.
    style : LayerStyle, optional
    kinds : sequence of ResourceKind
        Which resources to create per item (default: all three).
        Bindings are only registered when INTERACTION is included.
    on_click, on_hover : callable, optional
        ``on_click(item_id)``; ``on_hover(item_id)`` on enter and
        ``on_hover(None)`` on leave.
    """

    def __init__(
        self,
        surface: MapSurface,
        tile_source: Optional[TileSource] = None,
        style: Optional[LayerStyle] = None,
        kinds: Sequence[ResourceKind] = ALL_KINDS,
        registry: Optional[EventRegistry] = None,
        on_click: Optional[Callable[[str], None]] = None,
        on_hover: Optional[Callable[[Optional[str]], None]] = None,
    ):
        self._surface = surface
        self._tile_source = tile_source
        self._style = style or LayerStyle()
        self._kinds = tuple(kinds)
        self._registry = registry if registry is not None else EventRegistry()
        self._on_click = on_click
        self._on_hover = on_hover
        self._live: Dict[str, GeoItem] = {}
        self._saved_visibility: Optional[Dict[str, bool]] = None

    @property
    def surface(self) -> MapSurface:
        return self._surface

    @property
    def registry(self) -> EventRegistry:
        return self._registry

    @property
    def kinds(self):
        return self._kinds

    @property
    def live_ids(self) -> frozenset:
        return frozenset(self._live)

    def is_live(self, item_id: str) -> bool:
        return item_id in self._live

    # ── Diff ──────────────────────────────────────────────────────────

    def synchronize(
        self, items: Union[Mapping[str, GeoItem], Iterable[GeoItem]]
    ) -> SyncResult:
        """Reconcile live resources with the desired *items*."""
        result = SyncResult()
        if not self._surface.is_ready():
            log.debug("synchronize: surface not ready, skipping")
            return result

        desired = self._as_mapping(items)
        live = set(self._live)
        to_add = [desired[i] for i in desired if i not in live]
        to_remove = [i for i in live if i not in desired]

        for item_id in to_remove:
            if self.release(item_id):
                result.removed.append(item_id)
        for item in to_add:
            if self.materialize(item):
                result.added.append(item.item_id)

        if result.changed:
            log.info("synchronize: +%d −%d (live %d)",
                     len(result.added), len(result.removed), len(self._live))
        return result

    @staticmethod
    def _as_mapping(items) -> Dict[str, GeoItem]:
        if isinstance(items, Mapping):
            return dict(items)
        return {it.item_id: it for it in items}

    # ── Add path ──────────────────────────────────────────────────────

    def materialize(self, item: GeoItem, visible: bool = True) -> bool:
        """Create every resource (and binding) for *item*.

        Returns False when nothing was created: the surface is not
        ready, or no raster template is available yet (the item stays
        non-live and is retried on the next pass).
        """
        if item.item_id in self._live:
            return False
        if not self._surface.is_ready():
            return False

        tile_url = None
        if ResourceKind.RASTER in self._kinds:
            tile_url = self._tile_source(item) if self._tile_source else None
            if not tile_url:
                log.debug("No tile template for %s yet", item.item_id)
                return False

        for kind in self._kinds:
            rid = kind.resource_id(item.item_id)
            if self._surface.resource_exists(rid):
                log.debug("Resource %s already exists, skipping", rid)
                continue
            self._surface.add_resource(
                rid, build_descriptor(kind, item, self._style, tile_url, visible),
            )

        if ResourceKind.INTERACTION in self._kinds:
            self._bind(item.item_id)

        self._live[item.item_id] = item
        return True

    def _bind(self, item_id: str) -> None:
        rid = ResourceKind.INTERACTION.resource_id(item_id)
        self._registry.bind(self._surface, rid, CLICK,
                            functools.partial(self._handle_click, item_id))
        self._registry.bind(self._surface, rid, MOUSE_ENTER,
                            functools.partial(self._handle_enter, item_id))
        self._registry.bind(self._surface, rid, MOUSE_LEAVE,
                            functools.partial(self._handle_leave, item_id))

    # ── Remove path ───────────────────────────────────────────────────

    def release(self, item_id: str) -> bool:
        """Unbind handlers, then destroy every resource of *item_id*."""
        if item_id not in self._live:
            return False
        self._registry.unbind_all(
            self._surface, ResourceKind.INTERACTION.resource_id(item_id),
        )
        for kind in self._kinds:
            rid = kind.resource_id(item_id)
            if self._surface.resource_exists(rid):
                self._surface.remove_resource(rid)
            else:
                log.debug("Resource %s already gone", rid)
        del self._live[item_id]
        return True

    def teardown(self) -> int:
        """Release every live item.  Returns how many were released."""
        ids = list(self._live)
        for item_id in ids:
            self.release(item_id)
        return len(ids)

    # ── In-place updates ──────────────────────────────────────────────

    def set_visible(self, item_id: str, visible: bool) -> bool:
        """Toggle the raster resource of *item_id*.  False if it is absent."""
        rid = ResourceKind.RASTER.resource_id(item_id)
        if not self._surface.resource_exists(rid):
            return False
        self._surface.set_visibility(rid, visible)
        return True

    def toggle_visible(self, item_id: str) -> Optional[bool]:
        """Flip the raster of *item_id*.  Returns the new state, None if absent."""
        rid = ResourceKind.RASTER.resource_id(item_id)
        if not self._surface.resource_exists(rid):
            return None
        visible = not self._surface.is_visible(rid)
        self._surface.set_visibility(rid, visible)
        return visible

    @property
    def rasters_hidden(self) -> bool:
        return self._saved_visibility is not None

    def hide_all_rasters(self) -> int:
        """Hide every live raster, remembering each one's visibility.

        A second call while already hidden does nothing.  Returns the
        number of rasters hidden.
        """
        if self._saved_visibility is not None:
            return 0
        saved: Dict[str, bool] = {}
        for item_id in self._live:
            rid = ResourceKind.RASTER.resource_id(item_id)
            if not self._surface.resource_exists(rid):
                continue
            saved[item_id] = self._surface.is_visible(rid)
            self._surface.set_visibility(rid, False)
        self._saved_visibility = saved
        log.info("Rasters hidden (%d)", len(saved))
        return len(saved)

    def restore_rasters(self) -> int:
        """Restore the visibility saved by hide_all_rasters.

        Items released in between are skipped.  Returns how many
        rasters were restored.
        """
        saved, self._saved_visibility = self._saved_visibility, None
        if not saved:
            return 0
        restored = 0
        for item_id, visible in saved.items():
            rid = ResourceKind.RASTER.resource_id(item_id)
            if item_id in self._live and self._surface.resource_exists(rid):
                self._surface.set_visibility(rid, visible)
                restored += 1
        return restored

    def set_highlight(self, item_id: str, highlighted: bool) -> bool:
        rid = ResourceKind.OUTLINE.resource_id(item_id)
        if not self._surface.resource_exists(rid):
            return False
        width = self._style.highlight_width if highlighted else self._style.line_width
        self._surface.set_paint_property(rid, "line-width", width)
        return True

    # ── Handlers ──────────────────────────────────────────────────────

    def _handle_click(self, item_id: str, event=None) -> None:
        if self._on_click is not None:
            self._on_click(item_id)

    def _handle_enter(self, item_id: str, event=None) -> None:
        self.set_highlight(item_id, True)
        if self._on_hover is not None:
            self._on_hover(item_id)

    def _handle_leave(self, item_id: str, event=None) -> None:
        self.set_highlight(item_id, False)
        if self._on_hover is not None:
            self._on_hover(None)
