"""
Raster tile URL resolution.

Two ways of getting an XYZ tile template for a raster resource:

1. **Per-item template** — the raster API can tile a single STAC item
   directly, so the URL is built from the item's own collection/id and
   rendering parameters.  No network round-trip, no cache.

2. **Dataset mosaic** — a whole collection is tiled through a registered
   search.  Resolution takes two requests:

       POST {endpoint}/searches/register   (filter: collection == dataset)
         → links[rel=tilejson].href
       GET  {href with WebMercatorQuad}?assets=…&colormap_name=…
         → tiles[0]

   Both responses are memoised in a TTLCache.  The cache read and the
   fetch-then-write are not atomic, so two overlapping resolutions of the
   same uncached dataset both hit the network.

Failures (network, missing tilejson link, malformed JSON) are logged and
surface as ``None``; the caller shows no raster for now and tries again
on its next synchronization pass.

Usage
-----
    resolver = TileResolver("https://raster.example.org", TTLCache(3600))
    template = resolver.resolve_tile_template("emit-ch4plume-v1", "ch4-plume-emissions")
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional, Tuple

import requests

from ..geo.items import GeoItem
from ..storage.ttl_cache import TTLCache
from . import get_json, post_json

log = logging.getLogger(__name__)

TILE_MATRIX_SET = "WebMercatorQuad"
TILEJSON_REL = "tilejson"
ITEM_NODATA = -9999

_RESOLVE_ERRORS = (
    requests.RequestException,
    ValueError,
    KeyError,
    TypeError,
    AttributeError,
)


def _find_link(payload: Any, rel: str) -> Optional[dict]:
    for link in payload.get("links") or []:
        if link.get("rel") == rel:
            return link
    return None


def _join_query(url: str, query: str) -> str:
    return f"{url}{'&' if '?' in url else '?'}{query}"


def item_tile_template(
    raster_api_url: str,
    item: GeoItem,
    tile_matrix: str = TILE_MATRIX_SET,
) -> str:
    """XYZ tile template that renders a single item's raster asset."""
    base = raster_api_url.rstrip("/")
    return (
        f"{base}/collections/{item.collection}/tiles/{tile_matrix}/{{z}}/{{x}}/{{y}}@1x"
        f"?item={item.item_id}"
        f"&assets={item.asset}"
        f"&bidx=1"
        f"&colormap_name={item.colormap}"
        f"&rescale={item.vmin}%2C{item.vmax}"
        f"&nodata={ITEM_NODATA}"
    )


class TileResolver:
    """Resolves (dataset, asset) pairs to tile URL templates, with a TTL cache."""

    def __init__(
        self,
        endpoint: str,
        cache: TTLCache,
        timeout: float = 20.0,
        colormap: str = "greens",
        rescale: Tuple[float, float] = (1, 45),
        nodata: float = 0,
        tile_scale: int = 2,
    ):
        self._endpoint = endpoint.rstrip("/")
        self._cache = cache
        self._timeout = timeout
        self._colormap = colormap
        self._rescale = rescale
        self._nodata = nodata
        self._tile_scale = tile_scale

    @property
    def cache(self) -> TTLCache:
        return self._cache

    @staticmethod
    def register_key(dataset_id: str) -> str:
        return f"register:{dataset_id}"

    @staticmethod
    def search_body(dataset_id: str) -> dict:
        return {
            "filter-lang": "cql2-json",
            "filter": {
                "op": "eq",
                "args": [{"property": "collection"}, dataset_id],
            },
        }

    def descriptor_url(self, tilejson_href: str, asset_key: str) -> str:
        """Fill the tiling scheme and append asset/colour/scale parameters."""
        url = tilejson_href.replace("{tileMatrixSetId}", TILE_MATRIX_SET)
        lo, hi = self._rescale
        return _join_query(
            url,
            f"assets={asset_key}"
            f"&colormap_name={self._colormap}"
            f"&rescale={lo}%2C{hi}"
            f"&nodata={self._nodata}"
            f"&tile_scale={self._tile_scale}",
        )

    def _register(self, dataset_id: str) -> Any:
        url = f"{self._endpoint}/searches/register"
        log.debug("Registering search for %s", dataset_id)
        return post_json(url, self.search_body(dataset_id), timeout=self._timeout)

    def resolve_tile_template(
        self, dataset_id: str, asset_key: str
    ) -> Optional[str]:
        """Return the first tile template for *dataset_id*/*asset_key*, or None."""
        try:
            registration = self._cache.get_or_fetch(
                self.register_key(dataset_id),
                lambda: self._register(dataset_id),
            )
            link = _find_link(registration, TILEJSON_REL)
            if link is None:
                log.warning("No %s link in search registration for %s",
                            TILEJSON_REL, dataset_id)
                return None

            url = self.descriptor_url(link["href"], asset_key)
            descriptor = self._cache.get_or_fetch(
                url, lambda: get_json(url, timeout=self._timeout),
            )
            tiles = descriptor.get("tiles") or []
            if not tiles:
                log.warning("TileJSON for %s/%s lists no tiles",
                            dataset_id, asset_key)
                return None
            return tiles[0]
        except _RESOLVE_ERRORS as exc:
            log.warning("Tile template resolution failed for %s/%s: %s",
                        dataset_id, asset_key, exc)
            return None


# ── Tile sources (item → template) ───────────────────────────────────

class ItemTileSource:
    """Tile source that builds the per-item template; always available."""

    def __init__(self, raster_api_url: str):
        self._api = raster_api_url

    def __call__(self, item: GeoItem) -> Optional[str]:
        if not self._api or not item.collection:
            log.debug("No raster API/collection for item %s", item.item_id)
            return None
        return item_tile_template(self._api, item)


class MosaicTileSource:
    """Tile source that serves one resolved dataset template to every item.

    Until the template is known, calls return None and a resolution is
    started (on a worker thread when *background*).  When it succeeds,
    ``on_ready(template)`` is invoked from the worker thread, so the
    owner can schedule a re-synchronization on its own event thread.
    A resolution that completes after the selection changed still
    populates the resolver cache; it is not cancelled.
    """

    def __init__(
        self,
        resolver: TileResolver,
        dataset_id: str,
        asset_key: str,
        on_ready: Optional[Callable[[str], None]] = None,
        background: bool = True,
    ):
        self._resolver = resolver
        self.dataset_id = dataset_id
        self.asset_key = asset_key
        self._on_ready = on_ready
        self._background = background
        self._template: Optional[str] = None
        self._pending = False

    @property
    def template(self) -> Optional[str]:
        return self._template

    @property
    def pending(self) -> bool:
        return self._pending

    def __call__(self, item: GeoItem) -> Optional[str]:
        if self._template is None and not self._pending:
            self.request()
        return self._template

    def request(self) -> None:
        """Start resolving the dataset template."""
        self._pending = True
        if self._background:
            threading.Thread(
                target=self._resolve,
                name=f"tile-resolve-{self.dataset_id}",
                daemon=True,
            ).start()
        else:
            self._resolve()

    def _resolve(self) -> None:
        template = None
        try:
            template = self._resolver.resolve_tile_template(
                self.dataset_id, self.asset_key,
            )
            if template is not None:
                self._template = template
        finally:
            self._pending = False
        if template is None:
            return
        log.info("Tile template ready for %s/%s", self.dataset_id, self.asset_key)
        if self._on_ready is not None:
            self._on_ready(template)
