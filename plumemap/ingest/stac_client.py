"""
STAC catalogue client.

Fetches the items of a STAC collection and converts them into GeoItem
records for the map.  The item search endpoint does not accept an
offset, so when the first page reports more matches than it returned,
the whole result set is re-requested with ``limit=<matched>``.

Usage
-----
    from plumemap.ingest.stac_client import fetch_geo_items
    items = fetch_geo_items(config)
    for it in items:
        print(it.item_id, it.timestamp, it.bbox)
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from shapely.geometry import shape

from ..geo.items import GeoItem, parse_timestamp
from . import fetch_with_retry

log = logging.getLogger(__name__)


def result_array(payload: Any) -> List[dict]:
    """Extract the item or collection list from a STAC response."""
    if not isinstance(payload, dict):
        return []
    if "features" in payload:
        return list(payload["features"] or [])
    if "collections" in payload:
        return list(payload["collections"] or [])
    return []


def with_limit(url: str, limit: int) -> str:
    """Append a ``limit`` query parameter to *url*."""
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}limit={limit}"


def fetch_all_items(stac_api_url: str, timeout: float = 20.0) -> List[dict]:
    """Fetch every raw feature behind *stac_api_url*.

    Do not include ``limit``/offset in the URL; pagination is handled
    here from the response ``context``.
    """
    try:
        payload = fetch_with_retry(stac_api_url, timeout=timeout).json()
    except Exception as exc:
        log.warning("STAC fetch failed for %s: %s", stac_api_url[:80], exc)
        return []

    if not isinstance(payload, dict):
        log.warning("STAC: unexpected payload from %s", stac_api_url[:80])
        return []

    context = payload.get("context") or {}
    matched = context.get("matched")
    returned = context.get("returned")
    if matched is not None and returned is not None and matched > returned:
        log.info("STAC: %d matched, %d returned, refetching with limit",
                 matched, returned)
        try:
            payload = fetch_with_retry(
                with_limit(stac_api_url, matched), timeout=timeout,
            ).json()
        except Exception as exc:
            log.warning("STAC full fetch failed for %s: %s",
                        stac_api_url[:80], exc)
            return []

    features = result_array(payload)
    log.info("STAC: %d features from %s", len(features), stac_api_url[:80])
    return features


def _point_of(feature: dict, polygon) -> Optional[tuple]:
    props = feature.get("properties") or {}
    lon = props.get("Longitude of max concentration")
    lat = props.get("Latitude of max concentration")
    if lon is not None and lat is not None:
        return (float(lon), float(lat))
    if polygon is not None and not polygon.is_empty:
        c = polygon.centroid
        return (c.x, c.y)
    return None


def parse_item(
    feature: dict, defaults: Optional[Dict[str, Any]] = None
) -> Optional[GeoItem]:
    """Parse one STAC item feature into a GeoItem.

    *defaults* supplies rendering parameters (``asset``, ``colormap``,
    ``vmin``, ``vmax``) not carried by the item itself.  Returns None for
    features without an id.
    """
    defaults = defaults or {}
    try:
        item_id = feature.get("id")
        if not item_id:
            return None

        polygon = None
        geom = feature.get("polygonGeometry") or feature.get("geometry")
        if geom:
            try:
                polygon = shape(geom)
            except (ValueError, TypeError, AttributeError, KeyError) as exc:
                log.debug("Bad geometry on %s: %s", item_id, exc)

        props = feature.get("properties") or {}
        bbox = tuple(float(v) for v in (feature.get("bbox") or ()))
        weight = props.get("weight", defaults.get("weight", 1.0))

        return GeoItem(
            item_id=str(item_id),
            bbox=bbox,
            polygon=polygon,
            point=_point_of(feature, polygon),
            timestamp=parse_timestamp(props.get("datetime")),
            collection=feature.get("collection") or defaults.get("collection", ""),
            asset=defaults.get("asset", ""),
            colormap=defaults.get("colormap", "plasma"),
            vmin=float(defaults.get("vmin", 0.0)),
            vmax=float(defaults.get("vmax", 1.0)),
            weight=float(weight or 1.0),
            properties=props,
        )
    except (TypeError, ValueError, AttributeError) as exc:
        log.debug("Failed to parse STAC feature: %s", exc)
        return None


def fetch_geo_items(config) -> List[GeoItem]:
    """Fetch and parse the configured collection, sorted by timestamp."""
    url = (
        f"{config.stac_api_url.rstrip('/')}/collections/"
        f"{config.collection_id}/items"
    )
    defaults = {
        "collection": config.collection_id,
        "asset": config.asset,
        "colormap": config.colormap,
        "vmin": config.vmin,
        "vmax": config.vmax,
    }
    features = fetch_all_items(url)
    items: List[GeoItem] = []
    for feat in features:
        it = parse_item(feat, defaults)
        if it is not None:
            items.append(it)

    items.sort(key=lambda it: (it.timestamp is None, it.timestamp or 0))
    log.info("Parsed %d/%d items for %s",
             len(items), len(features), config.collection_id)
    return items
