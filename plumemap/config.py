"""
Runtime configuration for the plume map.

Values come from ``PLUMEMAP_*`` environment variables, then explicit
overrides (e.g. parsed CLI flags).  Example::

    PLUMEMAP_STAC_API_URL=https://earth.gov/ghgcenter/api/stac
    PLUMEMAP_RASTER_API_URL=https://earth.gov/ghgcenter/api/raster
    PLUMEMAP_COLLECTION_ID=emit-ch4plume-v1
    PLUMEMAP_ZOOM_MARGIN=4
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Mapping, Optional, Tuple

log = logging.getLogger(__name__)

ENV_PREFIX = "PLUMEMAP_"
REQUIRED_FIELDS = ("stac_api_url", "raster_api_url", "collection_id")


@dataclass
class MapConfig:
    stac_api_url: str = ""
    raster_api_url: str = ""
    collection_id: str = ""
    asset: str = "ch4-plume-emissions"
    colormap: str = "plasma"
    vmin: float = 0.0
    vmax: float = 1500.0
    cache_ttl_s: float = 3600.0
    zoom_margin: float = 4.0
    lookahead: int = 4
    crossfade_ms: int = 900
    log_dir: str = "logs"


_DEFAULTS = MapConfig()


def _coerce(name: str, raw: str) -> Any:
    default = getattr(_DEFAULTS, name)
    if isinstance(default, str):
        return raw
    try:
        return type(default)(raw)
    except ValueError:
        log.warning("Config: bad value %r for %s, using default %r",
                    raw, name, default)
        return default


def load_config(overrides: Optional[Mapping[str, Any]] = None) -> MapConfig:
    """Build a MapConfig from the environment plus *overrides*.

    ``None`` overrides are ignored so unset CLI options fall through.
    """
    values: Dict[str, Any] = {}
    for f in fields(MapConfig):
        raw = os.environ.get(ENV_PREFIX + f.name.upper())
        if raw is not None and raw != "":
            values[f.name] = _coerce(f.name, raw)

    known = {f.name for f in fields(MapConfig)}
    for key, value in (overrides or {}).items():
        if value is None:
            continue
        if key not in known:
            log.debug("Config: ignoring unknown override %s", key)
            continue
        values[key] = value

    return MapConfig(**values)


def validate_config(config: MapConfig) -> Tuple[bool, List[str]]:
    """Return (ok, missing_required_fields)."""
    missing = [name for name in REQUIRED_FIELDS if not getattr(config, name, None)]
    if missing:
        log.warning("Config: missing required fields: %s", ", ".join(missing))
    return (not missing, missing)
