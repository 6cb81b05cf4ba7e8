"""
plumemap — interactive map of STAC plume items.

  geo/       item model, viewport filtering, low-zoom markers
  ingest/    STAC feed client and raster tile resolution
  storage/   TTL cache for tile descriptors
  gui/       map surface, resource synchronizer, playback engine
"""

__version__ = "0.3.0"
