from __future__ import annotations

from typing import List

import pytest
import requests

from conftest import make_item
from plumemap.ingest import tile_resolver
from plumemap.ingest.tile_resolver import (
    ItemTileSource,
    MosaicTileSource,
    TileResolver,
    item_tile_template,
)
from plumemap.storage.ttl_cache import TTLCache

RASTER = "https://raster.test/api/raster"
TILEJSON_HREF = (
    "https://raster.test/api/raster/searches/abc123/"
    "{tileMatrixSetId}/tilejson.json"
)
TEMPLATE = "https://raster.test/api/raster/searches/abc123/tiles/WebMercatorQuad/{z}/{x}/{y}"


def _registration() -> dict:
    return {
        "id": "abc123",
        "links": [
            {"rel": "metadata", "href": "https://raster.test/meta"},
            {"rel": "tilejson", "href": TILEJSON_HREF},
        ],
    }


@pytest.fixture
def calls(monkeypatch):
    recorded = {"post": [], "get": []}

    def fake_post(url, body, *, timeout):
        recorded["post"].append((url, body))
        return _registration()

    def fake_get(url, *, timeout):
        recorded["get"].append(url)
        return {"tilejson": "2.2.0", "tiles": [TEMPLATE, TEMPLATE + "?alt"]}

    monkeypatch.setattr(tile_resolver, "post_json", fake_post)
    monkeypatch.setattr(tile_resolver, "get_json", fake_get)
    return recorded


def test_resolve_registers_search_then_reads_tilejson(calls) -> None:
    resolver = TileResolver(RASTER + "/", TTLCache(3600))
    template = resolver.resolve_tile_template("ds1", "assetA")

    assert template == TEMPLATE
    (url, body), = calls["post"]
    assert url == f"{RASTER}/searches/register"
    assert body["filter-lang"] == "cql2-json"
    assert body["filter"] == {"op": "eq", "args": [{"property": "collection"}, "ds1"]}

    (get_url,) = calls["get"]
    assert "{tileMatrixSetId}" not in get_url
    assert "/WebMercatorQuad/tilejson.json?" in get_url
    assert "assets=assetA" in get_url
    assert "colormap_name=greens" in get_url
    assert "rescale=1%2C45" in get_url
    assert "nodata=0" in get_url
    assert get_url.endswith("tile_scale=2")


def test_second_resolution_is_served_from_cache(calls) -> None:
    cache = TTLCache(3600)
    resolver = TileResolver(RASTER, cache)
    first = resolver.resolve_tile_template("ds1", "assetA")
    second = resolver.resolve_tile_template("ds1", "assetA")

    assert first == second == TEMPLATE
    assert len(calls["post"]) == 1
    assert len(calls["get"]) == 1
    assert TileResolver.register_key("ds1") in cache


def test_other_asset_reuses_registration(calls) -> None:
    resolver = TileResolver(RASTER, TTLCache(3600))
    resolver.resolve_tile_template("ds1", "assetA")
    resolver.resolve_tile_template("ds1", "assetB")
    assert len(calls["post"]) == 1
    assert len(calls["get"]) == 2


def test_overlapping_resolutions_both_register(monkeypatch) -> None:
    """Two resolutions started before the first response both miss the cache."""
    resolver = TileResolver(RASTER, TTLCache(3600))
    posts: List[str] = []
    inner: List[str] = []

    def fake_post(url, body, *, timeout):
        posts.append(url)
        if len(posts) == 1:
            # second caller arrives while the first request is in flight
            inner.append(resolver.resolve_tile_template("ds1", "assetA"))
        return _registration()

    monkeypatch.setattr(tile_resolver, "post_json", fake_post)
    monkeypatch.setattr(
        tile_resolver, "get_json",
        lambda url, *, timeout: {"tiles": [TEMPLATE]},
    )

    outer = resolver.resolve_tile_template("ds1", "assetA")

    assert len(posts) == 2
    assert inner == [TEMPLATE]
    assert outer == TEMPLATE


def test_missing_tilejson_link_returns_none(monkeypatch) -> None:
    monkeypatch.setattr(
        tile_resolver, "post_json",
        lambda url, body, *, timeout: {"links": [{"rel": "self", "href": "x"}]},
    )
    get_calls = []
    monkeypatch.setattr(
        tile_resolver, "get_json",
        lambda url, *, timeout: get_calls.append(url),
    )
    resolver = TileResolver(RASTER, TTLCache(3600))
    assert resolver.resolve_tile_template("ds1", "assetA") is None
    assert get_calls == []


def test_network_failure_returns_none_and_caches_nothing(monkeypatch) -> None:
    def fail(url, body, *, timeout):
        raise requests.ConnectionError("unreachable")

    monkeypatch.setattr(tile_resolver, "post_json", fail)
    cache = TTLCache(3600)
    resolver = TileResolver(RASTER, cache)
    assert resolver.resolve_tile_template("ds1", "assetA") is None
    assert len(cache) == 0


def test_empty_tiles_list_returns_none(monkeypatch) -> None:
    monkeypatch.setattr(tile_resolver, "post_json",
                        lambda url, body, *, timeout: _registration())
    monkeypatch.setattr(tile_resolver, "get_json",
                        lambda url, *, timeout: {"tiles": []})
    resolver = TileResolver(RASTER, TTLCache(3600))
    assert resolver.resolve_tile_template("ds1", "assetA") is None


def test_item_tile_template() -> None:
    item = make_item("EMIT_001", colormap="plasma", vmin=0.0, vmax=1500.0)
    url = item_tile_template(RASTER + "/", item)
    assert url.startswith(
        f"{RASTER}/collections/emit-ch4plume-v1/tiles/WebMercatorQuad/{{z}}/{{x}}/{{y}}@1x?"
    )
    assert "item=EMIT_001" in url
    assert "assets=ch4-plume-emissions" in url
    assert "bidx=1" in url
    assert "colormap_name=plasma" in url
    assert "rescale=0.0%2C1500.0" in url
    assert url.endswith("nodata=-9999")


def test_item_tile_source_requires_api_and_collection() -> None:
    assert ItemTileSource("")(make_item("a")) is None
    assert ItemTileSource(RASTER)(make_item("a", collection="")) is None
    assert ItemTileSource(RASTER)(make_item("a")).startswith(RASTER)


def test_mosaic_source_resolves_once_and_notifies(calls) -> None:
    ready = []
    source = MosaicTileSource(
        TileResolver(RASTER, TTLCache(3600)), "ds1", "assetA",
        on_ready=ready.append, background=False,
    )
    assert source(make_item("a")) == TEMPLATE
    assert source(make_item("b")) == TEMPLATE
    assert ready == [TEMPLATE]
    assert len(calls["post"]) == 1
    assert not source.pending


def test_mosaic_source_failure_retries_on_next_call(monkeypatch) -> None:
    attempts = []

    def flaky(url, body, *, timeout):
        attempts.append(url)
        if len(attempts) == 1:
            raise requests.Timeout("slow")
        return _registration()

    monkeypatch.setattr(tile_resolver, "post_json", flaky)
    monkeypatch.setattr(tile_resolver, "get_json",
                        lambda url, *, timeout: {"tiles": [TEMPLATE]})
    source = MosaicTileSource(
        TileResolver(RASTER, TTLCache(3600)), "ds1", "assetA", background=False,
    )
    assert source(make_item("a")) is None
    assert source(make_item("a")) == TEMPLATE
    assert len(attempts) == 2


def test_mosaic_source_template_set_before_pending_clears(calls) -> None:
    seen = []
    source = MosaicTileSource(
        TileResolver(RASTER, TTLCache(3600)), "ds1", "assetA",
        on_ready=lambda t: seen.append((source.template, source.pending)),
        background=False,
    )
    source.request()
    assert seen == [(TEMPLATE, False)]
    assert source(make_item("a")) == TEMPLATE
    assert len(calls["post"]) == 1
