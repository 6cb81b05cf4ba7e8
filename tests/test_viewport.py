from __future__ import annotations

import pytest
from shapely.geometry import Polygon

from conftest import make_item
from plumemap.geo.items import GeoItem, Viewport, parse_timestamp
from plumemap.geo.viewport import (
    bbox_area,
    filter_by_bbox_area,
    filter_items,
    is_within_bounds,
)


class _Surface:
    def get_viewport_bounds(self):
        return (-10.0, -5.0, 10.0, 5.0)

    def get_zoom(self):
        return 6.5


def test_filter_keeps_exactly_intersecting_items_in_order() -> None:
    vp = Viewport(0.0, 0.0, 10.0, 10.0)
    items = [
        make_item("inside", 2, 2),
        make_item("outside", 20, 20),
        make_item("straddling", 9.5, 9.5),
        make_item("touching", 10, 3),
    ]
    visible = filter_items(items, vp)
    # shapely intersects() counts a shared edge as an intersection
    assert [it.item_id for it in visible] == ["inside", "straddling", "touching"]


def test_items_without_polygon_never_intersect() -> None:
    vp = Viewport(-180, -90, 180, 90)
    no_geom = GeoItem(item_id="bare", bbox=(0, 0, 1, 1))
    assert not is_within_bounds(no_geom, vp)
    assert filter_items([no_geom], vp) == []


def test_non_rectangular_polygon_outside_corner() -> None:
    tri = Polygon([(11, 0), (20, 0), (20, 9)])
    item = GeoItem(item_id="tri", bbox=tri.bounds, polygon=tri)
    assert not is_within_bounds(item, Viewport(0, 0, 10, 10))


def test_viewport_from_surface() -> None:
    vp = Viewport.from_surface(_Surface())
    assert vp.bounds == (-10.0, -5.0, 10.0, 5.0)
    assert vp.zoom == 6.5


@pytest.mark.parametrize(
    "bbox, expected",
    [
        ((0, 0, 2, 3), 6.0),
        ((2, 3, 0, 0), 6.0),
        ((0, 0, 0, 0), 0.0),
        ((0, 0, 1), 0.0),
        ((), 0.0),
    ],
)
def test_bbox_area(bbox, expected) -> None:
    assert bbox_area(bbox) == pytest.approx(expected)


def test_degenerate_bbox_excluded_by_positive_area_threshold() -> None:
    flat = GeoItem(item_id="flat", bbox=(0, 0, 0, 0))
    real = make_item("real", size=0.5)
    assert filter_by_bbox_area([flat, real], 0.0, op="gt") == [real]
    assert filter_by_bbox_area([flat, real], 0.1, op="lt") == [flat]


def test_filter_by_bbox_area_rejects_unknown_op() -> None:
    with pytest.raises(ValueError):
        filter_by_bbox_area([], 1.0, op="eq")


def test_filter_by_bbox_area_none_input() -> None:
    assert filter_by_bbox_area(None, 1.0) == []


def test_parse_timestamp_normalises_to_utc() -> None:
    dt = parse_timestamp("2023-06-12T14:30:22Z")
    assert dt.isoformat() == "2023-06-12T14:30:22+00:00"
    shifted = parse_timestamp("2023-06-12T16:30:22+02:00")
    assert shifted == dt
    assert parse_timestamp("2023-06-12T14:30:22").tzinfo is not None
    assert parse_timestamp("not a date") is None
    assert parse_timestamp(None) is None


def test_geo_item_is_immutable_and_hashable() -> None:
    item = make_item("a", properties={"k": 1})
    with pytest.raises(AttributeError):
        item.item_id = "b"  # type: ignore[misc]
    with pytest.raises(TypeError):
        item.properties["k"] = 2  # type: ignore[index]
    assert item == make_item("a", properties={"other": 2})
    assert isinstance(hash(item), int)


def test_as_feature_geometry() -> None:
    feat = make_item("a").as_feature()
    assert feat["id"] == "a"
    assert feat["geometry"]["type"] == "Polygon"
    assert GeoItem(item_id="b").as_feature()["geometry"] is None
