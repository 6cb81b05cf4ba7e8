"""Shared fakes and fixtures for the plumemap test suite."""
from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from shapely.geometry import box

from plumemap.geo.items import GeoItem
from plumemap.gui.surface import MapSurface

T0 = datetime(2023, 6, 1, 12, 0, tzinfo=timezone.utc)


class FakeSurface(MapSurface):
    """In-memory MapSurface that records every call."""

    def __init__(self, ready: bool = True, bounds=(-180.0, -85.0, 180.0, 85.0),
                 zoom: float = 8.0):
        self.ready = ready
        self.bounds = bounds
        self.zoom = zoom
        self.resources: Dict[str, dict] = {}
        self.visibility: Dict[str, bool] = {}
        self.paint: Dict[Tuple[str, str], Any] = {}
        self.handlers: Dict[Tuple[str, Optional[str]], List[Callable]] = {}
        self.controls: List[Any] = []
        self.calls: List[Tuple[str, str]] = []

    def is_ready(self) -> bool:
        return self.ready

    def add_resource(self, resource_id: str, descriptor: dict) -> None:
        assert resource_id not in self.resources, f"duplicate {resource_id}"
        self.resources[resource_id] = descriptor
        visible = (descriptor.get("layout") or {}).get("visibility", "visible")
        self.visibility[resource_id] = visible != "none"
        self.calls.append(("add", resource_id))

    def remove_resource(self, resource_id: str) -> None:
        assert resource_id in self.resources, f"missing {resource_id}"
        del self.resources[resource_id]
        self.visibility.pop(resource_id, None)
        self.calls.append(("remove", resource_id))

    def resource_exists(self, resource_id: str) -> bool:
        return resource_id in self.resources

    def set_visibility(self, resource_id: str, visible: bool) -> None:
        self.visibility[resource_id] = visible
        self.calls.append(("show" if visible else "hide", resource_id))

    def is_visible(self, resource_id: str) -> bool:
        return self.visibility.get(resource_id, False)

    def set_paint_property(self, resource_id: str, prop: str, value: Any) -> None:
        self.paint[(resource_id, prop)] = value

    def on(self, event, resource_id, handler) -> None:
        self.handlers.setdefault((event, resource_id), []).append(handler)

    def off(self, event, resource_id, handler) -> None:
        self.handlers[(event, resource_id)].remove(handler)
        if not self.handlers[(event, resource_id)]:
            del self.handlers[(event, resource_id)]

    def get_viewport_bounds(self):
        return self.bounds

    def get_zoom(self) -> float:
        return self.zoom

    def query_resources_at(self, point):
        return []

    def add_control(self, control) -> None:
        self.controls.append(control)

    def remove_control(self, control) -> None:
        self.controls.remove(control)

    # helpers
    def fire(self, event: str, resource_id: Optional[str] = None, payload=None) -> None:
        for handler in list(self.handlers.get((event, resource_id), [])):
            handler(payload)

    def handler_count(self, resource_id: Optional[str]) -> int:
        return sum(len(v) for (_, rid), v in self.handlers.items() if rid == resource_id)


class FakeAction:
    def __init__(self, due: int, callback: Callable[[], None]):
        self.due = due
        self.callback = callback
        self.fired = False
        self.cancelled = False

    @property
    def active(self) -> bool:
        return not (self.fired or self.cancelled)

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Manual clock implementing the ``call_later`` contract."""

    def __init__(self) -> None:
        self.now = 0
        self.actions: List[FakeAction] = []

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> FakeAction:
        action = FakeAction(self.now + int(delay_ms), callback)
        self.actions.append(action)
        return action

    @property
    def pending(self) -> List[FakeAction]:
        return [a for a in self.actions if a.active]

    def advance(self, ms: int) -> None:
        target = self.now + ms
        while True:
            due = sorted((a for a in self.actions if a.active and a.due <= target),
                         key=lambda a: a.due)
            if not due:
                break
            action = due[0]
            self.now = action.due
            action.fired = True
            action.callback()
        self.now = target


def make_item(item_id: str, west: float = 0.0, south: float = 0.0,
              size: float = 1.0, hours: Optional[int] = None, **kwargs) -> GeoItem:
    bbox = (west, south, west + size, south + size)
    polygon = box(*bbox) if size > 0 else None
    return GeoItem(
        item_id=item_id,
        bbox=bbox,
        polygon=polygon,
        point=kwargs.pop("point", (west + size / 2, south + size / 2)),
        timestamp=T0 + timedelta(hours=hours) if hours is not None else None,
        collection=kwargs.pop("collection", "emit-ch4plume-v1"),
        asset=kwargs.pop("asset", "ch4-plume-emissions"),
        **kwargs,
    )


@pytest.fixture
def surface() -> FakeSurface:
    return FakeSurface()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def tile_source() -> Callable[[GeoItem], str]:
    return lambda item: f"https://tiles.test/{item.item_id}/{{z}}/{{x}}/{{y}}"


@pytest.fixture(scope="session")
def qapp():
    os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")
    widgets = pytest.importorskip("PyQt5.QtWidgets")
    app = widgets.QApplication.instance() or widgets.QApplication([])
    yield app
