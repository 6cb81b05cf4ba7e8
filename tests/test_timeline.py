from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from conftest import T0
from plumemap.gui.timeline import TimelineControl

STEP = timedelta(hours=6)


def _control(scheduler, seen, end_steps: int = 3) -> TimelineControl:
    return TimelineControl(
        start=T0,
        end=T0 + STEP * end_steps,
        step=STEP,
        scheduler=scheduler,
        on_start=lambda d: seen.append(("start", d)),
        on_change=lambda d: seen.append(("change", d)),
    )


def test_begin_reports_initial_date(scheduler) -> None:
    seen = []
    _control(scheduler, seen).begin()
    assert seen == [("start", T0)]


def test_step_forward_and_backward_respect_bounds(scheduler) -> None:
    seen = []
    control = _control(scheduler, seen, end_steps=1)
    assert not control.step_backward()
    assert control.step_forward()
    assert control.current == T0 + STEP
    assert not control.step_forward()
    assert control.step_backward()
    assert [kind for kind, _ in seen] == ["change", "change"]


def test_seek_is_clamped(scheduler) -> None:
    seen = []
    control = _control(scheduler, seen)
    control.seek(T0 - timedelta(days=3))
    assert control.current == T0
    control.seek(T0 + timedelta(days=30))
    assert control.current == control.end


def test_play_advances_until_end(scheduler) -> None:
    seen = []
    control = _control(scheduler, seen)
    control.play()
    assert control.playing
    assert seen == [("start", T0)]
    scheduler.advance(10_000)
    assert control.current == control.end
    assert not control.playing
    assert [d for kind, d in seen if kind == "change"] == [
        T0 + STEP, T0 + 2 * STEP, T0 + 3 * STEP,
    ]


def test_pause_stops_scheduled_steps(scheduler) -> None:
    seen = []
    control = _control(scheduler, seen)
    control.play()
    scheduler.advance(1000)
    control.pause()
    scheduler.advance(10_000)
    assert control.current == T0 + STEP
    assert not control.playing


def test_format_date() -> None:
    date = datetime(2023, 6, 12, 14, 30, 22, tzinfo=timezone.utc)
    assert TimelineControl.format_date(date) == "06/12/2023, 14:30:22 UTC"


def test_end_before_start_rejected(scheduler) -> None:
    with pytest.raises(ValueError):
        TimelineControl(T0, T0 - STEP, STEP, scheduler)
