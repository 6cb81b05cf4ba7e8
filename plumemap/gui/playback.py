"""
Time-indexed playback engine.

Animates a time-ordered sequence of items (frames) on the map:

  start(items)
    → sort frames by timestamp, index them by date
    → build a TimelineControl (step = spacing of the first two frames)
    → attach it to the surface and show the first frame

  tick(date)                         (every timeline change)
    → date not an exact frame time → ignore
    → buffer frames [i, i + k)       (created hidden, never re-created)
    → show frame i now, hide the previous frame ``crossfade_ms`` later

  teardown()
    → cancel pending hides, release every buffered frame,
      detach the timeline control

Showing the new frame before hiding the old one avoids a blank flash
between frames.  On fast reverse scrubbing a late hide can blank the
frame that just became current again; that is accepted.

Buffered frames are never evicted, even after they fall behind the
window on long timelines.
"""
from __future__ import annotations

import functools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Set

from ..geo.items import GeoItem
from .synchronizer import ResourceSynchronizer
from .timeline import TimelineControl

log = logging.getLogger(__name__)

LOOKAHEAD = 4
CROSSFADE_MS = 900


def _date_key(date: datetime) -> datetime:
    if date.tzinfo is None:
        return date.replace(tzinfo=timezone.utc)
    return date.astimezone(timezone.utc)


@dataclass
class PlaybackCursor:
    """Mutable playback position."""
    index: Optional[int] = None
    previous_frame_id: Optional[str] = None
    buffered: Set[str] = field(default_factory=set)
    pending: List = field(default_factory=list)   # DeferredActions (crossfade hides)


class PlaybackEngine:
    """Drives a synchronizer along a sorted timeline of frames."""

    def __init__(
        self,
        synchronizer: ResourceSynchronizer,
        scheduler,
        lookahead: int = LOOKAHEAD,
        crossfade_ms: int = CROSSFADE_MS,
        frame_ms: int = 1000,
    ):
        if lookahead < 1:
            raise ValueError("lookahead must be >= 1")
        self._sync = synchronizer
        self._scheduler = scheduler
        self._lookahead = lookahead
        self._crossfade_ms = crossfade_ms
        self._frame_ms = frame_ms

        self._frames: List[GeoItem] = []
        self._index_by_date: Dict[datetime, int] = {}
        self._control: Optional[TimelineControl] = None
        self._cursor = PlaybackCursor()
        self._state = "idle"

    # ── Properties ────────────────────────────────────────────────────

    @property
    def state(self) -> str:
        return self._state

    @property
    def running(self) -> bool:
        return self._state == "running"

    @property
    def cursor(self) -> PlaybackCursor:
        return self._cursor

    @property
    def frames(self) -> List[GeoItem]:
        return list(self._frames)

    @property
    def control(self) -> Optional[TimelineControl]:
        return self._control

    # ── Lifecycle ─────────────────────────────────────────────────────

    def start(self, items: Iterable[GeoItem]) -> Optional[TimelineControl]:
        """Idle → Running over *items*.  Returns the timeline control."""
        if self.running:
            self.teardown()

        frames = sorted(
            (it for it in items if it.timestamp is not None),
            key=lambda it: it.timestamp,
        )
        if not frames:
            log.warning("Playback: no timestamped items, staying idle")
            return None

        self._frames = frames
        self._index_by_date = {}
        for idx, frame in enumerate(frames):
            self._index_by_date.setdefault(_date_key(frame.timestamp), idx)

        start = frames[0].timestamp
        end = frames[-1].timestamp
        step = frames[1].timestamp - start if len(frames) > 1 else timedelta(0)

        self._cursor = PlaybackCursor()
        self._control = TimelineControl(
            start=start,
            end=end,
            step=step,
            scheduler=self._scheduler,
            on_start=self.tick,
            on_change=self.tick,
            frame_ms=self._frame_ms,
        )
        self._sync.surface.add_control(self._control)
        self._state = "running"
        log.info("Playback started: %d frames, %s → %s, step %s",
                 len(frames), start.isoformat(), end.isoformat(), step)
        self._control.begin()
        return self._control

    def teardown(self) -> None:
        """Stop playback and release every buffered frame."""
        for action in self._cursor.pending:
            action.cancel()
        self._cursor.pending.clear()

        for frame_id in list(self._cursor.buffered):
            self._sync.release(frame_id)
        released = len(self._cursor.buffered)
        self._cursor.buffered.clear()

        if self._control is not None:
            self._control.pause()
            self._sync.surface.remove_control(self._control)
            self._control = None

        self._cursor = PlaybackCursor()
        self._state = "idle"
        log.info("Playback torn down (%d frames released)", released)

    # ── Ticks ─────────────────────────────────────────────────────────

    def index_of(self, date: datetime) -> Optional[int]:
        return self._index_by_date.get(_date_key(date))

    def tick(self, date: datetime) -> None:
        """Show the frame at *date*, if one exists."""
        if not self.running:
            return
        index = self.index_of(date)
        if index is None:
            return

        self.buffer(index)

        current_id = self._frames[index].item_id
        self._crossfade(self._cursor.previous_frame_id, current_id)
        self._cursor.index = index
        self._cursor.previous_frame_id = current_id

    def rebuffer(self) -> None:
        """Re-tick the current date, e.g. once raster tiles become available."""
        if not self.running or self._control is None:
            return
        self.tick(self._control.current)

    def buffer(self, index: int) -> List[int]:
        """Materialize frames ``[index, min(index + k, n))``.

        Already-buffered frames are skipped.  Returns the window's
        indices.
        """
        n = len(self._frames)
        if index < 0 or index >= n:
            return []
        window = list(range(index, min(index + self._lookahead, n)))
        for i in window:
            frame = self._frames[i]
            if frame.item_id in self._cursor.buffered:
                continue
            if self._sync.materialize(frame, visible=False):
                self._cursor.buffered.add(frame.item_id)
        return window

    def _crossfade(self, previous_id: Optional[str], current_id: str) -> None:
        self._sync.set_visible(current_id, True)
        if previous_id is None or previous_id == current_id:
            return
        self._cursor.pending = [a for a in self._cursor.pending if a.active]
        action = self._scheduler.call_later(
            self._crossfade_ms, functools.partial(self._hide, previous_id),
        )
        self._cursor.pending.append(action)

    def _hide(self, frame_id: str) -> None:
        self._sync.set_visible(frame_id, False)
