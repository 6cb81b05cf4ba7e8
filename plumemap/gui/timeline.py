"""
Timeline control — steps a date cursor between a start and end bound.

Each step moves the cursor by a fixed ``step`` (the spacing of the
underlying frames) and reports the new date through ``on_change``.
While playing, the next step is scheduled ``frame_ms`` later; playback
stops on its own at ``end``.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

log = logging.getLogger(__name__)

DateCallback = Callable[[datetime], None]


class TimelineControl:
    """Play/pause/seek control over a stepped date range."""

    def __init__(
        self,
        start: datetime,
        end: datetime,
        step: timedelta,
        scheduler,
        on_start: Optional[DateCallback] = None,
        on_change: Optional[DateCallback] = None,
        initial: Optional[datetime] = None,
        frame_ms: int = 1000,
    ):
        if end < start:
            raise ValueError("end must not precede start")
        self.start = start
        self.end = end
        self.step = step
        self._scheduler = scheduler
        self._on_start = on_start
        self._on_change = on_change
        self._frame_ms = frame_ms
        self._current = initial if initial is not None else start
        self._pending = None
        self._started = False

    @property
    def current(self) -> datetime:
        return self._current

    @property
    def playing(self) -> bool:
        return self._pending is not None and self._pending.active

    @staticmethod
    def format_date(date: datetime) -> str:
        return date.astimezone(timezone.utc).strftime("%m/%d/%Y, %H:%M:%S") + " UTC"

    def begin(self) -> None:
        """Report the initial date through ``on_start``."""
        self._started = True
        if self._on_start is not None:
            self._on_start(self._current)

    def seek(self, date: datetime) -> None:
        """Jump to *date*, clamped to [start, end]."""
        date = min(max(date, self.start), self.end)
        self._current = date
        if self._on_change is not None:
            self._on_change(date)

    def step_forward(self) -> bool:
        """Advance one step.  False when already at the end."""
        if not self.step or self._current >= self.end:
            return False
        self.seek(self._current + self.step)
        return True

    def step_backward(self) -> bool:
        if not self.step or self._current <= self.start:
            return False
        self.seek(self._current - self.step)
        return True

    def play(self) -> None:
        if self.playing:
            return
        if not self._started:
            self.begin()
        self._schedule_next()
        log.debug("Timeline playing from %s", self.format_date(self._current))

    def pause(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def _schedule_next(self) -> None:
        self._pending = self._scheduler.call_later(self._frame_ms, self._advance)

    def _advance(self) -> None:
        self._pending = None
        if self.step_forward() and self._current < self.end:
            self._schedule_next()
        else:
            log.debug("Timeline reached end")
