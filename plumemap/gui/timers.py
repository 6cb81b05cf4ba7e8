"""
Deferred actions on the Qt event loop.

The playback engine schedules work (crossfade hides, timeline steps)
through a scheduler object with a single method::

    scheduler.call_later(delay_ms, callback) -> DeferredAction

QtScheduler implements it with single-shot QTimers parented to a
QObject, so every pending action is owned and can be cancelled when its
owner tears down.  A cancelled action never fires.
"""
from __future__ import annotations

import logging
from typing import Callable, Optional

from PyQt5 import QtCore

log = logging.getLogger(__name__)


class DeferredAction:
    """One cancelable single-shot callback."""

    def __init__(
        self,
        delay_ms: int,
        callback: Callable[[], None],
        parent: Optional[QtCore.QObject] = None,
    ):
        self._callback = callback
        self._fired = False
        self._cancelled = False
        self._timer = QtCore.QTimer(parent)
        self._timer.setSingleShot(True)
        self._timer.setInterval(max(0, int(delay_ms)))
        self._timer.timeout.connect(self._fire)
        self._timer.start()

    @property
    def active(self) -> bool:
        return not (self._fired or self._cancelled)

    def cancel(self) -> None:
        if not self.active:
            return
        self._cancelled = True
        self._timer.stop()
        self._timer.deleteLater()

    def _fire(self) -> None:
        if not self.active:
            return
        self._fired = True
        self._timer.deleteLater()
        self._callback()


class QtScheduler(QtCore.QObject):
    """Creates DeferredActions owned by this object."""

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> DeferredAction:
        return DeferredAction(delay_ms, callback, parent=self)
