"""
scheduler.py — Per-frame callback scheduling.

The render surface owns the real frame clock (requestAnimationFrame in a
browser).  Everything else talks to it through FrameScheduler so the hover
animation can be driven by hand in tests and headless runs.
"""

import itertools
from abc import ABC, abstractmethod
from typing import Callable


FrameCallback = Callable[[float], None]


class FrameScheduler(ABC):
    """Schedules one-shot callbacks for the next rendered frame."""

    @abstractmethod
    def now(self) -> float:
        """Current frame clock in seconds."""

    @abstractmethod
    def request_frame(self, callback: FrameCallback) -> int:
        """Run callback(now) on the next frame; returns a cancellable handle."""

    @abstractmethod
    def cancel_frame(self, handle: int) -> None:
        """Drop a pending callback.  Unknown or already-run handles are ignored."""


class ManualFrameScheduler(FrameScheduler):
    """Deterministic scheduler: time only moves when advance() is called."""

    def __init__(self, start: float = 0.0, frame_interval: float = 1 / 60):
        self._now = start
        self.frame_interval = frame_interval
        self._pending: dict[int, FrameCallback] = {}
        self._handles = itertools.count(1)

    def now(self) -> float:
        return self._now

    def request_frame(self, callback: FrameCallback) -> int:
        handle = next(self._handles)
        self._pending[handle] = callback
        return handle

    def cancel_frame(self, handle: int) -> None:
        self._pending.pop(handle, None)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def run_frame(self) -> int:
        """Run the callbacks queued before this frame; returns how many ran."""
        due, self._pending = self._pending, {}
        for callback in due.values():
            callback(self._now)
        return len(due)

    def advance(self, seconds: float) -> int:
        """Step the clock frame by frame for `seconds`; returns callbacks run."""
        ran = 0
        target = self._now + seconds
        while self._now + self.frame_interval <= target + 1e-9:
            self._now += self.frame_interval
            ran += self.run_frame()
        self._now = target
        return ran


class RepeatingTask:
    """A step function re-queued every frame until cancelled.

    The step may return False to stop on its own.  cancel() removes the
    outstanding frame request so a stale step can never fire afterwards.
    """

    def __init__(self, scheduler: FrameScheduler, step: Callable[[float], bool | None]):
        self.scheduler = scheduler
        self.step = step
        self._handle: int | None = None
        self._stopped = True

    @property
    def active(self) -> bool:
        return not self._stopped

    def start(self) -> None:
        self._stopped = False
        if self._handle is None:
            self._handle = self.scheduler.request_frame(self._run)

    def cancel(self) -> None:
        self._stopped = True
        if self._handle is not None:
            self.scheduler.cancel_frame(self._handle)
            self._handle = None

    def _run(self, now: float) -> None:
        self._handle = None
        if self._stopped:
            return
        if self.step(now) is False:
            self._stopped = True
            return
        # step() may have cancelled or restarted us
        if not self._stopped and self._handle is None:
            self._handle = self.scheduler.request_frame(self._run)
