"""Breathing highlight: pulse the hover line width while a route is selected."""

import logging
import math
from typing import Callable

from config import BREATH_AMPLITUDE, BREATH_BASE_WIDTH, BREATH_PERIOD
from scheduler import FrameScheduler, RepeatingTask

logger = logging.getLogger(__name__)


def breath_width(elapsed: float, base_width: float = BREATH_BASE_WIDTH,
                 amplitude: float = BREATH_AMPLITUDE,
                 period: float = BREATH_PERIOD) -> float:
    """Width at `elapsed` seconds: base → base+amplitude → base, twice per period."""
    t = elapsed % period
    return base_width + amplitude * abs(math.sin(math.pi * t / (period / 2)))


class BreathingAnimator:
    """Drives the highlight width every frame while the selection is animating.

    state_getter returns the live SelectionState; each step checks its
    `animating` flag before doing anything, so a deselect stops the loop even
    if stop() was never called.  sink receives the computed width.
    """

    def __init__(self, scheduler: FrameScheduler, state_getter: Callable,
                 sink: Callable[[float], None],
                 base_width: float = BREATH_BASE_WIDTH,
                 amplitude: float = BREATH_AMPLITUDE,
                 period: float = BREATH_PERIOD):
        if period <= 0:
            raise ValueError(f"breathing period must be positive, got {period}")
        self.state_getter = state_getter
        self.sink = sink
        self.base_width = base_width
        self.amplitude = amplitude
        self.period = period
        self._task = RepeatingTask(scheduler, self._step)

    @property
    def running(self) -> bool:
        return self._task.active

    def start(self) -> None:
        """Begin (or keep) animating; the start time comes from the selection state."""
        if not self.running:
            logger.debug("Breathing started")
        self._task.start()

    def stop(self) -> None:
        """Cancel the outstanding frame so no stale width is written."""
        if self.running:
            logger.debug("Breathing stopped")
        self._task.cancel()

    close = stop

    def _step(self, now: float) -> bool:
        state = self.state_getter()
        if not state.animating or state.animation_start_time is None:
            return False
        width = breath_width(now - state.animation_start_time,
                             self.base_width, self.amplitude, self.period)
        self.sink(width)
        return True
