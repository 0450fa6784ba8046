"""Tests for breathing.py"""

import pytest

from breathing import BreathingAnimator, breath_width
from hover import SelectionState
from scheduler import ManualFrameScheduler


class TestBreathWidth:
    def test_pulse_shape(self):
        assert breath_width(0.0, 6, 6, 2.0) == pytest.approx(6)
        assert breath_width(0.5, 6, 6, 2.0) == pytest.approx(12)
        assert breath_width(1.0, 6, 6, 2.0) == pytest.approx(6)
        assert breath_width(1.5, 6, 6, 2.0) == pytest.approx(12)

    def test_bounds(self):
        for i in range(2000):
            width = breath_width(i * 0.0137, 6, 6, 2.0)
            assert 6 <= width <= 12

    def test_periodic(self):
        for t in (0.1, 0.77, 1.3):
            assert breath_width(t + 2.0) == pytest.approx(breath_width(t))

    def test_shorter_period(self):
        assert breath_width(0.375, 4, 2, 1.5) == pytest.approx(6)


class StateHolder:
    def __init__(self, state):
        self.state = state

    def __call__(self):
        return self.state


class TestBreathingAnimator:
    def setup_method(self):
        self.frames = ManualFrameScheduler()
        self.holder = StateHolder(SelectionState(selected_object_id=1, animating=True,
                                                 animation_start_time=0.0))
        self.widths = []
        self.animator = BreathingAnimator(self.frames, self.holder, self.widths.append)

    def test_rejects_non_positive_period(self):
        with pytest.raises(ValueError):
            BreathingAnimator(self.frames, self.holder, self.widths.append, period=0)

    def test_writes_width_each_frame(self):
        self.animator.start()
        self.frames.advance(0.5)
        assert len(self.widths) == 30
        assert self.widths[-1] == pytest.approx(12)
        assert all(6 <= w <= 12 for w in self.widths)

    def test_stops_once_not_animating(self):
        self.animator.start()
        self.frames.run_frame()
        self.holder.state = SelectionState(previous_object_id=1)
        self.frames.run_frame()
        assert len(self.widths) == 1
        assert not self.animator.running
        assert self.frames.pending == 0

    def test_stop_cancels_pending_step(self):
        self.animator.start()
        self.animator.stop()
        self.frames.advance(1.0)
        assert self.widths == []
        assert not self.animator.running

    def test_start_twice_single_loop(self):
        self.animator.start()
        self.animator.start()
        assert self.frames.pending == 1
        self.frames.run_frame()
        assert len(self.widths) == 1

    def test_close_alias(self):
        self.animator.start()
        self.animator.close()
        assert self.frames.pending == 0
