"""
Tests for 8D panning automation.
"""

import math
import threading
import time

import numpy as np
import pytest

from immersive_audio.audio.clock import FakeClock
from immersive_audio.audio.panning import (
    PanAutomationParams,
    PanningScheduler,
    PanPoller,
    SmoothedPan,
    StereoPanner,
    equal_power_gains,
    pan_at
)
from immersive_audio.core.exceptions import ValidationError


class TestPanCurve:
    """Test the pan position function."""

    @pytest.fixture
    def params(self):
        return PanAutomationParams(hold_duration=20.0, transition_duration=5.0)

    def test_derived_durations(self, params):
        assert params.segment_duration == 25.0
        assert params.cycle_duration == 100.0

    def test_waypoints(self, params):
        assert pan_at(0.0, params) == 0.0
        assert pan_at(params.hold_duration, params) == 0.0
        assert pan_at(params.segment_duration, params) == -1.0
        assert pan_at(params.segment_duration + params.hold_duration - 0.01, params) == -1.0
        assert pan_at(3 * params.segment_duration, params) == 1.0

    def test_third_window_starts_centered(self, params):
        """The window after the left hold is the center hold."""
        assert pan_at(2 * params.segment_duration, params) == 0.0

    def test_transitions_are_linear(self, params):
        assert pan_at(22.5, params) == pytest.approx(-0.5)
        assert pan_at(47.5, params) == pytest.approx(-0.5)
        assert pan_at(72.5, params) == pytest.approx(0.5)
        assert pan_at(97.5, params) == pytest.approx(0.5)

    def test_periodic(self, params):
        for t in (0.0, 13.0, 22.5, 47.5, 80.0, 99.9):
            assert pan_at(t + params.cycle_duration, params) == pytest.approx(pan_at(t, params))
        assert pan_at(params.cycle_duration, params) == pan_at(0.0, params)

    def test_bounded(self, params):
        values = [pan_at(t, params) for t in np.arange(0.0, 250.0, 0.37)]
        assert min(values) == -1.0
        assert max(values) == 1.0

    def test_continuous(self, params):
        """No jumps larger than one step of the linear ramp."""
        step = 0.05
        values = np.array([pan_at(t, params) for t in np.arange(0.0, 200.0, step)])
        assert np.max(np.abs(np.diff(values))) <= step / params.transition_duration + 1e-9

    def test_negative_elapsed_clamped(self, params):
        assert pan_at(-5.0, params) == 0.0

    def test_invalid_params(self):
        with pytest.raises(ValidationError):
            PanAutomationParams(hold_duration=-1.0)
        with pytest.raises(ValidationError):
            PanAutomationParams(hold_duration=0.0, transition_duration=0.0)

    def test_equal_power_gains(self):
        for pan in (-1.0, -0.3, 0.0, 0.6, 1.0):
            left, right = equal_power_gains(pan)
            assert left ** 2 + right ** 2 == pytest.approx(1.0)

        left, right = equal_power_gains(-1.0)
        assert left == pytest.approx(1.0)
        assert right == pytest.approx(0.0, abs=1e-12)

    def test_equal_power_gains_on_arrays(self):
        pans = np.linspace(-1.0, 1.0, 9)
        left, right = equal_power_gains(pans)

        assert left.shape == right.shape == (9,)
        np.testing.assert_allclose(left ** 2 + right ** 2, 1.0)
        assert np.all(np.diff(left) <= 0)
        assert np.all(np.diff(right) >= 0)


class TestSmoothedPan:
    """Test click-free pan smoothing."""

    def test_time_constant(self):
        smoother = SmoothedPan(24000, time_constant=0.1)
        smoother.set_target(1.0)

        values = smoother.process(2400)
        assert values[-1] == pytest.approx(1.0 - math.exp(-1.0))
        assert np.all(np.diff(values) > 0)

    def test_converges(self):
        smoother = SmoothedPan(24000, time_constant=0.01)
        smoother.set_target(-1.0)
        smoother.process(24000)

        assert smoother.current == pytest.approx(-1.0, abs=1e-6)

    def test_target_clamped(self):
        smoother = SmoothedPan(24000)
        smoother.set_target(5.0)
        assert smoother.target == 1.0

    def test_immediate(self):
        smoother = SmoothedPan(24000)
        smoother.set_immediate(0.5)

        np.testing.assert_array_equal(smoother.process(4), [0.5] * 4)

    def test_zero_time_constant_jumps(self):
        smoother = SmoothedPan(24000, time_constant=0.0)
        smoother.set_target(1.0)

        np.testing.assert_array_equal(smoother.process(3), [1.0] * 3)


class TestStereoPanner:
    """Test the panner node."""

    @pytest.fixture
    def block(self):
        rng = np.random.default_rng(3)
        return rng.uniform(-0.5, 0.5, size=(2, 256))

    def test_center_is_identity(self, block):
        panner = StereoPanner(SmoothedPan(24000))
        np.testing.assert_allclose(panner.process(block), block, atol=1e-12)

    def test_hard_left(self, block):
        smoother = SmoothedPan(24000)
        smoother.set_immediate(-1.0)
        out = StereoPanner(smoother).process(block)

        np.testing.assert_allclose(out[0], block[0] + block[1], atol=1e-12)
        np.testing.assert_allclose(out[1], 0.0, atol=1e-12)

    def test_hard_right(self, block):
        smoother = SmoothedPan(24000)
        smoother.set_immediate(1.0)
        out = StereoPanner(smoother).process(block)

        np.testing.assert_allclose(out[0], 0.0, atol=1e-12)
        np.testing.assert_allclose(out[1], block[0] + block[1], atol=1e-12)

    @pytest.mark.parametrize("pan", [-0.5, 0.5])
    def test_partial_pan_uses_equal_power(self, block, pan):
        smoother = SmoothedPan(24000)
        smoother.set_immediate(pan)
        out = StereoPanner(smoother).process(block)

        half = math.sqrt(0.5)
        if pan < 0:
            np.testing.assert_allclose(out[0], block[0] + block[1] * half, atol=1e-12)
            np.testing.assert_allclose(out[1], block[1] * half, atol=1e-12)
        else:
            np.testing.assert_allclose(out[0], block[0] * half, atol=1e-12)
            np.testing.assert_allclose(out[1], block[1] + block[0] * half, atol=1e-12)

    def test_moving_pan_ends_hard_right(self, block):
        smoother = SmoothedPan(24000, time_constant=0.001)
        smoother.set_immediate(-1.0)
        smoother.set_target(1.0)
        out = StereoPanner(smoother).process(block)

        np.testing.assert_allclose(out[0, -8:], 0.0, atol=1e-3)
        np.testing.assert_allclose(out[1, -8:], block[0, -8:] + block[1, -8:], atol=1e-3)


class TestPanningScheduler:
    """Test clock-driven pan scheduling."""

    @pytest.fixture
    def params(self):
        return PanAutomationParams(hold_duration=2.0, transition_duration=1.0)

    def test_follows_audio_clock(self, params):
        clock = FakeClock(start=100.0, running=True)
        smoother = SmoothedPan(24000)
        scheduler = PanningScheduler(params, clock, clock.now(), smoother)

        assert scheduler.tick() == 0.0
        clock.advance(2.5)
        assert scheduler.tick() == pytest.approx(-0.5)
        assert smoother.target == pytest.approx(-0.5)
        assert scheduler.tick_count == 2

    def test_frozen_while_suspended(self, params):
        clock = FakeClock(running=True)
        smoother = SmoothedPan(24000)
        scheduler = PanningScheduler(params, clock, 0.0, smoother)

        clock.advance(2.5)
        scheduler.tick()
        clock.suspend()
        clock.advance(10.0)

        assert scheduler.tick() is None
        assert scheduler.elapsed() == pytest.approx(2.5)
        assert smoother.target == pytest.approx(-0.5)

        clock.resume()
        assert scheduler.tick() == pytest.approx(-0.5)


class TestPanPoller:
    """Test the cancellable poll loop."""

    def test_polls_and_stops(self):
        calls = []
        ready = threading.Event()

        def callback():
            calls.append(time.monotonic())
            if len(calls) >= 3:
                ready.set()

        poller = PanPoller(0.005, callback)
        poller.start()
        assert ready.wait(timeout=5.0)

        poller.stop()
        count = len(calls)
        time.sleep(0.05)

        assert not poller.active
        assert len(calls) == count

    def test_callback_errors_do_not_kill_loop(self):
        calls = []
        ready = threading.Event()

        def callback():
            calls.append(1)
            if len(calls) >= 2:
                ready.set()
            raise RuntimeError("boom")

        poller = PanPoller(0.005, callback)
        poller.start()
        try:
            assert ready.wait(timeout=5.0)
        finally:
            poller.stop()

    def test_stop_without_start(self):
        PanPoller(0.1, lambda: None).stop()
