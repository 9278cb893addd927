"""
8D panning automation.

The pan position follows a looping path 0 -> -1 -> 0 -> +1 -> 0, dwelling
at each waypoint for a hold period and moving linearly between waypoints.
Position is computed from the audio clock, so it freezes while playback is
paused and never jumps on resume.
"""

import math
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

import numpy as np
from numpy.typing import ArrayLike, NDArray

from immersive_audio.audio.clock import Clock
from immersive_audio.audio.effects import EffectBase
from immersive_audio.core.exceptions import ValidationError
from immersive_audio.core.logging import get_logger

logger = get_logger(__name__)

# Position held during each of the four segments of a cycle
WAYPOINTS = (0.0, -1.0, 0.0, 1.0)


@dataclass(frozen=True)
class PanAutomationParams:
    """
    Timing of the panning cycle.

    Attributes:
        hold_duration: Seconds spent at each waypoint
        transition_duration: Seconds spent moving to the next waypoint
    """
    hold_duration: float = 20.0
    transition_duration: float = 5.0

    def __post_init__(self) -> None:
        if self.hold_duration < 0 or self.transition_duration < 0:
            raise ValidationError("Pan hold and transition durations must be non-negative")
        if self.segment_duration <= 0:
            raise ValidationError("Pan segment duration must be positive")

    @property
    def segment_duration(self) -> float:
        return self.hold_duration + self.transition_duration

    @property
    def cycle_duration(self) -> float:
        return 4 * self.segment_duration


def pan_at(elapsed: float, params: PanAutomationParams) -> float:
    """
    Pan position at a point in playback time.

    Args:
        elapsed: Audio-clock seconds since playback started
        params: Cycle timing

    Returns:
        Pan in [-1, 1] (-1 = hard left, +1 = hard right)
    """
    time_in_cycle = max(0.0, elapsed) % params.cycle_duration
    segment = min(int(time_in_cycle // params.segment_duration), 3)
    t = time_in_cycle - segment * params.segment_duration

    start = WAYPOINTS[segment]
    if t < params.hold_duration:
        pan = start
    else:
        end = WAYPOINTS[(segment + 1) % 4]
        progress = (t - params.hold_duration) / params.transition_duration
        pan = start + (end - start) * progress

    return max(-1.0, min(1.0, pan))


def equal_power_gains(pan: ArrayLike) -> Tuple[ArrayLike, ArrayLike]:
    """
    Equal-power left/right gains for a mono source at the given pan.

    Works on scalars and per-sample arrays alike.

    Returns:
        (left_gain, right_gain), with left^2 + right^2 == 1
    """
    angle = (np.clip(pan, -1.0, 1.0) + 1.0) * (math.pi / 4.0)
    return np.cos(angle), np.sin(angle)


class SmoothedPan:
    """
    Pan value with one-pole exponential smoothing.

    New targets are approached with the given time constant instead of
    jumping, which avoids audible clicks when the scheduler updates.
    """

    def __init__(self, sample_rate: int, time_constant: float = 0.1, initial: float = 0.0):
        """
        Initialize smoother.

        Args:
            sample_rate: Audio sample rate in Hz
            time_constant: Seconds to cover ~63% of a step
            initial: Starting pan
        """
        self.sample_rate = sample_rate
        self.time_constant = time_constant
        self._target = initial
        self._current = initial

        if time_constant <= 0:
            self._coeff = 0.0  # Instant change
        else:
            self._coeff = math.exp(-1.0 / (time_constant * sample_rate))

    @property
    def target(self) -> float:
        return self._target

    @property
    def current(self) -> float:
        return self._current

    def set_target(self, value: float) -> None:
        self._target = max(-1.0, min(1.0, value))

    def set_immediate(self, value: float) -> None:
        self.set_target(value)
        self._current = self._target

    def process(self, n_samples: int) -> NDArray[np.float64]:
        """Advance by n samples and return the per-sample pan values."""
        target = self._target
        if n_samples <= 0:
            return np.zeros(0)
        if abs(self._current - target) < 1e-9:
            self._current = target
            return np.full(n_samples, target)

        decay = self._coeff ** np.arange(1, n_samples + 1, dtype=np.float64)
        values = target + (self._current - target) * decay
        self._current = float(values[-1])
        return values


class StereoPanner(EffectBase):
    """
    Equal-power stereo panner driven by a SmoothedPan.

    At pan 0 the signal passes unchanged. Moving left folds the right
    channel into the left with equal-power gains, and vice versa.
    """

    def __init__(self, smoother: SmoothedPan):
        super().__init__(smoother.sample_rate)
        self.smoother = smoother

    def process(self, block: NDArray[np.float64]) -> NDArray[np.float64]:
        n = block.shape[1]
        if n == 0:
            return block

        pan = self.smoother.process(n)
        leftward = pan <= 0.0
        # Each half of the pan range sweeps the full equal-power curve
        gain_l, gain_r = equal_power_gains(np.where(leftward, 2.0 * pan + 1.0, 2.0 * pan - 1.0))

        left, right = block[0], block[1]
        out = np.empty_like(block)
        out[0] = np.where(leftward, left + right * gain_l, left * gain_l)
        out[1] = np.where(leftward, right * gain_r, right + left * gain_r)
        return out


class PanningScheduler:
    """
    Computes the pan for the current audio-clock time and hands it to the
    smoother. Meant to be polled on a fixed wall-clock interval.
    """

    def __init__(
        self,
        params: PanAutomationParams,
        clock: Clock,
        origin: float,
        smoother: SmoothedPan
    ):
        """
        Initialize scheduler.

        Args:
            params: Cycle timing
            clock: Audio clock (frozen while paused)
            origin: Clock reading at session start
            smoother: Receives the new pan target on each tick
        """
        self.params = params
        self.clock = clock
        self.origin = origin
        self.smoother = smoother
        self.last_pan: Optional[float] = None
        self.tick_count = 0

    def elapsed(self) -> float:
        return max(0.0, self.clock.now() - self.origin)

    def tick(self) -> Optional[float]:
        """
        Update the pan target.

        Returns:
            The new pan, or None if the clock is suspended
        """
        if not self.clock.running:
            return None

        pan = pan_at(self.elapsed(), self.params)
        self.smoother.set_target(pan)
        self.last_pan = pan
        self.tick_count += 1
        return pan


class PanPoller:
    """
    Invokes a callback on a fixed wall-clock interval from a daemon thread.

    Cancellation is explicit: stop() sets the token and joins, so no call
    starts after stop() returns.
    """

    def __init__(self, interval: float, callback: Callable[[], object]):
        self.interval = interval
        self.callback = callback
        self._cancelled = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def active(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.active:
            return
        self._cancelled.clear()
        self._thread = threading.Thread(target=self._run, name="pan-poller", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._cancelled.set()
        thread = self._thread
        self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    def _run(self) -> None:
        while not self._cancelled.wait(self.interval):
            try:
                self.callback()
            except Exception as e:
                logger.exception("pan_poll_error", error=str(e))
