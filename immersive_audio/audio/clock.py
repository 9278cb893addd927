"""
Audio clock capability.

Playback logic reads time from a Clock rather than the wall clock, so that
time stops while the output is suspended.
"""

import threading
from abc import ABC, abstractmethod

from immersive_audio.core.logging import get_logger

logger = get_logger(__name__)


class Clock(ABC):
    """Audio-time source with idempotent suspend/resume."""

    @abstractmethod
    def now(self) -> float:
        """Current audio time in seconds."""
        pass

    @abstractmethod
    def suspend(self) -> None:
        pass

    @abstractmethod
    def resume(self) -> None:
        pass

    @property
    @abstractmethod
    def running(self) -> bool:
        pass


class FakeClock(Clock):
    """
    Manually advanced clock for deterministic tests.

    advance() only moves time while the clock is running, mirroring an
    audio device that stops consuming samples when suspended.
    """

    def __init__(self, start: float = 0.0, running: bool = False):
        self._time = start
        self._running = running
        self._lock = threading.Lock()

    def now(self) -> float:
        with self._lock:
            return self._time

    def advance(self, seconds: float) -> float:
        with self._lock:
            if self._running:
                self._time += seconds
            return self._time

    def suspend(self) -> None:
        self._running = False

    def resume(self) -> None:
        self._running = True

    @property
    def running(self) -> bool:
        return self._running


class DeviceClock(Clock):
    """
    Clock derived from the frames an output device has actually played.

    Suspending the device stops frame delivery, which freezes this clock.
    """

    def __init__(self, output):
        """
        Initialize device clock.

        Args:
            output: AudioOutput whose delivered frames define the time base
        """
        self.output = output
        self._running = False

    def now(self) -> float:
        return self.output.frames_delivered / self.output.sample_rate

    def suspend(self) -> None:
        self._running = False

    def resume(self) -> None:
        self._running = True

    @property
    def running(self) -> bool:
        return self._running and self.output.active
