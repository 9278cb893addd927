"""
Live rendering engine.

Pulls the dry buffer through time stretch, the streaming effects graph and
the stereo panner, one output block at a time.
"""

import threading
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from immersive_audio.audio.buffer import SampleBuffer
from immersive_audio.audio.effects import GRAPH_CHANNELS, EffectsConfig, StreamingEffects
from immersive_audio.audio.panning import SmoothedPan, StereoPanner
from immersive_audio.audio.timestretch import TimeStretch
from immersive_audio.core.config import settings
from immersive_audio.core.logging import get_logger

logger = get_logger(__name__)


class BufferSource:
    """
    Read cursor over a SampleBuffer.

    With loop enabled, reading past the end wraps to frame 0.
    """

    def __init__(self, buffer: SampleBuffer, loop: bool = False):
        self.buffer = buffer
        self.loop = loop
        self.position = 0
        self.loops_completed = 0

    @property
    def exhausted(self) -> bool:
        return not self.loop and self.position >= self.buffer.frame_count

    def read(self, frames: int) -> NDArray[np.float64]:
        """Return up to `frames` planar frames."""
        data = self.buffer.channels
        total = self.buffer.frame_count
        pieces = []
        remaining = frames

        while remaining > 0 and total > 0:
            if self.position >= total:
                if not self.loop:
                    break
                self.position = 0
                self.loops_completed += 1

            take = min(remaining, total - self.position)
            pieces.append(data[:, self.position:self.position + take])
            self.position += take
            remaining -= take

        if not pieces:
            return np.zeros((self.buffer.n_channels, 0))
        return np.concatenate(pieces, axis=1)


class LiveEngine:
    """
    Real-time evaluation of one playback session's node chain.

    Chain: BufferSource -> TimeStretch -> StreamingEffects -> StereoPanner.
    The reverb tail is cut when the source runs out; offline export keeps it.
    """

    def __init__(
        self,
        buffer: SampleBuffer,
        effects: EffectsConfig,
        smoother: SmoothedPan,
        loop: bool = False,
        rate: float = 1.0,
        block_size: Optional[int] = None
    ):
        """
        Initialize engine.

        Args:
            buffer: Dry signal
            effects: Dry/wet graph configuration
            smoother: Pan position source, advanced per output sample
            loop: Restart at frame 0 instead of finishing
            rate: Playback speed multiplier (pitch preserved)
            block_size: Source read size in frames
        """
        self.sample_rate = buffer.sample_rate
        self.block_size = block_size or settings.block_size

        self.source = BufferSource(buffer, loop=loop)
        self.stretch = TimeStretch(buffer.sample_rate, buffer.n_channels)
        self.stretch.set_rate(rate)
        self.effects = StreamingEffects(effects, block_size=self.block_size)
        self.panner = StereoPanner(smoother)

        self._pending = np.zeros((GRAPH_CHANNELS, 0))
        self._drained = False
        self._lock = threading.Lock()
        self.finished = False
        self.frames_rendered = 0

        logger.debug(
            "live_engine_initialized",
            frames=buffer.frame_count,
            channels=buffer.n_channels,
            loop=loop,
            rate=rate
        )

    def set_loop(self, loop: bool) -> None:
        with self._lock:
            self.source.loop = loop

    def set_rate(self, rate: float) -> None:
        with self._lock:
            was_bypassed = self.stretch.bypassed
            if not was_bypassed and rate == 1.0:
                # Keep the audio the vocoder still holds before bypassing it
                self._push(self.stretch.flush())
            self.stretch.set_rate(rate)
            if was_bypassed != self.stretch.bypassed:
                self.stretch.reset()

    def _push(self, stretched: NDArray[np.float64]) -> None:
        if stretched.shape[1]:
            self._pending = np.concatenate(
                [self._pending, self.effects.process(stretched)], axis=1
            )

    def render(self, frames: int) -> NDArray[np.float32]:
        """
        Produce the next output block.

        Args:
            frames: Number of frames requested by the device

        Returns:
            Interleaved float32 array of shape (frames, 2); zero-padded once
            the source is exhausted
        """
        with self._lock:
            while self._pending.shape[1] < frames and not self._drained:
                if self.source.exhausted:
                    self._push(self.stretch.flush())
                    self._drained = True
                    break

                chunk = self.source.read(self.block_size)
                if chunk.shape[1] == 0:
                    break
                self._push(self.stretch.process(chunk))

            take = self._pending[:, :frames]
            self._pending = self._pending[:, frames:]

            out = np.zeros((GRAPH_CHANNELS, frames))
            out[:, :take.shape[1]] = self.panner.process(take)
            self.frames_rendered += take.shape[1]

            if self._drained and self._pending.shape[1] == 0 and not self.finished:
                self.finished = True
                logger.info("live_engine_finished", frames_rendered=self.frames_rendered)

            return out.T.astype(np.float32)
