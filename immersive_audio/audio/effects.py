"""
Dry/wet convolution reverb graph.

The same graph is evaluated two ways: offline over a whole buffer (for
export) and block by block (for live playback). Both must agree sample for
sample over the dry signal's duration. The offline render also keeps the
full reverb tail; the live render stops when the source stops.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.typing import NDArray
from scipy import signal
from scipy.fft import next_fast_len

from immersive_audio.audio.buffer import ImpulseResponse, SampleBuffer
from immersive_audio.audio.impulse import default_impulse
from immersive_audio.core.config import settings
from immersive_audio.core.exceptions import EquivalenceViolationError, ValidationError
from immersive_audio.core.logging import get_logger

logger = get_logger(__name__)

GRAPH_CHANNELS = 2

# Impulse normalization constants used by browser convolver nodes
_NORMALIZE_GAIN_CALIBRATION = 0.00125
_NORMALIZE_CALIBRATION_RATE = 44100.0
_NORMALIZE_MIN_POWER = 0.000125


def normalization_scale(impulse: ImpulseResponse) -> float:
    """
    Equal-power normalization factor for an impulse response.

    Keeps the wet level independent of how loud the kernel happens to be.
    """
    power = float(np.sqrt(np.sum(impulse.channels ** 2) / impulse.channels.size))
    if not np.isfinite(power) or power < _NORMALIZE_MIN_POWER:
        power = _NORMALIZE_MIN_POWER

    scale = _NORMALIZE_GAIN_CALIBRATION / power
    return scale * _NORMALIZE_CALIBRATION_RATE / impulse.sample_rate


@dataclass(frozen=True, eq=False)
class EffectsConfig:
    """
    Immutable dry/wet mix description.

    Gains need not sum to 1; the defaults give a slight loudness boost.

    Attributes:
        impulse: Stereo reverb kernel
        dry_gain: Level of the unprocessed signal (0-1)
        wet_gain: Level of the convolved signal (0-1)
        normalize: Scale the kernel to a calibrated power before mixing
    """
    impulse: ImpulseResponse
    dry_gain: float = 0.7
    wet_gain: float = 0.35
    normalize: bool = True

    def __post_init__(self) -> None:
        for name in ("dry_gain", "wet_gain"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValidationError(f"{name} must be within [0, 1], got {value}")

    @property
    def wet_scale(self) -> float:
        """Gain applied to the raw convolution, including normalization."""
        if self.normalize:
            return self.wet_gain * normalization_scale(self.impulse)
        return self.wet_gain

    @classmethod
    def default(
        cls,
        sample_rate: int,
        rng: Optional[np.random.Generator] = None
    ) -> "EffectsConfig":
        """Build the application's standard reverb at the given sample rate."""
        return cls(
            impulse=default_impulse(sample_rate, rng=rng),
            dry_gain=settings.dry_gain,
            wet_gain=settings.wet_gain
        )


def _route(dry: NDArray[np.float64]) -> NDArray[np.float64]:
    """Map dry channels onto the graph's two channels (mono is duplicated)."""
    if dry.shape[0] > GRAPH_CHANNELS:
        raise ValidationError(
            f"Effects graph supports at most {GRAPH_CHANNELS} channels, got {dry.shape[0]}"
        )
    return np.stack([dry[c % dry.shape[0]] for c in range(GRAPH_CHANNELS)])


def _downmix(stereo: NDArray[np.float64], channels: int) -> NDArray[np.float64]:
    if channels == GRAPH_CHANNELS:
        return stereo
    if channels == 1:
        return 0.5 * (stereo[0:1] + stereo[1:2])
    raise ValidationError(f"Output must have 1 or 2 channels, got {channels}")


def render_offline(
    dry: SampleBuffer,
    config: EffectsConfig,
    channels: int = GRAPH_CHANNELS
) -> SampleBuffer:
    """
    Render the graph over a whole buffer.

    Output length is dry + impulse - 1 frames (full linear convolution tail).
    An empty dry buffer renders to an empty buffer.

    Args:
        dry: Input signal (1 or 2 channels)
        config: Gains and impulse response
        channels: 2 for stereo output, 1 to downmix as 0.5 * (L + R)

    Returns:
        Rendered SampleBuffer
    """
    impulse = config.impulse
    if impulse.sample_rate != dry.sample_rate:
        raise ValidationError(
            f"Impulse rate {impulse.sample_rate} Hz does not match signal rate {dry.sample_rate} Hz"
        )

    if dry.frame_count == 0:
        return SampleBuffer(np.zeros((channels, 0)), dry.sample_rate)

    routed = _route(dry.channels)
    length = dry.frame_count + impulse.frame_count - 1

    wet = signal.fftconvolve(routed, impulse.channels, mode="full", axes=1)

    out = wet[:, :length] * config.wet_scale
    out[:, :dry.frame_count] += routed * config.dry_gain

    logger.debug(
        "offline_render_complete",
        frames=length,
        channels=channels,
        dry_gain=config.dry_gain,
        wet_gain=config.wet_gain
    )

    return SampleBuffer(_downmix(out, channels), dry.sample_rate)


class EffectBase(ABC):
    """Base class for block-based live effects."""

    def __init__(self, sample_rate: int):
        """
        Initialize effect.

        Args:
            sample_rate: Audio sample rate in Hz
        """
        self.sample_rate = sample_rate

    @abstractmethod
    def process(self, block: NDArray[np.float64]) -> NDArray[np.float64]:
        """
        Process one block.

        Args:
            block: Planar samples of shape (n_channels, n_frames)

        Returns:
            Processed planar samples
        """
        pass

    def reset(self) -> None:
        """Clear any internal state."""


class StreamingEffects(EffectBase):
    """
    Block-wise evaluation of the dry/wet graph.

    Uses overlap-add FFT convolution with the impulse spectrum computed once.
    The pending reverb tail is carried between blocks, so any block
    partitioning yields the same samples as render_offline.
    """

    def __init__(self, config: EffectsConfig, block_size: int = 1024):
        """
        Initialize streaming graph.

        Args:
            config: Gains and impulse response
            block_size: Largest block convolved in one FFT; longer input is split
        """
        super().__init__(config.impulse.sample_rate)
        self.config = config
        self.block_size = int(block_size)

        self._ir_length = config.impulse.frame_count
        self._fft_size = next_fast_len(self.block_size + self._ir_length - 1, real=True)
        self._ir_spectrum = np.fft.rfft(config.impulse.channels, n=self._fft_size, axis=1)
        self._wet_scale = config.wet_scale

        # Pending wet output; index 0 is the next sample to emit
        self._overlap = np.zeros((GRAPH_CHANNELS, self._fft_size))

        logger.debug(
            "streaming_effects_initialized",
            block_size=self.block_size,
            fft_size=self._fft_size,
            ir_length=self._ir_length
        )

    def reset(self) -> None:
        self._overlap.fill(0.0)

    def process(self, block: NDArray[np.float64]) -> NDArray[np.float64]:
        """Process planar dry samples; returns stereo output of equal length."""
        block = np.asarray(block, dtype=np.float64)
        if block.shape[1] == 0:
            return np.zeros((GRAPH_CHANNELS, 0))

        routed = _route(block)
        pieces = [
            self._process_chunk(routed[:, start:start + self.block_size])
            for start in range(0, routed.shape[1], self.block_size)
        ]
        return np.concatenate(pieces, axis=1)

    def _process_chunk(self, chunk: NDArray[np.float64]) -> NDArray[np.float64]:
        n = chunk.shape[1]

        spectrum = np.fft.rfft(chunk, n=self._fft_size, axis=1)
        wet = np.fft.irfft(spectrum * self._ir_spectrum, n=self._fft_size, axis=1)
        self._overlap += wet

        out = chunk * self.config.dry_gain + self._overlap[:, :n] * self._wet_scale

        # Advance the tail by n samples
        self._overlap[:, :-n] = self._overlap[:, n:]
        self._overlap[:, -n:] = 0.0

        return out

    def flush(self) -> NDArray[np.float64]:
        """Drain the remaining reverb tail (impulse length - 1 frames)."""
        tail = self._overlap[:, :self._ir_length - 1] * self._wet_scale
        self._overlap.fill(0.0)
        return tail


class EffectsGraph:
    """
    Facade binding an EffectsConfig to its offline and live evaluators.
    """

    def __init__(self, config: EffectsConfig):
        self.config = config

    def render_offline(self, dry: SampleBuffer, channels: int = GRAPH_CHANNELS) -> SampleBuffer:
        return render_offline(dry, self.config, channels=channels)

    def stream(self, block_size: int = 1024) -> StreamingEffects:
        return StreamingEffects(self.config, block_size=block_size)

    def render_streamed(self, dry: SampleBuffer, block_size: int = 1024) -> SampleBuffer:
        """
        Render through the live evaluator, block by block.

        The tail is truncated at the end of the dry signal, as during playback.
        """
        streaming = self.stream(block_size=block_size)
        blocks = [
            streaming.process(dry.channels[:, start:start + block_size])
            for start in range(0, dry.frame_count, block_size)
        ]
        if not blocks:
            return SampleBuffer(np.zeros((GRAPH_CHANNELS, 0)), dry.sample_rate)
        return SampleBuffer(np.concatenate(blocks, axis=1), dry.sample_rate)

    def check_equivalence(
        self,
        dry: SampleBuffer,
        block_size: int = 1024,
        tolerance: Optional[float] = None
    ) -> float:
        """
        Compare live and offline renders over their common duration.

        Returns:
            Largest absolute sample difference

        Raises:
            EquivalenceViolationError: If the difference exceeds tolerance
        """
        tolerance = settings.equivalence_tolerance if tolerance is None else tolerance

        offline = self.render_offline(dry).channels
        live = self.render_streamed(dry, block_size=block_size).channels

        common = min(offline.shape[1], live.shape[1])
        if common == 0:
            return 0.0

        max_error = float(np.max(np.abs(offline[:, :common] - live[:, :common])))

        if max_error >= tolerance:
            logger.error(
                "effects_equivalence_violation",
                max_error=max_error,
                tolerance=tolerance,
                block_size=block_size
            )
            raise EquivalenceViolationError(
                f"Live and offline renders differ by {max_error:.3g} (tolerance {tolerance:.3g})",
                max_error=max_error
            )

        logger.debug("effects_equivalence_ok", max_error=max_error, frames=common)
        return max_error
