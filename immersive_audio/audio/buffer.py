"""
Immutable multi-channel sample buffers.
"""

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from immersive_audio.core.exceptions import ValidationError


@dataclass(frozen=True, eq=False)
class SampleBuffer:
    """
    Planar float sample buffer.

    Samples are stored as a read-only array of shape (n_channels, frame_count).
    Values are not clamped here; clamping happens only when encoding.

    Attributes:
        channels: Array of shape (n_channels, frame_count)
        sample_rate: Sample rate in Hz
    """
    channels: NDArray[np.float64]
    sample_rate: int

    def __post_init__(self) -> None:
        data = np.array(self.channels, dtype=np.float64)
        if data.ndim == 1:
            data = data[np.newaxis, :]
        if data.ndim != 2 or data.shape[0] == 0:
            raise ValidationError(
                f"Expected (n_channels, frame_count) samples, got shape {data.shape}"
            )
        if int(self.sample_rate) <= 0:
            raise ValidationError(f"Sample rate must be positive, got {self.sample_rate}")

        data.setflags(write=False)
        object.__setattr__(self, "channels", data)
        object.__setattr__(self, "sample_rate", int(self.sample_rate))

    @property
    def n_channels(self) -> int:
        return self.channels.shape[0]

    @property
    def frame_count(self) -> int:
        return self.channels.shape[1]

    @property
    def duration(self) -> float:
        """Length in seconds."""
        return self.frame_count / self.sample_rate

    def interleaved(self) -> NDArray[np.float64]:
        """Frame-major view of shape (frame_count, n_channels)."""
        return self.channels.T

    def copy(self) -> "SampleBuffer":
        """Independent clone, e.g. for handing to an exporter."""
        return type(self)(self.channels.copy(), self.sample_rate)

    @classmethod
    def silence(cls, frame_count: int, n_channels: int = 1, sample_rate: int = 24000) -> "SampleBuffer":
        return cls(np.zeros((n_channels, frame_count)), sample_rate)

    @classmethod
    def from_interleaved(cls, frames: NDArray, sample_rate: int) -> "SampleBuffer":
        """Build from an array of shape (frame_count, n_channels)."""
        frames = np.asarray(frames, dtype=np.float64)
        if frames.ndim == 1:
            frames = frames[:, np.newaxis]
        return cls(frames.T, sample_rate)


@dataclass(frozen=True, eq=False)
class ImpulseResponse(SampleBuffer):
    """Stereo reverb kernel. Always exactly two channels."""

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.n_channels != 2:
            raise ValidationError(
                f"Impulse response must have 2 channels, got {self.n_channels}"
            )
