"""
Synthetic reverb impulse responses.
"""

from typing import Optional

import numpy as np

from immersive_audio.audio.buffer import ImpulseResponse
from immersive_audio.core.config import settings
from immersive_audio.core.exceptions import ValidationError
from immersive_audio.core.logging import get_logger

logger = get_logger(__name__)


def synthesize_impulse(
    sample_rate: int,
    duration: float = 2.5,
    decay: float = 2.0,
    rng: Optional[np.random.Generator] = None
) -> ImpulseResponse:
    """
    Generate a decaying stereo noise impulse response.

    Each sample is uniform noise in [-1, 1) shaped by (1 - i/length) ** decay.
    Left and right use independent draws, which gives the reverb its width.

    Args:
        sample_rate: Sample rate in Hz
        duration: Tail length in seconds
        decay: Envelope exponent (higher fades faster)
        rng: Optional random generator for reproducible kernels

    Returns:
        Two-channel ImpulseResponse of round(sample_rate * duration) frames
    """
    length = int(round(sample_rate * duration))
    if length <= 0:
        raise ValidationError(
            f"Impulse duration {duration}s at {sample_rate} Hz yields no samples"
        )

    rng = rng if rng is not None else np.random.default_rng()

    envelope = (1.0 - np.arange(length, dtype=np.float64) / length) ** decay
    noise = rng.uniform(-1.0, 1.0, size=(2, length))

    logger.debug(
        "impulse_synthesized",
        sample_rate=sample_rate,
        duration=duration,
        decay=decay,
        frames=length
    )

    return ImpulseResponse(noise * envelope, sample_rate)


def default_impulse(
    sample_rate: int,
    rng: Optional[np.random.Generator] = None
) -> ImpulseResponse:
    """The application's standard reverb kernel, sized from settings."""
    return synthesize_impulse(
        sample_rate,
        duration=settings.impulse_duration,
        decay=settings.impulse_decay,
        rng=rng
    )
