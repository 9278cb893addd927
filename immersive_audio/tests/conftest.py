"""
Shared fixtures for audio pipeline tests.
"""

import numpy as np
import pytest

from immersive_audio.audio.buffer import SampleBuffer
from immersive_audio.audio.effects import EffectsConfig
from immersive_audio.audio.impulse import synthesize_impulse


@pytest.fixture
def sample_rate():
    return 24000


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def short_impulse(sample_rate, rng):
    """Short kernel so convolution tests stay fast."""
    return synthesize_impulse(sample_rate, duration=0.05, decay=2.0, rng=rng)


@pytest.fixture
def effects_config(short_impulse):
    return EffectsConfig(impulse=short_impulse, dry_gain=0.7, wet_gain=0.35)


@pytest.fixture
def speech_like(sample_rate, rng):
    """Half a second of band-limited noise under a slow envelope."""
    n = sample_rate // 2
    t = np.arange(n) / sample_rate
    tone = 0.4 * np.sin(2 * np.pi * 220.0 * t) + 0.1 * rng.standard_normal(n)
    envelope = 0.5 * (1 - np.cos(2 * np.pi * 3.0 * t))
    return SampleBuffer(tone * envelope, sample_rate)
