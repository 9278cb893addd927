"""
Audio pipeline: decoding, effects, 8D panning and playback.
"""

from immersive_audio.audio.buffer import ImpulseResponse, SampleBuffer
from immersive_audio.audio.codec import (
    WAV_CONTENT_TYPE,
    decode_base64,
    decode_pcm16,
    encode_wav,
    write_wav
)
from immersive_audio.audio.impulse import synthesize_impulse
from immersive_audio.audio.effects import (
    EffectsConfig,
    EffectsGraph,
    StreamingEffects,
    render_offline
)
from immersive_audio.audio.clock import Clock, DeviceClock, FakeClock
from immersive_audio.audio.panning import (
    PanAutomationParams,
    PanningScheduler,
    PanPoller,
    SmoothedPan,
    StereoPanner,
    pan_at
)
from immersive_audio.audio.output import AudioOutput, ManualOutput, SoundDeviceOutput
from immersive_audio.audio.engine import LiveEngine
from immersive_audio.audio.controller import PlaybackController, PlaybackSession, PlaybackState

__all__ = [
    'SampleBuffer',
    'ImpulseResponse',
    'WAV_CONTENT_TYPE',
    'decode_pcm16',
    'decode_base64',
    'encode_wav',
    'write_wav',
    'synthesize_impulse',
    'EffectsConfig',
    'EffectsGraph',
    'StreamingEffects',
    'render_offline',
    'Clock',
    'DeviceClock',
    'FakeClock',
    'PanAutomationParams',
    'PanningScheduler',
    'PanPoller',
    'SmoothedPan',
    'StereoPanner',
    'pan_at',
    'AudioOutput',
    'ManualOutput',
    'SoundDeviceOutput',
    'LiveEngine',
    'PlaybackController',
    'PlaybackSession',
    'PlaybackState'
]
