"""
Offline rendering and export endpoints.
"""

from pathlib import PurePath
from typing import List

import numpy as np
from fastapi import APIRouter, Response
from pydantic import BaseModel, Field

from immersive_audio.audio.codec import WAV_CONTENT_TYPE, decode_base64, encode_wav
from immersive_audio.audio.effects import EffectsConfig, render_offline
from immersive_audio.audio.impulse import synthesize_impulse
from immersive_audio.audio.panning import PanAutomationParams, pan_at
from immersive_audio.core.config import settings
from immersive_audio.core.exceptions import ValidationError
from immersive_audio.core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()

MAX_PAN_CURVE_POINTS = 100_000


class RenderRequest(BaseModel):
    """Speech payload plus effect settings for export."""
    audio_base64: str = Field(..., description="Base64 PCM16 little-endian samples")
    sample_rate: int = Field(default_factory=lambda: settings.speech_sample_rate, gt=0)
    channel_count: int = Field(default_factory=lambda: settings.speech_channels, ge=1, le=2)
    dry_gain: float = Field(default_factory=lambda: settings.dry_gain, ge=0.0, le=1.0)
    wet_gain: float = Field(default_factory=lambda: settings.wet_gain, ge=0.0, le=1.0)
    impulse_duration: float = Field(default_factory=lambda: settings.impulse_duration, gt=0.0, le=10.0)
    impulse_decay: float = Field(default_factory=lambda: settings.impulse_decay, gt=0.0)
    apply_effects: bool = True
    output_channels: int = Field(2, ge=1, le=2)
    filename: str = "meditation.wav"

    model_config = {
        "json_schema_extra": {
            "example": {
                "audio_base64": "AAAAAA==",
                "sample_rate": 24000,
                "channel_count": 1,
                "filename": "morning.wav"
            }
        }
    }


class PanCurveRequest(BaseModel):
    """Sampling request for previewing the 8D pan automation."""
    duration: float = Field(..., gt=0.0)
    step: float = Field(0.1, gt=0.0)
    hold_duration: float = Field(default_factory=lambda: settings.pan_hold_duration, ge=0.0)
    transition_duration: float = Field(default_factory=lambda: settings.pan_transition_duration, ge=0.0)


class PanCurveResponse(BaseModel):
    times: List[float]
    pan: List[float]


def _attachment_name(filename: str) -> str:
    name = PurePath(filename.replace("\\", "/")).name.replace('"', "")
    if not name:
        name = "audio.wav"
    if not name.lower().endswith(".wav"):
        name += ".wav"
    return name


@router.post("/render")
async def render_audio(request: RenderRequest) -> Response:
    """
    Decode speech, apply the reverb graph offline and return a WAV download.
    """
    dry = decode_base64(request.audio_base64, request.sample_rate, request.channel_count)

    if request.apply_effects:
        impulse = synthesize_impulse(
            dry.sample_rate,
            duration=request.impulse_duration,
            decay=request.impulse_decay
        )
        config = EffectsConfig(
            impulse=impulse,
            dry_gain=request.dry_gain,
            wet_gain=request.wet_gain
        )
        rendered = render_offline(dry, config, channels=request.output_channels)
    else:
        rendered = dry

    payload = encode_wav(rendered)
    filename = _attachment_name(request.filename)

    logger.info(
        "render_exported",
        filename=filename,
        bytes=len(payload),
        effects=request.apply_effects,
        frames=rendered.frame_count
    )

    return Response(
        content=payload,
        media_type=WAV_CONTENT_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


@router.post("/pan-curve", response_model=PanCurveResponse)
async def pan_curve(request: PanCurveRequest) -> PanCurveResponse:
    """Sample pan_at() over a time range for UI previews."""
    n_points = int(request.duration / request.step) + 1
    if n_points > MAX_PAN_CURVE_POINTS:
        raise ValidationError(
            f"Pan curve would have {n_points} points (max {MAX_PAN_CURVE_POINTS})"
        )

    params = PanAutomationParams(
        hold_duration=request.hold_duration,
        transition_duration=request.transition_duration
    )
    times = np.arange(n_points) * request.step

    return PanCurveResponse(
        times=[float(t) for t in times],
        pan=[pan_at(float(t), params) for t in times]
    )
