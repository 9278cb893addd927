"""
PCM16 sample decoding and RIFF/WAVE container encoding.

Quantization is intentionally asymmetric. Decoding divides every integer by
32768, so the largest positive sample decodes to 32767/32768 rather than 1.0.
Encoding scales values <= 0 by 32768 and values > 0 by 32767, truncating
toward zero. Silence and the negative peak survive a round trip exactly; the
positive side loses at most one quantization step. Audio that was already
generated upstream depends on this scaling, so it must stay asymmetric.
"""

import base64
import binascii
import struct
from pathlib import Path
from typing import Union

import numpy as np

from immersive_audio.audio.buffer import SampleBuffer
from immersive_audio.core.exceptions import DecodeError, EmptyInputError, ValidationError
from immersive_audio.core.logging import get_logger

logger = get_logger(__name__)

BytesLike = Union[bytes, bytearray, memoryview]

PCM16_NEGATIVE_SCALE = 32768.0
PCM16_POSITIVE_SCALE = 32767.0
BYTES_PER_SAMPLE = 2

WAV_HEADER_SIZE = 44
WAV_CONTENT_TYPE = "audio/wav"

# RIFF, size-8, WAVE, fmt , 16, PCM, channels, rate, byte rate, block align, bits, data, data size
_WAV_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")


def decode_pcm16(data: BytesLike, sample_rate: int, channel_count: int) -> SampleBuffer:
    """
    Decode interleaved signed 16-bit little-endian PCM.

    Args:
        data: Raw PCM bytes, frame-major (all channels of frame 0, then frame 1...)
        sample_rate: Sample rate in Hz
        channel_count: Number of interleaved channels

    Returns:
        SampleBuffer with samples normalized by 1/32768

    Raises:
        EmptyInputError: If data is empty
    """
    if channel_count <= 0:
        raise ValidationError(f"Channel count must be positive, got {channel_count}")
    if sample_rate <= 0:
        raise ValidationError(f"Sample rate must be positive, got {sample_rate}")

    raw = bytes(data)
    if len(raw) == 0:
        raise EmptyInputError()

    frame_bytes = BYTES_PER_SAMPLE * channel_count
    frame_count = len(raw) // frame_bytes
    usable = frame_count * frame_bytes

    if usable != len(raw):
        # Incomplete trailing frame is dropped, not an error
        logger.warning(
            "truncated_frame_dropped",
            dropped_bytes=len(raw) - usable,
            channel_count=channel_count
        )

    if frame_count == 0:
        return SampleBuffer(np.zeros((channel_count, 0)), sample_rate)

    ints = np.frombuffer(raw[:usable], dtype="<i2")
    samples = ints.astype(np.float64) / PCM16_NEGATIVE_SCALE

    return SampleBuffer(samples.reshape(frame_count, channel_count).T, sample_rate)


def decode_base64(
    payload: Union[str, bytes],
    sample_rate: int = 24000,
    channel_count: int = 1
) -> SampleBuffer:
    """
    Decode a base64-transported PCM16 payload, as returned by the speech service.

    Raises:
        DecodeError: If the payload is not valid base64
        EmptyInputError: If the payload decodes to zero bytes
    """
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Invalid base64 audio payload: {e}") from e

    return decode_pcm16(raw, sample_rate, channel_count)


def encode_base64(data: BytesLike) -> str:
    """Base64-encode raw bytes for transport."""
    return base64.b64encode(bytes(data)).decode("ascii")


def quantize_pcm16(buffer: SampleBuffer) -> np.ndarray:
    """
    Convert float samples to int16 with clamping and asymmetric scaling.

    Returns:
        Array of shape (frame_count, n_channels), dtype int16
    """
    clamped = np.clip(np.nan_to_num(buffer.interleaved(), nan=0.0), -1.0, 1.0)
    scaled = np.where(
        clamped > 0.0,
        clamped * PCM16_POSITIVE_SCALE,
        clamped * PCM16_NEGATIVE_SCALE
    )
    return np.trunc(scaled).astype("<i2")


def encode_pcm16(buffer: SampleBuffer) -> bytes:
    """Interleaved PCM16 LE payload without a container header."""
    return np.ascontiguousarray(quantize_pcm16(buffer)).tobytes()


def wav_header(n_channels: int, sample_rate: int, frame_count: int) -> bytes:
    """Build the canonical 44-byte PCM WAVE header."""
    block_align = n_channels * BYTES_PER_SAMPLE
    data_size = frame_count * block_align

    return _WAV_HEADER.pack(
        b"RIFF",
        WAV_HEADER_SIZE + data_size - 8,
        b"WAVE",
        b"fmt ",
        16,
        1,
        n_channels,
        sample_rate,
        sample_rate * block_align,
        block_align,
        16,
        b"data",
        data_size
    )


def encode_wav(buffer: SampleBuffer) -> bytes:
    """
    Serialize a buffer into a RIFF/WAVE byte stream.

    Args:
        buffer: Samples to encode

    Returns:
        Complete WAV file bytes (header + interleaved PCM16)
    """
    header = wav_header(buffer.n_channels, buffer.sample_rate, buffer.frame_count)
    return header + encode_pcm16(buffer)


def write_wav(buffer: SampleBuffer, path: Union[str, Path]) -> Path:
    """
    Write a buffer to disk as a WAV file.

    Args:
        buffer: Samples to encode
        path: Caller-supplied destination filename

    Returns:
        Path that was written
    """
    path = Path(path)
    payload = encode_wav(buffer)
    path.write_bytes(payload)

    logger.info(
        "wav_written",
        path=str(path),
        bytes=len(payload),
        frames=buffer.frame_count,
        channels=buffer.n_channels
    )
    return path
