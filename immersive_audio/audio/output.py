"""
Audio output backends.

A backend pulls stereo blocks from a LiveEngine. SoundDeviceOutput feeds a
PortAudio stream through python-sounddevice; ManualOutput lets tests pull
blocks explicitly.
"""

import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional

import numpy as np

from immersive_audio.core.config import settings
from immersive_audio.core.exceptions import DeviceUnavailableError
from immersive_audio.core.logging import get_logger

logger = get_logger(__name__)

OUTPUT_CHANNELS = 2


class AudioOutput(ABC):
    """Pull-based output device."""

    def __init__(self, sample_rate: int):
        self.sample_rate = sample_rate
        self.frames_delivered = 0
        self._engine = None
        self._on_finished: Optional[Callable[[], None]] = None
        self._suspended = False

    @property
    def active(self) -> bool:
        """True while open and not suspended."""
        return self._engine is not None and not self._suspended

    @abstractmethod
    def open(self, engine, on_finished: Optional[Callable[[], None]] = None) -> None:
        """
        Start pulling audio from the engine.

        Raises:
            DeviceUnavailableError: If the device cannot be started
        """
        pass

    @abstractmethod
    def suspend(self) -> None:
        pass

    @abstractmethod
    def resume(self) -> None:
        pass

    @abstractmethod
    def close(self) -> None:
        pass


class ManualOutput(AudioOutput):
    """
    Output whose blocks are pulled by the caller.

    End of stream is reported synchronously from pull().
    """

    def __init__(self, sample_rate: int, fail_on_open: bool = False):
        super().__init__(sample_rate)
        self.fail_on_open = fail_on_open
        self.closed = False

    def open(self, engine, on_finished: Optional[Callable[[], None]] = None) -> None:
        if self.fail_on_open:
            raise DeviceUnavailableError("Manual output configured to fail")
        self._engine = engine
        self._on_finished = on_finished
        self._suspended = False
        self.closed = False

    def pull(self, frames: int) -> np.ndarray:
        """
        Render the next block as the device would.

        Returns:
            Array of shape (frames, 2); silence while suspended or closed
        """
        engine = self._engine
        if engine is None or self._suspended:
            return np.zeros((frames, OUTPUT_CHANNELS), dtype=np.float32)

        block = engine.render(frames)
        self.frames_delivered += frames

        if engine.finished and self._on_finished is not None:
            callback = self._on_finished
            self._on_finished = None
            callback()
        return block

    def suspend(self) -> None:
        self._suspended = True

    def resume(self) -> None:
        self._suspended = False

    def close(self) -> None:
        self._engine = None
        self._on_finished = None
        self.closed = True


class SoundDeviceOutput(AudioOutput):
    """
    PortAudio output stream via python-sounddevice.

    Suspend/resume stop and restart the stream, so no frames are consumed
    while paused. End of stream is reported from a helper thread so the
    audio thread never waits on the controller.
    """

    def __init__(
        self,
        sample_rate: int,
        block_size: Optional[int] = None,
        device: Optional[int] = None
    ):
        super().__init__(sample_rate)
        self.block_size = block_size if block_size is not None else settings.block_size
        self.device = device if device is not None else settings.output_device
        self._stream = None
        self._closing = False

    def open(self, engine, on_finished: Optional[Callable[[], None]] = None) -> None:
        try:
            import sounddevice as sd
        except (ImportError, OSError) as e:
            raise DeviceUnavailableError(f"sounddevice not available: {e}") from e

        self._engine = engine
        self._on_finished = on_finished
        self._suspended = False
        self._closing = False

        def callback(outdata, frames, time_info, status):
            if status:
                logger.debug("output_stream_status", status=str(status))
            outdata[:] = engine.render(frames)
            self.frames_delivered += frames
            if engine.finished:
                raise sd.CallbackStop

        try:
            self._stream = sd.OutputStream(
                samplerate=self.sample_rate,
                channels=OUTPUT_CHANNELS,
                dtype="float32",
                blocksize=self.block_size,
                device=self.device,
                callback=callback,
                finished_callback=self._stream_finished
            )
            self._stream.start()
        except Exception as e:
            self._engine = None
            self._stream = None
            raise DeviceUnavailableError(f"Audio output error: {e}") from e

        logger.info(
            "output_stream_started",
            sample_rate=self.sample_rate,
            block_size=self.block_size,
            device=self.device
        )

    def _stream_finished(self) -> None:
        # Fires on CallbackStop, but also on stop()/close(); only report real ends
        engine = self._engine
        callback = self._on_finished
        if self._closing or engine is None or not engine.finished or callback is None:
            return
        self._on_finished = None
        threading.Thread(target=callback, name="output-finished", daemon=True).start()

    def suspend(self) -> None:
        if self._suspended or self._stream is None:
            return
        self._suspended = True
        self._stream.stop()

    def resume(self) -> None:
        if not self._suspended or self._stream is None:
            return
        self._suspended = False
        self._stream.start()

    def close(self) -> None:
        self._closing = True
        stream = self._stream
        self._stream = None
        self._engine = None
        self._on_finished = None
        if stream is not None:
            stream.close()
            logger.info("output_stream_closed", frames_delivered=self.frames_delivered)
