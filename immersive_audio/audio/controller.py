"""
Playback controller.

Owns the playback session and its live resources, and moves between
states only through the transition table below. Anything not in the table
is rejected with InvalidTransitionError.
"""

import threading
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple, Union

from immersive_audio.audio.buffer import ImpulseResponse, SampleBuffer
from immersive_audio.audio.clock import Clock, DeviceClock
from immersive_audio.audio.codec import encode_wav
from immersive_audio.audio.effects import EffectsConfig, EffectsGraph, render_offline
from immersive_audio.audio.engine import LiveEngine
from immersive_audio.audio.impulse import default_impulse
from immersive_audio.audio.output import AudioOutput, SoundDeviceOutput
from immersive_audio.audio.panning import (
    PanAutomationParams,
    PanningScheduler,
    PanPoller,
    SmoothedPan,
)
from immersive_audio.core.config import settings
from immersive_audio.core.exceptions import (
    BufferNotLoadedError,
    DeviceUnavailableError,
    InvalidTransitionError,
    ValidationError,
)
from immersive_audio.core.logging import bind_session, clear_session, get_logger

logger = get_logger(__name__)


class PlaybackState(Enum):
    """States of a playback controller."""
    IDLE = "idle"
    GENERATING = "generating"
    PLAYING = "playing"
    PAUSED = "paused"
    READY = "ready"
    ERROR = "error"


_S = PlaybackState

TRANSITIONS: Dict[Tuple[PlaybackState, str], PlaybackState] = {
    (_S.IDLE, "generate"): _S.GENERATING,
    (_S.READY, "generate"): _S.GENERATING,
    (_S.GENERATING, "produced"): _S.PLAYING,
    (_S.GENERATING, "failed"): _S.ERROR,
    (_S.IDLE, "play"): _S.PLAYING,
    (_S.READY, "play"): _S.PLAYING,
    (_S.PLAYING, "pause"): _S.PAUSED,
    (_S.PAUSED, "resume"): _S.PLAYING,
    (_S.PLAYING, "end"): _S.READY,
    (_S.PLAYING, "stop"): _S.IDLE,
    (_S.PAUSED, "stop"): _S.IDLE,
    (_S.IDLE, "device_failed"): _S.ERROR,
    (_S.READY, "device_failed"): _S.ERROR,
    (_S.GENERATING, "device_failed"): _S.ERROR,
    (_S.PLAYING, "device_failed"): _S.ERROR,
    (_S.ERROR, "reset"): _S.IDLE,
}


@dataclass
class PlaybackSession:
    """
    Decoded audio plus the parameters it is played with.

    Survives stop and natural end so the buffer can be replayed or exported.
    """
    buffer: SampleBuffer
    effects: EffectsConfig
    pan_params: PanAutomationParams
    state: PlaybackState = PlaybackState.IDLE
    loop: bool = False
    rate: float = 1.0
    clock_origin: float = 0.0
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


class PlaybackController:
    """
    State machine and resource owner for live playback and export.

    All public methods are safe to call from the host's event thread; the
    output device reports natural end from its own thread.
    """

    def __init__(
        self,
        output_factory: Optional[Callable[[int], AudioOutput]] = None,
        clock_factory: Optional[Callable[[AudioOutput], Clock]] = None,
        impulse_factory: Optional[Callable[[int], ImpulseResponse]] = None,
        pan_params: Optional[PanAutomationParams] = None,
        dry_gain: Optional[float] = None,
        wet_gain: Optional[float] = None,
        poll_interval: Optional[float] = None,
        block_size: Optional[int] = None,
        on_state_change: Optional[Callable[[PlaybackState, PlaybackState], None]] = None
    ):
        """
        Initialize controller.

        Args:
            output_factory: Builds an output for a sample rate (default: sounddevice)
            clock_factory: Builds the audio clock for an output (default: DeviceClock)
            impulse_factory: Builds the reverb kernel for a sample rate
            pan_params: 8D cycle timing
            dry_gain: Dry level (default from settings)
            wet_gain: Wet level (default from settings)
            poll_interval: Pan scheduler poll interval in seconds
            block_size: Live render block size in frames
            on_state_change: Called with (old, new) after each transition
        """
        self._output_factory = output_factory or (lambda rate: SoundDeviceOutput(rate))
        self._clock_factory = clock_factory or DeviceClock
        self._impulse_factory = impulse_factory or default_impulse
        self.pan_params = pan_params or PanAutomationParams(
            hold_duration=settings.pan_hold_duration,
            transition_duration=settings.pan_transition_duration
        )
        self.dry_gain = settings.dry_gain if dry_gain is None else dry_gain
        self.wet_gain = settings.wet_gain if wet_gain is None else wet_gain
        self.poll_interval = poll_interval or settings.pan_poll_interval
        self.block_size = block_size or settings.block_size
        self.on_state_change = on_state_change

        self._lock = threading.RLock()
        self._state = PlaybackState.IDLE
        self._loop = False
        self._rate = 1.0
        self._session: Optional[PlaybackSession] = None
        self._impulse_cache: Dict[int, ImpulseResponse] = {}

        # Live resources, present only while PLAYING or PAUSED
        self._output: Optional[AudioOutput] = None
        self._clock: Optional[Clock] = None
        self._engine: Optional[LiveEngine] = None
        self._smoother: Optional[SmoothedPan] = None
        self._scheduler: Optional[PanningScheduler] = None
        self._poller: Optional[PanPoller] = None

    # ------------------------------------------------------------------
    # State

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def session(self) -> Optional[PlaybackSession]:
        return self._session

    @property
    def scheduler(self) -> Optional[PanningScheduler]:
        return self._scheduler

    @property
    def output(self) -> Optional[AudioOutput]:
        return self._output

    @property
    def loop(self) -> bool:
        return self._loop

    @property
    def rate(self) -> float:
        return self._rate

    def _can(self, event: str) -> bool:
        return (self._state, event) in TRANSITIONS

    def _transition(self, event: str) -> PlaybackState:
        key = (self._state, event)
        if key not in TRANSITIONS:
            raise InvalidTransitionError(
                f"Cannot '{event}' while {self._state.value}"
            )

        old, new = self._state, TRANSITIONS[key]
        logger.info("playback_state_changed", transition=event, old=old.value, new=new.value)

        if self._session is not None:
            self._session.state = new
        self._state = new

        self._notify(old, new)
        return new

    def _notify(self, old: PlaybackState, new: PlaybackState) -> None:
        """Notify the state listener; a failing listener never undoes a transition."""
        if self.on_state_change is None:
            return
        try:
            self.on_state_change(old, new)
        except Exception as e:
            logger.error("state_change_callback_error", error=str(e))

    # ------------------------------------------------------------------
    # Session setup

    def _impulse_for(self, sample_rate: int) -> ImpulseResponse:
        impulse = self._impulse_cache.get(sample_rate)
        if impulse is None:
            impulse = self._impulse_factory(sample_rate)
            self._impulse_cache = {sample_rate: impulse}
        return impulse

    def _new_session(self, buffer: SampleBuffer) -> PlaybackSession:
        effects = EffectsConfig(
            impulse=self._impulse_for(buffer.sample_rate),
            dry_gain=self.dry_gain,
            wet_gain=self.wet_gain
        )

        if settings.debug_equivalence_check:
            EffectsGraph(effects).check_equivalence(buffer, block_size=self.block_size)

        session = PlaybackSession(
            buffer=buffer,
            effects=effects,
            pan_params=self.pan_params,
            state=self._state,
            loop=self._loop,
            rate=self._rate
        )
        bind_session(session.session_id)
        logger.info(
            "session_created",
            frames=buffer.frame_count,
            channels=buffer.n_channels,
            sample_rate=buffer.sample_rate,
            duration=buffer.duration
        )
        return session

    def _start_live(self, event: str) -> None:
        session = self._session
        buffer = session.buffer

        output = self._output_factory(buffer.sample_rate)
        clock = self._clock_factory(output)
        smoother = SmoothedPan(buffer.sample_rate, time_constant=settings.pan_smoothing)
        engine = LiveEngine(
            buffer,
            session.effects,
            smoother,
            loop=session.loop,
            rate=session.rate,
            block_size=self.block_size
        )

        try:
            output.open(engine, on_finished=lambda: self._on_natural_end(engine))
        except DeviceUnavailableError as e:
            logger.error("output_device_unavailable", error=e.message)
            output.close()
            self._transition("device_failed")
            raise

        clock.resume()
        session.clock_origin = clock.now()

        self._output = output
        self._clock = clock
        self._engine = engine
        self._smoother = smoother
        self._scheduler = PanningScheduler(session.pan_params, clock, session.clock_origin, smoother)
        self._scheduler.tick()

        try:
            self._start_poller()
            self._transition(event)
        except Exception:
            self._teardown_live()
            raise

        logger.info("playback_started", loop=session.loop, rate=session.rate)

    def _start_poller(self) -> None:
        self._poller = PanPoller(self.poll_interval, self._scheduler.tick)
        self._poller.start()

    def _stop_poller(self) -> None:
        if self._poller is not None:
            self._poller.stop()
            self._poller = None

    def _teardown_live(self) -> None:
        self._stop_poller()
        if self._output is not None:
            self._output.close()
        if self._clock is not None:
            self._clock.suspend()
        self._output = None
        self._clock = None
        self._engine = None
        self._smoother = None
        self._scheduler = None

    # ------------------------------------------------------------------
    # Public operations

    def load(self, buffer: SampleBuffer) -> None:
        """
        Take ownership of a decoded buffer and start playing it.

        Raises:
            InvalidTransitionError: If not IDLE or READY
            DeviceUnavailableError: If the output cannot start (state -> ERROR)
        """
        with self._lock:
            if not self._can("play"):
                raise InvalidTransitionError(f"Cannot load while {self._state.value}")
            self._session = self._new_session(buffer)
            self._start_live("play")

    def generate(self, producer: Callable[[], SampleBuffer]) -> SampleBuffer:
        """
        Produce a buffer with an external collaborator, then play it.

        The producer (e.g. speech synthesis + decode) runs outside the lock.
        Any exception it raises moves the controller to ERROR and is re-raised.

        Returns:
            The produced buffer
        """
        with self._lock:
            self._transition("generate")
            self._session = None

        try:
            buffer = producer()
        except Exception as e:
            with self._lock:
                logger.exception("generation_failed", error=str(e))
                self._transition("failed")
            raise

        with self._lock:
            self._session = self._new_session(buffer)
            self._start_live("produced")
        return buffer

    def play(self) -> None:
        """
        Replay the loaded buffer from the start.

        Raises:
            BufferNotLoadedError: If no buffer has been loaded
        """
        with self._lock:
            if self._session is None:
                raise BufferNotLoadedError("Nothing to play; load or generate audio first")
            if not self._can("play"):
                raise InvalidTransitionError(f"Cannot play while {self._state.value}")
            self._start_live("play")

    def pause(self) -> None:
        """Suspend output and freeze the audio clock. No-op if already paused."""
        with self._lock:
            if self._state is PlaybackState.PAUSED:
                return
            if not self._can("pause"):
                raise InvalidTransitionError(f"Cannot pause while {self._state.value}")

            self._stop_poller()
            self._clock.suspend()
            self._output.suspend()
            self._transition("pause")

    def resume(self) -> None:
        """Continue from the frozen clock offset. No-op if already playing."""
        with self._lock:
            if self._state is PlaybackState.PLAYING:
                return
            if not self._can("resume"):
                raise InvalidTransitionError(f"Cannot resume while {self._state.value}")

            self._output.resume()
            self._clock.resume()
            self._transition("resume")
            self._start_poller()

    def stop(self) -> None:
        """
        Release the live graph and cancel panning; keep the buffer.

        The pan poll is cancelled before this returns. No-op when nothing is
        playing.
        """
        with self._lock:
            if self._state in (PlaybackState.IDLE, PlaybackState.READY):
                return
            if not self._can("stop"):
                raise InvalidTransitionError(f"Cannot stop while {self._state.value}")

            self._teardown_live()
            self._transition("stop")
            logger.info("playback_stopped")

    def _on_natural_end(self, engine: LiveEngine) -> None:
        with self._lock:
            # Ignore ends reported by a session that was already torn down
            if engine is not self._engine or self._state is not PlaybackState.PLAYING:
                return
            self._teardown_live()
            self._transition("end")

    def set_loop(self, loop: bool) -> None:
        with self._lock:
            self._loop = bool(loop)
            if self._session is not None:
                self._session.loop = self._loop
            if self._engine is not None:
                self._engine.set_loop(self._loop)

    def set_rate(self, rate: float) -> None:
        """
        Change playback speed (pitch preserved).

        Raises:
            ValidationError: If rate is not positive
        """
        if rate <= 0:
            raise ValidationError(f"Playback rate must be positive, got {rate}")

        with self._lock:
            self._rate = float(rate)
            if self._session is not None:
                self._session.rate = self._rate
            if self._engine is not None:
                self._engine.set_rate(self._rate)
            logger.info("playback_rate_changed", rate=self._rate)

    def reset(self) -> None:
        """Leave ERROR so playback can be retried."""
        with self._lock:
            if not self._can("reset"):
                raise InvalidTransitionError(f"Cannot reset while {self._state.value}")
            self._teardown_live()
            self._transition("reset")

    def close(self) -> None:
        """Tear down everything, including the loaded buffer."""
        with self._lock:
            self._teardown_live()
            old = self._state
            self._state = PlaybackState.IDLE
            self._session = None
            clear_session()
            if old is not PlaybackState.IDLE:
                self._notify(old, PlaybackState.IDLE)
            logger.info("controller_closed")

    # ------------------------------------------------------------------
    # Export

    def download(self, channels: int = 2) -> bytes:
        """
        Render the loaded buffer with effects and encode it as WAV.

        Effects are always applied offline, whether or not live playback
        ever ran.

        Raises:
            BufferNotLoadedError: If no buffer has been loaded
        """
        with self._lock:
            if self._session is None:
                raise BufferNotLoadedError("Generate audio before downloading")
            session = self._session

        rendered = render_offline(session.buffer, session.effects, channels=channels)
        payload = encode_wav(rendered)

        logger.info(
            "download_prepared",
            bytes=len(payload),
            frames=rendered.frame_count,
            channels=rendered.n_channels
        )
        return payload

    def export(self, path: Union[str, Path], channels: int = 2) -> Path:
        """Write the download bytes to a caller-supplied filename."""
        path = Path(path)
        path.write_bytes(self.download(channels=channels))
        return path

    # ------------------------------------------------------------------
    # Introspection

    def elapsed(self) -> float:
        """Audio-clock seconds since the current session started playing."""
        with self._lock:
            if self._scheduler is None:
                return 0.0
            return self._scheduler.elapsed()

    def status(self) -> Dict:
        with self._lock:
            buffer = self._session.buffer if self._session else None
            return {
                "state": self._state.value,
                "loop": self._loop,
                "rate": self._rate,
                "elapsed": self.elapsed(),
                "pan": self._smoother.current if self._smoother else 0.0,
                "frame_count": buffer.frame_count if buffer else 0,
                "sample_rate": buffer.sample_rate if buffer else None,
            }
