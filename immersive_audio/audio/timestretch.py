"""
Streaming phase-vocoder time stretch.

Changes playback speed without changing pitch. A rate of 2.0 plays twice as
fast (half the output duration).
"""

import numpy as np
from numpy.typing import NDArray

from immersive_audio.audio.effects import EffectBase
from immersive_audio.core.exceptions import ValidationError

MIN_RATE = 0.25
MAX_RATE = 4.0


class TimeStretch(EffectBase):
    """
    Streaming phase vocoder on planar blocks.

    Analysis frames are taken every hop_a input samples and overlap-added
    every hop_s = hop_a / rate output samples with per-bin phase
    propagation. Output is emitted as soon as it is final, so the amount
    returned per call varies.
    """

    def __init__(
        self,
        sample_rate: int,
        n_channels: int,
        n_fft: int = 2048,
        hop_a: int = 512
    ):
        super().__init__(sample_rate)
        self.n_channels = n_channels
        self.n_fft = int(n_fft)
        self.hop_a = int(hop_a)
        self.rate = 1.0
        self.hop_s = self.hop_a
        self.window = np.hanning(self.n_fft)
        self._window_power = float(np.sum(self.window ** 2))

        k = np.arange(self.n_fft // 2 + 1, dtype=np.float64)
        self._omega = 2.0 * np.pi * k / float(self.n_fft)

        self.reset()

    def reset(self) -> None:
        bins = self.n_fft // 2 + 1
        self._inbuf = np.zeros((self.n_channels, 0))
        self._phi_prev = np.zeros((self.n_channels, bins))
        self._phi_sum = np.zeros((self.n_channels, bins))
        self._first_frame = True
        self._outbuf = np.zeros((self.n_channels, 0))
        self._out_read = 0
        self._out_pos = 0
        # Output owed for the input consumed so far, at the rates in effect
        self._out_expected = 0.0
        self._out_total = 0

    @property
    def bypassed(self) -> bool:
        return self.rate == 1.0

    def set_rate(self, rate: float) -> None:
        """
        Set the speed multiplier.

        Raises:
            ValidationError: If rate is not positive
        """
        if rate <= 0:
            raise ValidationError(f"Playback rate must be positive, got {rate}")
        self.rate = float(np.clip(rate, MIN_RATE, MAX_RATE))
        self.hop_s = max(1, int(round(self.hop_a / self.rate)))

    @staticmethod
    def _principal_arg(x: NDArray[np.float64]) -> NDArray[np.float64]:
        return (x + np.pi) % (2.0 * np.pi) - np.pi

    def _process_one_frame(self, frame: NDArray[np.float64]) -> NDArray[np.float64]:
        spectrum = np.fft.rfft(frame * self.window, axis=1)
        mag = np.abs(spectrum)
        phi = np.angle(spectrum)

        if self._first_frame:
            self._phi_sum = phi.copy()
            self._first_frame = False
        else:
            delta = self._principal_arg(phi - self._phi_prev - self._omega * self.hop_a)
            true_freq = self._omega + delta / float(self.hop_a)
            self._phi_sum = self._phi_sum + true_freq * float(self.hop_s)
        self._phi_prev = phi

        frame_out = np.fft.irfft(mag * np.exp(1j * self._phi_sum), n=self.n_fft, axis=1)
        # Overlap-add of squared Hann windows at hop_s sums to window_power / hop_s
        return frame_out * self.window * (self.hop_s / self._window_power)

    def process(self, block: NDArray[np.float64]) -> NDArray[np.float64]:
        if self.bypassed:
            return block

        if block.shape[1]:
            self._inbuf = np.concatenate([self._inbuf, block], axis=1)
            self._out_expected += block.shape[1] * self.hop_s / self.hop_a

        self._analyze()
        return self._emit()

    def flush(self) -> NDArray[np.float64]:
        """
        Drain everything still buffered and reset.

        The input tail is zero-padded through the vocoder and the output is
        cut to the stretched length of the input, so the total emitted is
        round(input_frames / rate).
        """
        if self.bypassed or self._out_expected == 0.0:
            self.reset()
            return np.zeros((self.n_channels, 0))

        self._inbuf = np.concatenate(
            [self._inbuf, np.zeros((self.n_channels, self.n_fft))], axis=1
        )
        self._analyze()

        owed = int(round(self._out_expected)) - self._out_total
        end = min(self._out_read + max(0, owed), self._outbuf.shape[1])
        out = self._outbuf[:, self._out_read:end].copy()

        self.reset()
        return out

    def _analyze(self) -> None:
        while self._inbuf.shape[1] >= self.n_fft:
            frame = self._inbuf[:, :self.n_fft]
            self._inbuf = self._inbuf[:, self.hop_a:]

            yframe = self._process_one_frame(frame)

            needed = self._out_pos + self.n_fft
            if self._outbuf.shape[1] < needed:
                grow = needed - self._outbuf.shape[1]
                self._outbuf = np.concatenate(
                    [self._outbuf, np.zeros((self.n_channels, grow))], axis=1
                )

            self._outbuf[:, self._out_pos:self._out_pos + self.n_fft] += yframe
            self._out_pos += self.hop_s

            if self._out_read > 8192:
                self._outbuf = self._outbuf[:, self._out_read:]
                self._out_pos -= self._out_read
                self._out_read = 0

    def _emit(self) -> NDArray[np.float64]:
        # Only samples before _out_pos receive no further overlap
        finalized_end = min(self._out_pos, self._outbuf.shape[1])
        if finalized_end <= self._out_read:
            return np.zeros((self.n_channels, 0))
        out = self._outbuf[:, self._out_read:finalized_end].copy()
        self._out_read = finalized_end
        self._out_total += out.shape[1]
        return out
