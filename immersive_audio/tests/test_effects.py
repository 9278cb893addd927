"""
Tests for impulse synthesis and the dry/wet effects graph.
"""

import numpy as np
import pytest

from immersive_audio.audio.buffer import ImpulseResponse, SampleBuffer
from immersive_audio.audio.effects import (
    EffectsConfig,
    EffectsGraph,
    StreamingEffects,
    normalization_scale,
    render_offline
)
from immersive_audio.audio.impulse import default_impulse, synthesize_impulse
from immersive_audio.core.exceptions import EquivalenceViolationError, ValidationError


class TestImpulseSynthesis:
    """Test reverb kernel generation."""

    def test_shape(self):
        impulse = synthesize_impulse(24000, duration=2.5, decay=2.0)

        assert isinstance(impulse, ImpulseResponse)
        assert impulse.n_channels == 2
        assert impulse.frame_count == 60000
        assert np.max(np.abs(impulse.channels)) <= 1.0

    def test_decay_envelope(self, rng):
        """Energy in the second half is far below energy at the start."""
        impulse = synthesize_impulse(24000, duration=2.5, decay=2.0, rng=rng)
        samples = impulse.channels
        n = impulse.frame_count

        head_energy = np.mean(samples[:, :n // 10] ** 2)
        tail_energy = np.mean(samples[:, n // 2:] ** 2)

        assert tail_energy < 0.1 * head_energy

    def test_channels_independent(self, rng):
        impulse = synthesize_impulse(24000, duration=0.5, rng=rng)
        left, right = impulse.channels

        assert abs(np.corrcoef(left, right)[0, 1]) < 0.1

    def test_reproducible_with_seed(self):
        a = synthesize_impulse(8000, duration=0.1, rng=np.random.default_rng(7))
        b = synthesize_impulse(8000, duration=0.1, rng=np.random.default_rng(7))

        np.testing.assert_array_equal(a.channels, b.channels)

    def test_default_impulse_matches_settings(self):
        a = default_impulse(8000, rng=np.random.default_rng(2))
        b = synthesize_impulse(8000, duration=2.5, decay=2.0, rng=np.random.default_rng(2))

        np.testing.assert_array_equal(a.channels, b.channels)

    def test_zero_length_rejected(self):
        with pytest.raises(ValidationError):
            synthesize_impulse(24000, duration=0.0)

    def test_impulse_must_be_stereo(self):
        with pytest.raises(ValidationError):
            ImpulseResponse(np.zeros((1, 10)), 24000)


class TestEffectsConfig:
    """Test gain validation and normalization."""

    def test_gain_range(self, short_impulse):
        with pytest.raises(ValidationError):
            EffectsConfig(impulse=short_impulse, dry_gain=1.5)
        with pytest.raises(ValidationError):
            EffectsConfig(impulse=short_impulse, wet_gain=-0.1)

    def test_gains_need_not_sum_to_one(self, short_impulse):
        config = EffectsConfig(impulse=short_impulse, dry_gain=0.7, wet_gain=0.35)
        assert config.dry_gain + config.wet_gain > 1.0

    def test_wet_scale(self, short_impulse):
        normalized = EffectsConfig(impulse=short_impulse, wet_gain=0.5)
        raw = EffectsConfig(impulse=short_impulse, wet_gain=0.5, normalize=False)

        assert raw.wet_scale == 0.5
        assert normalized.wet_scale == pytest.approx(0.5 * normalization_scale(short_impulse))

    def test_normalization_independent_of_kernel_level(self, short_impulse):
        loud = ImpulseResponse(short_impulse.channels * 4.0, short_impulse.sample_rate)

        ratio = normalization_scale(short_impulse) / normalization_scale(loud)
        assert ratio == pytest.approx(4.0)

    def test_default(self, rng):
        config = EffectsConfig.default(24000, rng=rng)

        assert config.dry_gain == 0.7
        assert config.wet_gain == 0.35
        assert config.impulse.frame_count == 60000


class TestOfflineRender:
    """Test whole-buffer rendering."""

    def test_output_length_keeps_tail(self, speech_like, effects_config):
        rendered = render_offline(speech_like, effects_config)

        expected = speech_like.frame_count + effects_config.impulse.frame_count - 1
        assert rendered.frame_count == expected
        assert rendered.n_channels == 2
        assert np.any(rendered.channels[:, speech_like.frame_count:])

    def test_dry_only(self, speech_like, short_impulse):
        config = EffectsConfig(impulse=short_impulse, dry_gain=1.0, wet_gain=0.0)
        rendered = render_offline(speech_like, config)

        np.testing.assert_allclose(
            rendered.channels[0, :speech_like.frame_count],
            speech_like.channels[0]
        )
        assert not np.any(rendered.channels[:, speech_like.frame_count:])

    def test_wet_matches_direct_convolution(self, short_impulse):
        dry = SampleBuffer(np.r_[1.0, np.zeros(9)], short_impulse.sample_rate)
        config = EffectsConfig(impulse=short_impulse, dry_gain=0.0, wet_gain=1.0, normalize=False)
        rendered = render_offline(dry, config)

        n = short_impulse.frame_count
        np.testing.assert_allclose(rendered.channels[:, :n], short_impulse.channels, atol=1e-12)
        np.testing.assert_allclose(rendered.channels[:, n:], 0.0, atol=1e-12)

    def test_mono_downmix(self, speech_like, effects_config):
        stereo = render_offline(speech_like, effects_config)
        mono = render_offline(speech_like, effects_config, channels=1)

        assert mono.n_channels == 1
        np.testing.assert_allclose(mono.channels[0], stereo.channels.mean(axis=0))

    def test_empty_input(self, effects_config):
        empty = SampleBuffer(np.zeros((1, 0)), 24000)
        rendered = render_offline(empty, effects_config)

        assert rendered.frame_count == 0

    def test_rate_mismatch(self, speech_like):
        impulse = synthesize_impulse(48000, duration=0.01)
        with pytest.raises(ValidationError):
            render_offline(speech_like, EffectsConfig(impulse=impulse))

    def test_too_many_channels(self, effects_config):
        surround = SampleBuffer(np.zeros((6, 10)), 24000)
        with pytest.raises(ValidationError):
            render_offline(surround, effects_config)

    def test_does_not_mutate_input(self, speech_like, effects_config):
        before = speech_like.channels.copy()
        render_offline(speech_like, effects_config)

        np.testing.assert_array_equal(speech_like.channels, before)


class TestStreamingEquivalence:
    """Live and offline evaluation of the same graph must agree."""

    @pytest.mark.parametrize("block_size", [128, 1000, 4096])
    def test_matches_offline(self, speech_like, effects_config, block_size):
        graph = EffectsGraph(effects_config)

        offline = graph.render_offline(speech_like).channels
        live = graph.render_streamed(speech_like, block_size=block_size).channels

        assert live.shape[1] == speech_like.frame_count
        assert np.max(np.abs(offline[:, :live.shape[1]] - live)) < 1e-4

    def test_irregular_blocks(self, speech_like, effects_config):
        streaming = StreamingEffects(effects_config, block_size=512)
        sizes = [1, 17, 511, 512, 513, 2000, 64]

        blocks, start = [], 0
        for size in sizes * 10:
            if start >= speech_like.frame_count:
                break
            blocks.append(streaming.process(speech_like.channels[:, start:start + size]))
            start += size

        live = np.concatenate(blocks, axis=1)
        offline = render_offline(speech_like, effects_config).channels

        assert np.max(np.abs(offline[:, :live.shape[1]] - live)) < 1e-4

    def test_flush_completes_tail(self, speech_like, effects_config):
        streaming = StreamingEffects(effects_config, block_size=1024)
        body = streaming.process(speech_like.channels)
        tail = streaming.flush()

        live = np.concatenate([body, tail], axis=1)
        offline = render_offline(speech_like, effects_config).channels

        assert live.shape == offline.shape
        assert np.max(np.abs(offline - live)) < 1e-4

    def test_reset_clears_tail(self, speech_like, effects_config):
        streaming = StreamingEffects(effects_config, block_size=256)
        streaming.process(speech_like.channels)
        streaming.reset()

        silence = streaming.process(np.zeros((1, 256)))
        assert not np.any(silence)

    def test_check_equivalence(self, speech_like, effects_config):
        graph = EffectsGraph(effects_config)
        assert graph.check_equivalence(speech_like, block_size=333) < 1e-4

    def test_check_equivalence_violation(self, speech_like, effects_config):
        graph = EffectsGraph(effects_config)

        with pytest.raises(EquivalenceViolationError) as exc_info:
            graph.check_equivalence(speech_like, tolerance=0.0)
        assert exc_info.value.max_error >= 0.0
