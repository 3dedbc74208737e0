import numpy as np
import pytest

from stringtune.pipeline.spectral import SpectralRefiner, parabolic_offset
from stringtune.tests.audio_utils import generate_sine_wave


class TestParabolicOffset:
    def test_symmetric_peak(self):
        assert parabolic_offset(1.0, 2.0, 1.0) == pytest.approx(0.0)

    def test_leans_towards_larger_neighbour(self):
        assert parabolic_offset(1.0, 2.0, 1.5) > 0.0
        assert parabolic_offset(1.5, 2.0, 1.0) < 0.0

    def test_flat_returns_none(self):
        assert parabolic_offset(1.0, 1.0, 1.0) is None


class TestSpectralRefiner:
    @pytest.fixture
    def refiner(self):
        return SpectralRefiner(48000, 4096)

    def test_window_is_periodic_hann(self, refiner):
        n = np.arange(refiner.size)
        expected = 0.5 - 0.5 * np.cos(2 * np.pi * n / refiner.size)
        np.testing.assert_allclose(refiner.window, expected, atol=1e-12)

    @pytest.mark.parametrize("freq", [82.41, 440.0])
    def test_refines_below_bin_resolution(self, refiner, freq):
        audio = generate_sine_wave(freq, 4096 / 48000.0)
        rough = round(freq / refiner.bin_resolution) * refiner.bin_resolution
        refined = refiner.refine(audio, rough)
        assert refined is not None
        assert abs(refined - freq) < 1.0

    def test_rejects_edge_bins(self, refiner):
        audio = generate_sine_wave(10.0, 0.1)
        assert refiner.refine(audio, 10.0) is None
        assert refiner.refine(audio, 23990.0) is None

    def test_rejects_invalid_estimate(self, refiner):
        audio = generate_sine_wave(110.0, 0.1)
        assert refiner.refine(audio, 0.0) is None
        assert refiner.refine(audio, float("inf")) is None

    def test_short_buffer_is_zero_padded(self, refiner):
        audio = generate_sine_wave(440.0, 0.05)
        assert len(audio) < refiner.size
        refined = refiner.refine(audio, 440.0)
        assert refined is not None
        assert abs(refined - 440.0) < refiner.bin_resolution

    def test_long_buffer_uses_tail(self, refiner):
        head = np.zeros(10000)
        tail = generate_sine_wave(440.0, 4096 / 48000.0)
        refined = refiner.refine(np.concatenate([head, tail]), 440.0)
        assert abs(refined - 440.0) < 1.0
