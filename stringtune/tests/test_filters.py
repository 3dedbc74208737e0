import logging

import numpy as np
import pytest

from stringtune.pipeline.config import FilterConfig
from stringtune.pipeline.filters import Biquad, FilterChain, biquad_coefficients


class TestBiquad:
    @pytest.fixture
    def sr(self):
        return 48000

    def test_coefficients_are_normalised(self, sr):
        b, a = biquad_coefficients("lowpass", sr, 1000.0, 0.707)
        assert a[0] == pytest.approx(1.0)
        # Unity DC gain
        assert np.sum(b) / np.sum(a) == pytest.approx(1.0)

    def test_highpass_unity_gain_at_nyquist(self, sr):
        b, a = biquad_coefficients("highpass", sr, 60.0, 0.707)
        gain = (b[0] - b[1] + b[2]) / (a[0] - a[1] + a[2])
        assert gain == pytest.approx(1.0)

    def test_notch_kills_its_centre(self, sr):
        stage = Biquad.notch(sr, 60.0, q=30.0)
        h = stage.frequency_response(np.array([60.0, 1000.0]))
        assert abs(h[0]) < 1e-6
        assert abs(h[1]) == pytest.approx(1.0, abs=1e-3)

    def test_bandpass_peaks_at_centre(self, sr):
        stage = Biquad.bandpass(sr, 110.0, q=8.0)
        h = stage.frequency_response(np.array([110.0, 55.0, 220.0]))
        assert abs(h[0]) == pytest.approx(1.0, abs=1e-6)
        assert abs(h[1]) < 0.2
        assert abs(h[2]) < 0.2

    @pytest.mark.parametrize(
        "kind,fc,q",
        [
            ("lowpass", 0.0, 0.7),
            ("lowpass", 24000.0, 0.7),
            ("highpass", 60.0, 0.0),
            ("shelf", 100.0, 0.7),
        ],
    )
    def test_invalid_parameters_raise(self, sr, kind, fc, q):
        with pytest.raises(ValueError):
            Biquad(kind, sr, fc, q)

    def test_block_matches_per_sample(self, sr):
        rng = np.random.default_rng(1)
        x = rng.standard_normal(1000)

        a = Biquad.highpass(sr, 60.0)
        b = Biquad.highpass(sr, 60.0)
        y_sample = np.array([a.process(v) for v in x])
        # Split unevenly so the history hand-off between blocks is exercised
        y_block = np.concatenate([b.process_block(x[:333]), b.process_block(x[333:334]), b.process_block(x[334:])])

        np.testing.assert_allclose(y_block, y_sample, rtol=1e-9, atol=1e-12)
        assert (b.x1, b.x2, b.y1, b.y2) == pytest.approx((a.x1, a.x2, a.y1, a.y2))

    def test_reset_clears_history(self, sr):
        stage = Biquad.lowpass(sr, 1000.0)
        stage.process_block(np.ones(64))
        stage.reset()
        assert (stage.x1, stage.x2, stage.y1, stage.y2) == (0.0, 0.0, 0.0, 0.0)


class TestFilterChain:
    def test_default_chain_is_highpass_then_lowpass(self):
        chain = FilterChain.from_config(48000, FilterConfig())
        assert [s.kind for s in chain.stages] == ["highpass", "lowpass"]

    def test_stage_order_is_fixed(self):
        chain = FilterChain.from_config(48000, FilterConfig.from_mask(0b111111))
        chain.add_bandpass(110.0)
        assert [s.kind for s in chain.stages] == [
            "highpass", "notch", "notch", "notch", "notch", "lowpass", "bandpass",
        ]
        assert [s.fc for s in chain.stages[1:5]] == [50.0, 60.0, 100.0, 120.0]

    def test_empty_mask_passes_through(self):
        chain = FilterChain.from_config(48000, FilterConfig.from_mask(0))
        x = np.linspace(-1.0, 1.0, 32)
        assert len(chain) == 0
        np.testing.assert_array_equal(chain.process_block(x), x)

    def test_lowpass_clamped_below_nyquist(self, caplog):
        with caplog.at_level(logging.WARNING, logger="stringtune.pipeline.filters"):
            chain = FilterChain.from_config(8000, FilterConfig(rumble_highpass=False))
        assert chain.stages[0].fc == pytest.approx(3600.0)
        assert "clamped" in caplog.text

    def test_chain_block_matches_per_sample(self):
        cfg = FilterConfig.from_mask(0b111111)
        a = FilterChain.from_config(48000, cfg)
        b = FilterChain.from_config(48000, cfg)
        x = np.sin(2 * np.pi * 82.41 * np.arange(2048) / 48000.0)

        y_sample = np.array([a.process(v) for v in x])
        out = np.zeros_like(x)
        b.process_block(x, out=out)
        np.testing.assert_allclose(out, y_sample, rtol=1e-8, atol=1e-10)

    def test_hum_is_removed(self):
        sr = 48000
        t = np.arange(sr) / float(sr)
        hum = 0.5 * np.sin(2 * np.pi * 60.0 * t)
        chain = FilterChain.from_config(sr, FilterConfig(rumble_highpass=False, anti_alias_lowpass=False, notch_60=True))
        y = chain.process_block(hum)
        # Past the notch's settling time
        assert np.sqrt(np.mean(y[3 * sr // 4:] ** 2)) < 0.01
