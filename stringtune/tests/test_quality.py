import pytest

from stringtune.pipeline.quality import HARMONIC_RATIO_PLACEHOLDER, QualityScorer


class TestQualityScorer:
    def test_empty_history_has_no_stability(self):
        assert QualityScorer().stability() == 0.0

    def test_single_value_is_stable(self):
        q = QualityScorer()
        q.update(110.0)
        assert q.stability() == 1.0

    def test_stability_from_population_std(self):
        q = QualityScorer()
        q.update(100.0)
        q.update(102.0)
        # std = 1 Hz
        assert q.stability() == pytest.approx(0.8)

    def test_wide_spread_clamps_to_zero(self):
        q = QualityScorer()
        for f in (80.0, 120.0, 80.0, 120.0):
            q.update(f)
        assert q.stability() == 0.0

    def test_score_weights(self):
        q = QualityScorer()
        q.update(110.0)
        harmonic_term = 0.2 * (1.0 - HARMONIC_RATIO_PLACEHOLDER)
        assert q.score(0.05) == pytest.approx(0.4 + 0.4 + harmonic_term)
        assert q.score(0.025) == pytest.approx(0.2 + 0.4 + harmonic_term)
        assert q.score(0.0) == pytest.approx(0.4 + harmonic_term)

    def test_score_is_bounded(self):
        q = QualityScorer()
        q.update(110.0)
        assert 0.0 <= q.score(100.0, harmonic_ratio=-5.0) <= 1.0

    def test_history_is_bounded(self):
        q = QualityScorer(history_size=8)
        for i in range(20):
            q.update(100.0 + i)
        assert len(q) == 8
        q.reset()
        assert len(q) == 0
