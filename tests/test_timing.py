"""Hit/miss separability statistics."""

import random

import pytest

from cachescanner.core.config import TimingConfig
from cachescanner.core.models import Confidence, SampleLabel, TimingSample
from cachescanner.core.timing import TimingAnalyzer, rank_sum_p, trim

HIT, MISS, BASE = SampleLabel.EXPECTED_HIT, SampleLabel.EXPECTED_MISS, SampleLabel.BASELINE


def samples(hits, misses, baseline=()):
    return ([TimingSample(v, HIT) for v in hits] + [TimingSample(v, MISS) for v in misses]
            + [TimingSample(v, BASE) for v in baseline])


class TestTrim:
    def test_drops_both_tails(self):
        assert trim([5, 1, 4, 2, 3, 100, 0, 6, 7, 8], 0.1) == [1, 2, 3, 4, 5, 6, 7, 8]

    def test_small_samples_untouched(self):
        assert trim([3, 1, 2], 0.1) == [1, 2, 3]


class TestTimingAnalyzer:
    def test_well_separated_is_confirmed(self):
        rng = random.Random(7)
        hits = [0.005 + rng.uniform(0, 0.001) for _ in range(10)]
        misses = [0.080 + rng.uniform(0, 0.004) for _ in range(10)]
        result = TimingAnalyzer().analyze(samples(hits, misses))
        assert result.confidence is Confidence.CONFIRMED
        assert result.score >= 3.0
        assert result.hit_faster
        assert result.overlap == 0.0

    def test_identical_arms_are_informational(self):
        values = [0.010, 0.011, 0.012, 0.013, 0.014, 0.015]
        result = TimingAnalyzer().analyze(samples(values, list(values)))
        assert result.score == 0.0
        assert result.confidence is Confidence.INFORMATIONAL

    def test_likely_band(self):
        hits = [0.010, 0.011, 0.012, 0.013, 0.014]
        misses = [v + 0.004 for v in hits]
        result = TimingAnalyzer().analyze(samples(hits, misses))
        assert result.score == pytest.approx(2.0)
        assert result.confidence is Confidence.LIKELY

    def test_too_few_samples_never_confirmed(self):
        result = TimingAnalyzer(min_samples=5).analyze(
            samples([0.001, 0.001, 0.001, 0.001], [0.5, 0.5, 0.5, 0.5]))
        assert result.score > 3.0
        assert result.confidence is Confidence.INFORMATIONAL

    def test_baseline_samples_ignored(self):
        hits = [0.010, 0.011, 0.012, 0.013, 0.014]
        misses = [v + 0.004 for v in hits]
        with_noise = TimingAnalyzer().analyze(samples(hits, misses, baseline=[9.0] * 20))
        assert with_noise.score == pytest.approx(2.0)
        assert with_noise.hit.count == 5

    def test_outlier_trimmed_away(self):
        hits = [0.005] * 9 + [3.0]
        misses = [0.050 + i * 0.0001 for i in range(10)]
        result = TimingAnalyzer(trim=0.1).analyze(samples(hits, misses))
        assert result.confidence is Confidence.CONFIRMED
        assert result.hit.count == 8

    def test_zero_spread_is_floored(self):
        result = TimingAnalyzer(min_spread=1e-4).analyze(
            samples([0.010] * 6, [0.011] * 6))
        assert result.pooled_spread == pytest.approx(1e-4)
        assert result.score == pytest.approx(10.0)

    def test_slower_hits_still_separate(self):
        result = TimingAnalyzer().analyze(samples([0.09] * 5 + [0.091] * 5,
                                                  [0.01] * 5 + [0.011] * 5))
        assert not result.hit_faster
        assert result.overlap == 1.0
        assert result.confidence is Confidence.CONFIRMED

    def test_from_config(self):
        cfg = TimingConfig(threshold=5.0, likely_threshold=2.0, trim=0.2, min_samples=3)
        analyzer = TimingAnalyzer.from_config(cfg)
        assert (analyzer.threshold, analyzer.likely_threshold) == (5.0, 2.0)
        assert (analyzer.trim, analyzer.min_samples) == (0.2, 3)

    def test_statistic_keys(self):
        result = TimingAnalyzer().analyze(samples([0.01] * 5, [0.02] * 5))
        assert set(result.as_statistic()) == {
            "separation_score", "pooled_spread", "hit_median", "miss_median",
            "hit_samples", "miss_samples", "overlap", "rank_p_value",
        }


# ---------------------------------------------------------------------------
# Same-distribution arms
# ---------------------------------------------------------------------------

class TestOverlappingDistributions:
    def draw(self, rng, n):
        return samples([rng.gauss(0.1, 0.01) for _ in range(n)],
                       [rng.gauss(0.1, 0.01) for _ in range(n)])

    def test_five_per_arm_never_confirmed(self):
        rng = random.Random(1234)
        analyzer = TimingAnalyzer()
        verdicts = [analyzer.analyze(self.draw(rng, 5)).confidence for _ in range(2000)]
        assert Confidence.CONFIRMED not in verdicts

    def test_ten_per_arm_rarely_confirmed(self):
        rng = random.Random(4321)
        analyzer = TimingAnalyzer()
        trials = 500
        confirmed = sum(analyzer.analyze(self.draw(rng, 10)).confidence is Confidence.CONFIRMED
                        for _ in range(trials))
        assert confirmed <= trials // 100

    def test_narrow_arms_without_rank_separation_are_not_confirmed(self):
        # tight middles give a large score, interleaved tails keep the ranks mixed
        hits = [0.090, 0.100, 0.100, 0.100, 0.100, 0.100, 0.110]
        misses = [0.085, 0.1005, 0.1005, 0.1005, 0.1005, 0.1005, 0.115]
        result = TimingAnalyzer(trim=0.0).analyze(samples(hits, misses))
        assert result.score >= 3.0
        assert result.rank_p >= 0.01
        assert result.confidence is Confidence.LIKELY


def test_rank_sum_p():
    assert rank_sum_p([0.01] * 5, [0.01] * 5) == 1.0
    assert rank_sum_p([], [0.1]) == 1.0
    assert rank_sum_p([0.01 + i * 1e-3 for i in range(10)],
                      [0.1 + i * 1e-3 for i in range(10)]) < 0.001
