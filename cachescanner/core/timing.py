"""Hit/miss latency separability from repeated measurements."""

import math
import statistics
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Sequence

from cachescanner.core.models import Confidence, SampleLabel, TimingSample


@dataclass(frozen=True)
class ArmStats:
    count: int             # samples kept after trimming
    median: float
    iqr: float


@dataclass(frozen=True)
class SeparationResult:
    score: float           # |median_miss - median_hit| / pooled spread
    confidence: Confidence
    hit: ArmStats
    miss: ArmStats
    pooled_spread: float
    overlap: float         # share of (hit, miss) pairs where the hit was not faster
    rank_p: float          # two-sided rank-sum p-value, 1.0 when undefined
    hit_faster: bool

    def as_statistic(self) -> Dict[str, float]:
        return {
            "separation_score": round(self.score, 4),
            "pooled_spread": round(self.pooled_spread, 6),
            "hit_median": round(self.hit.median, 6),
            "miss_median": round(self.miss.median, 6),
            "hit_samples": float(self.hit.count),
            "miss_samples": float(self.miss.count),
            "overlap": round(self.overlap, 4),
            "rank_p_value": round(self.rank_p, 6),
        }


def trim(values: Sequence[float], fraction: float) -> List[float]:
    """Drop floor(n * fraction) values from each end of the sorted sample."""
    ordered = sorted(values)
    k = int(len(ordered) * fraction)
    if k and len(ordered) - 2 * k >= 1:
        return ordered[k:len(ordered) - k]
    return ordered


def _stats(values: List[float]) -> ArmStats:
    if not values:
        return ArmStats(0, 0.0, 0.0)
    if len(values) < 2:
        return ArmStats(len(values), values[0], 0.0)
    q1, _, q3 = statistics.quantiles(values, n=4, method="inclusive")
    return ArmStats(len(values), statistics.median(values), q3 - q1)


def rank_sum_p(hits: Sequence[float], misses: Sequence[float]) -> float:
    """Two-sided Mann-Whitney p-value (normal approximation, tie-corrected)."""
    n1, n2 = len(hits), len(misses)
    if not n1 or not n2:
        return 1.0
    u = sum(1.0 if h < m else 0.5 if h == m else 0.0 for h in hits for m in misses)
    n = n1 + n2
    ties = sum(c ** 3 - c for c in Counter(list(hits) + list(misses)).values())
    variance = n1 * n2 / 12.0 * ((n + 1) - ties / (n * (n - 1)))
    if variance <= 0:
        return 1.0
    z = max(abs(u - n1 * n2 / 2.0) - 0.5, 0.0) / math.sqrt(variance)
    return math.erfc(z / math.sqrt(2))


class TimingAnalyzer:
    """
    Separability of ExpectedHit vs ExpectedMiss latency samples.

    Each arm is trimmed, then summarised by median and interquartile range;
    the score is the gap between medians in units of pooled IQR. Confirmed
    also needs the rank-sum test to reject equal distributions at ``alpha``.
    Below ``min_samples`` per arm the verdict is always Informational.
    """

    def __init__(self, trim: float = 0.1, min_samples: int = 5, threshold: float = 3.0,
                 likely_threshold: float = 1.5, min_spread: float = 1e-4,
                 alpha: float = 0.01):
        self.trim = trim
        self.min_samples = min_samples
        self.threshold = threshold
        self.likely_threshold = min(likely_threshold, threshold)
        self.min_spread = min_spread
        self.alpha = alpha

    @classmethod
    def from_config(cls, timing_config) -> "TimingAnalyzer":
        return cls(trim=timing_config.trim, min_samples=timing_config.min_samples,
                   threshold=timing_config.threshold,
                   likely_threshold=timing_config.likely_threshold)

    def analyze(self, samples: Sequence[TimingSample]) -> SeparationResult:
        hits = [s.latency for s in samples if s.label is SampleLabel.EXPECTED_HIT]
        misses = [s.latency for s in samples if s.label is SampleLabel.EXPECTED_MISS]

        kept_hits, kept_misses = trim(hits, self.trim), trim(misses, self.trim)
        hit, miss = _stats(kept_hits), _stats(kept_misses)
        pooled = max(math.sqrt((hit.iqr ** 2 + miss.iqr ** 2) / 2), self.min_spread)
        score = abs(miss.median - hit.median) / pooled if hit.count and miss.count else 0.0
        rank_p = rank_sum_p(kept_hits, kept_misses)

        pairs = len(hits) * len(misses)
        overlap = (sum(1 for h in hits for m in misses if h >= m) / pairs) if pairs else 1.0

        if len(hits) < self.min_samples or len(misses) < self.min_samples:
            confidence = Confidence.INFORMATIONAL
        elif score >= self.threshold and rank_p < self.alpha:
            confidence = Confidence.CONFIRMED
        elif score >= self.likely_threshold:
            confidence = Confidence.LIKELY
        else:
            confidence = Confidence.INFORMATIONAL

        return SeparationResult(
            score=score,
            confidence=confidence,
            hit=hit,
            miss=miss,
            pooled_spread=pooled,
            overlap=overlap,
            rank_p=rank_p,
            hit_faster=hit.median < miss.median,
        )
