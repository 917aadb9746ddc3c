"""Hit/miss latency side channel."""

from typing import List

from cachescanner.core.models import (
    CandidateURL, Finding, ProbeRequestSpec, SampleLabel, TimingSample, VulnKind,
)
from cachescanner.core.timing import TimingAnalyzer
from cachescanner.core.urls import add_query, cache_buster
from cachescanner.probes.base import BaseProbe


class Timing(BaseProbe):
    """
    Warm the plain URL, then alternate a plain request (expected hit) with a
    freshly cache-busted one (expected miss), one request per stage, so both
    arms see the same network conditions. Sends nothing but ordinary GETs.
    """

    name = "timing"
    category = "Timing"
    active = False

    def generate(self, candidate: CandidateURL) -> List[ProbeRequestSpec]:
        timing = self.config.timing
        specs = []
        if timing.warmup:
            specs.append(ProbeRequestSpec(
                url=candidate.url, repeat=timing.warmup, stage=0, role="warmup",
                timing_label=SampleLabel.BASELINE, timing_sensitive=True))
        for i in range(timing.samples):
            specs.append(ProbeRequestSpec(
                url=candidate.url, stage=1 + 2 * i, role="hit",
                timing_label=SampleLabel.EXPECTED_HIT, timing_sensitive=True))
            specs.append(ProbeRequestSpec(
                url=add_query(candidate.url, [cache_buster()]), stage=2 + 2 * i, role="miss",
                timing_label=SampleLabel.EXPECTED_MISS, timing_sensitive=True))
        return specs

    def interpret(self, candidate: CandidateURL, entries) -> List[Finding]:
        observations = [o for o in self.observations(entries)
                        if o.request.timing_label in (SampleLabel.EXPECTED_HIT,
                                                      SampleLabel.EXPECTED_MISS)]
        samples = [TimingSample(o.latency, o.request.timing_label) for o in observations]
        analyzer = TimingAnalyzer.from_config(self.config.timing)
        result = analyzer.analyze(samples)
        if self.logger and self.logger.verbose >= 2:
            self.logger.debug(f"timing {candidate.url}: score={result.score:.2f} "
                              f"hit={result.hit.median * 1000:.1f}ms "
                              f"miss={result.miss.median * 1000:.1f}ms")
        if result.score < analyzer.threshold:
            return []

        hit_median, miss_median = result.hit.median, result.miss.median

        def on_own_side(o):
            near_hit = abs(o.latency - hit_median) < abs(o.latency - miss_median)
            return near_hit == (o.request.timing_label is SampleLabel.EXPECTED_HIT)

        evidence = self.collector.collect(observations, on_own_side,
                                          statistic=result.as_statistic())
        faster = "faster" if result.hit_faster else "slower"
        detail = (f"Cached responses are measurably {faster} than uncached ones "
                  f"(median {hit_median * 1000:.1f} ms vs {miss_median * 1000:.1f} ms, "
                  f"separation score {result.score:.2f} over {result.hit.count}+"
                  f"{result.miss.count} samples), which lets an observer tell whether "
                  f"someone else recently requested this URL.")
        return [self.collector.make_finding(
            VulnKind.TIMING_SIDE_CHANNEL, candidate.url, result.confidence, detail, evidence,
            poc=observations[0].request)]
