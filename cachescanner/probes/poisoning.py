"""Cache poisoning via unkeyed headers and unkeyed query parameters."""

from typing import List

from cachescanner.core.models import (
    CacheIndicator, CandidateURL, Finding, ProbeRequestSpec, VulnKind,
)
from cachescanner.core.urls import add_query, cache_buster
from cachescanner.probes.base import BaseProbe

# {m} is replaced with the per-test marker
UNKEYED_HEADERS = [
    ("X-Forwarded-Host", "{m}.example.com"),
    ("X-Host", "{m}.example.com"),
    ("X-Forwarded-Server", "{m}.example.com"),
    ("X-HTTP-Host-Override", "{m}.example.com"),
    ("Forwarded", "host={m}.example.com"),
    ("X-Forwarded-Scheme", "{m}"),
    ("X-Forwarded-Proto", "{m}"),
    ("X-Forwarded-Port", "{m}"),
    ("X-Original-URL", "/{m}"),
    ("X-Rewrite-URL", "/{m}"),
    ("X-Forwarded-Prefix", "/{m}"),
]

UNKEYED_PARAMS = ["utm_content", "utm_source", "utm_campaign", "fbclid", "gclid"]


class Poisoning(BaseProbe):
    """
    Plant-then-verify poisoning check.

    Every payload gets its own cache buster so no two tests share a cache key
    (and no real user's entry is touched). Stage 0 sends the poisoned request,
    stage 1 re-requests the identical URL twice without the payload; only a
    marker that survives into those clean responses counts.
    """

    name = "poisoning"
    category = "Poisoning"
    active = True

    def header_payloads(self):
        payloads = list(UNKEYED_HEADERS)
        known = {name.lower() for name, _ in payloads}
        for name in self.wordlist("headers"):
            if name.lower() not in known:
                known.add(name.lower())
                payloads.append((name, "{m}"))
        return payloads

    def param_payloads(self) -> List[str]:
        names = list(UNKEYED_PARAMS)
        for name in self.wordlist("parameters"):
            if name not in names:
                names.append(name)
        return names

    def generate(self, candidate: CandidateURL) -> List[ProbeRequestSpec]:
        plants, verifies = [], []

        for header, template in self.header_payloads():
            marker = self.marker()
            url = add_query(candidate.url, [cache_buster()])
            group = f"header:{header}"
            plants.append(ProbeRequestSpec(
                url=url, headers=((header, template.format(m=marker)),),
                stage=0, role="poison", group=group, marker=marker))
            verifies.append(ProbeRequestSpec(
                url=url, repeat=2, stage=1, role="verify", group=group, marker=marker))

        for param in self.param_payloads():
            marker = self.marker()
            url = add_query(candidate.url, [cache_buster()])
            group = f"param:{param}"
            plants.append(ProbeRequestSpec(
                url=url, params=((param, marker),),
                stage=0, role="poison", group=group, marker=marker))
            verifies.append(ProbeRequestSpec(
                url=url, repeat=2, stage=1, role="verify", group=group, marker=marker))

        return plants + verifies

    def interpret(self, candidate: CandidateURL, entries) -> List[Finding]:
        findings = []
        for group, observations in self.by_group(entries).items():
            verify = self.with_role(observations, "verify")
            if not verify:
                continue
            marker = verify[0].request.marker
            if not any(o.contains(marker) for o in verify):
                continue

            kind_name, _, input_name = group.partition(":")
            kind = (VulnKind.POISONING_UNKEYED_HEADER if kind_name == "header"
                    else VulnKind.POISONING_UNKEYED_PARAMETER)
            poison = self.with_role(observations, "poison")
            hits = sum(1 for o in verify if o.cache is CacheIndicator.HIT)
            evidence = self.collector.collect(
                poison + verify,
                agrees=lambda o, m=marker: o.request.role == "verify" and o.contains(m))
            detail = (f"The {kind_name} '{input_name}' changed the response and the poisoned "
                      f"variant was served to {evidence.agreeing} of {len(verify)} clean "
                      f"re-request(s) ({hits} reported a cache hit).")
            findings.append(self.collector.make_finding(
                kind, candidate.url, self.reflection_confidence(verify, marker), detail,
                evidence, poc=poison[0].request if poison else None))
        return self.strongest(findings)
