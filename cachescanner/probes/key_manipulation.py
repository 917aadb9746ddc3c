"""Cache-key manipulation: request dimensions that shape the response but not the key."""

from typing import List, Tuple

from cachescanner.core.models import (
    CacheIndicator, CandidateURL, Confidence, Finding, ProbeRequestSpec, VulnKind,
)
from cachescanner.core.urls import add_query, cache_buster
from cachescanner.probes.base import BaseProbe

# (kind, name, first value, second value); {m} is the per-test marker
DIMENSIONS = [
    ("header", "Accept-Language", "en-US", "{m}"),
    ("header", "X-Forwarded-For", "10.0.0.1", "10.0.0.2, {m}"),
    ("header", "Origin", "https://a.example.com", "https://{m}.example.com"),
    ("header", "User-Agent", "Mozilla/5.0 (Windows NT 10.0; Win64; x64)", "{m}/1.0"),
    ("header", "X-Cache-Key", "a", "{m}"),
    ("header", "Cache-Control", "max-age=0", "no-cache, {m}"),
    ("header", "Vary", "Accept", "*"),
    ("cookie", "cachescan_probe", "a", "{m}"),
]


class KeyManipulation(BaseProbe):
    """
    For each dimension: prime key X with value 1 (A), fetch key Y with value 2
    fresh (C) and key Z with value 1 fresh (D), then re-request key X with
    value 2 (B). If the dimension really changes the response (A == D != C, or
    C reflects the marker) yet B is a Hit carrying A's body, the cache handed a
    value-1 response to a value-2 requester.

    With credentials configured a second check looks for an anonymous error
    response being cached and then served to authenticated requests.
    """

    name = "key_manipulation"
    category = "KeyManipulation"
    active = True

    def dimensions(self) -> List[Tuple[str, str, str, str]]:
        dims = list(DIMENSIONS)
        known = {(kind, name.lower()) for kind, name, _, _ in dims}
        for name in self.wordlist("headers"):
            if ("header", name.lower()) not in known:
                dims.append(("header", name, "a", "{m}"))
        for name in self.wordlist("parameters"):
            if ("param", name.lower()) not in known:
                dims.append(("param", name, "a", "{m}"))
        return dims

    @staticmethod
    def _spec(kind, name, value, url, **kw) -> ProbeRequestSpec:
        if kind == "header":
            return ProbeRequestSpec(url=url, headers=((name, value),), **kw)
        if kind == "cookie":
            return ProbeRequestSpec(url=url, cookies=((name, value),), **kw)
        return ProbeRequestSpec(url=url, params=((name, value),), **kw)

    def generate(self, candidate: CandidateURL) -> List[ProbeRequestSpec]:
        stage0, stage1 = [], []
        for kind, name, first, second in self.dimensions():
            marker = self.marker()
            value2 = second.format(m=marker)
            group = f"{kind}:{name}"
            url_x = add_query(candidate.url, [cache_buster()])
            url_y = add_query(candidate.url, [cache_buster()])
            url_z = add_query(candidate.url, [cache_buster()])
            common = {"group": group, "marker": marker}
            stage0.append(self._spec(kind, name, first, url_x, stage=0, role="prime", **common))
            stage0.append(self._spec(kind, name, value2, url_y, stage=0, role="control", **common))
            stage0.append(self._spec(kind, name, first, url_z, stage=0, role="stable", **common))
            stage1.append(self._spec(kind, name, value2, url_x, stage=1, role="probe",
                                     repeat=2, **common))

        if self.config.http.has_credentials:
            url_z = add_query(candidate.url, [cache_buster()])
            url_w = add_query(candidate.url, [cache_buster()])
            stage0.append(ProbeRequestSpec(url=url_z, anonymous=True, stage=0,
                                           role="anon", group="error-state"))
            stage0.append(ProbeRequestSpec(url=url_w, stage=0, role="auth-baseline",
                                           group="error-state"))
            stage1.append(ProbeRequestSpec(url=url_z, stage=1, repeat=2, role="auth-after",
                                           group="error-state"))
        return stage0 + stage1

    def interpret(self, candidate: CandidateURL, entries) -> List[Finding]:
        findings = []
        groups = self.by_group(entries)
        error_state = groups.pop("error-state", None)
        if error_state:
            finding = self._cached_error_state(candidate, error_state)
            if finding:
                findings.append(finding)

        for group, observations in groups.items():
            prime = self.with_role(observations, "prime")
            control = self.with_role(observations, "control")
            stable = self.with_role(observations, "stable")
            probe = self.with_role(observations, "probe")
            if not (prime and control and probe):
                continue
            a, c = prime[0], control[0]
            marker = a.request.marker
            varies = c.contains(marker) or (
                bool(stable) and stable[0].body_hash == a.body_hash and c.body_hash != a.body_hash)
            if not varies:
                continue

            def contaminated(o, a=a, marker=marker):
                return (o.request.role == "probe" and o.cache is CacheIndicator.HIT
                        and o.body_hash == a.body_hash and not o.contains(marker))

            agreeing = [o for o in probe if contaminated(o)]
            if not agreeing:
                continue
            confidence = Confidence.CONFIRMED if len(agreeing) == len(probe) >= 2 \
                else Confidence.LIKELY
            evidence = self.collector.collect(prime + control + stable + probe, contaminated)
            kind, _, name = group.partition(":")
            detail = (f"The {kind} '{name}' changes the response, but a request with a "
                      f"different {kind} value was answered from the cache with the "
                      f"response stored for the first value ({len(agreeing)}/{len(probe)} "
                      f"re-requests).")
            findings.append(self.collector.make_finding(
                VulnKind.KEY_UNKEYED_DIMENSION, candidate.url, confidence, detail, evidence,
                poc=probe[0].request))
        return self.strongest(findings)

    def _cached_error_state(self, candidate, observations):
        anon = self.with_role(observations, "anon")
        baseline = self.with_role(observations, "auth-baseline")
        after = self.with_role(observations, "auth-after")
        if not (anon and baseline and after):
            return None
        error = anon[0].status_code
        if error < 400 or not baseline[0].is_success:
            return None

        def served_error(o):
            return (o.request.role == "auth-after" and o.status_code == error
                    and o.cache is CacheIndicator.HIT)

        agreeing = [o for o in after if served_error(o)]
        if not agreeing:
            return None
        confidence = Confidence.CONFIRMED if len(agreeing) == len(after) >= 2 \
            else Confidence.LIKELY
        evidence = self.collector.collect(anon + baseline + after, served_error)
        detail = (f"Without credentials the page returns {error}; that response was cached "
                  f"and then served to {len(agreeing)} authenticated request(s) that normally "
                  f"receive {baseline[0].status_code}.")
        return self.collector.make_finding(
            VulnKind.KEY_CACHED_ERROR_STATE, candidate.url, confidence, detail, evidence,
            poc=anon[0].request)
