"""Parameter cloaking: cache and origin disagree on how the query string parses."""

from typing import List
from urllib.parse import parse_qsl, urlsplit

from cachescanner.core.models import CandidateURL, Finding, ProbeRequestSpec, VulnKind
from cachescanner.core.urls import add_query, add_raw_query, cache_buster
from cachescanner.probes.base import BaseProbe

DEFAULT_PARAMS = ["callback", "q", "lang"]

# separators the origin may honour while the cache does not
DELIMITERS = [";", "%3B", "%0a", "%0d%0a", "%23", "%26", "%0d"]

MAX_PARAMS = 5

CONTROL = "control:utm_content"


class ParameterCloaking(BaseProbe):
    """
    Duplicate parameters: plant ``p=safe&p=MARK`` and verify with only
    ``p=safe``; a cache keying on the first occurrence while the origin uses
    the last one serves the marker back.

    Delimiter smuggling: hide ``p=MARK`` behind an excluded parameter
    (``utm_content=1;p=MARK``) and verify with the bare cache-busted URL.
    A control plant of ``utm_content=MARK`` alone tells a reflected excluded
    parameter apart from a split one; when it reflects, delimiter results are
    not attributable and are dropped.
    """

    name = "parameter_cloaking"
    category = "ParameterCloaking"
    active = True

    def parameter_names(self, candidate: CandidateURL) -> List[str]:
        names = []
        own = [k for k, _ in parse_qsl(urlsplit(candidate.url).query, keep_blank_values=True)]
        for name in own + self.wordlist("parameters") + DEFAULT_PARAMS:
            if name and name not in names and not name.startswith("utm_"):
                names.append(name)
        return names[:MAX_PARAMS]

    def generate(self, candidate: CandidateURL) -> List[ProbeRequestSpec]:
        marker = self.marker()
        url = add_query(candidate.url, [cache_buster()])
        plants = [ProbeRequestSpec(url=add_raw_query(url, f"utm_content={marker}"),
                                   stage=0, role="poison", group=CONTROL, marker=marker)]
        verifies = [ProbeRequestSpec(url=url, stage=1, repeat=2, role="verify",
                                     group=CONTROL, marker=marker)]
        for param in self.parameter_names(candidate):
            marker = self.marker()
            url = add_query(candidate.url, [cache_buster()])
            group = f"duplicate:{param}"
            plants.append(ProbeRequestSpec(
                url=add_raw_query(url, f"{param}=safe&{param}={marker}"),
                stage=0, role="poison", group=group, marker=marker))
            verifies.append(ProbeRequestSpec(
                url=add_raw_query(url, f"{param}=safe"),
                stage=1, repeat=2, role="verify", group=group, marker=marker))

            for sep in DELIMITERS:
                marker = self.marker()
                url = add_query(candidate.url, [cache_buster()])
                group = f"delimiter:{param}:{sep}"
                plants.append(ProbeRequestSpec(
                    url=add_raw_query(url, f"utm_content=1{sep}{param}={marker}"),
                    stage=0, role="poison", group=group, marker=marker))
                verifies.append(ProbeRequestSpec(
                    url=url, stage=1, repeat=2, role="verify", group=group, marker=marker))
        return plants + verifies

    def interpret(self, candidate: CandidateURL, entries) -> List[Finding]:
        groups = self.by_group(entries)
        control = self.with_role(groups.pop(CONTROL, []), "verify")
        excluded_reflects = any(o.contains(o.request.marker) for o in control)
        if excluded_reflects and self.logger and self.logger.verbose >= 2:
            self.logger.debug(f"{self.name}: utm_content is reflected on {candidate.url}, "
                              f"delimiter results dropped")

        findings = []
        for group, observations in groups.items():
            verify = self.with_role(observations, "verify")
            if not verify:
                continue
            marker = verify[0].request.marker
            if not any(o.contains(marker) for o in verify):
                continue

            technique, _, rest = group.partition(":")
            if technique == "delimiter" and excluded_reflects:
                continue
            param, _, sep = rest.partition(":")
            poison = self.with_role(observations, "poison")
            evidence = self.collector.collect(
                poison + verify,
                agrees=lambda o, m=marker: o.request.role == "verify" and o.contains(m))
            if technique == "duplicate":
                kind = VulnKind.CLOAKING_DUPLICATE_PARAMETER
                detail = (f"A repeated '{param}' parameter was keyed on its first value but "
                          f"processed with its last; the cloaked value reached "
                          f"{evidence.agreeing} of {len(verify)} clean request(s).")
            else:
                kind = VulnKind.CLOAKING_DELIMITER_SMUGGLING
                detail = (f"'{param}' smuggled behind utm_content with the {sep!r} delimiter "
                          f"was processed by the origin but left out of the cache key; the "
                          f"cloaked value reached {evidence.agreeing} of {len(verify)} "
                          f"clean request(s).")
            findings.append(self.collector.make_finding(
                kind, candidate.url, self.reflection_confidence(verify, marker), detail,
                evidence, poc=poison[0].request if poison else None))
        return self.strongest(findings)
