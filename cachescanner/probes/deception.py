"""Web cache deception: private content stored under static-looking URL variants."""

import re
from typing import List, Set
from urllib.parse import urlsplit

from cachescanner.core.models import (
    CacheIndicator, CandidateURL, Confidence, Finding, ProbeRequestSpec, VulnKind,
)
from cachescanner.core.urls import origin, rand
from cachescanner.probes.base import BaseProbe

# {p} = candidate path, {r} = random file stem
PATH_CONFUSION = [
    "{p};{r}.css",
    "{p}%3B{r}.css",
    "{p}%23{r}.css",
    "{p}%3F{r}.css",
    "/static/..%2f{p_rel}",
]

CONTENT_TYPE_CONFUSION = [
    "{p}/{r}.js",
    "{p}.css",
    "{p}/{r}.css",
    "{p}/{r}.png",
    "{p}.jpg",
]

_EXT_TYPES = {
    ".css": "text/css",
    ".js": "javascript",
    ".png": "image/png",
    ".jpg": "image/jpeg",
}


class Deception(BaseProbe):
    """
    Request static-looking variants of a page with credentials, then the exact
    same URLs without them. Sensitive content coming back on the anonymous
    request (and absent from the anonymous original) means the cache stored the
    private response under a public key.
    """

    name = "deception"
    category = "Deception"
    active = True

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.patterns = [re.compile(p) for p in self.config.sensitive_patterns]

    def sensitive_tokens(self, body: str) -> Set[str]:
        return {m.group(0) for rx in self.patterns for m in rx.finditer(body)}

    def variants(self, candidate: CandidateURL):
        path = urlsplit(candidate.url).path.rstrip("/") or "/"
        base = origin(candidate.url)
        stem = rand(6)
        fmt = {"p": path if path != "/" else "", "r": stem, "p_rel": path.lstrip("/")}
        for kind, templates in ((VulnKind.DECEPTION_PATH_CONFUSION, PATH_CONFUSION),
                                (VulnKind.DECEPTION_CONTENT_TYPE, CONTENT_TYPE_CONFUSION)):
            for template in templates:
                variant = template.format(**fmt)
                if not variant.startswith("/"):
                    variant = "/" + variant
                yield kind, base + variant

    def generate(self, candidate: CandidateURL) -> List[ProbeRequestSpec]:
        if not self.config.http.has_credentials:
            if self.logger and self.logger.verbose >= 2:
                self.logger.debug(f"{self.name}: no credentials configured, skipping {candidate.url}")
            return []

        stage0 = [ProbeRequestSpec(url=candidate.url, anonymous=True, stage=0,
                                   role="baseline", group="baseline")]
        stage1 = []
        for kind, url in self.variants(candidate):
            group = f"{kind.value}|{url}"
            stage0.append(ProbeRequestSpec(url=url, stage=0, role="auth", group=group))
            stage1.append(ProbeRequestSpec(url=url, anonymous=True, stage=1, repeat=2,
                                           role="anon", group=group))
        return stage0 + stage1

    def interpret(self, candidate: CandidateURL, entries) -> List[Finding]:
        groups = self.by_group(entries)
        baseline = groups.pop("baseline", [])
        if baseline and self.sensitive_tokens(baseline[0].body):
            # the original page already leaks the same kind of content publicly
            return []

        findings = []
        for group, observations in groups.items():
            kind_value, _, url = group.partition("|")
            anon = self.with_role(observations, "anon")
            auth = self.with_role(observations, "auth")
            leaking = [o for o in anon if o.is_success and self.sensitive_tokens(o.body)]
            if not leaking:
                continue
            leaked = set().union(*(self.sensitive_tokens(o.body) for o in leaking))
            shared = leaked & self.sensitive_tokens(auth[0].body) if auth else set()
            signal = shared or leaked

            def agrees(o, signal=signal):
                return (o.request.role == "anon" and o.is_success
                        and bool(signal & self.sensitive_tokens(o.body)))

            agreeing = [o for o in anon if agrees(o)]
            hit = any(o.cache is CacheIndicator.HIT for o in agreeing)
            if shared and hit and len(agreeing) == len(anon) >= 2:
                confidence = Confidence.CONFIRMED
            else:
                confidence = Confidence.LIKELY
            evidence = self.collector.collect(auth + anon, agrees=agrees)
            shown = agreeing[0] if agreeing else leaking[0]
            detail = (f"An unauthenticated request for {url} returned sensitive content "
                      f"({len(leaked)} token(s)) that the original page does not expose "
                      f"publicly, on {len(leaking)} of {len(anon)} anonymous requests; "
                      f"cache status {shown.cache.value}.")
            detail += self._content_type_note(url, shown.headers.get("content-type", ""))
            findings.append(self.collector.make_finding(
                VulnKind(kind_value), candidate.url, confidence, detail, evidence,
                poc=shown.request))
        return self.strongest(findings)

    @staticmethod
    def _content_type_note(url: str, content_type: str) -> str:
        path = urlsplit(url).path.lower()
        for ext, expected in _EXT_TYPES.items():
            if path.endswith(ext) and expected not in content_type.lower():
                return (f" The {ext} URL was answered with Content-Type "
                        f"'{content_type or 'none'}'.")
        return ""
