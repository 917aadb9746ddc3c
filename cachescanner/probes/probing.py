"""Enumeration of sensitive paths that a shared cache is willing to store."""

from typing import List
from urllib.parse import urlsplit

from cachescanner.core.models import (
    CacheIndicator, CandidateURL, Confidence, DiscoveryMethod, Finding, ProbeRequestSpec,
    VulnKind,
)
from cachescanner.core.urls import join_path, normalize_url, origin
from cachescanner.probes.base import BaseProbe

SENSITIVE_PATHS = [
    "/admin", "/api", "/internal", "/private", "/config",
    "/account", "/profile", "/dashboard", "/settings", "/user",
]


class Probing(BaseProbe):
    name = "probing"
    category = "Probing"
    active = False

    def sensitive_paths(self) -> List[str]:
        paths = list(SENSITIVE_PATHS)
        for entry in self.wordlist("sensitive_paths"):
            entry = "/" + entry.lstrip("/")
            if entry not in paths:
                paths.append(entry)
        return paths

    def looks_sensitive(self, path: str) -> bool:
        path = path.lower()
        return any(word.strip("/").lower() in path for word in self.sensitive_paths())

    def targets(self, candidate: CandidateURL) -> List[str]:
        urls = []
        if candidate.method is DiscoveryMethod.SEED:
            base = origin(candidate.url)
            urls.extend(join_path(base, path) for path in self.sensitive_paths())
        if self.looks_sensitive(urlsplit(candidate.url).path):
            urls.append(candidate.url)
        seen, out = set(), []
        for url in urls:
            key = normalize_url(url)
            if key not in seen:
                seen.add(key)
                out.append(url)
        return out

    def generate(self, candidate: CandidateURL) -> List[ProbeRequestSpec]:
        return [ProbeRequestSpec(url=url, repeat=2, anonymous=True, role="enum", group=url)
                for url in self.targets(candidate)]

    def interpret(self, candidate: CandidateURL, entries) -> List[Finding]:
        findings = []

        def cached_ok(o):
            return o.is_success and o.cache is CacheIndicator.HIT

        for url, observations in self.by_group(entries).items():
            agreeing = [o for o in observations if cached_ok(o)]
            if not agreeing:
                continue
            confidence = Confidence.CONFIRMED if len(agreeing) >= 2 else Confidence.LIKELY
            evidence = self.collector.collect(observations, cached_ok)
            detail = (f"{urlsplit(url).path} answered an unauthenticated request with "
                      f"{agreeing[0].status_code} from the shared cache "
                      f"({len(agreeing)}/{len(observations)} requests were hits).")
            findings.append(self.collector.make_finding(
                VulnKind.PROBING_CACHED_SENSITIVE_PATH, url, confidence, detail, evidence,
                poc=observations[0].request))
        return findings
