"""Evidence collection and finding construction."""

import shlex
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Tuple

from cachescanner.core.errors import InvariantViolation
from cachescanner.core.models import (
    Confidence, Evidence, EvidenceItem, Finding, ProbeRequestSpec,
    ResponseObservation, Severity, VulnKind,
)

_PORTSWIGGER_WCP = "https://portswigger.net/research/practical-web-cache-poisoning"
_PORTSWIGGER_ENT = "https://portswigger.net/research/web-cache-entanglement"
_PORTSWIGGER_WCD = "https://portswigger.net/research/web-cache-deception-attack"
_CWE_444 = "https://cwe.mitre.org/data/definitions/444.html"
_CWE_524 = "https://cwe.mitre.org/data/definitions/524.html"
_CWE_525 = "https://cwe.mitre.org/data/definitions/525.html"
_CWE_208 = "https://cwe.mitre.org/data/definitions/208.html"


@dataclass(frozen=True)
class KindDetails:
    title: str
    severity: Severity
    remediation: str
    references: Tuple[str, ...]


CATALOG: Dict[VulnKind, KindDetails] = {
    VulnKind.POISONING_UNKEYED_HEADER: KindDetails(
        "Unkeyed header reflected into a cached response",
        Severity("CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:N/I:H/A:N", 7.5),
        "Add the header to the cache key or strip it at the edge before it reaches the origin.",
        (_PORTSWIGGER_WCP, _CWE_444),
    ),
    VulnKind.POISONING_UNKEYED_PARAMETER: KindDetails(
        "Unkeyed query parameter reflected into a cached response",
        Severity("CVSS:3.1/AV:N/AC:L/PR:N/UI:R/S:C/C:L/I:L/A:N", 6.1),
        "Include every parameter the origin reads in the cache key, or drop excluded "
        "parameters before forwarding.",
        (_PORTSWIGGER_ENT, _CWE_444),
    ),
    VulnKind.DECEPTION_PATH_CONFUSION: KindDetails(
        "Private content cached under a delimiter-confused path",
        Severity("CVSS:3.1/AV:N/AC:L/PR:N/UI:R/S:U/C:H/I:N/A:N", 6.5),
        "Normalize paths identically at cache and origin, and only cache by the "
        "origin's Content-Type and Cache-Control rather than by URL suffix.",
        (_PORTSWIGGER_WCD, _CWE_525),
    ),
    VulnKind.DECEPTION_CONTENT_TYPE: KindDetails(
        "Private content cached under a static-looking extension",
        Severity("CVSS:3.1/AV:N/AC:L/PR:N/UI:R/S:U/C:L/I:N/A:N", 5.5),
        "Return 404 for unknown path suffixes, send Cache-Control: private/no-store on "
        "authenticated responses, and key caching rules on Content-Type.",
        (_PORTSWIGGER_WCD, _CWE_525),
    ),
    VulnKind.KEY_UNKEYED_DIMENSION: KindDetails(
        "Response-shaping input excluded from the cache key",
        Severity("CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:L/I:L/A:N", 6.5),
        "Add the input to the cache key (or to Vary), or stop the origin varying its "
        "response on it.",
        (_PORTSWIGGER_WCP, _CWE_524),
    ),
    VulnKind.KEY_CACHED_ERROR_STATE: KindDetails(
        "Error response cached and served to authenticated users",
        Severity("CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:N/I:N/A:H", 7.5),
        "Never cache 4xx/5xx responses for authenticated content, and key on the "
        "credentials that select the response.",
        ("https://cpdos.org/", _CWE_524),
    ),
    VulnKind.TIMING_SIDE_CHANNEL: KindDetails(
        "Cache state observable through response timing",
        Severity("CVSS:3.1/AV:N/AC:H/PR:N/UI:N/S:U/C:L/I:N/A:N", 3.7),
        "Do not cache responses whose presence leaks user activity, or pad response "
        "times so hits and misses are indistinguishable.",
        (_PORTSWIGGER_ENT, _CWE_208),
    ),
    VulnKind.PROBING_CACHED_SENSITIVE_PATH: KindDetails(
        "Restricted path served from cache without credentials",
        Severity("CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:N/A:N", 7.5),
        "Mark restricted responses Cache-Control: private/no-store and enforce access "
        "control in front of the cache.",
        ("https://owasp.org/www-project-web-security-testing-guide/latest/"
         "4-Web_Application_Security_Testing/04-Authentication_Testing/"
         "06-Testing_for_Browser_Cache_Weaknesses", _CWE_525),
    ),
    VulnKind.CLOAKING_DUPLICATE_PARAMETER: KindDetails(
        "Duplicate parameter parsed differently by cache and origin",
        Severity("CVSS:3.1/AV:N/AC:L/PR:N/UI:R/S:C/C:L/I:L/A:N", 6.1),
        "Reject or canonicalize duplicate parameters at the edge so cache and origin "
        "agree on their value.",
        (_PORTSWIGGER_ENT, _CWE_444),
    ),
    VulnKind.CLOAKING_DELIMITER_SMUGGLING: KindDetails(
        "Parameter smuggled past the cache key through a delimiter",
        Severity("CVSS:3.1/AV:N/AC:L/PR:N/UI:R/S:C/C:L/I:H/A:N", 7.0),
        "Use one query-string parser for cache key and origin, and reject ';' or "
        "encoded delimiters inside parameter values.",
        (_PORTSWIGGER_ENT, _CWE_444),
    ),
}


class EvidenceCollector:
    """Turns observations into Evidence and Evidence into Findings."""

    def __init__(self, catalog: Optional[Dict[VulnKind, KindDetails]] = None):
        self.catalog = catalog or CATALOG

    @staticmethod
    def describe(spec: ProbeRequestSpec) -> str:
        """The request as a reproducible curl command line."""
        parts = ["curl", "-s", "-i"]
        if spec.method != "GET":
            parts += ["-X", spec.method]
        for name, value in spec.headers:
            parts += ["-H", f"{name}: {value}"]
        if spec.cookies:
            parts += ["-b", "; ".join(f"{k}={v}" for k, v in spec.cookies)]
        parts.append(spec.full_url)
        line = " ".join(shlex.quote(p) for p in parts)
        return f"{line}  # unauthenticated" if spec.anonymous else line

    def collect(self, observations: Iterable[ResponseObservation],
                agrees: Callable[[ResponseObservation], bool],
                statistic: Optional[Dict[str, float]] = None) -> Evidence:
        items = [EvidenceItem(self.describe(obs.request), obs, bool(agrees(obs)))
                 for obs in observations]
        return Evidence(items=items, statistic=statistic)

    def make_finding(self, kind: VulnKind, url: str, confidence: Confidence,
                     detail: str, evidence: Evidence,
                     poc: Optional[ProbeRequestSpec] = None) -> Finding:
        """Build a Finding; Confirmed is only kept when two observations agree."""
        if not evidence.items:
            raise InvariantViolation(f"no evidence for {kind.value} on {url}")
        if confidence is Confidence.CONFIRMED and evidence.agreeing < 2:
            confidence = Confidence.LIKELY
        info = self.catalog[kind]
        poc_spec = poc or evidence.items[0].observation.request
        return Finding(
            kind=kind,
            url=url,
            severity=info.severity,
            confidence=confidence,
            description=f"{info.title}. {detail}".strip(),
            remediation=info.remediation,
            references=info.references,
            proof_of_concept=self.describe(poc_spec),
            evidence=evidence,
        )
