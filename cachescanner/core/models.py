"""Shared data models for the cache scanner."""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import httpx

from cachescanner.core.errors import InvariantViolation
from cachescanner.core.urls import add_query, normalize_url

Pairs = Tuple[Tuple[str, str], ...]


class DiscoveryMethod(Enum):
    SEED = "seed"
    CRAWLED = "crawled"
    WORDLIST = "wordlist"


class CacheIndicator(Enum):
    HIT = "Hit"
    MISS = "Miss"
    UNKNOWN = "Unknown"


class SampleLabel(Enum):
    EXPECTED_HIT = "ExpectedHit"
    EXPECTED_MISS = "ExpectedMiss"
    BASELINE = "Baseline"


class Confidence(Enum):
    INFORMATIONAL = "Informational"
    LIKELY = "Likely"
    CONFIRMED = "Confirmed"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]


_CONFIDENCE_RANK = {
    Confidence.INFORMATIONAL: 0,
    Confidence.LIKELY: 1,
    Confidence.CONFIRMED: 2,
}


class VulnKind(Enum):
    """Vulnerability sub-kinds, ``<Category>::<SubKind>``."""
    POISONING_UNKEYED_HEADER = "Poisoning::UnkeyedHeader"
    POISONING_UNKEYED_PARAMETER = "Poisoning::UnkeyedParameter"
    DECEPTION_PATH_CONFUSION = "Deception::PathConfusion"
    DECEPTION_CONTENT_TYPE = "Deception::ContentTypeConfusion"
    KEY_UNKEYED_DIMENSION = "KeyManipulation::UnkeyedDimension"
    KEY_CACHED_ERROR_STATE = "KeyManipulation::CachedErrorState"
    TIMING_SIDE_CHANNEL = "Timing::HitMissSideChannel"
    PROBING_CACHED_SENSITIVE_PATH = "Probing::CachedSensitivePath"
    CLOAKING_DUPLICATE_PARAMETER = "ParameterCloaking::DuplicateParameter"
    CLOAKING_DELIMITER_SMUGGLING = "ParameterCloaking::DelimiterSmuggling"

    @property
    def category(self) -> str:
        return self.value.split("::", 1)[0]


@dataclass(frozen=True)
class Severity:
    vector: str            # CVSS v3.1 vector string
    score: float

    @property
    def rating(self) -> str:
        if self.score >= 9.0:
            return "Critical"
        if self.score >= 7.0:
            return "High"
        if self.score >= 4.0:
            return "Medium"
        if self.score >= 0.1:
            return "Low"
        return "Info"


# ── scan inputs ────────────────────────────────────────────────

@dataclass(frozen=True)
class Target:
    """Base URL plus scope rules; immutable for the whole scan."""
    base_url: str
    include_paths: Tuple[str, ...] = ()
    exclude_paths: Tuple[str, ...] = ()
    max_depth: int = 2
    passive: bool = False

    @classmethod
    def from_configuration(cls, url: str, config) -> "Target":
        return cls(
            base_url=url,
            include_paths=tuple(config.paths),
            exclude_paths=tuple(config.exclude_paths),
            max_depth=config.depth,
            passive=config.passive,
        )


@dataclass(frozen=True)
class CandidateURL:
    url: str
    path: str
    depth: int
    method: DiscoveryMethod

    @property
    def normalized(self) -> str:
        return normalize_url(self.url)

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "path": self.path, "depth": self.depth,
                "method": self.method.value}


@dataclass(frozen=True)
class ProbeRequestSpec:
    """One logical test request. Built by a probe, never mutated."""
    url: str
    method: str = "GET"
    headers: Pairs = ()                # ordered, duplicates allowed
    params: Pairs = ()                 # appended to the query string
    cookies: Pairs = ()                # override configured cookies by name
    repeat: int = 1
    stage: int = 0                     # ordered batch index within one probe run
    role: str = ""                     # "poison", "verify", "baseline", ...
    group: str = ""                    # ties plant and verify requests of one test
    marker: str = ""                   # reflection marker carried or expected
    timing_label: Optional[SampleLabel] = None
    timing_sensitive: bool = False     # never retried, never run alongside others
    anonymous: bool = False            # drop configured cookies / auth

    def __post_init__(self):
        if self.repeat < 1:
            raise InvariantViolation(f"repeat must be >= 1, got {self.repeat}")

    @property
    def full_url(self) -> str:
        return add_query(self.url, list(self.params))


# ── observations ───────────────────────────────────────────────

@dataclass
class ResponseObservation:
    """What came back for one issued request."""
    request: ProbeRequestSpec
    status_code: int
    headers: httpx.Headers
    body: str = ""
    truncated: bool = False
    latency: float = 0.0               # seconds, wall clock
    cache: CacheIndicator = CacheIndicator.UNKNOWN
    url: str = ""                      # final URL after redirects

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def body_hash(self) -> str:
        return hashlib.sha1(self.body.encode("utf-8", "replace")).hexdigest()[:16]

    def contains(self, marker: str) -> bool:
        """Marker present in the body or in any response header value."""
        if marker in self.body:
            return True
        return any(marker in value for _, value in self.headers.multi_items())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status_code": self.status_code,
            "cache": self.cache.value,
            "latency": round(self.latency, 6),
            "headers": [[k, v] for k, v in self.headers.multi_items()],
            "body_excerpt": self.body[:512],
            "truncated": self.truncated,
        }


@dataclass(frozen=True)
class TimingSample:
    latency: float
    label: SampleLabel


# ── findings ───────────────────────────────────────────────────

@dataclass
class EvidenceItem:
    description: str                   # request as a curl-like line
    observation: ResponseObservation
    agrees: bool = False               # shows the vulnerability signal

    def to_dict(self) -> Dict[str, Any]:
        d = {"request": self.description, "agrees": self.agrees}
        d.update(self.observation.to_dict())
        return d


@dataclass
class Evidence:
    items: List[EvidenceItem] = field(default_factory=list)
    statistic: Optional[Dict[str, float]] = None

    @property
    def agreeing(self) -> int:
        return sum(1 for item in self.items if item.agrees)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "statistic": ({k: self.statistic[k] for k in sorted(self.statistic)}
                          if self.statistic else None),
        }


@dataclass
class Finding:
    """A single vulnerability finding.

    Never built without observed evidence; ``Confirmed`` needs at least two
    observations that agree on the signal.
    """
    kind: VulnKind
    url: str
    severity: Severity
    confidence: Confidence
    description: str
    remediation: str
    references: Tuple[str, ...]
    proof_of_concept: str
    evidence: Evidence

    def __post_init__(self):
        if not self.evidence.items:
            raise InvariantViolation(f"{self.kind.value} finding for {self.url} has no evidence")
        if self.confidence is Confidence.CONFIRMED and self.evidence.agreeing < 2:
            raise InvariantViolation(
                f"{self.kind.value} finding for {self.url} is Confirmed with "
                f"{self.evidence.agreeing} agreeing observation(s)")

    @property
    def key(self) -> Tuple[str, str]:
        return normalize_url(self.url), self.kind.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "category": self.kind.category,
            "url": self.url,
            "severity": self.severity.rating,
            "cvss_score": self.severity.score,
            "cvss_vector": self.severity.vector,
            "confidence": self.confidence.value,
            "description": self.description,
            "remediation": self.remediation,
            "references": list(self.references),
            "proof_of_concept": self.proof_of_concept,
            "evidence": self.evidence.to_dict(),
        }

    def __str__(self):
        return (f"[{self.severity.rating.upper()}][{self.confidence.value}] "
                f"{self.kind.value} @ {self.url}")


# ── scan output ────────────────────────────────────────────────

@dataclass(frozen=True)
class ProbeFailure:
    probe: str
    url: str
    reason: str

    def to_dict(self) -> Dict[str, str]:
        return {"probe": self.probe, "url": self.url, "reason": self.reason}


@dataclass(frozen=True)
class ScanResult:
    target: Target
    candidates: Tuple[CandidateURL, ...]
    findings: Tuple[Finding, ...]
    probes_executed: Tuple[str, ...]
    started_at: datetime
    finished_at: datetime
    failures: Tuple[ProbeFailure, ...] = ()
    requests_sent: int = 0
    scanner_version: str = ""

    @property
    def duration(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target.base_url,
            "scanner_version": self.scanner_version,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "duration": round(self.duration, 3),
            "passive": self.target.passive,
            "probes_executed": list(self.probes_executed),
            "requests_sent": self.requests_sent,
            "candidates": [c.to_dict() for c in self.candidates],
            "findings": [f.to_dict() for f in self.findings],
            "failures": [f.to_dict() for f in self.failures],
        }
