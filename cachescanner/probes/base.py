"""Abstract base for all cache probes."""

from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Dict, List, Optional

from cachescanner.core.config import Configuration, read_wordlist
from cachescanner.core.dispatcher import Entry
from cachescanner.core.errors import ProbeExecutionError, TransportError
from cachescanner.core.evidence import EvidenceCollector
from cachescanner.core.models import (
    CacheIndicator, CandidateURL, Confidence, Finding, ProbeRequestSpec,
    ResponseObservation, VulnKind,
)
from cachescanner.core.urls import rand


class BaseProbe(ABC):
    """Every probe must implement generate() and interpret().

    generate() returns the probe's whole request plan for one URL; requests
    that depend on earlier ones carry a higher ``stage`` and run() submits the
    stages as ordered batches. interpret() receives the entries back in stage
    order (observations, or TransportError for requests that failed).
    """

    name: str = "unnamed"
    category: str = ""
    active: bool = True        # injects input; skipped in passive mode

    def __init__(self, config: Optional[Configuration] = None,
                 collector: Optional[EvidenceCollector] = None, logger=None):
        self.config = config or Configuration()
        self.collector = collector or EvidenceCollector()
        self.logger = logger

    # ── public API ──────────────────────────────────────────────

    @abstractmethod
    def generate(self, candidate: CandidateURL) -> List[ProbeRequestSpec]:
        """Return the request plan for *candidate* (may be empty)."""
        ...

    @abstractmethod
    def interpret(self, candidate: CandidateURL, entries: List[Entry]) -> List[Finding]:
        """Turn the settled entries into zero or more findings."""
        ...

    def run(self, candidate: CandidateURL, dispatcher) -> List[Finding]:
        specs = self.generate(candidate)
        if not specs:
            return []
        if self.logger and self.logger.verbose >= 2:
            self.logger.debug(f"{self.name}: {len(specs)} request specs for {candidate.url}")
        entries = dispatcher.execute_sequence(specs)
        self.ensure_observed(candidate, entries)
        return self.interpret(candidate, entries)

    def ensure_observed(self, candidate: CandidateURL, entries: List[Entry]) -> None:
        if entries and not any(isinstance(e, ResponseObservation) for e in entries):
            first = next(e for e in entries if isinstance(e, TransportError))
            raise ProbeExecutionError(self.name, candidate.url,
                                      f"all {len(entries)} requests failed ({first.kind})")

    # ── shared helpers ──────────────────────────────────────────

    @staticmethod
    def marker(prefix: str = "cz") -> str:
        """Unique reflection canary."""
        return prefix + rand(10)

    @staticmethod
    def observations(entries: List[Entry]) -> List[ResponseObservation]:
        return [e for e in entries if isinstance(e, ResponseObservation)]

    @staticmethod
    def by_group(entries: List[Entry]) -> Dict[str, List[ResponseObservation]]:
        """Observations grouped by their spec's ``group``, order preserved."""
        groups: Dict[str, List[ResponseObservation]] = OrderedDict()
        for entry in entries:
            if isinstance(entry, ResponseObservation):
                groups.setdefault(entry.request.group, []).append(entry)
        return groups

    @staticmethod
    def with_role(observations: List[ResponseObservation], role: str) -> List[ResponseObservation]:
        return [o for o in observations if o.request.role == role]

    def wordlist(self, name: str) -> List[str]:
        return read_wordlist(getattr(self.config.wordlists, name))

    def reflection_confidence(self, verify: List[ResponseObservation], marker: str) -> Confidence:
        """Plant-then-verify rule: marker in every clean re-request plus a Hit confirms."""
        carrying = [o for o in verify if o.contains(marker)]
        if len(carrying) >= 2 and any(o.cache is CacheIndicator.HIT for o in carrying):
            return Confidence.CONFIRMED
        return Confidence.LIKELY

    @staticmethod
    def strongest(findings: List[Finding]) -> List[Finding]:
        """Keep one finding per kind: the highest confidence, first seen on ties."""
        best: Dict[VulnKind, Finding] = OrderedDict()
        for finding in findings:
            current = best.get(finding.kind)
            if current is None or finding.confidence.rank > current.confidence.rank:
                best[finding.kind] = finding
        return list(best.values())
