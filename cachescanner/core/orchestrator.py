"""Scan orchestration: crawl, fan probes out over candidates, aggregate findings."""

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple

from cachescanner.core.cache_status import CacheIndicatorTable
from cachescanner.core.config import Configuration, read_wordlist, validate_configuration
from cachescanner.core.crawler import Crawler
from cachescanner.core.dispatcher import Dispatcher
from cachescanner.core.errors import (
    ConfigurationInvalid, CrawlError, InvariantViolation, ProbeExecutionError, ScanCancelled,
    ScanError, ScanFailed, TransportError,
)
from cachescanner.core.evidence import EvidenceCollector
from cachescanner.core.models import (
    CandidateURL, Finding, ProbeFailure, ScanResult, Target,
)
from cachescanner.core.ratelimit import TokenBucket
from cachescanner.core.transport import Transport
from cachescanner.core.urls import normalize_url
from cachescanner.probes.registry import build_probes

__version__ = "1.0.0"


class ScanState(Enum):
    IDLE = "idle"
    CRAWLING = "crawling"
    PROBING = "probing"
    AGGREGATING = "aggregating"
    DONE = "done"
    FAILED = "failed"


class Orchestrator:
    """
    Owns every shared resource of one scan: the transport, the token bucket,
    the dispatcher pool and the cancellation event.

    Usage:
        orchestrator = Orchestrator(config, logger=Log(verbose=1))
        result = orchestrator.run(Target.from_configuration(url, config))

    An Orchestrator runs a single scan; its pools are shut down afterwards.
    """

    def __init__(self, config: Configuration, logger=None, transport=None):
        self.name = "cachescanner"
        self.version = __version__
        self.config = config
        self.logger = logger
        self.state = ScanState.IDLE
        self.cancelled = False
        self._cancel = threading.Event()

        cache_table = CacheIndicatorTable()
        cache_table.extend_from_config(config.cache_headers)
        self.transport = Transport(config, logger=logger, cache_table=cache_table,
                                   transport=transport)
        self.rate_limiter = TokenBucket(config.rate_limit, config.burst)
        self.dispatcher = Dispatcher(self.transport, threads=config.threads,
                                     rate_limiter=self.rate_limiter,
                                     cancel_event=self._cancel, logger=logger)
        self.crawler = Crawler(self.dispatcher, logger=logger,
                               wordlist=read_wordlist(config.wordlists.paths))
        self.collector = EvidenceCollector()
        self.probes = build_probes(config, collector=self.collector, logger=logger)

        self._candidates: List[CandidateURL] = []
        self._findings: Dict[Tuple[str, str], Finding] = {}
        self._failures: List[ProbeFailure] = []
        self._executed: List[str] = []
        self._started: Optional[datetime] = None

    def cancel(self) -> None:
        """Stop issuing new batches; run() raises ScanCancelled with what it has."""
        self._cancel.set()
        if self.logger:
            self.logger.warn("Cancellation requested, finishing in-flight requests")

    # ---------- scan ----------

    def run(self, target: Target) -> ScanResult:
        self._started = datetime.now(timezone.utc)
        try:
            self.state = ScanState.CRAWLING
            try:
                for candidate in self.crawler.crawl(target):
                    self._candidates.append(candidate)
            except CrawlError as exc:
                raise ScanFailed(exc) from exc

            self.state = ScanState.PROBING
            self._probe(target, tuple(self._candidates))

            self.state = ScanState.AGGREGATING
            result = self._result(target)
            if self.logger:
                for finding in result.findings:
                    self.logger.finding(finding)
            self.state = ScanState.DONE
            return result
        except ScanCancelled:
            self.state = ScanState.FAILED
            self.cancelled = True
            raise ScanCancelled(partial=self._result(target))
        except ScanError:
            self.state = ScanState.FAILED
            raise
        except Exception as exc:
            # InvariantViolation, crawler bugs and anything else the units did not absorb
            self.state = ScanState.FAILED
            raise ScanFailed(exc) from exc
        finally:
            self.dispatcher.shutdown()
            self.transport.close()

    def _probe(self, target: Target, candidates: Tuple[CandidateURL, ...]) -> None:
        passive = target.passive or self.config.passive
        probes = [p for p in self.probes if not (passive and p.active)]
        if self.logger:
            skipped = [p.name for p in self.probes if passive and p.active]
            if skipped:
                self.logger.info(f"Passive mode: skipping {', '.join(skipped)}")
            self.logger.info(f"Running {len(probes)} probe(s) over {len(candidates)} URL(s)")
        self._executed = [p.name for p in probes]

        with ThreadPoolExecutor(max_workers=self.config.threads,
                                thread_name_prefix="probe") as pool:
            futures = {pool.submit(probe.run, candidate, self.dispatcher): (probe, candidate)
                       for probe in probes for candidate in candidates}
            for future in as_completed(futures):
                probe, candidate = futures[future]
                try:
                    findings = future.result()
                except (ProbeExecutionError, TransportError) as exc:
                    reason = getattr(exc, "reason", "") or str(exc)
                    self._failures.append(ProbeFailure(probe.name, candidate.url, reason))
                    if self.logger:
                        self.logger.warn(f"{probe.name} on {candidate.url}: {reason}")
                    continue
                except (ScanCancelled, InvariantViolation):
                    self._cancel.set()
                    raise
                except Exception as exc:
                    reason = repr(exc)
                    self._failures.append(ProbeFailure(probe.name, candidate.url, reason))
                    if self.logger:
                        self.logger.fail(f"{probe.name} on {candidate.url} crashed: {reason}")
                    continue
                for finding in findings:
                    self._merge(finding)

    def _merge(self, finding: Finding) -> None:
        current = self._findings.get(finding.key)
        if current is None or finding.confidence.rank > current.confidence.rank:
            self._findings[finding.key] = finding
            if self.logger and self.logger.verbose >= 2:
                self.logger.debug(f"Finding: {finding}")

    def _result(self, target: Target) -> ScanResult:
        findings = sorted(self._findings.values(),
                          key=lambda f: (f.kind.value, normalize_url(f.url)))
        return ScanResult(
            target=target,
            candidates=tuple(self._candidates),
            findings=tuple(findings),
            probes_executed=tuple(self._executed),
            started_at=self._started,
            finished_at=datetime.now(timezone.utc),
            failures=tuple(self._failures),
            requests_sent=self.dispatcher.requests_sent,
            scanner_version=self.version,
        )


def run_scan(target: Target, config: Configuration, logger=None, transport=None) -> ScanResult:
    """Validate *config*, then crawl and probe *target*."""
    errors = validate_configuration(config)
    if errors:
        raise ConfigurationInvalid(errors)
    return Orchestrator(config, logger=logger, transport=transport).run(target)
