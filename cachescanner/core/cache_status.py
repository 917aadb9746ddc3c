"""Cache-indicator classification.

Every CDN and reverse proxy reports cache state its own way, so the
classification is driven by a table of per-header rules rather than a single
vendor's convention.  Rules are consulted in table order and the first one
that produces Hit or Miss wins; a header that is present but unrecognised
does not stop the search.
"""

import re
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Pattern

import httpx

from cachescanner.core.models import CacheIndicator

Matcher = Callable[[str], CacheIndicator]


def regex_matcher(hit: Optional[str], miss: Optional[str] = None) -> Matcher:
    """Hit when *hit* matches the value, Miss when *miss* matches (case-insensitive)."""
    hit_rx: Optional[Pattern] = re.compile(hit, re.I) if hit else None
    miss_rx: Optional[Pattern] = re.compile(miss, re.I) if miss else None

    def match(value: str) -> CacheIndicator:
        if hit_rx and hit_rx.search(value):
            return CacheIndicator.HIT
        if miss_rx and miss_rx.search(value):
            return CacheIndicator.MISS
        return CacheIndicator.UNKNOWN

    return match


def _age(value: str) -> CacheIndicator:
    # Age: 0 is what a fresh store looks like too, so only > 0 says anything
    try:
        return CacheIndicator.HIT if int(value.strip()) > 0 else CacheIndicator.UNKNOWN
    except ValueError:
        return CacheIndicator.UNKNOWN


def _varnish(value: str) -> CacheIndicator:
    # X-Varnish: "<xid>" on a miss, "<xid> <original xid>" on a hit
    ids = value.split()
    if len(ids) >= 2:
        return CacheIndicator.HIT
    if len(ids) == 1:
        return CacheIndicator.MISS
    return CacheIndicator.UNKNOWN


def _cache_status(value: str) -> CacheIndicator:
    # RFC 9211: the last member is the cache closest to the client
    last = value.split(",")[-1].lower()
    params = [p.strip() for p in last.split(";")[1:]]
    if "hit" in params:
        return CacheIndicator.HIT
    if any(p.startswith("fwd=") for p in params):
        return CacheIndicator.MISS
    return CacheIndicator.UNKNOWN


@dataclass(frozen=True)
class CacheHeaderRule:
    header: str
    match: Matcher
    vendor: str = ""


_HIT_WORDS = r"\b(hit|stale|updating|revalidated)\b"
_MISS_WORDS = r"\b(miss|expired|bypass|dynamic|pass|refresh_miss)\b"

DEFAULT_RULES = [
    CacheHeaderRule("cache-status", _cache_status, "RFC 9211"),
    CacheHeaderRule("cf-cache-status", regex_matcher(_HIT_WORDS, _MISS_WORDS), "Cloudflare"),
    CacheHeaderRule("x-cache", regex_matcher(r"\bhit\b", r"\bmiss\b"), "CloudFront/Fastly/Varnish"),
    CacheHeaderRule("x-cache-status", regex_matcher(_HIT_WORDS, _MISS_WORDS), "nginx"),
    CacheHeaderRule("akamai-cache-status", regex_matcher(r"^hit", r"^miss"), "Akamai"),
    CacheHeaderRule("x-vercel-cache", regex_matcher(r"\b(hit|stale|prerender)\b", r"\bmiss\b"), "Vercel"),
    CacheHeaderRule("x-proxy-cache", regex_matcher(_HIT_WORDS, _MISS_WORDS), "nginx"),
    CacheHeaderRule("x-rack-cache", regex_matcher(r"\bfresh\b|\bhit\b", r"\bmiss\b"), "Rack::Cache"),
    CacheHeaderRule("x-drupal-cache", regex_matcher(r"\bhit\b", r"\bmiss\b"), "Drupal"),
    CacheHeaderRule("x-litespeed-cache", regex_matcher(r"\bhit\b", r"\bmiss\b"), "LiteSpeed"),
    CacheHeaderRule("cdn-cache", regex_matcher(r"\bhit\b", r"\bmiss\b"), "generic CDN"),
    CacheHeaderRule("x-cache-lookup", regex_matcher(r"\bhit\b", r"\bmiss\b"), "Squid"),
    CacheHeaderRule("x-varnish", _varnish, "Varnish"),
    CacheHeaderRule("age", _age, "RFC 9111"),
]


class CacheIndicatorTable:
    """Ordered, extensible set of cache-status header rules."""

    def __init__(self, rules: Optional[Iterable[CacheHeaderRule]] = None):
        self.rules: List[CacheHeaderRule] = list(DEFAULT_RULES if rules is None else rules)

    def register(self, rule: CacheHeaderRule, first: bool = True) -> None:
        """Add a rule; custom rules go ahead of the defaults unless first=False."""
        if first:
            self.rules.insert(0, rule)
        else:
            self.rules.append(rule)

    def extend_from_config(self, entries: Iterable[dict]) -> None:
        for entry in entries:
            self.register(CacheHeaderRule(
                header=entry["header"].lower(),
                match=regex_matcher(entry.get("hit"), entry.get("miss")),
                vendor=entry.get("vendor", "custom"),
            ))

    def classify(self, headers: httpx.Headers) -> CacheIndicator:
        for rule in self.rules:
            for value in headers.get_list(rule.header):
                verdict = rule.match(value)
                if verdict is not CacheIndicator.UNKNOWN:
                    return verdict
        return CacheIndicator.UNKNOWN

    def explain(self, headers: httpx.Headers) -> List[str]:
        """The cache-related header lines present, for evidence and logs."""
        out = []
        for rule in self.rules:
            for value in headers.get_list(rule.header):
                out.append(f"{rule.header}: {value}")
        return out
