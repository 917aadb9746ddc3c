"""BFS link discovery over the dispatcher, using html.parser for extraction."""

import re
from html.parser import HTMLParser
from typing import Iterator, List, Optional, Set, Tuple
from urllib.parse import urljoin, urlsplit

from cachescanner.core.errors import CrawlError, TransportError
from cachescanner.core.models import CandidateURL, DiscoveryMethod, ProbeRequestSpec, Target
from cachescanner.core.urls import (
    is_same_origin, join_path, normalize_url, path_matches, should_skip_url,
)


# ── HTML parsing ───────────────────────────────────────────────

_LINK_ATTRS = {
    "a": "href",
    "area": "href",
    "form": "action",
    "iframe": "src",
    "frame": "src",
    "script": "src",
}

# fetch("/x"), axios.get('/x'), xhr.open("GET", "/x"), $.get("/x")
_SCRIPT_REFS = [
    re.compile(r"""fetch\(\s*["'`]([^"'`]+)["'`]"""),
    re.compile(r"""axios(?:\.(?:get|post|put|delete|patch))?\(\s*["'`]([^"'`]+)["'`]"""),
    re.compile(r"""\.open\(\s*["'][A-Za-z]+["']\s*,\s*["'`]([^"'`]+)["'`]"""),
    re.compile(r"""\$\.(?:get|post|getJSON|ajax)\(\s*["'`]([^"'`]+)["'`]"""),
]


class _LinkExtractor(HTMLParser):
    """Collect anchor/form/script references and fetch-like calls in inline scripts."""

    def __init__(self):
        super().__init__()
        self.links: List[str] = []
        self._in_script = False

    def handle_starttag(self, tag, attrs):
        wanted = _LINK_ATTRS.get(tag)
        if wanted:
            for name, value in attrs:
                if name == wanted and value:
                    self.links.append(value.strip())
        if tag == "script":
            self._in_script = True

    def handle_endtag(self, tag):
        if tag == "script":
            self._in_script = False

    def handle_data(self, data):
        if self._in_script:
            for rx in _SCRIPT_REFS:
                self.links.extend(m.group(1) for m in rx.finditer(data))


def extract_links(html: str) -> List[str]:
    """Extract every followable reference from an HTML document."""
    parser = _LinkExtractor()
    parser.feed(html)
    parser.close()
    return parser.links


def _is_html(headers) -> bool:
    ctype = headers.get("content-type", "").lower()
    return "text/html" in ctype or "application/xhtml" in ctype


# ── Crawler class ──────────────────────────────────────────────

class Crawler:
    """
    Level-by-level BFS crawler feeding the probe stage.

    Usage:
        crawler = Crawler(dispatcher, logger, wordlist=["/backup", "/old"])
        for candidate in crawler.crawl(target):
            ...

    Each depth level is fetched as one dispatcher batch. Links found on a page
    at depth d are enqueued at d+1 only while d < max_depth, and a normalized
    URL is never enqueued twice. Wordlist entries join the depth-1 frontier
    and are only yielded when they do not 404. The generator can be restarted
    by calling crawl() again, but not resumed.
    """

    def __init__(self, dispatcher, logger=None, wordlist: Optional[List[str]] = None):
        self.dispatcher = dispatcher
        self.logger = logger
        self.wordlist = list(wordlist or [])

    def seeds(self, target: Target) -> List[str]:
        if target.include_paths:
            return [join_path(target.base_url, p) for p in target.include_paths]
        return [target.base_url]

    def in_scope(self, target: Target, url: str) -> bool:
        if not url.isprintable():
            return False
        if should_skip_url(url) or not is_same_origin(target.base_url, url):
            return False
        path = urlsplit(url).path or "/"
        if path_matches(path, target.exclude_paths):
            return False
        if target.include_paths and not path_matches(path, target.include_paths):
            return False
        return True

    def crawl(self, target: Target) -> Iterator[CandidateURL]:
        visited: Set[str] = set()
        frontier: List[Tuple[str, int, DiscoveryMethod]] = []

        for seed in self.seeds(target):
            norm = normalize_url(seed)
            if norm not in visited:
                visited.add(norm)
                frontier.append((seed, 0, DiscoveryMethod.SEED))

        if self.logger:
            self.logger.info(f"Crawling {target.base_url} (max depth: {target.max_depth})")

        yielded = 0
        while frontier:
            specs = [ProbeRequestSpec(url=url, role="crawl") for url, _, _ in frontier]
            entries = self.dispatcher.execute_batch(specs)
            next_frontier: List[Tuple[str, int, DiscoveryMethod]] = []

            seed_errors = [e for (_, _, m), e in zip(frontier, entries)
                           if m is DiscoveryMethod.SEED and isinstance(e, TransportError)]
            seed_total = sum(1 for _, _, m in frontier if m is DiscoveryMethod.SEED)
            if seed_total and len(seed_errors) == seed_total:
                raise CrawlError(f"seed unreachable: {seed_errors[0]}")

            for (url, depth, method), entry in zip(frontier, entries):
                if isinstance(entry, TransportError):
                    if self.logger:
                        self.logger.warn(f"Crawl fetch failed: {url} ({entry})")
                    continue
                if method is DiscoveryMethod.WORDLIST and entry.status_code == 404:
                    continue

                if self.logger and self.logger.verbose >= 2:
                    self.logger.debug(f"Visiting [{depth}] {url} ({entry.status_code})")
                yielded += 1
                yield CandidateURL(url=url, path=urlsplit(url).path or "/",
                                   depth=depth, method=method)

                if depth >= target.max_depth or not _is_html(entry.headers):
                    continue
                for href in extract_links(entry.body):
                    abs_url = urljoin(entry.url or url, href).split("#", 1)[0]
                    if not self.in_scope(target, abs_url):
                        continue
                    norm_child = normalize_url(abs_url)
                    if norm_child not in visited:
                        visited.add(norm_child)
                        next_frontier.append((abs_url, depth + 1, DiscoveryMethod.CRAWLED))

            if frontier[0][1] == 0 and target.max_depth >= 1:
                for entry_path in self.wordlist:
                    word_url = join_path(target.base_url, entry_path)
                    norm = normalize_url(word_url)
                    if norm in visited or not self.in_scope(target, word_url):
                        continue
                    visited.add(norm)
                    next_frontier.append((word_url, 1, DiscoveryMethod.WORDLIST))

            frontier = next_frontier

        if self.logger:
            self.logger.ok(f"Crawl complete: {len(visited)} URLs seen, "
                           f"{yielded} candidates")
