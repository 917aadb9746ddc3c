"""URL helpers: normalization, scope checks and cache busting."""

import fnmatch
import random
import string
from typing import Iterable, List, Tuple
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

_DEFAULT_PORTS = {"http": 80, "https": 443}

_STATIC_EXT = (".css", ".js", ".png", ".jpg", ".jpeg", ".gif", ".svg",
               ".ico", ".woff", ".woff2", ".ttf", ".eot", ".pdf",
               ".zip", ".tar", ".gz", ".mp4", ".mp3", ".webp")


def normalize_url(url: str) -> str:
    """scheme + host + path + sorted query; fragment and default port dropped."""
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    if parts.port and parts.port != _DEFAULT_PORTS.get(scheme):
        host = f"{host}:{parts.port}"
    path = parts.path.rstrip("/") or "/"
    query = urlencode(sorted(parse_qsl(parts.query, keep_blank_values=True)))
    return urlunsplit((scheme, host, path, query, ""))


def origin(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def is_same_origin(base_url: str, target_url: str) -> bool:
    """Check if target_url is same-origin as base_url."""
    base = urlsplit(base_url)
    target = urlsplit(target_url)
    return (base.scheme.lower() == target.scheme.lower()
            and base.netloc.lower() == target.netloc.lower())


def should_skip_url(url: str) -> bool:
    """Skip non-HTTP URLs and static assets."""
    lower = url.lower()
    if any(lower.startswith(s) for s in ("javascript:", "mailto:", "tel:", "data:", "#")):
        return True
    path = urlsplit(url).path.lower()
    return any(path.endswith(ext) for ext in _STATIC_EXT)


def path_matches(path: str, rules: Iterable[str]) -> bool:
    """True when *path* falls under any rule (prefix or glob)."""
    for rule in rules:
        if not rule:
            continue
        if any(ch in rule for ch in "*?["):
            if fnmatch.fnmatch(path, rule):
                return True
        elif path.startswith(rule):
            return True
    return False


def join_path(base_url: str, path: str) -> str:
    """Resolve *path* against the origin of *base_url*."""
    if not path.startswith("/"):
        path = "/" + path
    return urljoin(origin(base_url) + "/", path)


def add_query(url: str, pairs: List[Tuple[str, str]]) -> str:
    """Append encoded query pairs, keeping whatever query is already there."""
    if not pairs:
        return url
    sep = "&" if urlsplit(url).query else ("" if url.endswith("?") else "?")
    return f"{url}{sep}{urlencode(pairs)}"


def add_raw_query(url: str, raw: str) -> str:
    """Append a pre-built query fragment verbatim (delimiters are not re-encoded)."""
    sep = "&" if urlsplit(url).query else ("" if url.endswith("?") else "?")
    return f"{url}{sep}{raw}"


def rand(n: int = 8) -> str:
    """Random lowercase alphanumeric token."""
    abc = string.ascii_lowercase + string.digits
    return "".join(random.choice(abc) for _ in range(n))


def cache_buster(prefix: str = "cb") -> Tuple[str, str]:
    """A fresh (name, value) query pair that forces a distinct cache key."""
    return prefix, rand(10)
