"""Scan configuration: dataclasses, YAML loading and pre-flight validation."""

import os
import re
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

import yaml

from cachescanner.core.errors import ConfigError

DEFAULT_USER_AGENT = "Web Cache Vulnerability Scanner/1.0"

DEFAULT_SENSITIVE_PATTERNS = [
    r"(?i)(session|sess_?id|csrf|xsrf)[\"'\s:=]+[A-Za-z0-9\-_.]{8,}",
    r"(?i)(api[_-]?key|access[_-]?token|auth[_-]?token|secret)[\"'\s:=]+[A-Za-z0-9\-_.]{8,}",
    r"\beyJ[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]{8,}",   # JWT
]

_PROXY_SCHEMES = ("http", "https", "socks5", "socks5h")


@dataclass
class WordlistConfig:
    paths: Optional[str] = None            # crawler seed expansion
    parameters: Optional[str] = None       # unkeyed / cloaked parameter names
    headers: Optional[str] = None          # unkeyed header names
    sensitive_paths: Optional[str] = None  # probing / enumeration


@dataclass
class AuthConfig:
    username: str
    password: str


@dataclass
class HttpConfig:
    headers: List[Tuple[str, str]] = field(default_factory=list)
    cookies: List[Tuple[str, str]] = field(default_factory=list)
    user_agent: str = DEFAULT_USER_AGENT
    proxy: Optional[str] = None
    auth: Optional[AuthConfig] = None

    @property
    def has_credentials(self) -> bool:
        return bool(self.cookies or self.auth or
                    any(k.lower() in ("authorization", "cookie") for k, _ in self.headers))


@dataclass
class TimingConfig:
    samples: int = 10          # hit/miss pairs
    warmup: int = 3
    threshold: float = 3.0     # separation score for Confirmed
    likely_threshold: float = 1.5
    trim: float = 0.1
    min_samples: int = 5


@dataclass
class Configuration:
    threads: int = 10
    timeout: float = 30.0
    max_retries: int = 2
    retry_backoff: float = 0.5
    max_backoff: float = 8.0
    rate_limit: Optional[float] = None
    burst: Optional[int] = None
    follow_redirects: bool = True
    max_redirects: int = 5
    verify_ssl: bool = True
    depth: int = 2
    passive: bool = False
    paths: List[str] = field(default_factory=list)
    exclude_paths: List[str] = field(default_factory=list)
    wordlists: WordlistConfig = field(default_factory=WordlistConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    probes: Optional[List[str]] = None
    timing: TimingConfig = field(default_factory=TimingConfig)
    sensitive_patterns: List[str] = field(default_factory=lambda: list(DEFAULT_SENSITIVE_PATTERNS))
    max_body_size: int = 1024 * 1024
    cache_headers: List[Dict[str, str]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Configuration":
        """Build from a plain mapping (e.g. parsed YAML); unknown keys are rejected."""
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(", ".join(sorted(unknown)), "unknown configuration key")

        http = dict(data.pop("http", None) or {})
        auth = http.pop("auth", None)
        if isinstance(auth, str):
            user, _, pwd = auth.partition(":")
            auth = {"username": user, "password": pwd}
        http_cfg = HttpConfig(
            headers=_pairs(http.pop("headers", []), ":"),
            cookies=_pairs(http.pop("cookies", []), "="),
            auth=AuthConfig(**auth) if auth else None,
            **http,
        )
        wordlists = data.pop("wordlists", None) or {}
        timing = data.pop("timing", None) or {}
        return cls(
            http=http_cfg,
            wordlists=WordlistConfig(**wordlists),
            timing=TimingConfig(**timing),
            **data,
        )

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["http"]["headers"] = [f"{k}: {v}" for k, v in self.http.headers]
        d["http"]["cookies"] = [f"{k}={v}" for k, v in self.http.cookies]
        return d


def _pairs(items, sep: str) -> List[Tuple[str, str]]:
    """Accept ``["Name: value"]``, ``[["Name", "value"]]`` or ``{"Name": "value"}``."""
    if isinstance(items, dict):
        return [(str(k), str(v)) for k, v in items.items()]
    out = []
    for item in items or []:
        if isinstance(item, str):
            name, found, value = item.partition(sep)
            if not found:
                raise ConfigError("http", f"expected 'name{sep}value', got {item!r}")
            out.append((name.strip(), value.strip()))
        else:
            name, value = item
            out.append((str(name), str(value)))
    return out


def load_configuration(path: str) -> Configuration:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(path, "top-level YAML value must be a mapping")
    return Configuration.from_dict(data)


def generate_sample_config(path: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(Configuration().to_dict(), f, sort_keys=False)


def read_wordlist(path: Optional[str]) -> List[str]:
    """Non-empty, non-comment lines of a wordlist file (empty list for None)."""
    if not path:
        return []
    with open(path, "r", encoding="utf-8", errors="ignore") as f:
        return [line.strip() for line in f
                if line.strip() and not line.lstrip().startswith("#")]


def validate_configuration(config: Configuration) -> List[ConfigError]:
    """Pre-flight checks. An empty list means the configuration is usable."""
    errors: List[ConfigError] = []

    def bad(name, message):
        errors.append(ConfigError(name, message))

    if config.threads < 1:
        bad("threads", "must be at least 1")
    if config.timeout <= 0:
        bad("timeout", "must be greater than 0")
    if config.max_retries < 0:
        bad("max_retries", "must not be negative")
    if config.retry_backoff < 0 or config.max_backoff < 0:
        bad("retry_backoff", "backoff delays must not be negative")
    if config.max_redirects < 0:
        bad("max_redirects", "must not be negative")
    if config.rate_limit is not None and config.rate_limit <= 0:
        bad("rate_limit", "must be greater than 0 (or unset for unlimited)")
    if config.burst is not None and config.burst < 1:
        bad("burst", "must be at least 1")
    if config.depth < 0:
        bad("depth", "must not be negative")
    if config.max_body_size < 1:
        bad("max_body_size", "must be at least 1 byte")
    if config.timing.samples < 1:
        bad("timing.samples", "must be at least 1")
    if config.timing.warmup < 0:
        bad("timing.warmup", "must not be negative")
    if not 0 <= config.timing.trim < 0.5:
        bad("timing.trim", "must be in [0, 0.5)")

    if config.http.proxy:
        parts = urlsplit(config.http.proxy)
        if parts.scheme not in _PROXY_SCHEMES or not parts.hostname:
            bad("http.proxy", f"unsupported proxy URL {config.http.proxy!r}")

    for name in ("paths", "parameters", "headers", "sensitive_paths"):
        path = getattr(config.wordlists, name)
        if path and not (os.path.isfile(path) and os.access(path, os.R_OK)):
            bad(f"wordlists.{name}", f"cannot read {path!r}")

    for pattern in config.sensitive_patterns:
        try:
            re.compile(pattern)
        except re.error as exc:
            bad("sensitive_patterns", f"{pattern!r}: {exc}")

    for entry in config.cache_headers:
        if not isinstance(entry, dict) or not entry.get("header") or \
                not (entry.get("hit") or entry.get("miss")):
            bad("cache_headers", f"rule needs 'header' and 'hit' or 'miss': {entry!r}")

    if config.probes is not None:
        from cachescanner.probes.registry import PROBES
        for name in config.probes:
            if name not in PROBES:
                bad("probes", f"unknown probe {name!r} (known: {', '.join(PROBES)})")

    return errors
