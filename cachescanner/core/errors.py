"""Exception taxonomy shared by the transport, crawler, probes and orchestrator."""

from typing import List, Optional


class ScannerError(Exception):
    """Base class for every error raised by the scanner."""


class TransportError(ScannerError):
    """A request could not be completed (after retries, where they apply)."""

    CONNECT = "connect"
    TIMEOUT = "timeout"
    TLS = "tls"
    PROXY = "proxy"
    REDIRECT = "redirect"
    PROTOCOL = "protocol"

    def __init__(self, kind: str, url: str, message: str = "", request=None):
        self.kind = kind
        self.url = url
        self.request = request
        super().__init__(f"{kind} error for {url}: {message}" if message
                         else f"{kind} error for {url}")


class CrawlError(ScannerError):
    """The seed URL(s) could not be fetched."""


class ProbeExecutionError(ScannerError):
    """Every request a probe issued for one URL failed."""

    def __init__(self, probe: str, url: str, reason: str = ""):
        self.probe = probe
        self.url = url
        self.reason = reason
        super().__init__(f"{probe} failed on {url}: {reason}" if reason
                         else f"{probe} failed on {url}")


class ConfigError(ScannerError):
    """One invalid configuration value."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class InvariantViolation(ScannerError):
    """Internal state broke an invariant of the data model."""


# ── scan-level errors ──────────────────────────────────────────

class ScanError(ScannerError):
    """Raised by run_scan() when no (complete) ScanResult can be produced."""


class ConfigurationInvalid(ScanError):
    def __init__(self, errors: List[ConfigError]):
        self.errors = list(errors)
        super().__init__("invalid configuration: " +
                         "; ".join(str(e) for e in self.errors))


class ScanFailed(ScanError):
    def __init__(self, cause: Exception):
        self.cause = cause
        super().__init__(f"scan failed: {cause}")


class ScanCancelled(ScanError):
    """The scan was cancelled; ``partial`` holds whatever was collected."""

    def __init__(self, partial=None):
        self.partial = partial
        super().__init__("scan cancelled")
