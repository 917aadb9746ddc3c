"""HTTP transport: one pooled httpx.Client plus header merging, retries and body capping."""

import base64
import time
from http.cookiejar import CookieJar, DefaultCookiePolicy
from typing import List, Optional, Tuple

import httpx

from cachescanner.core.cache_status import CacheIndicatorTable
from cachescanner.core.config import Configuration
from cachescanner.core.errors import TransportError
from cachescanner.core.models import ProbeRequestSpec, ResponseObservation

_STOP_HDRS = {"host", "content-length", "transfer-encoding"}
_CREDENTIAL_HDRS = {"authorization", "cookie"}


def _reject_all_cookies() -> CookieJar:
    # responses must never feed session state into later (e.g. anonymous) probes
    return CookieJar(policy=DefaultCookiePolicy(allowed_domains=[]))


class Transport:
    def __init__(self, config: Configuration, logger=None,
                 cache_table: Optional[CacheIndicatorTable] = None,
                 transport: Optional[httpx.BaseTransport] = None):
        self.config = config
        self.logger = logger
        self.cache_table = cache_table or CacheIndicatorTable()
        self.client = httpx.Client(
            verify=config.verify_ssl,
            proxy=config.http.proxy if transport is None else None,
            follow_redirects=config.follow_redirects,
            max_redirects=config.max_redirects,
            timeout=config.timeout,
            cookies=_reject_all_cookies(),
            transport=transport,
        )

    def close(self) -> None:
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ---------- request building ----------

    def _base_headers(self, anonymous: bool) -> List[Tuple[str, str]]:
        http = self.config.http
        headers = [("User-Agent", http.user_agent)]
        for name, value in http.headers:
            if name.lower() in _STOP_HDRS:
                continue
            if anonymous and name.lower() in _CREDENTIAL_HDRS:
                continue
            headers.append((name, value))
        if http.auth and not anonymous:
            token = base64.b64encode(
                f"{http.auth.username}:{http.auth.password}".encode()).decode()
            headers.append(("Authorization", f"Basic {token}"))
        return headers

    def build_headers(self, spec: ProbeRequestSpec) -> List[Tuple[str, str]]:
        """Base headers under probe overrides; the probe's duplicates are preserved."""
        override_names = {name.lower() for name, _ in spec.headers}
        merged = [(k, v) for k, v in self._base_headers(spec.anonymous)
                  if k.lower() not in override_names]
        merged.extend(spec.headers)

        cookies = {} if spec.anonymous else dict(self.config.http.cookies)
        cookies.update(dict(spec.cookies))
        if cookies and "cookie" not in override_names:
            merged = [(k, v) for k, v in merged if k.lower() != "cookie"]
            merged.append(("Cookie", "; ".join(f"{k}={v}" for k, v in cookies.items())))
        return merged

    # ---------- sending ----------

    def send(self, spec: ProbeRequestSpec) -> ResponseObservation:
        """Issue one request; raises TransportError once retries are exhausted."""
        attempts = 0 if spec.timing_sensitive else self.config.max_retries
        for attempt in range(attempts + 1):
            try:
                return self._send_once(spec)
            except TransportError as exc:
                retryable = exc.kind in (TransportError.TIMEOUT, TransportError.CONNECT,
                                         TransportError.PROXY)
                if attempt >= attempts or not retryable:
                    raise
                delay = min(self.config.retry_backoff * (2 ** attempt), self.config.max_backoff)
                if self.logger and self.logger.verbose >= 2:
                    self.logger.debug(f"retry {attempt + 1}/{attempts} for {spec.full_url} "
                                      f"in {delay:.2f}s ({exc.kind})")
                time.sleep(delay)
        raise AssertionError("unreachable")

    def _send_once(self, spec: ProbeRequestSpec) -> ResponseObservation:
        url = spec.full_url
        try:
            request = self.client.build_request(spec.method, url,
                                                headers=self.build_headers(spec))
            started = time.perf_counter()
            response = self.client.send(request, stream=True)
            try:
                body, truncated = self._read_capped(response)
            finally:
                response.close()
        except httpx.TimeoutException as exc:
            raise TransportError(TransportError.TIMEOUT, url, str(exc), spec) from exc
        except httpx.ProxyError as exc:
            raise TransportError(TransportError.PROXY, url, str(exc), spec) from exc
        except httpx.ConnectError as exc:
            kind = TransportError.TLS if _looks_like_tls(exc) else TransportError.CONNECT
            raise TransportError(kind, url, str(exc), spec) from exc
        except httpx.NetworkError as exc:
            raise TransportError(TransportError.CONNECT, url, str(exc), spec) from exc
        except httpx.TooManyRedirects as exc:
            raise TransportError(TransportError.REDIRECT, url, str(exc), spec) from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise TransportError(TransportError.PROTOCOL, url, str(exc), spec) from exc
        latency = time.perf_counter() - started

        if self.logger and self.logger.verbose >= 3:
            cache_lines = ", ".join(self.cache_table.explain(response.headers)) or "no cache headers"
            self.logger.debug(f"→ {spec.method} {url} [{spec.role}] {response.status_code} "
                              f"{latency * 1000:.1f}ms ({cache_lines})")

        return ResponseObservation(
            request=spec,
            status_code=response.status_code,
            headers=response.headers,
            body=body,
            truncated=truncated,
            latency=latency,
            cache=self.cache_table.classify(response.headers),
            url=str(response.url),
        )

    def _read_capped(self, response: httpx.Response) -> Tuple[str, bool]:
        limit = self.config.max_body_size
        chunks, size, truncated = [], 0, False
        for chunk in response.iter_bytes():
            if size + len(chunk) > limit:
                chunks.append(chunk[:limit - size])
                truncated = True
                break
            chunks.append(chunk)
            size += len(chunk)
        raw = b"".join(chunks)
        try:
            text = raw.decode(response.charset_encoding or "utf-8", errors="replace")
        except LookupError:
            text = raw.decode("utf-8", errors="replace")
        return text, truncated


def _looks_like_tls(exc: Exception) -> bool:
    text = str(exc).lower()
    return "ssl" in text or "certificate" in text or "tls" in text
