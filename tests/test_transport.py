"""HTTP transport: header merging, anonymity, retries, body cap and error mapping."""

import httpx
import pytest

from cachescanner.core.config import AuthConfig, Configuration, DEFAULT_USER_AGENT
from cachescanner.core.errors import TransportError
from cachescanner.core.models import CacheIndicator, ProbeRequestSpec
from cachescanner.core.transport import Transport
from cachescanner.reporters.console import Log

URL = "http://app.test/page"


def recorder(status=200, headers=None, text="ok"):
    """Handler that stores every request it sees."""
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(status, headers=headers or {}, text=text)

    handler.seen = seen
    return handler


def transport_for(handler, cfg=None):
    return Transport(cfg or Configuration(max_retries=0), transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# Header merging
# ---------------------------------------------------------------------------

class TestHeaders:
    def test_default_user_agent(self):
        handler = recorder()
        with transport_for(handler) as t:
            t.send(ProbeRequestSpec(url=URL))
        assert handler.seen[0].headers["user-agent"] == DEFAULT_USER_AGENT

    def test_probe_header_overrides_configured_one(self):
        cfg = Configuration(max_retries=0)
        cfg.http.headers = [("X-Test", "config"), ("X-Keep", "1")]
        handler = recorder()
        with transport_for(handler, cfg) as t:
            t.send(ProbeRequestSpec(url=URL, headers=(("X-Test", "probe"),)))
        headers = handler.seen[0].headers
        assert headers.get_list("x-test") == ["probe"]
        assert headers["x-keep"] == "1"

    def test_probe_duplicates_are_kept(self):
        handler = recorder()
        with transport_for(handler) as t:
            t.send(ProbeRequestSpec(url=URL, headers=(("X-Dup", "a"), ("X-Dup", "b"))))
        assert handler.seen[0].headers.get_list("x-dup") == ["a", "b"]

    def test_hop_by_hop_config_headers_dropped(self):
        cfg = Configuration(max_retries=0)
        cfg.http.headers = [("Host", "evil.test"), ("Content-Length", "99")]
        handler = recorder()
        with transport_for(handler, cfg) as t:
            t.send(ProbeRequestSpec(url=URL))
        assert handler.seen[0].headers["host"] == "app.test"

    def test_cookies_merge_by_name(self):
        cfg = Configuration(max_retries=0)
        cfg.http.cookies = [("session", "abc"), ("theme", "dark")]
        handler = recorder()
        with transport_for(handler, cfg) as t:
            t.send(ProbeRequestSpec(url=URL, cookies=(("theme", "light"), ("probe", "1"))))
        assert handler.seen[0].headers["cookie"] == "session=abc; theme=light; probe=1"

    def test_basic_auth(self):
        cfg = Configuration(max_retries=0)
        cfg.http.auth = AuthConfig("alice", "s3cret")
        handler = recorder()
        with transport_for(handler, cfg) as t:
            t.send(ProbeRequestSpec(url=URL))
        assert handler.seen[0].headers["authorization"] == "Basic YWxpY2U6czNjcmV0"


class TestAnonymous:
    def test_anonymous_strips_every_credential(self):
        cfg = Configuration(max_retries=0)
        cfg.http.headers = [("Authorization", "Bearer t0ken"), ("X-Trace", "1")]
        cfg.http.cookies = [("session", "abc")]
        cfg.http.auth = AuthConfig("alice", "pw")
        handler = recorder()
        with transport_for(handler, cfg) as t:
            t.send(ProbeRequestSpec(url=URL, anonymous=True))
        headers = handler.seen[0].headers
        assert "authorization" not in headers
        assert "cookie" not in headers
        assert headers["x-trace"] == "1"

    def test_set_cookie_is_never_replayed(self):
        handler = recorder(headers={"Set-Cookie": "session=leaked; Path=/"})
        with transport_for(handler) as t:
            t.send(ProbeRequestSpec(url=URL))
            t.send(ProbeRequestSpec(url=URL, anonymous=True))
        assert "cookie" not in handler.seen[1].headers


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class TestObservation:
    def test_observation_fields(self):
        handler = recorder(headers={"X-Cache": "HIT", "Content-Type": "text/html"},
                           text="<p>hello</p>")
        with transport_for(handler) as t:
            spec = ProbeRequestSpec(url=URL, params=(("cb", "1"),), role="verify")
            obs = t.send(spec)
        assert obs.status_code == 200
        assert obs.cache is CacheIndicator.HIT
        assert obs.body == "<p>hello</p>"
        assert obs.request is spec
        assert obs.latency >= 0
        assert obs.url == "http://app.test/page?cb=1"

    def test_body_is_capped(self):
        cfg = Configuration(max_retries=0, max_body_size=10)
        with transport_for(recorder(text="x" * 100), cfg) as t:
            obs = t.send(ProbeRequestSpec(url=URL))
        assert obs.truncated
        assert obs.body == "x" * 10

    def test_contains_checks_headers_too(self):
        handler = recorder(headers={"Location": "https://cz123.example.com/"}, text="moved")
        with transport_for(handler) as t:
            obs = t.send(ProbeRequestSpec(url=URL))
        assert obs.contains("cz123")
        assert not obs.contains("cz999")

    def test_verbose_log_lists_cache_headers(self, capsys):
        handler = recorder(headers={"X-Cache": "HIT", "Age": "4"})
        t = Transport(Configuration(max_retries=0), logger=Log(verbose=3),
                      transport=httpx.MockTransport(handler))
        with t:
            t.send(ProbeRequestSpec(url=URL, role="verify"))
        out = capsys.readouterr().out
        assert "x-cache: HIT" in out and "age: 4" in out


# ---------------------------------------------------------------------------
# Failures and retries
# ---------------------------------------------------------------------------

class TestRetries:
    def flaky(self, failures, exc=httpx.ConnectError):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) <= failures:
                raise exc("boom", request=request)
            return httpx.Response(200, text="ok")

        handler.calls = calls
        return handler

    def test_retries_connect_errors(self):
        handler = self.flaky(2)
        cfg = Configuration(max_retries=2, retry_backoff=0.0)
        with transport_for(handler, cfg) as t:
            assert t.send(ProbeRequestSpec(url=URL)).status_code == 200
        assert len(handler.calls) == 3

    def test_gives_up_after_max_retries(self):
        handler = self.flaky(5)
        cfg = Configuration(max_retries=1, retry_backoff=0.0)
        with transport_for(handler, cfg) as t:
            with pytest.raises(TransportError) as info:
                t.send(ProbeRequestSpec(url=URL))
        assert info.value.kind == TransportError.CONNECT
        assert len(handler.calls) == 2

    def test_timing_sensitive_requests_are_not_retried(self):
        handler = self.flaky(1, exc=httpx.ReadTimeout)
        cfg = Configuration(max_retries=3, retry_backoff=0.0)
        with transport_for(handler, cfg) as t:
            with pytest.raises(TransportError) as info:
                t.send(ProbeRequestSpec(url=URL, timing_sensitive=True))
        assert info.value.kind == TransportError.TIMEOUT
        assert len(handler.calls) == 1

    def test_protocol_errors_are_not_retried(self):
        handler = self.flaky(1, exc=httpx.RemoteProtocolError)
        cfg = Configuration(max_retries=3, retry_backoff=0.0)
        with transport_for(handler, cfg) as t:
            with pytest.raises(TransportError) as info:
                t.send(ProbeRequestSpec(url=URL))
        assert info.value.kind == TransportError.PROTOCOL
        assert len(handler.calls) == 1

    def test_tls_failures_are_classified(self):
        def handler(request):
            raise httpx.ConnectError("[SSL: CERTIFICATE_VERIFY_FAILED] certificate verify failed",
                                     request=request)

        with transport_for(handler) as t:
            with pytest.raises(TransportError) as info:
                t.send(ProbeRequestSpec(url=URL))
        assert info.value.kind == TransportError.TLS
        assert info.value.url == URL

    def test_unbuildable_url_is_a_transport_error(self):
        handler = recorder()
        with transport_for(handler) as t:
            with pytest.raises(TransportError) as info:
                t.send(ProbeRequestSpec(url="http://app.test/a\x01b"))
        assert info.value.kind == TransportError.PROTOCOL
        assert handler.seen == []
