"""
cachescanner - shared test fixtures

Every HTTP exchange is faked: either an ``httpx.MockTransport`` handler
written in the test, or the CacheLab Flask app (behind its SharedCache)
mounted through ``httpx.WSGITransport``. Nothing touches the network.
"""

import httpx
import pytest

from cachescanner.core.config import Configuration
from cachescanner.core.dispatcher import Dispatcher
from cachescanner.core.models import CandidateURL, DiscoveryMethod
from cachescanner.core.transport import Transport
from vuln_lab.app import LAB_SESSION, SharedCache, app as lab_app

LAB_URL = "http://lab.test"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@pytest.fixture
def config():
    """Small, fast configuration: no retries, short timing runs."""
    cfg = Configuration(threads=4, timeout=5.0, max_retries=0, retry_backoff=0.0)
    cfg.timing.samples = 6
    cfg.timing.warmup = 1
    cfg.timing.min_samples = 5
    return cfg


@pytest.fixture
def auth_config(config):
    """Configuration carrying the lab's session cookie."""
    config.http.cookies = [("session", LAB_SESSION)]
    return config


# ---------------------------------------------------------------------------
# CacheLab
# ---------------------------------------------------------------------------

@pytest.fixture
def lab():
    """A fresh (empty) shared cache in front of the lab origin."""
    return SharedCache(lab_app)


@pytest.fixture
def lab_transport(lab):
    return httpx.WSGITransport(app=lab)


# ---------------------------------------------------------------------------
# Dispatchers
# ---------------------------------------------------------------------------

@pytest.fixture
def make_dispatcher(config):
    """Build a Dispatcher over a handler function or an httpx transport."""
    created = []

    def _make(handler, cfg=None, **kwargs):
        cfg = cfg or config
        if not isinstance(handler, httpx.BaseTransport):
            handler = httpx.MockTransport(handler)
        dispatcher = Dispatcher(Transport(cfg, transport=handler),
                                threads=cfg.threads, **kwargs)
        created.append(dispatcher)
        return dispatcher

    yield _make
    for dispatcher in created:
        dispatcher.shutdown()
        dispatcher.transport.close()


def candidate(url, depth=0, method=DiscoveryMethod.SEED):
    return CandidateURL(url=url, path=httpx.URL(url).path, depth=depth, method=method)


# ---------------------------------------------------------------------------
# Fake clock for the rate limiter
# ---------------------------------------------------------------------------

class FakeClock:
    """Monotonic clock that only moves when something sleeps on it."""

    def __init__(self, start=100.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
