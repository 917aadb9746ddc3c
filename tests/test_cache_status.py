"""Cache indicator classification."""

import httpx
import pytest

from cachescanner.core.cache_status import CacheHeaderRule, CacheIndicatorTable, regex_matcher
from cachescanner.core.models import CacheIndicator

HIT, MISS, UNKNOWN = CacheIndicator.HIT, CacheIndicator.MISS, CacheIndicator.UNKNOWN


@pytest.mark.parametrize("header,value,expected", [
    ("X-Cache", "HIT", HIT),
    ("X-Cache", "Hit from cloudfront", HIT),
    ("X-Cache", "Miss from cloudfront", MISS),
    ("CF-Cache-Status", "HIT", HIT),
    ("CF-Cache-Status", "DYNAMIC", MISS),
    ("CF-Cache-Status", "EXPIRED", MISS),
    ("X-Cache-Status", "STALE", HIT),
    ("Akamai-Cache-Status", "Hit from child", HIT),
    ("X-Vercel-Cache", "PRERENDER", HIT),
    ("X-Rack-Cache", "fresh", HIT),
    ("X-Drupal-Cache", "MISS", MISS),
    ("X-Varnish", "32769 32768", HIT),
    ("X-Varnish", "32770", MISS),
    ("Cache-Status", "ExampleCache; hit; ttl=30", HIT),
    ("Cache-Status", "Origin; fwd=uri-miss", MISS),
    ("Cache-Status", "Edge; fwd=miss, Browser; hit", HIT),
    ("Age", "120", HIT),
    ("Age", "0", UNKNOWN),
    ("Age", "soon", UNKNOWN),
    ("Server", "nginx", UNKNOWN),
])
def test_classify_vendor_headers(header, value, expected):
    table = CacheIndicatorTable()
    assert table.classify(httpx.Headers({header: value})) is expected


def test_no_headers_is_unknown():
    assert CacheIndicatorTable().classify(httpx.Headers()) is UNKNOWN


def test_first_decisive_rule_wins():
    """A present X-Cache outranks Age; an unrecognised value does not."""
    table = CacheIndicatorTable()
    assert table.classify(httpx.Headers([("X-Cache", "MISS"), ("Age", "30")])) is MISS
    assert table.classify(httpx.Headers([("X-Cache", "whatever"), ("Age", "30")])) is HIT


def test_custom_rules_from_config():
    table = CacheIndicatorTable()
    table.extend_from_config([{"header": "X-Edge", "hit": "^cached$", "miss": "^origin$"}])
    assert table.classify(httpx.Headers({"X-Edge": "cached"})) is HIT
    assert table.classify(httpx.Headers({"X-Edge": "origin", "Age": "5"})) is MISS


def test_register_appends_when_asked():
    table = CacheIndicatorTable(rules=[])
    table.register(CacheHeaderRule("x-a", regex_matcher("yes")), first=False)
    table.register(CacheHeaderRule("x-b", regex_matcher("yes")), first=False)
    assert [r.header for r in table.rules] == ["x-a", "x-b"]


def test_explain_lists_cache_headers():
    table = CacheIndicatorTable()
    lines = table.explain(httpx.Headers([("X-Cache", "HIT"), ("Age", "3"), ("Server", "x")]))
    assert lines == ["x-cache: HIT", "age: 3"]
