"""BFS crawler: depth bound, dedupe, scope and wordlist discovery."""

import httpx
import pytest

from conftest import LAB_URL
from cachescanner.core.crawler import Crawler, extract_links
from cachescanner.core.errors import CrawlError
from cachescanner.core.models import DiscoveryMethod, Target

SITE = {
    "/": '<a href="/a">a</a> <a href="/b?x=1#frag">b</a> <a href="/a/">a again</a>'
         '<a href="https://other.test/">elsewhere</a> <a href="/logo.png">logo</a>'
         '<a href="mailto:x@y">mail</a> <a href="/private/zone">private</a>',
    "/a": '<a href="/a/deep">deep</a> <a href="/">home</a>',
    "/b": '<form action="/b/submit"></form> <script>fetch("/api/items")</script>',
    "/a/deep": '<a href="/a/deep/deeper">deeper</a>',
    "/a/deep/deeper": "<p>end</p>",
    "/b/submit": "<p>ok</p>",
    "/api/items": "[]",
    "/private/zone": "<p>secret</p>",
    "/backup": "<p>old</p>",
}


def site_handler(request):
    body = SITE.get(request.url.path)
    if body is None:
        return httpx.Response(404, text="nope", headers={"Content-Type": "text/html"})
    return httpx.Response(200, text=body, headers={"Content-Type": "text/html"})


def crawl(make_dispatcher, target, wordlist=None):
    crawler = Crawler(make_dispatcher(site_handler), wordlist=wordlist)
    return list(crawler.crawl(target))


def test_extract_links_sources():
    links = extract_links('<a href="/x">x</a><iframe src="/frame"></iframe>'
                          '<form action="/post"></form>'
                          '<script>axios.get("/api/a"); $.get(\'/api/b\')</script>')
    assert {"/x", "/frame", "/post", "/api/a", "/api/b"} <= set(links)


class TestCrawler:
    def test_depth_bound(self, make_dispatcher):
        found = crawl(make_dispatcher, Target("http://app.test/", max_depth=2))
        by_path = {c.path: c.depth for c in found}
        assert by_path["/"] == 0
        assert by_path["/a"] == 1
        assert by_path["/a/deep"] == 2
        assert "/a/deep/deeper" not in by_path
        assert all(c.depth <= 2 for c in found)

    def test_depth_zero_yields_only_seed(self, make_dispatcher):
        found = crawl(make_dispatcher, Target("http://app.test/", max_depth=0))
        assert [(c.path, c.method) for c in found] == [("/", DiscoveryMethod.SEED)]

    def test_no_duplicates_and_scope(self, make_dispatcher):
        found = crawl(make_dispatcher, Target("http://app.test/", max_depth=3))
        normalized = [c.normalized for c in found]
        assert len(normalized) == len(set(normalized))
        urls = " ".join(c.url for c in found)
        assert "other.test" not in urls
        assert "logo.png" not in urls
        assert "#frag" not in urls
        assert "/api/items" in urls
        assert "/b/submit" in urls

    def test_exclude_paths(self, make_dispatcher):
        found = crawl(make_dispatcher, Target("http://app.test/", max_depth=2,
                                              exclude_paths=("/private*",)))
        assert not any(c.path.startswith("/private") for c in found)

    def test_include_paths_seed_and_restrict(self, make_dispatcher):
        found = crawl(make_dispatcher, Target("http://app.test/", max_depth=2,
                                              include_paths=("/a",)))
        assert {c.path for c in found} == {"/a", "/a/deep"}
        assert found[0].method is DiscoveryMethod.SEED

    def test_wordlist_entries_skip_404(self, make_dispatcher):
        found = crawl(make_dispatcher, Target("http://app.test/", max_depth=1),
                      wordlist=["/backup", "/missing", "a"])
        wordlist = [c for c in found if c.method is DiscoveryMethod.WORDLIST]
        assert [c.path for c in wordlist] == ["/backup"]
        assert wordlist[0].depth == 1

    def test_unreachable_seed_raises(self, make_dispatcher):
        def down(request):
            raise httpx.ConnectError("refused", request=request)

        crawler = Crawler(make_dispatcher(down))
        with pytest.raises(CrawlError):
            list(crawler.crawl(Target("http://app.test/")))

    def test_crawls_the_lab(self, make_dispatcher, lab_transport):
        crawler = Crawler(make_dispatcher(lab_transport))
        paths = {c.path for c in crawler.crawl(Target(LAB_URL + "/", max_depth=2))}
        assert {"/", "/news", "/account", "/search", "/lang", "/news/archive"} <= paths
        assert "/news/archive/2019" not in paths

    def test_control_characters_in_links_are_dropped(self, make_dispatcher):
        def handler(request):
            if request.url.path == "/":
                return httpx.Response(200, text='<a href="/a\x01b">bad</a> <a href="/ok">ok</a>',
                                      headers={"Content-Type": "text/html"})
            return httpx.Response(200, text="<p>fine</p>", headers={"Content-Type": "text/html"})

        crawler = Crawler(make_dispatcher(handler))
        found = list(crawler.crawl(Target("http://app.test/", max_depth=2)))
        assert [c.path for c in found] == ["/", "/ok"]
