"""CacheLab: deliberately misconfigured cache + origin for cachescanner testing.

The Flask ``app`` is the origin. ``SharedCache`` wraps it the way a CDN
would: responses are keyed on path + query only (``utm_*`` parameters are
stripped from the key, request headers and cookies are ignored) and anything
that looks like a static file is stored whatever the origin says.

    python vuln_lab/app.py          # serves the cached lab on :5000
"""

import threading
import time

from flask import Flask, request, render_template_string, make_response

app = Flask(__name__)

LAB_SESSION = "lab-session-7f3a9c"
_STATIC_EXT = (".css", ".js", ".png", ".jpg", ".jpeg", ".gif", ".ico")


# ── Shared cache (the "CDN") ────────────────────────────────────

class SharedCache:
    """Toy shared cache in front of a WSGI origin."""

    def __init__(self, origin, ttl: float = 60.0, clock=time.monotonic):
        self.origin = origin
        self.ttl = ttl
        self.clock = clock
        self._store = {}
        self._lock = threading.Lock()

    def clear(self):
        with self._lock:
            self._store.clear()

    @staticmethod
    def key(environ) -> str:
        path = environ.get("PATH_INFO", "/")
        query = [part for part in environ.get("QUERY_STRING", "").split("&")
                 if part and not part.lower().startswith("utm_")]
        return path + ("?" + "&".join(query) if query else "")

    @staticmethod
    def storable(environ, status: str, headers) -> bool:
        if not status.startswith("200"):
            return False
        if environ.get("PATH_INFO", "").lower().endswith(_STATIC_EXT):
            # MISCONFIGURED: static-looking paths are cached no matter what
            return True
        cc = ", ".join(v for k, v in headers if k.lower() == "cache-control").lower()
        return "public" in cc and "no-store" not in cc and "private" not in cc

    def _fetch(self, environ):
        env = dict(environ)
        # the origin ignores matrix parameters: /account;x.css routes to /account
        env["PATH_INFO"] = environ.get("PATH_INFO", "/").split(";", 1)[0] or "/"
        captured = {}

        def start_response(status, headers, exc_info=None):
            captured["status"] = status
            captured["headers"] = list(headers)
            return lambda data: None

        result = self.origin(env, start_response)
        try:
            body = b"".join(result)
        finally:
            if hasattr(result, "close"):
                result.close()
        return captured["status"], captured["headers"], body

    def __call__(self, environ, start_response):
        if environ.get("REQUEST_METHOD") != "GET":
            return self.origin(environ, start_response)

        key = self.key(environ)
        now = self.clock()
        with self._lock:
            entry = self._store.get(key)
        if entry and now - entry[0] < self.ttl:
            stored_at, status, headers, body = entry
            start_response(status, headers + [("X-Cache", "HIT"),
                                              ("Age", str(int(now - stored_at)))])
            return [body]

        status, headers, body = self._fetch(environ)
        if self.storable(environ, status, headers):
            with self._lock:
                self._store[key] = (now, status, headers, body)
        start_response(status, headers + [("X-Cache", "MISS")])
        return [body]


# ── Shared HTML layout ──────────────────────────────────────────

_LAYOUT = """<!DOCTYPE html>
<html lang="{{ lang }}"><head><title>CacheLab - {{ title }}</title>
{{ head|safe }}
<style>
body{font-family:monospace;background:#111;color:#0f0;max-width:900px;margin:0 auto;padding:2rem}
a{color:#0ff}h1{color:#f00}h2{color:#ff0}
.result{background:#1a1a1a;padding:1rem;border:1px solid #333;margin:1rem 0}
</style></head>
<body>
<h1>CacheLab</h1>
<p><a href="/">Home</a></p>
<h2>{{ title }}</h2>
{{ content|safe }}
</body></html>
"""


def page(title, content, head="", lang="en", cache="public, max-age=60"):
    body = render_template_string(_LAYOUT, title=title, content=content, head=head, lang=lang)
    resp = make_response(body)
    resp.headers["Cache-Control"] = cache
    return resp


def logged_in():
    return request.cookies.get("session") == LAB_SESSION


# ══════════════════════════════════════════════════════════════════
#  HOME - links for crawler discovery, unkeyed X-Forwarded-Host
# ══════════════════════════════════════════════════════════════════

@app.route("/")
def home():
    # VULNERABLE: X-Forwarded-Host is reflected but not part of the cache key
    host = request.headers.get("X-Forwarded-Host", request.host)
    head = (f'<link rel="canonical" href="https://{host}/">\n'
            f'<script src="//{host}/static/app.js"></script>')
    return page("Home", """
    <p>Deliberately misconfigured cache for cachescanner testing.</p>
    <ul>
        <li><a href="/news">News</a></li>
        <li><a href="/account">My account</a></li>
        <li><a href="/search?q=hello">Search</a></li>
        <li><a href="/lang">Localised page</a></li>
        <li><a href="/slow">Slow report</a></li>
        <li><a href="/about">About</a></li>
        <li><a href="/static/app.css">Stylesheet</a></li>
        <li><a href="https://elsewhere.example.org/">Partner</a></li>
    </ul>
    """, head=head)


# ══════════════════════════════════════════════════════════════════
#  NEWS - nested pages for crawl depth
# ══════════════════════════════════════════════════════════════════

@app.route("/news")
def news():
    return page("News", '<p><a href="/news/archive">Archive</a></p>')


@app.route("/news/archive")
def news_archive():
    return page("Archive", '<p><a href="/news/archive/2019">2019</a></p>')


@app.route("/news/archive/2019")
def news_archive_2019():
    return page("2019", "<p>Nothing happened.</p>")


@app.route("/about")
def about():
    return page("About", "<p>Never cached.</p>", cache="no-store")


# ══════════════════════════════════════════════════════════════════
#  ACCOUNT - private page, deception target
# ══════════════════════════════════════════════════════════════════

@app.route("/account")
def account():
    if not logged_in():
        resp = make_response(page("Login required", "<p>Please log in.</p>",
                                  cache="no-store"))
        resp.status_code = 401
        return resp
    # VULNERABLE: served as /account;x.css this is stored by the static rule
    return page("My account", """
    <div class="result">
        <p>Welcome back, alice.</p>
        <p>csrf: 4f9a1c2e7b3d8e6f0a1b</p>
        <p>api_key = "sk_live_51HxLabSecretKey"</p>
    </div>
    """, cache="private, no-store")


# ══════════════════════════════════════════════════════════════════
#  SEARCH - origin splits the query on ';' as well as '&'
# ══════════════════════════════════════════════════════════════════

def _origin_query():
    params = {}
    raw = request.query_string.decode("latin-1")
    for part in raw.replace(";", "&").split("&"):
        name, _, value = part.partition("=")
        if name:
            params[name] = value
    return params


@app.route("/search")
def search():
    # VULNERABLE: utm_content=1;q=x hides q from the cache key
    q = _origin_query().get("q", "")
    return page("Search", f'<div class="result"><p>Results for: {q}</p></div>')


# ══════════════════════════════════════════════════════════════════
#  LANG - Accept-Language changes the page but is not keyed
# ══════════════════════════════════════════════════════════════════

@app.route("/lang")
def lang():
    # VULNERABLE: response varies on Accept-Language, no Vary header
    value = request.headers.get("Accept-Language", "en").split(",")[0].strip()
    return page("Localised", f"<p>Language: {value}</p>", lang=value)


# ══════════════════════════════════════════════════════════════════
#  ADMIN / SLOW
# ══════════════════════════════════════════════════════════════════

@app.route("/admin")
def admin():
    # VULNERABLE: admin console is public and cacheable
    return page("Admin console", "<p>3 pending approvals.</p>")


@app.route("/slow")
def slow():
    time.sleep(0.05)
    return page("Slow report", "<p>Generated the expensive way.</p>")


# ══════════════════════════════════════════════════════════════════
#  Main
# ══════════════════════════════════════════════════════════════════

if __name__ == "__main__":
    from werkzeug.serving import run_simple

    print("\n  CacheLab starting on http://0.0.0.0:5000\n")
    print(f"  session cookie: session={LAB_SESSION}\n")
    run_simple("0.0.0.0", 5000, SharedCache(app), threaded=True)
