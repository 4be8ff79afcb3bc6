from __future__ import annotations

import httpx
import pytest

from auditor.safety import SafeResolver

PAGE_HTML = """
<html>
  <head>
    <title>Example Domain for audits</title>
    <meta name="description" content="An example page used by the audit tests.">
    <link rel="canonical" href="https://example.com/">
    <script src="/static/jquery-3.6.0.min.js"></script>
  </head>
  <body>
    <h1>Example Domain</h1>
    <h2>Section</h2>
    <img src="/a.png" alt="">
    <a href="/about">About</a>
    <a href="/missing#top">Missing</a>
    <a href="/about">About again</a>
    <a href="https://other.example/">Elsewhere</a>
    <a href="mailto:team@example.com">Mail</a>
  </body>
</html>
"""

PAGE_HEADERS = {
    "Content-Type": "text/html; charset=utf-8",
    "Strict-Transport-Security": "max-age=63072000",
}


def psi_payload(score: float) -> dict:
    return {
        "lighthouseResult": {
            "categories": {"performance": {"score": score}},
            "audits": {
                "largest-contentful-paint": {"displayValue": "2.5 s", "numericValue": 2500.0},
                "interaction-to-next-paint": {"displayValue": "180 ms", "numericValue": 180.0},
                "cumulative-layout-shift": {"displayValue": "0.05", "numericValue": 0.05},
            },
        }
    }


def site_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/":
        return httpx.Response(200, headers=PAGE_HEADERS, text=PAGE_HTML)
    if path == "/sitemap.xml":
        return httpx.Response(200, headers={"Content-Type": "application/xml"}, text="<urlset/>")
    if path == "/about":
        if request.method == "HEAD":
            return httpx.Response(405)
        return httpx.Response(200, headers={"Content-Type": "text/html"}, text="<html></html>")
    return httpx.Response(404, headers={"Content-Type": "text/plain"}, text="not found")


def psi_handler(request: httpx.Request) -> httpx.Response:
    strategy = request.url.params.get("strategy")
    score = 0.5 if strategy == "mobile" else 0.9
    return httpx.Response(200, json=psi_payload(score))


async def public_resolve(hostname: str) -> list[str]:
    return ["93.184.216.34"]


@pytest.fixture
def site_transport() -> httpx.MockTransport:
    return httpx.MockTransport(site_handler)


@pytest.fixture
def psi_transport() -> httpx.MockTransport:
    return httpx.MockTransport(psi_handler)


@pytest.fixture
def resolver() -> SafeResolver:
    return SafeResolver(public_resolve)
