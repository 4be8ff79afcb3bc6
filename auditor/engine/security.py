from __future__ import annotations

import re
from urllib.parse import urlparse

from auditor.fetcher import FetchResult
from auditor.models import AnalysisSection, Finding

HTML_SCAN_CHARS = 200_000

REQUIRED_HEADERS = [
    ("strict-transport-security", "Missing HSTS", "Add Strict-Transport-Security header to enforce HTTPS."),
    ("content-security-policy", "Missing Content-Security-Policy", "Add a CSP header to mitigate XSS risks."),
    ("x-frame-options", "Missing X-Frame-Options", "Add X-Frame-Options to reduce clickjacking."),
    ("referrer-policy", "Missing Referrer-Policy", "Add Referrer-Policy to limit referrer exposure."),
]

COMMON_LIBRARIES = [
    re.compile(r"jquery(?:[-.](\d+\.\d+\.\d+))?(?:\.min)?\.js", re.IGNORECASE),
    re.compile(r"react(?:[-.](\d+\.\d+\.\d+))?(?:\.min)?\.js", re.IGNORECASE),
    re.compile(r"vue(?:[-.](\d+\.\d+\.\d+))?(?:\.min)?\.js", re.IGNORECASE),
    re.compile(r"angular(?:[-.](\d+\.\d+\.\d+))?(?:\.min)?\.js", re.IGNORECASE),
    re.compile(r"lodash(?:[-.](\d+\.\d+\.\d+))?(?:\.min)?\.js", re.IGNORECASE),
]


def detect_libraries(html: str) -> list[dict]:
    snippet = (html or "")[:HTML_SCAN_CHARS]
    libraries = []
    for pattern in COMMON_LIBRARIES:
        match = pattern.search(snippet)
        if match:
            libraries.append({"match": match.group(0), "version": match.group(1)})
    return libraries


def analyze_security(url: str, page: FetchResult) -> AnalysisSection:
    """Passive checks on the already-fetched main page response."""
    headers = {key.lower(): value for key, value in page.headers.items()}
    findings: list[Finding] = []

    for header, title, action in REQUIRED_HEADERS:
        if not headers.get(header):
            findings.append(Finding(title=title, action=action))

    if urlparse(url).scheme == "http" and not (page.final_url or "").startswith("https:"):
        findings.append(Finding(title="No HTTPS redirect", action="Ensure the site redirects HTTP to HTTPS."))

    if headers.get("access-control-allow-origin", "").strip() == "*":
        findings.append(
            Finding(
                title="Permissive CORS",
                action='Access-Control-Allow-Origin is "*". Review to ensure it is safe for sensitive endpoints.',
            )
        )

    libraries = detect_libraries(page.body_text or "")
    if libraries:
        examples = ", ".join(lib["match"] for lib in libraries)
        findings.append(
            Finding(
                title="Detected JS libraries - verify versions",
                action=(
                    f"Found {len(libraries)} common libraries in page; check versions and update "
                    f"if outdated. Examples: {examples}"
                ),
            )
        )

    return AnalysisSection(
        findings=findings,
        raw={"headers": headers, "libraries": libraries, "final_url": page.final_url},
    )
