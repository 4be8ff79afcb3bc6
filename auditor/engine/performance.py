from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional
from urllib.parse import urlencode

from auditor.fetcher import BoundedFetcher, FetchError
from auditor.models import AnalysisSection, Finding

log = logging.getLogger(__name__)

PSI_ENDPOINT = "https://www.googleapis.com/pagespeedonline/v5/runPagespeed"
PSI_METRICS = {
    "lcp": "largest-contentful-paint",
    "inp": "interaction-to-next-paint",
    "cls": "cumulative-layout-shift",
}
SLOW_SERVER_MS = 1000
MIN_MOBILE_SCORE = 60
MIN_DESKTOP_SCORE = 70


def parse_psi(payload: dict[str, Any]) -> dict[str, Any]:
    lighthouse = payload.get("lighthouseResult") or {}
    categories = lighthouse.get("categories") or {}
    audits = lighthouse.get("audits") or {}

    performance = categories.get("performance")
    perf_score = round((performance.get("score") or 0) * 100) if performance else None

    profile: dict[str, Any] = {"perf_score": perf_score}
    for name, audit_key in PSI_METRICS.items():
        audit = audits.get(audit_key)
        if not audit:
            profile[name] = None
            profile[f"{name}_value"] = None
            continue
        profile[name] = audit.get("displayValue") or audit.get("numericValue")
        profile[f"{name}_value"] = audit.get("numericValue")
    return profile


class PerformanceAnalyzer:
    """Server timing of the target plus PageSpeed Insights for both profiles.

    ``target_fetcher`` talks to the audited site; ``service_fetcher`` talks to
    the PageSpeed API and is not subject to the address guard.
    """

    def __init__(
        self,
        target_fetcher: BoundedFetcher,
        service_fetcher: Optional[BoundedFetcher] = None,
        *,
        psi_api_key: str = "",
        page_timeout_ms: int = 10_000,
        psi_timeout_ms: int = 30_000,
    ):
        self.target_fetcher = target_fetcher
        self.service_fetcher = service_fetcher or target_fetcher
        self.psi_api_key = psi_api_key
        self.page_timeout_ms = page_timeout_ms
        self.psi_timeout_ms = psi_timeout_ms

    async def analyze(self, url: str) -> AnalysisSection:
        server_fetch_ms, mobile, desktop = await asyncio.gather(
            self._server_timing(url),
            self.call_psi(url, "mobile"),
            self.call_psi(url, "desktop"),
        )
        raw: dict[str, Any] = {"server_fetch_ms": server_fetch_ms, "mobile": mobile, "desktop": desktop}

        findings: list[Finding] = []
        if server_fetch_ms is not None and server_fetch_ms > SLOW_SERVER_MS:
            findings.append(
                Finding(
                    title="Slow server response time",
                    action=f"Initial fetch took {server_fetch_ms} ms. Consider server tuning or CDN.",
                )
            )
        mobile_score = mobile.get("perf_score")
        if mobile_score is not None and mobile_score < MIN_MOBILE_SCORE:
            findings.append(
                Finding(
                    title="Low mobile performance score",
                    action=f"Mobile performance score is {mobile_score}. Optimize LCP, INP, and CLS.",
                )
            )
        desktop_score = desktop.get("perf_score")
        if desktop_score is not None and desktop_score < MIN_DESKTOP_SCORE:
            findings.append(
                Finding(
                    title="Low desktop performance score",
                    action=f"Desktop performance score is {desktop_score}. Investigate render-blocking resources.",
                )
            )

        return AnalysisSection(findings=findings, raw=raw)

    async def _server_timing(self, url: str) -> Optional[int]:
        try:
            result = await self.target_fetcher.fetch(url, timeout_ms=self.page_timeout_ms)
        except FetchError as exc:
            log.warning("Server timing fetch failed for %s: %s", url, exc)
            return None
        return result.elapsed_ms

    async def call_psi(self, url: str, strategy: str) -> dict[str, Any]:
        params = {"url": url, "strategy": strategy}
        if self.psi_api_key:
            params["key"] = self.psi_api_key
        try:
            result = await self.service_fetcher.fetch(
                f"{PSI_ENDPOINT}?{urlencode(params)}",
                timeout_ms=self.psi_timeout_ms,
            )
        except FetchError as exc:
            log.warning("PageSpeed %s request failed: %s", strategy, exc)
            return {"error": f"PSI request failed ({type(exc).__name__})"}
        if result.status_code >= 400:
            return {"error": f"PSI request failed (status={result.status_code})"}
        try:
            payload = json.loads(result.body_text or "")
        except ValueError:
            return {"error": "Invalid PSI JSON response"}
        if not isinstance(payload, dict):
            return {"error": "Invalid PSI JSON response"}
        return parse_psi(payload)
