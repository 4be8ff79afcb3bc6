from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Optional, Union
from urllib.parse import urlparse

from auditor.config import Settings
from auditor.engine.performance import PerformanceAnalyzer
from auditor.engine.scoring import clamp_score, performance_score, security_score
from auditor.engine.security import analyze_security
from auditor.engine.seo import ContentAnalyzer, ContentResult
from auditor.fetcher import BoundedFetcher
from auditor.llm_chain import AIFallbackChain
from auditor.models import AnalysisSection, Audit, AuditMeta

log = logging.getLogger(__name__)


@dataclass
class Completed:
    value: Any


@dataclass
class Defaulted:
    section: AnalysisSection
    error: str


Settled = Union[Completed, Defaulted]


def _now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


DEFAULT_PORTS = {"http": 80, "https": 443}


def site_id_for(url: str) -> str:
    """Host plus any non-default port; userinfo never becomes part of the id."""
    parsed = urlparse(url)
    host = parsed.hostname
    if not host:
        return (parsed.path or url).lower()
    if ":" in host:
        host = f"[{host}]"
    try:
        port = parsed.port
    except ValueError:
        port = None
    if port is not None and port != DEFAULT_PORTS.get(parsed.scheme.lower()):
        return f"{host}:{port}"
    return host


async def settle(name: str, work: Awaitable[Any]) -> Settled:
    try:
        return Completed(await work)
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        error = f"{type(exc).__name__}: {exc}"
        log.warning("%s analyzer failed, using an empty section: %s", name, error)
        return Defaulted(section=AnalysisSection(), error=error)


class AnalyzerOrchestrator:
    def __init__(
        self,
        content: ContentAnalyzer,
        performance: PerformanceAnalyzer,
        chain: Optional[AIFallbackChain] = None,
    ):
        self.content = content
        self.performance = performance
        self.chain = chain or AIFallbackChain()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        fetcher: BoundedFetcher,
        service_fetcher: Optional[BoundedFetcher] = None,
        chain: Optional[AIFallbackChain] = None,
    ) -> "AnalyzerOrchestrator":
        content = ContentAnalyzer(
            fetcher,
            max_links=settings.max_link_checks,
            concurrency=settings.link_check_concurrency,
            page_timeout_ms=settings.page_fetch_timeout_ms,
            link_timeout_ms=settings.link_check_timeout_ms,
        )
        performance = PerformanceAnalyzer(
            fetcher,
            service_fetcher,
            psi_api_key=settings.psi_api_key,
            page_timeout_ms=settings.page_fetch_timeout_ms,
            psi_timeout_ms=settings.psi_timeout_ms,
        )
        return cls(content, performance, chain)

    async def run(self, url: str) -> Audit:
        errors: dict[str, str] = {}

        content_outcome, performance_outcome = await asyncio.gather(
            settle("content", self.content.analyze(url)),
            settle("performance", self.performance.analyze(url)),
        )

        if isinstance(content_outcome, Completed):
            content: ContentResult = content_outcome.value
            seo = content.section
            security_outcome = await settle("security", _run_security(url, content))
        else:
            errors["seo"] = content_outcome.error
            seo = content_outcome.section
            security_outcome = Defaulted(section=AnalysisSection(), error="main page unavailable")

        if isinstance(performance_outcome, Completed):
            performance = performance_outcome.value
        else:
            errors["performance"] = performance_outcome.error
            performance = performance_outcome.section

        if isinstance(security_outcome, Completed):
            security = security_outcome.value
            security = security.model_copy(update={"score": security_score(len(security.findings))})
        else:
            errors["security"] = security_outcome.error
            security = security_outcome.section

        seo = seo.model_copy(update={"score": clamp_score(seo.score)})
        performance = performance.model_copy(update={"score": performance_score(performance.raw)})

        meta = AuditMeta(url=url, generated_at=_now_iso(), site_id=site_id_for(url))
        ai_summary = await self.chain.executive_summary(
            {
                "meta": meta.model_dump(),
                "seo": seo.model_dump(),
                "performance": performance.model_dump(),
                "security": security.model_dump(),
            }
        )
        raw: dict[str, Any] = {"errors": errors} if errors else {}

        log.info(
            "Audit of %s finished: seo=%d performance=%d security=%d",
            url,
            seo.score,
            performance.score,
            security.score,
        )
        return Audit(
            meta=meta,
            seo=seo,
            performance=performance,
            security=security,
            ai_summary=ai_summary,
            raw=raw,
        )


async def _run_security(url: str, content: ContentResult) -> AnalysisSection:
    return analyze_security(url, content.page)
