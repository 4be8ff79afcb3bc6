from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.concurrency import run_in_threadpool

from auditor.config import Settings, configure_logging
from auditor.engine.analyzer import AnalyzerOrchestrator
from auditor.engine.report import build_pdf_report
from auditor.evidence import query_keywords, select_relevant_snippets
from auditor.fetcher import BoundedFetcher
from auditor.llm_chain import AIFallbackChain
from auditor.llm_providers import build_providers
from auditor.models import AnalystAnswer, AnalystRequest, Audit, AuditRequest, ReportRequest
from auditor.ratelimit import RateLimiter, client_identity
from auditor.safety import InvalidURLError, SafeResolver, validate_url
from auditor.storage import AuditStore

log = logging.getLogger(__name__)

MAX_CHART_POINTS = 90
PDF_TIMEOUT_SECONDS = 20
CHART_METRICS = ("lcp", "cls", "inp", "performance", "seo", "security", "server_fetch_ms")


def chart_value(audit: Audit, metric: str) -> Optional[float]:
    if metric in ("seo", "performance", "security"):
        return getattr(audit, metric).score
    raw = audit.performance.raw
    if metric == "server_fetch_ms":
        return raw.get("server_fetch_ms")
    for profile in ("mobile", "desktop"):
        value = (raw.get(profile) or {}).get(f"{metric}_value")
        if isinstance(value, (int, float)):
            return value
    return None


def create_app(
    settings: Optional[Settings] = None,
    *,
    resolver: Optional[SafeResolver] = None,
    fetcher: Optional[BoundedFetcher] = None,
    service_fetcher: Optional[BoundedFetcher] = None,
    store: Optional[AuditStore] = None,
    chain: Optional[AIFallbackChain] = None,
    limiters: Optional[dict[str, RateLimiter]] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    resolver = resolver or SafeResolver(timeout_ms=settings.dns_timeout_ms, fail_open=settings.ssrf_fail_open)
    fetcher = fetcher or BoundedFetcher(
        guard=resolver,
        default_timeout_ms=settings.page_fetch_timeout_ms,
        max_body_bytes=settings.max_body_bytes,
    )
    service_fetcher = service_fetcher or BoundedFetcher(default_timeout_ms=settings.psi_timeout_ms)
    store = store or AuditStore(settings.data_dir)
    chain = chain or AIFallbackChain(build_providers(settings), timeout_ms=settings.ai_timeout_ms)
    limiters = dict(limiters or {})
    for name, config in settings.rate_limits.items():
        limiters.setdefault(name, RateLimiter(config.max_requests, config.window_seconds))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await fetcher.aclose()
        if service_fetcher is not fetcher:
            await service_fetcher.aclose()

    app = FastAPI(title="Site Auditor API", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.resolver = resolver
    app.state.store = store
    app.state.chain = chain
    app.state.limiters = limiters
    app.state.orchestrator = AnalyzerOrchestrator.from_settings(settings, fetcher, service_fetcher, chain)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": "invalid request body"})

    def enforce_rate_limit(request: Request, name: str) -> None:
        identity = client_identity(request, app.state.settings.trust_forwarded_for)
        admission = app.state.limiters[name].admit(identity)
        if not admission.allowed:
            raise HTTPException(
                status_code=429,
                detail="rate limit exceeded",
                headers={"Retry-After": admission.retry_after_header},
            )

    async def load_audit(identifier: str) -> Audit:
        try:
            audit = await run_in_threadpool(app.state.store.find_by_id_or_site, identifier)
        except Exception as exc:
            log.exception("Audit lookup failed for %r", identifier)
            raise HTTPException(status_code=500, detail="failed to load audit") from exc
        if audit is None:
            raise HTTPException(status_code=404, detail="audit not found")
        return audit

    @app.get("/health")
    def health() -> dict:
        return {"ok": True}

    @app.post("/audit")
    async def run_audit(body: AuditRequest, request: Request) -> dict[str, Any]:
        enforce_rate_limit(request, "audit")
        try:
            url = validate_url(body.url or "")
        except InvalidURLError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        target = await app.state.resolver.check(url)
        if target.disallowed:
            log.warning("Rejected audit of %s (addresses: %s)", url, ", ".join(target.addresses) or "unresolved")
            raise HTTPException(status_code=400, detail="target resolves to a disallowed address")

        audit = await app.state.orchestrator.run(url)
        try:
            audit_id = await run_in_threadpool(app.state.store.save, audit)
        except OSError as exc:
            log.exception("Failed to persist audit of %s", url)
            raise HTTPException(status_code=500, detail="failed to save audit") from exc

        record = audit.model_copy(update={"id": audit_id})
        return {"audit_id": audit_id, **record.model_dump()}

    @app.get("/audit")
    async def get_audit(request: Request, identifier: str = "") -> dict[str, Any]:
        enforce_rate_limit(request, "retrieval")
        identifier = identifier.strip()
        if not identifier:
            raise HTTPException(status_code=400, detail="missing identifier")
        audit = await load_audit(identifier)
        return audit.model_dump()

    @app.post("/chat-analyst", response_model=AnalystAnswer)
    async def chat_analyst(body: AnalystRequest, request: Request) -> AnalystAnswer:
        enforce_rate_limit(request, "analyst")
        query = (body.query or "").strip()
        if len(query) < 2:
            raise HTTPException(status_code=400, detail="invalid query (too short)")
        identifier = body.lookup_key()
        if not identifier:
            raise HTTPException(status_code=400, detail="missing identifier")

        audit = await load_audit(identifier)
        evidence = select_relevant_snippets(audit.model_dump(), query_keywords(query))
        return await app.state.chain.answer(evidence, query, max_tokens=body.limit)

    @app.get("/audit-chart-data")
    async def audit_chart_data(
        request: Request,
        site_id: str = "",
        metric: str = Query("lcp"),
    ) -> dict[str, Any]:
        enforce_rate_limit(request, "chart")
        site_id = site_id.strip()
        if not site_id:
            raise HTTPException(status_code=400, detail="missing site_id")
        if metric not in CHART_METRICS:
            raise HTTPException(status_code=400, detail=f"unknown metric: {metric}")

        audits = await run_in_threadpool(app.state.store.history, site_id)
        if not audits:
            audits = [await load_audit(site_id)]
        series = []
        for audit in audits:
            value = chart_value(audit, metric)
            if value is not None:
                series.append({"ts": audit.meta.generated_at, "value": value})
        return {"site_id": site_id, "metric": metric, "series": series[-MAX_CHART_POINTS:]}

    @app.post("/report-pdf")
    async def report_pdf(body: ReportRequest, request: Request) -> Response:
        enforce_rate_limit(request, "pdf")
        identifier = body.lookup_key()
        if not identifier:
            raise HTTPException(status_code=400, detail="missing identifier")
        audit = await load_audit(identifier)

        async def render() -> bytes:
            summaries = await app.state.chain.summarize(audit.model_dump())
            return await run_in_threadpool(build_pdf_report, audit, summaries)

        try:
            pdf = await asyncio.wait_for(render(), PDF_TIMEOUT_SECONDS)
        except asyncio.TimeoutError as exc:
            raise HTTPException(status_code=504, detail="PDF generation timed out") from exc
        filename = f"audit-{audit.meta.site_id or 'site'}.pdf".replace('"', "")
        return Response(
            content=pdf,
            media_type="application/pdf",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    return app


def build_app() -> FastAPI:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    return create_app(settings)
