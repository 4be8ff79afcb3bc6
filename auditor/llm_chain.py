from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, TypeVar, Union

from auditor.llm_providers import Provider
from auditor.models import AISummary, AnalystAnswer, Citation, PdfSummaries, Urgency

log = logging.getLogger(__name__)

T = TypeVar("T")

MAX_SUGGESTED_ACTIONS = 4
MAX_RECOMMENDATIONS = 5
MAX_EVIDENCE_KEYS = 30

ANALYST_SYSTEM_PROMPT = (
    "You are an analyst. Use only the provided JSON snippets as evidence; when you reference "
    "evidence, include an anchor like [KEY] where KEY is the JSON key. Output: (1) short answer, "
    "(2) 2-4 suggested next steps (bulleted), (3) urgency: Low/Medium/High. Keep answer concise."
)

PDF_SYSTEM_PROMPT = (
    "You are a concise assistant: produce one-line PDF-ready summaries for SEO, performance, and "
    "security, using keys like [seo], [perf.mobile] as anchors. Return a tiny JSON object with keys "
    "seo_meta, performance_summary, security_summary (each <=140 chars)."
)

SUMMARY_SYSTEM_PROMPT = (
    "You are a technical website auditor. Rules: do not invent metrics or data that are not in the "
    "JSON; use clear, objective language; prioritize actions by impact; cite evidence from the JSON. "
    "Return JSON with keys summary (two or three sentences) and recommendations (3 to 5 short actions)."
)

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_BULLET = re.compile(r"^(?:[-•*]|\d+[.)])")
_BULLET_PREFIX = re.compile(r"^[-•*\d.)\s]+")
_URGENCY_LABELLED = re.compile(r"\b(?:urgency|priority|level)\s*[:\-]\s*(low|medium|high)\b", re.IGNORECASE)
_URGENCY_BARE = re.compile(r"\b(low|medium|high)\b", re.IGNORECASE)

_BROKEN_MARKERS = re.compile(r"\b(404|not found|broken)\b")
_PERFORMANCE_MARKERS = re.compile(r"\b(lcp|largest contentful paint|ttfb|long ttfb|time to first byte)\b")
_SECURITY_MARKERS = re.compile(
    r"\b(content-security-policy|csp|hsts|x-frame-options|x-content-type-options|referrer-policy)\b"
)
_META_MARKERS = re.compile(r"\b(meta description|missing meta|title tag)\b")


@dataclass(frozen=True)
class StructuredReply:
    data: dict[str, Any]


@dataclass(frozen=True)
class UnstructuredReply:
    text: str


Reply = Union[StructuredReply, UnstructuredReply]


@dataclass(frozen=True)
class ExtractedAnswer:
    answer: str
    suggested_actions: list[str] = field(default_factory=list)
    urgency: Urgency = "Low"


def parse_reply(text: str) -> Reply:
    cleaned = _FENCE.sub("", (text or "").strip()).strip()
    try:
        data = json.loads(cleaned)
    except ValueError:
        return UnstructuredReply(text=(text or "").strip())
    if isinstance(data, dict):
        return StructuredReply(data=data)
    return UnstructuredReply(text=(text or "").strip())


def normalize_urgency(value: Any) -> Urgency:
    lowered = str(value or "").strip().lower()
    if lowered in {"low", "medium", "high"}:
        return lowered.capitalize()
    return "Low"


def extract_answer(text: str) -> ExtractedAnswer:
    """Heuristic reading of a free-text model reply."""
    lines = [line.strip() for line in (text or "").splitlines() if line.strip()]
    answer = lines[0] if lines else ""
    actions = [
        _BULLET_PREFIX.sub("", line).strip()
        for line in lines
        if _BULLET.match(line)
    ]
    actions = [action for action in actions if action][:MAX_SUGGESTED_ACTIONS]

    match = _URGENCY_LABELLED.search(text or "") or _URGENCY_BARE.search(text or "")
    urgency = normalize_urgency(match.group(1)) if match else "Low"
    return ExtractedAnswer(answer=answer, suggested_actions=actions, urgency=urgency)


def _as_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (str, int, float)):
        value = [value]
    if not isinstance(value, list):
        return []
    out: list[str] = []
    for item in value:
        text = str(item).strip() if item is not None else ""
        if text:
            out.append(text)
    return out


def default_citations(evidence: dict[str, str], limit: int = 6, excerpt_chars: int = 300) -> list[Citation]:
    return [
        Citation(section=key, excerpt=str(value)[:excerpt_chars])
        for key, value in list(evidence.items())[:limit]
    ]


def restrict_citations(raw: Any, evidence: dict[str, str], excerpt_chars: int = 400) -> list[Citation]:
    """Keep only citations that point at keys present in the evidence map."""
    if not isinstance(raw, list):
        return []
    citations: list[Citation] = []
    seen: set[str] = set()
    for item in raw:
        if isinstance(item, dict):
            section = str(item.get("section") or item.get("key") or "")
            excerpt = str(item.get("excerpt") or "")
        else:
            section, excerpt = str(item), ""
        section = section.strip().strip("[]")
        if section not in evidence or section in seen:
            continue
        seen.add(section)
        citations.append(Citation(section=section, excerpt=(excerpt or evidence[section])[:excerpt_chars]))
    return citations


def fallback_answer(evidence: dict[str, str]) -> AnalystAnswer:
    text = " ".join(str(value) for value in evidence.values()).lower()
    suggestions: list[str] = []
    urgency: Urgency = "Low"

    if _BROKEN_MARKERS.search(text):
        suggestions.append("Fix broken links and update or remove 404 resources.")
        urgency = "Medium"
    if _PERFORMANCE_MARKERS.search(text):
        suggestions.append("Improve LCP/TTFB: optimize images, enable caching, review server response times.")
        urgency = "Medium"
    if _SECURITY_MARKERS.search(text):
        suggestions.append("Add/strengthen security headers: CSP, HSTS, X-Frame-Options, X-Content-Type-Options.")
        urgency = "Medium"
    if _META_MARKERS.search(text):
        suggestions.append("Add concise titles and unique meta descriptions for primary pages.")
    if not suggestions:
        suggestions.append("Review the evidence snippets and prioritize fixes across performance, SEO and security.")

    return AnalystAnswer(
        answer="AI unavailable: returning an evidence-based summary from the stored audit. See citations for evidence.",
        citations=default_citations(evidence),
        suggested_actions=suggestions[:MAX_SUGGESTED_ACTIONS],
        urgency=urgency,
    )


def _finding_titles(findings: list[dict[str, Any]], limit: int = 2) -> str:
    return "; ".join(str(f.get("title") or "") for f in findings[:limit] if f.get("title"))


def _perf_line(snapshot: dict[str, Any]) -> str:
    mobile = snapshot.get("mobile") or {}
    if not mobile:
        return "No perf snapshot"
    score = mobile.get("perf_score")
    return f"Mobile {score if score is not None else 'n/a'}"


def _pdf_snippets(findings: dict[str, Any]) -> dict[str, Any]:
    perf_raw = (findings.get("performance") or {}).get("raw") or {}
    return {
        "seo": ((findings.get("seo") or {}).get("findings") or [])[:6],
        "performance": {"mobile": perf_raw.get("mobile"), "desktop": perf_raw.get("desktop")},
        "security": ((findings.get("security") or {}).get("findings") or [])[:6],
    }


def fallback_pdf_summaries(findings: dict[str, Any]) -> PdfSummaries:
    small = _pdf_snippets(findings)
    return PdfSummaries(
        seo_meta=_finding_titles(small["seo"]) or "No SEO issues found.",
        performance_summary=_perf_line(small["performance"]),
        security_summary=_finding_titles(small["security"]) or "No security issues found.",
    )


def fallback_summary(findings: dict[str, Any]) -> AISummary:
    url = (findings.get("meta") or {}).get("url") or "the site"
    scores = []
    actions: list[str] = []
    issue_count = 0
    for key, label in (("seo", "SEO"), ("performance", "performance"), ("security", "security")):
        section = findings.get(key) or {}
        scores.append(f"{label} {int(section.get('score') or 0)}/100")
        for finding in section.get("findings") or []:
            issue_count += 1
            action = str(finding.get("action") or "").strip()
            if action and action not in actions:
                actions.append(action)

    if issue_count:
        summary = f"Automated audit of {url}: {', '.join(scores)}, with {issue_count} issue(s) to review."
    else:
        summary = f"Automated audit of {url}: {', '.join(scores)}; no issues were detected in this pass."
    if not actions:
        actions = ["Keep monitoring the site and re-run the audit after significant changes."]
    return AISummary(summary=summary, recommendations=actions[:MAX_RECOMMENDATIONS])


class AIFallbackChain:
    """Tries each enabled provider in order and falls back to evidence-only answers.

    A provider failure of any kind (missing key, HTTP error, timeout, empty or
    malformed reply) moves on to the next provider; the public methods always
    return a result.
    """

    def __init__(self, providers: Optional[list[Provider]] = None, *, timeout_ms: int = 10_000):
        self.providers = list(providers or [])
        self.timeout_ms = timeout_ms

    @property
    def enabled_providers(self) -> list[Provider]:
        return [provider for provider in self.providers if provider.enabled]

    async def _first_success(
        self,
        task: str,
        system_prompt: str,
        user_prompt: str,
        build: Callable[[str], T],
        *,
        max_tokens: int,
        timeout_ms: Optional[int] = None,
    ) -> Optional[T]:
        timeout = (timeout_ms or self.timeout_ms) / 1000
        for provider in self.enabled_providers:
            try:
                text = await asyncio.wait_for(
                    provider.generate(system_prompt, user_prompt, max_tokens=max_tokens, timeout=timeout),
                    timeout,
                )
                if not text or not text.strip():
                    raise ValueError(f"{provider.name} returned an empty reply")
                return build(text.strip())
            except Exception as exc:
                log.warning("[ai] %s via %s failed: %s: %s", task, provider.name, type(exc).__name__, exc)
        return None

    async def answer(
        self,
        evidence: dict[str, str],
        query: str,
        *,
        max_tokens: Optional[int] = None,
        timeout_ms: Optional[int] = None,
    ) -> AnalystAnswer:
        if not query or not isinstance(query, str) or not query.strip():
            raise ValueError("Invalid query")

        citations = default_citations(evidence, limit=8, excerpt_chars=400)
        user_prompt = f"USER QUERY: {query}\n\nEVIDENCE SNIPPETS:\n"
        for key in list(evidence)[:MAX_EVIDENCE_KEYS]:
            user_prompt += f"{key}: {str(evidence[key])[:1600]}\n\n"

        def build(text: str) -> AnalystAnswer:
            reply = parse_reply(text)
            if isinstance(reply, StructuredReply):
                data = reply.data
                answer = str(data.get("answer") or data.get("summary") or "").strip()
                if not answer:
                    raise ValueError("structured reply has no answer")
                actions = _as_str_list(
                    data.get("suggested_actions") or data.get("suggestedActions") or data.get("recommendations")
                )
                return AnalystAnswer(
                    answer=answer,
                    citations=restrict_citations(data.get("citations"), evidence) or citations[:6],
                    suggested_actions=actions[:MAX_SUGGESTED_ACTIONS],
                    urgency=normalize_urgency(data.get("urgency")),
                )
            extracted = extract_answer(reply.text)
            return AnalystAnswer(
                answer=extracted.answer,
                citations=citations,
                suggested_actions=extracted.suggested_actions,
                urgency=extracted.urgency,
            )

        result = await self._first_success(
            "answer",
            ANALYST_SYSTEM_PROMPT,
            user_prompt,
            build,
            max_tokens=max_tokens or 500,
            timeout_ms=timeout_ms,
        )
        return result or fallback_answer(evidence)

    async def summarize(self, findings: dict[str, Any]) -> PdfSummaries:
        small = _pdf_snippets(findings)
        defaults = fallback_pdf_summaries(findings)
        user_prompt = (
            f"AUDIT_SNIPPETS: {json.dumps(small, ensure_ascii=False, default=str)[:15000]}\n\n"
            "Return JSON with seo_meta, performance_summary, security_summary."
        )

        def build(text: str) -> PdfSummaries:
            reply = parse_reply(text)
            if isinstance(reply, StructuredReply):
                data = reply.data
                return PdfSummaries(
                    seo_meta=str(data.get("seo_meta") or data.get("seoMeta") or defaults.seo_meta),
                    performance_summary=str(
                        data.get("performance_summary") or data.get("performanceSummary") or defaults.performance_summary
                    ),
                    security_summary=str(
                        data.get("security_summary") or data.get("securitySummary") or defaults.security_summary
                    ),
                )
            lines = [line.strip() for line in reply.text.splitlines() if line.strip()]
            padded = lines + [""] * 3
            return PdfSummaries(
                seo_meta=padded[0] or defaults.seo_meta,
                performance_summary=padded[1] or defaults.performance_summary,
                security_summary=padded[2] or defaults.security_summary,
            )

        result = await self._first_success("summarize", PDF_SYSTEM_PROMPT, user_prompt, build, max_tokens=300)
        return result or defaults

    async def executive_summary(self, findings: dict[str, Any]) -> AISummary:
        payload = {"url": (findings.get("meta") or {}).get("url")}
        for key in ("seo", "performance", "security"):
            section = findings.get(key) or {}
            payload[key] = {
                "score": section.get("score"),
                "findings": (section.get("findings") or [])[:5],
            }
        user_prompt = (
            "Write a short report for the site owner based on this JSON (do not invent anything):\n"
            + json.dumps(payload, ensure_ascii=False, indent=2, default=str)
        )

        def build(text: str) -> AISummary:
            reply = parse_reply(text)
            if isinstance(reply, StructuredReply):
                summary = str(reply.data.get("summary") or reply.data.get("answer") or "").strip()
                if not summary:
                    raise ValueError("structured reply has no summary")
                recommendations = _as_str_list(reply.data.get("recommendations"))
                return AISummary(summary=summary, recommendations=recommendations[:MAX_RECOMMENDATIONS])
            extracted = extract_answer(reply.text)
            return AISummary(summary=extracted.answer, recommendations=extracted.suggested_actions)

        result = await self._first_success("executive_summary", SUMMARY_SYSTEM_PROMPT, user_prompt, build, max_tokens=350)
        return result or fallback_summary(findings)
