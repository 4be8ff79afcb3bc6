from __future__ import annotations

from datetime import datetime, timezone
from io import BytesIO
from typing import Optional
from xml.sax.saxutils import escape

from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer

from auditor.models import Audit, PdfSummaries

SECURITY_HEADERS = [
    "strict-transport-security",
    "content-security-policy",
    "x-frame-options",
    "x-content-type-options",
    "referrer-policy",
]


def _fmt(value: object, fallback: str = "-") -> str:
    if value is None:
        return fallback
    text = str(value).strip()
    return text if text else fallback


def _short(text: str, limit: int = 140) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


def _pdf_safe(text: str) -> str:
    return escape(text.encode("latin-1", "ignore").decode("latin-1"))


def build_pdf_report(audit: Audit, summaries: Optional[PdfSummaries] = None) -> bytes:
    styles = getSampleStyleSheet()
    title_style = styles["Title"]
    heading_style = styles["Heading3"]
    body_style = styles["BodyText"]
    body_style.leading = 14

    elements = []

    def section(title: str, text: str, recommendation: Optional[str] = None) -> None:
        elements.append(Paragraph(_pdf_safe(title), heading_style))
        elements.append(Paragraph(_pdf_safe(_short(text or "No data", 400)), body_style))
        if recommendation:
            elements.append(Paragraph(_pdf_safe("Recommendation: " + _short(recommendation, 200)), body_style))
        elements.append(Spacer(1, 8))

    elements.append(Paragraph(_pdf_safe(audit.meta.site_id or audit.meta.url), title_style))
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    elements.append(Paragraph(_pdf_safe(f"URL: {audit.meta.url}"), body_style))
    elements.append(Paragraph(_pdf_safe(f"Audited: {audit.meta.generated_at}  |  Generated: {timestamp}"), body_style))
    elements.append(Spacer(1, 6))
    elements.append(
        Paragraph(
            f"SEO {audit.seo.score}   |   Performance {audit.performance.score}   |   Security {audit.security.score}",
            body_style,
        )
    )
    elements.append(Spacer(1, 12))

    seo_raw = audit.seo.raw
    seo_titles = "; ".join(f.title for f in audit.seo.findings[:4]) or "No SEO issues found."
    section(
        "Meta & On-page SEO",
        f"Title: {_fmt(seo_raw.get('title'))}. Meta description: {_fmt(seo_raw.get('meta_description'))}. {seo_titles}",
        summaries.seo_meta if summaries else None,
    )
    section(
        "Heading structure",
        f"H1s: {_fmt(seo_raw.get('h1_count'), '0')}, H2s: {_fmt(seo_raw.get('h2_count'), '0')}",
        "Ensure a single clear H1 and a logical H2/H3 hierarchy.",
    )
    section(
        "Sitemap & robots.txt",
        f"sitemap.xml found: {_fmt(seo_raw.get('has_sitemap'))}, robots.txt found: {_fmt(seo_raw.get('has_robots'))}",
    )
    broken = seo_raw.get("broken_links") or []
    top_broken = "; ".join(f"{b.get('url')} ({b.get('status', 'err')})" for b in broken[:3]) or "none"
    section(
        "Internal links",
        f"Checked: {len(seo_raw.get('internal_links') or [])}, broken: {len(broken)}. Top broken: {top_broken}",
    )

    perf_raw = audit.performance.raw
    mobile = perf_raw.get("mobile") or {}
    desktop = perf_raw.get("desktop") or {}
    section(
        "PageSpeed / Core Web Vitals",
        (
            f"Mobile: {_fmt(mobile.get('perf_score'), 'n/a')} (LCP {_fmt(mobile.get('lcp'), 'n/a')}), "
            f"Desktop: {_fmt(desktop.get('perf_score'), 'n/a')} (LCP {_fmt(desktop.get('lcp'), 'n/a')}), "
            f"server fetch: {_fmt(perf_raw.get('server_fetch_ms'), 'n/a')} ms"
        ),
        summaries.performance_summary if summaries else None,
    )

    headers = audit.security.raw.get("headers") or {}
    header_text = ", ".join(f"{name}: {'yes' if headers.get(name) else 'no'}" for name in SECURITY_HEADERS)
    section("Security headers", header_text, summaries.security_summary if summaries else None)

    elements.append(Paragraph("Summary", styles["Heading2"]))
    elements.append(Paragraph(_pdf_safe(audit.ai_summary.summary), body_style))
    for recommendation in audit.ai_summary.recommendations:
        elements.append(Paragraph(_pdf_safe(f"- {recommendation}"), body_style))

    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4, rightMargin=36, leftMargin=36, topMargin=36, bottomMargin=36)
    doc.build(elements)
    return buffer.getvalue()
