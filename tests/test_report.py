from __future__ import annotations

from auditor.engine.report import build_pdf_report
from auditor.models import AISummary, AnalysisSection, Audit, AuditMeta, Finding, PdfSummaries


def _sample_audit() -> Audit:
    return Audit(
        id="0b6f1b9e-3a0e-4a8c-9d51-3a3c1c0f2a11",
        meta=AuditMeta(url="https://example.com/", generated_at="2026-03-01T10:00:00+00:00", site_id="example.com"),
        seo=AnalysisSection(
            score=77,
            findings=[Finding(title="No robots.txt found", action="Add robots.txt.")],
            raw={
                "title": "Example <Domain> & Co",
                "h1_count": 1,
                "h2_count": 2,
                "has_sitemap": True,
                "has_robots": False,
                "internal_links": ["https://example.com/a"],
                "broken_links": [{"url": "https://example.com/a", "status": 404}],
            },
        ),
        performance=AnalysisSection(
            score=70,
            raw={"mobile": {"perf_score": 50, "lcp": "2.5 s"}, "desktop": {"error": "PSI request failed"}},
        ),
        security=AnalysisSection(score=92, raw={"headers": {"strict-transport-security": "max-age=1"}}),
        ai_summary=AISummary(summary="Résumé with “smart quotes”", recommendations=["Add robots.txt."]),
    )


def test_build_pdf_report_returns_pdf_bytes() -> None:
    pdf = build_pdf_report(_sample_audit())

    assert pdf.startswith(b"%PDF")
    assert len(pdf) > 1000


def test_build_pdf_report_with_summaries() -> None:
    summaries = PdfSummaries(
        seo_meta="Add robots.txt",
        performance_summary="Mobile 50",
        security_summary="Missing CSP",
    )

    assert build_pdf_report(_sample_audit(), summaries).startswith(b"%PDF")


def test_build_pdf_report_handles_empty_sections() -> None:
    audit = Audit(
        meta=AuditMeta(url="https://bare.example/", generated_at="2026-03-01T10:00:00+00:00", site_id="bare.example"),
        ai_summary=AISummary(summary="Nothing to report"),
    )

    assert build_pdf_report(audit).startswith(b"%PDF")
