from __future__ import annotations

from auditor.evidence import query_keywords, select_relevant_snippets

AUDIT = {
    "meta": {"url": "https://example.com/", "site_id": "example.com"},
    "seo": {"score": 77, "findings": [{"title": "No robots.txt found", "action": "Add robots.txt."}]},
    "performance": {"score": 70, "findings": [], "raw": {"mobile": {"perf_score": 50}, "desktop": {"perf_score": 90}}},
    "security": {"score": 92, "findings": [{"title": "Missing HSTS", "action": "Add HSTS."}]},
    "ai_summary": {"summary": "Audit summary", "recommendations": []},
}


def test_query_keywords() -> None:
    assert query_keywords("How do I fix HSTS, robots?") == ["how", "fix", "hsts", "robots"]
    assert len(query_keywords(" ".join(f"word{i}" for i in range(20)))) == 8


def test_keyword_matches_include_nested_keys() -> None:
    evidence = select_relevant_snippets(AUDIT, ["hsts"])

    assert set(evidence) == {"security", "security.findings"}
    assert "Missing HSTS" in evidence["security"]


def test_no_match_falls_back_to_fixed_sections() -> None:
    evidence = select_relevant_snippets(AUDIT, ["zebra"])

    assert list(evidence) == ["seo", "performance", "security", "ai_summary", "meta"]


def test_excerpts_are_capped() -> None:
    big = {"seo": {"notes": "x" * 10_000}}

    evidence = select_relevant_snippets(big, ["xxx"])

    assert all(len(text) <= 3000 for text in evidence.values())


def test_hard_coded_fallback_when_sections_are_empty() -> None:
    audit = {"summary": "Legacy summary", "seo": {}, "performance": {}}

    evidence = select_relevant_snippets(audit, ["zebra"])

    assert evidence == {"summary": "Legacy summary"}


def test_budget_stops_collection() -> None:
    audit = {f"key{i}": "match " + "y" * 2990 for i in range(10)}

    evidence = select_relevant_snippets(audit, ["match"], char_limit=8000)

    assert len(evidence) == 3
