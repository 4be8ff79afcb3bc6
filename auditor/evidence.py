from __future__ import annotations

import json
from typing import Any

MAX_KEYWORDS = 8
MIN_KEYWORD_LENGTH = 3
EXCERPT_CHARS = 3000
DEFAULT_CHAR_LIMIT = 8000

FALLBACK_SECTIONS = ("seo", "performance", "security", "ai_summary", "meta")


def query_keywords(query: str) -> list[str]:
    words = [word.strip(".,;:!?\"'()") for word in (query or "").lower().split()[:MAX_KEYWORDS]]
    return [word for word in words if len(word) >= MIN_KEYWORD_LENGTH]


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, default=str)


def _total(result: dict[str, str]) -> int:
    return sum(len(text) for text in result.values())


def _candidates(audit: dict[str, Any]):
    for key, value in audit.items():
        yield key, value
        if isinstance(value, dict):
            for sub, sub_value in value.items():
                yield f"{key}.{sub}", sub_value


def select_relevant_snippets(
    audit: dict[str, Any],
    keywords: list[str],
    char_limit: int = DEFAULT_CHAR_LIMIT,
) -> dict[str, str]:
    """Pick the parts of a stored audit that mention any query keyword.

    Falls back to the main report sections when nothing matches, and to a
    few hard-coded summary fields when even those are missing.
    """
    result: dict[str, str] = {}
    lowered = [kw.lower() for kw in keywords if kw]

    if lowered:
        for key, value in _candidates(audit):
            if _total(result) > char_limit - 500:
                break
            text = _as_text(value)
            haystack = text.lower()
            if any(kw in haystack for kw in lowered):
                result[key] = text[:EXCERPT_CHARS]

    if not result:
        for key in FALLBACK_SECTIONS:
            if _total(result) > char_limit - 500:
                break
            if audit.get(key):
                result[key] = _as_text(audit[key])[:EXCERPT_CHARS]

    if not result:
        summary = (audit.get("ai_summary") or {}).get("summary") or audit.get("summary")
        if summary:
            result["summary"] = str(summary)[:EXCERPT_CHARS]
        seo_findings = (audit.get("seo") or {}).get("findings")
        if seo_findings:
            result["seo.findings"] = _as_text(seo_findings[:5])
        performance = audit.get("performance") or {}
        if performance:
            raw = performance.get("raw") or {}
            result["perf.snapshot"] = _as_text(
                {
                    "mobile": (raw.get("mobile") or {}).get("perf_score"),
                    "desktop": (raw.get("desktop") or {}).get("perf_score"),
                }
            )

    return result
