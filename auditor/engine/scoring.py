from __future__ import annotations

from typing import Any, Optional

SECURITY_PENALTY = 8


def performance_score(raw: dict[str, Any]) -> int:
    scores: list[float] = []
    for profile in ("mobile", "desktop"):
        value: Optional[Any] = (raw.get(profile) or {}).get("perf_score")
        if isinstance(value, (int, float)):
            scores.append(value)
    if not scores:
        return 0
    return int(round(sum(scores) / len(scores)))


def security_score(findings_count: int) -> int:
    return max(0, 100 - SECURITY_PENALTY * findings_count)


def clamp_score(value: Any) -> int:
    try:
        return max(0, min(100, int(value)))
    except (TypeError, ValueError):
        return 0
