from __future__ import annotations

import os
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from auditor.models import AISummary, AnalysisSection, Audit, AuditMeta, Finding
from auditor.storage import AuditStore, safe_name


def _audit(url: str, site_id: str, generated_at: str = "2026-01-01T00:00:00+00:00", seo: int = 50) -> Audit:
    return Audit(
        meta=AuditMeta(url=url, generated_at=generated_at, site_id=site_id),
        seo=AnalysisSection(score=seo),
        ai_summary=AISummary(summary="ok"),
    )


def test_save_assigns_uuid_and_writes_both_files(tmp_path: Path) -> None:
    store = AuditStore(tmp_path)
    audit = _audit("https://example.com/", "example.com")

    audit_id = store.save(audit)

    assert audit.id is None
    assert (tmp_path / "audits" / f"{audit_id}.json").exists()
    assert (tmp_path / "sites" / "example.com.json").exists()
    assert store.get(audit_id).id == audit_id
    assert not list((tmp_path / "audits").glob("*.tmp"))


def test_get_rejects_non_uuid_identifiers(tmp_path: Path) -> None:
    store = AuditStore(tmp_path)
    store.save(_audit("https://example.com/", "example.com"))

    assert store.get("../sites/example.com") is None
    assert store.get("not-a-uuid") is None


def test_lookup_tiers(tmp_path: Path) -> None:
    store = AuditStore(tmp_path)
    first = store.save(_audit("https://www.shop.example/products", "www.shop.example"))
    second = store.save(_audit("https://blog.example:8443/", "blog.example:8443"))

    assert store.find_by_id_or_site(first).id == first
    assert store.find_by_id_or_site("blog.example:8443").id == second
    assert store.find_by_id_or_site("https://www.shop.example/products").id == first
    assert store.find_by_id_or_site("blog.example").id == second
    assert store.find_by_id_or_site("/products").id == first
    assert store.find_by_id_or_site("unknown.example") is None
    assert store.find_by_id_or_site("  ") is None


def test_site_lookup_prefers_newest_record(tmp_path: Path) -> None:
    store = AuditStore(tmp_path)
    old_id = store.save(_audit("https://example.com/", "example.com", seo=10))
    old_path = tmp_path / "audits" / f"{old_id}.json"
    past = time.time() - 100
    os.utime(old_path, (past, past))
    new_id = store.save(_audit("https://example.com/", "example.com", seo=90))

    assert store.find_by_id_or_site("example.com").id == new_id


def test_site_snapshot_fallback(tmp_path: Path) -> None:
    store = AuditStore(tmp_path)
    audit_id = store.save(_audit("https://example.com/", "example.com"))
    (tmp_path / "audits" / f"{audit_id}.json").unlink()

    found = store.find_by_id_or_site("example.com")

    assert found is not None and found.id == audit_id


def test_unreadable_records_are_skipped(tmp_path: Path) -> None:
    store = AuditStore(tmp_path)
    good = store.save(_audit("https://example.com/", "example.com"))
    (tmp_path / "audits" / "broken.json").write_text("{not json", encoding="utf-8")

    assert store.find_by_id_or_site("example.com").id == good


def test_history_is_ordered_by_generation_time(tmp_path: Path) -> None:
    store = AuditStore(tmp_path)
    store.save(_audit("https://example.com/", "example.com", generated_at="2026-02-01T00:00:00+00:00", seo=2))
    store.save(_audit("https://example.com/", "example.com", generated_at="2026-01-01T00:00:00+00:00", seo=1))
    store.save(_audit("https://other.example/", "other.example"))

    assert [a.seo.score for a in store.history("example.com")] == [1, 2]


def test_safe_name_removes_path_characters() -> None:
    assert safe_name("../etc/passwd") == "_etc_passwd"
    assert safe_name("example.com:8080") == "example.com_8080"


def test_saved_record_reads_back_unchanged(tmp_path: Path) -> None:
    store = AuditStore(tmp_path)
    audit = Audit(
        meta=AuditMeta(url="https://example.com/", generated_at="2026-02-03T04:05:06+00:00", site_id="example.com"),
        seo=AnalysisSection(
            score=77,
            findings=[Finding(title="No robots.txt found", action="Add robots.txt.")],
            raw={"h1_count": 1, "broken_links": [{"url": "https://example.com/a", "status": 404}]},
        ),
        performance=AnalysisSection(score=70, raw={"mobile": {"perf_score": 50}, "desktop": {"error": "timeout"}}),
        security=AnalysisSection(score=92, findings=[Finding(title="Missing X-Frame-Options", action="Set it.")]),
        ai_summary=AISummary(summary="Résumé", recommendations=["Fix links"]),
        raw={"errors": {"security": "RuntimeError: boom"}},
    )

    audit_id = store.save(audit)

    assert store.get(audit_id) == audit.model_copy(update={"id": audit_id})


def test_parallel_saves_get_distinct_ids(tmp_path: Path) -> None:
    store = AuditStore(tmp_path)
    audits = [_audit("https://example.com/", "example.com", seo=index) for index in range(32)]

    with ThreadPoolExecutor(max_workers=32) as pool:
        ids = list(pool.map(store.save, audits))

    assert len(set(ids)) == 32
    for audit_id, audit in zip(ids, audits):
        assert store.get(audit_id) == audit.model_copy(update={"id": audit_id})
    assert not list((tmp_path / "audits").glob("*.tmp"))
