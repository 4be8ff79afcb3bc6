from __future__ import annotations

from pathlib import Path

import httpx
from fastapi.testclient import TestClient

from auditor.api import create_app
from auditor.config import Settings
from auditor.fetcher import BoundedFetcher
from auditor.llm_chain import AIFallbackChain
from auditor.models import AISummary, Audit, AuditMeta
from auditor.ratelimit import RateLimiter
from auditor.safety import SafeResolver
from auditor.storage import AuditStore


def _client(
    tmp_path: Path,
    resolver: SafeResolver,
    site_transport: httpx.MockTransport,
    psi_transport: httpx.MockTransport,
    limiters=None,
) -> TestClient:
    settings = Settings(data_dir=tmp_path)
    app = create_app(
        settings,
        resolver=resolver,
        fetcher=BoundedFetcher(guard=resolver, transport=site_transport),
        service_fetcher=BoundedFetcher(transport=psi_transport),
        store=AuditStore(tmp_path),
        chain=AIFallbackChain(),
        limiters=limiters,
    )
    return TestClient(app)


def _stored_audit(store: AuditStore) -> str:
    return store.save(
        Audit(
            meta=AuditMeta(url="https://example.com/", generated_at="2026-01-01T00:00:00+00:00", site_id="example.com"),
            ai_summary=AISummary(summary="ok"),
        )
    )


def test_health(tmp_path, resolver, site_transport, psi_transport) -> None:
    client = _client(tmp_path, resolver, site_transport, psi_transport)

    assert client.get("/health").json() == {"ok": True}


def test_private_address_is_rejected_before_any_fetch(tmp_path, resolver, psi_transport) -> None:
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200)

    client = _client(tmp_path, resolver, httpx.MockTransport(handler), psi_transport)

    response = client.post("/audit", json={"url": "http://10.0.0.5/"})

    assert response.status_code == 400
    assert requests == []
    assert not (tmp_path / "audits").exists()


def test_invalid_urls_are_rejected(tmp_path, resolver, site_transport, psi_transport) -> None:
    client = _client(tmp_path, resolver, site_transport, psi_transport)

    assert client.post("/audit", json={}).status_code == 400
    assert client.post("/audit", json={"url": "ftp://example.com"}).status_code == 400
    assert client.post("/audit", json={"url": "https://example.com/" + "a" * 2100}).status_code == 400
    assert client.post("/audit", content=b"not json", headers={"Content-Type": "application/json"}).status_code == 400


def test_malformed_host_labels_are_rejected_with_default_resolver(tmp_path, site_transport, psi_transport) -> None:
    client = _client(tmp_path, SafeResolver(), site_transport, psi_transport)

    for url in ("http://a..b/", "http://" + "a" * 64 + ".com/"):
        response = client.post("/audit", json={"url": url})
        assert response.status_code == 400
        assert response.json()["detail"] == "invalid url host"


def test_full_audit_without_ai_credentials(tmp_path, resolver, site_transport, psi_transport) -> None:
    client = _client(tmp_path, resolver, site_transport, psi_transport)

    response = client.post("/audit", json={"url": "https://example.com"})

    assert response.status_code == 200
    body = response.json()
    assert body["audit_id"] == body["id"]
    assert body["ai_summary"]["summary"]
    assert body["security"]["score"] == 100 - 8 * len(body["security"]["findings"])
    assert (tmp_path / "audits" / f"{body['audit_id']}.json").exists()

    fetched = client.get("/audit", params={"identifier": "example.com"})
    assert fetched.status_code == 200
    assert fetched.json()["id"] == body["audit_id"]


def test_get_audit_errors(tmp_path, resolver, site_transport, psi_transport) -> None:
    client = _client(tmp_path, resolver, site_transport, psi_transport)

    assert client.get("/audit").status_code == 400
    assert client.get("/audit", params={"identifier": "nope.example"}).status_code == 404


def test_chat_analyst_unknown_identifier_is_404(tmp_path, resolver, site_transport, psi_transport) -> None:
    client = _client(tmp_path, resolver, site_transport, psi_transport)

    response = client.post("/chat-analyst", json={"identifier": "missing.example", "query": "what is wrong?"})

    assert response.status_code == 404
    assert response.json()["detail"] == "audit not found"


def test_chat_analyst_validation(tmp_path, resolver, site_transport, psi_transport) -> None:
    client = _client(tmp_path, resolver, site_transport, psi_transport)

    assert client.post("/chat-analyst", json={"identifier": "example.com", "query": "x"}).status_code == 400
    assert client.post("/chat-analyst", json={"query": "what now?"}).status_code == 400


def test_chat_analyst_answers_from_stored_audit(tmp_path, resolver, site_transport, psi_transport) -> None:
    client = _client(tmp_path, resolver, site_transport, psi_transport)
    audit_id = _stored_audit(AuditStore(tmp_path))

    response = client.post("/chat-analyst", json={"audit_id": audit_id, "query": "summary please"})

    assert response.status_code == 200
    body = response.json()
    assert body["answer"]
    assert body["urgency"] in {"Low", "Medium", "High"}
    assert body["citations"]


def test_rate_limit_returns_429_with_retry_after(tmp_path, resolver, site_transport, psi_transport) -> None:
    limiters = {"analyst": RateLimiter(2, 60)}
    client = _client(tmp_path, resolver, site_transport, psi_transport, limiters=limiters)
    payload = {"identifier": "missing.example", "query": "anything"}

    assert client.post("/chat-analyst", json=payload).status_code == 404
    assert client.post("/chat-analyst", json=payload).status_code == 404
    limited = client.post("/chat-analyst", json=payload)

    assert limited.status_code == 429
    assert int(limited.headers["Retry-After"]) >= 1

    other_ip = client.post("/chat-analyst", json=payload, headers={"X-Forwarded-For": "198.51.100.9"})
    assert other_ip.status_code == 404


def test_chart_data_series(tmp_path, resolver, site_transport, psi_transport) -> None:
    client = _client(tmp_path, resolver, site_transport, psi_transport)
    client.post("/audit", json={"url": "https://example.com"})
    client.post("/audit", json={"url": "https://example.com"})

    response = client.get("/audit-chart-data", params={"site_id": "example.com", "metric": "lcp"})

    assert response.status_code == 200
    series = response.json()["series"]
    assert len(series) == 2
    assert series[0]["value"] == 2500.0

    assert client.get("/audit-chart-data", params={"site_id": "example.com", "metric": "bogus"}).status_code == 400
    assert client.get("/audit-chart-data", params={"site_id": "nope.example"}).status_code == 404


def test_report_pdf(tmp_path, resolver, site_transport, psi_transport) -> None:
    client = _client(tmp_path, resolver, site_transport, psi_transport)
    audit_id = _stored_audit(AuditStore(tmp_path))

    response = client.post("/report-pdf", json={"identifier": audit_id})

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.content.startswith(b"%PDF")
    assert client.post("/report-pdf", json={}).status_code == 400


def test_spoofed_forwarded_for_does_not_reset_limit_when_untrusted(tmp_path, resolver, site_transport, psi_transport) -> None:
    app = create_app(
        Settings(data_dir=tmp_path, trust_forwarded_for=False),
        resolver=resolver,
        fetcher=BoundedFetcher(guard=resolver, transport=site_transport),
        service_fetcher=BoundedFetcher(transport=psi_transport),
        store=AuditStore(tmp_path),
        chain=AIFallbackChain(),
        limiters={"analyst": RateLimiter(1, 60)},
    )
    client = TestClient(app)
    payload = {"identifier": "missing.example", "query": "anything"}

    assert client.post("/chat-analyst", json=payload).status_code == 404
    spoofed = client.post("/chat-analyst", json=payload, headers={"X-Forwarded-For": "198.51.100.9"})

    assert spoofed.status_code == 429
