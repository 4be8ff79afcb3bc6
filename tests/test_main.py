from __future__ import annotations

import auditor.api
from auditor.main import build_parser, cli


def test_serve_uses_app_factory(monkeypatch) -> None:
    calls = []
    monkeypatch.setattr("uvicorn.run", lambda *args, **kwargs: calls.append((args, kwargs)))

    assert cli(["serve", "--port", "9000"]) == 0

    assert calls == [(("auditor.api:build_app",), {"factory": True, "host": "127.0.0.1", "port": 9000})]
    assert not hasattr(auditor.api, "app")


def test_audit_rejects_malformed_url() -> None:
    assert cli(["audit", "http://a..b/", "--no-save"]) == 2


def test_parser_defaults() -> None:
    args = build_parser().parse_args(["audit", "https://example.com"])

    assert args.command == "audit"
    assert args.no_save is False
