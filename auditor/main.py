from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Optional

from rich import print

from auditor.config import Settings, configure_logging
from auditor.engine.analyzer import AnalyzerOrchestrator
from auditor.fetcher import BoundedFetcher
from auditor.llm_chain import AIFallbackChain
from auditor.llm_providers import build_providers
from auditor.models import Audit
from auditor.safety import InvalidURLError, SafeResolver, UnsafeTargetError, validate_url
from auditor.storage import AuditStore


async def audit_one(url: str, settings: Settings) -> Audit:
    resolver = SafeResolver(timeout_ms=settings.dns_timeout_ms, fail_open=settings.ssrf_fail_open)
    target = await resolver.check(url)
    if target.disallowed:
        raise UnsafeTargetError(url, target.addresses)

    fetcher = BoundedFetcher(
        guard=resolver,
        default_timeout_ms=settings.page_fetch_timeout_ms,
        max_body_bytes=settings.max_body_bytes,
    )
    service_fetcher = BoundedFetcher(default_timeout_ms=settings.psi_timeout_ms)
    chain = AIFallbackChain(build_providers(settings), timeout_ms=settings.ai_timeout_ms)
    try:
        orchestrator = AnalyzerOrchestrator.from_settings(settings, fetcher, service_fetcher, chain)
        return await orchestrator.run(url)
    finally:
        await fetcher.aclose()
        await service_fetcher.aclose()


def print_audit(audit: Audit, audit_id: Optional[str] = None) -> None:
    print(f"[green]Audit OK[/green] {audit.meta.url}")
    if audit_id:
        print(f"Saved: {audit_id}")
    for name in ("seo", "performance", "security"):
        section = getattr(audit, name)
        print(f"[bold]{name.upper()}[/bold] {section.score}/100 ({len(section.findings)} findings)")
        for finding in section.findings:
            print(f"  - {finding.title}: {finding.action}")
    if audit.raw.get("errors"):
        print(f"[yellow]Defaulted sections:[/yellow] {', '.join(audit.raw['errors'])}")
    print("\n[bold]Summary:[/bold]\n" + audit.ai_summary.summary)
    for recommendation in audit.ai_summary.recommendations:
        print(f"  * {recommendation}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="site-auditor", description="Passive website auditor.")
    commands = parser.add_subparsers(dest="command", required=True)

    audit = commands.add_parser("audit", help="Audit one URL and print the result")
    audit.add_argument("url", help="Target site URL (http or https)")
    audit.add_argument("--no-save", action="store_true", help="Do not persist the audit record")

    serve = commands.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    return parser


def cli(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    if args.command == "serve":
        import uvicorn

        uvicorn.run("auditor.api:build_app", factory=True, host=args.host, port=args.port)
        return 0

    try:
        url = validate_url(args.url)
        audit = asyncio.run(audit_one(url, settings))
    except (InvalidURLError, UnsafeTargetError) as exc:
        print(f"[red]Rejected:[/red] {exc}")
        return 2

    audit_id = None
    if not args.no_save:
        audit_id = AuditStore(settings.data_dir).save(audit)
    print_audit(audit, audit_id)
    return 0


if __name__ == "__main__":
    sys.exit(cli())
