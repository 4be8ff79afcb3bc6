from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv
from rich.logging import RichHandler

ROOT_DIR = Path(__file__).resolve().parent.parent

DEFAULT_PROVIDER_ORDER = ("openai", "gemini", "deepseek", "groq")

# endpoint -> (max requests, window seconds)
DEFAULT_RATE_LIMITS = {
    "audit": (10, 60),
    "retrieval": (30, 60),
    "analyst": (12, 60),
    "chart": (20, 60),
    "pdf": (8, 60),
}


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _env_int(name: str, default: int) -> int:
    raw = _env_str(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logging.getLogger(__name__).warning("Ignoring non-integer %s=%r", name, raw)
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = _env_str(name).lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int
    window_seconds: int


@dataclass(frozen=True)
class Settings:
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash"
    deepseek_api_key: str = ""
    deepseek_model: str = "deepseek-chat"
    groq_api_key: str = ""
    groq_model: str = "llama-3.1-8b-instant"
    provider_order: tuple[str, ...] = DEFAULT_PROVIDER_ORDER
    ai_timeout_ms: int = 10_000

    psi_api_key: str = ""
    psi_timeout_ms: int = 30_000

    page_fetch_timeout_ms: int = 10_000
    link_check_timeout_ms: int = 5_000
    dns_timeout_ms: int = 3_000
    max_link_checks: int = 20
    link_check_concurrency: int = 5
    max_body_bytes: int = 2 * 1024 * 1024
    ssrf_fail_open: bool = True

    data_dir: Path = ROOT_DIR / "data"
    rate_limits: dict[str, RateLimitConfig] = field(
        default_factory=lambda: {
            name: RateLimitConfig(max_requests, window)
            for name, (max_requests, window) in DEFAULT_RATE_LIMITS.items()
        }
    )
    # honour X-Forwarded-For only when deployed behind a proxy that sets it
    trust_forwarded_for: bool = True
    log_level: str = "INFO"
    cors_origins: tuple[str, ...] = ("*",)

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv(ROOT_DIR / ".env", override=False)

        order = tuple(
            name.strip().lower()
            for name in _env_str("AI_PROVIDER_ORDER", ",".join(DEFAULT_PROVIDER_ORDER)).split(",")
            if name.strip()
        )
        rate_limits = {
            name: RateLimitConfig(
                _env_int(f"RATE_LIMIT_{name.upper()}_MAX", max_requests),
                _env_int(f"RATE_LIMIT_{name.upper()}_WINDOW_SECONDS", window),
            )
            for name, (max_requests, window) in DEFAULT_RATE_LIMITS.items()
        }
        data_dir = _env_str("AUDIT_DATA_DIR")
        origins = tuple(o.strip() for o in _env_str("CORS_ORIGINS", "*").split(",") if o.strip())

        return cls(
            openai_api_key=_env_str("OPENAI_API_KEY"),
            openai_model=_env_str("OPENAI_MODEL", cls.openai_model),
            gemini_api_key=_env_str("GEMINI_API_KEY"),
            gemini_model=_env_str("GEMINI_MODEL", cls.gemini_model),
            deepseek_api_key=_env_str("DEEPSEEK_API_KEY"),
            deepseek_model=_env_str("DEEPSEEK_MODEL", cls.deepseek_model),
            groq_api_key=_env_str("GROQ_API_KEY"),
            groq_model=_env_str("GROQ_MODEL", cls.groq_model),
            provider_order=order or DEFAULT_PROVIDER_ORDER,
            ai_timeout_ms=_env_int("AI_TIMEOUT_MS", cls.ai_timeout_ms),
            psi_api_key=_env_str("PSI_API_KEY"),
            psi_timeout_ms=_env_int("PSI_TIMEOUT_MS", cls.psi_timeout_ms),
            page_fetch_timeout_ms=_env_int("PAGE_FETCH_TIMEOUT_MS", cls.page_fetch_timeout_ms),
            link_check_timeout_ms=_env_int("LINK_CHECK_TIMEOUT_MS", cls.link_check_timeout_ms),
            dns_timeout_ms=_env_int("DNS_TIMEOUT_MS", cls.dns_timeout_ms),
            max_link_checks=max(0, _env_int("MAX_LINK_CHECKS", cls.max_link_checks)),
            link_check_concurrency=max(1, _env_int("LINK_CHECK_CONCURRENCY", cls.link_check_concurrency)),
            max_body_bytes=_env_int("MAX_BODY_BYTES", cls.max_body_bytes),
            ssrf_fail_open=_env_bool("SSRF_FAIL_OPEN", cls.ssrf_fail_open),
            data_dir=Path(data_dir) if data_dir else ROOT_DIR / "data",
            rate_limits=rate_limits,
            trust_forwarded_for=_env_bool("TRUST_FORWARDED_FOR", cls.trust_forwarded_for),
            log_level=_env_str("AUDIT_LOG_LEVEL", cls.log_level).upper(),
            cors_origins=origins or ("*",),
        )


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if not any(isinstance(handler, RichHandler) for handler in root.handlers):
        root.addHandler(RichHandler(rich_tracebacks=True, show_path=False))
    root.setLevel(level)
