from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

import httpx

from auditor.safety import SafeResolver, UnsafeTargetError

log = logging.getLogger(__name__)

USER_AGENT = "SiteAuditorBot/1.0"
DEFAULT_TIMEOUT_MS = 10_000
TEXT_CONTENT_MARKERS = ("text", "html", "json", "xml")


class FetchError(Exception):
    def __init__(self, url: str, message: str, elapsed_ms: int = 0):
        self.url = url
        self.elapsed_ms = elapsed_ms
        super().__init__(f"{message} ({url})")


class FetchTimeout(FetchError):
    pass


class FetchCancelled(FetchError):
    pass


@dataclass(frozen=True)
class FetchResult:
    ok: bool
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    final_url: str = ""
    body_text: Optional[str] = None
    elapsed_ms: int = 0


def is_text_content(content_type: str) -> bool:
    lowered = (content_type or "").lower()
    return any(marker in lowered for marker in TEXT_CONTENT_MARKERS)


class BoundedFetcher:
    """Single-request HTTP fetches with an enforced timeout.

    HTTP error statuses come back as ordinary results; only network failures,
    timeouts, cancellation and guard rejections raise. When a ``guard`` is
    given, every outgoing request (redirect hops included) must resolve to an
    allowed address.
    """

    def __init__(
        self,
        *,
        guard: Optional[SafeResolver] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        max_body_bytes: int = 2 * 1024 * 1024,
        user_agent: str = USER_AGENT,
    ):
        self.guard = guard
        self.default_timeout_ms = default_timeout_ms
        self.max_body_bytes = max_body_bytes
        event_hooks = {"request": [self._check_request]} if guard else {}
        self._client = httpx.AsyncClient(
            transport=transport,
            follow_redirects=True,
            headers={"User-Agent": user_agent},
            timeout=None,
            event_hooks=event_hooks,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _check_request(self, request: httpx.Request) -> None:
        await self.guard.ensure_allowed(str(request.url))

    async def fetch(
        self,
        url: str,
        *,
        method: str = "GET",
        headers: Optional[dict[str, str]] = None,
        timeout_ms: Optional[int] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> FetchResult:
        started = time.monotonic()
        timeout_ms = timeout_ms or self.default_timeout_ms
        request = self._send(method.upper(), url, headers, started)
        try:
            if cancel is not None:
                # Caller-owned cancellation replaces the internal timeout.
                return await _until_cancelled(request, cancel, url, started)
            return await asyncio.wait_for(request, timeout_ms / 1000)
        except asyncio.TimeoutError as exc:
            raise FetchTimeout(url, f"timed out after {timeout_ms} ms", _elapsed_ms(started)) from exc
        except UnsafeTargetError as exc:
            raise FetchError(url, str(exc), _elapsed_ms(started)) from exc
        except httpx.HTTPError as exc:
            raise FetchError(url, f"{type(exc).__name__}: {exc}", _elapsed_ms(started)) from exc

    async def _send(
        self,
        method: str,
        url: str,
        headers: Optional[dict[str, str]],
        started: float,
    ) -> FetchResult:
        async with self._client.stream(method, url, headers=headers) as response:
            elapsed_ms = _elapsed_ms(started)
            body_text = None
            if method != "HEAD" and is_text_content(response.headers.get("content-type", "")):
                body_text = await self._read_text(response)
            return FetchResult(
                ok=response.is_success,
                status_code=response.status_code,
                headers={key.lower(): value for key, value in response.headers.items()},
                final_url=str(response.url),
                body_text=body_text,
                elapsed_ms=elapsed_ms,
            )

    async def _read_text(self, response: httpx.Response) -> str:
        chunks: list[bytes] = []
        size = 0
        async for chunk in response.aiter_bytes():
            chunks.append(chunk)
            size += len(chunk)
            if size >= self.max_body_bytes:
                log.debug("Body of %s truncated at %d bytes", response.url, self.max_body_bytes)
                break
        data = b"".join(chunks)[: self.max_body_bytes]
        encoding = response.charset_encoding or "utf-8"
        try:
            return data.decode(encoding, errors="replace")
        except LookupError:
            return data.decode("utf-8", errors="replace")


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


async def _until_cancelled(request, cancel: asyncio.Event, url: str, started: float) -> FetchResult:
    request_task = asyncio.ensure_future(request)
    cancel_task = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({request_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        request_task.cancel()
        raise
    finally:
        cancel_task.cancel()
    if request_task in done:
        return request_task.result()

    request_task.cancel()
    try:
        await request_task
    except asyncio.CancelledError:
        pass
    raise FetchCancelled(url, "request cancelled by caller", _elapsed_ms(started))
