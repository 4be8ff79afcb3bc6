from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from starlette.requests import Request

MAX_TRACKED_IDENTITIES = 10_000


@dataclass
class RateWindow:
    count: int
    window_start: float


@dataclass(frozen=True)
class Admission:
    allowed: bool
    remaining: int = 0
    retry_after_seconds: float = 0.0

    @property
    def retry_after_header(self) -> str:
        return str(max(1, math.ceil(self.retry_after_seconds)))


class RateLimiter:
    """Fixed-window request counter, one window per identity.

    A window resets completely once ``window_seconds`` have passed since it
    started, so bursts straddling a boundary can reach twice the maximum.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, RateWindow] = {}
        self._lock = threading.Lock()

    def admit(self, identity: str) -> Admission:
        with self._lock:
            now = self._clock()
            window = self._windows.get(identity)
            if window is None or now - window.window_start >= self.window_seconds:
                if window is None and len(self._windows) >= MAX_TRACKED_IDENTITIES:
                    self._prune(now)
                self._windows[identity] = RateWindow(count=1, window_start=now)
                return Admission(allowed=True, remaining=self.max_requests - 1)

            window.count += 1
            if window.count > self.max_requests:
                retry_after = window.window_start + self.window_seconds - now
                return Admission(allowed=False, retry_after_seconds=max(0.0, retry_after))
            return Admission(allowed=True, remaining=self.max_requests - window.count)

    def _prune(self, now: float) -> None:
        expired = [
            identity
            for identity, window in self._windows.items()
            if now - window.window_start >= self.window_seconds
        ]
        for identity in expired:
            del self._windows[identity]


def client_identity(request: Request, trust_forwarded: bool = True) -> str:
    forwarded = request.headers.get("x-forwarded-for") if trust_forwarded else None
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"
