from __future__ import annotations

from starlette.requests import Request

from auditor.ratelimit import RateLimiter, client_identity


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _request(headers: dict[str, str], client=("203.0.113.7", 5555)) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        "client": client,
    }
    return Request(scope)


def test_allows_up_to_max_then_denies_with_retry_after() -> None:
    clock = FakeClock()
    limiter = RateLimiter(3, 60, clock=clock)

    results = [limiter.admit("1.2.3.4") for _ in range(3)]
    assert [r.allowed for r in results] == [True, True, True]
    assert [r.remaining for r in results] == [2, 1, 0]

    clock.now += 20
    denied = limiter.admit("1.2.3.4")
    assert not denied.allowed
    assert denied.retry_after_seconds == 40
    assert denied.retry_after_header == "40"


def test_window_resets_fully_after_duration() -> None:
    clock = FakeClock()
    limiter = RateLimiter(1, 60, clock=clock)

    assert limiter.admit("a").allowed
    assert not limiter.admit("a").allowed

    clock.now += 60
    admission = limiter.admit("a")
    assert admission.allowed
    assert admission.remaining == 0


def test_identities_are_independent() -> None:
    limiter = RateLimiter(1, 60, clock=FakeClock())

    assert limiter.admit("a").allowed
    assert limiter.admit("b").allowed
    assert not limiter.admit("a").allowed


def test_retry_after_header_is_at_least_one_second() -> None:
    clock = FakeClock()
    limiter = RateLimiter(1, 60, clock=clock)
    limiter.admit("a")
    clock.now += 59.9

    denied = limiter.admit("a")

    assert denied.retry_after_header == "1"


def test_client_identity_prefers_first_forwarded_address() -> None:
    request = _request({"X-Forwarded-For": "198.51.100.1, 10.0.0.1"})

    assert client_identity(request) == "198.51.100.1"


def test_client_identity_falls_back_to_peer_address() -> None:
    assert client_identity(_request({})) == "203.0.113.7"
    assert client_identity(_request({}, client=None)) == "unknown"


def test_client_identity_ignores_forwarded_header_when_untrusted() -> None:
    request = _request({"X-Forwarded-For": "198.51.100.1"})

    assert client_identity(request, trust_forwarded=False) == "203.0.113.7"
