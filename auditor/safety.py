from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional
from urllib.parse import urlparse

log = logging.getLogger(__name__)

MAX_URL_LENGTH = 2000

DISALLOWED_NETWORKS = [
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("100.64.0.0/10"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("::/128"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
]

Resolve = Callable[[str], Awaitable[list[str]]]


class InvalidURLError(ValueError):
    pass


class UnsafeTargetError(Exception):
    def __init__(self, url: str, addresses: list[str]):
        self.url = url
        self.addresses = addresses
        super().__init__(f"{url} resolves to a private or disallowed address")


@dataclass
class ResolvedTarget:
    url: str
    hostname: str
    addresses: list[str] = field(default_factory=list)
    disallowed: bool = False
    resolution_failed: bool = False


def validate_url(raw_url: Optional[str]) -> str:
    if not isinstance(raw_url, str):
        raise InvalidURLError("url is required")
    value = raw_url.strip()
    if not value:
        raise InvalidURLError("url is required")
    if len(value) > MAX_URL_LENGTH:
        raise InvalidURLError("url is too long")
    try:
        parsed = urlparse(value)
        hostname = parsed.hostname
        parsed.port  # raises on a malformed or out-of-range port
    except ValueError as exc:
        raise InvalidURLError("invalid url") from exc
    if parsed.scheme.lower() not in {"http", "https"}:
        raise InvalidURLError("url must start with http:// or https://")
    if not parsed.netloc or not hostname:
        raise InvalidURLError("invalid url host")
    try:
        hostname.encode("idna")  # empty or over-long labels
    except UnicodeError as exc:
        raise InvalidURLError("invalid url host") from exc
    return value


def is_disallowed_address(address: str) -> bool:
    try:
        ip = ipaddress.ip_address(address.split("%", 1)[0])
    except ValueError:
        return False
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    if ip.is_loopback or ip.is_link_local or ip.is_unspecified:
        return True
    return any(ip.version == net.version and ip in net for net in DISALLOWED_NETWORKS)


async def _getaddrinfo(hostname: str) -> list[str]:
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
    return list(dict.fromkeys(info[4][0] for info in infos))


class SafeResolver:
    """Resolves a URL's host and decides whether it may be fetched.

    Every resolved address is classified; a single disallowed address makes
    the whole target disallowed, so DNS answers mixing a public decoy with a
    private address are rejected. When resolution fails the outcome follows
    ``fail_open``.
    """

    def __init__(
        self,
        resolve: Optional[Resolve] = None,
        *,
        timeout_ms: int = 3000,
        fail_open: bool = True,
    ):
        self._resolve = resolve or _getaddrinfo
        self.timeout_ms = timeout_ms
        self.fail_open = fail_open

    async def check(self, url: str) -> ResolvedTarget:
        hostname = (urlparse(url).hostname or "").lower()
        target = ResolvedTarget(url=url, hostname=hostname)
        if not hostname:
            target.disallowed = True
            return target

        try:
            ipaddress.ip_address(hostname)
            addresses = [hostname]
        except ValueError:
            try:
                addresses = await asyncio.wait_for(self._resolve(hostname), self.timeout_ms / 1000)
            except (OSError, UnicodeError, asyncio.TimeoutError) as exc:
                log.warning(
                    "DNS resolution failed for %s (%s: %s); treating as %s",
                    hostname,
                    type(exc).__name__,
                    exc,
                    "allowed" if self.fail_open else "disallowed",
                )
                target.resolution_failed = True
                target.disallowed = not self.fail_open
                return target

        target.addresses = list(addresses)
        target.disallowed = any(is_disallowed_address(addr) for addr in target.addresses)
        return target

    async def ensure_allowed(self, url: str) -> ResolvedTarget:
        target = await self.check(url)
        if target.disallowed:
            raise UnsafeTargetError(url, target.addresses)
        return target
