"""SSRF screening: URL shape checks and resolved-address blocking."""

import asyncio
import ipaddress
import logging
import socket
from typing import Iterable, List, Optional, Tuple
from urllib.parse import urlparse

from pydantic import BaseModel

logger = logging.getLogger(__name__)

_BLOCKED_V4 = [
    ipaddress.ip_network(net)
    for net in (
        "127.0.0.0/8",
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "169.254.0.0/16",
        "0.0.0.0/8",
        "100.64.0.0/10",
        "192.0.0.0/24",
        "192.0.2.0/24",
        "198.51.100.0/24",
        "203.0.113.0/24",
        "224.0.0.0/4",
        "240.0.0.0/4",
    )
]

_BLOCKED_V6 = [
    ipaddress.ip_network(net)
    for net in (
        "::1/128",
        "::/128",
        "fe80::/10",
        "fc00::/7",
    )
]

_LOCAL_HOSTNAMES = {"localhost", "localhost.localdomain", "ip6-localhost", "ip6-loopback"}


class UrlValidation(BaseModel):
    ok: bool
    error_code: Optional[str] = None
    error_message: Optional[str] = None


def validate_url(url: Optional[str]) -> UrlValidation:
    """Cheap structural checks that run before any network I/O."""
    if not url or not url.strip():
        return UrlValidation(ok=False, error_code="EMPTY_URL", error_message="URL is empty.")
    parsed = urlparse(url.strip())
    if parsed.scheme == "file":
        return UrlValidation(ok=False, error_code="LOCAL_RESOURCE", error_message="File URLs are not allowed.")
    if not parsed.scheme or not parsed.netloc:
        return UrlValidation(ok=False, error_code="INVALID_URL_FORMAT", error_message="URL must be absolute.")
    if parsed.scheme.lower() not in {"http", "https"}:
        return UrlValidation(
            ok=False,
            error_code="INVALID_SCHEME",
            error_message=f"Scheme '{parsed.scheme}' is not allowed; use http or https.",
        )
    if parsed.username or parsed.password:
        return UrlValidation(
            ok=False, error_code="CREDENTIALS_IN_URL", error_message="Credentials in URLs are not allowed."
        )
    host = (parsed.hostname or "").lower()
    if not host:
        return UrlValidation(ok=False, error_code="INVALID_URL_FORMAT", error_message="URL has no host.")
    if host in _LOCAL_HOSTNAMES or host.endswith(".localhost"):
        return UrlValidation(ok=False, error_code="LOCAL_RESOURCE", error_message="Local hosts are not allowed.")
    try:
        if ipaddress.ip_address(host).is_loopback:
            return UrlValidation(ok=False, error_code="LOCAL_RESOURCE", error_message="Loopback hosts are not allowed.")
    except ValueError:
        pass
    return UrlValidation(ok=True)


def is_blocked_address(address: str) -> bool:
    try:
        ip = ipaddress.ip_address(address.split("%", 1)[0])
    except ValueError:
        return True
    if isinstance(ip, ipaddress.IPv6Address):
        if ip.ipv4_mapped is not None:
            return any(ip.ipv4_mapped in net for net in _BLOCKED_V4)
        return any(ip in net for net in _BLOCKED_V6)
    return any(ip in net for net in _BLOCKED_V4)


async def resolve_host(host: str) -> List[str]:
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    return sorted({info[4][0] for info in infos})


class SsrfGuard:
    """Resolves a URL's host and rejects private, loopback and reserved targets."""

    def __init__(self, resolver=None):
        self._resolver = resolver or resolve_host

    async def check(self, url: str) -> Tuple[bool, Optional[str]]:
        """Return ``(allowed, reason)`` for ``url``."""
        host = urlparse(url).hostname
        if not host:
            return False, "URL has no host"
        try:
            ipaddress.ip_address(host)
            addresses: Iterable[str] = [host]
        except ValueError:
            try:
                addresses = await self._resolver(host)
            except (OSError, UnicodeError) as exc:
                logger.warning("DNS resolution failed for %s: %s", host, exc)
                return False, f"DNS resolution failed for {host}"
        addresses = list(addresses)
        if not addresses:
            return False, f"No addresses resolved for {host}"
        for address in addresses:
            if is_blocked_address(address):
                logger.warning("Blocked SSRF target %s resolving to %s", host, address)
                return False, f"Host {host} resolves to blocked address {address}"
        return True, None
