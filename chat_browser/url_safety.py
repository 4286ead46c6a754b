"""URL safety validation.

Normalizes user-supplied URLs and refuses anything that would let the
browser reach private or internal networks:

- http/https only, bounded length, optional domain allow-list
- every resolved address (IPv4 and IPv6) must be public
- DNS failures deny rather than allow
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import re
import socket
from collections.abc import Awaitable, Callable
from urllib.parse import quote_plus, urlsplit, urlunsplit

from chat_browser.config import BrowserSettings
from chat_browser.errors import (
    BlockedHost,
    DomainNotAllowed,
    InvalidURL,
    SchemeNotAllowed,
    TooLong,
)

logger = logging.getLogger("chat_browser.url_safety")

ALLOWED_URL_SCHEMES = {"http", "https"}

_BLOCKED_NETWORKS = [
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("169.254.0.0/16"),  # link-local, cloud metadata
    ipaddress.ip_network("100.64.0.0/10"),  # carrier-grade NAT
    ipaddress.ip_network("224.0.0.0/4"),  # multicast
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("::/128"),
    ipaddress.ip_network("fc00::/7"),  # unique local
    ipaddress.ip_network("fe80::/10"),  # link-local
]

# Well-known NAT64 prefix; the last 32 bits are an IPv4 address
_NAT64_NETWORK = ipaddress.ip_network("64:ff9b::/96")

# "scheme:rest" where rest is not a port number
_SCHEME_RE = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.\-]*):(.*)$", re.DOTALL)
_PORT_RE = re.compile(r"^\d+(?:[/?#]|$)")

Resolver = Callable[[str], Awaitable[list[str]]]


def is_domain_allowed(hostname: str, allowed_domains: tuple[str, ...] | list[str]) -> bool:
    """Exact or dot-boundary suffix match; empty allow-list means unrestricted."""
    if not allowed_domains:
        return True
    host = hostname.lower().rstrip(".")
    for allowed in allowed_domains:
        allowed = allowed.lower().strip(".")
        if not allowed:
            continue
        if host == allowed or host.endswith("." + allowed):
            return True
    return False


def is_blocked_address(address: str) -> bool:
    """Check whether an IP literal falls in a blocked range."""
    try:
        addr = ipaddress.ip_address(address.split("%", 1)[0])
    except ValueError:
        return True

    if isinstance(addr, ipaddress.IPv6Address):
        embedded = addr.ipv4_mapped
        if embedded is None:
            embedded = addr.sixtofour
        if embedded is None and addr in _NAT64_NETWORK:
            embedded = ipaddress.IPv4Address(addr.packed[12:])
        if embedded is None and addr.packed[:12] == bytes(12) and int(addr) > 1:
            # IPv4-compatible form ::a.b.c.d
            embedded = ipaddress.IPv4Address(addr.packed[12:])
        if embedded is not None:
            return is_blocked_address(str(embedded))

    if addr.is_private or addr.is_reserved or addr.is_multicast or addr.is_link_local:
        return True
    if addr.is_loopback or addr.is_unspecified:
        return True
    return any(addr in network for network in _BLOCKED_NETWORKS)


async def resolve_host(hostname: str) -> list[str]:
    """Resolve a hostname to its deduplicated address list."""
    loop = asyncio.get_running_loop()
    results = await loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
    seen: list[str] = []
    for _family, _type, _proto, _canonname, sockaddr in results:
        ip = sockaddr[0]
        if ip not in seen:
            seen.append(ip)
    return seen


def normalize_url(raw: str) -> str:
    """Add ``https://`` to schemeless input.

    ``example.com:8080/path`` is treated as host:port, not as a scheme.
    """
    text = raw.strip()
    match = _SCHEME_RE.match(text)
    if match and not _PORT_RE.match(match.group(2)):
        return text
    return "https://" + text


def search_or_url(text: str, search_url: str) -> str:
    """Turn free text containing whitespace into a search URL."""
    text = text.strip()
    if any(ch.isspace() for ch in text):
        return search_url + quote_plus(text)
    return text


class UrlValidator:
    """Validates URLs before the browser or the downloader touches them."""

    def __init__(self, settings: BrowserSettings, resolver: Resolver | None = None):
        self.settings = settings
        self._resolver = resolver or resolve_host

    async def validate(self, raw: str) -> str:
        """Return the normalized URL or raise a ValidationError subclass."""
        raw = raw or ""
        if len(raw) > self.settings.max_url_length:
            raise TooLong(f"URL exceeds maximum length of {self.settings.max_url_length} characters.")
        if not raw.strip():
            raise InvalidURL("URL is empty.")
        if "\n" in raw or "\r" in raw:
            raise InvalidURL()

        candidate = normalize_url(raw)
        try:
            parts = urlsplit(candidate)
            hostname = parts.hostname or ""
            parts.port  # raises ValueError on a bad port
        except ValueError as e:
            raise InvalidURL() from e

        scheme = parts.scheme.lower()
        if scheme not in ALLOWED_URL_SCHEMES:
            raise SchemeNotAllowed(f"Only http/https allowed (got '{scheme}').")

        if not hostname or any(ch.isspace() for ch in hostname):
            raise InvalidURL()
        try:
            hostname.encode("idna")
        except UnicodeError as e:
            raise InvalidURL() from e

        if not is_domain_allowed(hostname, self.settings.allowed_domains):
            raise DomainNotAllowed(f"Domain not allowed: {hostname}")

        await self._check_resolved(hostname)

        netloc = parts.netloc
        if "@" not in netloc:
            netloc = netloc.lower()
        return urlunsplit((scheme, netloc, parts.path, parts.query, parts.fragment))

    async def _check_resolved(self, hostname: str) -> None:
        try:
            literal = ipaddress.ip_address(hostname.split("%", 1)[0])
        except ValueError:
            literal = None
        if literal is not None:
            if is_blocked_address(str(literal)):
                logger.warning("Blocked navigation to literal address %s", hostname)
                raise BlockedHost()
            return

        try:
            addresses = await asyncio.wait_for(self._resolver(hostname), timeout=self.settings.dns_timeout)
        except asyncio.TimeoutError as e:
            logger.info("DNS timeout for %s", hostname)
            raise BlockedHost(f"Could not resolve host: {hostname}") from e
        except (OSError, UnicodeError, ValueError) as e:
            logger.info("DNS failure for %s: %s", hostname, e)
            raise BlockedHost(f"Could not resolve host: {hostname}") from e

        if not addresses:
            raise BlockedHost(f"Could not resolve host: {hostname}")
        for address in addresses:
            if is_blocked_address(address):
                logger.warning("Blocked navigation to %s (%s)", hostname, address)
                raise BlockedHost()
