"""Backend URL validation (SSRF guard).

A caller-supplied backend base URL is checked before any network call is
made against it. Validation works on *resolved* addresses rather than the
literal hostname, so a public-looking name that resolves into a private
range is rejected as well.
"""

import asyncio
import ipaddress
import socket
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Tuple
from urllib.parse import urlsplit

from pbgateway.app.core.logging import get_logger
from pbgateway.app.exceptions import ForbiddenTargetError

logger = get_logger(__name__)

Resolver = Callable[[str, int], Awaitable[List[str]]]

ALLOWED_SCHEMES = frozenset(("http", "https"))


class RejectionReason(str, Enum):
    INVALID_URL = "invalid-url"
    SCHEME_NOT_ALLOWED = "scheme-not-allowed"
    PRIVATE_NETWORK = "private-network"
    UNRESOLVABLE_HOST = "unresolvable-host"


def _ipv4_range(cidr: str) -> Tuple[int, int]:
    network = ipaddress.IPv4Network(cidr)
    return int(network.network_address), int(network.netmask)


# (prefix, mask) pairs; an address is reserved when (addr & mask) == prefix
RESERVED_IPV4_RANGES: Tuple[Tuple[int, int], ...] = tuple(
    _ipv4_range(cidr)
    for cidr in (
        "127.0.0.0/8",      # loopback
        "10.0.0.0/8",       # private
        "172.16.0.0/12",    # private
        "192.168.0.0/16",   # private
        "169.254.0.0/16",   # link-local, cloud metadata
        "0.0.0.0/8",        # unspecified
    )
)

_IPV6_UNIQUE_LOCAL_PREFIXES = ("fc", "fd")  # fc00::/7
_IPV6_LINK_LOCAL_PREFIXES = ("fe8", "fe9", "fea", "feb")  # fe80::/10


def parse_ipv4(value: str) -> Optional[int]:
    """Return the 32-bit integer for a dotted-quad literal, else None."""
    parts = value.split(".")
    if len(parts) != 4:
        return None
    number = 0
    for part in parts:
        if not (part.isascii() and part.isdigit()):
            return None
        if len(part) > 1 and part[0] == "0":
            # Resolvers read a leading zero as octal
            return None
        octet = int(part)
        if octet > 255:
            return None
        number = (number << 8) | octet
    return number


def is_numeric_host(value: str) -> bool:
    """True for hosts the system resolver may read as an IPv4 number.

    Covers shorthand (``127.1``), single integers (``2130706433``), octal
    and hex parts (``0177.0.0.1``, ``0x7f.0.0.1``).
    """
    parts = value.rstrip(".").split(".")
    if len(parts) > 4:
        return False
    for part in parts:
        if part[:2].lower() == "0x":
            part = part[2:]
            if not part or not all(c in "0123456789abcdefABCDEF" for c in part):
                return False
        elif not (part.isascii() and part.isdigit()):
            return False
    return True


def is_reserved_ipv4(value: str) -> bool:
    number = parse_ipv4(value)
    if number is None:
        return False
    return any((number & mask) == prefix for prefix, mask in RESERVED_IPV4_RANGES)


def is_reserved_ipv6(value: str) -> bool:
    normalized = value.lower()
    mapped: Optional[ipaddress.IPv4Address] = None
    try:
        address = ipaddress.IPv6Address(normalized)
    except ValueError:
        # Unresolved hostnames fall through to the textual prefix checks
        pass
    else:
        normalized = address.compressed
        mapped = address.ipv4_mapped

    if normalized == "::1":
        return True
    if normalized.startswith(_IPV6_UNIQUE_LOCAL_PREFIXES):
        return True
    if normalized.startswith(_IPV6_LINK_LOCAL_PREFIXES):
        return True
    if mapped is not None:
        return is_reserved_ipv4(str(mapped))
    if normalized.startswith("::ffff:"):
        return is_reserved_ipv4(normalized[len("::ffff:"):])
    return False


def is_reserved_address(value: str) -> bool:
    return is_reserved_ipv4(value) or is_reserved_ipv6(value)


async def resolve_with_getaddrinfo(host: str, family: int) -> List[str]:
    """Resolve ``host`` to addresses of one family using the event loop."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, None, family=family, type=socket.SOCK_STREAM)
    addresses: List[str] = []
    for info in infos:
        address = info[4][0]
        if address not in addresses:
            addresses.append(address)
    return addresses


class URLValidator:
    """Validate caller-supplied backend URLs against SSRF targets.

    Holds no mutable state; a single instance is shared by all requests.
    """

    def __init__(
        self,
        resolver: Resolver = resolve_with_getaddrinfo,
        dns_timeout: float = 5.0,
        fail_closed: bool = False,
    ):
        """Initialize the validator.

        Args:
            resolver: Async callable ``(host, family) -> [address, ...]``
            dns_timeout: Upper bound in seconds for each lookup
            fail_closed: Reject when the A lookup fails instead of checking
                the unresolved hostname
        """
        self._resolver = resolver
        self._dns_timeout = dns_timeout
        self._fail_closed = fail_closed

    async def validate(self, url: str) -> str:
        """Validate ``url`` and return it unchanged.

        Raises:
            ForbiddenTargetError: With the rejection reason
        """
        try:
            parts = urlsplit(url)
            parts.port  # raises ValueError on a malformed port
        except ValueError:
            raise ForbiddenTargetError(RejectionReason.INVALID_URL.value, "Invalid URL")

        if parts.scheme not in ALLOWED_SCHEMES:
            raise ForbiddenTargetError(
                RejectionReason.SCHEME_NOT_ALLOWED.value,
                "Only http and https schemes are allowed",
            )

        hostname = parts.hostname
        if not hostname:
            raise ForbiddenTargetError(RejectionReason.INVALID_URL.value, "Invalid URL")

        bracketed = "[" in parts.netloc
        if not bracketed and parse_ipv4(hostname) is None and is_numeric_host(hostname):
            # Non-canonical IPv4 forms; the system resolver would accept them
            raise ForbiddenTargetError(RejectionReason.INVALID_URL.value, "Invalid URL")

        for address in await self._candidates(hostname, bracketed):
            if is_reserved_address(address):
                logger.warning(
                    "Backend URL points to a reserved address",
                    extra={"backend_host": hostname, "address": address},
                )
                raise ForbiddenTargetError(
                    RejectionReason.PRIVATE_NETWORK.value,
                    "URLs pointing to private/internal networks are not allowed",
                )

        return url

    async def _candidates(self, hostname: str, bracketed: bool) -> List[str]:
        if parse_ipv4(hostname) is not None or bracketed:
            # urlsplit already strips the brackets of an IPv6 literal
            return [hostname]

        ipv4_result, ipv6_result = await asyncio.gather(
            self._lookup(hostname, socket.AF_INET),
            self._lookup(hostname, socket.AF_INET6),
            return_exceptions=True,
        )

        if isinstance(ipv4_result, BaseException):
            if isinstance(ipv4_result, asyncio.CancelledError):
                raise ipv4_result
            if self._fail_closed:
                raise ForbiddenTargetError(
                    RejectionReason.UNRESOLVABLE_HOST.value,
                    "Backend hostname could not be resolved",
                )
            logger.info(
                f"DNS lookup failed, checking hostname literally: {ipv4_result!r}",
                extra={"backend_host": hostname},
            )
            candidates = [hostname]
            if not isinstance(ipv6_result, BaseException):
                candidates.extend(ipv6_result)
            return candidates

        addresses = list(ipv4_result)
        if not isinstance(ipv6_result, BaseException):
            addresses.extend(ipv6_result)
        return addresses

    async def _lookup(self, hostname: str, family: int) -> List[str]:
        return await asyncio.wait_for(
            self._resolver(hostname, family), timeout=self._dns_timeout
        )
