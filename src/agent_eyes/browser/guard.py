"""Navigation guard — SSRF protection for outbound page navigation.

Every URL handed to ``ActionSession.navigate`` passes through
:func:`authorize` first.  The guard is a pure function of ``(url, policy)``:

* the URL must parse as an absolute URL (``BadInputError`` otherwise);
* the scheme must be exactly ``http`` or ``https``;
* an optional allow-pattern is exclusive — no match, no navigation;
* unless disabled, loopback / link-local / RFC1918 / unique-local hosts and
  the literal ``localhost`` are rejected.

The private-host check is a hostname-pattern check.  It performs no DNS
resolution, so a public name that later resolves to a private address
(DNS rebinding) is not caught here.
"""

from __future__ import annotations

import ipaddress
import logging
import re
import socket
from dataclasses import dataclass
from urllib.parse import SplitResult, urlsplit, urlunsplit

from agent_eyes.exceptions import BadInputError, SecurityBlockedError
from agent_eyes.settings.config import GuardSettings

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = frozenset({"http", "https"})

_DEFAULT_PORTS = {"http": 80, "https": 443}

PRIVATE_NETWORKS: tuple[ipaddress.IPv4Network | ipaddress.IPv6Network, ...] = (
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fe80::/10"),
    ipaddress.ip_network("fc00::/7"),
)

# Numeric IPv4 spellings a browser would normalise (decimal, hex, octal, short forms).
_NUMERIC_HOST_RE = re.compile(r"^(0x[0-9a-f]+|[0-9]+)(\.(0x[0-9a-f]+|[0-9]+)){0,3}\.?$", re.IGNORECASE)
_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*$", re.IGNORECASE)


@dataclass(frozen=True)
class GuardPolicy:
    """Immutable navigation policy."""

    block_private_ips: bool = True
    allow_pattern: re.Pattern[str] | None = None

    @classmethod
    def from_settings(cls, settings: GuardSettings) -> GuardPolicy:
        """Build a policy from the ``guard`` settings section."""
        pattern = None
        if settings.allow_pattern:
            try:
                pattern = re.compile(settings.allow_pattern)
            except re.error as exc:
                raise BadInputError(f"Invalid allow pattern: {settings.allow_pattern}") from exc
        return cls(block_private_ips=settings.block_private_ips, allow_pattern=pattern)


def authorize(raw_url: str, policy: GuardPolicy | None = None) -> str:
    """Validate *raw_url* against *policy* and return its canonical form.

    Args:
        raw_url: The URL requested by the caller.
        policy: Guard policy; defaults to blocking private hosts with no allowlist.

    Returns:
        The canonicalized URL string.

    Raises:
        BadInputError: If the input is not a valid absolute URL.
        SecurityBlockedError: If the scheme, allowlist, or private-host rule rejects it.
    """
    policy = policy or GuardPolicy()
    parts = _parse(raw_url)

    if parts.scheme not in ALLOWED_SCHEMES:
        raise SecurityBlockedError(f"Blocked non-HTTP(S) scheme: {parts.scheme}:", data={"url": raw_url})

    canonical = _canonicalize(parts)

    if policy.allow_pattern is not None and not policy.allow_pattern.search(canonical):
        raise SecurityBlockedError(f"URL not allowed by allowlist: {canonical}", data={"url": canonical})

    if policy.block_private_ips:
        host = urlsplit(canonical).hostname or ""
        if is_private_hostname(host):
            logger.info("Blocked navigation to private host %s", host)
            raise SecurityBlockedError(f"Blocked private/loopback host: {host}", data={"host": host})

    return canonical


def is_private_hostname(hostname: str) -> bool:
    """Return True if *hostname* names a loopback, link-local or private address."""
    host = hostname.strip().lstrip("[").rstrip("]").rstrip(".").lower()
    if not host:
        return False
    if host == "localhost":
        return True

    address = _parse_ip(host)
    if address is None:
        return False
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        address = address.ipv4_mapped
    return any(address in network for network in PRIVATE_NETWORKS if network.version == address.version)


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def _parse(raw_url: str) -> SplitResult:
    """Parse *raw_url* as an absolute URL or raise ``BadInputError``."""
    if not isinstance(raw_url, str) or not raw_url.strip():
        raise BadInputError(f"Invalid URL: {raw_url!r}")
    candidate = raw_url.strip()
    if any(ch.isspace() for ch in candidate):
        raise BadInputError(f"Invalid URL: {raw_url}")

    try:
        parts = urlsplit(candidate)
        parts.port  # noqa: B018 — raises ValueError on a malformed port
    except ValueError as exc:
        raise BadInputError(f"Invalid URL: {raw_url}") from exc

    if not parts.scheme or not _SCHEME_RE.match(parts.scheme):
        raise BadInputError(f"Invalid URL: {raw_url}")
    scheme = parts.scheme.lower()
    if scheme in ALLOWED_SCHEMES and not parts.hostname:
        raise BadInputError(f"Invalid URL: {raw_url}")
    return parts._replace(scheme=scheme)


def _canonicalize(parts: SplitResult) -> str:
    """Rebuild a normalised URL: lower-case host, default port dropped, ``/`` path."""
    host = (parts.hostname or "").lower()
    numeric = _parse_ip(host)
    if numeric is not None:
        host = f"[{numeric.compressed}]" if numeric.version == 6 else numeric.compressed

    netloc = host
    port = parts.port
    if port is not None and port != _DEFAULT_PORTS.get(parts.scheme):
        netloc = f"{netloc}:{port}"
    if parts.username is not None:
        userinfo = parts.username
        if parts.password is not None:
            userinfo = f"{userinfo}:{parts.password}"
        netloc = f"{userinfo}@{netloc}"

    return urlunsplit((parts.scheme, netloc, parts.path or "/", parts.query, parts.fragment))


def _parse_ip(host: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    """Interpret *host* as an IP literal, including legacy numeric IPv4 forms."""
    try:
        return ipaddress.ip_address(host)
    except ValueError:
        pass
    if _NUMERIC_HOST_RE.match(host):
        try:
            return ipaddress.IPv4Address(socket.inet_aton(host.rstrip(".")))
        except OSError:
            return None
    return None
