"""Caller origin resolution for the IP allow-list."""

from __future__ import annotations

import ipaddress
from collections.abc import Iterable, Mapping, Sequence

from ..errors import ConfigurationError

Network = ipaddress.IPv4Network | ipaddress.IPv6Network


def parse_networks(entries: Iterable[str]) -> list[Network]:
    """Parse allow-list / proxy entries (single addresses or CIDR blocks).

    Raises:
        ConfigurationError: If an entry is not an address or network
    """
    networks: list[Network] = []
    for entry in entries:
        try:
            networks.append(ipaddress.ip_network(entry.strip(), strict=False))
        except ValueError as e:
            raise ConfigurationError(f"Invalid IP allow-list entry: {entry!r}") from e
    return networks


def address_in(address: str | None, networks: Sequence[Network]) -> bool:
    """True if ``address`` is a valid IP inside any of ``networks``."""
    if not address:
        return False
    try:
        ip = ipaddress.ip_address(address.strip())
    except ValueError:
        return False
    return any(ip.version == net.version and ip in net for net in networks)


def resolve_client_ip(
    peer: str | None,
    headers: Mapping[str, str],
    trusted_proxies: Sequence[Network],
) -> str | None:
    """Determine the caller's address.

    Forwarding headers are honored only when the direct peer is a trusted
    proxy. ``X-Forwarded-For`` is walked right to left and the first hop
    that is not itself a trusted proxy is the caller. ``X-Real-IP`` is
    the fallback.
    """
    if not peer or not address_in(peer, trusted_proxies):
        return peer

    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
        for hop in reversed(hops):
            if not address_in(hop, trusted_proxies):
                return hop
        if hops:
            return hops[0]

    real_ip = headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    return peer
