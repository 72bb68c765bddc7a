"""Resolves the authoritative client IP behind trusted reverse proxies."""

from __future__ import annotations

import ipaddress
import logging
from typing import Iterable, Optional, Tuple

from ..errors import AddressParseError, InvalidForwardedAddress

logger = logging.getLogger(__name__)

FORWARDED_FOR_HEADER = "X-Forwarded-For"


def split_host_port(address: str) -> Tuple[str, str]:
    if address.startswith("["):
        end = address.find("]")
        if end < 0:
            raise AddressParseError(f"missing ']' in address {address!r}")
        rest = address[end + 1:]
        if not rest:
            raise AddressParseError(f"missing port in address {address!r}")
        if not rest.startswith(":"):
            raise AddressParseError(f"unexpected text after host in address {address!r}")
        host, port = address[1:end], rest[1:]
        if "[" in host or "]" in port or "[" in port:
            raise AddressParseError(f"unexpected bracket in address {address!r}")
        return host, port

    host, sep, port = address.rpartition(":")
    if not sep:
        raise AddressParseError(f"missing port in address {address!r}")
    if ":" in host:
        raise AddressParseError(f"too many colons in address {address!r}")
    if "[" in address or "]" in address:
        raise AddressParseError(f"unexpected bracket in address {address!r}")
    return host, port


def format_peer_address(client: Optional[Tuple[str, int]]) -> str:
    """Renders an ASGI ``(host, port)`` client tuple as ``host:port``."""
    if not client:
        return ""
    host, port = client[0], client[1]
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _parse_ip(value: str):
    try:
        ip = ipaddress.ip_address(value)
    except ValueError:
        return None
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def is_trusted_proxy(host: str, trusted_ranges: Iterable) -> bool:
    ip = _parse_ip(host)
    if ip is None:
        return False
    for network in trusted_ranges:
        if ip.version == network.version and ip in network:
            return True
    return False


def resolve_remote_ip(direct_peer_address: str, forwarded_for: Optional[str], trusted_ranges: Iterable) -> str:
    try:
        remote_ip, _ = split_host_port(direct_peer_address)
    except AddressParseError as exc:
        logger.error("Could not split address into host and port: %s", exc)
        raise

    if not forwarded_for:
        return remote_ip

    if not is_trusted_proxy(remote_ip, trusted_ranges):
        logger.warning(
            "Untrusted remote attempted to override stored IP (remote_ip=%s, x_forwarded_for=%s)",
            remote_ip,
            forwarded_for,
        )
        return remote_ip

    # Intermediate hops are not checked against the trusted ranges; a trusted
    # proxy forwarding the header it received vouches for the earlier hops.
    client = forwarded_for.split(",")[0].strip()
    forwarded_ip = _parse_ip(client)
    if forwarded_ip is None:
        logger.error(
            "Couldn't use trusted X-Forwarded-For header (client=%s, remote_ip=%s)",
            client,
            remote_ip,
        )
        raise InvalidForwardedAddress(client)
    return str(forwarded_ip)
