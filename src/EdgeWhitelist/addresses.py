"""Address validation and IPv6 network normalisation."""

from __future__ import annotations

import ipaddress

from .errors import InvalidAddressError

IPV6_PREFIX_LENGTH = 64  # publishers advertise one representative address per /64


def validate_ipv4(text: str) -> str:
    """Return ``text`` trimmed if it is a valid IPv4 address."""

    candidate = text.strip()
    try:
        ipaddress.IPv4Address(candidate)
    except ValueError as exc:
        raise InvalidAddressError(f"not an IPv4 address: {candidate!r}") from exc
    return candidate


def validate_ipv6(text: str) -> str:
    """Return ``text`` trimmed if it is a valid IPv6 address that is not IPv4-mapped."""

    candidate = text.strip()
    try:
        address = ipaddress.IPv6Address(candidate)
    except ValueError as exc:
        raise InvalidAddressError(f"not an IPv6 address: {candidate!r}") from exc
    if address.ipv4_mapped is not None:
        raise InvalidAddressError(f"IPv4-mapped address is not an IPv6 address: {candidate!r}")
    if address.scope_id is not None:
        raise InvalidAddressError(f"zone-scoped address is not allowed: {candidate!r}")
    return candidate


def ipv6_to_cidr(address: str) -> str:
    """Mask an IPv6 address to its /64 network and render it in CIDR form.

    Examples:
        >>> ipv6_to_cidr("1234:1234:1234:1234:1234:1234:1234:1234")
        '1234:1234:1234:1234::/64'
    """

    candidate = validate_ipv6(address)
    host_bits = 128 - IPV6_PREFIX_LENGTH
    masked = int(ipaddress.IPv6Address(candidate)) >> host_bits << host_bits
    network = ipaddress.IPv6Network((masked, IPV6_PREFIX_LENGTH))
    return f"{network.network_address}/{IPV6_PREFIX_LENGTH}"


__all__ = ["IPV6_PREFIX_LENGTH", "ipv6_to_cidr", "validate_ipv4", "validate_ipv6"]
