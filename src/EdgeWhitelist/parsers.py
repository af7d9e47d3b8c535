"""Payload parsers for the publisher formats understood by the engine.

Three upstream shapes are supported:

- newline-delimited CIDR lists (Cloudflare ``ips-v4`` / ``ips-v6``);
- a JSON object with flat ``addresses`` / ``ipv6_addresses`` arrays (Fastly);
- a JSON object with ``prefixes`` / ``ipv6_prefixes`` arrays of
  ``{prefix, service}`` records filtered by service label (AWS ip-ranges).
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, List, Mapping, Tuple, Union

from .errors import EmptyResultError, ParseError

Payload = Union[bytes, str]


@dataclass(frozen=True)
class AddressLists:
    """IPv4 and IPv6 entries decoded from one payload, in payload order."""

    ipv4: Tuple[str, ...] = ()
    ipv6: Tuple[str, ...] = ()


def _as_text(data: Payload) -> str:
    if isinstance(data, bytes):
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ParseError(f"payload is not valid UTF-8: {exc}") from exc
    return data


def _load_object(data: Payload, source: str) -> Mapping[str, Any]:
    try:
        payload = json.loads(_as_text(data))
    except json.JSONDecodeError as exc:
        raise ParseError(f"{source}: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise ParseError(f"{source}: expected a JSON object, got {type(payload).__name__}")
    return payload


def _string_array(payload: Mapping[str, Any], key: str, source: str) -> List[Any]:
    value = payload.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ParseError(f"{source}: '{key}' must be an array")
    return value


def parse_line_list(data: Payload, *, require: bool = False) -> List[str]:
    """Split a newline-delimited list, trimming entries and dropping blank lines.

    Args:
        data: Raw payload.
        require: When true an empty result raises :class:`EmptyResultError`.

    Examples:
        >>> parse_line_list(b"198.51.100.0/24\\n203.0.113.0/25\\n\\n")
        ['198.51.100.0/24', '203.0.113.0/25']
    """

    ranges = [line.strip() for line in _as_text(data).split("\n")]
    ranges = [line for line in ranges if line]
    if require and not ranges:
        raise EmptyResultError("line list contains no entries")
    return ranges


def parse_flat_json(data: Payload, *, source: str = "flat address list") -> AddressLists:
    """Decode ``{"addresses": [...], "ipv6_addresses": [...]}``."""

    payload = _load_object(data, source)
    lists = []
    for key in ("addresses", "ipv6_addresses"):
        values = _string_array(payload, key, source)
        if not all(isinstance(item, str) for item in values):
            raise ParseError(f"{source}: '{key}' must contain only strings")
        lists.append(tuple(values))
    return AddressLists(ipv4=lists[0], ipv6=lists[1])


def _filter_records(
    records: List[Any], prefix_key: str, service: str, source: str
) -> Tuple[str, ...]:
    matches: List[str] = []
    for record in records:
        if not isinstance(record, Mapping):
            raise ParseError(f"{source}: prefix records must be objects")
        if record.get("service") != service:
            continue
        prefix = record.get(prefix_key)
        if not isinstance(prefix, str):
            raise ParseError(f"{source}: '{prefix_key}' must be a string")
        matches.append(prefix.strip())
    return tuple(matches)


def parse_service_prefixes(
    data: Payload, service: str, *, source: str = "service prefix list"
) -> AddressLists:
    """Decode an AWS style prefix document, keeping records tagged ``service``.

    The service label is compared case-sensitively; IPv4 (``prefixes`` /
    ``ip_prefix``) and IPv6 (``ipv6_prefixes`` / ``ipv6_prefix``) records are
    filtered independently.
    """

    payload = _load_object(data, source)
    ipv4 = _filter_records(_string_array(payload, "prefixes", source), "ip_prefix", service, source)
    ipv6 = _filter_records(
        _string_array(payload, "ipv6_prefixes", source), "ipv6_prefix", service, source
    )
    return AddressLists(ipv4=ipv4, ipv6=ipv6)


__all__ = ["AddressLists", "parse_flat_json", "parse_line_list", "parse_service_prefixes"]
# === NAVMAP v1 ===
# {
#   "module": "EdgeWhitelist.parsers",
#   "purpose": "Decode line-list, flat JSON, and service-tagged JSON publisher payloads",
#   "sections": [
#     {"id": "addresslists", "name": "AddressLists", "anchor": "class-addresslists", "kind": "class"},
#     {"id": "parse-line-list", "name": "parse_line_list", "anchor": "function-parse-line-list", "kind": "function"},
#     {"id": "parse-flat-json", "name": "parse_flat_json", "anchor": "function-parse-flat-json", "kind": "function"},
#     {"id": "parse-service-prefixes", "name": "parse_service_prefixes", "anchor": "function-parse-service-prefixes", "kind": "function"}
#   ]
# }
# === /NAVMAP ===
