# === NAVMAP v1 ===
# {
#   "module": "EdgeWhitelist.providers",
#   "purpose": "Provider strategies turning publisher and resolver payloads into ordered CIDR lists",
#   "sections": [
#     {"id": "rangeprovider", "name": "RangeProvider", "anchor": "class-rangeprovider", "kind": "class"},
#     {"id": "baseprovider", "name": "BaseProvider", "anchor": "class-baseprovider", "kind": "class"},
#     {"id": "cloudflareprovider", "name": "CloudflareProvider", "anchor": "class-cloudflareprovider", "kind": "class"},
#     {"id": "fastlyprovider", "name": "FastlyProvider", "anchor": "class-fastlyprovider", "kind": "class"},
#     {"id": "cloudfrontprovider", "name": "CloudfrontProvider", "anchor": "class-cloudfrontprovider", "kind": "class"},
#     {"id": "customprovider", "name": "CustomProvider", "anchor": "class-customprovider", "kind": "class"},
#     {"id": "build-provider", "name": "build_provider", "anchor": "function-build-provider", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Provider strategies for the whitelist engine.

Each provider composes the remote fetcher, a payload parser, and (for the
custom resolver pair) the address normaliser into one ``fetch_ranges``
operation.  Providers hold no state between calls: every invocation issues
its requests sequentially and returns a new list in fetch order.

When ``whitelist_ipv6`` is false the IPv6 endpoint or payload field of a
provider is never requested or parsed.

The provider set is closed; :func:`build_provider` selects the variant from
the configured :class:`~EdgeWhitelist.settings.ProviderKind`.  Publisher
endpoints are injected through :class:`~EdgeWhitelist.settings.ProviderEndpoints`
so alternate hosts can be substituted per engine.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import ClassVar, List, Optional, Protocol

from . import net
from .addresses import ipv6_to_cidr, validate_ipv4, validate_ipv6
from .cancellation import CancellationToken
from .errors import ConstructionError, EmptyResultError, ParseError
from .net import Fetcher
from .parsers import parse_flat_json, parse_line_list, parse_service_prefixes
from .settings import (
    AWS_CLOUDFRONT_LABEL,
    ProviderEndpoints,
    ProviderKind,
    WhitelistConfig,
    get_settings,
)

LOGGER = logging.getLogger(__name__)


class RangeProvider(Protocol):
    """Protocol describing the provider capability consumed by the aggregator."""

    kind: ClassVar[ProviderKind]

    def fetch_ranges(
        self, cancellation_token: Optional[CancellationToken] = None
    ) -> List[str]:
        """Return this provider's CIDR ranges in fetch order.

        Args:
            cancellation_token: Optional token for cooperative cancellation.

        Raises:
            RefreshError: Any subclass describing why the ranges are unusable.
        """
        ...


@dataclass(frozen=True)
class BaseProvider:
    """Shared helpers for provider implementations."""

    kind: ClassVar[ProviderKind]

    whitelist_ipv6: bool = False
    fetcher: Optional[Fetcher] = None

    def _get(self, url: str, cancellation_token: Optional[CancellationToken]) -> bytes:
        fetcher = self.fetcher or net.fetch
        body = fetcher(url, cancellation_token=cancellation_token)
        LOGGER.debug(
            "provider payload received",
            extra={"stage": "fetch", "provider": self.kind.value, "url": url, "bytes": len(body)},
        )
        return body

    def _text(self, body: bytes) -> str:
        try:
            return body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ParseError(f"{self.kind.value}: response is not valid UTF-8") from exc


@dataclass(frozen=True)
class CloudflareProvider(BaseProvider):
    """Two plain-text line lists, one per address family."""

    kind: ClassVar[ProviderKind] = ProviderKind.CLOUDFLARE

    endpoints: ProviderEndpoints = ProviderEndpoints()

    def fetch_ranges(
        self, cancellation_token: Optional[CancellationToken] = None
    ) -> List[str]:
        ranges = parse_line_list(self._get(self.endpoints.cloudflare_ipv4, cancellation_token))
        if not ranges:
            raise EmptyResultError("cloudflare: empty IPv4 range list")

        if self.whitelist_ipv6:
            body6 = self._get(self.endpoints.cloudflare_ipv6, cancellation_token)
            ranges.extend(parse_line_list(body6))
        return ranges


@dataclass(frozen=True)
class FastlyProvider(BaseProvider):
    """One JSON document with flat IPv4 and IPv6 arrays."""

    kind: ClassVar[ProviderKind] = ProviderKind.FASTLY

    endpoints: ProviderEndpoints = ProviderEndpoints()

    def fetch_ranges(
        self, cancellation_token: Optional[CancellationToken] = None
    ) -> List[str]:
        payload = parse_flat_json(
            self._get(self.endpoints.fastly, cancellation_token), source="fastly"
        )
        ranges = list(payload.ipv4)
        if not ranges:
            raise EmptyResultError("fastly: empty IPv4 addresses list")

        if self.whitelist_ipv6:
            ranges.extend(payload.ipv6)
        return ranges


@dataclass(frozen=True)
class CloudfrontProvider(BaseProvider):
    """AWS ip-ranges document restricted to the CloudFront service label."""

    kind: ClassVar[ProviderKind] = ProviderKind.CLOUDFRONT

    endpoints: ProviderEndpoints = ProviderEndpoints()
    service: str = AWS_CLOUDFRONT_LABEL

    def fetch_ranges(
        self, cancellation_token: Optional[CancellationToken] = None
    ) -> List[str]:
        payload = parse_service_prefixes(
            self._get(self.endpoints.aws_ip_ranges, cancellation_token),
            self.service,
            source="cloudfront",
        )
        ranges = list(payload.ipv4)
        if not ranges:
            raise EmptyResultError("cloudfront: empty IPv4 prefix set")

        if self.whitelist_ipv6:
            ranges.extend(payload.ipv6)
        return ranges


@dataclass(frozen=True)
class CustomProvider(BaseProvider):
    """User-supplied resolvers that echo the caller's public address.

    The IPv4 answer is used as a bare address (an implicit /32); the IPv6
    answer is widened to its /64 network.
    """

    kind: ClassVar[ProviderKind] = ProviderKind.CUSTOM

    ipv4_resolver: str = ""
    ipv6_resolver: str = ""

    def fetch_ranges(
        self, cancellation_token: Optional[CancellationToken] = None
    ) -> List[str]:
        ipv4 = validate_ipv4(self._text(self._get(self.ipv4_resolver, cancellation_token)))
        ranges = [ipv4]

        if self.whitelist_ipv6:
            body6 = self._get(self.ipv6_resolver, cancellation_token)
            ranges.append(ipv6_to_cidr(validate_ipv6(self._text(body6))))
        return ranges


def build_provider(
    config: WhitelistConfig,
    *,
    endpoints: Optional[ProviderEndpoints] = None,
    fetcher: Optional[Fetcher] = None,
) -> RangeProvider:
    """Instantiate the provider variant selected by ``config.provider``.

    Args:
        config: Engine configuration.
        endpoints: Publisher endpoints; defaults to the process settings,
            which honour ``EDGE_WHITELIST_ENDPOINTS__*`` overrides.
        fetcher: Replacement for :func:`EdgeWhitelist.net.fetch`.

    Raises:
        ConstructionError: If the configuration is incomplete for its provider.
    """

    kind = config.require_complete()
    resolved_endpoints = endpoints or get_settings().endpoints.to_endpoints()
    ipv6 = config.whitelist_ipv6

    if kind is ProviderKind.CLOUDFLARE:
        return CloudflareProvider(whitelist_ipv6=ipv6, fetcher=fetcher, endpoints=resolved_endpoints)
    if kind is ProviderKind.FASTLY:
        return FastlyProvider(whitelist_ipv6=ipv6, fetcher=fetcher, endpoints=resolved_endpoints)
    if kind is ProviderKind.CLOUDFRONT:
        return CloudfrontProvider(whitelist_ipv6=ipv6, fetcher=fetcher, endpoints=resolved_endpoints)
    if kind is ProviderKind.CUSTOM:
        return CustomProvider(
            whitelist_ipv6=ipv6,
            fetcher=fetcher,
            ipv4_resolver=config.ipv4_resolver,
            ipv6_resolver=config.ipv6_resolver,
        )
    raise ConstructionError(f"unsupported provider {kind!r}")


__all__ = [
    "BaseProvider",
    "CloudflareProvider",
    "CloudfrontProvider",
    "CustomProvider",
    "FastlyProvider",
    "RangeProvider",
    "build_provider",
]
