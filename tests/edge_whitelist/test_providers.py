# === NAVMAP v1 ===
# {
#   "module": "tests.edge_whitelist.test_providers",
#   "purpose": "Covers each provider strategy, IPv6 gating, provider selection, and the range aggregator.",
#   "sections": [
#     {"id": "tests", "name": "Test Cases", "anchor": "TST", "kind": "tests"}
#   ]
# }
# === /NAVMAP ===

"""Covers each provider strategy, IPv6 gating, provider selection, and the range aggregator."""

from __future__ import annotations

import json
from typing import ClassVar, List, Optional

import httpx
import pytest

from EdgeWhitelist.aggregator import build_source_ranges
from EdgeWhitelist.cancellation import CancellationToken
from EdgeWhitelist.errors import (
    ConstructionError,
    EmptyResultError,
    InvalidAddressError,
    NoRangesResolvedError,
    ParseError,
    UpstreamStatusError,
)
from EdgeWhitelist.providers import (
    CloudflareProvider,
    CloudfrontProvider,
    CustomProvider,
    FastlyProvider,
    build_provider,
)
from EdgeWhitelist.settings import ProviderEndpoints, ProviderKind, create_config
from EdgeWhitelist.testing import use_mock_http_client

ENDPOINTS = ProviderEndpoints(
    cloudflare_ipv4="http://cdn.test/ips-v4",
    cloudflare_ipv6="http://cdn.test/ips-v6",
    fastly="http://cdn.test/public-ip-list",
    aws_ip_ranges="http://cdn.test/ip-ranges.json",
)

FASTLY_PAYLOAD = json.dumps(
    {"addresses": ["23.235.32.0/20", "43.249.72.0/22"], "ipv6_addresses": ["2a04:4e40::/32"]}
)

AWS_PAYLOAD = json.dumps(
    {
        "prefixes": [
            {"ip_prefix": "13.32.0.0/15", "service": "CLOUDFRONT"},
            {"ip_prefix": "52.94.76.0/22", "service": "EC2"},
            {"ip_prefix": "52.46.0.0/18", "service": "CLOUDFRONT"},
        ],
        "ipv6_prefixes": [
            {"ipv6_prefix": "2600:9000::/28", "service": "CLOUDFRONT"},
            {"ipv6_prefix": "2a05:d07a:a000::/40", "service": "S3"},
        ],
    }
)


# --- Cloudflare ---


def test_cloudflare_ipv4_only_never_requests_ipv6(make_fetcher):
    fetcher = make_fetcher({ENDPOINTS.cloudflare_ipv4: "173.245.48.0/20\n103.21.244.0/22\n"})
    provider = CloudflareProvider(fetcher=fetcher, endpoints=ENDPOINTS)

    assert provider.fetch_ranges() == ["173.245.48.0/20", "103.21.244.0/22"]
    assert fetcher.calls == [ENDPOINTS.cloudflare_ipv4]


def test_cloudflare_appends_ipv6_when_enabled(make_fetcher):
    fetcher = make_fetcher(
        {
            ENDPOINTS.cloudflare_ipv4: "173.245.48.0/20\n",
            ENDPOINTS.cloudflare_ipv6: "2400:cb00::/32\n2606:4700::/32\n",
        }
    )
    provider = CloudflareProvider(whitelist_ipv6=True, fetcher=fetcher, endpoints=ENDPOINTS)

    assert provider.fetch_ranges() == ["173.245.48.0/20", "2400:cb00::/32", "2606:4700::/32"]
    assert fetcher.calls == [ENDPOINTS.cloudflare_ipv4, ENDPOINTS.cloudflare_ipv6]


def test_cloudflare_empty_ipv4_list_fails_but_empty_ipv6_is_allowed(make_fetcher):
    empty_v4 = CloudflareProvider(
        fetcher=make_fetcher({ENDPOINTS.cloudflare_ipv4: "\n\n"}), endpoints=ENDPOINTS
    )
    with pytest.raises(EmptyResultError):
        empty_v4.fetch_ranges()

    empty_v6 = CloudflareProvider(
        whitelist_ipv6=True,
        fetcher=make_fetcher(
            {ENDPOINTS.cloudflare_ipv4: "173.245.48.0/20", ENDPOINTS.cloudflare_ipv6: ""}
        ),
        endpoints=ENDPOINTS,
    )
    assert empty_v6.fetch_ranges() == ["173.245.48.0/20"]


def test_cloudflare_propagates_fetch_errors(make_fetcher):
    error = UpstreamStatusError(500, ENDPOINTS.cloudflare_ipv4)
    provider = CloudflareProvider(
        fetcher=make_fetcher({ENDPOINTS.cloudflare_ipv4: error}), endpoints=ENDPOINTS
    )
    with pytest.raises(UpstreamStatusError) as excinfo:
        provider.fetch_ranges()
    assert excinfo.value is error


# --- Fastly ---


def test_fastly_ipv6_toggle(make_fetcher):
    fetcher = make_fetcher({ENDPOINTS.fastly: FASTLY_PAYLOAD})

    v4 = FastlyProvider(fetcher=fetcher, endpoints=ENDPOINTS).fetch_ranges()
    both = FastlyProvider(whitelist_ipv6=True, fetcher=fetcher, endpoints=ENDPOINTS).fetch_ranges()

    assert v4 == ["23.235.32.0/20", "43.249.72.0/22"]
    assert both == ["23.235.32.0/20", "43.249.72.0/22", "2a04:4e40::/32"]
    assert fetcher.calls == [ENDPOINTS.fastly, ENDPOINTS.fastly]


def test_fastly_empty_or_malformed_payload(make_fetcher):
    empty = FastlyProvider(
        fetcher=make_fetcher({ENDPOINTS.fastly: '{"addresses": [], "ipv6_addresses": ["::/0"]}'}),
        endpoints=ENDPOINTS,
    )
    with pytest.raises(EmptyResultError):
        empty.fetch_ranges()

    malformed = FastlyProvider(
        fetcher=make_fetcher({ENDPOINTS.fastly: "<html>"}), endpoints=ENDPOINTS
    )
    with pytest.raises(ParseError):
        malformed.fetch_ranges()


# --- CloudFront ---


def test_cloudfront_filters_by_service_label(make_fetcher):
    fetcher = make_fetcher({ENDPOINTS.aws_ip_ranges: AWS_PAYLOAD})

    v4 = CloudfrontProvider(fetcher=fetcher, endpoints=ENDPOINTS).fetch_ranges()
    both = CloudfrontProvider(
        whitelist_ipv6=True, fetcher=fetcher, endpoints=ENDPOINTS
    ).fetch_ranges()

    assert v4 == ["13.32.0.0/15", "52.46.0.0/18"]
    assert both == ["13.32.0.0/15", "52.46.0.0/18", "2600:9000::/28"]


def test_cloudfront_without_matching_ipv4_prefixes_fails(make_fetcher):
    payload = json.dumps({"prefixes": [{"ip_prefix": "52.94.76.0/22", "service": "EC2"}]})
    provider = CloudfrontProvider(
        fetcher=make_fetcher({ENDPOINTS.aws_ip_ranges: payload}), endpoints=ENDPOINTS
    )
    with pytest.raises(EmptyResultError):
        provider.fetch_ranges()


# --- Custom resolvers ---


def test_custom_provider_returns_bare_ipv4_and_ipv6_network(make_fetcher):
    fetcher = make_fetcher(
        {
            "http://resolver.test/v4": "192.0.2.123\n",
            "http://resolver.test/v6": "1234:1234:1234:1234:1234:1234:1234:1234\n",
        }
    )
    provider = CustomProvider(
        whitelist_ipv6=True,
        fetcher=fetcher,
        ipv4_resolver="http://resolver.test/v4",
        ipv6_resolver="http://resolver.test/v6",
    )

    assert provider.fetch_ranges() == ["192.0.2.123", "1234:1234:1234:1234::/64"]


def test_custom_provider_skips_ipv6_resolver_when_disabled(make_fetcher):
    fetcher = make_fetcher({"http://resolver.test/v4": "192.0.2.123"})
    provider = CustomProvider(
        fetcher=fetcher,
        ipv4_resolver="http://resolver.test/v4",
        ipv6_resolver="http://resolver.test/v6",
    )

    assert provider.fetch_ranges() == ["192.0.2.123"]
    assert fetcher.calls == ["http://resolver.test/v4"]


@pytest.mark.parametrize(
    "v4_answer, v6_answer",
    [
        ("2001:db8::1", "2001:db8::1"),
        ("192.0.2.1", "192.0.2.1"),
        ("192.0.2.1", "::ffff:192.0.2.1"),
        ("<html>error</html>", "2001:db8::1"),
    ],
)
def test_custom_provider_rejects_wrong_address_family(make_fetcher, v4_answer, v6_answer):
    fetcher = make_fetcher({"http://r/v4": v4_answer, "http://r/v6": v6_answer})
    provider = CustomProvider(
        whitelist_ipv6=True, fetcher=fetcher, ipv4_resolver="http://r/v4", ipv6_resolver="http://r/v6"
    )
    with pytest.raises(InvalidAddressError):
        provider.fetch_ranges()


def test_custom_provider_through_shared_http_client():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "v4.resolver.test":
            return httpx.Response(200, text="198.51.100.9\n")
        return httpx.Response(200, text="2001:db8:1:2:3:4:5:6")

    provider = CustomProvider(
        whitelist_ipv6=True,
        ipv4_resolver="https://v4.resolver.test/?format=text",
        ipv6_resolver="https://v6.resolver.test/?format=text",
    )
    with use_mock_http_client(httpx.MockTransport(handler)):
        assert provider.fetch_ranges() == ["198.51.100.9", "2001:db8:1:2::/64"]


# --- Selection ---


@pytest.mark.parametrize(
    "provider, expected",
    [
        ("cloudflare", CloudflareProvider),
        ("Fastly", FastlyProvider),
        ("CLOUDFRONT", CloudfrontProvider),
        ("custom", CustomProvider),
    ],
)
def test_build_provider_dispatches_on_kind(provider, expected):
    config = create_config(provider=provider, whitelistIPv6=True)
    built = build_provider(config, endpoints=ENDPOINTS)

    assert type(built) is expected
    assert built.whitelist_ipv6 is True
    assert built.kind is ProviderKind.parse(provider)


def test_build_provider_injects_endpoints_and_resolvers():
    cloudflare = build_provider(create_config(provider="cloudflare"), endpoints=ENDPOINTS)
    default = build_provider(create_config(provider="cloudflare"))
    custom = build_provider(
        create_config(provider="custom", ipv4Resolver=" http://r/v4 ", ipv6Resolver="http://r/v6")
    )

    assert cloudflare.endpoints is ENDPOINTS
    assert default.endpoints == ProviderEndpoints()
    assert (custom.ipv4_resolver, custom.ipv6_resolver) == ("http://r/v4", "http://r/v6")


def test_build_provider_requires_complete_config():
    with pytest.raises(ConstructionError):
        build_provider(create_config())


# --- Aggregation ---


class _StaticProvider:
    kind: ClassVar[ProviderKind] = ProviderKind.CUSTOM

    def __init__(self, ranges: List[str]) -> None:
        self.ranges = ranges
        self.tokens: List[Optional[CancellationToken]] = []

    def fetch_ranges(self, cancellation_token: Optional[CancellationToken] = None) -> List[str]:
        self.tokens.append(cancellation_token)
        return list(self.ranges)


def test_static_ranges_precede_provider_ranges_without_dedup():
    provider = _StaticProvider(["192.0.2.0/24", "10.0.0.0/8"])
    token = CancellationToken()

    source_range = build_source_ranges(["10.0.0.0/8", "not-validated"], provider, token)

    assert source_range == ("10.0.0.0/8", "not-validated", "192.0.2.0/24", "10.0.0.0/8")
    assert provider.tokens == [token]


def test_empty_aggregate_raises_no_ranges_resolved():
    with pytest.raises(NoRangesResolvedError):
        build_source_ranges([], _StaticProvider([]))

    assert build_source_ranges(["127.0.0.1/32"], _StaticProvider([])) == ("127.0.0.1/32",)
