# === NAVMAP v1 ===
# {
#   "module": "EdgeWhitelist",
#   "purpose": "Package initialization and public API for EdgeWhitelist",
#   "sections": []
# }
# === /NAVMAP ===

"""Dynamic IP allow-list for edge filtering middleware.

The engine periodically fetches the address ranges published by a CDN
(Cloudflare, Fastly, AWS CloudFront) or the caller's own public addresses
from a pair of resolver endpoints, merges them with statically configured
ranges, and hands a fresh routing configuration to the host on every
successful refresh.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .configuration import ConfigurationEmitter, FilterConfiguration
from .engine import WhitelistEngine, create_config
from .errors import (
    ConstructionError,
    EmptyResultError,
    FetchError,
    InvalidAddressError,
    NoRangesResolvedError,
    ParseError,
    RefreshCancelled,
    RefreshError,
    TransportError,
    UpstreamStatusError,
    WhitelistError,
)
from .settings import IPStrategy, ProviderEndpoints, ProviderKind, WhitelistConfig, load_config

__all__ = [
    "ConfigurationEmitter",
    "ConstructionError",
    "EmptyResultError",
    "FetchError",
    "FilterConfiguration",
    "IPStrategy",
    "InvalidAddressError",
    "NoRangesResolvedError",
    "ParseError",
    "ProviderEndpoints",
    "ProviderKind",
    "RefreshCancelled",
    "RefreshError",
    "TransportError",
    "UpstreamStatusError",
    "WhitelistConfig",
    "WhitelistEngine",
    "WhitelistError",
    "__version__",
    "create_config",
    "load_config",
]
