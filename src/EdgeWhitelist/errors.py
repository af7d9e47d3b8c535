"""Exception hierarchy shared across provider fetching, aggregation, and scheduling.

The whitelist engine splits its failure modes into two families.  Construction
errors describe invalid configuration and are raised synchronously to the
caller that builds or starts an engine.  Refresh errors describe a single
failed refresh cycle (an unreachable publisher, a malformed payload, an empty
range list) and are contained by the scheduler, which logs them and keeps the
previously published configuration authoritative.
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "WhitelistError",
    "ConstructionError",
    "RefreshError",
    "FetchError",
    "TransportError",
    "UpstreamStatusError",
    "ParseError",
    "InvalidAddressError",
    "EmptyResultError",
    "NoRangesResolvedError",
    "RefreshCancelled",
]


class WhitelistError(RuntimeError):
    """Base exception for whitelist construction and refresh failures."""


class ConstructionError(WhitelistError):
    """Raised when engine configuration is missing, unsupported, or inconsistent."""


class RefreshError(WhitelistError):
    """Base class for failures confined to a single refresh cycle."""


class FetchError(RefreshError):
    """Raised when an outbound HTTP request does not yield a usable body."""

    def __init__(self, message: str, *, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.url = url


class TransportError(FetchError):
    """Raised on DNS, connection, timeout, or truncated-body failures."""


class UpstreamStatusError(FetchError):
    """Raised when an upstream endpoint answers with a non-2xx status."""

    def __init__(self, status_code: int, url: str) -> None:
        super().__init__(f"unexpected status code {status_code} from {url}", url=url)
        self.status_code = status_code


class ParseError(RefreshError):
    """Raised when an upstream payload cannot be decoded."""


class InvalidAddressError(RefreshError):
    """Raised when a value is not a valid address of the expected family."""


class EmptyResultError(RefreshError):
    """Raised when a provider payload contains no usable ranges."""


class NoRangesResolvedError(RefreshError):
    """Raised when static and provider ranges combined are empty."""


class RefreshCancelled(RefreshError):
    """Raised when cancellation is observed while a refresh is in flight."""
# === NAVMAP v1 ===
# {
#   "module": "EdgeWhitelist.errors",
#   "purpose": "Define the exception hierarchy used across fetching, aggregation, and scheduling",
#   "sections": [
#     {"id": "base", "name": "Base Exceptions", "anchor": "BAS", "kind": "api"},
#     {"id": "construction", "name": "Construction Errors", "anchor": "CFG", "kind": "api"},
#     {"id": "fetch", "name": "Fetch Errors", "anchor": "FET", "kind": "api"},
#     {"id": "payload", "name": "Payload & Address Errors", "anchor": "PAY", "kind": "api"},
#     {"id": "refresh", "name": "Refresh Outcome Errors", "anchor": "REF", "kind": "api"}
#   ]
# }
# === /NAVMAP ===
