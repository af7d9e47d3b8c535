"""Merge static ranges with freshly fetched provider ranges."""

from __future__ import annotations

from typing import Iterable, Optional, Tuple

from .cancellation import CancellationToken
from .errors import NoRangesResolvedError
from .providers import RangeProvider

RangeSet = Tuple[str, ...]


def build_source_ranges(
    static_ranges: Iterable[str],
    provider: RangeProvider,
    cancellation_token: Optional[CancellationToken] = None,
) -> RangeSet:
    """Return static ranges followed by the provider's ranges.

    Static ranges are kept verbatim and unvalidated; neither list is
    deduplicated.  Provider errors propagate unchanged.

    Raises:
        NoRangesResolvedError: If the combined list is empty.
    """

    provider_ranges = provider.fetch_ranges(cancellation_token)
    source_range: RangeSet = (*static_ranges, *provider_ranges)
    if not source_range:
        raise NoRangesResolvedError("no source ranges resolved")
    return source_range


__all__ = ["RangeSet", "build_source_ranges"]
