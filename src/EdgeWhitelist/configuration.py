# === NAVMAP v1 ===
# {
#   "module": "EdgeWhitelist.configuration",
#   "purpose": "Routing configuration envelope and its delivery to the host channel",
#   "sections": [
#     {"id": "filterconfiguration", "name": "FilterConfiguration", "anchor": "class-filterconfiguration", "kind": "class"},
#     {"id": "configurationchannel", "name": "ConfigurationChannel", "anchor": "class-configurationchannel", "kind": "class"},
#     {"id": "configurationemitter", "name": "ConfigurationEmitter", "anchor": "class-configurationemitter", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Configuration envelope handed to the filtering host.

The host consumes a routing document in which only one entry is populated:
the ``ipWhiteList`` middleware carrying the current source ranges and the
forwarding-depth strategy.  The remaining router, service, TLS, and transport
tables are present but empty because the consumer's schema requires them.

Each delivered :class:`FilterConfiguration` fully supersedes the previous
one; consumers must not merge across deliveries.
"""

from __future__ import annotations

import json
import logging
import queue
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

from .aggregator import RangeSet
from .cancellation import CancellationToken
from .settings import DEFAULT_MIDDLEWARE_NAME, IPStrategy

LOGGER = logging.getLogger(__name__)

_DELIVERY_POLL_SECONDS = 0.1


@dataclass(frozen=True)
class FilterConfiguration:
    """One published allow-list plus its forwarding strategy."""

    source_range: RangeSet
    ip_strategy: IPStrategy = field(default_factory=IPStrategy)
    middleware_name: str = DEFAULT_MIDDLEWARE_NAME

    def middleware(self) -> Dict[str, Any]:
        strategy: Dict[str, Any] = {"depth": self.ip_strategy.depth}
        if self.ip_strategy.excluded_ips is not None:
            strategy["excludedIPs"] = list(self.ip_strategy.excluded_ips)
        return {
            "ipWhiteList": {
                "sourceRange": list(self.source_range),
                "ipStrategy": strategy,
            }
        }

    def to_dict(self) -> Dict[str, Any]:
        """Render the full routing envelope as plain JSON-compatible data."""

        return {
            "http": {
                "routers": {},
                "middlewares": {self.middleware_name: self.middleware()},
                "services": {},
                "serversTransports": {},
            },
            "tcp": {"routers": {}, "services": {}},
            "tls": {"stores": {}, "options": {}},
            "udp": {"routers": {}, "services": {}},
        }

    def to_json(self, *, indent: Optional[int] = None) -> str:
        return json.dumps(self.to_dict(), indent=indent)


class ConfigurationChannel(Protocol):
    """Minimal ``queue.Queue`` surface used for delivery."""

    def put(self, item: Any, block: bool = True, timeout: Optional[float] = None) -> None: ...


class ConfigurationEmitter:
    """Deliver configurations to a host channel, one blocking hand-off at a time.

    A full (bounded) channel stalls delivery until the consumer catches up.
    The cancellation token is polled while waiting so a stopped scheduler is
    never pinned by an absent consumer.
    """

    def __init__(
        self,
        channel: ConfigurationChannel,
        cancellation_token: Optional[CancellationToken] = None,
    ) -> None:
        self._channel = channel
        self._token = cancellation_token

    def emit(self, configuration: FilterConfiguration) -> bool:
        """Hand ``configuration`` to the channel.

        Returns:
            True once delivered, False if cancellation was observed first.
        """

        while True:
            if self._token is not None and self._token.is_cancelled():
                LOGGER.debug("delivery abandoned after cancellation", extra={"stage": "emit"})
                return False
            try:
                self._channel.put(configuration, block=True, timeout=_DELIVERY_POLL_SECONDS)
            except queue.Full:
                continue
            LOGGER.debug(
                "configuration delivered",
                extra={"stage": "emit", "ranges": len(configuration.source_range)},
            )
            return True


__all__ = ["ConfigurationChannel", "ConfigurationEmitter", "FilterConfiguration"]
