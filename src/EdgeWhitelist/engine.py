# === NAVMAP v1 ===
# {
#   "module": "EdgeWhitelist.engine",
#   "purpose": "Engine facade wiring configuration, provider, aggregation, scheduling, and delivery",
#   "sections": [
#     {"id": "create-config", "name": "create_config", "anchor": "function-create-config", "kind": "function"},
#     {"id": "whitelistengine", "name": "WhitelistEngine", "anchor": "class-whitelistengine", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Engine facade for the dynamic allow-list.

The lifecycle follows the host plugin contract:

1. :func:`create_config` returns the defaults a host merges user input into.
2. :class:`WhitelistEngine` validates the merged configuration and selects
   the provider; an invalid provider or resolver raises
   :class:`~EdgeWhitelist.errors.ConstructionError`.
3. :meth:`WhitelistEngine.init` rejects a non-positive poll interval.
4. :meth:`WhitelistEngine.provide` starts the refresh loop publishing to a
   host channel; :meth:`WhitelistEngine.stop` ends it.

:meth:`WhitelistEngine.generate_configuration` performs one refresh without
delivery, which is what the ``edge-whitelist generate`` command prints.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Mapping, Optional

from .aggregator import build_source_ranges
from .cancellation import CancellationToken
from .configuration import ConfigurationChannel, ConfigurationEmitter, FilterConfiguration
from .errors import ConstructionError
from .net import Fetcher
from .providers import RangeProvider, build_provider
from .scheduler import RefreshScheduler
from .settings import ProviderEndpoints, WhitelistConfig, build_config
from .settings import create_config as _create_config

LOGGER = logging.getLogger(__name__)


def create_config(**overrides: Any) -> WhitelistConfig:
    """Return the default engine configuration with ``overrides`` merged in.

    Keys may use either the camelCase input names or the field names; with no
    overrides no provider is selected.
    """

    return _create_config(**overrides)


class WhitelistEngine:
    """Keep a host's allow-list middleware in sync with a range publisher.

    Args:
        config: Validated engine configuration.
        name: Instance name used for the refresh thread and log records.
        endpoints: Publisher endpoints; defaults to the process settings.
        fetcher: Replacement for :func:`EdgeWhitelist.net.fetch`.

    Raises:
        ConstructionError: If the provider is missing or the custom provider
            lacks the resolvers it needs.
    """

    def __init__(
        self,
        config: WhitelistConfig,
        name: str = "edge-whitelist",
        *,
        endpoints: Optional[ProviderEndpoints] = None,
        fetcher: Optional[Fetcher] = None,
    ) -> None:
        self.config = config
        self.name = name
        self._provider = build_provider(config, endpoints=endpoints, fetcher=fetcher)
        self._scheduler: Optional[RefreshScheduler] = None
        LOGGER.debug(
            "engine constructed",
            extra={"stage": "construct", "engine": name, "provider": self._provider.kind.value},
        )

    @classmethod
    def from_mapping(
        cls,
        raw_config: Mapping[str, Any],
        name: str = "edge-whitelist",
        **kwargs: Any,
    ) -> "WhitelistEngine":
        """Validate raw (camelCase) input and construct an engine from it."""

        return cls(build_config(raw_config), name, **kwargs)

    @property
    def provider(self) -> RangeProvider:
        return self._provider

    @property
    def scheduler(self) -> Optional[RefreshScheduler]:
        return self._scheduler

    def init(self) -> None:
        """Check start-time requirements.

        Raises:
            ConstructionError: If the poll interval is not positive.
        """

        if self.config.poll_interval <= timedelta(0):
            raise ConstructionError("poll interval must be greater than 0")

    def generate_configuration(
        self, cancellation_token: Optional[CancellationToken] = None
    ) -> FilterConfiguration:
        """Run one refresh and return the resulting configuration without delivering it.

        Raises:
            RefreshError: Any refresh failure, unchanged.
        """

        source_range = build_source_ranges(
            self.config.additional_source_range, self._provider, cancellation_token
        )
        return FilterConfiguration(
            source_range=source_range,
            ip_strategy=self.config.ip_strategy,
            middleware_name=self.config.middleware_name,
        )

    def provide(self, channel: ConfigurationChannel) -> RefreshScheduler:
        """Start publishing configurations to ``channel``.

        The first configuration is attempted immediately, then one per poll
        interval.  Only successful refreshes are delivered.

        Raises:
            ConstructionError: If the poll interval is not positive.
            RuntimeError: If this engine is already providing.
        """

        if self._scheduler is not None and self._scheduler.is_running:
            raise RuntimeError(f"engine {self.name!r} is already providing")

        def refresh(token: CancellationToken) -> bool:
            configuration = self.generate_configuration(token)
            return ConfigurationEmitter(channel, token).emit(configuration)

        scheduler = RefreshScheduler(
            self.config.poll_interval,
            refresh,
            name=f"{self.name}-{self._provider.kind.value}",
        )
        scheduler.start()
        self._scheduler = scheduler
        return scheduler

    def stop(self, timeout: Optional[float] = None) -> bool:
        """Stop the refresh loop; safe to call repeatedly or before :meth:`provide`."""

        if self._scheduler is None:
            return True
        return self._scheduler.stop(timeout)

    def __enter__(self) -> "WhitelistEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()


__all__ = ["WhitelistEngine", "create_config"]
