# === NAVMAP v1 ===
# {
#   "module": "EdgeWhitelist.settings",
#   "purpose": "Input schema, duration parsing, endpoint defaults, and runtime settings for the whitelist engine",
#   "sections": [
#     {"id": "constants", "name": "Constants & defaults", "anchor": "CONST", "kind": "constants"},
#     {"id": "parse-duration", "name": "parse_duration", "anchor": "function-parse-duration", "kind": "function"},
#     {"id": "providerkind", "name": "ProviderKind", "anchor": "class-providerkind", "kind": "class"},
#     {"id": "providerendpoints", "name": "ProviderEndpoints", "anchor": "class-providerendpoints", "kind": "class"},
#     {"id": "ipstrategy", "name": "IPStrategy", "anchor": "class-ipstrategy", "kind": "class"},
#     {"id": "whitelistconfig", "name": "WhitelistConfig", "anchor": "class-whitelistconfig", "kind": "class"},
#     {"id": "runtime-settings", "name": "Runtime settings", "anchor": "class-edgewhitelistsettings", "kind": "class"},
#     {"id": "loaders", "name": "Config builders & loaders", "anchor": "function-build-config", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Configuration models for the whitelist engine.

Two layers of configuration exist:

- :class:`WhitelistConfig` is the per-engine input (provider, poll interval,
  IPv6 inclusion, static ranges, resolver URLs, forwarding strategy).  It is
  validated once, frozen, and never changes for the lifetime of an engine.
- :class:`EdgeWhitelistSettings` holds process-level runtime settings (HTTP
  timeouts, logging, publisher endpoints) read from ``EDGE_WHITELIST_*``
  environment variables.  Publisher endpoints are turned into a
  :class:`ProviderEndpoints` value and injected into providers, so substituting
  alternate hosts never requires mutating module state.
"""

from __future__ import annotations

import enum
import logging
import re
import threading
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, List, Mapping, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConstructionError

# --- Constants & defaults ------------------------------------------------------

DEFAULT_POLL_INTERVAL = "300s"
DEFAULT_IPV4_RESOLVER = "https://api4.ipify.org/?format=text"
DEFAULT_IPV6_RESOLVER = "https://api6.ipify.org/?format=text"
DEFAULT_MIDDLEWARE_NAME = "public_ipwhitelist"

DEFAULT_CLOUDFLARE_IPV4_ENDPOINT = "https://www.cloudflare.com/ips-v4/"
DEFAULT_CLOUDFLARE_IPV6_ENDPOINT = "https://www.cloudflare.com/ips-v6/"
DEFAULT_FASTLY_ENDPOINT = "https://api.fastly.com/public-ip-list"
DEFAULT_AWS_IP_RANGES_ENDPOINT = "https://ip-ranges.amazonaws.com/ip-ranges.json"

AWS_CLOUDFRONT_LABEL = "CLOUDFRONT"

_DURATION_PATTERN = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")
_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: Union[str, int, float, timedelta]) -> timedelta:
    """Convert a duration expression such as ``"300s"`` or ``"1m30s"`` into a timedelta.

    Integers and floats are interpreted as seconds.  Strings follow the
    ``<number><unit>`` grammar repeated one or more times with an optional
    leading sign; supported units are ``ns``, ``us``, ``ms``, ``s``, ``m`` and
    ``h``.  A bare ``"0"`` is accepted.

    Raises:
        ValueError: If ``value`` is empty or does not follow the grammar.

    Examples:
        >>> parse_duration("1m30s")
        datetime.timedelta(seconds=90)
        >>> parse_duration(2.5)
        datetime.timedelta(seconds=2, microseconds=500000)
    """

    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ValueError(f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)

    text = str(value).strip()
    if not text:
        raise ValueError("duration must not be empty")

    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]
    if text == "0":
        return timedelta(0)
    if not text:
        raise ValueError(f"invalid duration {value!r}")

    total = 0.0
    position = 0
    while position < len(text):
        match = _DURATION_PATTERN.match(text, position)
        if match is None:
            raise ValueError(f"invalid duration {value!r}")
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        position = match.end()
    return timedelta(seconds=sign * total)


class ProviderKind(str, enum.Enum):
    """Closed set of range providers supported by the engine."""

    CLOUDFLARE = "cloudflare"
    FASTLY = "fastly"
    CLOUDFRONT = "cloudfront"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, value: Union[str, "ProviderKind"]) -> "ProviderKind":
        """Return the kind named by ``value``, ignoring case and surrounding whitespace."""

        if isinstance(value, ProviderKind):
            return value
        normalized = str(value).strip().lower()
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"unsupported provider {value!r}") from None


@dataclass(frozen=True)
class ProviderEndpoints:
    """Publisher endpoints injected into provider strategies.

    Constructing ``ProviderEndpoints()`` always yields the public defaults, so
    tests that substitute loopback hosts restore the defaults simply by
    building a fresh value.
    """

    cloudflare_ipv4: str = DEFAULT_CLOUDFLARE_IPV4_ENDPOINT
    cloudflare_ipv6: str = DEFAULT_CLOUDFLARE_IPV6_ENDPOINT
    fastly: str = DEFAULT_FASTLY_ENDPOINT
    aws_ip_ranges: str = DEFAULT_AWS_IP_RANGES_ENDPOINT


class IPStrategy(BaseModel):
    """Forwarding-depth strategy passed through to the filtering middleware."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    depth: int = Field(default=0, description="Position of the client IP in X-Forwarded-For")
    excluded_ips: Optional[Tuple[str, ...]] = Field(
        default=None,
        alias="excludedIPs",
        description="Addresses skipped when walking X-Forwarded-For",
    )

    @field_validator("excluded_ips", mode="before")
    @classmethod
    def _coerce_excluded(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, str):
            return (value,)
        return tuple(str(item) for item in value)


class WhitelistConfig(BaseModel):
    """Validated engine input.

    Field aliases mirror the camelCase keys used in middleware configuration
    files (``pollInterval``, ``whitelistIPv6`` ...); snake_case names are
    accepted as well.  The model accepts a missing provider so defaults can be
    materialised with :func:`create_config`; :meth:`require_complete` enforces
    the provider-specific requirements when an engine is built.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    provider: Optional[ProviderKind] = Field(default=None)
    poll_interval: timedelta = Field(
        default_factory=lambda: parse_duration(DEFAULT_POLL_INTERVAL),
        alias="pollInterval",
    )
    ipv4_resolver: str = Field(default=DEFAULT_IPV4_RESOLVER, alias="ipv4Resolver")
    ipv6_resolver: str = Field(default=DEFAULT_IPV6_RESOLVER, alias="ipv6Resolver")
    whitelist_ipv6: bool = Field(default=False, alias="whitelistIPv6")
    additional_source_range: Tuple[str, ...] = Field(default=(), alias="additionalSourceRange")
    ip_strategy: IPStrategy = Field(default_factory=IPStrategy, alias="ipStrategy")
    middleware_name: str = Field(default=DEFAULT_MIDDLEWARE_NAME, alias="middlewareName")

    @field_validator("provider", mode="before")
    @classmethod
    def _normalize_provider(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, str) and not value.strip():
            return None
        return ProviderKind.parse(value)

    @field_validator("poll_interval", mode="before")
    @classmethod
    def _parse_poll_interval(cls, value: Any) -> timedelta:
        if value is None or (isinstance(value, str) and not value.strip()):
            value = DEFAULT_POLL_INTERVAL
        return parse_duration(value)

    @field_validator("ipv4_resolver", "ipv6_resolver", mode="before")
    @classmethod
    def _strip_resolver(cls, value: Any) -> str:
        return "" if value is None else str(value).strip()

    @field_validator("additional_source_range", mode="before")
    @classmethod
    def _coerce_ranges(cls, value: Any) -> Tuple[str, ...]:
        if value is None:
            return ()
        if isinstance(value, str):
            return (value,)
        return tuple(str(item) for item in value)

    def require_complete(self) -> ProviderKind:
        """Check provider-specific requirements and return the configured kind.

        Raises:
            ConstructionError: If the provider is missing, or the custom
                provider lacks a resolver it needs.
        """

        if self.provider is None:
            raise ConstructionError("provider is required")
        if self.provider is ProviderKind.CUSTOM:
            if not self.ipv4_resolver:
                raise ConstructionError("custom provider requires an ipv4Resolver")
            if self.whitelist_ipv6 and not self.ipv6_resolver:
                raise ConstructionError(
                    "custom provider requires an ipv6Resolver when whitelistIPv6 is true"
                )
        return self.provider

    def poll_interval_seconds(self) -> float:
        """Return the poll interval in seconds."""

        return self.poll_interval.total_seconds()


# --- Runtime settings ----------------------------------------------------------


class HttpSettings(BaseModel):
    """HTTP client settings used by the remote fetcher."""

    model_config = ConfigDict(frozen=True, validate_assignment=False)

    timeout_sec: float = Field(default=10.0, gt=0.0, le=300.0, description="Per-request timeout")
    connect_retries: int = Field(
        default=0,
        ge=0,
        le=10,
        description="Additional attempts after transport failures (status errors are never retried)",
    )
    backoff_base: float = Field(default=0.5, ge=0.0, le=10.0, description="Backoff start (seconds)")
    backoff_max: float = Field(default=5.0, ge=0.0, le=60.0, description="Backoff cap (seconds)")
    request_id_header: str = Field(
        default="X-Kes-RequestID",
        min_length=1,
        description="Header carrying the per-request correlation token",
    )
    user_agent: str = Field(
        default="EdgeWhitelist/1.0 (+https://github.com/KCL-Electronics/traefik_cdn_whitelist)",
        description="User-Agent header value",
    )
    trust_env: bool = Field(default=True, description="Honor HTTP(S)_PROXY and NO_PROXY")
    follow_redirects: bool = Field(default=True, description="Follow publisher redirects")


class LoggingSettings(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(frozen=True, validate_assignment=False)

    level: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    emit_json_logs: bool = Field(default=False, description="Emit JSON-formatted log lines")

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        """Normalize and validate logging level."""
        upper = str(v).upper()
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR"}
        if upper not in valid_levels:
            raise ValueError(f"level must be one of {sorted(valid_levels)}, got '{v}'")
        return upper

    def level_int(self) -> int:
        """Convert level string to logging module integer."""
        return logging.getLevelName(self.level)


class EndpointSettings(BaseModel):
    """Publisher endpoint overrides (``EDGE_WHITELIST_ENDPOINTS__*``)."""

    model_config = ConfigDict(frozen=True)

    cloudflare_ipv4: str = DEFAULT_CLOUDFLARE_IPV4_ENDPOINT
    cloudflare_ipv6: str = DEFAULT_CLOUDFLARE_IPV6_ENDPOINT
    fastly: str = DEFAULT_FASTLY_ENDPOINT
    aws_ip_ranges: str = DEFAULT_AWS_IP_RANGES_ENDPOINT

    def to_endpoints(self) -> ProviderEndpoints:
        return ProviderEndpoints(
            cloudflare_ipv4=self.cloudflare_ipv4,
            cloudflare_ipv6=self.cloudflare_ipv6,
            fastly=self.fastly,
            aws_ip_ranges=self.aws_ip_ranges,
        )


class EdgeWhitelistSettings(BaseSettings):
    """Process-level settings sourced from ``EDGE_WHITELIST_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="EDGE_WHITELIST_",
        env_nested_delimiter="__",
        frozen=True,
        extra="ignore",
    )

    http: HttpSettings = Field(default_factory=HttpSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    endpoints: EndpointSettings = Field(default_factory=EndpointSettings)


_SETTINGS: Optional[EdgeWhitelistSettings] = None
_SETTINGS_LOCK = threading.Lock()


def get_settings() -> EdgeWhitelistSettings:
    """Return the process-wide runtime settings, reading the environment once."""

    global _SETTINGS
    with _SETTINGS_LOCK:
        if _SETTINGS is None:
            _SETTINGS = EdgeWhitelistSettings()
        return _SETTINGS


def reset_settings() -> None:
    """Drop cached runtime settings so the next call re-reads the environment (test helper)."""

    global _SETTINGS
    with _SETTINGS_LOCK:
        _SETTINGS = None


# --- Config builders & loaders -------------------------------------------------


def _format_validation_error(exc: PydanticValidationError) -> str:
    messages: List[str] = []
    for error in exc.errors():
        location = " -> ".join(str(part) for part in error["loc"]) or "<root>"
        messages.append(f"{location}: {error['msg']}")
    return "Configuration validation failed:\n  " + "\n  ".join(messages)


def build_config(raw_config: Mapping[str, Any]) -> WhitelistConfig:
    """Materialise a :class:`WhitelistConfig` from a raw mapping.

    Raises:
        ConstructionError: If any field fails validation.
    """

    if not isinstance(raw_config, Mapping):
        raise ConstructionError("configuration must be a mapping")
    try:
        return WhitelistConfig.model_validate(dict(raw_config))
    except PydanticValidationError as exc:
        raise ConstructionError(_format_validation_error(exc)) from exc


def create_config(**overrides: Any) -> WhitelistConfig:
    """Return the default configuration with ``overrides`` applied.

    Examples:
        >>> create_config().poll_interval
        datetime.timedelta(seconds=300)
        >>> create_config(provider="Cloudflare").provider
        <ProviderKind.CLOUDFLARE: 'cloudflare'>
    """

    return build_config(overrides)


def normalize_config_path(config_path: Path) -> Path:
    """Return a user-supplied configuration path with ``~`` and symlinks resolved."""

    expanded = Path(config_path).expanduser()
    try:
        return expanded.resolve(strict=False)
    except (OSError, RuntimeError):  # pragma: no cover - only triggered on rare filesystems
        return expanded


def load_raw_config(config_path: Path) -> Mapping[str, Any]:
    """Read a YAML or JSON configuration file and return its top-level mapping."""

    normalized_path = normalize_config_path(config_path)
    if not normalized_path.exists():
        raise ConstructionError(f"Configuration file not found: {normalized_path}")

    try:
        with normalized_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise ConstructionError(
            f"Configuration file '{normalized_path}' contains invalid YAML/JSON"
        ) from exc

    if not isinstance(data, Mapping):
        raise ConstructionError("Configuration file must contain a mapping at the root")
    return data


def load_config(config_path: Path) -> WhitelistConfig:
    """Load and validate a configuration file."""

    return build_config(load_raw_config(config_path))


__all__ = [
    "AWS_CLOUDFRONT_LABEL",
    "DEFAULT_POLL_INTERVAL",
    "EdgeWhitelistSettings",
    "EndpointSettings",
    "HttpSettings",
    "IPStrategy",
    "LoggingSettings",
    "ProviderEndpoints",
    "ProviderKind",
    "WhitelistConfig",
    "build_config",
    "create_config",
    "get_settings",
    "load_config",
    "load_raw_config",
    "parse_duration",
    "reset_settings",
]
