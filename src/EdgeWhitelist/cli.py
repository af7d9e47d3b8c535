# === NAVMAP v1 ===
# {
#   "module": "EdgeWhitelist.cli",
#   "purpose": "Typer CLI for generating, watching, and validating whitelist configurations",
#   "sections": [
#     {"id": "clicontext", "name": "CliContext", "anchor": "class-clicontext", "kind": "class"},
#     {"id": "main", "name": "main", "anchor": "function-main", "kind": "function"},
#     {"id": "generate", "name": "generate", "anchor": "function-generate", "kind": "function"},
#     {"id": "watch", "name": "watch", "anchor": "function-watch", "kind": "function"},
#     {"id": "validate", "name": "validate", "anchor": "function-validate", "kind": "function"},
#     {"id": "providers", "name": "providers", "anchor": "function-providers", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Command line interface for the whitelist engine.

Commands:
- ``generate``: run one refresh and print the routing configuration
- ``watch``: run the refresh loop and print every delivered configuration
- ``validate``: check a configuration file without touching the network
- ``providers``: list supported providers and the endpoints they query

Example:
    $ edge-whitelist generate middleware.yaml
    $ edge-whitelist -vv watch middleware.yaml --max-updates 3
"""

from __future__ import annotations

import json
import queue
from pathlib import Path
from typing import Any, Dict, Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from . import __version__
from .configuration import FilterConfiguration
from .engine import WhitelistEngine
from .errors import WhitelistError
from .logging_config import setup_logging
from .settings import (
    AWS_CLOUDFRONT_LABEL,
    LoggingSettings,
    ProviderKind,
    WhitelistConfig,
    get_settings,
    load_config,
)

_console = Console()
_err_console = Console(stderr=True)

_VERBOSITY_LEVELS = {0: "WARNING", 1: "INFO"}
_WATCH_POLL_SECONDS = 0.5


class CliContext:
    """Per-invocation state shared by commands."""

    def __init__(self, verbosity: int = 0, json_logs: bool = False) -> None:
        self.verbosity = verbosity
        self.console = _console
        self.err_console = _err_console
        level = _VERBOSITY_LEVELS.get(verbosity, "DEBUG")
        base = get_settings().logging
        self.logging = LoggingSettings(level=level, emit_json_logs=json_logs or base.emit_json_logs)
        setup_logging(self.logging)

    def log_info(self, message: str) -> None:
        if self.verbosity >= 1:
            self.err_console.print(f"[cyan]INFO: {message}[/cyan]")

    def fail(self, message: str, code: int = 1) -> "typer.Exit":
        self.err_console.print(f"[red]✗ {message}[/red]")
        return typer.Exit(code)


app = typer.Typer(
    name="edge-whitelist",
    help="Keep an IP allow-list middleware in sync with CDN and resolver ranges",
    no_args_is_help=True,
)

_context: Optional[CliContext] = None


def get_context() -> CliContext:
    """Return the current CLI context, creating a default one if needed."""

    global _context
    if _context is None:
        _context = CliContext()
    return _context


def _version_callback(value: Optional[bool]) -> None:
    if value:
        typer.echo(f"edge-whitelist {__version__}")
        raise typer.Exit(0)


@app.callback(invoke_without_command=False)
def main(
    verbosity: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase verbosity (-v for INFO, -vv for DEBUG)",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Emit log records as JSON lines on stderr",
    ),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """Edge whitelist CLI.

    Global options apply to all subcommands and go before the subcommand:

        edge-whitelist -v generate middleware.yaml
    """
    global _context

    _context = CliContext(verbosity=verbosity, json_logs=json_logs)


def _load_engine(ctx: CliContext, config_path: Path) -> WhitelistEngine:
    try:
        config = load_config(config_path)
        engine = WhitelistEngine(config)
        engine.init()
    except WhitelistError as exc:
        raise ctx.fail(str(exc), code=2)
    ctx.log_info(f"Loaded {config_path} (provider={engine.provider.kind.value})")
    return engine


def _render(configuration: FilterConfiguration, format_output: str) -> str:
    if format_output == "yaml":
        return yaml.safe_dump(configuration.to_dict(), default_flow_style=False, sort_keys=False)
    return configuration.to_json(indent=2)


@app.command()
def generate(
    config_path: Path = typer.Argument(..., help="Middleware configuration (YAML or JSON)"),
    format_output: str = typer.Option(
        "json",
        "--format",
        "-f",
        help="Output format: json or yaml",
    ),
) -> None:
    """Run a single refresh and print the resulting configuration.

    Example:
        $ edge-whitelist generate middleware.yaml --format yaml
    """
    ctx = get_context()
    if format_output not in {"json", "yaml"}:
        raise ctx.fail(f"unsupported format {format_output!r}", code=2)

    engine = _load_engine(ctx, config_path)
    try:
        configuration = engine.generate_configuration()
    except WhitelistError as exc:
        raise ctx.fail(f"refresh failed: {exc}")
    typer.echo(_render(configuration, format_output))


@app.command()
def watch(
    config_path: Path = typer.Argument(..., help="Middleware configuration (YAML or JSON)"),
    max_updates: int = typer.Option(
        0,
        "--max-updates",
        "-n",
        min=0,
        help="Exit after this many delivered configurations (0 runs until interrupted)",
    ),
) -> None:
    """Run the refresh loop and print each configuration as it is delivered.

    Example:
        $ edge-whitelist watch middleware.yaml --max-updates 1
    """
    ctx = get_context()
    engine = _load_engine(ctx, config_path)
    channel: "queue.Queue[FilterConfiguration]" = queue.Queue(maxsize=1)

    delivered = 0
    engine.provide(channel)
    try:
        while max_updates == 0 or delivered < max_updates:
            try:
                configuration = channel.get(timeout=_WATCH_POLL_SECONDS)
            except queue.Empty:
                continue
            delivered += 1
            typer.echo(configuration.to_json())
    except KeyboardInterrupt:
        ctx.log_info("Interrupted")
    finally:
        engine.stop()
    ctx.log_info(f"Delivered {delivered} configuration(s)")


def _summarise(config: WhitelistConfig) -> Dict[str, Any]:
    summary: Dict[str, Any] = {
        "provider": config.provider.value if config.provider else None,
        "pollInterval": f"{config.poll_interval_seconds():g}s",
        "whitelistIPv6": config.whitelist_ipv6,
        "additionalSourceRange": list(config.additional_source_range),
        "ipStrategy.depth": config.ip_strategy.depth,
        "ipStrategy.excludedIPs": (
            list(config.ip_strategy.excluded_ips)
            if config.ip_strategy.excluded_ips is not None
            else None
        ),
        "middlewareName": config.middleware_name,
    }
    if config.provider is ProviderKind.CUSTOM:
        summary["ipv4Resolver"] = config.ipv4_resolver
        summary["ipv6Resolver"] = config.ipv6_resolver
    return summary


@app.command()
def validate(
    config_path: Path = typer.Argument(..., help="Middleware configuration (YAML or JSON)"),
    format_output: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format: table or json",
    ),
) -> None:
    """Validate a configuration file without performing any requests.

    Example:
        $ edge-whitelist validate middleware.yaml
    """
    ctx = get_context()
    if format_output not in {"table", "json"}:
        raise ctx.fail(f"unsupported format {format_output!r}", code=2)
    engine = _load_engine(ctx, config_path)
    summary = _summarise(engine.config)

    if format_output == "json":
        typer.echo(json.dumps(summary, indent=2))
        return

    table = Table(title=f"Configuration: {config_path}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    for key, value in summary.items():
        table.add_row(key, str(value))
    ctx.console.print(table)
    ctx.console.print("[green]✓ Configuration is valid[/green]")


@app.command()
def providers() -> None:
    """List supported providers and the endpoints they query.

    Example:
        $ edge-whitelist providers
    """
    ctx = get_context()
    endpoints = get_settings().endpoints.to_endpoints()
    rows = {
        ProviderKind.CLOUDFLARE: f"{endpoints.cloudflare_ipv4}, {endpoints.cloudflare_ipv6}",
        ProviderKind.FASTLY: endpoints.fastly,
        ProviderKind.CLOUDFRONT: f"{endpoints.aws_ip_ranges} (service {AWS_CLOUDFRONT_LABEL})",
        ProviderKind.CUSTOM: "ipv4Resolver / ipv6Resolver from configuration",
    }

    table = Table(title="Providers")
    table.add_column("Provider", style="cyan")
    table.add_column("Endpoints", style="green")
    for kind, description in rows.items():
        table.add_row(kind.value, description)
    ctx.console.print(table)


__all__ = ["CliContext", "app", "get_context", "main"]
