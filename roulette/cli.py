"""Command-line entry point for Roulette."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import typer
import uvicorn
from rich.console import Console
from rich.table import Table

from .app_context import build_context
from .catalog import Catalog, CatalogError, load_initial_catalog
from .config import ConfigError, Settings, load_settings
from .errors import SelectionError
from .logging import configure_logging, get_logger
from .reloader import HttpCatalogSource, ReloadError
from .web.api import create_app, redirect_url

app = typer.Typer(help="Roulette random-image redirect service.")
console = Console()

_CONFIG_OPTION_HELP = "YAML configuration file (defaults to $ROULETTE_CONFIG, then environment only)."


def _bootstrap_logging(
    ctx: typer.Context,
    verbose: bool,
    json_logs: bool,
    log_file: Optional[Path],
) -> None:
    """Initialise logging once per CLI invocation."""

    if ctx.obj is None:
        ctx.obj = {}

    if ctx.obj.get("_logging_configured"):
        return

    level = "DEBUG" if verbose else os.environ.get("LOG_LEVEL", "INFO").upper()
    configure_logging(level=level, json_output=json_logs, log_file=log_file)
    ctx.obj["logger"] = get_logger("roulette.cli")
    ctx.obj["log_level"] = level
    ctx.obj["json_logs"] = json_logs
    ctx.obj["log_file_path"] = log_file
    ctx.obj["force_log_level"] = verbose
    ctx.obj["_logging_configured"] = True


@app.callback(invoke_without_command=True)
def cli(  # noqa: D401 - Typer generates help text.
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON-formatted logs."),
    log_file: Optional[Path] = typer.Option(
        None,
        "--log-file",
        dir_okay=False,
        file_okay=True,
        writable=True,
        resolve_path=True,
        help="Optional file to append structured logs to.",
    ),
) -> None:
    """Roulette command group."""

    _bootstrap_logging(ctx, verbose, json_logs, log_file)

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


def _logger(ctx: typer.Context):
    return ctx.obj.get("logger", get_logger("roulette.cli"))


def _apply_settings_logging(ctx: typer.Context, settings: Settings) -> None:
    """Reconfigure logging when the config file asks for a different level."""

    if ctx.obj.get("force_log_level"):
        return

    desired = settings.runtime.log_level.upper()
    json_logs = ctx.obj.get("json_logs", False) or settings.runtime.json_logs
    if desired != ctx.obj.get("log_level") or json_logs != ctx.obj.get("json_logs"):
        configure_logging(level=desired, json_output=json_logs, log_file=ctx.obj.get("log_file_path"))
        ctx.obj["logger"] = get_logger("roulette.cli")
        ctx.obj["log_level"] = desired
        ctx.obj["json_logs"] = json_logs


def _load_settings_or_exit(ctx: typer.Context, config: Optional[Path], command: str) -> Settings:
    log = _logger(ctx)
    try:
        settings = load_settings(config)
    except ConfigError as exc:
        log.error(f"{command}.config_failed", error=str(exc))
        typer.echo(f"Error loading configuration: {exc}")
        raise typer.Exit(code=1) from exc
    _apply_settings_logging(ctx, settings)
    return settings


@app.command()
def serve(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", "-c", dir_okay=False, help=_CONFIG_OPTION_HELP),
    host: Optional[str] = typer.Option(None, "--host", help="Override the listen address."),
    port: Optional[int] = typer.Option(None, "--port", help="Override the listen port."),
) -> None:
    """Load the catalog and serve redirects until interrupted."""

    settings = _load_settings_or_exit(ctx, config, "serve")
    log = _logger(ctx)

    try:
        context = build_context(settings)
    except CatalogError as exc:
        log.error("serve.catalog_failed", error=str(exc), path=str(settings.catalog.path or "<embedded>"))
        typer.echo(f"Error loading catalog: {exc}")
        raise typer.Exit(code=1) from exc

    listen_host = host or settings.server.host
    listen_port = port or settings.server.port
    log.info(
        "serve.start",
        entries=context.store.size(),
        catalog=str(settings.catalog.path or "<embedded>"),
        sync_url=settings.sync.url if settings.sync.enabled else None,
        sync_interval=settings.sync.interval_seconds if settings.sync.enabled else None,
        watch=context.watcher is not None,
        host=listen_host,
        port=listen_port,
    )

    context.start_background()
    try:
        uvicorn.run(create_app(context), host=listen_host, port=listen_port, log_config=None)
    finally:
        context.shutdown()
        log.info("serve.shutdown")


@app.command()
def check(
    ctx: typer.Context,
    path: Optional[Path] = typer.Argument(None, dir_okay=False, help="Catalog JSON file to validate."),
) -> None:
    """Validate a catalog file (or the configured one) and summarise it."""

    log = _logger(ctx)
    target = path
    if target is None:
        env_path = os.environ.get("IMAGE_MAP_PATH")
        target = Path(env_path) if env_path else None

    try:
        catalog = load_initial_catalog(target)
    except CatalogError as exc:
        log.error("check.failed", path=str(target or "<embedded>"), error=str(exc))
        typer.echo(f"Invalid catalog: {exc}")
        raise typer.Exit(code=1) from exc

    _print_catalog_summary(catalog, str(target or "<embedded>"))
    log.info("check.completed", path=str(target or "<embedded>"), entries=catalog.size())


def _print_catalog_summary(catalog: Catalog, source: str) -> None:
    table = Table(title="Catalog")
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value")
    table.add_row("Source", source)
    table.add_row("Entries", str(catalog.size()))
    table.add_row("Oldest key", catalog.oldest_key)
    table.add_row("Newest key", catalog.newest_key)
    table.add_row("SHA-256", catalog.content_hash)
    console.print(table)


@app.command()
def pick(
    ctx: typer.Context,
    latest: bool = typer.Option(False, "--latest", help="Bias the pick towards newer keys."),
    after: Optional[str] = typer.Option(None, "--after", help="Only consider keys at or after YYYY[-MM[-DD]]."),
    count: int = typer.Option(1, "--count", "-n", min=1, help="Number of independent picks."),
    config: Optional[Path] = typer.Option(None, "--config", "-c", dir_okay=False, help=_CONFIG_OPTION_HELP),
) -> None:
    """Pick entries locally, exactly as the HTTP endpoints would."""

    settings = _load_settings_or_exit(ctx, config, "pick")
    log = _logger(ctx)

    try:
        context = build_context(settings)
    except CatalogError as exc:
        log.error("pick.catalog_failed", error=str(exc))
        typer.echo(f"Error loading catalog: {exc}")
        raise typer.Exit(code=1) from exc

    mode = "recency" if latest else "uniform"
    for _ in range(count):
        try:
            entry = context.engine.select(mode, after)
        except SelectionError as exc:
            log.warning("pick.failed", mode=mode, bound=after, error=str(exc))
            typer.echo(f"No pick: {exc}")
            raise typer.Exit(code=2) from exc
        typer.echo(f"{entry.key} -> {redirect_url(settings.redirect.url_prefix, entry)}")


@app.command()
def doctor(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", "-c", dir_okay=False, help=_CONFIG_OPTION_HELP),
) -> None:
    """Fetch the configured sync URL once and validate the payload."""

    settings = _load_settings_or_exit(ctx, config, "doctor")
    log = _logger(ctx)

    if not settings.sync.url:
        typer.echo("No sync URL configured (set IMAGE_MAP_SYNC_URL or sync.url).")
        raise typer.Exit(code=1)

    source = HttpCatalogSource(
        settings.sync.url,
        timeout_seconds=settings.sync.timeout_seconds,
        user_agent=settings.sync.user_agent,
    )
    try:
        catalog = Catalog.from_bytes(source.fetch())
    except (ReloadError, CatalogError) as exc:
        log.error("doctor.failed", url=settings.sync.url, error=str(exc))
        typer.echo(f"Sync check failed: {exc}")
        raise typer.Exit(code=1) from exc
    finally:
        source.close()

    log.info("doctor.completed", url=settings.sync.url, entries=catalog.size())
    _print_catalog_summary(catalog, settings.sync.url)
    typer.echo("Sync source OK.")


def main() -> None:
    """Run the Typer application."""

    app()


if __name__ == "__main__":  # pragma: no cover - direct execution convenience
    main()
