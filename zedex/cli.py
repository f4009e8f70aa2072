"""zedex command line.

Pre-fetch the extension registry and release files into the cache root, and
run the mirror server.
"""

import asyncio
import json
import logging
import sys
from typing import Optional, Tuple

import click

from zedex import __version__
from zedex.core.config import MirrorConfig, load_config
from zedex.core.dependencies import get_coordinator, get_upstream, reset_dependencies
from zedex.core.errors import MirrorError
from zedex.domain.models import FetchReport
from zedex.services.fetcher import FetchCoordinator

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"
LOG_FORMAT_TIMESTAMP = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str, timestamp: bool) -> None:
    logging.basicConfig(
        level=level.upper(),
        format=LOG_FORMAT_TIMESTAMP if timestamp else LOG_FORMAT,
        force=True,
    )


def _config(ctx: click.Context, **overrides) -> MirrorConfig:
    """Effective configuration for a command; also resets the shared singletons."""
    config = load_config(root_dir=ctx.obj["root_dir"], log_level=ctx.obj["log_level"], **overrides)
    reset_dependencies(config)
    return config


def _coordinator(ctx: click.Context, **overrides) -> FetchCoordinator:
    _config(ctx, **overrides)
    return get_coordinator()


def _print_report(report: FetchReport) -> None:
    for key in report.succeeded:
        click.echo(f"fetched  {key}")
    for key in report.skipped:
        click.echo(f"cached   {key}")
    for key, reason in report.failed.items():
        click.echo(f"FAILED   {key}: {reason}", err=True)
    click.echo(report.summary())


def _run(coro):
    try:
        return asyncio.run(coro)
    except MirrorError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


@click.group()
@click.option(
    "--root-dir",
    type=click.Path(file_okay=False),
    default=None,
    help="Cache root directory [default: .zedex-cache]",
)
@click.option("--log-level", default=None, help="Logging level (DEBUG, INFO, WARNING, ERROR)")
@click.option("--log-timestamp", is_flag=True, help="Prefix log lines with a timestamp")
@click.version_option(__version__, prog_name="zedex")
@click.pass_context
def cli(ctx: click.Context, root_dir: Optional[str], log_level: Optional[str], log_timestamp: bool):
    """zedex - local mirror for the Zed extension registry and releases."""
    ctx.ensure_object(dict)
    ctx.obj["root_dir"] = root_dir
    ctx.obj["log_level"] = log_level
    configure_logging(log_level or "INFO", log_timestamp)


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--host", default=None, help="Interface to bind [default: 127.0.0.1]")
@click.option("--port", type=int, default=None, help="Port to listen on [default: 2654]")
@click.option(
    "--proxy-mode/--local-mode",
    "proxy_mode",
    default=None,
    help="Fetch cache misses from upstream, or serve only cached content [default: local]",
)
@click.option("--public-url", default=None, help="Base URL clients use to reach this mirror")
@click.pass_context
def serve(ctx: click.Context, host: Optional[str], port: Optional[int], proxy_mode: Optional[bool], public_url: Optional[str]):
    """Run the mirror HTTP server."""
    import uvicorn

    mode = None if proxy_mode is None else ("proxy" if proxy_mode else "local")
    config = _config(ctx, host=host, port=port, mode=mode, public_url=public_url)
    configure_logging(config.log_level, True)

    from zedex.main import app

    click.echo(f"Serving {config.root_dir} on http://{config.host}:{config.port} ({config.mode} mode)")
    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level.lower())


# ---------------------------------------------------------------------------
# get
# ---------------------------------------------------------------------------

@cli.group()
def get():
    """Pre-fetch extensions into the cache root."""
    pass


@get.command("extension-index")
@click.option("--provides", multiple=True, help="Only fetch extensions providing this capability (repeatable)")
@click.pass_context
def get_extension_index(ctx: click.Context, provides: Tuple[str, ...]):
    """Fetch the extension index and replace the cached one."""
    coordinator = _coordinator(ctx)
    index = _run(coordinator.refresh_index(provides=list(provides) or None))
    click.echo(f"Saved {len(index.ids())} extensions ({len(index.data)} records) to {coordinator.store.root}")


@get.command("extension")
@click.argument("extension_ids", nargs=-1, required=True)
@click.option("--version", "version", default=None, help="Fetch this version instead of the newest")
@click.pass_context
def get_extension(ctx: click.Context, extension_ids: Tuple[str, ...], version: Optional[str]):
    """Fetch archives of the given extensions."""
    coordinator = _coordinator(ctx)

    async def fetch_each() -> FetchReport:
        report = FetchReport()
        for extension_id in extension_ids:
            try:
                archive = await coordinator.fetch_extension_archive(extension_id, version)
            except MirrorError as e:
                logger.error(f"Failed to fetch {extension_id}: {e}")
                report.failed[extension_id] = str(e)
                continue
            report.succeeded.append(f"{archive.id}@{archive.version}")
        return report

    report = _run(fetch_each())
    _print_report(report)
    if not report.ok:
        sys.exit(1)


@get.command("all-extensions")
@click.option("--all-versions", is_flag=True, help="Fetch every published version, not only the newest")
@click.option("--concurrency", type=click.IntRange(min=1), default=None, help="Parallel downloads [default: 1]")
@click.option("--rate-limit", type=click.FloatRange(min=0), default=None, help="Seconds to wait after each download")
@click.pass_context
def get_all_extensions(ctx: click.Context, all_versions: bool, concurrency: Optional[int], rate_limit: Optional[float]):
    """Fetch archives of every extension in the index."""
    coordinator = _coordinator(ctx, bulk_concurrency=concurrency, bulk_rate_limit_seconds=rate_limit)
    report = _run(coordinator.fetch_all_extensions(all_versions=all_versions))
    _print_report(report)
    if not report.ok:
        sys.exit(1)


# ---------------------------------------------------------------------------
# release
# ---------------------------------------------------------------------------

@cli.group()
def release():
    """Query and mirror application releases."""
    pass


@release.command("latest")
@click.option("--channel", default=None, help="Release channel [default: stable]")
@click.option("--os", "os_name", default="macos", show_default=True)
@click.option("--arch", default="x86_64", show_default=True)
@click.option("--asset", default="zed", show_default=True)
@click.pass_context
def release_latest(ctx: click.Context, channel: Optional[str], os_name: str, arch: str, asset: str):
    """Show upstream's latest release for a platform."""
    config = _config(ctx)
    info = _run(get_upstream().fetch_release_info(channel or config.default_channel, os_name, arch, asset))
    click.echo(json.dumps(info.model_dump(exclude_none=True), indent=2))


@release.command("download")
@click.option("--channel", default=None, help="Release channel [default: stable]")
@click.pass_context
def release_download(ctx: click.Context, channel: Optional[str]):
    """Mirror the latest release for every supported platform."""
    config = _config(ctx)
    report = _run(get_coordinator().fetch_releases(channel or config.default_channel))
    _print_report(report)
    if not report.ok:
        sys.exit(1)


def main():
    """Entry point for the zedex CLI."""
    try:
        cli()
    except KeyboardInterrupt:
        click.echo("\nInterrupted")
        sys.exit(0)


if __name__ == "__main__":
    main()
