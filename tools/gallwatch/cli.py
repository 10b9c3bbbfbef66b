"""CLI entry-point for the gallery watcher."""

from __future__ import annotations

import logging
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .api import DCInsideAPI
from .config import DCInsideConfig, WatcherConfig, resolve_gallery_id
from .errors import ConfigurationError, FetchError
from .harvester import Harvester
from .storage import DiskStorage
from .store import DigestStore

console = Console()


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, console=console)],
    )
    # Suppress noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


STAT_LABELS: dict[str, str] = {
    "polls": "List polls",
    "articles": "Articles completed",
    "images": "Images stored",
    "duplicates": "Duplicate images",
    "skipped": "Already seen",
    "retries": "Articles to retry",
    "errors": "Errors",
    "scanned": "Files scanned",
    "trusted": "Already named by digest",
    "renamed": "Renamed to digest",
    "removed": "Identical copies removed",
    "stale": "Stale partials removed",
    "failed": "Unreadable files",
}


def _print_stats(title: str, stats: dict[str, int]) -> None:
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Metric", style="bold")
    table.add_column("Count", justify="right")
    for key, val in stats.items():
        table.add_row(STAT_LABELS.get(key, key.replace("_", " ").capitalize()), str(val))
    console.print(table)


def _gallery_id(gallery: str | None, url: str | None) -> str:
    try:
        return resolve_gallery_id(gallery, url)
    except ConfigurationError as exc:
        raise click.UsageError(str(exc)) from exc


def gallery_options(func):
    """Shared GALLERY argument and --url option."""
    func = click.option(
        "--url", envvar="GALLWATCH_URL", default=None,
        help="Gallery list URL, e.g. https://m.dcinside.com/board/programming",
    )(func)
    return click.argument("gallery", envvar="GALLWATCH_GALLERY", required=False)(func)


@click.group()
@click.option("--base-url", envvar="DCINSIDE_BASE_URL", default="https://m.dcinside.com", help="DCInside mobile site root")
@click.option("--timeout", envvar="GALLWATCH_TIMEOUT", default=None, type=float, help="Network timeout in seconds (default: none)")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, base_url: str, timeout: float | None, verbose: bool) -> None:
    """Gallery watcher – keep a local copy of every image posted to a gallery.

    Polls the first page of a DCInside gallery, downloads the images of new
    articles and stores each distinct image once, named by its SHA-256.
    """
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["dcinside"] = DCInsideConfig(base_url=base_url, timeout=timeout)


# ─── Commands ────────────────────────────────────────────────────


@cli.command()
@gallery_options
@click.option("--target-dir", envvar="GALLWATCH_TARGET_DIR", default="image", type=click.Path(file_okay=False, path_type=Path), help="Base directory for downloaded images")
@click.option("--interval", envvar="GALLWATCH_INTERVAL", default=3.0, type=click.FloatRange(min=0.1), help="Seconds between polls")
@click.option("--article-workers", default=32, type=click.IntRange(min=1), help="Articles processed concurrently")
@click.option("--image-workers", default=64, type=click.IntRange(min=1), help="Images downloaded concurrently")
@click.option("--rehash", is_flag=True, help="Verify every existing file's digest at startup")
@click.option("--once", is_flag=True, help="Poll a single time, wait for downloads, then exit")
@click.pass_context
def watch(
    ctx: click.Context,
    gallery: str | None,
    url: str | None,
    target_dir: Path,
    interval: float,
    article_workers: int,
    image_workers: int,
    rehash: bool,
    once: bool,
) -> None:
    """Watch a gallery and download new images until interrupted.

    Example: gallwatch watch programming --interval 5
    """
    cfg = WatcherConfig(
        gallery_id=_gallery_id(gallery, url),
        target_dir=target_dir,
        interval=interval,
        article_workers=article_workers,
        image_workers=image_workers,
        rehash=rehash,
        dcinside=ctx.obj["dcinside"],
    )
    with Harvester(cfg) as h:
        report = h.reconcile()
        console.print(
            f"[bold]Watching [cyan]{cfg.gallery_id}[/cyan][/bold] "
            f"({len(h.digests)} known images in {cfg.gallery_dir})"
        )
        if report.failed:
            console.print(f"[yellow]![/yellow] {report.failed} existing files could not be reconciled")
        try:
            h.watch(once=once)
        except KeyboardInterrupt:
            console.print("[bold]Stopping, waiting for downloads in flight...[/bold]")
            h.stop()
            h.drain()
    _print_stats("Watch Summary", h.stats)


@cli.command()
@gallery_options
@click.option("--target-dir", envvar="GALLWATCH_TARGET_DIR", default="image", type=click.Path(file_okay=False, path_type=Path), help="Base directory for downloaded images")
@click.option("--rehash", is_flag=True, help="Verify every file's digest, not only misnamed ones")
def reconcile(gallery: str | None, url: str | None, target_dir: Path, rehash: bool) -> None:
    """Rename a gallery directory's files to their digests.

    Example: gallwatch reconcile programming --rehash
    """
    storage = DiskStorage(target_dir / _gallery_id(gallery, url))
    store = DigestStore()
    report = storage.reconcile(store, rehash=rehash)
    _print_stats(f"Reconcile {storage.directory}", report.as_dict())
    console.print(f"[green]✓[/green] {len(store)} distinct images")


@cli.command()
@gallery_options
@click.option("--page", default=1, type=click.IntRange(min=1), help="List page to show")
@click.option("--limit", default=20, type=int, help="Number of articles to show")
@click.pass_context
def preview(ctx: click.Context, gallery: str | None, url: str | None, page: int, limit: int) -> None:
    """Preview a gallery's list page without downloading.

    Example: gallwatch preview programming --limit 5
    """
    gallery_id = _gallery_id(gallery, url)
    with DCInsideAPI(ctx.obj["dcinside"]) as api:
        try:
            items = api.get_list(gallery_id, page)
        except FetchError as exc:
            raise click.ClickException(str(exc)) from exc
    table = Table(title=f"{gallery_id} page {page}", show_header=True, header_style="bold cyan")
    table.add_column("No", style="bold", justify="right")
    table.add_column("Subject", max_width=50)
    table.add_column("Image", justify="center")
    for item in items[:limit]:
        table.add_row(item.identifier, item.subject, "✓" if item.has_image else "")
    console.print(table)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
