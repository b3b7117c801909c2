"""
The cli module defines lorchestre's CLI interface. It does not have any domain logic of its own. It is
dedicated to parsing, resolving arguments, and delegating to the appropriate module.
"""

import json
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

import click

from lorchestre.catalog import build_catalog
from lorchestre.common import VERSION, LorchestreExpectedError
from lorchestre.config import Config
from lorchestre.server import run_server

logger = logging.getLogger(__name__)


class AlbumDoesNotExistError(LorchestreExpectedError):
    pass


@dataclass
class Context:
    config: Config


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Emit verbose logging.")
@click.option("--config", "-c", type=click.Path(path_type=Path), help="Override the config file location.")  # fmt: skip
@click.pass_context
def cli(cc: click.Context, verbose: bool, config: Path | None = None) -> None:
    """A music library daemon that serves your collection over HTTP."""

    logging.getLogger().setLevel(logging.DEBUG if verbose else logging.INFO)
    cc.obj = Context(
        config=Config.parse(config_path_override=config),
    )


@cli.command()
def version() -> None:
    """Print version."""

    click.echo(VERSION)


@cli.command()
@click.pass_obj
def serve(ctx: Context) -> None:
    """Build the catalog and serve it until interrupted."""

    run_server(ctx.config)


@cli.group()
def cache() -> None:
    """Manage the media cache."""


@cache.command()
@click.option("--force", "-f", is_flag=True, help="Rescan the source directory even if it looks unchanged.")  # fmt: skip
@click.pass_obj
def update(ctx: Context, force: bool) -> None:
    """Rebuild the catalog once, refreshing the file list and the cover cache."""

    result = build_catalog(ctx.config, force=force)
    click.echo(
        f"Built {len(result.catalog.albums)} albums and {len(result.catalog.playlists)} playlists"
    )
    for f in result.failures:
        click.secho(f"Failed to add {f.path}: {f.reason}", fg="yellow")


@cache.command()
@click.pass_obj
def clear(ctx: Context) -> None:
    """Delete the cached covers and the file list. Stale covers are only ever refreshed this way."""

    c = ctx.config
    if c.covers_dir.exists():
        shutil.rmtree(c.covers_dir)
        logger.info(f"Deleted cover cache {c.covers_dir}")
    for p in [c.fingerprint_path, c.media_list_path]:
        p.unlink(missing_ok=True)
    click.echo(f"Cleared cache in {c.cache_dir}")


@cli.group()
def media() -> None:
    """Inspect the catalog."""


@media.command(name="print")
@click.pass_obj
def print_media(ctx: Context) -> None:
    """Print the whole catalog as JSON."""

    result = build_catalog(ctx.config)
    click.echo(json.dumps(result.catalog.dump(), indent=2))


@cli.group()
def albums() -> None:
    """Inspect albums."""


@albums.command(name="print")
@click.argument("album_id", type=str, nargs=1)
@click.pass_obj
def print_album(ctx: Context, album_id: str) -> None:
    """Print a single album as JSON."""

    album = build_catalog(ctx.config).catalog.get_album(album_id)
    if album is None:
        raise AlbumDoesNotExistError(f"No album found with the id of {album_id}")
    click.echo(json.dumps(album.dump(), indent=2))
