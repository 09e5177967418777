"""
photo_geotag.cli
~~~~~~~~~~~~~~~~

Command-line interface for *photo-geotag*.

The CLI is a thin wrapper that

1. Loads settings (YAML file + command-line overrides).
2. Boots the global logging system.
3. Delegates to :class:`~photo_geotag.resolver.GeotagResolver` or
   :pymod:`photo_geotag.workers`.

Sub-commands:

    $ geotag resolve IMG_0001.jpg IMG_0002.jpg [--place]
    $ geotag scan ~/Pictures --index-db ~/geotag.sqlite
    $ geotag config
    $ geotag version

The entry-point name **`geotag`** is registered in *pyproject.toml*.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
import yaml
from pydantic import ValidationError

from photo_geotag import __version__
from photo_geotag.config import ResolverSettings, load_config
from photo_geotag.sources import reference_to_path
from photo_geotag.utils.logging import get_logger

_log = logging.getLogger("photo_geotag.cli")


def _lazy_worker_import():
    from photo_geotag.workers import scan_folder

    return scan_folder


def _normalise_reference(reference: str) -> str:
    """Existing local files are matched by absolute path; anything else verbatim."""
    path = reference_to_path(reference)
    if path is not None and path.exists():
        return str(path.resolve())
    return reference


# ---------------------------------------------------------------------------#
# Click helpers                                                               #
# ---------------------------------------------------------------------------#
@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="YAML settings file (default: ~/.config/photo_geotag/config.yaml).",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable DEBUG-level logging.")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path], verbose: bool) -> None:
    """Photo-Geotag command-line tool."""
    try:
        settings = load_config(config_path)
    except (FileNotFoundError, yaml.YAMLError, ValidationError) as exc:
        click.echo(f"Cannot load settings: {exc}", err=True)
        sys.exit(1)

    if verbose:
        settings = settings.model_copy(update={"log_level": "DEBUG"})
    get_logger("photo_geotag", level=settings.log_level, log_file=settings.log_file)
    ctx.obj = settings


@cli.command("resolve", help="Print the GPS fix of each REFERENCE as JSON.")
@click.argument("references", nargs=-1, required=True)
@click.option(
    "--index-db",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="SQLite media index to consult first.",
)
@click.option(
    "--library",
    "library_roots",
    type=click.Path(file_okay=False, path_type=Path),
    multiple=True,
    help="Folder searched by the library query (repeatable).",
)
@click.option("--place", is_flag=True, help="Add a reverse-geocoded place name.")
@click.pass_obj
def cmd_resolve(
    settings: ResolverSettings,
    references: tuple[str, ...],
    index_db: Optional[Path],
    library_roots: tuple[Path, ...],
    place: bool,
) -> None:
    from photo_geotag.resolver import build_resolver

    overrides: dict = {}
    if index_db is not None:
        overrides["index_db"] = index_db.expanduser()
    if library_roots:
        overrides["library_roots"] = tuple(p.expanduser() for p in library_roots)
    settings = settings.model_copy(update=overrides)

    refs = [_normalise_reference(r) for r in references]
    resolver = build_resolver(settings)
    results = asyncio.run(resolver.resolve_batch(refs))

    if place:
        from photo_geotag.utils.geo import place_name

    for given, metadata in zip(references, results):
        row = {"reference": given, "metadata": metadata.to_row() if metadata else None}
        if place:
            row["place"] = place_name(metadata)
        click.echo(json.dumps(row, ensure_ascii=False))

    stats = resolver.cache_stats()
    _log.debug("Cache: %d entries (%d with GPS)", stats.entries, stats.positive)


@cli.command("scan", help="Resolve every image under PHOTO_ROOT into the SQLite index.")
@click.argument("photo_root", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option(
    "--index-db",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="SQLite index to fill (default from config).",
)
@click.option(
    "--chunk-size",
    type=int,
    default=None,
    help="References resolved concurrently per chunk (default from config).",
)
@click.option("--dry-run", is_flag=True, help="Print rows instead of writing the index.")
@click.pass_obj
def cmd_scan(
    settings: ResolverSettings,
    photo_root: Path,
    index_db: Optional[Path],
    chunk_size: Optional[int],
    dry_run: bool,
) -> None:
    scan_folder = _lazy_worker_import()

    overrides: dict = {}
    if index_db is not None:
        overrides["index_db"] = index_db.expanduser()
    if chunk_size is not None:
        overrides["chunk_size"] = chunk_size

    try:
        settings = ResolverSettings(**{**settings.model_dump(), **overrides})
        _log.info("Photo-Geotag scan starting (root=%s)", photo_root)
        scan_folder(photo_root, settings=settings, dry_run=dry_run)
    except KeyboardInterrupt:
        _log.warning("Interrupted by user – exiting.")
        sys.exit(130)
    except ValidationError as exc:
        _log.error("Invalid option: %s", exc)
        sys.exit(1)

    _log.info("Done – bye.")


@cli.command("config", help="Show the effective settings.")
@click.pass_obj
def cmd_config(settings: ResolverSettings) -> None:
    click.echo(json.dumps(settings.model_dump(mode="json"), indent=2))


@cli.command("version", help="Print the package version.")
def cmd_version() -> None:
    click.echo(__version__)


# ---------------------------------------------------------------------------#
# Stand-alone invocation (python -m photo_geotag.cli)                         #
# ---------------------------------------------------------------------------#
def main() -> None:  # pragma: no cover
    cli()


if __name__ == "__main__":  # pragma: no cover
    main()
