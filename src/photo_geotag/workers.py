"""
photo_geotag.workers
~~~~~~~~~~~~~~~~~~~~

Folder scanning behind ``geotag scan``:

* Recursively walks a folder for image files.
* Resolves them in ``chunk_size`` batches with the tag and library probes
  (the index is what we are filling, so it is not consulted).
* For every file:

      image ─▶ GeotagResolver.resolve_batch ─▶ Metadata | None
            ─▶ SQLite index upsert   (or STDOUT in --dry-run mode)

Images without a fix are stored as explicit no-fix rows so later index
lookups answer "no GPS" without touching the file again.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from tqdm import tqdm

from photo_geotag.config import ResolverSettings
from photo_geotag.resolver import GeotagResolver
from photo_geotag.sources import (
    IMAGE_SUFFIXES,
    FolderLibrary,
    PillowTagReader,
    SQLiteMediaIndex,
)
from photo_geotag.types import Metadata

log = logging.getLogger(__name__)

__all__ = ["ScanSummary", "find_images", "scan_folder"]


@dataclass
class ScanSummary:
    scanned: int = 0
    with_fix: int = 0

    @property
    def without_fix(self) -> int:
        return self.scanned - self.with_fix


def find_images(root: Path) -> List[Path]:
    return sorted(
        p.resolve() for p in root.rglob("*") if p.suffix.lower() in IMAGE_SUFFIXES and p.is_file()
    )


def _row(path: Path, metadata: Optional[Metadata]) -> dict:
    return {"reference": str(path), **(metadata.to_row() if metadata else {"latitude": None})}


# --------------------------------------------------------------------------- #
# Public entry-point                                                          #
# --------------------------------------------------------------------------- #
def scan_folder(
    root: os.PathLike | str,
    *,
    settings: ResolverSettings,
    dry_run: bool = False,
) -> ScanSummary:
    """
    Resolve every image under *root* and record the outcome.

    Parameters
    ----------
    root:
        Directory to traverse (recursively).
    settings:
        Resolver options; ``index_db`` must be set unless *dry_run*.
    dry_run:
        When *True* rows are **printed to STDOUT** instead of being written
        to the SQLite index.
    """
    root = Path(root).expanduser()
    if not root.is_dir():
        log.error("Path %s is not a directory", root)
        sys.exit(1)
    if not dry_run and settings.index_db is None:
        log.error("No index_db configured; pass --index-db or use --dry-run")
        sys.exit(1)

    files = find_images(root)
    summary = ScanSummary()
    if not files:
        log.warning("No images found under %s – nothing to do.", root)
        return summary

    log.info("Found %d images – resolving in chunks of %d", len(files), settings.chunk_size)

    index = None if dry_run else SQLiteMediaIndex(settings.index_db)
    resolver = GeotagResolver(
        tag_reader=PillowTagReader(),
        library=FolderLibrary(settings.library_roots) if settings.library_roots else None,
        settings=settings,
    )

    asyncio.run(_scan(resolver, files, index, summary))

    log.info(
        "Scanned %d images: %d with GPS, %d without",
        summary.scanned,
        summary.with_fix,
        summary.without_fix,
    )
    return summary


async def _scan(
    resolver: GeotagResolver,
    files: List[Path],
    index: Optional[SQLiteMediaIndex],
    summary: ScanSummary,
) -> None:
    step = resolver.settings.chunk_size
    with tqdm(total=len(files), unit="img") as bar:
        for start in range(0, len(files), step):
            chunk = files[start : start + step]
            results = await resolver.resolve_batch(str(p) for p in chunk)

            for path, metadata in zip(chunk, results):
                summary.scanned += 1
                summary.with_fix += metadata is not None
                if index is None:
                    print(json.dumps(_row(path, metadata), ensure_ascii=False))
                else:
                    index.upsert(str(path), metadata)
            bar.update(len(chunk))
