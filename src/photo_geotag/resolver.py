"""
photo_geotag.resolver
~~~~~~~~~~~~~~~~~~~~~

Single-item and batch GPS resolution on top of the probes and caches.

    reference ──▶ result cache ──hit──▶ Metadata | None
                      │ miss
                      ▼
               IndexProbe ─▶ TagProbe ─▶ LibraryProbe   (first non-None wins)
                      │
                      ▼
               result cache (positive *and* negative)

Probes run one after another, never raced. Concurrent ``resolve`` calls
for the same reference share one in-flight task. ``resolve_batch`` keeps
input order; when the media index offers a batch call it is used once for
every uncached reference (references the index does not know still go
through ``resolve``), otherwise references go through ``resolve`` in
chunks of ``chunk_size`` awaited one chunk at a time.

Example
-------
>>> resolver = build_resolver(load_config())
>>> fix = asyncio.run(resolver.resolve("~/Pictures/IMG_0001.jpg"))
>>> fix.latitude if fix else None
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, Iterable, List, Optional

from photo_geotag.cache import MISSING, ResultCache, SnapshotCache
from photo_geotag.config import ResolverSettings
from photo_geotag.probes import (
    IndexProbe,
    LibraryProbe,
    Probe,
    TagProbe,
    index_record_to_metadata,
)
from photo_geotag.sources import (
    FolderLibrary,
    LibraryService,
    MediaIndex,
    PillowTagReader,
    SQLiteMediaIndex,
    TagReader,
    invoke,
)
from photo_geotag.types import CacheStats, Metadata
from photo_geotag.utils.timestamps import now_ms

__all__ = ["GeotagResolver", "build_resolver"]

_log = logging.getLogger(__name__)


class GeotagResolver:
    """
    Best-effort GPS discovery for image references.

    Nothing here raises to the caller: a reference without a usable fix
    resolves to ``None`` and that answer is cached like any other.
    """

    def __init__(
        self,
        *,
        index: Optional[MediaIndex] = None,
        tag_reader: Optional[TagReader] = None,
        library: Optional[LibraryService] = None,
        settings: Optional[ResolverSettings] = None,
        results: Optional[ResultCache] = None,
        snapshots: Optional[SnapshotCache] = None,
        wall_clock: Callable[[], int] = now_ms,
    ) -> None:
        self.settings = settings or ResolverSettings()
        self.results = results if results is not None else ResultCache()
        self.snapshots = (
            snapshots if snapshots is not None else SnapshotCache(ttl=self.settings.snapshot_ttl)
        )
        self.index = index
        self.probes: tuple[Probe, ...] = (
            IndexProbe(index),
            TagProbe(tag_reader),
            LibraryProbe(library, self.snapshots, self.settings, clock=wall_clock),
        )
        self._in_flight: Dict[str, asyncio.Future] = {}

    # ------------------------------------------------------------------ #
    # Single reference                                                   #
    # ------------------------------------------------------------------ #
    async def resolve(self, reference: str) -> Optional[Metadata]:
        cached = self.results.lookup(reference)
        if cached is not MISSING:
            return cached

        task = self._in_flight.get(reference)
        if task is None:
            task = asyncio.ensure_future(self._resolve_uncached(reference))
            self._in_flight[reference] = task
            task.add_done_callback(lambda done, ref=reference: self._forget(ref, done))
        return await asyncio.shield(task)

    def _forget(self, reference: str, task: asyncio.Future) -> None:
        if self._in_flight.get(reference) is task:
            del self._in_flight[reference]

    async def _resolve_uncached(self, reference: str) -> Optional[Metadata]:
        result: Optional[Metadata] = None
        for probe in self.probes:
            result = await probe.probe(reference)
            if result is not None:
                _log.debug("%s resolved by %s probe", reference, probe.name)
                break
        else:
            _log.debug("No GPS fix for %s", reference)

        self.results.store(reference, result)
        return result

    # ------------------------------------------------------------------ #
    # Batches                                                            #
    # ------------------------------------------------------------------ #
    async def resolve_batch(self, references: Iterable[str]) -> List[Optional[Metadata]]:
        refs = list(references)
        if not refs:
            return []

        if (
            self.settings.native_batch
            and self.index is not None
            and hasattr(self.index, "get_metadata_batch")
        ):
            try:
                return await self._resolve_native_batch(refs)
            except Exception as exc:  # pylint: disable=broad-except
                _log.warning("Index batch lookup failed (%s); resolving in chunks", exc)

        return await self._resolve_chunked(refs)

    async def _resolve_native_batch(self, refs: List[str]) -> List[Optional[Metadata]]:
        cached = [self.results.lookup(r) for r in refs]
        pending = list(dict.fromkeys(r for r, c in zip(refs, cached) if c is MISSING))

        resolved: Dict[str, Optional[Metadata]] = {}
        if pending:
            records = list(await invoke(self.index.get_metadata_batch, pending))
            if len(records) != len(pending):
                raise ValueError(
                    f"index returned {len(records)} record(s) for {len(pending)} reference(s)"
                )
            unknown: List[str] = []
            for ref, record in zip(pending, records):
                if record is None:
                    # not in the index, so the other probes still decide
                    unknown.append(ref)
                    continue
                resolved[ref] = index_record_to_metadata(record)
                self.results.store(ref, resolved[ref])

            if unknown:
                _log.debug("%d reference(s) unknown to the index", len(unknown))
                resolved.update(zip(unknown, await self._resolve_chunked(unknown)))

        return [resolved[r] if c is MISSING else c for r, c in zip(refs, cached)]

    async def _resolve_chunked(self, refs: List[str]) -> List[Optional[Metadata]]:
        size = self.settings.chunk_size
        out: List[Optional[Metadata]] = []
        for start in range(0, len(refs), size):
            chunk = refs[start : start + size]
            settled = await asyncio.gather(
                *(self.resolve(ref) for ref in chunk), return_exceptions=True
            )
            for ref, item in zip(chunk, settled):
                if isinstance(item, Exception):
                    _log.warning("Resolution of %s failed: %s", ref, item)
                    item = None
                elif isinstance(item, BaseException):
                    raise item
                out.append(item)
        return out

    # ------------------------------------------------------------------ #
    # Cache control                                                      #
    # ------------------------------------------------------------------ #
    async def clear_cache(self) -> None:
        """Empty both caches and ask the media index to drop its own."""
        self.results.clear()
        self.snapshots.clear()
        if self.index is None or not hasattr(self.index, "clear_cache"):
            return
        try:
            await invoke(self.index.clear_cache)
        except Exception as exc:  # pylint: disable=broad-except
            _log.debug("Index cache clear failed: %s", exc)

    def cache_stats(self) -> CacheStats:
        positive, negative = self.results.counts()
        return CacheStats(
            entries=len(self.results),
            positive=positive,
            negative=negative,
            hits=self.results.hits,
            misses=self.results.misses,
            in_flight=len(self._in_flight),
            oldest_entry_age=self.results.oldest_age(),
            snapshot_records=self.snapshots.size(),
            snapshot_age=self.snapshots.age(),
            snapshot_fresh=self.snapshots.current() is not None,
        )


def build_resolver(settings: Optional[ResolverSettings] = None) -> GeotagResolver:
    """Resolver wired to the default collaborators described by *settings*."""
    settings = settings or ResolverSettings()
    index = SQLiteMediaIndex(settings.index_db) if settings.index_db else None
    library = FolderLibrary(settings.library_roots) if settings.library_roots else None
    return GeotagResolver(
        index=index,
        tag_reader=PillowTagReader(),
        library=library,
        settings=settings,
    )
