"""
photo_geotag.probes
~~~~~~~~~~~~~~~~~~~

The three lookup strategies, tried in this order by the resolver:

* :class:`IndexProbe`   → media index, decimal degrees, validated directly
* :class:`TagProbe`     → embedded EXIF tags, DMS decoded by the codec
* :class:`LibraryProbe` → snapshot of / windowed query over the library

Each exposes ``await probe(reference) -> Metadata | None`` and never
raises: whatever the collaborator does is caught at the probe boundary,
logged at DEBUG, and turned into ``None``.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from photo_geotag.cache import SnapshotCache
from photo_geotag.codec import (
    altitude_with_ref,
    build_metadata,
    decode_dms,
    parse_number,
)
from photo_geotag.config import ResolverSettings
from photo_geotag.sources import (
    LIBRARY_FIELDS,
    LibraryService,
    MediaIndex,
    TagReader,
    invoke,
)
from photo_geotag.types import (
    IndexRecord,
    LibraryPage,
    LibraryRecord,
    Metadata,
    RawTagPayload,
)
from photo_geotag.utils.timestamps import (
    estimate_capture_time,
    now_ms,
    parse_exif_datetime,
)

__all__ = [
    "IndexProbe",
    "TagProbe",
    "LibraryProbe",
    "Probe",
    "index_record_to_metadata",
    "library_record_to_metadata",
]

_log = logging.getLogger(__name__)

_DAY_MS = 86_400_000
_DATETIME_TAGS = (
    ("DateTimeOriginal", "OffsetTimeOriginal"),
    ("DateTimeDigitized", "OffsetTimeDigitized"),
    ("DateTime", "OffsetTime"),
)


def _never_raises(method: Callable[..., Awaitable[Optional[Metadata]]]):
    @functools.wraps(method)
    async def wrapper(self, reference: str) -> Optional[Metadata]:
        try:
            return await method(self, reference)
        except Exception as exc:  # pylint: disable=broad-except
            _log.debug("%s probe failed for %s: %s", self.name, reference, exc)
            return None

    return wrapper


# --------------------------------------------------------------------------- #
# Record → Metadata                                                           #
# --------------------------------------------------------------------------- #
def index_record_to_metadata(record: Any, probe: str = "index") -> Optional[Metadata]:
    """Validate an index record (model or mapping); ``None`` when unusable."""
    if record is None:
        return None
    try:
        if not isinstance(record, IndexRecord):
            record = IndexRecord.model_validate(dict(record))
        return build_metadata(
            record.latitude,
            record.longitude,
            altitude=record.altitude,
            accuracy=record.accuracy,
            width=record.width,
            height=record.height,
            capture_time=record.capture_time,
            raw_source=RawTagPayload(probe=probe, payload=record.model_dump()),
        )
    except Exception as exc:  # pylint: disable=broad-except
        _log.debug("Unusable index record %r: %s", record, exc)
        return None


def library_record_to_metadata(record: LibraryRecord) -> Optional[Metadata]:
    if record.location is None:
        return None
    latitude, longitude = record.location
    return build_metadata(
        latitude,
        longitude,
        altitude=record.altitude,
        width=record.width,
        height=record.height,
        capture_time=record.timestamp,
        raw_source=RawTagPayload(probe="library", payload=record.model_dump()),
    )


def _dimension(tags: Mapping[str, Any], *keys: str) -> Optional[int]:
    for key in keys:
        value = parse_number(tags.get(key))
        if value is not None and value > 0:
            return int(value)
    return None


def _capture_time(tags: Mapping[str, Any]) -> Optional[int]:
    for key, offset_key in _DATETIME_TAGS:
        if tags.get(key):
            return parse_exif_datetime(tags[key], tags.get(offset_key))
    return None


# --------------------------------------------------------------------------- #
# Probes                                                                      #
# --------------------------------------------------------------------------- #
class IndexProbe:
    name = "index"

    def __init__(self, index: Optional[MediaIndex]) -> None:
        self.index = index

    @_never_raises
    async def probe(self, reference: str) -> Optional[Metadata]:
        if self.index is None:
            return None
        record = await invoke(self.index.get_metadata, reference)
        return index_record_to_metadata(record, probe=self.name)


class TagProbe:
    name = "tag"

    def __init__(self, reader: Optional[TagReader]) -> None:
        self.reader = reader

    @_never_raises
    async def probe(self, reference: str) -> Optional[Metadata]:
        if self.reader is None:
            return None
        tags = await invoke(self.reader.read_tags, reference)
        if not tags:
            return None

        latitude = decode_dms(tags.get("GPSLatitude"), tags.get("GPSLatitudeRef"))
        longitude = decode_dms(tags.get("GPSLongitude"), tags.get("GPSLongitudeRef"))
        if latitude is None or longitude is None:
            return None

        accuracy = parse_number(tags.get("GPSHPositioningError"))
        if accuracy is None:
            accuracy = parse_number(tags.get("GPSDOP"))

        return build_metadata(
            latitude,
            longitude,
            altitude=altitude_with_ref(tags.get("GPSAltitude"), tags.get("GPSAltitudeRef")),
            accuracy=accuracy,
            width=_dimension(tags, "ImageWidth", "PixelXDimension", "ExifImageWidth"),
            height=_dimension(tags, "ImageLength", "PixelYDimension", "ExifImageHeight"),
            capture_time=_capture_time(tags),
            raw_source=RawTagPayload(probe=self.name, payload=dict(tags)),
        )


class LibraryProbe:
    """
    Exact-reference lookup in the library.

    A fresh snapshot is consulted first. On a miss the capture window is
    estimated from a timestamp embedded in the reference (one day of
    lookback up to now) or, failing that, the last
    ``default_window_days``; the page that comes back becomes the new
    snapshot.
    """

    name = "library"

    def __init__(
        self,
        library: Optional[LibraryService],
        snapshots: SnapshotCache,
        settings: ResolverSettings,
        *,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.library = library
        self.snapshots = snapshots
        self.settings = settings
        self._now = clock

    def window_for(self, reference: str) -> tuple[int, int]:
        """``(window_start, window_end)`` in epoch ms for a library query."""
        now = self._now()
        estimated = estimate_capture_time(
            reference, floor_ms=self.settings.timestamp_floor, now=now
        )
        if estimated is not None:
            start = estimated - int(self.settings.lookback_days * _DAY_MS)
        else:
            start = now - int(self.settings.default_window_days * _DAY_MS)
        return start, now

    @_never_raises
    async def probe(self, reference: str) -> Optional[Metadata]:
        if self.library is None:
            return None

        snapshot = self.snapshots.current()
        if snapshot is not None:
            record = snapshot.find(reference)
            if record is not None:
                return library_record_to_metadata(record)

        start, end = self.window_for(reference)
        raw = await invoke(
            self.library.query, start, end, self.settings.page_size, LIBRARY_FIELDS
        )
        page = raw if isinstance(raw, LibraryPage) else LibraryPage.model_validate(raw)
        _log.debug(
            "Library page for %s: %d record(s) in [%d, %d]",
            reference,
            len(page.records),
            start,
            end,
        )

        record = self.snapshots.replace(page.records).find(reference)
        return library_record_to_metadata(record) if record is not None else None


Probe = Union[IndexProbe, TagProbe, LibraryProbe]
