"""
photo_geotag.sources
~~~~~~~~~~~~~~~~~~~~

The three external collaborators the probes talk to, as Protocols, plus a
default implementation of each for desktop use:

* **MediaIndex**     → :class:`SQLiteMediaIndex` (decimal fixes in a table)
* **TagReader**      → :class:`PillowTagReader` (EXIF IFD0 + Exif + GPS)
* **LibraryService** → :class:`FolderLibrary` (files + Takeout JSON sidecars)

Collaborator methods may be plain callables or coroutines; :func:`invoke`
awaits the latter and pushes the former onto a worker thread so blocking
file / SQLite I/O never stalls the event loop.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import sqlite3
import threading
from contextlib import closing
from pathlib import Path
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)
from urllib.parse import unquote, urlparse

from PIL import ExifTags, Image

from photo_geotag.types import IndexRecord, LibraryPage, LibraryRecord, Metadata

__all__ = [
    "MediaIndex",
    "TagReader",
    "LibraryService",
    "PillowTagReader",
    "SQLiteMediaIndex",
    "FolderLibrary",
    "IMAGE_SUFFIXES",
    "LIBRARY_FIELDS",
    "invoke",
    "reference_to_path",
]

_log = logging.getLogger(__name__)

IMAGE_SUFFIXES = frozenset(
    {".jpg", ".jpeg", ".png", ".tif", ".tiff", ".webp", ".heic", ".heif", ".nef", ".dng"}
)
LIBRARY_FIELDS = ("location", "creationTime", "dimensions")

_EXIF_IFD = 0x8769
_GPS_IFD = 0x8825


# --------------------------------------------------------------------------- #
# Contracts                                                                   #
# --------------------------------------------------------------------------- #
@runtime_checkable
class MediaIndex(Protocol):
    """Privileged index that already knows decimal coordinates.

    ``None`` means the reference is not in the index at all; a record with
    no coordinates means the index knows the image has no fix.
    """

    def get_metadata(self, reference: str) -> Any:
        ...

    def get_metadata_batch(self, references: Sequence[str]) -> Sequence[Any]:
        ...

    def clear_cache(self) -> Any:
        ...


@runtime_checkable
class TagReader(Protocol):
    """Reads the raw key/value tags embedded in the file itself."""

    def read_tags(self, reference: str) -> Optional[Mapping[str, Any]]:
        ...


@runtime_checkable
class LibraryService(Protocol):
    """Windowed, paged query over the user's media library."""

    def query(
        self,
        window_start: int,
        window_end: int,
        page_size: int,
        fields: Sequence[str],
    ) -> Any:
        ...


async def invoke(fn: Callable[..., Any], *args: Any) -> Any:
    """Call a collaborator method whether it is sync or async."""
    if inspect.iscoroutinefunction(fn):
        return await fn(*args)
    result = await asyncio.to_thread(fn, *args)
    if inspect.isawaitable(result):
        result = await result
    return result


def reference_to_path(reference: str) -> Optional[Path]:
    """Local path for a plain path or ``file://`` URI; ``None`` for other schemes."""
    parsed = urlparse(reference)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    if parsed.scheme and len(parsed.scheme) > 1:  # "C:" is a drive, not a scheme
        return None
    return Path(reference).expanduser()


# --------------------------------------------------------------------------- #
# Tag reader                                                                  #
# --------------------------------------------------------------------------- #
class PillowTagReader:
    """
    Flatten IFD0, the Exif sub-IFD and the GPS sub-IFD into one
    ``{"GPSLatitude": (40.0, 26.0, 46.0), "DateTimeOriginal": "...", ...}``
    map. ``ImageWidth`` / ``ImageLength`` fall back to the decoded size.
    """

    def read_tags(self, reference: str) -> Optional[Dict[str, Any]]:
        path = reference_to_path(reference)
        if path is None or not path.is_file():
            _log.debug("No readable file behind %s", reference)
            return None

        with Image.open(path) as img:
            exif = img.getexif()
            tags: Dict[str, Any] = {}
            for tag_id, value in exif.items():
                if tag_id in (_EXIF_IFD, _GPS_IFD):
                    continue
                tags[ExifTags.TAGS.get(tag_id, str(tag_id))] = value
            for tag_id, value in exif.get_ifd(_EXIF_IFD).items():
                tags[ExifTags.TAGS.get(tag_id, str(tag_id))] = value
            for tag_id, value in exif.get_ifd(_GPS_IFD).items():
                tags[ExifTags.GPSTAGS.get(tag_id, str(tag_id))] = value
            tags.setdefault("ImageWidth", img.width)
            tags.setdefault("ImageLength", img.height)
        return tags


# --------------------------------------------------------------------------- #
# SQLite media index                                                          #
# --------------------------------------------------------------------------- #
_INDEX_COLUMNS = (
    "reference",
    "latitude",
    "longitude",
    "altitude",
    "accuracy",
    "width",
    "height",
    "capture_time",
)
# SQLite's default host-parameter limit is 999
_SQL_BATCH = 500


class SQLiteMediaIndex:
    """
    Media index kept in a single SQLite table.

    Rows are written by ``geotag scan``; a reference without a row comes
    back as ``None``, a no-fix row as a record without coordinates.
    Lookups are memoised until :meth:`clear_cache`. A connection is opened
    per call so the index can be used from the worker threads :func:`invoke`
    dispatches to.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path).expanduser()
        self._rows: Dict[str, Optional[IndexRecord]] = {}
        self._lock = threading.Lock()
        self._ensure_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, timeout=30)

    def _ensure_db(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as conn, conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS photos (
                    reference    TEXT PRIMARY KEY,
                    latitude     REAL,
                    longitude    REAL,
                    altitude     REAL,
                    accuracy     REAL,
                    width        INTEGER,
                    height       INTEGER,
                    capture_time INTEGER
                )
                """
            )

    @staticmethod
    def _record(row: Sequence[Any]) -> IndexRecord:
        return IndexRecord(**dict(zip(_INDEX_COLUMNS, row)))

    def get_metadata(self, reference: str) -> Optional[IndexRecord]:
        return self.get_metadata_batch([reference])[0]

    def get_metadata_batch(self, references: Sequence[str]) -> List[Optional[IndexRecord]]:
        with self._lock:
            missing = [r for r in dict.fromkeys(references) if r not in self._rows]

        fetched: Dict[str, Optional[IndexRecord]] = {r: None for r in missing}
        if missing:
            with closing(self._connect()) as conn:
                for start in range(0, len(missing), _SQL_BATCH):
                    part = missing[start : start + _SQL_BATCH]
                    marks = ",".join("?" * len(part))
                    cur = conn.execute(
                        f"SELECT {', '.join(_INDEX_COLUMNS)} FROM photos "
                        f"WHERE reference IN ({marks})",
                        part,
                    )
                    for row in cur:
                        fetched[row[0]] = self._record(row)

        with self._lock:
            self._rows.update(fetched)
            return [self._rows.get(r) for r in references]

    def clear_cache(self) -> None:
        with self._lock:
            self._rows.clear()

    def upsert(self, reference: str, metadata: Optional[Metadata]) -> None:
        """Insert / replace one row; ``None`` stores an explicit no-fix row."""
        row = {"reference": reference, **{c: None for c in _INDEX_COLUMNS[1:]}}
        if metadata is not None:
            row.update({k: v for k, v in metadata.to_row().items() if k in row})
        with closing(self._connect()) as conn, conn:
            conn.execute(
                f"INSERT OR REPLACE INTO photos ({', '.join(_INDEX_COLUMNS)}) "
                f"VALUES ({', '.join(':' + c for c in _INDEX_COLUMNS)})",
                row,
            )
        with self._lock:
            self._rows.pop(reference, None)

    def count(self) -> int:
        with closing(self._connect()) as conn:
            return int(conn.execute("SELECT COUNT(*) FROM photos").fetchone()[0])


# --------------------------------------------------------------------------- #
# Folder library                                                              #
# --------------------------------------------------------------------------- #
def _sidecar_for(path: Path) -> Optional[Path]:
    for candidate in (path.with_name(path.name + ".json"), path.with_suffix(".json")):
        if candidate.is_file():
            return candidate
    return None


def _read_sidecar(path: Path) -> Mapping[str, Any]:
    sidecar = _sidecar_for(path)
    if sidecar is None:
        return {}
    try:
        with sidecar.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, ValueError) as exc:
        _log.debug("Ignoring unreadable sidecar %s: %s", sidecar, exc)
        return {}
    return data if isinstance(data, dict) else {}


class FolderLibrary:
    """
    Library query service over local folders.

    Each image becomes a :class:`LibraryRecord` whose reference is the
    resolved file path. Capture time and location come from a Google
    Takeout style sidecar (``IMG_0001.jpg.json``) when one exists:

        {"photoTakenTime": {"timestamp": "1690000000"},
         "geoData": {"latitude": 46.5, "longitude": 7.9, "altitude": 1200.0}}

    otherwise the file's modification time is used and location is unknown.
    """

    def __init__(self, roots: Iterable[str | Path]) -> None:
        self.roots = tuple(Path(r).expanduser().resolve() for r in roots)

    def _images(self) -> Iterator[Path]:
        for root in self.roots:
            if not root.is_dir():
                _log.debug("Library root %s is not a directory", root)
                continue
            for path in root.rglob("*"):
                if path.suffix.lower() in IMAGE_SUFFIXES and path.is_file():
                    yield path

    @staticmethod
    def _taken_ms(path: Path, sidecar: Mapping[str, Any]) -> int:
        taken = sidecar.get("photoTakenTime") or {}
        if isinstance(taken, dict) and str(taken.get("timestamp", "")).isdigit():
            return int(taken["timestamp"]) * 1000
        return int(path.stat().st_mtime * 1000)

    @staticmethod
    def _record(
        path: Path,
        sidecar: Mapping[str, Any],
        timestamp: int,
        fields: Sequence[str],
    ) -> LibraryRecord:
        location = None
        altitude = None
        geo = sidecar.get("geoData") or {}
        if "location" in fields and isinstance(geo, dict):
            lat, lon = geo.get("latitude"), geo.get("longitude")
            if isinstance(lat, (int, float)) and isinstance(lon, (int, float)):
                location = (float(lat), float(lon))
                alt = geo.get("altitude")
                altitude = float(alt) if isinstance(alt, (int, float)) else None

        width = height = None
        if "dimensions" in fields:
            try:
                with Image.open(path) as img:  # header only, no decode
                    width, height = img.size
            except OSError as exc:
                _log.debug("Cannot size %s: %s", path, exc)

        return LibraryRecord(
            reference=str(path),
            location=location,
            altitude=altitude,
            timestamp=timestamp,
            width=width,
            height=height,
        )

    def query(
        self,
        window_start: int,
        window_end: int,
        page_size: int,
        fields: Sequence[str] = LIBRARY_FIELDS,
    ) -> LibraryPage:
        candidates = []
        for path in self._images():
            sidecar = _read_sidecar(path)
            taken = self._taken_ms(path, sidecar)
            if window_start <= taken <= window_end:
                candidates.append((taken, path, sidecar))

        candidates.sort(key=lambda c: c[0], reverse=True)
        cursor = str(page_size) if len(candidates) > page_size else None
        records = tuple(
            self._record(path, sidecar, taken, fields)
            for taken, path, sidecar in candidates[:page_size]
        )
        return LibraryPage(records=records, cursor=cursor)
