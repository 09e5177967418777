"""
tests/conftest.py
~~~~~~~~~~~~~~~~~

Call-counting stand-ins for the three collaborators plus a fixed wall
clock, so resolver tests can assert *which* source was asked and how often
without touching real files, SQLite or the network.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Sequence

import pytest

from photo_geotag.types import LibraryPage, LibraryRecord

# 2023-11-14T22:13:20Z
NOW_MS = 1_700_000_000_000


class FakeIndex:
    def __init__(
        self,
        records: Optional[Dict[str, Any]] = None,
        *,
        fail: bool = False,
        batch_fail: bool = False,
    ) -> None:
        self.records = records or {}
        self.fail = fail
        self.batch_fail = batch_fail
        self.calls: List[str] = []
        self.batch_calls: List[List[str]] = []
        self.cleared = 0

    def get_metadata(self, reference: str) -> Any:
        self.calls.append(reference)
        if self.fail:
            raise RuntimeError("index unavailable")
        return self.records.get(reference)

    def get_metadata_batch(self, references: Sequence[str]) -> List[Any]:
        self.batch_calls.append(list(references))
        if self.batch_fail:
            raise RuntimeError("native module gone")
        return [self.records.get(r) for r in references]

    def clear_cache(self) -> None:
        self.cleared += 1


class FakeTagReader:
    def __init__(
        self,
        tags: Optional[Dict[str, Dict[str, Any]]] = None,
        *,
        fail_on: Sequence[str] = (),
    ) -> None:
        self.tags = tags or {}
        self.fail_on = set(fail_on)
        self.calls: List[str] = []

    def read_tags(self, reference: str) -> Optional[Dict[str, Any]]:
        self.calls.append(reference)
        if reference in self.fail_on:
            raise OSError(f"cannot open {reference}")
        return self.tags.get(reference)


class SlowTagReader(FakeTagReader):
    """Async reader that yields to the loop so concurrent callers overlap."""

    async def read_tags(self, reference: str) -> Optional[Dict[str, Any]]:  # type: ignore[override]
        self.calls.append(reference)
        await asyncio.sleep(0.01)
        return self.tags.get(reference)


class FakeLibrary:
    def __init__(self, records: Sequence[LibraryRecord] = (), *, fail: bool = False) -> None:
        self.records = tuple(records)
        self.fail = fail
        self.queries: List[tuple] = []

    def query(self, window_start, window_end, page_size, fields) -> LibraryPage:
        self.queries.append((window_start, window_end, page_size, tuple(fields)))
        if self.fail:
            raise TimeoutError("library query timed out")
        return LibraryPage(records=self.records[:page_size])


def gps_tags(lat=(40, 26, 46), lat_ref="N", lon=(79, 58, 56), lon_ref="W", **extra) -> Dict[str, Any]:
    """Minimal EXIF-style tag map with a GPS fix."""
    return {
        "GPSLatitude": lat,
        "GPSLatitudeRef": lat_ref,
        "GPSLongitude": lon,
        "GPSLongitudeRef": lon_ref,
        **extra,
    }


@pytest.fixture
def fake_index():
    return FakeIndex


@pytest.fixture
def fake_tag_reader():
    return FakeTagReader


@pytest.fixture
def slow_tag_reader():
    return SlowTagReader


@pytest.fixture
def fake_library():
    return FakeLibrary


@pytest.fixture
def make_gps_tags():
    return gps_tags


@pytest.fixture
def wall_clock():
    return lambda: NOW_MS
