"""
tests/test_resolver.py
~~~~~~~~~~~~~~~~~~~~~~

Behaviour of :class:`photo_geotag.resolver.GeotagResolver` against fake
collaborators:

* probes run strictly in order and stop at the first fix;
* both positive and negative outcomes are cached;
* batches keep input order, use the index batch call when available and
  fall back to chunks when it fails;
* concurrent calls for one reference share a single resolution;
* the library probe builds its window from a timestamp in the reference.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest
from PIL.TiffImagePlugin import IFDRational

from photo_geotag.cache import SnapshotCache
from photo_geotag.config import ResolverSettings
from photo_geotag.probes import index_record_to_metadata
from photo_geotag.resolver import GeotagResolver
from photo_geotag.types import IndexRecord, LibraryRecord

DAY_MS = 86_400_000


def _run(coro):
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Tiered fallback
# ---------------------------------------------------------------------------
def test_index_hit_skips_tag_and_library(fake_index, fake_tag_reader, fake_library, make_gps_tags) -> None:
    index = fake_index({"a.jpg": {"latitude": 45.0, "longitude": -93.0, "dateTaken": 1.69e12}})
    reader = fake_tag_reader({"a.jpg": make_gps_tags()})
    library = fake_library()
    resolver = GeotagResolver(index=index, tag_reader=reader, library=library)

    md = _run(resolver.resolve("a.jpg"))

    assert md is not None and (md.latitude, md.longitude) == (45.0, -93.0)
    assert md.capture_time == 1_690_000_000_000
    assert md.raw_source.probe == "index"
    assert index.calls == ["a.jpg"]
    assert reader.calls == [], "tag reader must not run after an index fix"
    assert library.queries == [], "library must not be queried after an index fix"


def test_invalid_index_fix_falls_through_to_tags(fake_index, fake_tag_reader, fake_library, make_gps_tags) -> None:
    index = fake_index({"a.jpg": {"latitude": 0.0, "longitude": 0.0}})
    reader = fake_tag_reader({"a.jpg": make_gps_tags()})
    library = fake_library()
    resolver = GeotagResolver(index=index, tag_reader=reader, library=library)

    md = _run(resolver.resolve("a.jpg"))

    assert md is not None and md.raw_source.probe == "tag"
    assert md.latitude == pytest.approx(40 + 26 / 60 + 46 / 3600)
    assert md.longitude == pytest.approx(-(79 + 58 / 60 + 56 / 3600))
    assert library.queries == []


def test_unusable_index_extras_are_dropped_not_the_fix() -> None:
    md = index_record_to_metadata(
        {
            "latitude": 45.0,
            "longitude": -93.0,
            "dateTaken": 1.69e12 + 0.5,
            "width": -1,
            "height": "480",
            "accuracy": "n/a",
            "altitude": float("nan"),
        }
    )

    assert md is not None and (md.latitude, md.longitude) == (45.0, -93.0)
    assert md.capture_time == 1_690_000_000_000
    assert (md.width, md.height) == (None, 480)
    assert md.accuracy is None and md.altitude is None


def test_failing_collaborators_degrade_to_next_probe(fake_index, fake_tag_reader, fake_library, wall_clock) -> None:
    index = fake_index(fail=True)
    reader = fake_tag_reader(fail_on=["IMG_1.jpg"])
    library = fake_library([LibraryRecord(reference="IMG_1.jpg", location=(10.0, 20.0))])
    resolver = GeotagResolver(index=index, tag_reader=reader, library=library, wall_clock=wall_clock)

    md = _run(resolver.resolve("IMG_1.jpg"))

    assert md is not None and md.raw_source.probe == "library"
    assert (md.latitude, md.longitude) == (10.0, 20.0)
    assert reader.calls == ["IMG_1.jpg"]


def test_tag_probe_reads_altitude_size_accuracy_and_time(fake_tag_reader, make_gps_tags) -> None:
    tags = make_gps_tags(
        lat=(IFDRational(40, 1), IFDRational(26, 1), IFDRational(4600, 100)),
        GPSAltitude=IFDRational(105, 10),
        GPSAltitudeRef=b"\x01",
        GPSDOP=IFDRational(25, 10),
        ImageWidth=4000,
        ImageLength=3000,
        DateTimeOriginal="2023:07:22 10:00:00",
        OffsetTimeOriginal="+02:00",
    )
    resolver = GeotagResolver(tag_reader=fake_tag_reader({"b.jpg": tags}))

    md = _run(resolver.resolve("b.jpg"))

    assert md is not None
    assert md.altitude == pytest.approx(-10.5)
    assert md.accuracy == pytest.approx(2.5)
    assert (md.width, md.height) == (4000, 3000)
    expected = datetime(2023, 7, 22, 8, 0, tzinfo=timezone.utc).timestamp() * 1000
    assert md.capture_time == int(expected)


def test_tags_without_gps_resolve_to_none(fake_tag_reader) -> None:
    reader = fake_tag_reader({"c.jpg": {"DateTime": "2023:07:22 10:00:00"}})
    resolver = GeotagResolver(tag_reader=reader)

    assert _run(resolver.resolve("c.jpg")) is None


# ---------------------------------------------------------------------------
# Result cache
# ---------------------------------------------------------------------------
def test_negative_result_is_cached(fake_index, fake_tag_reader, fake_library, wall_clock) -> None:
    index, reader, library = fake_index(), fake_tag_reader(), fake_library()
    resolver = GeotagResolver(index=index, tag_reader=reader, library=library, wall_clock=wall_clock)

    assert _run(resolver.resolve("nothing.jpg")) is None
    assert _run(resolver.resolve("nothing.jpg")) is None

    assert len(index.calls) == 1
    assert len(reader.calls) == 1
    assert len(library.queries) == 1
    stats = resolver.cache_stats()
    assert (stats.entries, stats.positive, stats.negative) == (1, 0, 1)
    assert stats.hits == 1


def test_clear_cache_empties_both_stores_and_index(fake_index, fake_tag_reader, fake_library, make_gps_tags, wall_clock) -> None:
    index = fake_index()
    reader = fake_tag_reader({"d.jpg": make_gps_tags()})
    library = fake_library([LibraryRecord(reference="x.jpg", location=(1.0, 1.0))])
    resolver = GeotagResolver(index=index, tag_reader=reader, library=library, wall_clock=wall_clock)

    _run(resolver.resolve("d.jpg"))
    _run(resolver.resolve("other.jpg"))
    assert resolver.cache_stats().snapshot_records == 1

    _run(resolver.clear_cache())

    stats = resolver.cache_stats()
    assert stats.entries == 0
    assert stats.snapshot_records == 0 and not stats.snapshot_fresh
    assert index.cleared == 1

    _run(resolver.resolve("d.jpg"))
    assert reader.calls.count("d.jpg") == 2, "cleared entries must be resolved again"


def test_clear_cache_swallows_index_failure(fake_tag_reader) -> None:
    class BrokenIndex:
        def get_metadata(self, reference):
            return None

        def clear_cache(self):
            raise RuntimeError("no native module")

    resolver = GeotagResolver(index=BrokenIndex(), tag_reader=fake_tag_reader())
    _run(resolver.clear_cache())
    assert resolver.cache_stats().entries == 0


# ---------------------------------------------------------------------------
# In-flight de-duplication
# ---------------------------------------------------------------------------
def test_concurrent_calls_share_one_resolution(slow_tag_reader, make_gps_tags) -> None:
    reader = slow_tag_reader({"e.jpg": make_gps_tags()})
    resolver = GeotagResolver(tag_reader=reader)

    async def both():
        return await asyncio.gather(resolver.resolve("e.jpg"), resolver.resolve("e.jpg"))

    first, second = _run(both())

    assert first is second and first is not None
    assert reader.calls == ["e.jpg"]
    assert resolver.cache_stats().in_flight == 0


# ---------------------------------------------------------------------------
# Batches
# ---------------------------------------------------------------------------
def test_chunked_batch_preserves_order(fake_tag_reader, make_gps_tags) -> None:
    reader = fake_tag_reader(
        {"a.jpg": make_gps_tags(lat=(10, 0, 0)), "c.jpg": make_gps_tags(lat=(30, 0, 0))},
        fail_on=["b.jpg"],
    )
    resolver = GeotagResolver(tag_reader=reader)

    results = _run(resolver.resolve_batch(["a.jpg", "b.jpg", "c.jpg"]))

    assert [r is not None for r in results] == [True, False, True]
    assert results[0].latitude == pytest.approx(10.0)
    assert results[2].latitude == pytest.approx(30.0)


def test_chunks_are_bounded_and_awaited_in_sequence(make_gps_tags) -> None:
    active = {"now": 0, "peak": 0}

    class CountingReader:
        async def read_tags(self, reference):
            active["now"] += 1
            active["peak"] = max(active["peak"], active["now"])
            await asyncio.sleep(0.005)
            active["now"] -= 1
            return make_gps_tags(lat=(int(reference.split(".")[0]), 0, 0))

    resolver = GeotagResolver(tag_reader=CountingReader(), settings=ResolverSettings(chunk_size=4))
    refs = [f"{i}.jpg" for i in range(1, 11)]

    results = _run(resolver.resolve_batch(refs))

    assert [round(r.latitude) for r in results] == list(range(1, 11))
    assert active["peak"] == 4


def test_batch_of_duplicates_and_empty_input(fake_tag_reader, make_gps_tags) -> None:
    reader = fake_tag_reader({"a.jpg": make_gps_tags()})
    resolver = GeotagResolver(tag_reader=reader)

    assert _run(resolver.resolve_batch([])) == []
    results = _run(resolver.resolve_batch(["a.jpg", "a.jpg"]))
    assert results[0] == results[1] and results[0] is not None


def test_native_batch_is_one_call_and_fills_cache(fake_index, fake_tag_reader) -> None:
    index = fake_index(
        {
            "a.jpg": IndexRecord(latitude=1.0, longitude=2.0),
            "b.jpg": {"latitude": 0.0, "longitude": 0.0},
            "c.jpg": {"latitude": 3.0, "longitude": 4.0, "width": 640},
        }
    )
    reader = fake_tag_reader()
    resolver = GeotagResolver(index=index, tag_reader=reader)

    results = _run(resolver.resolve_batch(["a.jpg", "b.jpg", "c.jpg", "d.jpg"]))

    assert [r.latitude if r else None for r in results] == [1.0, None, 3.0, None]
    assert results[2].width == 640
    assert index.batch_calls == [["a.jpg", "b.jpg", "c.jpg", "d.jpg"]]
    # d.jpg is not in the index, so it alone goes through the probes
    assert index.calls == ["d.jpg"] and reader.calls == ["d.jpg"]
    assert resolver.cache_stats().entries == 4

    # a second batch only forwards what is not cached yet
    _run(resolver.resolve_batch(["c.jpg", "e.jpg"]))
    assert index.batch_calls[-1] == ["e.jpg"]


def test_native_batch_leaves_unindexed_references_to_the_tag_reader(
    fake_index, fake_tag_reader, make_gps_tags
) -> None:
    index = fake_index({"scanned.jpg": IndexRecord(reference="scanned.jpg")})
    reader = fake_tag_reader({"scanned.jpg": make_gps_tags(), "new.jpg": make_gps_tags()})
    resolver = GeotagResolver(index=index, tag_reader=reader)

    single = _run(GeotagResolver(index=fake_index(), tag_reader=reader).resolve("new.jpg"))
    scanned, new = _run(resolver.resolve_batch(["scanned.jpg", "new.jpg"]))

    assert scanned is None, "a no-fix row is the index's answer"
    assert new is not None and new == single
    assert _run(resolver.resolve("new.jpg")) == new
    assert index.batch_calls == [["scanned.jpg", "new.jpg"]]
    assert reader.calls.count("scanned.jpg") == 0


def test_native_batch_failure_falls_back_to_chunks(fake_index, fake_tag_reader, make_gps_tags) -> None:
    index = fake_index(batch_fail=True)
    reader = fake_tag_reader({"a.jpg": make_gps_tags()})
    resolver = GeotagResolver(index=index, tag_reader=reader)

    results = _run(resolver.resolve_batch(["a.jpg", "b.jpg"]))

    assert results[0] is not None and results[1] is None
    assert sorted(index.calls) == ["a.jpg", "b.jpg"]
    assert sorted(reader.calls) == ["a.jpg", "b.jpg"]


def test_native_batch_length_mismatch_falls_back(fake_tag_reader, make_gps_tags) -> None:
    class ShortIndex:
        def get_metadata(self, reference):
            return None

        def get_metadata_batch(self, references):
            return [None]

    reader = fake_tag_reader({"b.jpg": make_gps_tags()})
    resolver = GeotagResolver(index=ShortIndex(), tag_reader=reader)

    results = _run(resolver.resolve_batch(["a.jpg", "b.jpg"]))
    assert results[0] is None and results[1] is not None


# ---------------------------------------------------------------------------
# Library window + snapshot
# ---------------------------------------------------------------------------
def test_library_window_from_embedded_millis(fake_index, fake_tag_reader, fake_library, wall_clock) -> None:
    ref = "IMG_1690000000123.jpg"
    library = fake_library(
        [
            LibraryRecord(reference="IMG_other.jpg", location=(1.0, 1.0)),
            LibraryRecord(reference=ref, location=(-33.86, 151.21), timestamp=1_690_000_000_123),
        ]
    )
    resolver = GeotagResolver(
        index=fake_index(), tag_reader=fake_tag_reader(), library=library, wall_clock=wall_clock
    )

    md = _run(resolver.resolve(ref))

    assert md is not None and (md.latitude, md.longitude) == (-33.86, 151.21)
    assert md.capture_time == 1_690_000_000_123
    start, end, page_size, fields = library.queries[0]
    assert start == 1_690_000_000_123 - DAY_MS
    assert end == wall_clock()
    assert page_size == 100
    assert "location" in fields

    # the fresh snapshot answers the next reference without a new query
    other = _run(resolver.resolve("IMG_other.jpg"))
    assert other is not None and len(library.queries) == 1


def test_library_window_defaults_to_thirty_days(fake_library, wall_clock) -> None:
    library = fake_library()
    resolver = GeotagResolver(library=library, wall_clock=wall_clock)

    assert _run(resolver.resolve("IMG_0001.jpg")) is None
    start, end, _, _ = library.queries[0]
    assert end - start == 30 * DAY_MS


def test_library_record_without_location_is_none(fake_library, wall_clock) -> None:
    library = fake_library([LibraryRecord(reference="f.jpg", timestamp=1)])
    resolver = GeotagResolver(library=library, wall_clock=wall_clock)

    assert _run(resolver.resolve("f.jpg")) is None


def test_stale_snapshot_is_refetched(fake_library, wall_clock) -> None:
    tick = {"t": 0.0}
    snapshots = SnapshotCache(ttl=300, clock=lambda: tick["t"])
    library = fake_library(
        [
            LibraryRecord(reference="g.jpg", location=(5.0, 5.0)),
            LibraryRecord(reference="h.jpg", location=(6.0, 6.0)),
        ]
    )
    resolver = GeotagResolver(library=library, snapshots=snapshots, wall_clock=wall_clock)

    _run(resolver.resolve("g.jpg"))
    tick["t"] = 301.0
    _run(resolver.resolve("h.jpg"))

    assert len(library.queries) == 2
    assert resolver.cache_stats().snapshot_fresh is True
