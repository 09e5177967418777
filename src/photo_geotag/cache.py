"""
photo_geotag.cache
~~~~~~~~~~~~~~~~~~

The two stores the resolver owns. They never look at each other.

* :class:`ResultCache` – reference → ``Metadata | None``. ``None`` is a
  real entry: an image without a GPS fix stays without one, so the miss
  is remembered instead of paying for the probes again. Lives until
  :meth:`ResultCache.clear`.
* :class:`SnapshotCache` – the last library page fetched by the library
  probe, fresh for ``ttl`` seconds and replaced wholesale.

Both are plain last-writer-wins containers for use from one event loop.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Optional, Tuple

from photo_geotag.types import LibraryRecord, Metadata

__all__ = ["MISSING", "ResultCache", "LibrarySnapshot", "SnapshotCache"]

Clock = Callable[[], float]


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()


class ResultCache:
    """Per-reference outcomes, positive and negative."""

    def __init__(self, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self._entries: Dict[str, Tuple[Optional[Metadata], float]] = {}
        self.hits = 0
        self.misses = 0

    def lookup(self, reference: str):
        """The cached ``Metadata`` / ``None``, or :data:`MISSING`."""
        entry = self._entries.get(reference)
        if entry is None:
            self.misses += 1
            return MISSING
        self.hits += 1
        return entry[0]

    def store(self, reference: str, metadata: Optional[Metadata]) -> None:
        self._entries[reference] = (metadata, self._clock())

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, reference: object) -> bool:
        return reference in self._entries

    def counts(self) -> Tuple[int, int]:
        """``(positive, negative)`` entry counts."""
        positive = sum(1 for md, _ in self._entries.values() if md is not None)
        return positive, len(self._entries) - positive

    def oldest_age(self) -> Optional[float]:
        if not self._entries:
            return None
        return self._clock() - min(ts for _, ts in self._entries.values())


@dataclass(frozen=True)
class LibrarySnapshot:
    records: Tuple[LibraryRecord, ...]
    fetched_at: float
    _by_reference: Dict[str, LibraryRecord] = field(
        init=False, repr=False, compare=False, default_factory=dict
    )

    def __post_init__(self) -> None:
        for record in self.records:
            self._by_reference.setdefault(record.reference, record)

    def find(self, reference: str) -> Optional[LibraryRecord]:
        return self._by_reference.get(reference)


class SnapshotCache:
    """Time-bounded holder of the latest library page."""

    def __init__(self, ttl: float = 300.0, clock: Clock = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._snapshot: Optional[LibrarySnapshot] = None

    def current(self) -> Optional[LibrarySnapshot]:
        """The snapshot if still fresh, else ``None``."""
        snap = self._snapshot
        if snap is None or self._clock() - snap.fetched_at >= self.ttl:
            return None
        return snap

    def replace(self, records: Iterable[LibraryRecord]) -> LibrarySnapshot:
        self._snapshot = LibrarySnapshot(records=tuple(records), fetched_at=self._clock())
        return self._snapshot

    def clear(self) -> None:
        self._snapshot = None

    def age(self) -> Optional[float]:
        if self._snapshot is None:
            return None
        return self._clock() - self._snapshot.fetched_at

    def size(self) -> int:
        return len(self._snapshot.records) if self._snapshot else 0
