"""
photo_geotag.types
~~~~~~~~~~~~~~~~~~

Value objects passed between the collaborators, the probes and the caches.

* :class:`Metadata` – the resolved, validated GPS fix of one image.
* :class:`RawTagPayload` – debugging passthrough of whatever a probe read.
* :class:`IndexRecord` / :class:`LibraryRecord` / :class:`LibraryPage` –
  the shapes the external media index and library service hand back.
* :class:`CacheStats` – counts and ages for observability.

Every model is frozen: a new resolution replaces a cache slot wholesale,
nothing is patched in place.
"""

from __future__ import annotations

import math
from typing import Any, Mapping, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

__all__ = [
    "Metadata",
    "RawTagPayload",
    "IndexRecord",
    "LibraryRecord",
    "LibraryPage",
    "CacheStats",
]


def _finite(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class RawTagPayload(BaseModel):
    """Opaque record kept next to a fix; never parsed downstream."""

    model_config = ConfigDict(frozen=True)

    probe: str
    payload: Mapping[str, Any] = Field(default_factory=dict)


class Metadata(BaseModel):
    """A valid, non-sentinel GPS position plus whatever the source knew."""

    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)
    altitude: Optional[float] = Field(None, description="Metres, negative below datum")
    accuracy: Optional[float] = Field(None, description="Source specific, not comparable")
    width: Optional[int] = Field(None, ge=0)
    height: Optional[int] = Field(None, ge=0)
    capture_time: Optional[int] = Field(None, description="Epoch milliseconds")
    raw_source: Optional[RawTagPayload] = None

    @model_validator(mode="after")
    def _reject_no_fix(self) -> "Metadata":
        if not (math.isfinite(self.latitude) and math.isfinite(self.longitude)):
            raise ValueError("coordinates must be finite")
        if self.latitude == 0.0 and self.longitude == 0.0:
            raise ValueError("(0, 0) is the no-fix sentinel")
        return self

    def to_row(self) -> dict[str, Any]:
        """Flat dict without the raw payload (JSON / SQLite friendly)."""
        return self.model_dump(exclude={"raw_source"})


class IndexRecord(BaseModel):
    """What the media index reports for one reference (decimal degrees)."""

    model_config = ConfigDict(frozen=True, extra="allow")

    reference: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    altitude: Optional[float] = None
    accuracy: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    capture_time: Optional[int] = Field(
        None, validation_alias=AliasChoices("capture_time", "dateTaken")
    )

    # Extras never cost the fix: unusable values become None.
    @field_validator("altitude", "accuracy", mode="before")
    @classmethod
    def _finite_or_none(cls, v: Any) -> Optional[float]:
        return _finite(v)

    @field_validator("width", "height", mode="before")
    @classmethod
    def _size_or_none(cls, v: Any) -> Optional[int]:
        number = _finite(v)
        return int(number) if number is not None and number >= 0 else None

    @field_validator("capture_time", mode="before")
    @classmethod
    def _whole_millis(cls, v: Any) -> Optional[int]:
        number = _finite(v)
        return int(number) if number is not None else None


class LibraryRecord(BaseModel):
    """One entry of a library page; ``location`` is ``(lat, lon)`` or ``None``."""

    model_config = ConfigDict(frozen=True)

    reference: str
    location: Optional[tuple[float, float]] = None
    altitude: Optional[float] = None
    timestamp: Optional[int] = Field(None, description="Epoch milliseconds")
    width: Optional[int] = None
    height: Optional[int] = None


class LibraryPage(BaseModel):
    model_config = ConfigDict(frozen=True)

    records: tuple[LibraryRecord, ...] = ()
    cursor: Optional[str] = None


class CacheStats(BaseModel):
    """Read-only view over both caches; nothing decides on these numbers."""

    model_config = ConfigDict(frozen=True)

    entries: int = 0
    positive: int = 0
    negative: int = 0
    hits: int = 0
    misses: int = 0
    in_flight: int = 0
    oldest_entry_age: Optional[float] = None
    snapshot_records: int = 0
    snapshot_age: Optional[float] = None
    snapshot_fresh: bool = False
