"""
photo_geotag.utils.timestamps
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

Two small time helpers used by the probes.

``parse_exif_datetime("2024:06:12 18:34:55") -> int | None``
    EXIF date-time (colon-separated date) to epoch milliseconds. Falls back
    to the date alone when the time part is garbage; ``None`` otherwise.

``estimate_capture_time("IMG_1690000000123.jpg", floor_ms=..., now=...)``
    Guess a capture time from a 10–13 digit run embedded in a file name or
    content id. Seconds and milliseconds are both accepted. The guess is
    only bounds-checked, so an unrelated number in the name that happens to
    fall between the floor and "now" will be taken as the capture time.
"""

from __future__ import annotations

import re
import time
from datetime import date, datetime, timezone
from typing import Any, Optional

__all__ = [
    "TIMESTAMP_FLOOR_MS",
    "now_ms",
    "parse_exif_datetime",
    "estimate_capture_time",
]

# 2020-01-01T00:00:00Z
TIMESTAMP_FLOOR_MS = 1_577_836_800_000

_DIGIT_RUN = re.compile(r"(?<!\d)(\d{10,13})(?!\d)")
_MS_THRESHOLD = 1_000_000_000_000


def now_ms() -> int:
    return int(time.time() * 1000)


def _to_ms(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


def parse_exif_datetime(value: Any, offset: Any = None) -> Optional[int]:
    """
    Parse an EXIF ``"YYYY:MM:DD HH:MM:SS"`` string.

    *offset* is the companion ``OffsetTimeOriginal`` tag (``"+02:00"``);
    without it the wall-clock time is read as UTC.
    """
    if isinstance(value, bytes):
        value = value.decode("ascii", errors="ignore")
    if not isinstance(value, str):
        return None
    text = value.strip().strip("\x00")
    if not text:
        return None

    iso = text.replace(":", "-", 2)
    if isinstance(offset, bytes):
        offset = offset.decode("ascii", errors="ignore")
    suffix = offset.strip().strip("\x00") if isinstance(offset, str) else ""

    for candidate in ((iso + suffix) if suffix else None, iso):
        if not candidate:
            continue
        try:
            return _to_ms(datetime.fromisoformat(candidate))
        except ValueError:
            continue

    try:
        day = date.fromisoformat(iso[:10])
    except ValueError:
        return None
    return _to_ms(datetime(day.year, day.month, day.day))


def estimate_capture_time(
    reference: str,
    *,
    floor_ms: int = TIMESTAMP_FLOOR_MS,
    now: Optional[int] = None,
) -> Optional[int]:
    """First digit run in *reference* that reads as a time between *floor_ms* and now."""
    if not reference:
        return None
    ceiling = now if now is not None else now_ms()

    for match in _DIGIT_RUN.finditer(reference):
        raw = int(match.group(1))
        millis = raw if raw >= _MS_THRESHOLD else raw * 1000
        if floor_ms <= millis <= ceiling:
            return millis
    return None
