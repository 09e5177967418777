"""
photo_geotag.codec
~~~~~~~~~~~~~~~~~~

Degree/minute/second decoding and coordinate validation.

EXIF writers disagree on how a GPS coordinate is spelled, so the decoder
accepts a small closed set of shapes:

* :class:`DmsNumber` – an already-decimal value (``40.446``, ``"40.446"``,
  ``"161/4"``).
* :class:`DmsTriple` – ``[deg, min, sec]`` where each part is a number, a
  fraction string, or a ``(numerator, denominator)`` pair.
* :class:`DmsText` – ``"40/1,26/1,46/1"`` or ``40° 26' 46" N``.

Nothing in here raises on bad input: every parse failure is ``None``.
:func:`build_metadata` is the only way the probes turn numbers into a
:class:`~photo_geotag.types.Metadata`, and it validates first.
"""

from __future__ import annotations

import logging
import math
import numbers
import re
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Union

from pydantic import ValidationError

from photo_geotag.types import Metadata

__all__ = [
    "DmsNumber",
    "DmsTriple",
    "DmsText",
    "DmsValue",
    "as_dms",
    "decode_dms",
    "validate",
    "parse_fraction",
    "parse_number",
    "altitude_with_ref",
    "build_metadata",
]

_log = logging.getLogger(__name__)

_NUM = r"[-+]?\d+(?:\.\d+)?"
_TOKEN = rf"{_NUM}(?:\s*/\s*{_NUM})?"
_NUMBER_RE = re.compile(_NUM)
_DMS_TEXT_RE = re.compile(
    rf"""^\s*
    (?P<deg>{_TOKEN})\s*(?:°|º|deg)\s*
    (?P<min>{_TOKEN})\s*(?:'|′|’)\s*
    (?P<sec>{_TOKEN})\s*(?:"|″|”|'')?\s*
    (?P<hemi>[NSEWnsew])?\s*$""",
    re.VERBOSE,
)
_NEGATIVE_REFS = frozenset({"S", "W"})


# --------------------------------------------------------------------------- #
# Input union                                                                 #
# --------------------------------------------------------------------------- #
@dataclass(frozen=True)
class DmsNumber:
    value: float


@dataclass(frozen=True)
class DmsTriple:
    parts: tuple[Any, Any, Any]


@dataclass(frozen=True)
class DmsText:
    text: str


DmsValue = Union[DmsNumber, DmsTriple, DmsText]


def as_dms(raw: Any) -> Optional[DmsValue]:
    """Classify a collaborator value into the DMS union (``None`` if no shape fits)."""
    if isinstance(raw, (DmsNumber, DmsTriple, DmsText)):
        return raw
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, numbers.Real):
        return DmsNumber(float(raw))
    if isinstance(raw, bytes):
        raw = raw.decode("ascii", errors="ignore")
    if isinstance(raw, str):
        single = parse_fraction(raw)
        if single is not None:
            return DmsNumber(single)
        return DmsText(raw)
    if isinstance(raw, Sequence) and len(raw) == 3:
        return DmsTriple((raw[0], raw[1], raw[2]))
    return None


# --------------------------------------------------------------------------- #
# Scalars                                                                     #
# --------------------------------------------------------------------------- #
def parse_fraction(text: str) -> Optional[float]:
    """
    ``"46/1"`` → ``46.0``, ``"12.5"`` → ``12.5``.

    ``None`` for a zero denominator, a non-numeric side, or a non-finite
    result.
    """
    if not isinstance(text, str):
        return None
    text = text.strip().rstrip("\x00")
    if "/" in text:
        num_txt, _, den_txt = text.partition("/")
        num_txt, den_txt = num_txt.strip(), den_txt.strip()
        if not (_NUMBER_RE.fullmatch(num_txt) and _NUMBER_RE.fullmatch(den_txt)):
            return None
        denominator = float(den_txt)
        if denominator == 0.0:
            return None
        value = float(num_txt) / denominator
    else:
        if not _NUMBER_RE.fullmatch(text):
            return None
        value = float(text)
    return value if math.isfinite(value) else None


def parse_number(value: Any) -> Optional[float]:
    """Best-effort float from a number, fraction string or ``(num, den)`` pair."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, numbers.Real):
        try:
            result = float(value)
        except (TypeError, ValueError, ZeroDivisionError):
            return None
        return result if math.isfinite(result) else None
    if isinstance(value, bytes):
        value = value.decode("ascii", errors="ignore")
    if isinstance(value, str):
        return parse_fraction(value)
    if isinstance(value, Sequence) and len(value) == 2:
        numerator, denominator = parse_number(value[0]), parse_number(value[1])
        if numerator is None or not denominator:
            return None
        return numerator / denominator
    return None


def _normalise_ref(ref: Any) -> Optional[str]:
    if isinstance(ref, bytes):
        ref = ref.decode("ascii", errors="ignore")
    if not isinstance(ref, str):
        return None
    ref = ref.strip().strip("\x00").upper()
    return ref or None


def _signed(value: float, ref: Optional[str]) -> float:
    return -abs(value) if ref in _NEGATIVE_REFS else value


def _combine(parts: Sequence[Optional[float]]) -> Optional[float]:
    if len(parts) != 3 or any(p is None for p in parts):
        return None
    degrees, minutes, seconds = parts
    return degrees + minutes / 60.0 + seconds / 3600.0


def _decode_text(text: str) -> tuple[Optional[float], Optional[str]]:
    pieces = text.split(",")
    if len(pieces) == 3:
        return _combine([parse_fraction(p) for p in pieces]), None

    match = _DMS_TEXT_RE.match(text)
    if match is None:
        return None, None
    parts = [parse_fraction(match.group(k).replace(" ", "")) for k in ("deg", "min", "sec")]
    return _combine(parts), _normalise_ref(match.group("hemi"))


# --------------------------------------------------------------------------- #
# Public API                                                                  #
# --------------------------------------------------------------------------- #
def decode_dms(value: Any, hemisphere_ref: Any = None) -> Optional[float]:
    """
    Decode *value* into signed decimal degrees.

    ``S`` / ``W`` (any case) make the result negative. A hemisphere letter
    written inside free text is used only when *hemisphere_ref* is absent.
    """
    try:
        ref = _normalise_ref(hemisphere_ref)
        text_ref: Optional[str] = None

        match as_dms(value):
            case DmsNumber(value=number):
                result: Optional[float] = number if math.isfinite(number) else None
            case DmsTriple(parts=parts):
                result = _combine([parse_number(p) for p in parts])
            case DmsText(text=text):
                result, text_ref = _decode_text(text)
            case _:
                result = None

        if result is None or not math.isfinite(result):
            return None
        return _signed(result, ref or text_ref)
    except Exception as exc:  # pylint: disable=broad-except
        _log.debug("DMS decode failed for %r: %s", value, exc)
        return None


def validate(lat: Any, lon: Any) -> bool:
    """
    ``True`` for a usable fix: finite, within Earth bounds, not ``(0, 0)``.

    Several platform APIs report ``0.0, 0.0`` when they have no fix, so
    that exact pair is rejected.
    """
    for value in (lat, lon):
        if isinstance(value, bool) or not isinstance(value, numbers.Real):
            return False
        if not math.isfinite(value):
            return False
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0):
        return False
    return not (lat == 0.0 and lon == 0.0)


def altitude_with_ref(value: Any, ref: Any = None) -> Optional[float]:
    """Altitude in metres; a ref of ``1`` (below sea level) makes it negative."""
    altitude = parse_number(value)
    if altitude is None:
        return None

    if isinstance(ref, bytes):
        flag: Any = ref[0] if ref else None
    elif isinstance(ref, str):
        flag = parse_fraction(ref)
    else:
        flag = ref
    if not isinstance(flag, bool) and isinstance(flag, numbers.Real) and flag == 1:
        return -abs(altitude)
    return altitude


def build_metadata(latitude: Any, longitude: Any, **fields: Any) -> Optional[Metadata]:
    """Validated :class:`Metadata` or ``None``; extra *fields* pass straight through."""
    if not validate(latitude, longitude):
        return None
    try:
        return Metadata(latitude=float(latitude), longitude=float(longitude), **fields)
    except ValidationError as exc:
        _log.debug("Rejected metadata for (%s, %s): %s", latitude, longitude, exc)
        return None
