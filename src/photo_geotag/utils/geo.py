"""
photo_geotag.utils.geo
~~~~~~~~~~~~~~~~~~~~~~

Turn a resolved fix into a short place string ("Cusco, Peru") for display
with **geopy** / OpenStreetMap-Nominatim.

* Coordinates are rounded to 3 decimals (~100 m) before lookup so photos
  taken a few steps apart share one **LRU cache** entry.
* Any network error, rate-limit or empty answer yields ``None``; the GPS
  fix itself is never affected.

Nominatim allows about one request per second. The CLI only calls this
for ``geotag resolve --place``, once per fixed image.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

from geopy.exc import GeopyError
from geopy.geocoders import Nominatim

from photo_geotag.types import Metadata

__all__ = ["reverse_geocode", "place_name"]

_log = logging.getLogger(__name__)

_GEOCODER = Nominatim(user_agent="photo-geotag/0.1", timeout=5)


@lru_cache(maxsize=4_096)
def _lookup(lat: float, lon: float, language: str) -> Optional[str]:
    try:
        loc = _GEOCODER.reverse(
            (lat, lon),
            language=language,
            exactly_one=True,
            addressdetails=True,
            zoom=10,  # city / park
        )
    except (GeopyError, OSError, ValueError) as exc:
        _log.debug("Reverse-geocode failed for (%s, %s): %s", lat, lon, exc)
        return None

    if loc is None:
        return None

    addr = loc.raw.get("address", {}) if isinstance(loc.raw, dict) else {}
    city = addr.get("city") or addr.get("town") or addr.get("village") or ""
    country = addr.get("country", "")
    return ", ".join(filter(None, [city or addr.get("state", ""), country])) or loc.address


def reverse_geocode(lat: float, lon: float, language: str = "en") -> Optional[str]:
    """``"City, Country"`` for *lat, lon*, or ``None`` when unavailable."""
    return _lookup(round(lat, 3), round(lon, 3), language)


def place_name(metadata: Optional[Metadata], language: str = "en") -> Optional[str]:
    if metadata is None:
        return None
    return reverse_geocode(metadata.latitude, metadata.longitude, language)
