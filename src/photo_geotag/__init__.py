"""
photo_geotag
~~~~~~~~~~~~

Public façade for the geotag resolver.

* Exposes :class:`GeotagResolver` / :func:`build_resolver` (best-effort GPS
  discovery for image references) and **get_logger** (Rich-enabled helper)
  at the top level:

      >>> import asyncio
      >>> from photo_geotag import build_resolver, load_config
      >>> resolver = build_resolver(load_config())
      >>> asyncio.run(resolver.resolve_batch(["a.jpg", "b.jpg"]))
      [Metadata(latitude=..., ...), None]

* Provides ``__version__`` (falls back to "0.0.0" when run from source).
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version as _pkg_version

try:
    __version__: str = _pkg_version("photo-geotag")
except PackageNotFoundError:  # e.g. running from a git checkout
    __version__ = "0.0.0"

from .config import ResolverSettings, load_config  # noqa: E402
from .resolver import GeotagResolver, build_resolver  # noqa: E402
from .types import CacheStats, Metadata  # noqa: E402
from .utils.logging import get_logger  # noqa: E402

__all__ = [
    "GeotagResolver",
    "build_resolver",
    "ResolverSettings",
    "load_config",
    "Metadata",
    "CacheStats",
    "get_logger",
    "__version__",
]
