"""
photo_geotag.config
~~~~~~~~~~~~~~~~~~~

Typed resolver settings + a loader that merges defaults with an optional
**YAML** file.

Typical usage
-------------
>>> from photo_geotag.config import load_config
>>> cfg = load_config()                  # ~/.config/photo_geotag/config.yaml
>>> cfg.chunk_size, cfg.snapshot_ttl
(10, 300.0)

Example file::

    index_db: ~/.local/share/photo_geotag/index.sqlite
    library_roots:
      - ~/Pictures/Camera
    log_level: DEBUG
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from photo_geotag.utils.timestamps import TIMESTAMP_FLOOR_MS

__all__ = ["ResolverSettings", "load_config", "DEFAULT_CONFIG_PATH"]

DEFAULT_CONFIG_PATH = Path("~/.config/photo_geotag/config.yaml")


class ResolverSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    # --- Batch ----------------------------------------------------------- #
    chunk_size: int = Field(10, gt=0, description="References resolved concurrently per chunk")

    # --- Library window -------------------------------------------------- #
    snapshot_ttl: float = Field(300.0, gt=0, description="Seconds a library page stays fresh")
    page_size: int = Field(100, gt=0, description="Max records per library query")
    lookback_days: float = Field(1.0, ge=0, description="Window start before the estimated time")
    default_window_days: float = Field(30.0, gt=0, description="Window when no time is estimated")
    timestamp_floor: int = Field(
        TIMESTAMP_FLOOR_MS, description="Epoch ms; embedded numbers below this are ignored"
    )

    # --- Collaborators --------------------------------------------------- #
    native_batch: bool = Field(True, description="Use the index batch call in resolve_batch")
    index_db: Optional[Path] = Field(None, description="SQLite media index, disabled when unset")
    library_roots: tuple[Path, ...] = Field((), description="Folders the library query scans")

    # --- Logging --------------------------------------------------------- #
    log_level: str = Field("INFO", description="DEBUG, INFO, WARNING, ...")
    log_file: Optional[Path] = None

    @field_validator("index_db", "log_file", mode="before")
    @classmethod
    def _expand_path(cls, v: Path | str | None) -> Path | None:
        return Path(v).expanduser() if v else None

    @field_validator("library_roots", mode="before")
    @classmethod
    def _expand_roots(cls, v: Any) -> tuple[Path, ...]:
        if v is None:
            return ()
        if isinstance(v, (str, os.PathLike)):
            v = [v]
        return tuple(Path(p).expanduser() for p in v)

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        return v.upper()


def load_config(path: str | os.PathLike | None = None) -> ResolverSettings:
    """
    Load settings from *path* (YAML). Missing keys fall back to defaults.

    With *path* ``None`` the default location is tried and silently skipped
    when absent.

    Raises
    ------
    FileNotFoundError
        When *path* is given explicitly but does not exist.
    yaml.YAMLError
        When the file cannot be parsed.
    pydantic.ValidationError
        When a value is out of range.
    """
    if path is None:
        path = DEFAULT_CONFIG_PATH.expanduser()
        if not path.exists():
            return ResolverSettings()

    yaml_path = Path(path).expanduser()
    if not yaml_path.exists():
        raise FileNotFoundError(yaml_path)

    with yaml_path.open("r") as fh:
        data: Mapping[str, Any] = yaml.safe_load(fh) or {}

    return ResolverSettings(**data)
