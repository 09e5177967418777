"""
photo_geotag.utils.logging
~~~~~~~~~~~~~~~~~~~~~~~~~~

Logging setup shared by the resolver, the probes and the CLI:

* Rich console output when `rich` is importable, plain text otherwise.
* Optional daily-rotating log file (a week of history).
* Configured once; later ``get_logger()`` calls only fetch loggers.
* Pillow's EXIF parser is chatty at DEBUG, so its loggers are capped at
  WARNING unless asked otherwise.

Example
-------
>>> from photo_geotag.utils.logging import get_logger
>>> log = get_logger(__name__, level="DEBUG", log_file="logs/geotag.log")
>>> log.debug("probe index missed %s", "IMG_0001.jpg")
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional, Union

try:
    from rich.logging import RichHandler
except ImportError:  # pragma: no cover
    RichHandler = None  # type: ignore

__all__ = ["get_logger", "resolve_level"]

_LOG_CONFIGURED = False
_DEFAULT_LEVEL = logging.INFO
_QUIET_LOGGERS = ("PIL", "PIL.TiffImagePlugin", "PIL.Image", "geopy", "urllib3")

LevelLike = Union[int, str]


def resolve_level(level: LevelLike) -> int:
    """Accept ``logging.DEBUG`` as well as ``"debug"`` / ``"DEBUG"``."""
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).upper())
    return value if isinstance(value, int) else _DEFAULT_LEVEL


def _configure_root(level: int, log_file: Optional[Path]) -> None:
    global _LOG_CONFIGURED
    if _LOG_CONFIGURED:
        return

    handlers: list[logging.Handler] = []

    if RichHandler is not None:
        handlers.append(
            RichHandler(
                level=level,
                show_time=True,
                show_level=True,
                show_path=False,
                rich_tracebacks=True,
            )
        )
    else:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setLevel(level)
        stream_handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s | %(levelname)-8s | %(name)s: %(message)s",
                datefmt="%H:%M:%S",
            )
        )
        handlers.append(stream_handler)

    if log_file:
        log_file = Path(log_file).expanduser().resolve()
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.TimedRotatingFileHandler(
            filename=str(log_file),
            when="midnight",
            backupCount=7,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s | %(levelname)-8s | "
                "%(name)s (%(funcName)s:%(lineno)d): %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        handlers.append(file_handler)

    logging.basicConfig(level=level, handlers=handlers)
    for noisy in _QUIET_LOGGERS:
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))
    _LOG_CONFIGURED = True


def get_logger(
    name: str | None = None,
    *,
    level: LevelLike = _DEFAULT_LEVEL,
    log_file: str | Path | None = None,
) -> logging.Logger:
    """
    Return a logger, configuring the root handlers on first use.

    Parameters
    ----------
    name:
        Usually ``__name__`` of the caller. ``None`` returns the root logger.
    level:
        Threshold for the handlers installed on first use; also applied to
        the returned logger.
    log_file:
        Optional path of a rotating log file.
    """
    numeric = resolve_level(level)
    _configure_root(level=numeric, log_file=Path(log_file) if log_file else None)
    logger = logging.getLogger(name)
    logger.setLevel(numeric)
    return logger
