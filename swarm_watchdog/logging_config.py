"""Unified logging configuration for the swarm watchdog.

The watchdog log file is the supervisor's only observability surface: every
decision and every failed external call ends up there with a timestamp.

Usage:
    from swarm_watchdog.logging_config import setup_logging

    logger = setup_logging("swarm_watchdog", log_file="/root/gensyn_watchdog.log")
    logger.info("Watchdog started")

    # In other modules; records reach the package logger's handlers
    logger = logging.getLogger(__name__)
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Iterable

__all__ = [
    "COMPACT_FORMAT",
    "DATE_FORMAT",
    "DEFAULT_FORMAT",
    "DETAILED_FORMAT",
    "FORMAT_STYLES",
    "STRUCTURED_FORMAT",
    "configure_third_party_loggers",
    "setup_logging",
]

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
COMPACT_FORMAT = "%(asctime)s %(levelname).1s %(message)s"
DETAILED_FORMAT = (
    "%(asctime)s [%(levelname)s] %(name)s (%(filename)s:%(lineno)d): %(message)s"
)
STRUCTURED_FORMAT = (
    '{"ts": "%(asctime)s", "level": "%(levelname)s", '
    '"logger": "%(name)s", "message": "%(message)s"}'
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_FORMATS = {
    "default": DEFAULT_FORMAT,
    "compact": COMPACT_FORMAT,
    "detailed": DETAILED_FORMAT,
    "structured": STRUCTURED_FORMAT,
}
FORMAT_STYLES = tuple(_FORMATS)

# Packages that log connection chatter at INFO/DEBUG on every status poll
NOISY_PACKAGES = ("urllib3", "requests", "charset_normalizer")


def _resolve_level(level: int | str) -> int:
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        return resolved if isinstance(resolved, int) else logging.INFO
    return level


def setup_logging(
    name: str,
    level: int | str = logging.INFO,
    log_file: str | Path | None = None,
    console: bool = True,
    format_style: str = "default",
    propagate: bool = False,
) -> logging.Logger:
    """Configure and return a named logger.

    Calling this twice for the same name does not add duplicate handlers.

    Args:
        name: Logger name (usually the package name)
        level: Level as int or name ("DEBUG", "INFO", ...)
        log_file: Append log records to this file
        console: Also log to stderr
        format_style: One of FORMAT_STYLES; applies to handlers added by this call
        propagate: Whether records propagate to the root logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(_resolve_level(level))
    logger.propagate = propagate

    fmt = _FORMATS.get(format_style, DEFAULT_FORMAT)
    formatter = logging.Formatter(fmt, datefmt=DATE_FORMAT)

    if console and not any(
        type(h) is logging.StreamHandler for h in logger.handlers
    ):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    if log_file:
        target = Path(log_file).expanduser().resolve()
        already = any(
            isinstance(h, logging.FileHandler) and Path(h.baseFilename) == target
            for h in logger.handlers
        )
        if not already:
            target.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(target, mode="a", encoding="utf-8")
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    return logger


def configure_third_party_loggers(
    quiet: bool = True,
    verbose_packages: Iterable[str] | None = None,
) -> None:
    """Set noisy third-party loggers to WARNING unless listed as verbose."""
    if not quiet:
        return
    keep = set(verbose_packages or ())
    for package in NOISY_PACKAGES:
        if package in keep:
            continue
        logging.getLogger(package).setLevel(logging.WARNING)
