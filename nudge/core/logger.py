"""Logging setup for Nudge.

Messages are written as ``[TAG] text`` (``[STRAVA]``, ``[SYNC]``, ...). A
patcher moves the tag into ``extra["component"]`` so both sinks show it as its
own column; untagged messages fall back to the emitting module's name.
"""

from __future__ import annotations

import re
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from loguru import logger

if TYPE_CHECKING:
    from nudge.config.settings import Settings

_TAG = re.compile(r"^\[([A-Z]+)\]\s*")

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<magenta>{extra[component]: <8}</magenta> | <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[component]: <8} | {name}:{function}:{line} - {message}"


def tag_component(record: dict[str, Any]) -> None:
    """Split a leading ``[TAG]`` off the message into ``extra["component"]``."""
    match = _TAG.match(record["message"])
    if match:
        record["extra"]["component"] = match.group(1).lower()
        record["message"] = record["message"][match.end() :]
    else:
        record["extra"].setdefault("component", (record["name"] or "nudge").rsplit(".", 1)[-1])


def setup_logger(config: Settings, *, debug: bool = False) -> None:
    """Configure the console sink and, when ``config.log_file`` is set, a rotating file sink.

    Args:
        config: Source of the level, log file, rotation and retention
        debug: Force DEBUG regardless of ``config.log_level``
    """
    level = "DEBUG" if debug else config.log_level

    logger.remove()
    logger.configure(patcher=tag_component)

    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level, colorize=True)

    if config.log_file:
        log_path = Path(config.log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path,
            format=FILE_FORMAT,
            level=level,
            rotation=config.log_rotation,
            retention=config.log_retention,
            compression="zip",
            backtrace=True,
            diagnose=debug,
        )

    logger.debug(f"[LOGGING] Logger initialized with level={level}, file={config.log_file or '-'}")
