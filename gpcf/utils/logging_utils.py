"""Logging setup for command-line tools."""

from __future__ import annotations

import logging
import sys
from typing import Optional, Union

DEFAULT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def setup_logging(level: Union[int, str] = logging.INFO, fmt: Optional[str] = None) -> logging.Logger:
    """
    Attach a stream handler to the ``gpcf`` logger.

    Library modules only create loggers; scripts call this once at startup.
    Calling it again replaces the previous handler instead of adding another.

    Args:
        level: Logging level or its name ("DEBUG", "INFO", ...)
        fmt: Record format [DEFAULT_FORMAT]

    Returns:
        The configured ``gpcf`` logger
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown logging level: {level}")

    logger = logging.getLogger("gpcf")
    for handler in list(logger.handlers):
        if getattr(handler, "_gpcf_handler", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))
    handler._gpcf_handler = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger
