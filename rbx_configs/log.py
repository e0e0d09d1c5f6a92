"""Logging setup: stdlib loggers rendered through rich."""

from __future__ import annotations

import logging
import os

from rich.console import Console
from rich.logging import RichHandler

from rbx_configs.settings import ENV_LOG_LEVEL

LOGGER_NAME = "rbx_configs"


def configure_logging(verbose: bool = False, console: Console | None = None) -> logging.Logger:
    """Attach a RichHandler to the package logger.

    The level is DEBUG with ``verbose``, otherwise ``RBX_CONFIGS_LOG``
    (default INFO). Calling this twice replaces the handler.
    """
    level_name = "DEBUG" if verbose else os.environ.get(ENV_LOG_LEVEL, "INFO").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=verbose,
        show_time=verbose,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger
