"""
Central logging configuration for calendarsync.

Installs a colorized console handler and keeps chatty third-party libraries
at WARNING so sync summaries stay readable.
"""

import logging
import os
import sys
from typing import Optional

from colorlog import ColoredFormatter

LOG_FORMAT = "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"
LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "bold_red",
}

NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite", "asyncio")

_VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _env_debug() -> bool:
    return os.getenv("CALSYNC_DEBUG", "").strip().lower() in ("1", "true", "yes", "on")


def configure_logging(
    debug_mode: bool = False,
    level_name: Optional[str] = None,
    force_debug: Optional[bool] = None,
) -> int:
    """
    Configure the root logger and calendarsync module loggers.

    A colorized stream handler is only added when the root logger has none,
    so embedding applications keep their own handlers.

    Args:
        debug_mode: Enable DEBUG for calendarsync modules
        level_name: Root level name; CALSYNC_LOG_LEVEL takes precedence
        force_debug: Override debug detection (None to honour CALSYNC_DEBUG)

    Environment Variables:
        CALSYNC_DEBUG: '1', 'true', 'yes' or 'on' forces debug logging
        CALSYNC_LOG_LEVEL: Root log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Returns:
        The effective root level
    """
    if force_debug is not None:
        final_debug = force_debug
    else:
        final_debug = debug_mode or _env_debug()

    root_level = logging.DEBUG if final_debug else logging.INFO
    requested = (os.getenv("CALSYNC_LOG_LEVEL") or level_name or "").strip().upper()
    if requested in _VALID_LEVELS:
        root_level = getattr(logging, requested)
    elif requested:
        logging.getLogger(__name__).warning("Unknown log level %r; using default", requested)

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)

    if not root_logger.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        handler.setFormatter(
            ColoredFormatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT, log_colors=LOG_COLORS)
        )
        root_logger.addHandler(handler)

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    logging.getLogger("calendarsync").setLevel(logging.DEBUG if final_debug else root_level)

    logging.getLogger(__name__).debug(
        "Logging configured (root=%s, debug=%s)", logging.getLevelName(root_level), final_debug
    )
    return root_level


def get_logging_status() -> dict[str, str]:
    """
    Get current logging configuration status.

    Returns:
        Dictionary mapping logger names to their current levels
    """
    status = {"root": logging.getLevelName(logging.getLogger().level)}

    for logger_name in ("calendarsync", *NOISY_LOGGERS):
        status[logger_name] = logging.getLevelName(logging.getLogger(logger_name).level)

    return status
