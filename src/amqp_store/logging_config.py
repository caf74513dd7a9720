"""
Logging configuration for amqp_store command line tools.

The library itself only creates module loggers; applications embedding the
store configure logging however they like. The CLI calls ``setup_logging``.
"""

import logging
import sys
from typing import Optional, Union

from amqp_store.constants import LOGGER_NAME


def setup_logging(
    level: Union[int, str] = logging.INFO,
    component: Optional[str] = None,
    force_setup: bool = False,
) -> None:
    """
    Setup console logging.

    Args:
        level: Logging level, as an int or a level name such as "DEBUG"
        component: Optional name prefixed to every record (e.g. 'consume')
        force_setup: Whether to replace handlers that are already installed
    """
    if isinstance(level, str):
        level_name = level
        level = logging.getLevelName(level_name.upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {level_name}")

    root_logger = logging.getLogger()
    if root_logger.handlers and not force_setup:
        # Logging already configured, just ensure our level is set
        logging.getLogger(LOGGER_NAME).setLevel(level)
        return

    if force_setup:
        root_logger.handlers.clear()

    _setup_console_logging(component)
    root_logger.setLevel(level)

    # AMQPStorm logs every frame-level event at INFO
    logging.getLogger("amqpstorm").setLevel(logging.WARNING)
    logging.getLogger(LOGGER_NAME).setLevel(level)


def create_formatter(component: Optional[str] = None) -> logging.Formatter:
    """
    Create the standard formatter.

    Args:
        component: Name of the component for log identification
    """
    prefix = f"[{component}] " if component else ""
    return logging.Formatter(
        f"%(asctime)s - {prefix}%(name)s - %(levelname)s - %(message)s"
    )


def _setup_console_logging(component: Optional[str] = None) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(create_formatter(component))
    logging.getLogger().addHandler(handler)
