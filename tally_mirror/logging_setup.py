"""
Logging configuration.
"""
from __future__ import annotations
import sys
from typing import Optional
from loguru import logger
from .config import MirrorConfig


def configure_logging(config: Optional[MirrorConfig] = None, verbose: bool = False):
    """Install stderr and optional file sinks on the loguru logger."""
    config = config or MirrorConfig.from_env()
    level = "DEBUG" if verbose else config.log_level.upper()

    logger.remove()
    logger.add(sys.stderr, level=level)

    if config.log_file:
        logger.add(
            config.log_file,
            level="DEBUG",
            rotation="10 MB",
            retention="14 days",
            enqueue=True,
        )
        logger.debug(f"Logging to {config.log_file}")
