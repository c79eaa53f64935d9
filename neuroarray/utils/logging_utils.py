"""
Logging utilities for the differential analysis pipeline.

Every module logs through ``logging.getLogger(__name__)``; configuring the
``neuroarray`` logger here therefore captures all stages of a run.
"""

import logging
import sys
from pathlib import Path
from typing import List, Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _build_handlers(log_file: Optional[str], console: bool) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    if console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))
    return handlers


def setup_logger(
    name: str = "neuroarray",
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    console: bool = True
) -> logging.Logger:
    """
    Attach console and optional file output to the pipeline logger.

    Calling this again replaces (and closes) the handlers of the previous
    call, so repeated runs in one process do not duplicate output.

    Args:
        name: Logger name
        level: Logging level (default: INFO)
        log_file: Optional path to log file; parent directories are created
        console: Whether to write to stdout

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in _build_handlers(log_file, console):
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def set_verbosity(verbose: bool, name: str = "neuroarray") -> None:
    """Switch the pipeline logger and its handlers between INFO and DEBUG."""
    level = logging.DEBUG if verbose else logging.INFO
    logger = logging.getLogger(name)
    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)
