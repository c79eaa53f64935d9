"""Utility functions for the differential analysis pipeline."""

from .config import Config, load_config
from .logging_utils import set_verbosity, setup_logger

__all__ = ["Config", "load_config", "set_verbosity", "setup_logger"]
