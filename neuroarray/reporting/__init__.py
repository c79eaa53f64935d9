"""
Result export.
"""

from .writer import ResultWriter, summarize

__all__ = ["ResultWriter", "summarize"]
