"""
Exception hierarchy for the differential analysis pipeline.

All errors are fatal for a run: they are raised with the offending
sample or probe identifiers and never retried.
"""

from typing import Iterable


class NeuroArrayError(Exception):
    """Base exception for pipeline failures."""

    pass


class ParseError(NeuroArrayError, ValueError):
    """Malformed or missing input file, or sample/file identifier mismatch."""

    pass


class ConfigError(NeuroArrayError, ValueError):
    """Unusable configuration, e.g. a grouping covariate with too few levels."""

    pass


class IntegrityError(NeuroArrayError):
    """Join keys or sample order do not line up between two tables."""

    pass


def format_ids(ids: Iterable[str], limit: int = 5) -> str:
    """Render identifiers for an error message: the first few plus the total."""
    ids = [str(i) for i in ids]
    shown = ", ".join(ids[:limit])
    if len(ids) > limit:
        return f"{shown}, ... ({len(ids)} total)"
    return shown
