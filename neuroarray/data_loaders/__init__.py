"""
Data loading modules for differential array analysis.

This module provides data loaders that can handle:
- Per-sample raw tables and single-matrix raw files
- Expression intensities and methylation channel intensities
- Sample metadata with different column naming conventions
"""

from .base import DataLoader
from .metadata import MetadataLoader
from .raw_arrays import RawArrayLoader

__all__ = ["DataLoader", "MetadataLoader", "RawArrayLoader"]
