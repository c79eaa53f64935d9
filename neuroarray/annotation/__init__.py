"""
Probe annotation loading and joining.
"""

from .annotator import AnnotationPolicy, Annotator
from .loader import AnnotationLoader, first_symbol

__all__ = ["AnnotationLoader", "AnnotationPolicy", "Annotator", "first_symbol"]
