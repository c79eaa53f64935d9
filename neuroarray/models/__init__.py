"""
Statistical models for differential analysis.
"""

from .design import DesignBuilder
from .linear_model import DifferentialModel, fit_f_dist, squeeze_var, trigamma_inverse
from .multiple_testing import adjust_pvalues, decide_tests

__all__ = [
    "DesignBuilder",
    "DifferentialModel",
    "adjust_pvalues",
    "decide_tests",
    "fit_f_dist",
    "squeeze_var",
    "trigamma_inverse",
]
