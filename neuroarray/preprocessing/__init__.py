"""
Preprocessing modules for array intensity data.
"""

from .normalization import (
    ExpressionNormalizer,
    MethylationNormalizer,
    NormalizedMethylation,
    background_correct,
    beta_to_m,
    distribution_spread,
    m_to_beta,
    median_polish,
    quantile_normalize,
    summarize,
)
from .quality import QualityFilter, QualityReport

__all__ = [
    "ExpressionNormalizer",
    "MethylationNormalizer",
    "NormalizedMethylation",
    "QualityFilter",
    "QualityReport",
    "background_correct",
    "beta_to_m",
    "distribution_spread",
    "m_to_beta",
    "median_polish",
    "quantile_normalize",
    "summarize",
]
