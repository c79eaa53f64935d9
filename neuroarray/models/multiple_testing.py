"""
Multiple-testing correction and significance calls.
"""

import logging

import numpy as np
import pandas as pd
from numpy.typing import ArrayLike
from statsmodels.stats.multitest import multipletests

from ..containers import ModelResult
from ..exceptions import ConfigError

logger = logging.getLogger(__name__)

METHOD_MAP = {
    "BH": "fdr_bh",
    "BY": "fdr_by",
    "bonferroni": "bonferroni",
    "holm": "holm",
}


def adjust_pvalues(pvalues: ArrayLike, method: str = "BH") -> np.ndarray:
    """
    Apply multiple testing correction.

    NaN p-values are left as NaN and do not count towards the number of
    tests.

    Args:
        pvalues: Raw p-values
        method: Correction method:
            - "BH": Benjamini-Hochberg (controls FDR)
            - "BY": Benjamini-Yekutieli (controls FDR under dependence)
            - "bonferroni" / "holm": control FWER
            - "none": no adjustment

    Returns:
        Array of adjusted p-values in the input order
    """
    pvalues = np.asarray(pvalues, dtype=float)
    if method == "none":
        return pvalues.copy()
    if method not in METHOD_MAP:
        raise ConfigError(f"Unknown p-value adjustment '{method}', expected one of {sorted(METHOD_MAP)} or 'none'")

    adjusted = np.full_like(pvalues, np.nan)
    valid = np.isfinite(pvalues)
    if not np.any(valid):
        return adjusted

    _, adjusted[valid], _, _ = multipletests(pvalues[valid], method=METHOD_MAP[method])
    return adjusted


def decide_tests(
    result: ModelResult,
    p_value: float = 0.05,
    lfc: float = 0.0
) -> pd.Series:
    """
    Classify rows as up (1), down (-1) or not significant (0).

    A row is significant when its adjusted p-value is at most p_value and
    its absolute log-fold-change is at least lfc.
    """
    table = result.table
    significant = (table["adj.P.Val"] <= p_value) & (table["logFC"].abs() >= lfc)
    calls = np.sign(table["logFC"]).where(significant, 0).fillna(0).astype(int)
    return calls.rename("call")
