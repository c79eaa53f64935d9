"""
Per-row linear models with empirical-Bayes moderated t-statistics.

Implements the limma workflow (lmFit -> contrasts.fit -> eBayes) on top of
numpy and scipy:

    1. Ordinary least squares of every row on the design matrix
    2. Contrast coefficient and its unscaled standard deviation
    3. Prior degrees of freedom d0 and prior variance s0^2 estimated from
       all row variances by the method of moments (fitFDist)
    4. Posterior variances s~^2 = (d0 s0^2 + df s^2) / (d0 + df) (squeezeVar)
    5. Moderated t = coef / (stdev_unscaled * s~) on d0 + df degrees of freedom

References:
    Smyth (2004) "Linear models and empirical Bayes methods for assessing
    differential expression in microarray experiments"
"""

import logging
import warnings
from typing import Tuple, Union

import numpy as np
import pandas as pd
from numpy.typing import NDArray
from scipy import stats
from scipy.special import digamma, polygamma
from statsmodels.nonparametric.smoothers_lowess import lowess

from ..containers import ContrastSpec, DesignMatrix, IntensityMatrix, ModelResult
from ..exceptions import IntegrityError
from .multiple_testing import adjust_pvalues

logger = logging.getLogger(__name__)


def trigamma_inverse(x: float, tol: float = 1e-8, max_iter: int = 50) -> float:
    """
    Solve trigamma(y) = x for y by Newton iteration on 1/trigamma(y).

    1/trigamma is convex and nearly linear, so the iteration started at
    y = 0.5 + 1/x converges monotonically.
    """
    if x <= 0:
        return np.inf
    if x > 1e7:
        return 1.0 / np.sqrt(x)
    if x < 1e-6:
        return 1.0 / x

    y = 0.5 + 1.0 / x
    for _ in range(max_iter):
        tri = polygamma(1, y)
        dif = tri * (1 - tri / x) / polygamma(2, y)
        y += dif
        if -dif / y < tol:
            break
    else:
        logger.warning("trigamma_inverse did not converge")
    return float(y)


def fit_f_dist(
    sigma2: NDArray[np.float64],
    df: Union[float, NDArray[np.float64]],
    covariate: Union[NDArray[np.float64], None] = None
) -> Tuple[float, Union[float, NDArray[np.float64]]]:
    """
    Estimate the scaled F prior (d0, s0^2) of row variances.

    Assumes s^2 ~ s0^2 * F(df, d0). Matches the mean and variance of
    log(s^2), corrected by digamma/trigamma of df/2. With a covariate the
    location of log(s^2) follows a lowess trend and s0^2 is per row.

    Args:
        sigma2: Positive, finite row variances
        df: Residual degrees of freedom (scalar or per row)
        covariate: Optional per-row covariate for a variance trend

    Returns:
        Tuple (d0, s0_sq); d0 is infinite when the variances are no more
        dispersed than sampling error alone explains
    """
    sigma2 = np.asarray(sigma2, dtype=float)
    df = np.broadcast_to(np.asarray(df, dtype=float), sigma2.shape)
    n = len(sigma2)

    if n == 0:
        return np.inf, np.nan
    if n < 3:
        return np.inf, float(np.median(sigma2))

    e = np.log(sigma2) - digamma(df / 2) + np.log(df / 2)

    if covariate is None:
        center = np.full(n, np.mean(e))
        evar = np.sum((e - center) ** 2) / (n - 1)
    else:
        center = lowess(e, covariate, frac=0.5, return_sorted=False)
        evar = np.sum((e - center) ** 2) / (n - 2)

    evar -= np.mean(polygamma(1, df / 2))

    if evar > 0:
        d0 = 2 * trigamma_inverse(evar)
        s0_sq = np.exp(center + digamma(d0 / 2) - np.log(d0 / 2))
    else:
        d0 = np.inf
        s0_sq = np.exp(center)

    if covariate is None:
        s0_sq = float(s0_sq[0])
    return float(d0), s0_sq


def squeeze_var(
    sigma2: NDArray[np.float64],
    df: NDArray[np.float64],
    d0: float,
    s0_sq: Union[float, NDArray[np.float64]]
) -> NDArray[np.float64]:
    """
    Posterior variances shrunk towards the prior.

    An infinite d0 means full shrinkage: every row gets the prior variance.
    """
    if np.isinf(d0):
        return np.broadcast_to(np.asarray(s0_sq, dtype=float), sigma2.shape).copy()
    return (d0 * s0_sq + df * sigma2) / (d0 + df)


class DifferentialModel:
    """
    Fit per-row linear models and test one contrast with moderated t-statistics.

    The design row order must equal the matrix column order; a mismatch
    raises IntegrityError rather than producing misattributed statistics.
    """

    def __init__(self, trend: bool = False, adjust_method: str = "BH"):
        """
        Initialize model.

        Args:
            trend: Let the prior variance follow a trend on average expression
            adjust_method: Multiple testing correction for adj.P.Val
        """
        self.trend = trend
        self.adjust_method = adjust_method

    def fit(
        self,
        matrix: IntensityMatrix,
        design: DesignMatrix,
        contrast: ContrastSpec
    ) -> ModelResult:
        """
        Fit the model and compute moderated statistics for the contrast.

        Args:
            matrix: Normalized IntensityMatrix (log2 or M-value scale)
            design: DesignMatrix with rows in matrix column order
            contrast: ContrastSpec over the design columns

        Returns:
            ModelResult with one row per matrix row, in matrix row order
        """
        self._check_alignment(matrix, design)

        Y = matrix.values.to_numpy(dtype=float)
        X = design.matrix.to_numpy(dtype=float)
        c = contrast.vector(design)

        logger.info(
            f"Fitting linear models: {Y.shape[0]} rows x {Y.shape[1]} samples, "
            f"contrast {contrast.name}"
        )

        coef, stdev_unscaled, sigma2, df_residual = self._fit_rows(Y, X, c)

        # Rows that are constant across samples carry no information
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", RuntimeWarning)
            constant = np.nanmax(Y, axis=1) == np.nanmin(Y, axis=1)
            amean = np.nanmean(Y, axis=1)
            group_means = {
                level: np.nanmean(Y[:, design.matrix[level].to_numpy() == 1], axis=1)
                for level in design.levels
            }
        untestable = ~np.isfinite(coef) | ~(df_residual > 0) | constant
        coef[untestable] = np.nan
        sigma2[untestable] = np.nan
        if untestable.any():
            logger.warning(
                f"{int(untestable.sum())} rows are untestable (too few observations "
                f"or zero variance); their statistics are NaN"
            )

        t, p_value, d0, s0_sq = self._moderate(coef, stdev_unscaled, sigma2, df_residual, amean)
        adjusted = adjust_pvalues(p_value, method=self.adjust_method)

        table = pd.DataFrame(
            {
                "logFC": coef,
                "AveExpr": amean,
                "t": t,
                "P.Value": p_value,
                "adj.P.Val": adjusted,
            },
            index=matrix.values.index,
        )
        for level, means in group_means.items():
            table[f"mean_{level}"] = means
        table.index.name = "probe_id"

        prior_var = float(np.nanmedian(s0_sq)) if np.ndim(s0_sq) else float(s0_sq)
        logger.info(
            f"Empirical Bayes prior: d0={d0:.3g}, s0^2={prior_var:.3g}; "
            f"{int(np.sum(adjusted <= 0.05))} rows at adj.P.Val <= 0.05"
        )

        return ModelResult(
            table=table,
            contrast=contrast.name,
            prior_df=d0,
            prior_var=prior_var,
            df_residual=float(np.nanmedian(df_residual)) if len(df_residual) else np.nan,
            metadata={"scale": matrix.scale, "adjust_method": self.adjust_method},
        )

    @staticmethod
    def _check_alignment(matrix: IntensityMatrix, design: DesignMatrix) -> None:
        matrix_samples = matrix.sample_ids
        design_samples = design.sample_ids
        if len(matrix_samples) != len(design_samples):
            raise IntegrityError(
                f"Design has {len(design_samples)} rows but the matrix has "
                f"{len(matrix_samples)} samples"
            )
        misaligned = [
            (m, d) for m, d in zip(matrix_samples, design_samples) if m != d
        ]
        if misaligned:
            first_matrix, first_design = misaligned[0]
            raise IntegrityError(
                f"Design rows are not in matrix column order: matrix sample "
                f"'{first_matrix}' faces design row '{first_design}' "
                f"({len(misaligned)} positions differ)"
            )

    @staticmethod
    def _fit_rows(Y: np.ndarray, X: np.ndarray, c: np.ndarray):
        """
        Ordinary least squares of every row on X.

        Complete rows share one pseudo-inverse; rows with missing values are
        refit on their observed samples. A contrast that touches a level
        with no observed samples is not estimable and yields NaN.
        """
        n_rows, n_samples = Y.shape
        coef = np.full(n_rows, np.nan)
        stdev_unscaled = np.full(n_rows, np.nan)
        sigma2 = np.full(n_rows, np.nan)
        df_residual = np.zeros(n_rows)

        observed = np.isfinite(Y)
        complete = observed.all(axis=1)

        if complete.any():
            rank = np.linalg.matrix_rank(X)
            pinv = np.linalg.pinv(X)
            cov_unscaled = pinv @ pinv.T
            Yc = Y[complete]
            B = Yc @ pinv.T
            residuals = Yc - B @ X.T
            df = n_samples - rank
            coef[complete] = B @ c
            stdev_unscaled[complete] = np.sqrt(c @ cov_unscaled @ c)
            df_residual[complete] = df
            if df > 0:
                sigma2[complete] = np.sum(residuals ** 2, axis=1) / df

        for i in np.flatnonzero(~complete):
            obs = observed[i]
            Xo = X[obs]
            needed = c != 0
            if not np.all(Xo[:, needed].any(axis=0)):
                continue
            rank = np.linalg.matrix_rank(Xo) if obs.any() else 0
            df = int(obs.sum()) - rank
            if df <= 0:
                continue
            pinv = np.linalg.pinv(Xo)
            b = pinv @ Y[i, obs]
            residuals = Y[i, obs] - Xo @ b
            coef[i] = b @ c
            stdev_unscaled[i] = np.sqrt(c @ (pinv @ pinv.T) @ c)
            sigma2[i] = np.sum(residuals ** 2) / df
            df_residual[i] = df

        return coef, stdev_unscaled, sigma2, df_residual

    def _moderate(self, coef, stdev_unscaled, sigma2, df_residual, amean):
        """Empirical-Bayes moderation of the row variances."""
        testable = np.isfinite(coef) & np.isfinite(sigma2)
        estimable = testable & (sigma2 > 0)

        covariate = amean[estimable] if self.trend else None
        d0, s0_est = fit_f_dist(sigma2[estimable], df_residual[estimable], covariate)

        if self.trend and np.ndim(s0_est):
            # Prior variance for every testable row from the fitted trend
            order = np.argsort(amean[estimable])
            s0_sq = np.interp(amean, amean[estimable][order], np.asarray(s0_est)[order])
        else:
            s0_sq = np.full(len(coef), s0_est)

        s2_post = np.full(len(coef), np.nan)
        s2_post[testable] = squeeze_var(
            sigma2[testable], df_residual[testable], d0, s0_sq[testable]
        )

        df_pooled = np.sum(df_residual[testable])
        df_total = np.minimum(d0 + df_residual, df_pooled)

        t = np.full(len(coef), np.nan)
        p_value = np.full(len(coef), np.nan)
        with np.errstate(invalid="ignore", divide="ignore"):
            t[testable] = coef[testable] / (stdev_unscaled[testable] * np.sqrt(s2_post[testable]))
            p_value[testable] = 2 * stats.t.sf(np.abs(t[testable]), df_total[testable])

        if not np.isfinite(d0):
            logger.info("Row variances show no excess dispersion; full shrinkage to the prior")
        return t, p_value, d0, s0_sq[testable] if testable.any() else np.nan
