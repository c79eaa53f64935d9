"""
Background correction, quantile normalization and summarization.

The expression path follows RMA: convolution background correction,
quantile normalization on the intensity scale, log2 transform, and
median-polish summarization of probes into features. The methylation path
normalizes the methylated and unmethylated channels separately and derives
beta and M-values from them.
"""

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd
from scipy.stats import gaussian_kde, norm, rankdata

from ..containers import IntensityMatrix, RawArrayData
from ..exceptions import ConfigError

logger = logging.getLogger(__name__)

# Intensities below this are floored before the log2 transform
LOG_FLOOR = 1.0
BETA_EPSILON = 1e-6
# Subsample size for the background density estimate
DENSITY_SAMPLE_SIZE = 50_000


def _density_mode(x: np.ndarray, random_state: int = 0) -> float:
    """Location of the maximum of a Gaussian kernel density estimate."""
    x = x[np.isfinite(x)]
    if len(x) == 0:
        return np.nan
    if len(np.unique(x)) < 2:
        return float(x[0])
    if len(x) > DENSITY_SAMPLE_SIZE:
        rng = np.random.default_rng(random_state)
        x = rng.choice(x, size=DENSITY_SAMPLE_SIZE, replace=False)

    kde = gaussian_kde(x)
    grid = np.linspace(x.min(), x.max(), 512)
    return float(grid[np.argmax(kde(grid))])


def rma_background_parameters(x: np.ndarray):
    """
    Estimate (mu, sigma, alpha) of the normal + exponential convolution model.

    mu and sigma describe the normal background around the density mode;
    alpha is the rate of the exponential signal above it.
    """
    x = x[np.isfinite(x)]
    mode = _density_mode(x)
    below = x[x < mode]
    if len(below) > 1:
        mode = _density_mode(below)
        below = x[x < mode]

    if len(below) > 1:
        sigma = np.sqrt(np.sum((below - mode) ** 2) / (len(below) - 1)) * np.sqrt(2)
    else:
        sigma = np.nan

    above = x[x > mode] - mode
    exp_mean = _density_mode(above) if len(above) > 1 else np.nan
    alpha = 1.0 / exp_mean if exp_mean and np.isfinite(exp_mean) and exp_mean > 0 else np.nan

    return mode, sigma, alpha


def background_correct(values: pd.DataFrame) -> pd.DataFrame:
    """
    RMA convolution background correction, one sample at a time.

    Each observed intensity is replaced by the conditional expectation of
    its signal given the normal + exponential model, which is strictly
    positive. Samples whose model cannot be estimated are left unchanged.

    Args:
        values: Raw intensities (probes x samples)

    Returns:
        Background-corrected intensities with the same labels
    """
    corrected = values.astype(float).copy()

    for sample in values.columns:
        x = values[sample].to_numpy(dtype=float)
        mu, sigma, alpha = rma_background_parameters(x)

        if not (np.isfinite(sigma) and sigma > 0 and np.isfinite(alpha)):
            logger.warning(f"Background model not estimable for sample {sample}; left uncorrected")
            continue

        a = x - mu - alpha * sigma ** 2
        z = a / sigma
        signal = a + sigma * norm.pdf(z) / norm.cdf(z)
        # Far in the lower tail pdf/cdf underflows; the limit is positive but tiny
        signal = np.where(np.isfinite(signal) & (signal > 0), signal, np.finfo(float).tiny)
        signal[~np.isfinite(x)] = np.nan
        corrected[sample] = signal

    logger.debug(f"Background corrected {values.shape[1]} samples")
    return corrected


def quantile_normalize(values: pd.DataFrame) -> pd.DataFrame:
    """
    Force every sample to share the same value distribution.

    The target distribution is the mean of the sorted samples, each
    resampled onto a common quantile grid so samples with missing values
    contribute on equal footing. Ties receive the average of their
    quantiles and missing values stay in place.

    Args:
        values: Matrix (probes x samples)

    Returns:
        Quantile-normalized matrix with the same labels
    """
    data = values.to_numpy(dtype=float)
    n_rows, n_cols = data.shape
    if n_rows == 0:
        return values.astype(float).copy()

    grid = np.linspace(0.0, 1.0, n_rows)
    resampled = np.full((n_rows, n_cols), np.nan)
    for j in range(n_cols):
        col = np.sort(data[:, j][np.isfinite(data[:, j])])
        if len(col) == 0:
            continue
        if len(col) == 1:
            resampled[:, j] = col[0]
            continue
        resampled[:, j] = np.interp(grid, np.linspace(0.0, 1.0, len(col)), col)

    with np.errstate(invalid="ignore"):
        target = np.nanmean(resampled, axis=1)

    normalized = np.full_like(data, np.nan)
    for j in range(n_cols):
        valid = np.isfinite(data[:, j])
        n_valid = valid.sum()
        if n_valid == 0:
            continue
        if n_valid == 1:
            normalized[valid, j] = np.nanmedian(target)
            continue
        ranks = rankdata(data[valid, j], method="average")
        positions = (ranks - 1) / (n_valid - 1)
        normalized[valid, j] = np.interp(positions, grid, target)

    return pd.DataFrame(normalized, index=values.index, columns=values.columns)


def median_polish(data: np.ndarray, max_iter: int = 10, eps: float = 0.01) -> np.ndarray:
    """
    Tukey median polish of a probes x samples block.

    Returns:
        Per-sample summary: overall effect plus column effects
    """
    residuals = np.asarray(data, dtype=float).copy()
    n_rows, n_cols = residuals.shape
    row_effects = np.zeros(n_rows)
    col_effects = np.zeros(n_cols)

    for _ in range(max_iter):
        row_medians = np.nan_to_num(np.nanmedian(residuals, axis=1), nan=0.0)
        residuals -= row_medians[:, np.newaxis]
        row_effects += row_medians

        col_medians = np.nan_to_num(np.nanmedian(residuals, axis=0), nan=0.0)
        residuals -= col_medians[np.newaxis, :]
        col_effects += col_medians

        if max(np.max(np.abs(row_medians)), np.max(np.abs(col_medians))) < eps:
            break

    overall = np.nanmedian(row_effects)
    return overall + col_effects


def summarize(values: pd.DataFrame, feature_map: pd.Series) -> pd.DataFrame:
    """
    Summarize probes into one value per feature by median polish.

    Args:
        values: Probe-level log-scale values (probes x samples)
        feature_map: Probe id -> feature id

    Returns:
        Feature-level matrix (features x samples), features sorted by id
    """
    features = feature_map.reindex(values.index)
    summaries = {}
    for feature_id, block in values.groupby(features, sort=True):
        if len(block) == 1:
            summaries[feature_id] = block.iloc[0].to_numpy(dtype=float)
        else:
            summaries[feature_id] = median_polish(block.to_numpy(dtype=float))

    result = pd.DataFrame.from_dict(summaries, orient="index", columns=values.columns)
    result.index.name = values.index.name
    logger.info(f"Summarized {len(values)} probes into {len(result)} features")
    return result


def beta_to_m(beta: pd.DataFrame) -> pd.DataFrame:
    """Convert beta values to M-values: M = log2(beta / (1 - beta))."""
    clipped = beta.clip(BETA_EPSILON, 1 - BETA_EPSILON)
    return np.log2(clipped / (1 - clipped))


def m_to_beta(m_values: pd.DataFrame) -> pd.DataFrame:
    """Convert M-values back to beta values."""
    power = np.power(2.0, m_values)
    return power / (1 + power)


def distribution_spread(values: pd.DataFrame, q: float = 0.5) -> float:
    """Largest difference of the q-th quantile between any two samples."""
    quantiles = np.nanquantile(values.to_numpy(dtype=float), q, axis=0)
    return float(np.nanmax(quantiles) - np.nanmin(quantiles))


class ExpressionNormalizer:
    """
    RMA-style normalization of expression arrays.

    Raw intensities go through background correction, quantile
    normalization, log2 and (when probes map to features) median-polish
    summarization. Log-scale input is only quantile normalized and
    summarized.
    """

    def __init__(self, background: bool = True, summarize: bool = True):
        """
        Initialize normalizer.

        Args:
            background: Apply convolution background correction to raw input
            summarize: Summarize probes into features when a feature map exists
        """
        self.background = background
        self.summarize = summarize

    def normalize(self, matrix: IntensityMatrix) -> IntensityMatrix:
        """
        Normalize an expression matrix.

        Args:
            matrix: IntensityMatrix on the "raw" or "log2" scale

        Returns:
            Normalized IntensityMatrix on the log2 scale
        """
        if matrix.scale not in ("raw", "log2"):
            raise ConfigError(f"Expression normalization expects raw or log2 values, got {matrix.scale}")

        values = matrix.values.astype(float)
        if matrix.scale == "raw":
            if self.background:
                logger.info("Applying RMA background correction...")
                values = background_correct(values)
            logger.info("Applying quantile normalization...")
            values = quantile_normalize(values)
            values = np.log2(values.clip(lower=LOG_FLOOR))
        else:
            logger.info("Applying quantile normalization on the log2 scale...")
            values = quantile_normalize(values)

        if self.summarize and matrix.feature_map is not None:
            values = summarize(values, matrix.feature_map)

        return IntensityMatrix(values=values, scale="log2")


@dataclass(frozen=True, eq=False)
class NormalizedMethylation:
    """Normalized methylation values: M-values for modeling, betas for reporting."""

    m_values: IntensityMatrix
    beta: IntensityMatrix


class MethylationNormalizer:
    """
    Normalize methylation arrays and derive beta and M-values.

    With methylated/unmethylated channels each channel is background
    corrected and quantile normalized separately, then
    beta = M / (M + U + offset) and M-value = log2((M + alpha) / (U + alpha)).
    With processed beta values the betas are quantile normalized and
    converted to M-values.
    """

    def __init__(self, background: bool = True, offset: float = 100.0, alpha: float = 1.0):
        self.background = background
        self.offset = offset
        self.alpha = alpha

    def normalize(self, raw: RawArrayData) -> NormalizedMethylation:
        """
        Args:
            raw: RawArrayData with "methylated"/"unmethylated" or "beta" channels

        Returns:
            NormalizedMethylation with matching M-value and beta matrices
        """
        if {"methylated", "unmethylated"} <= set(raw.channels):
            meth = self._normalize_channel(raw.channels["methylated"].values, "methylated")
            unmeth = self._normalize_channel(raw.channels["unmethylated"].values, "unmethylated")

            beta = meth / (meth + unmeth + self.offset)
            m_values = np.log2((meth + self.alpha) / (unmeth + self.alpha))
        elif "beta" in raw.channels:
            logger.info("Applying quantile normalization to beta values...")
            beta = quantile_normalize(raw.channels["beta"].values)
            beta = beta.clip(BETA_EPSILON, 1 - BETA_EPSILON)
            m_values = beta_to_m(beta)
        else:
            raise ConfigError(
                f"Methylation normalization needs methylated/unmethylated or beta channels, "
                f"got {list(raw.channels)}"
            )

        return NormalizedMethylation(
            m_values=IntensityMatrix(values=m_values, scale="m_value"),
            beta=IntensityMatrix(values=beta, scale="beta"),
        )

    def _normalize_channel(self, values: pd.DataFrame, name: str) -> pd.DataFrame:
        values = values.astype(float)
        if self.background:
            logger.info(f"Applying background correction to {name} channel...")
            values = background_correct(values)
        logger.info(f"Applying quantile normalization to {name} channel...")
        return quantile_normalize(values)
