"""Tests for background correction, quantile normalization and summarization."""

import numpy as np
import pandas as pd
import pytest

from neuroarray.containers import IntensityMatrix, RawArrayData, SampleAnnotation
from neuroarray.exceptions import ConfigError, ParseError
from neuroarray.preprocessing import (
    ExpressionNormalizer,
    MethylationNormalizer,
    background_correct,
    beta_to_m,
    distribution_spread,
    m_to_beta,
    median_polish,
    quantile_normalize,
    summarize,
)

SPREAD_TOLERANCE = 1e-6


class TestQuantileNormalize:
    """After normalization every sample shares the same distribution."""

    def test_raw_data_violates_tolerance(self, raw_intensities):
        assert distribution_spread(raw_intensities, 0.5) > 1.0

    @pytest.mark.parametrize("q", [0.25, 0.5, 0.75])
    def test_common_quantiles(self, raw_intensities, q):
        normalized = quantile_normalize(raw_intensities)
        assert distribution_spread(normalized, q) < SPREAD_TOLERANCE

    def test_sorted_columns_identical(self, raw_intensities):
        normalized = quantile_normalize(raw_intensities).to_numpy()
        sorted_cols = np.sort(normalized, axis=0)
        assert np.allclose(sorted_cols, sorted_cols[:, [0]])

    def test_ranks_preserved(self, raw_intensities):
        normalized = quantile_normalize(raw_intensities)
        for sample in raw_intensities.columns:
            assert (raw_intensities[sample].rank() == normalized[sample].rank()).all()

    def test_nan_preserved_in_place(self, raw_intensities):
        values = raw_intensities.copy()
        values.iloc[4, 2] = np.nan
        normalized = quantile_normalize(values)

        assert np.isnan(normalized.iloc[4, 2])
        assert normalized.isna().sum().sum() == 1

    def test_ties_share_value(self):
        values = pd.DataFrame({"a": [1.0, 2.0, 2.0, 4.0], "b": [3.0, 1.0, 4.0, 2.0]})
        normalized = quantile_normalize(values)
        assert normalized.loc[1, "a"] == normalized.loc[2, "a"]

    def test_labels_kept(self, raw_intensities):
        normalized = quantile_normalize(raw_intensities)
        assert normalized.index.equals(raw_intensities.index)
        assert list(normalized.columns) == list(raw_intensities.columns)


class TestBackgroundCorrect:

    def test_positive_and_order_preserving(self):
        rng = np.random.default_rng(3)
        n = 2000
        x = rng.normal(100, 15, n) + rng.exponential(300, n)
        values = pd.DataFrame({"s1": x, "s2": x * 1.3})

        corrected = background_correct(values)

        assert (corrected > 0).all().all()
        order = np.argsort(x)
        assert np.all(np.diff(corrected["s1"].to_numpy()[order]) >= 0)

    def test_shape_and_labels(self, raw_intensities):
        corrected = background_correct(raw_intensities)
        assert corrected.shape == raw_intensities.shape
        assert corrected.index.equals(raw_intensities.index)


class TestMedianPolish:

    def test_additive_block(self):
        row_effects = np.array([1.0, 3.0, 5.0, 8.0])
        col_effects = np.array([0.0, 0.5, -1.0])
        block = row_effects[:, None] + col_effects[None, :]

        summary = median_polish(block)

        assert np.allclose(summary - summary[0], col_effects - col_effects[0])

    def test_robust_to_single_outlier(self):
        block = np.tile([5.0, 6.0, 7.0], (5, 1))
        clean = median_polish(block)
        block[0, 1] = 100.0
        assert np.allclose(median_polish(block), clean)

    def test_summarize_by_feature(self, log2_values):
        feature_map = pd.Series(
            [f"feat_{i // 4}" for i in range(len(log2_values))], index=log2_values.index
        )
        summarized = summarize(log2_values, feature_map)

        assert len(summarized) == len(log2_values) // 4
        assert list(summarized.columns) == list(log2_values.columns)
        assert summarized.index.is_monotonic_increasing


class TestConversions:

    def test_beta_m_inverse(self):
        beta = pd.DataFrame({"s": [0.1, 0.5, 0.9]})
        assert np.allclose(m_to_beta(beta_to_m(beta)), beta)

    def test_half_is_zero(self):
        assert beta_to_m(pd.DataFrame({"s": [0.5]})).iloc[0, 0] == pytest.approx(0.0)

    def test_extremes_finite(self):
        m = beta_to_m(pd.DataFrame({"s": [0.0, 1.0]}))
        assert np.isfinite(m.to_numpy()).all()


class TestExpressionNormalizer:

    def test_raw_to_log2(self, raw_intensities):
        matrix = IntensityMatrix(values=raw_intensities, scale="raw")
        normalized = ExpressionNormalizer().normalize(matrix)

        assert normalized.scale == "log2"
        assert normalized.shape == matrix.shape
        assert distribution_spread(normalized.values, 0.5) < SPREAD_TOLERANCE
        assert distribution_spread(matrix.values, 0.5) > SPREAD_TOLERANCE

    def test_summarizes_with_feature_map(self, raw_intensities):
        feature_map = pd.Series(
            [f"set_{i // 5}" for i in range(len(raw_intensities))], index=raw_intensities.index
        )
        matrix = IntensityMatrix(values=raw_intensities, scale="raw", feature_map=feature_map)
        normalized = ExpressionNormalizer(background=False).normalize(matrix)

        assert normalized.shape == (len(raw_intensities) // 5, raw_intensities.shape[1])

    def test_rejects_beta_scale(self):
        matrix = IntensityMatrix(values=pd.DataFrame({"s": [0.2, 0.4]}), scale="beta")
        with pytest.raises(ConfigError):
            ExpressionNormalizer().normalize(matrix)


class TestMethylationNormalizer:

    def _raw(self, channels):
        sample_ids = list(next(iter(channels.values())).columns)
        table = pd.DataFrame({"disease_state": ["AD", "Control"] * (len(sample_ids) // 2)}, index=sample_ids)
        return RawArrayData(
            channels={name: IntensityMatrix(values=df, scale="beta" if name == "beta" else "raw")
                      for name, df in channels.items()},
            samples=SampleAnnotation(table=table),
            array_type="methylation",
        )

    def test_channels_to_beta_and_m(self):
        rng = np.random.default_rng(5)
        index = [f"cg{i:04d}" for i in range(300)]
        columns = ["s1", "s2", "s3", "s4"]
        meth = pd.DataFrame(rng.uniform(100, 5000, (300, 4)), index=index, columns=columns)
        unmeth = pd.DataFrame(rng.uniform(100, 5000, (300, 4)), index=index, columns=columns)

        result = MethylationNormalizer().normalize(self._raw({"methylated": meth, "unmethylated": unmeth}))

        beta = result.beta.values
        assert result.beta.scale == "beta"
        assert result.m_values.scale == "m_value"
        assert ((beta >= 0) & (beta < 1)).all().all()
        assert np.isfinite(result.m_values.values.to_numpy()).all()
        assert result.m_values.values.index.equals(result.beta.values.index)

    def test_beta_channel(self):
        rng = np.random.default_rng(6)
        beta = pd.DataFrame(rng.uniform(0.05, 0.95, (200, 4)), columns=["s1", "s2", "s3", "s4"])
        beta.index = [f"cg{i:04d}" for i in range(200)]

        result = MethylationNormalizer().normalize(self._raw({"beta": beta}))

        assert np.allclose(m_to_beta(result.m_values.values), result.beta.values)
        assert distribution_spread(result.beta.values, 0.5) < SPREAD_TOLERANCE

    def test_percent_betas_rejected(self):
        beta = pd.DataFrame(
            {"s1": [5.0, 40.0], "s2": [0.1, 0.4], "s3": [95.0, 60.0], "s4": [0.2, 0.5]},
            index=["cg0001", "cg0002"],
        )
        with pytest.raises(ParseError, match="s1, s3"):
            self._raw({"beta": beta})

    def test_missing_betas_allowed(self):
        beta = pd.DataFrame({"s1": [0.0, np.nan], "s2": [1.0, 0.5]}, index=["cg0001", "cg0002"])
        matrix = IntensityMatrix(values=beta, scale="beta")
        assert matrix.shape == (2, 2)
