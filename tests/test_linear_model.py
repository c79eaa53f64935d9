"""Tests for the empirical-Bayes linear model."""

import numpy as np
import pandas as pd
import pytest
from scipy import stats
from scipy.special import polygamma

from conftest import DE_PROBES

from neuroarray.containers import RESULT_COLUMNS, DesignMatrix, IntensityMatrix
from neuroarray.exceptions import IntegrityError
from neuroarray.models import (
    DesignBuilder,
    DifferentialModel,
    fit_f_dist,
    squeeze_var,
    trigamma_inverse,
)


@pytest.fixture
def design(samples, log2_matrix):
    return DesignBuilder("disease_state", levels=["AD", "Control"]).build(samples, log2_matrix.sample_ids)


@pytest.fixture
def contrast(design):
    return DesignBuilder.contrast(design, "AD", "Control")


class TestRecovery:
    """Injected effects are ranked first and called significant."""

    def test_injected_probes_on_top(self, log2_matrix, design, contrast):
        result = DifferentialModel().fit(log2_matrix, design, contrast)

        top15 = result.table.nsmallest(15, "P.Value").index
        assert set(DE_PROBES) <= set(top15)

    def test_injected_probes_significant(self, log2_matrix, design, contrast):
        result = DifferentialModel().fit(log2_matrix, design, contrast)

        significant = result.table.index[result.table["adj.P.Val"] <= 0.1]
        assert len(set(DE_PROBES) & set(significant)) >= 8

    def test_log_fold_change_estimate(self, log2_matrix, design, contrast):
        result = DifferentialModel().fit(log2_matrix, design, contrast)
        assert result.table.loc[DE_PROBES, "logFC"].mean() == pytest.approx(2.0, abs=0.3)

    def test_trend_variant(self, log2_matrix, design, contrast):
        result = DifferentialModel(trend=True).fit(log2_matrix, design, contrast)
        top15 = result.table.nsmallest(15, "P.Value").index
        assert set(DE_PROBES) <= set(top15)


class TestOutput:

    def test_columns_and_order(self, log2_matrix, design, contrast):
        result = DifferentialModel().fit(log2_matrix, design, contrast)

        for column in RESULT_COLUMNS + ["mean_AD", "mean_Control"]:
            assert column in result.table.columns
        assert result.row_ids == log2_matrix.probe_ids
        assert result.contrast == "AD-Control"

    def test_logfc_is_group_mean_difference(self, log2_matrix, design, contrast):
        table = DifferentialModel().fit(log2_matrix, design, contrast).table
        assert np.allclose(table["logFC"], table["mean_AD"] - table["mean_Control"])

    def test_pvalues_in_unit_interval(self, log2_matrix, design, contrast):
        table = DifferentialModel().fit(log2_matrix, design, contrast).table
        assert table["P.Value"].between(0, 1).all()
        assert (table["adj.P.Val"] >= table["P.Value"] - 1e-12).all()

    def test_fit_metadata(self, log2_matrix, design, contrast):
        result = DifferentialModel().fit(log2_matrix, design, contrast)
        assert result.df_residual == 8
        assert result.prior_var > 0


class TestAlignment:
    """Design rows must follow the matrix columns exactly."""

    def test_reordered_design_raises(self, log2_matrix, design, contrast):
        shuffled = DesignMatrix(matrix=design.matrix.iloc[::-1], covariate=design.covariate)
        with pytest.raises(IntegrityError, match=log2_matrix.sample_ids[0]):
            DifferentialModel().fit(log2_matrix, shuffled, contrast)

    def test_dimension_mismatch_raises(self, log2_matrix, design, contrast):
        shorter = DesignMatrix(matrix=design.matrix.iloc[:-1], covariate=design.covariate)
        with pytest.raises(IntegrityError):
            DifferentialModel().fit(log2_matrix, shorter, contrast)


class TestEdgeCases:

    def test_constant_row_gives_nan(self, log2_values, design, contrast):
        values = log2_values.copy()
        values.iloc[50] = 7.0
        result = DifferentialModel().fit(IntensityMatrix(values=values, scale="log2"), design, contrast)

        row = result.table.iloc[50]
        assert np.isnan(row["t"]) and np.isnan(row["P.Value"]) and np.isnan(row["adj.P.Val"])
        assert result.table["P.Value"].notna().sum() == len(values) - 1

    def test_partially_missing_row_fitted(self, log2_values, design, contrast):
        values = log2_values.copy()
        values.iloc[20, 0] = np.nan
        result = DifferentialModel().fit(IntensityMatrix(values=values, scale="log2"), design, contrast)

        assert np.isfinite(result.table.iloc[20]["t"])

    def test_unobserved_group_gives_nan(self, log2_values, design, contrast):
        values = log2_values.copy()
        ad_samples = [s for s in values.columns if s.startswith("AD")]
        values.loc[values.index[30], ad_samples] = np.nan
        result = DifferentialModel().fit(IntensityMatrix(values=values, scale="log2"), design, contrast)

        assert np.isnan(result.table.iloc[30]["logFC"])
        assert np.isfinite(result.table.iloc[31]["logFC"])


class TestEmpiricalBayes:

    @pytest.mark.parametrize("x", [0.05, 0.5, 2.0, 20.0])
    def test_trigamma_inverse(self, x):
        assert polygamma(1, trigamma_inverse(x)) == pytest.approx(x, rel=1e-6)

    def test_fit_f_dist_recovers_prior(self):
        rng = np.random.default_rng(1)
        d0, s0_sq, df = 10.0, 0.25, 8.0
        sigma2 = s0_sq * stats.f.rvs(df, d0, size=20000, random_state=rng)

        d0_hat, s0_hat = fit_f_dist(sigma2, df)

        assert 7 < d0_hat < 14
        assert s0_hat == pytest.approx(s0_sq, rel=0.1)

    def test_no_excess_dispersion_gives_large_prior_df(self):
        rng = np.random.default_rng(2)
        df = 6.0
        sigma2 = 0.5 * stats.chi2.rvs(df, size=20000, random_state=rng) / df

        d0_hat, s0_hat = fit_f_dist(sigma2, df)

        assert d0_hat > 50
        assert s0_hat == pytest.approx(0.5, rel=0.05)

    def test_squeeze_between_prior_and_sample(self):
        sigma2 = np.array([0.1, 1.0, 4.0])
        posterior = squeeze_var(sigma2, np.full(3, 4.0), d0=4.0, s0_sq=1.0)

        assert np.allclose(posterior, [0.55, 1.0, 2.5])

    def test_infinite_prior_df_full_shrinkage(self):
        posterior = squeeze_var(np.array([0.1, 3.0]), np.full(2, 4.0), d0=np.inf, s0_sq=0.7)
        assert np.allclose(posterior, 0.7)

    def test_moderated_df_capped_at_pooled(self):
        values = pd.DataFrame(
            np.random.default_rng(9).normal(size=(2, 4)),
            index=["a", "b"], columns=["s1", "s2", "s3", "s4"],
        )
        design = DesignMatrix(
            matrix=pd.DataFrame({"A": [1, 1, 0, 0], "B": [0, 0, 1, 1]}, index=values.columns),
            covariate="group",
        )
        contrast = DesignBuilder.contrast(design, "A", "B")
        result = DifferentialModel().fit(IntensityMatrix(values=values, scale="log2"), design, contrast)

        # With too few rows for a prior fit, d0 is infinite and df falls back to the pooled 4
        assert np.isinf(result.prior_df)
        t = result.table["t"].to_numpy()
        expected = 2 * stats.t.sf(np.abs(t), 4)
        assert np.allclose(result.table["P.Value"], expected)
