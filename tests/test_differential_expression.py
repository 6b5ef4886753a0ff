"""Tests for the variance filter and the moderated t-test engine."""

import numpy as np
import pandas as pd
import pytest
from scipy import special

from prognostic_signature.differential_expression import (
    adjust_pvalues,
    build_design_matrix,
    contrast_fit,
    empirical_bayes,
    fit_f_prior,
    fit_linear_models,
    run_differential_expression,
    trigamma_inverse,
    variance_filter,
)
from prognostic_signature.exceptions import DegenerateDesignError


def _design(labels):
    labels = np.asarray(labels)
    return pd.DataFrame({"Low": (labels == 0).astype(float), "High": (labels == 1).astype(float)})


class TestVarianceFilter:

    def test_lowers_gene_count(self, clean_adata):
        filtered = variance_filter(clean_adata, verbose=False)
        assert 0 < filtered.n_vars < clean_adata.n_vars
        threshold = np.quantile(
            np.percentile(clean_adata.X, 75, axis=0) - np.percentile(clean_adata.X, 25, axis=0),
            0.5,
        )
        assert (filtered.var["spread"] > threshold).all()

    def test_deterministic(self, clean_adata):
        a = variance_filter(clean_adata, verbose=False)
        b = variance_filter(clean_adata, verbose=False)
        assert list(a.var_names) == list(b.var_names)

    def test_disabled(self, clean_adata):
        filtered = variance_filter(clean_adata, var_cutoff=None, verbose=False)
        assert filtered.n_vars == clean_adata.n_vars
        assert "spread" in filtered.var.columns

    def test_variance_measure(self, clean_adata):
        filtered = variance_filter(clean_adata, var_func="var", verbose=False)
        assert filtered.n_vars < clean_adata.n_vars

    def test_bad_arguments(self, clean_adata):
        with pytest.raises(ValueError):
            variance_filter(clean_adata, var_func="mad", verbose=False)
        with pytest.raises(ValueError):
            variance_filter(clean_adata, var_cutoff=1.0, verbose=False)


class TestLinearModels:

    def test_design_matrix(self, separated_adata):
        design = build_design_matrix(separated_adata)
        assert list(design.columns) == ["Low", "High"]
        assert design.sum().tolist() == [10.0, 10.0]
        assert (design.sum(axis=1) == 1).all()

    def test_coefficients_are_group_means(self):
        Y = np.array([[1.0, 10.0], [3.0, 14.0], [5.0, 0.0], [7.0, 2.0]])
        fit = fit_linear_models(Y, _design([0, 0, 1, 1]))
        np.testing.assert_allclose(fit["coefficients"], [[2.0, 6.0], [12.0, 1.0]])
        # pooled residual variance: sum of squared residuals / (n - 2)
        np.testing.assert_allclose(fit["sigma2"], [4.0 / 2, 10.0 / 2])
        assert fit["df_residual"] == 2

        fit = contrast_fit(fit)
        np.testing.assert_allclose(fit["coefficient"], [4.0, -11.0])
        assert fit["stdev_unscaled"] == pytest.approx(1.0)

    def test_group_with_one_sample(self):
        Y = np.ones((4, 3))
        with pytest.raises(DegenerateDesignError) as excinfo:
            fit_linear_models(Y, _design([0, 0, 0, 1]))
        assert excinfo.value.entity == "High"
        assert excinfo.value.stage == "differential_expression"

    def test_empty_group(self):
        with pytest.raises(DegenerateDesignError):
            fit_linear_models(np.ones((4, 3)), _design([0, 0, 0, 0]))

    def test_rank_deficient(self):
        design = _design([0, 0, 1, 1])
        design["Low_again"] = design["Low"]
        with pytest.raises(DegenerateDesignError, match="rank-deficient"):
            fit_linear_models(np.ones((4, 3)), design)

    def test_unknown_contrast(self):
        fit = fit_linear_models(np.random.default_rng(0).normal(size=(4, 3)), _design([0, 0, 1, 1]))
        with pytest.raises(ValueError):
            contrast_fit(fit, {"Medium": 1.0})


class TestEmpiricalBayes:

    def test_trigamma_inverse(self):
        for y in [0.3, 1.0, 2.5, 10.0]:
            assert trigamma_inverse(float(special.polygamma(1, y))) == pytest.approx(y, rel=1e-6)

    def test_prior_recovered(self):
        rng = np.random.default_rng(0)
        d, d0, s02 = 6, 4.0, 1.0
        true_var = s02 * d0 / rng.chisquare(d0, size=20000)
        sigma2 = true_var * rng.chisquare(d, size=20000) / d

        est_d0, est_s02 = fit_f_prior(sigma2, d)
        assert 3.0 < est_d0 < 5.5
        assert 0.8 < est_s02 < 1.25

    def test_no_extra_variability(self):
        d0, s02 = fit_f_prior(np.full(50, 2.0), 5)
        assert np.isinf(d0)
        assert s02 > 0

    def test_shrinkage(self):
        rng = np.random.default_rng(1)
        Y = rng.normal(size=(12, 300)) * rng.uniform(0.5, 2.0, size=300)
        fit = empirical_bayes(contrast_fit(fit_linear_models(Y, _design([0] * 6 + [1] * 6))))

        low = np.minimum(fit["sigma2"], fit["s2_prior"])
        high = np.maximum(fit["sigma2"], fit["s2_prior"])
        assert np.all(fit["s2_post"] >= low - 1e-12)
        assert np.all(fit["s2_post"] <= high + 1e-12)
        assert fit["df_total"] >= fit["df_residual"]
        assert np.all((fit["p_value"] >= 0) & (fit["p_value"] <= 1))

    def test_adjust_pvalues(self):
        p = np.array([0.01, 0.04, 0.03, 0.5])
        adjusted = adjust_pvalues(p)
        np.testing.assert_allclose(adjusted, [0.04, 0.16 / 3, 0.16 / 3, 0.5])
        assert len(adjust_pvalues(np.array([]))) == 0


class TestRunDifferentialExpression:

    def test_table_layout(self, clean_adata):
        table = run_differential_expression(clean_adata, verbose=False)
        assert list(table.columns) == [
            "symbol", "log_fc", "ave_expr", "t_stat", "p_value", "adj_p_value", "df_total",
        ]
        assert table.index.name == "probe_id"
        assert len(table) == variance_filter(clean_adata, verbose=False).n_vars
        assert table["adj_p_value"].is_monotonic_increasing
        assert (table["adj_p_value"] >= table["p_value"] - 1e-15).all()

    def test_detects_shifted_genes(self, clean_adata):
        table = run_differential_expression(clean_adata, verbose=False)
        informative = {f"PROBE_{j:05d}" for j in range(30)}
        top = set(table.index[:30])
        assert len(top & informative) >= 28

        # first half shifted up in High, second half down
        assert (table.loc[[f"PROBE_{j:05d}" for j in range(15)], "log_fc"] > 0).all()
        assert (table.loc[[f"PROBE_{j:05d}" for j in range(15, 30)], "log_fc"] < 0).all()

    def test_degenerate_training_set(self, separated_adata):
        keep = list(range(10)) + [10]
        with pytest.raises(DegenerateDesignError):
            run_differential_expression(separated_adata[keep].copy(), var_cutoff=None, verbose=False)
