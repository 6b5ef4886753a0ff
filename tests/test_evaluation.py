"""Tests for classification metrics, diagnostics and plots."""

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest

from prognostic_signature.evaluation import (
    compare_partitions,
    confusion_table,
    correlation_diagnostics,
    evaluate_classification,
    generate_results_table,
    plot_correlation_boxplots,
    plot_template_correlations,
)


def _result(true, predicted, corr_low=None, corr_high=None):
    n = len(true)
    rng = np.random.default_rng(0)
    if corr_low is None:
        corr_low = rng.uniform(-1, 1, size=n)
    if corr_high is None:
        corr_high = rng.uniform(-1, 1, size=n)
    return pd.DataFrame(
        {
            "corr_low": corr_low,
            "corr_high": corr_high,
            "true_label": true,
            "predicted_label": predicted,
        },
        index=pd.Index([f"S{i}" for i in range(n)], name="sample_id"),
    )


@pytest.fixture
def mixed_result():
    true = ["Low"] * 6 + ["High"] * 4
    predicted = ["Low", "Low", "Low", "Low", "High", "High", "High", "High", "High", "Low"]
    return _result(true, predicted)


class TestEvaluateClassification:

    def test_metrics(self, mixed_result):
        metrics = evaluate_classification(mixed_result)
        assert metrics["n_samples"] == 10
        assert metrics["n_low"] == 6
        assert metrics["n_high"] == 4
        assert metrics["accuracy"] == pytest.approx(0.7)
        assert metrics["low_error_rate"] == pytest.approx(2 / 6)
        assert metrics["high_error_rate"] == pytest.approx(1 / 4)

        y_true = np.array([0] * 6 + [1] * 4)
        y_pred = np.array([0, 0, 0, 0, 1, 1, 1, 1, 1, 0])
        assert metrics["label_correlation"] == pytest.approx(np.corrcoef(y_true, y_pred)[0, 1])

    def test_idempotent(self, mixed_result):
        snapshot = mixed_result.copy()
        first = evaluate_classification(mixed_result)
        second = evaluate_classification(mixed_result)
        for key in ("accuracy", "low_error_rate", "high_error_rate", "label_correlation"):
            assert first[key] == second[key]
        pd.testing.assert_frame_equal(mixed_result, snapshot)

    def test_perfect_classification(self):
        result = _result(
            ["Low", "High", "Low", "High"],
            ["Low", "High", "Low", "High"],
            corr_low=[0.9, 0.1, 0.8, 0.2],
            corr_high=[0.1, 0.9, 0.2, 0.8],
        )
        metrics = evaluate_classification(result)
        assert metrics["accuracy"] == 1.0
        assert metrics["low_error_rate"] == 0.0
        assert metrics["high_error_rate"] == 0.0
        assert metrics["label_correlation"] == pytest.approx(1.0)
        assert metrics["auc"] == 1.0

    def test_constant_prediction(self):
        metrics = evaluate_classification(_result(["Low", "High", "High"], ["Low"] * 3))
        assert np.isnan(metrics["label_correlation"])
        assert metrics["high_error_rate"] == 1.0

    def test_single_class(self):
        metrics = evaluate_classification(_result(["Low", "Low"], ["Low", "High"]))
        assert np.isnan(metrics["high_error_rate"])
        assert np.isnan(metrics["auc"])
        assert metrics["low_error_rate"] == 0.5

    def test_unlabeled_rows_ignored(self):
        result = _result(["Low", None, "High"], ["Low", "High", "High"])
        assert evaluate_classification(result)["n_samples"] == 2

    def test_unknown_label(self):
        with pytest.raises(ValueError, match="Unknown labels"):
            evaluate_classification(_result(["Low", "Medium"], ["Low", "Low"]))


class TestTables:

    def test_confusion_table(self, mixed_result):
        table = confusion_table(mixed_result)
        assert table.loc["true_Low", "pred_Low"] == 4
        assert table.loc["true_Low", "pred_High"] == 2
        assert table.loc["true_High", "pred_High"] == 3
        assert table.loc["true_High", "pred_Low"] == 1

    def test_correlation_diagnostics(self, mixed_result):
        diag = correlation_diagnostics(mixed_result)
        assert list(diag.index) == ["Low", "High"]
        low = mixed_result.iloc[:6]
        assert diag.loc["Low", "mean_corr_low"] == pytest.approx(low["corr_low"].mean())
        assert diag.loc["Low", "corr_between_templates"] == pytest.approx(
            np.corrcoef(low["corr_low"], low["corr_high"])[0, 1]
        )
        assert diag.loc["High", "n_samples"] == 4

    def test_compare_partitions(self, mixed_result, tmp_path):
        metrics = evaluate_classification(mixed_result)
        path = tmp_path / "metrics.csv"
        table = compare_partitions({"training": metrics, "validation": metrics}, save_path=path)
        assert list(table.columns) == ["training", "validation"]
        assert table.loc["accuracy", "training"] == pytest.approx(0.7)
        assert path.exists()

    def test_results_table(self, mixed_result, tmp_path):
        path = tmp_path / "samples.csv"
        table = generate_results_table(mixed_result, save_path=path)
        assert table["margin"].is_monotonic_decreasing
        assert table["correct"].sum() == 7
        assert path.exists()


class TestPlots:

    def test_scatter(self, mixed_result, tmp_path):
        path = tmp_path / "scatter.png"
        fig = plot_template_correlations(mixed_result, save_path=path)
        assert path.exists()
        plt.close(fig)

    def test_boxplots(self, mixed_result, tmp_path):
        path = tmp_path / "boxplots.png"
        fig = plot_correlation_boxplots(mixed_result, save_path=path)
        assert path.exists()
        plt.close(fig)
