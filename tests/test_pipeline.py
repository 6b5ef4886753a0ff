"""End-to-end tests of the signature pipeline."""

import numpy as np
import pytest

from prognostic_signature.classifier import build_templates, classify_samples
from prognostic_signature.differential_expression import run_differential_expression
from prognostic_signature.evaluation import evaluate_classification
from prognostic_signature.exceptions import InsufficientFeaturesError
from prognostic_signature.pipeline import run_signature_pipeline
from prognostic_signature.signature import get_signature_genes, select_signature
from prognostic_signature.survival import logrank_by_group


class TestSeparatedClusters:
    """10 genes x 20 samples, two well-separated clusters."""

    def test_signature_classification_and_survival(self, separated_adata):
        table = run_differential_expression(separated_adata, var_cutoff=None, verbose=False)
        signature = select_signature(table, n_genes=10, verbose=False)
        assert set(get_signature_genes(signature)) == set(separated_adata.var_names)

        templates = build_templates(separated_adata, get_signature_genes(signature), verbose=False)
        assert len(templates) == 10

        result = classify_samples(separated_adata, templates, verbose=False)
        metrics = evaluate_classification(result)
        assert metrics["accuracy"] == 1.0
        assert metrics["label_correlation"] == pytest.approx(1.0)

        # group A (Low cluster) given uniformly shorter times than group B
        times = np.where(result["predicted_label"] == "Low", 10.0, 1000.0)
        times = times + np.arange(len(times))
        events = np.ones(len(times), dtype=int)
        summary = logrank_by_group(times, events, result["predicted_label"])
        assert summary["p_value"] < 0.05

    def test_signature_larger_than_gene_count(self, separated_adata):
        table = run_differential_expression(separated_adata, var_cutoff=None, verbose=False)
        with pytest.raises(InsufficientFeaturesError):
            select_signature(table, n_genes=11, verbose=False)


class TestRunSignaturePipeline:

    @pytest.fixture
    def results(self, raw_adata, tmp_path):
        return run_signature_pipeline(
            raw_adata,
            params={"seed": 1, "signature_size": 20},
            output_dir=tmp_path,
            verbose=False,
        )

    def test_stages(self, raw_adata, results):
        train, valid = results["train"], results["validation"]
        n_labeled = int(raw_adata.obs["e.dmfs"].notna().sum())
        assert train.n_obs + valid.n_obs == n_labeled
        assert set(train.obs_names).isdisjoint(valid.obs_names)
        assert len(results["signature"]) == 20
        assert results["templates"].shape == (20, 2)
        assert len(results["classifications"]["validation"]) == valid.n_obs

    def test_metrics_and_survival(self, results):
        for name in ("training", "validation"):
            metrics = results["metrics"][name]
            assert 0.0 <= metrics["accuracy"] <= 1.0
            assert results["survival"][name]["df"] == 1
            assert 0.0 <= results["survival"][name]["p_value"] <= 1.0
        assert results["metrics"]["training"]["accuracy"] > 0.5
        assert list(results["metrics_table"].columns) == ["training", "validation"]

    def test_outputs_written(self, results, tmp_path):
        for name in [
            "tables/differential_expression.csv",
            "tables/signature_genes.csv",
            "tables/classification_metrics.csv",
            "tables/survival_logrank.csv",
            "tables/km_curves_validation.csv",
            "figures/volcano.png",
            "figures/kaplan_meier_validation.png",
        ]:
            assert (tmp_path / name).exists(), name

    def test_seeded_runs_agree(self, raw_adata):
        params = {"seed": 4, "signature_size": 15}
        a = run_signature_pipeline(raw_adata, params=params, verbose=False)
        b = run_signature_pipeline(raw_adata, params=params, verbose=False)
        assert list(a["signature"].index) == list(b["signature"].index)
        for metric in ("accuracy", "low_error_rate", "high_error_rate"):
            assert a["metrics"]["validation"][metric] == b["metrics"]["validation"][metric]

    def test_input_not_mutated(self, raw_adata):
        snapshot = raw_adata.copy()
        run_signature_pipeline(raw_adata, params={"seed": 2, "signature_size": 10}, verbose=False)
        np.testing.assert_array_equal(np.isnan(raw_adata.X), np.isnan(snapshot.X))
        assert list(raw_adata.obs.columns) == list(snapshot.obs.columns)

    def test_preprocessed_input(self, clean_adata):
        results = run_signature_pipeline(
            clean_adata,
            params={"seed": 3, "signature_size": 10},
            preprocess=False,
            verbose=False,
        )
        assert results["train"].n_obs + results["validation"].n_obs == clean_adata.n_obs
