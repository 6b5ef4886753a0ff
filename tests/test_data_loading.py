"""Tests for loading the cohort tables into AnnData."""

import numpy as np
import pandas as pd
import pytest

from prognostic_signature.data_loading import (
    build_anndata,
    load_expression_matrix,
    load_gene_annotation,
    load_nki_data,
    load_sample_metadata,
    simulate_expression_dataset,
)
from prognostic_signature.exceptions import DataIntegrityError


def _write_tables(tmp_path):
    expr = pd.DataFrame(
        {"S1": [1.0, 2.0, np.nan], "S2": [0.5, 0.1, 0.3], "S3": [0.2, 0.4, 0.6]},
        index=pd.Index(["P1", "P2", "P3"], name="probe"),
    )
    pheno = pd.DataFrame(
        {"e.dmfs": [1, 0, np.nan, 1], "t.dmfs": [100.0, 2000.0, 3000.0, 50.0]},
        index=pd.Index(["S1", "S2", "S3", "S4"], name="sample"),
    )
    features = pd.DataFrame(
        {"NCBI.gene.symbol": ["ESR1", np.nan, "ERBB2"]},
        index=pd.Index(["P1", "P2", "P3"], name="probe"),
    )
    expr_path = tmp_path / "expr.tsv.gz"
    pheno_path = tmp_path / "pheno.tsv"
    feature_path = tmp_path / "features.csv"
    expr.to_csv(expr_path, sep="\t")
    pheno.to_csv(pheno_path, sep="\t")
    features.to_csv(feature_path)
    return expr_path, pheno_path, feature_path


class TestLoadTables:

    def test_expression_matrix(self, tmp_path):
        expr_path, _, _ = _write_tables(tmp_path)
        expr = load_expression_matrix(expr_path, verbose=False)
        assert expr.shape == (3, 3)
        assert np.isnan(expr.loc["P3", "S1"])

    def test_sample_metadata_requires_survival_columns(self, tmp_path):
        path = tmp_path / "pheno.tsv"
        pd.DataFrame({"e.dmfs": [1, 0]}, index=["S1", "S2"]).to_csv(path, sep="\t")
        with pytest.raises(DataIntegrityError, match="t.dmfs"):
            load_sample_metadata(path, verbose=False)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_sample_metadata(tmp_path / "nope.tsv", verbose=False)

    def test_gene_annotation_blank_symbols(self, tmp_path):
        _, _, feature_path = _write_tables(tmp_path)
        genes = load_gene_annotation(feature_path, verbose=False)
        assert list(genes.columns) == ["symbol"]
        assert genes.loc["P2", "symbol"] == ""
        assert genes.loc["P3", "symbol"] == "ERBB2"


class TestBuildAnnData:

    def test_joins_on_common_samples(self, tmp_path):
        adata = load_nki_data(*_write_tables(tmp_path), verbose=False)
        # S4 has metadata but no expression
        assert list(adata.obs_names) == ["S1", "S2", "S3"]
        assert list(adata.var_names) == ["P1", "P2", "P3"]
        assert adata.X.shape == (3, 3)
        assert adata.obs.loc["S1", "e.dmfs"] == 1
        assert np.isnan(adata.obs.loc["S3", "e.dmfs"])
        assert adata.var.loc["P1", "symbol"] == "ESR1"

    def test_no_common_samples(self):
        expr = pd.DataFrame({"A": [1.0]}, index=["P1"])
        meta = pd.DataFrame({"e.dmfs": [1], "t.dmfs": [1.0]}, index=["B"])
        with pytest.raises(DataIntegrityError):
            build_anndata(expr, meta, verbose=False)


class TestSimulation:

    def test_layout(self):
        adata = simulate_expression_dataset(n_samples=30, n_genes=50, n_informative=10, seed=1)
        assert adata.shape == (30, 50)
        assert {"e.dmfs", "t.dmfs"} <= set(adata.obs.columns)
        assert (adata.obs["t.dmfs"] > 0).all()

    def test_seeded(self):
        a = simulate_expression_dataset(n_samples=20, n_genes=30, seed=3)
        b = simulate_expression_dataset(n_samples=20, n_genes=30, seed=3)
        np.testing.assert_array_equal(a.X, b.X)

    def test_unlabeled_fraction(self):
        adata = simulate_expression_dataset(n_samples=40, n_genes=20, unlabeled_fraction=0.25, seed=2)
        assert adata.obs["e.dmfs"].isna().sum() == 10
