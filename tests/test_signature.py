"""Tests for ranking and selecting the signature genes."""

import matplotlib.pyplot as plt
import pandas as pd
import pytest

from prognostic_signature.differential_expression import run_differential_expression
from prognostic_signature.exceptions import InsufficientFeaturesError
from prognostic_signature.signature import (
    get_signature_genes,
    plot_volcano,
    rank_genes,
    save_signature,
    select_signature,
)


def _de_table():
    return pd.DataFrame(
        {
            "symbol": ["A", "B", "C", "D", "E"],
            "log_fc": [0.5, -2.0, 1.0, 3.0, 0.1],
            "p_value": [0.001, 0.001, 0.0001, 0.2, 0.001],
            "adj_p_value": [0.01, 0.01, 0.001, 0.5, 0.01],
        },
        index=pd.Index(["p5", "p4", "p3", "p2", "p1"], name="probe_id"),
    )


class TestRankGenes:

    def test_ties_broken_by_effect_size(self):
        ranked = rank_genes(_de_table())
        # p3 has the smallest adj p; p4/p5/p1 tie and are ordered by |log_fc|
        assert list(ranked.index) == ["p3", "p4", "p5", "p1", "p2"]
        assert list(ranked["rank"]) == [1, 2, 3, 4, 5]

    def test_probe_id_breaks_full_ties(self):
        table = pd.DataFrame(
            {"log_fc": [1.0, -1.0], "adj_p_value": [0.05, 0.05]},
            index=["z_probe", "a_probe"],
        )
        assert list(rank_genes(table).index) == ["a_probe", "z_probe"]

    def test_missing_columns(self):
        with pytest.raises(ValueError):
            rank_genes(pd.DataFrame({"log_fc": [1.0]}))


class TestSelectSignature:

    def test_exact_size_and_order(self, clean_adata):
        table = run_differential_expression(clean_adata, verbose=False)
        signature = select_signature(table, n_genes=20, verbose=False)
        assert len(signature) == 20
        assert signature["adj_p_value"].is_monotonic_increasing
        assert get_signature_genes(signature) == list(signature.index)

    def test_all_genes_when_n_matches(self):
        signature = select_signature(_de_table(), n_genes=5, verbose=False)
        assert set(signature.index) == set(_de_table().index)

    def test_too_few_genes(self):
        with pytest.raises(InsufficientFeaturesError) as excinfo:
            select_signature(_de_table(), n_genes=6, verbose=False)
        assert excinfo.value.entity == 5
        assert excinfo.value.stage == "signature_selection"

    def test_non_positive_size(self):
        with pytest.raises(ValueError):
            select_signature(_de_table(), n_genes=0, verbose=False)

    def test_verbose_prints(self, capsys):
        select_signature(_de_table(), n_genes=3, verbose=True)
        out = capsys.readouterr().out
        assert "SIGNATURE SELECTION" in out
        assert "p3" in out


class TestSignatureOutputs:

    def test_save_signature(self, tmp_path):
        signature = select_signature(_de_table(), n_genes=3, verbose=False)
        path = tmp_path / "tables" / "signature.csv"
        save_signature(signature, path)
        saved = pd.read_csv(path)
        assert list(saved["probe_id"]) == ["p3", "p4", "p5"]

    def test_volcano(self, tmp_path):
        table = _de_table()
        signature = select_signature(table, n_genes=2, verbose=False)
        path = tmp_path / "volcano.png"
        fig = plot_volcano(table, signature, save_path=path)
        assert path.exists()
        plt.close(fig)
