"""Shared fixtures: synthetic cohorts small enough to run the whole pipeline."""

import sys
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import anndata as ad
import numpy as np
import pandas as pd
import pytest

_root = str(Path(__file__).resolve().parents[1])
if _root not in sys.path:
    sys.path.insert(0, _root)

from prognostic_signature.data_loading import simulate_expression_dataset
from prognostic_signature.labels import add_risk_labels
from prognostic_signature.preprocessing import run_preprocessing_pipeline


def make_separated_adata(n_per_class=10, n_genes=10, noise=0.05, seed=0):
    """Two tight clusters: Low samples near vector A, High samples near B = -A."""
    rng = np.random.default_rng(seed)
    vector_a = np.linspace(-2.0, 2.0, n_genes)
    vector_b = -vector_a

    X = np.vstack([
        vector_a + rng.normal(0, noise, size=(n_per_class, n_genes)),
        vector_b + rng.normal(0, noise, size=(n_per_class, n_genes)),
    ])
    events = np.array([0.0] * n_per_class + [1.0] * n_per_class)
    times = np.concatenate([
        np.linspace(3000, 4000, n_per_class),
        np.linspace(100, 500, n_per_class),
    ])

    obs = pd.DataFrame(
        {"e.dmfs": events, "t.dmfs": times},
        index=pd.Index([f"S{i:02d}" for i in range(2 * n_per_class)], name="sample_id"),
    )
    var = pd.DataFrame(
        {"symbol": [f"G{j}" for j in range(n_genes)]},
        index=pd.Index([f"P{j:02d}" for j in range(n_genes)], name="probe_id"),
    )
    return add_risk_labels(ad.AnnData(X=X, obs=obs, var=var), verbose=False)


@pytest.fixture
def raw_adata():
    return simulate_expression_dataset(
        n_samples=80,
        n_genes=200,
        n_informative=30,
        effect_size=2.0,
        missing_fraction=0.02,
        unlabeled_fraction=0.1,
        seed=7,
    )


@pytest.fixture
def clean_adata(raw_adata):
    return run_preprocessing_pipeline(raw_adata, verbose=False)


@pytest.fixture
def separated_adata():
    return make_separated_adata()
