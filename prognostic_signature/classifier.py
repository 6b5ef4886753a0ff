"""
Template Classifier Module
==========================

Nearest-template classification of samples by Pearson correlation.

Build phase (training set only):
    For each risk class, the template is the per-gene arithmetic mean of the
    signature genes over that class's training samples.

Classify phase (any set):
    Each sample's signature-gene vector is correlated with both templates
    and assigned to the class whose template correlates more strongly.

Conventions:
    - Exact ties go to "Low", including a sample identical to the High
      template that also correlates 1.0 with the Low template.
    - A sample whose vector is identical to a template gets correlation 1.0
      with it, even if the vector is constant. Its correlation to the other
      template is NaN when undefined, and a NaN correlation never wins.
    - Otherwise a zero-variance vector (sample or template) makes the
      correlation undefined and raises DegenerateVectorError.
"""

from typing import List, Optional

import anndata as ad
import numpy as np
import pandas as pd

from .config import RISK_CLASSES
from .exceptions import DegenerateVectorError, EmptyClassError

CLASSIFICATION_COLUMNS = ["corr_low", "corr_high", "true_label", "predicted_label"]


def _subset_genes(adata: ad.AnnData, genes: List[str]) -> np.ndarray:
    """Dense samples x genes matrix restricted to `genes`, in that order."""
    missing = [g for g in genes if g not in adata.var_names]
    if missing:
        raise ValueError(
            f"{len(missing)} signature genes not found in the dataset: "
            f"{missing[:10]}{'...' if len(missing) > 10 else ''}"
        )
    X = adata[:, genes].X
    if hasattr(X, "toarray"):
        X = X.toarray()
    return np.asarray(X, dtype=np.float64)


def build_templates(
    adata: ad.AnnData,
    signature_genes: List[str],
    verbose: bool = True,
) -> pd.DataFrame:
    """
    Compute the mean-expression template of each risk class.

    Parameters
    ----------
    adata : AnnData
        Training AnnData object with 'risk_group' in .obs
    signature_genes : list of str
        Signature probe identifiers.
    verbose : bool, default=True
        Whether to print class sizes.

    Returns
    -------
    pd.DataFrame
        Signature genes x ["Low", "High"] template matrix.

    Raises
    ------
    EmptyClassError
        If a risk class has no training samples.
    """
    if "risk_group" not in adata.obs.columns:
        raise ValueError("'risk_group' column not found in adata.obs")
    if len(signature_genes) == 0:
        raise ValueError("Signature is empty")

    X = _subset_genes(adata, list(signature_genes))
    groups = adata.obs["risk_group"].astype(str).values

    templates = {}
    for name in RISK_CLASSES:
        mask = groups == name
        if not mask.any():
            raise EmptyClassError(
                f"Risk class '{name}' has no training samples; cannot build its template",
                entity=name,
            )
        templates[name] = X[mask].mean(axis=0)
        if verbose:
            print(f"  {name} template: mean of {int(mask.sum())} training samples")

    templates_df = pd.DataFrame(templates, index=pd.Index(list(signature_genes), name="probe_id"))

    if verbose:
        low, high = templates_df["Low"].values, templates_df["High"].values
        print(f"  Template length: {len(templates_df)} genes")
        if _has_variance(low) and _has_variance(high):
            print(f"  Correlation between templates: {pearson_correlation(low, high):.3f}")
        else:
            print("  Correlation between templates: undefined (constant template)")

    return templates_df


def _has_variance(v: np.ndarray) -> bool:
    return bool(np.ptp(v) > 0)


def _nearest_template(corrs: dict) -> str:
    """High only when its correlation is strictly greater; NaN never wins."""
    high = corrs["High"] if not np.isnan(corrs["High"]) else -np.inf
    low = corrs["Low"] if not np.isnan(corrs["Low"]) else -np.inf
    return "High" if high > low else "Low"


def pearson_correlation(
    x: np.ndarray,
    y: np.ndarray,
    x_name: Optional[str] = None,
    y_name: Optional[str] = None,
) -> float:
    """
    Pearson correlation coefficient between two vectors.

    Parameters
    ----------
    x, y : np.ndarray
        Vectors of equal length.
    x_name, y_name : str, optional
        Names reported if a vector is degenerate.

    Returns
    -------
    float
        Correlation in [-1, 1]; exactly 1.0 for identical vectors.

    Raises
    ------
    DegenerateVectorError
        If the vectors differ and one of them has zero variance.
    """
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    if x.shape != y.shape:
        raise ValueError(f"Vector lengths differ: {x.shape} vs {y.shape}")

    if np.array_equal(x, y):
        return 1.0

    for vec, name in ((x, x_name), (y, y_name)):
        if not _has_variance(vec):
            raise DegenerateVectorError(
                f"Vector has zero variance across {len(vec)} signature genes; "
                "correlation is undefined",
                entity=name,
            )

    xc = x - x.mean()
    yc = y - y.mean()
    r = (xc @ yc) / np.sqrt((xc @ xc) * (yc @ yc))
    return float(np.clip(r, -1.0, 1.0))


def classify_samples(
    adata: ad.AnnData,
    templates: pd.DataFrame,
    verbose: bool = True,
) -> pd.DataFrame:
    """
    Assign every sample to the template it correlates with best.

    Parameters
    ----------
    adata : AnnData
        Samples to classify (training or validation).
    templates : pd.DataFrame
        Output of build_templates().
    verbose : bool, default=True
        Whether to print the prediction distribution.

    Returns
    -------
    pd.DataFrame
        Classification result indexed by sample id with columns:
            - corr_low: correlation with the Low template
            - corr_high: correlation with the High template
            - true_label: "Low"/"High" (None when the sample is unlabeled)
            - predicted_label: "Low"/"High"
    """
    genes = templates.index.astype(str).tolist()
    X = _subset_genes(adata, genes)
    template_vectors = {name: templates[name].values.astype(np.float64) for name in RISK_CLASSES}

    if "risk_group" in adata.obs.columns:
        true_labels = adata.obs["risk_group"].astype(object).values
    else:
        true_labels = np.full(adata.n_obs, None, dtype=object)

    rows = []
    for sample_id, x, true_label in zip(adata.obs_names, X, true_labels):
        matched = [name for name in RISK_CLASSES if np.array_equal(x, template_vectors[name])]
        corrs = {}
        if matched:
            for name in RISK_CLASSES:
                t = template_vectors[name]
                if name in matched:
                    corrs[name] = 1.0
                elif _has_variance(x) and _has_variance(t):
                    corrs[name] = pearson_correlation(x, t)
                else:
                    corrs[name] = np.nan
        else:
            for name in RISK_CLASSES:
                corrs[name] = pearson_correlation(
                    x, template_vectors[name], x_name=sample_id, y_name=f"{name} template"
                )
        predicted = _nearest_template(corrs)

        rows.append(
            {
                "sample_id": sample_id,
                "corr_low": corrs["Low"],
                "corr_high": corrs["High"],
                "true_label": true_label,
                "predicted_label": predicted,
            }
        )

    result = pd.DataFrame(rows, columns=["sample_id"] + CLASSIFICATION_COLUMNS).set_index("sample_id")

    if verbose:
        counts = result["predicted_label"].value_counts().reindex(RISK_CLASSES, fill_value=0)
        print(f"  Classified {len(result)} samples: {counts.to_dict()}")

    return result
