"""
Preprocessing Module
====================

Cleans the cohort before any statistics are computed.

Key Considerations:
-------------------
1. Samples without a distant-metastasis label (e.dmfs) cannot be assigned a
   risk class; they are dropped, never imputed.

2. Missing expression values are imputed with k-nearest-neighbour
   imputation over the gene x sample matrix. As in Bioconductor
   `impute.knn`, neighbours are GENES: a missing entry of gene g in sample s
   is the mean of sample s over the k genes closest to g (Euclidean distance
   over the samples both genes share).
       - Genes missing in more than `rowmax` of samples are filled with the
         per-sample mean instead.
       - A sample missing more than `colmax` of its genes makes the
         imputation meaningless and aborts the run.

3. The data are already log10 intensity ratios. No further normalization
   is applied.
"""

from pathlib import Path
from typing import Callable, Optional, Union

import anndata as ad
import numpy as np
import scanpy as sc
from sklearn.impute import KNNImputer

from .config import DEFAULT_PIPELINE_PARAMS, EVENT_COLUMN
from .exceptions import DataIntegrityError
from .labels import add_risk_labels, validate_labels

# Imputed fraction above which results are flagged as unreliable
IMPUTATION_WARNING_FRACTION = 0.05


def drop_unlabeled_samples(
    adata: ad.AnnData,
    verbose: bool = True,
) -> ad.AnnData:
    """
    Remove every sample whose e.dmfs label is missing.

    Parameters
    ----------
    adata : AnnData
        Input AnnData object (not modified in place).
    verbose : bool, default=True
        Whether to print filtering statistics.

    Returns
    -------
    AnnData
        Filtered AnnData object (copy of input).
    """
    if EVENT_COLUMN not in adata.obs.columns:
        raise DataIntegrityError(
            f"'{EVENT_COLUMN}' column not found in adata.obs", stage="data_cleaning"
        )

    n_before = adata.n_obs
    labeled = adata.obs[EVENT_COLUMN].notna().values
    adata = adata[labeled, :].copy()

    if verbose:
        print(f"  Samples before filtering: {n_before}")
        print(f"  Removed (missing {EVENT_COLUMN}): {n_before - adata.n_obs}")
        print(f"  Samples after filtering: {adata.n_obs}")

    if adata.n_obs == 0:
        raise DataIntegrityError(
            f"No samples with a {EVENT_COLUMN} label remain", stage="data_cleaning"
        )

    return adata


def knn_impute_genes(
    gene_by_sample: np.ndarray,
    k: int = 10,
    rowmax: float = 0.5,
) -> np.ndarray:
    """
    Impute a gene x sample matrix using the k nearest genes.

    Parameters
    ----------
    gene_by_sample : np.ndarray
        Matrix of shape (n_genes, n_samples) with NaN for missing values.
    k : int, default=10
        Number of neighbouring genes.
    rowmax : float, default=0.5
        Genes with a larger missing fraction are filled with sample means.

    Returns
    -------
    np.ndarray
        Imputed matrix of the same shape with no NaN values.
    """
    M = np.array(gene_by_sample, dtype=np.float64, copy=True)

    row_missing = np.isnan(M).mean(axis=1)
    heavy = row_missing > rowmax

    if heavy.any():
        sample_means = np.nanmean(M[~heavy], axis=0) if (~heavy).any() else np.nanmean(M, axis=0)
        sample_means = np.where(np.isnan(sample_means), 0.0, sample_means)
        rows, cols = np.where(np.isnan(M) & heavy[:, None])
        M[rows, cols] = sample_means[cols]

    light = ~heavy
    if np.isnan(M[light]).any():
        n_neighbors = max(1, min(k, int(light.sum()) - 1))
        imputer = KNNImputer(n_neighbors=n_neighbors, keep_empty_features=True)
        M[light] = imputer.fit_transform(M[light])

    return M


def impute_missing_values(
    adata: ad.AnnData,
    k: int = DEFAULT_PIPELINE_PARAMS["knn_k"],
    rowmax: float = DEFAULT_PIPELINE_PARAMS["rowmax"],
    colmax: float = DEFAULT_PIPELINE_PARAMS["colmax"],
    imputer: Optional[Callable[[np.ndarray], np.ndarray]] = None,
    verbose: bool = True,
) -> ad.AnnData:
    """
    Impute missing expression values.

    Parameters
    ----------
    adata : AnnData
        Input AnnData object (not modified in place).
    k : int, default=10
        Number of neighbouring genes used by the default KNN imputer.
    rowmax : float, default=0.5
        Maximum missing fraction of a gene for KNN imputation.
    colmax : float, default=0.8
        Maximum missing fraction tolerated for any sample.
    imputer : callable, optional
        Replacement imputation routine taking and returning a gene x sample
        matrix. Defaults to knn_impute_genes(k=k, rowmax=rowmax).
    verbose : bool, default=True
        Whether to print imputation statistics.

    Returns
    -------
    AnnData
        Copy of the input with no missing expression values. The number of
        imputed entries is stored in adata.uns['n_imputed'].

    Raises
    ------
    DataIntegrityError
        If a sample exceeds the colmax missing fraction.
    """
    adata = adata.copy()
    X = np.asarray(adata.X, dtype=np.float64)

    missing_mask = np.isnan(X)
    n_missing = int(missing_mask.sum())
    fraction = n_missing / X.size if X.size else 0.0

    if verbose:
        print(f"  Missing values: {n_missing:,} ({fraction:.2%} of entries)")

    adata.uns["n_imputed"] = n_missing
    adata.uns["imputed_fraction"] = fraction

    if n_missing == 0:
        if verbose:
            print("  No imputation needed")
        adata.X = X
        return adata

    sample_missing = missing_mask.mean(axis=1)
    too_sparse = adata.obs_names[sample_missing > colmax].tolist()
    if too_sparse:
        raise DataIntegrityError(
            f"{len(too_sparse)} samples have more than {colmax:.0%} missing values",
            stage="data_cleaning",
            entity=too_sparse[:10],
        )

    if imputer is None:
        imputed = knn_impute_genes(X.T, k=k, rowmax=rowmax).T
    else:
        imputed = np.asarray(imputer(X.T), dtype=np.float64).T

    if imputed.shape != X.shape or np.isnan(imputed).any():
        raise DataIntegrityError(
            "Imputation left missing values or changed the matrix shape",
            stage="data_cleaning",
        )

    adata.X = imputed

    if verbose:
        n_heavy = int((missing_mask.mean(axis=0) > rowmax).sum())
        print(f"  Imputed {n_missing:,} values (k={k})")
        if n_heavy:
            print(f"  {n_heavy:,} genes above rowmax={rowmax} filled with sample means")
        if fraction > IMPUTATION_WARNING_FRACTION:
            print(
                f"  Warning: {fraction:.1%} of entries were imputed; "
                "downstream results may be unreliable"
            )

    return adata


def run_preprocessing_pipeline(
    adata: ad.AnnData,
    k: int = DEFAULT_PIPELINE_PARAMS["knn_k"],
    rowmax: float = DEFAULT_PIPELINE_PARAMS["rowmax"],
    colmax: float = DEFAULT_PIPELINE_PARAMS["colmax"],
    verbose: bool = True,
) -> ad.AnnData:
    """
    Run the complete cleaning pipeline.

    Steps:
        1. Drop samples without an e.dmfs label
        2. Impute missing expression values
        3. Add risk labels
        4. Validate label invariants

    Parameters
    ----------
    adata : AnnData
        Raw AnnData object (not modified in place).
    k, rowmax, colmax
        Imputation parameters, see impute_missing_values().
    verbose : bool, default=True
        Whether to print progress information.

    Returns
    -------
    AnnData
        Cleaned AnnData object.
    """
    if verbose:
        print("=" * 60)
        print("PREPROCESSING PIPELINE")
        print("=" * 60)
        print(f"\nInput shape: {adata.n_obs} samples x {adata.n_vars:,} probes")

    if verbose:
        print("\n[Step 1/4] Dropping unlabeled samples...")
    adata = drop_unlabeled_samples(adata, verbose=verbose)

    if verbose:
        print(f"\n[Step 2/4] Imputing missing values (k={k})...")
    adata = impute_missing_values(adata, k=k, rowmax=rowmax, colmax=colmax, verbose=verbose)

    if verbose:
        print("\n[Step 3/4] Adding risk labels...")
    adata = add_risk_labels(adata, verbose=verbose)

    if verbose:
        print("\n[Step 4/4] Validating labels...")
    if not validate_labels(adata, verbose=verbose) and verbose:
        print("Warning: Some label validation checks failed")

    if verbose:
        print("\n" + "=" * 60)
        print("PREPROCESSING COMPLETE")
        print("=" * 60)
        print(f"Final shape: {adata.n_obs} samples x {adata.n_vars:,} probes")

    return adata


def save_preprocessed_data(
    adata: ad.AnnData,
    output_path: Union[str, Path],
    verbose: bool = True,
) -> None:
    """
    Save preprocessed AnnData object to disk.

    Parameters
    ----------
    adata : AnnData
        Preprocessed AnnData object to save.
    output_path : str or Path
        Output file path (should end in .h5ad).
    verbose : bool, default=True
        Whether to print save information.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    adata.write_h5ad(output_path)

    if verbose:
        file_size_mb = output_path.stat().st_size / (1024 * 1024)
        print(f"Saved preprocessed data to: {output_path}")
        print(f"File size: {file_size_mb:.1f} MB")


def load_preprocessed_data(
    input_path: Union[str, Path],
    verbose: bool = True,
) -> ad.AnnData:
    """
    Load preprocessed AnnData object from disk.

    Parameters
    ----------
    input_path : str or Path
        Path to .h5ad file.
    verbose : bool, default=True
        Whether to print load information.

    Returns
    -------
    AnnData
        Loaded AnnData object.
    """
    input_path = Path(input_path)

    if not input_path.exists():
        raise FileNotFoundError(f"Preprocessed data file not found: {input_path}")

    adata = sc.read_h5ad(input_path)

    if verbose:
        print(f"Loaded preprocessed data from: {input_path}")
        print(f"Shape: {adata.n_obs} samples x {adata.n_vars:,} probes")

    return adata


# Default output path (relative to project root)
DEFAULT_OUTPUT_PATH = "data/processed/nki_adata.h5ad"
