"""
Data Loading Module
===================

Loads the NKI breast-cancer microarray cohort (van de Vijver et al., 2002)
from tables exported from the Bioconductor `breastCancerNKI` package and
constructs an AnnData object for downstream analysis.

Data Source:
    - nki_expression.tsv.gz: Expression matrix (probes x samples)
    - nki_pheno.tsv.gz: Per-sample clinical annotation
    - nki_features.tsv.gz: Probe annotation (probe id -> gene symbol)

File Formats:
    Expression file:
        - Row 1: Sample identifiers (first cell is the probe id header)
        - Row 2+: log10 intensity ratios, probe identifier in first column
        - ~24,481 probes x 337 samples
        - Missing values are left empty (or "NA") and imputed later

    Phenotype file:
        - One row per sample, sample identifier in the first column
        - e.dmfs: distant-metastasis event indicator (1 = event, 0 = censored)
        - t.dmfs: time to distant metastasis or censoring (days)

    Feature file:
        - One row per probe, probe identifier in the first column
        - A gene symbol column ("NCBI.gene.symbol" in the Bioconductor export)

Data Quality Issues:
====================

1. MISSING SURVIVAL LABELS
   - Some samples in the phenotype table have no e.dmfs value
   - They cannot be assigned a risk class and are dropped during cleaning
     (see preprocessing.drop_unlabeled_samples)

2. MISSING EXPRESSION VALUES
   - Spotted two-colour arrays leave sporadic empty cells for flagged spots
   - They are imputed with k-nearest-neighbour imputation over genes
     (see preprocessing.impute_missing_values)

3. SAMPLE ID MISMATCHES
   - The expression and phenotype tables do not always cover the same samples
   - Only the intersection is kept; mismatches are reported
"""

from pathlib import Path
from typing import Optional, Union

import anndata as ad
import numpy as np
import pandas as pd

from .config import EVENT_COLUMN, SYMBOL_COLUMN, TIME_COLUMN
from .exceptions import DataIntegrityError


def _read_table(path: Path) -> pd.DataFrame:
    """Read a TSV/CSV table (optionally gzipped) with the first column as index."""
    suffixes = [s.lower() for s in path.suffixes]
    sep = "," if ".csv" in suffixes else "\t"
    return pd.read_csv(
        path,
        sep=sep,
        compression="infer",
        index_col=0,
        na_values=["NA", "NaN", ""],
        low_memory=False,
    )


def load_expression_matrix(path: Union[str, Path], verbose: bool = True) -> pd.DataFrame:
    """
    Load the probe expression matrix.

    Parameters
    ----------
    path : str or Path
        Path to the expression table (.tsv, .csv, optionally .gz).
    verbose : bool, default=True
        Whether to print loading statistics.

    Returns
    -------
    pd.DataFrame
        Expression matrix with probes as rows and samples as columns.
        Missing values are kept as NaN.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Expression file not found: {path}")

    expr_df = _read_table(path)
    expr_df.index = expr_df.index.astype(str).str.strip()
    expr_df.columns = expr_df.columns.astype(str).str.strip()

    # Drop spurious "Unnamed:" columns left by trailing delimiters
    unnamed_cols = [c for c in expr_df.columns if c.startswith("Unnamed:")]
    if unnamed_cols:
        if verbose:
            print(f"  Dropping {len(unnamed_cols)} unnamed columns: {unnamed_cols}")
        expr_df = expr_df.drop(columns=unnamed_cols)

    expr_df = expr_df.apply(pd.to_numeric, errors="coerce")

    if expr_df.index.duplicated().any():
        n_dup = int(expr_df.index.duplicated().sum())
        raise DataIntegrityError(
            f"Expression matrix has {n_dup} duplicated probe identifiers",
            stage="data_loading",
            entity=str(path),
        )

    if verbose:
        n_missing = int(expr_df.isna().sum().sum())
        print(
            f"Loaded expression matrix: {expr_df.shape[0]:,} probes x "
            f"{expr_df.shape[1]:,} samples ({n_missing:,} missing values)"
        )

    return expr_df


def load_sample_metadata(path: Union[str, Path], verbose: bool = True) -> pd.DataFrame:
    """
    Load the per-sample clinical annotation.

    Parameters
    ----------
    path : str or Path
        Path to the phenotype table.
    verbose : bool, default=True
        Whether to print loading statistics.

    Returns
    -------
    pd.DataFrame
        Sample metadata indexed by sample id, with at least the
        'e.dmfs' and 't.dmfs' columns.

    Raises
    ------
    DataIntegrityError
        If either survival column is absent.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Sample metadata file not found: {path}")

    sample_df = _read_table(path)
    sample_df.index = sample_df.index.astype(str).str.strip()
    sample_df.index.name = "sample_id"

    missing = [c for c in (EVENT_COLUMN, TIME_COLUMN) if c not in sample_df.columns]
    if missing:
        raise DataIntegrityError(
            f"Missing required survival columns: {missing}",
            stage="data_loading",
            entity=str(path),
        )

    sample_df[EVENT_COLUMN] = pd.to_numeric(sample_df[EVENT_COLUMN], errors="coerce")
    sample_df[TIME_COLUMN] = pd.to_numeric(sample_df[TIME_COLUMN], errors="coerce")

    if verbose:
        n_unlabeled = int(sample_df[EVENT_COLUMN].isna().sum())
        print(f"Loaded sample metadata: {len(sample_df)} samples")
        print(f"  Samples without {EVENT_COLUMN}: {n_unlabeled}")
        print(
            f"  Event distribution: "
            f"{sample_df[EVENT_COLUMN].value_counts().sort_index().to_dict()}"
        )

    return sample_df


def load_gene_annotation(
    path: Union[str, Path],
    symbol_column: str = "NCBI.gene.symbol",
    verbose: bool = True,
) -> pd.DataFrame:
    """
    Load the probe-to-gene-symbol annotation.

    Parameters
    ----------
    path : str or Path
        Path to the feature annotation table.
    symbol_column : str, default="NCBI.gene.symbol"
        Column holding gene symbols.
    verbose : bool, default=True
        Whether to print loading statistics.

    Returns
    -------
    pd.DataFrame
        Annotation indexed by probe id with a single 'symbol' column.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Gene annotation file not found: {path}")

    gene_df = _read_table(path)
    if symbol_column not in gene_df.columns:
        raise ValueError(
            f"Column '{symbol_column}' not found in {path}. "
            f"Available columns: {list(gene_df.columns)}"
        )

    gene_df = pd.DataFrame({SYMBOL_COLUMN: gene_df[symbol_column].fillna("").astype(str)})
    gene_df.index = gene_df.index.astype(str).str.strip()
    gene_df.index.name = "probe_id"

    if verbose:
        n_annotated = int((gene_df[SYMBOL_COLUMN] != "").sum())
        print(f"Loaded gene annotation: {len(gene_df):,} probes ({n_annotated:,} with symbols)")

    return gene_df


def build_anndata(
    expr_df: pd.DataFrame,
    sample_df: pd.DataFrame,
    gene_df: Optional[pd.DataFrame] = None,
    verbose: bool = True,
) -> ad.AnnData:
    """
    Combine expression matrix and sample metadata into an AnnData object.

    Parameters
    ----------
    expr_df : pd.DataFrame
        Expression matrix with probes as rows and samples as columns.
    sample_df : pd.DataFrame
        Sample metadata indexed by sample id.
    gene_df : pd.DataFrame, optional
        Probe annotation with a 'symbol' column.
    verbose : bool, default=True
        Whether to print a summary.

    Returns
    -------
    ad.AnnData
        AnnData object with:
            - X: Expression matrix (samples x probes), transposed from input
            - obs: Sample metadata (e.dmfs, t.dmfs, ...)
            - var: Probe metadata (symbol, when available)
    """
    expr_samples = set(expr_df.columns)
    meta_samples = set(sample_df.index)
    common_samples = expr_samples & meta_samples

    if len(common_samples) == 0:
        raise DataIntegrityError(
            "No common samples found between expression and sample metadata",
            stage="data_loading",
        )

    expr_only = expr_samples - meta_samples
    meta_only = meta_samples - expr_samples
    if verbose and expr_only:
        print(f"Warning: {len(expr_only)} samples in expression but not in metadata")
    if verbose and meta_only:
        print(f"Warning: {len(meta_only)} samples in metadata but not in expression")

    # Keep the column order of the expression matrix
    ordered_samples = [s for s in expr_df.columns if s in common_samples]
    expr_filtered = expr_df[ordered_samples]

    obs = sample_df.loc[ordered_samples].copy()
    obs.index.name = "sample_id"

    var = pd.DataFrame(index=expr_filtered.index.copy())
    var.index.name = "probe_id"
    if gene_df is not None:
        var[SYMBOL_COLUMN] = gene_df[SYMBOL_COLUMN].reindex(var.index).fillna("").astype(str)

    adata = ad.AnnData(
        X=expr_filtered.values.T.astype(np.float64),
        obs=obs,
        var=var,
    )

    if verbose:
        print(f"\nBuilt AnnData object:")
        print(f"  Shape: {adata.n_obs} samples x {adata.n_vars:,} probes")
        print(f"  Missing expression values: {int(np.isnan(adata.X).sum()):,}")

    return adata


def load_nki_data(
    expr_path: Union[str, Path],
    sample_path: Union[str, Path],
    gene_path: Optional[Union[str, Path]] = None,
    verbose: bool = True,
) -> ad.AnnData:
    """
    Convenience function to load and combine the cohort tables.

    Parameters
    ----------
    expr_path : str or Path
        Path to expression matrix file.
    sample_path : str or Path
        Path to sample metadata file.
    gene_path : str or Path, optional
        Path to probe annotation file. Skipped when None or missing.
    verbose : bool, default=True
        Whether to print progress.

    Returns
    -------
    ad.AnnData
        Uncleaned AnnData object (may contain NaN values and unlabeled samples).
    """
    if verbose:
        print("Loading expression matrix...")
    expr_df = load_expression_matrix(expr_path, verbose=verbose)

    if verbose:
        print("\nLoading sample metadata...")
    sample_df = load_sample_metadata(sample_path, verbose=verbose)

    gene_df = None
    if gene_path is not None and Path(gene_path).exists():
        if verbose:
            print("\nLoading gene annotation...")
        gene_df = load_gene_annotation(gene_path, verbose=verbose)

    if verbose:
        print("\nBuilding AnnData object...")
    return build_anndata(expr_df, sample_df, gene_df, verbose=verbose)


def simulate_expression_dataset(
    n_samples: int = 120,
    n_genes: int = 500,
    n_informative: int = 40,
    effect_size: float = 1.0,
    event_rate: float = 0.4,
    missing_fraction: float = 0.01,
    unlabeled_fraction: float = 0.0,
    seed: Optional[int] = 0,
) -> ad.AnnData:
    """
    Generate a synthetic cohort with the same layout as the NKI export.

    High-risk samples (e.dmfs = 1) have the first `n_informative` genes
    shifted up by `effect_size` (half of them) or down (the other half),
    and draw shorter event times.

    Parameters
    ----------
    n_samples : int, default=120
        Number of samples.
    n_genes : int, default=500
        Number of probes.
    n_informative : int, default=40
        Number of probes that differ between the risk classes.
    effect_size : float, default=1.0
        Mean shift of informative probes in the High class.
    event_rate : float, default=0.4
        Probability that a sample is a distant-metastasis event.
    missing_fraction : float, default=0.01
        Fraction of expression entries set to NaN.
    unlabeled_fraction : float, default=0.0
        Fraction of samples whose e.dmfs is set to NaN.
    seed : int, optional, default=0
        Seed for the random generator.

    Returns
    -------
    ad.AnnData
        Uncleaned synthetic AnnData object.
    """
    rng = np.random.default_rng(seed)

    events = (rng.random(n_samples) < event_rate).astype(float)
    X = rng.normal(0.0, 1.0, size=(n_samples, n_genes))

    # Gene-specific spread so that the variance filter has something to rank
    X *= rng.uniform(0.2, 1.5, size=n_genes)

    n_up = n_informative // 2
    high = events == 1
    X[np.ix_(high, np.arange(n_up))] += effect_size
    X[np.ix_(high, np.arange(n_up, n_informative))] -= effect_size

    # High-risk samples fail earlier
    scale = np.where(high, 1500.0, 4500.0)
    times = np.round(rng.exponential(scale), 1) + 1.0

    if missing_fraction > 0:
        mask = rng.random(X.shape) < missing_fraction
        X[mask] = np.nan

    if unlabeled_fraction > 0:
        n_unlabeled = int(round(n_samples * unlabeled_fraction))
        events[rng.choice(n_samples, size=n_unlabeled, replace=False)] = np.nan

    sample_ids = [f"NKI_{i:03d}" for i in range(n_samples)]
    probe_ids = [f"PROBE_{j:05d}" for j in range(n_genes)]

    obs = pd.DataFrame(
        {EVENT_COLUMN: events, TIME_COLUMN: times},
        index=pd.Index(sample_ids, name="sample_id"),
    )
    var = pd.DataFrame(
        {SYMBOL_COLUMN: [f"GENE{j}" for j in range(n_genes)]},
        index=pd.Index(probe_ids, name="probe_id"),
    )

    return ad.AnnData(X=X, obs=obs, var=var)


# Default file paths (relative to project root)
DEFAULT_EXPR_PATH = "data/raw/nki_expression.tsv.gz"
DEFAULT_SAMPLE_PATH = "data/raw/nki_pheno.tsv.gz"
DEFAULT_GENE_PATH = "data/raw/nki_features.tsv.gz"
