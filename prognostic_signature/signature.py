"""
Signature Selection Module
==========================

Extracts the prognostic gene signature from the differential expression
table of the training set.

Ranking:
    1. Adjusted p-value, ascending
    2. Absolute log fold change, descending (ties in 1)
    3. Probe identifier (ties in 1 and 2, keeps the ranking deterministic)

The default signature keeps the top 70 probes, the size of the MammaPrint
signature (van 't Veer et al., 2002).
"""

from pathlib import Path
from typing import List, Optional, Union

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from .config import DEFAULT_SIGNATURE_SIZE, SYMBOL_COLUMN
from .exceptions import InsufficientFeaturesError

# Set matplotlib style
plt.style.use("seaborn-v0_8-whitegrid")


def rank_genes(de_table: pd.DataFrame) -> pd.DataFrame:
    """
    Order a differential expression table by signature priority.

    Parameters
    ----------
    de_table : pd.DataFrame
        Output of run_differential_expression().

    Returns
    -------
    pd.DataFrame
        Reordered copy with an added 'rank' column (1 = best).
    """
    required = ["adj_p_value", "log_fc"]
    missing = [c for c in required if c not in de_table.columns]
    if missing:
        raise ValueError(f"Missing required columns in DE table: {missing}")

    ranked = de_table.copy()
    ranked["_abs_log_fc"] = ranked["log_fc"].abs()
    ranked["_probe"] = ranked.index.astype(str)
    ranked = ranked.sort_values(
        ["adj_p_value", "_abs_log_fc", "_probe"],
        ascending=[True, False, True],
        kind="mergesort",
    ).drop(columns=["_abs_log_fc", "_probe"])
    ranked["rank"] = np.arange(1, len(ranked) + 1)
    return ranked


def select_signature(
    de_table: pd.DataFrame,
    n_genes: int = DEFAULT_SIGNATURE_SIZE,
    verbose: bool = True,
) -> pd.DataFrame:
    """
    Select the top-N genes as the working signature.

    Parameters
    ----------
    de_table : pd.DataFrame
        Output of run_differential_expression().
    n_genes : int, default=70
        Signature size.
    verbose : bool, default=True
        Whether to print the selected genes.

    Returns
    -------
    pd.DataFrame
        Exactly n_genes rows, indexed by probe id, in rank order, with the
        DE statistics and a 'rank' column.

    Raises
    ------
    InsufficientFeaturesError
        If fewer than n_genes candidates are available.

    Examples
    --------
    >>> signature = select_signature(de_table, n_genes=70)
    >>> len(signature)
    70
    """
    if n_genes < 1:
        raise ValueError(f"n_genes must be positive, got {n_genes}")

    if len(de_table) < n_genes:
        raise InsufficientFeaturesError(
            f"Requested a {n_genes}-gene signature but only {len(de_table)} "
            "genes passed the variance filter",
            entity=len(de_table),
        )

    signature = rank_genes(de_table).head(n_genes)

    if verbose:
        print("=" * 60)
        print("SIGNATURE SELECTION")
        print("=" * 60)
        print(f"\nCandidate genes: {len(de_table):,}")
        print(f"Signature size: {len(signature)}")
        print(
            f"Adjusted p-value range: [{signature['adj_p_value'].min():.3g}, "
            f"{signature['adj_p_value'].max():.3g}]"
        )
        n_up = int((signature["log_fc"] > 0).sum())
        print(f"Up in High risk: {n_up}, down in High risk: {len(signature) - n_up}")
        print(f"\nTop 10 genes:")
        for probe, row in signature.head(10).iterrows():
            label = row[SYMBOL_COLUMN] if SYMBOL_COLUMN in signature.columns else ""
            print(
                f"  {int(row['rank']):>3}. {probe} {label} "
                f"(logFC={row['log_fc']:+.3f}, adj.p={row['adj_p_value']:.3g})"
            )

    return signature


def get_signature_genes(signature_df: pd.DataFrame) -> List[str]:
    """Return the ordered probe identifiers of a signature table."""
    return signature_df.index.astype(str).tolist()


def save_signature(
    signature_df: pd.DataFrame,
    save_path: Union[str, Path] = "results/tables/signature_genes.csv",
) -> pd.DataFrame:
    """
    Save the signature table to CSV.

    Parameters
    ----------
    signature_df : pd.DataFrame
        Output of select_signature().
    save_path : str or Path
        Path to save the CSV file.

    Returns
    -------
    pd.DataFrame
        The saved table (probe id as a column).
    """
    save_path = Path(save_path)
    save_path.parent.mkdir(parents=True, exist_ok=True)

    df = signature_df.reset_index()
    df.to_csv(save_path, index=False)
    print(f"Signature genes saved to: {save_path}")

    return df


def plot_volcano(
    de_table: pd.DataFrame,
    signature_df: Optional[pd.DataFrame] = None,
    title: str = "Differential Expression: High vs Low Risk",
    save_path: Optional[Union[str, Path]] = None,
    figsize: tuple = (9, 7),
) -> plt.Figure:
    """
    Volcano plot of the DE table with signature genes highlighted.

    Parameters
    ----------
    de_table : pd.DataFrame
        Output of run_differential_expression().
    signature_df : pd.DataFrame, optional
        Signature genes to highlight.
    title : str
        Plot title.
    save_path : str or Path, optional
        If provided, saves the figure to this path.
    figsize : tuple, default=(9, 7)
        Figure size in inches.

    Returns
    -------
    plt.Figure
        The matplotlib Figure object.
    """
    fig, ax = plt.subplots(figsize=figsize)

    neg_log_p = -np.log10(de_table["p_value"].clip(lower=1e-300))
    in_signature = (
        de_table.index.isin(signature_df.index)
        if signature_df is not None
        else np.zeros(len(de_table), dtype=bool)
    )

    ax.scatter(
        de_table["log_fc"][~in_signature],
        neg_log_p[~in_signature],
        s=8,
        alpha=0.4,
        color="#94a3b8",  # Gray
        label="Other genes",
    )
    if in_signature.any():
        ax.scatter(
            de_table["log_fc"][in_signature],
            neg_log_p[in_signature],
            s=20,
            alpha=0.9,
            color="#f97316",  # Orange
            edgecolor="white",
            linewidth=0.5,
            label=f"Signature genes (n={int(in_signature.sum())})",
        )

    ax.axvline(0, color="#64748b", linestyle="--", linewidth=1, alpha=0.7)
    ax.set_xlabel("log fold change (High - Low)", fontsize=12)
    ax.set_ylabel("-log10(p-value)", fontsize=12)
    ax.set_title(title, fontsize=14, fontweight="bold")
    ax.legend(loc="upper left", fontsize=10)
    ax.grid(True, alpha=0.3)

    plt.tight_layout()

    if save_path is not None:
        save_path = Path(save_path)
        save_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(save_path, dpi=150, bbox_inches="tight")
        print(f"Volcano plot saved to: {save_path}")

    return fig
