"""
Labels Module
=============

Maps the distant-metastasis event indicator to risk classes and provides
utilities for managing risk labels in the cohort AnnData object.

Label Source:
    The NKI phenotype table carries e.dmfs (1 = distant metastasis observed,
    0 = censored). Samples with an event form the "High" risk class, the
    remaining samples the "Low" risk class.

Risk Label Conventions:
    - Full string: "Low" / "High" (stored in adata.obs['risk_group'])
    - Binary: 0 (Low) / 1 (High) (stored in adata.obs['risk_binary'])
"""

from typing import Dict

import anndata as ad
import pandas as pd

from .config import EVENT_COLUMN, RISK_CLASSES, TIME_COLUMN
from .exceptions import DataIntegrityError


RISK_BINARY_TO_NAME = {0: "Low", 1: "High"}
RISK_NAME_TO_BINARY = {"Low": 0, "High": 1}


def add_risk_labels(
    adata: ad.AnnData,
    verbose: bool = True,
) -> ad.AnnData:
    """
    Add binary and named risk labels derived from e.dmfs.

    Creates:
        - 'risk_binary': 1 = High (event), 0 = Low (no event)
        - 'risk_group': "High" / "Low"

    Parameters
    ----------
    adata : AnnData
        Input AnnData object (not modified in place).
    verbose : bool, default=True
        Whether to print the label distribution.

    Returns
    -------
    AnnData
        Copy of the input with risk label columns added.

    Raises
    ------
    DataIntegrityError
        If e.dmfs is absent, missing for any sample, or not 0/1.
    """
    if EVENT_COLUMN not in adata.obs.columns:
        raise DataIntegrityError(
            f"'{EVENT_COLUMN}' column not found in adata.obs", stage="labels"
        )

    events = adata.obs[EVENT_COLUMN]
    missing = events.index[events.isna()].tolist()
    if missing:
        raise DataIntegrityError(
            f"Found {len(missing)} samples with missing {EVENT_COLUMN} labels. "
            "Drop unlabeled samples before adding risk labels.",
            stage="labels",
            entity=missing[:10],
        )

    unknown = set(events.unique()) - {0, 1}
    if unknown:
        raise DataIntegrityError(
            f"Unknown {EVENT_COLUMN} values: {unknown}. Expected 0 or 1.",
            stage="labels",
        )

    adata = adata.copy()
    adata.obs["risk_binary"] = events.astype(int).values
    adata.obs["risk_group"] = pd.Categorical(
        adata.obs["risk_binary"].map(RISK_BINARY_TO_NAME),
        categories=RISK_CLASSES,
    )

    if verbose:
        _print_label_summary(adata)

    return adata


def get_risk_distribution(adata: ad.AnnData) -> pd.DataFrame:
    """
    Get the distribution of risk labels.

    Parameters
    ----------
    adata : AnnData
        AnnData object with 'risk_group' in .obs

    Returns
    -------
    pd.DataFrame
        Distribution summary with counts and percentages, one row per class
        (both classes are always listed, even when empty).

    Examples
    --------
    >>> get_risk_distribution(adata)
      risk_group  count  percentage
    0        Low    196       66.4%
    1       High     99       33.6%
    """
    if "risk_group" not in adata.obs.columns:
        raise ValueError("'risk_group' column not found in adata.obs")

    counts = adata.obs["risk_group"].value_counts().reindex(RISK_CLASSES, fill_value=0)
    total = counts.sum()
    percentages = (counts.values / total * 100).round(1) if total > 0 else counts.values * 0.0

    dist_df = pd.DataFrame(
        {
            "risk_group": counts.index,
            "count": counts.values,
            "percentage": percentages,
        }
    )
    dist_df["percentage"] = dist_df["percentage"].astype(str) + "%"

    return dist_df


def get_class_counts(adata: ad.AnnData) -> Dict[str, int]:
    """Return {class name: sample count} for both risk classes."""
    counts = adata.obs["risk_group"].value_counts()
    return {name: int(counts.get(name, 0)) for name in RISK_CLASSES}


def validate_labels(
    adata: ad.AnnData,
    verbose: bool = True,
) -> bool:
    """
    Validate the post-cleaning label invariants.

    Checks:
        1. Every sample has a non-missing e.dmfs label
        2. Every sample has a non-missing, non-negative t.dmfs time
        3. Both risk classes are represented

    Parameters
    ----------
    adata : AnnData
        Cleaned AnnData object with risk labels.
    verbose : bool, default=True
        Whether to print validation results.

    Returns
    -------
    bool
        True if checks 2 and 3 pass.

    Raises
    ------
    DataIntegrityError
        If check 1 fails; unlabeled samples violate the cleaned-dataset
        invariant and cannot be analysed.
    """
    if verbose:
        print("=" * 60)
        print("LABEL VALIDATION")
        print("=" * 60)

    # Check 1: No missing event labels
    missing = adata.obs.index[adata.obs[EVENT_COLUMN].isna()].tolist()
    if verbose:
        print(f"\n1. All samples have {EVENT_COLUMN} labels:")
        print(f"   Missing values: {len(missing)}")
        print(f"   Status: {'PASS' if not missing else 'FAIL'}")
    if missing:
        raise DataIntegrityError(
            f"{len(missing)} samples have no {EVENT_COLUMN} label after cleaning",
            stage="labels",
            entity=missing[:10],
        )

    all_passed = True

    # Check 2: Valid follow-up times
    times = adata.obs[TIME_COLUMN]
    n_bad_times = int((times.isna() | (times < 0)).sum())
    check2_pass = n_bad_times == 0
    if verbose:
        print(f"\n2. All samples have valid {TIME_COLUMN}:")
        print(f"   Missing or negative: {n_bad_times}")
        print(f"   Status: {'PASS' if check2_pass else 'FAIL'}")
    all_passed &= check2_pass

    # Check 3: Both classes present
    counts = {
        name: int((adata.obs[EVENT_COLUMN] == RISK_NAME_TO_BINARY[name]).sum())
        for name in RISK_CLASSES
    }
    check3_pass = all(count > 0 for count in counts.values())
    if verbose:
        print(f"\n3. Both risk classes present:")
        print(f"   Counts: {counts}")
        print(f"   Status: {'PASS' if check3_pass else 'FAIL'}")
    all_passed &= check3_pass

    if verbose:
        print("\n" + "=" * 60)
        print(f"OVERALL: {'ALL CHECKS PASSED' if all_passed else 'SOME CHECKS FAILED'}")
        print("=" * 60)

    return all_passed


def _print_label_summary(adata: ad.AnnData) -> None:
    """Print a summary of risk labels in the AnnData object."""
    print(f"  Risk label distribution ({adata.n_obs} samples):")
    for _, row in get_risk_distribution(adata).iterrows():
        name = row["risk_group"]
        print(f"    {name} ({RISK_NAME_TO_BINARY[name]}): {row['count']} samples ({row['percentage']})")
