"""
Sample Splitting Module
=======================

Partitions the cleaned cohort into a training set (used for gene selection
and template building) and a held-out validation set.

Key Design Decisions:
    - The training set has exactly floor(train_fraction * n_samples) samples,
      drawn uniformly without replacement.
    - Randomness comes from an explicit numpy Generator. Pass `rng` (or
      `seed`) for reproducible splits; with neither, the split is unseeded.
    - No stratification by default, so a split can be class-imbalanced by
      chance. `stratify=True` keeps the class proportions instead.
"""

import math
from typing import Optional, Tuple

import anndata as ad
import numpy as np
from sklearn.model_selection import train_test_split

from .config import DEFAULT_TRAIN_FRACTION
from .labels import get_class_counts


def make_rng(seed: Optional[int] = None) -> np.random.Generator:
    """Create the random source used by the splitter."""
    return np.random.default_rng(seed)


def training_size(n_samples: int, train_fraction: float) -> int:
    """Number of training samples: floor(train_fraction * n_samples)."""
    # Round first so that e.g. 0.75 * 100 never becomes 74.99999
    return int(math.floor(round(train_fraction * n_samples, 9)))


def split_samples(
    adata: ad.AnnData,
    train_fraction: float = DEFAULT_TRAIN_FRACTION,
    rng: Optional[np.random.Generator] = None,
    seed: Optional[int] = None,
    stratify: bool = False,
    verbose: bool = True,
) -> Tuple[ad.AnnData, ad.AnnData]:
    """
    Split samples into training and validation sets.

    Parameters
    ----------
    adata : AnnData
        Cleaned AnnData object (not modified in place).
    train_fraction : float, default=0.75
        Fraction of samples used for training, in (0, 1).
    rng : np.random.Generator, optional
        Random source. Takes precedence over `seed`.
    seed : int, optional
        Seed for a new Generator when `rng` is not given.
    stratify : bool, default=False
        If True, keep the Low/High proportions in both partitions
        (requires 'risk_binary' in adata.obs).
    verbose : bool, default=True
        Whether to print split statistics.

    Returns
    -------
    train : AnnData
        Training samples (a new object).
    validation : AnnData
        Remaining samples (a new object).

    Raises
    ------
    ValueError
        If train_fraction is outside (0, 1) or a partition would be empty.

    Examples
    --------
    >>> train, valid = split_samples(adata, seed=1)
    >>> train.n_obs + valid.n_obs == adata.n_obs
    True
    """
    if not 0 < train_fraction < 1:
        raise ValueError(f"train_fraction must be in (0, 1), got {train_fraction}")

    n_samples = adata.n_obs
    n_train = training_size(n_samples, train_fraction)
    if n_train == 0 or n_train == n_samples:
        raise ValueError(
            f"Splitting {n_samples} samples with train_fraction={train_fraction} "
            f"leaves an empty partition"
        )

    if rng is None:
        rng = make_rng(seed)

    if stratify:
        if "risk_binary" not in adata.obs.columns:
            raise ValueError("Stratified splitting requires 'risk_binary' in adata.obs")
        train_idx, _ = train_test_split(
            np.arange(n_samples),
            train_size=n_train,
            stratify=adata.obs["risk_binary"].values,
            random_state=int(rng.integers(2**31 - 1)),
        )
    else:
        train_idx = rng.choice(n_samples, size=n_train, replace=False)

    train_mask = np.zeros(n_samples, dtype=bool)
    train_mask[train_idx] = True

    train = adata[train_mask, :].copy()
    validation = adata[~train_mask, :].copy()

    if verbose:
        print(f"  Training samples: {train.n_obs} ({train_fraction:.0%})")
        print(f"  Validation samples: {validation.n_obs}")
        print(f"  Stratified: {stratify}")
        if "risk_group" in adata.obs.columns:
            print(f"  Training classes: {get_class_counts(train)}")
            print(f"  Validation classes: {get_class_counts(validation)}")

    return train, validation
