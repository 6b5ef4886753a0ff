"""
Pipeline Defaults
=================

Default parameters for every pipeline stage, kept in one place so the
driver script, the pipeline runner and the tests agree on them.

Defaults for the NKI breast-cancer cohort:
    - 75/25 training/validation split, no stratification
    - genefilter-style IQR filter at the median
    - 70-gene signature (the size of the MammaPrint signature)
    - 10-nearest-neighbour imputation (impute.knn defaults)
"""

from typing import Any, Dict, Optional


# Column names in the sample metadata (as exported from breastCancerNKI)
EVENT_COLUMN = "e.dmfs"
TIME_COLUMN = "t.dmfs"
SYMBOL_COLUMN = "symbol"

# Risk class names, indexed by the binary event label
RISK_CLASSES = ["Low", "High"]

DEFAULT_SIGNATURE_SIZE = 70
DEFAULT_TRAIN_FRACTION = 0.75

DEFAULT_PIPELINE_PARAMS = {
    # Imputation (impute.knn defaults)
    "knn_k": 10,
    "rowmax": 0.5,
    "colmax": 0.8,
    # Sample splitting
    "train_fraction": DEFAULT_TRAIN_FRACTION,
    "seed": None,  # None gives an unseeded split
    "stratify": False,
    # Differential expression
    "var_func": "iqr",
    "var_cutoff": 0.5,
    "pvalue_adjust_method": "fdr_bh",
    # Signature selection
    "signature_size": DEFAULT_SIGNATURE_SIZE,
}

# Default output locations (relative to project root)
DEFAULT_RESULTS_DIR = "results"


def resolve_params(overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Merge caller overrides into the default pipeline parameters.

    Parameters
    ----------
    overrides : dict, optional
        Parameters to override. Keys must exist in DEFAULT_PIPELINE_PARAMS.

    Returns
    -------
    dict
        A new parameter dictionary (the defaults are never modified).

    Raises
    ------
    ValueError
        If an override key is not a known pipeline parameter.

    Examples
    --------
    >>> params = resolve_params({"signature_size": 50, "seed": 1})
    >>> params["signature_size"], params["train_fraction"]
    (50, 0.75)
    """
    params = DEFAULT_PIPELINE_PARAMS.copy()
    if overrides:
        unknown = set(overrides) - set(params)
        if unknown:
            raise ValueError(
                f"Unknown pipeline parameters: {sorted(unknown)}. "
                f"Expected a subset of: {sorted(params)}"
            )
        params.update(overrides)
    return params
