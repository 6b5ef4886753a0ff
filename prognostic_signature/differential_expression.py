"""
Differential Expression Module
==============================

Moderated t-tests between the Low and High risk classes, following the
standard Bioconductor limma workflow:

    varFilter -> lmFit(~0 + group) -> contrasts.fit(High - Low) -> eBayes -> topTable

Steps:
    1. Variance filter: drop probes whose spread across samples (IQR by
       default) is not above the median spread. This halves the
       multiple-testing burden and removes flat, uninformative probes.
    2. Linear model per gene on a group-means design matrix (one 0/1 column
       per risk class, no intercept).
    3. Contrast High - Low: log fold change and its unscaled standard error.
    4. Empirical Bayes: the gene-wise residual variances are assumed to
       follow a scaled inverse chi-square prior. The prior degrees of
       freedom d0 and scale s0^2 are estimated from all genes by matching
       the moments of the log-variances (Smyth, 2004), and each gene's
       variance is shrunk towards s0^2:

           s2_post = (d0 * s0^2 + d * s2) / (d0 + d)

       Moderated t = log_fc / (stdev_unscaled * sqrt(s2_post)) with d + d0
       degrees of freedom.
    5. Benjamini-Hochberg FDR correction (statsmodels).

Expected Behaviour:
    - Output has one row per gene that survived the variance filter
    - With only a handful of samples per class the shrinkage dominates and
      moderated t-statistics are far more stable than ordinary t-tests
"""

from typing import Any, Dict, Optional

import anndata as ad
import numpy as np
import pandas as pd
from scipy import special, stats
from statsmodels.stats.multitest import multipletests

from .config import DEFAULT_PIPELINE_PARAMS, RISK_CLASSES, SYMBOL_COLUMN
from .exceptions import DegenerateDesignError

# Default contrast: High - Low
DEFAULT_CONTRAST = {"High": 1.0, "Low": -1.0}


def compute_gene_spread(X: np.ndarray, var_func: str = "iqr") -> np.ndarray:
    """
    Per-gene spread across samples.

    Parameters
    ----------
    X : np.ndarray
        Expression matrix of shape (n_samples, n_genes).
    var_func : str, default="iqr"
        "iqr" (interquartile range) or "var" (sample variance).

    Returns
    -------
    np.ndarray
        Spread of each gene, shape (n_genes,).
    """
    if var_func == "iqr":
        q75, q25 = np.percentile(X, [75, 25], axis=0)
        return q75 - q25
    elif var_func == "var":
        return X.var(axis=0, ddof=1)
    raise ValueError(f"Unknown var_func: {var_func}. Use 'iqr' or 'var'")


def variance_filter(
    adata: ad.AnnData,
    var_cutoff: Optional[float] = DEFAULT_PIPELINE_PARAMS["var_cutoff"],
    var_func: str = DEFAULT_PIPELINE_PARAMS["var_func"],
    verbose: bool = True,
) -> ad.AnnData:
    """
    Remove low-variability genes.

    A gene is kept when its spread is strictly greater than the
    `var_cutoff` quantile of all spreads (genefilter::varFilter semantics).

    Parameters
    ----------
    adata : AnnData
        Input AnnData object (not modified in place).
    var_cutoff : float or None, default=0.5
        Quantile of the spread distribution used as threshold, in [0, 1).
        None disables the filter.
    var_func : str, default="iqr"
        Spread measure, see compute_gene_spread().
    verbose : bool, default=True
        Whether to print filtering statistics.

    Returns
    -------
    AnnData
        Filtered AnnData object (copy of input) with the spread stored in
        adata.var['spread'].
    """
    X = np.asarray(adata.X, dtype=np.float64)
    spread = compute_gene_spread(X, var_func=var_func)

    n_before = adata.n_vars
    if var_cutoff is None:
        adata = adata.copy()
        adata.var["spread"] = spread
        if verbose:
            print(f"  Variance filter disabled: keeping all {n_before:,} genes")
        return adata

    if not 0 <= var_cutoff < 1:
        raise ValueError(f"var_cutoff must be in [0, 1), got {var_cutoff}")

    threshold = float(np.quantile(spread, var_cutoff))
    keep = spread > threshold

    adata = adata[:, keep].copy()
    adata.var["spread"] = spread[keep]

    if verbose:
        print(f"  Spread measure: {var_func} (threshold {threshold:.4f} at q={var_cutoff})")
        print(f"  Genes before filtering: {n_before:,}")
        print(f"  Genes after filtering: {adata.n_vars:,}")
        if adata.n_vars == n_before:
            print("  Warning: variance filter removed no genes (tied spreads)")

    return adata


def build_design_matrix(adata: ad.AnnData) -> pd.DataFrame:
    """
    Build the group-means design matrix from the risk labels.

    Parameters
    ----------
    adata : AnnData
        AnnData object with 'risk_binary' in .obs

    Returns
    -------
    pd.DataFrame
        Samples x ["Low", "High"] matrix of 0/1 indicators.
    """
    if "risk_binary" not in adata.obs.columns:
        raise ValueError("'risk_binary' column not found in adata.obs")

    risk = adata.obs["risk_binary"].astype(int).values
    return pd.DataFrame(
        {name: (risk == code).astype(float) for code, name in enumerate(RISK_CLASSES)},
        index=adata.obs_names.copy(),
    )


def fit_linear_models(
    Y: np.ndarray,
    design: pd.DataFrame,
) -> Dict[str, Any]:
    """
    Fit an ordinary least-squares model for every gene.

    Parameters
    ----------
    Y : np.ndarray
        Expression matrix of shape (n_samples, n_genes).
    design : pd.DataFrame
        Design matrix of shape (n_samples, n_coefficients).

    Returns
    -------
    dict
        Fit dictionary containing:
            - coefficients: array (n_genes, n_coefficients)
            - coef_names: list of design column names
            - cov_unscaled: (X'X)^-1, array (n_coefficients, n_coefficients)
            - sigma2: residual variance per gene, array (n_genes,)
            - df_residual: residual degrees of freedom (int)
            - amean: average expression per gene, array (n_genes,)

    Raises
    ------
    DegenerateDesignError
        If a group has fewer than 2 samples or the design is rank-deficient.
    """
    D = design.values.astype(np.float64)
    n_samples, n_coef = D.shape

    if Y.shape[0] != n_samples:
        raise ValueError(f"Y has {Y.shape[0]} samples but design has {n_samples} rows")

    for name, count in zip(design.columns, D.sum(axis=0)):
        if count < 2:
            raise DegenerateDesignError(
                f"Group '{name}' has {int(count)} samples; at least 2 are required",
                entity=name,
            )

    rank = np.linalg.matrix_rank(D)
    if rank < n_coef:
        raise DegenerateDesignError(
            f"Design matrix is rank-deficient (rank {rank} < {n_coef} coefficients)",
            entity=list(design.columns),
        )

    df_residual = n_samples - n_coef
    if df_residual < 1:
        raise DegenerateDesignError(
            f"No residual degrees of freedom ({n_samples} samples, {n_coef} coefficients)"
        )

    cov_unscaled = np.linalg.inv(D.T @ D)
    coefficients = cov_unscaled @ D.T @ Y
    residuals = Y - D @ coefficients
    sigma2 = (residuals**2).sum(axis=0) / df_residual

    return {
        "coefficients": coefficients.T,
        "coef_names": list(design.columns),
        "cov_unscaled": cov_unscaled,
        "sigma2": sigma2,
        "df_residual": df_residual,
        "amean": Y.mean(axis=0),
    }


def contrast_fit(
    fit: Dict[str, Any],
    contrast: Optional[Dict[str, float]] = None,
) -> Dict[str, Any]:
    """
    Re-express a linear model fit in terms of a single contrast.

    Parameters
    ----------
    fit : dict
        Output of fit_linear_models().
    contrast : dict, optional
        {coefficient name: weight}. Defaults to High - Low.

    Returns
    -------
    dict
        Copy of `fit` with:
            - coefficient: contrast estimate per gene (log fold change)
            - stdev_unscaled: unscaled standard error of the contrast
    """
    contrast = contrast or DEFAULT_CONTRAST
    unknown = set(contrast) - set(fit["coef_names"])
    if unknown:
        raise ValueError(f"Contrast refers to unknown coefficients: {unknown}")

    c = np.array([contrast.get(name, 0.0) for name in fit["coef_names"]])

    result = dict(fit)
    result["coefficient"] = fit["coefficients"] @ c
    result["stdev_unscaled"] = float(np.sqrt(c @ fit["cov_unscaled"] @ c))
    result["contrast"] = dict(contrast)
    return result


def trigamma_inverse(x: float, tol: float = 1e-8, max_iter: int = 50) -> float:
    """
    Solve trigamma(y) = x for y by Newton iteration.

    Parameters
    ----------
    x : float
        Positive target value.

    Returns
    -------
    float
        y such that polygamma(1, y) == x.
    """
    if x > 1e7:
        return 1.0 / np.sqrt(x)
    if x < 1e-6:
        return 1.0 / x

    y = 0.5 + 1.0 / x
    for _ in range(max_iter):
        tri = special.polygamma(1, y)
        dif = tri * (1.0 - tri / x) / special.polygamma(2, y)
        y += dif
        if -dif / y < tol:
            break
    return float(y)


def fit_f_prior(sigma2: np.ndarray, df: float):
    """
    Estimate the scaled inverse chi-square prior of the gene-wise variances.

    Parameters
    ----------
    sigma2 : np.ndarray
        Residual variances, one per gene.
    df : float
        Residual degrees of freedom of each variance.

    Returns
    -------
    d0 : float
        Prior degrees of freedom (np.inf when there is no extra variability).
    s02 : float
        Prior variance.
    """
    x = np.asarray(sigma2, dtype=np.float64)
    x = x[np.isfinite(x)]
    if len(x) < 2:
        return 0.0, float(x.mean()) if len(x) else 0.0

    # Zero variances would give -inf log-variances
    x = np.maximum(x, 0.0)
    m = np.median(x)
    if m == 0:
        m = 1.0
    x = np.maximum(x, 1e-5 * m)

    z = np.log(x)
    e = z - special.digamma(df / 2.0) + np.log(df / 2.0)
    emean = e.mean()
    evar = ((e - emean) ** 2).sum() / (len(e) - 1)
    evar -= special.polygamma(1, df / 2.0)

    if evar > 0:
        d0 = 2.0 * trigamma_inverse(evar)
        s02 = float(np.exp(emean + special.digamma(d0 / 2.0) - np.log(d0 / 2.0)))
    else:
        d0 = np.inf
        s02 = float(np.exp(emean))

    return float(d0), s02


def empirical_bayes(fit: Dict[str, Any]) -> Dict[str, Any]:
    """
    Moderated t-statistics by empirical Bayes variance shrinkage.

    Parameters
    ----------
    fit : dict
        Output of contrast_fit().

    Returns
    -------
    dict
        Copy of `fit` with:
            - df_prior, s2_prior: estimated prior
            - s2_post: posterior (shrunken) variances
            - t: moderated t-statistics
            - df_total: degrees of freedom of the moderated t
            - p_value: two-sided p-values
    """
    sigma2 = fit["sigma2"]
    d = float(fit["df_residual"])
    d0, s02 = fit_f_prior(sigma2, d)

    if np.isinf(d0):
        s2_post = np.full_like(sigma2, s02)
    else:
        s2_post = (d0 * s02 + d * sigma2) / (d0 + d)

    # limma caps the total df at the pooled residual df
    df_total = min(d + d0, d * len(sigma2))

    with np.errstate(divide="ignore", invalid="ignore"):
        t = fit["coefficient"] / (fit["stdev_unscaled"] * np.sqrt(s2_post))
    p_value = 2.0 * stats.t.sf(np.abs(t), df_total)

    result = dict(fit)
    result.update(
        {
            "df_prior": d0,
            "s2_prior": s02,
            "s2_post": s2_post,
            "t": t,
            "df_total": df_total,
            "p_value": p_value,
        }
    )
    return result


def adjust_pvalues(p_values: np.ndarray, method: str = "fdr_bh") -> np.ndarray:
    """Multiple-testing correction via statsmodels.multipletests."""
    p_values = np.asarray(p_values, dtype=np.float64)
    if len(p_values) == 0:
        return p_values
    _, adjusted, _, _ = multipletests(p_values, method=method)
    return adjusted


def run_differential_expression(
    adata: ad.AnnData,
    var_cutoff: Optional[float] = DEFAULT_PIPELINE_PARAMS["var_cutoff"],
    var_func: str = DEFAULT_PIPELINE_PARAMS["var_func"],
    contrast: Optional[Dict[str, float]] = None,
    adjust_method: str = DEFAULT_PIPELINE_PARAMS["pvalue_adjust_method"],
    verbose: bool = True,
) -> pd.DataFrame:
    """
    Run the full differential expression engine on a training set.

    Parameters
    ----------
    adata : AnnData
        Cleaned training AnnData object with 'risk_binary' in .obs
    var_cutoff : float or None, default=0.5
        Variance filter quantile, see variance_filter().
    var_func : str, default="iqr"
        Spread measure for the variance filter.
    contrast : dict, optional
        Contrast weights; defaults to High - Low.
    adjust_method : str, default="fdr_bh"
        statsmodels multiple-testing method.
    verbose : bool, default=True
        Whether to print progress.

    Returns
    -------
    pd.DataFrame
        One row per tested gene, indexed by probe id, sorted by adjusted
        p-value, with columns:
            - symbol: gene symbol (when annotated)
            - log_fc: High - Low mean difference
            - ave_expr: mean expression over all samples
            - t_stat: moderated t-statistic
            - p_value: raw p-value
            - adj_p_value: multiple-testing adjusted p-value
            - df_total: degrees of freedom of the moderated t
    """
    if verbose:
        print("=" * 60)
        print("DIFFERENTIAL EXPRESSION (moderated t-test)")
        print("=" * 60)
        print(f"\nInput: {adata.n_obs} samples x {adata.n_vars:,} genes")
        print("\n[Step 1/3] Variance filter...")

    filtered = variance_filter(adata, var_cutoff=var_cutoff, var_func=var_func, verbose=verbose)

    if verbose:
        print("\n[Step 2/3] Fitting linear models...")

    design = build_design_matrix(filtered)
    Y = np.asarray(filtered.X, dtype=np.float64)
    fit = fit_linear_models(Y, design)
    fit = contrast_fit(fit, contrast)

    if verbose:
        counts = design.sum(axis=0).astype(int).to_dict()
        print(f"  Group sizes: {counts}")
        print(f"  Residual df: {fit['df_residual']}")
        print("\n[Step 3/3] Empirical Bayes moderation...")

    fit = empirical_bayes(fit)
    adjusted = adjust_pvalues(fit["p_value"], method=adjust_method)

    de_table = pd.DataFrame(
        {
            "log_fc": fit["coefficient"],
            "ave_expr": fit["amean"],
            "t_stat": fit["t"],
            "p_value": fit["p_value"],
            "adj_p_value": adjusted,
            "df_total": fit["df_total"],
        },
        index=filtered.var_names.copy(),
    )
    de_table.index.name = "probe_id"
    if SYMBOL_COLUMN in filtered.var.columns:
        de_table.insert(0, SYMBOL_COLUMN, filtered.var[SYMBOL_COLUMN].values)

    de_table = de_table.sort_values(["adj_p_value", "p_value"], kind="mergesort")

    if verbose:
        n_sig = int((de_table["adj_p_value"] < 0.05).sum())
        print(f"  Prior df: {fit['df_prior']:.2f}, prior variance: {fit['s2_prior']:.4g}")
        print(f"  Genes tested: {len(de_table):,}")
        print(f"  Genes with adjusted p < 0.05: {n_sig:,}")

    return de_table
