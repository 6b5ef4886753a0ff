"""
Evaluation Module
=================

Computes classification metrics and diagnostic plots for the template
classifier, identically for the training and validation partitions.

This module provides functions to:
    - Compute accuracy and both directional error rates
    - Correlate predicted with true labels
    - Summarise template correlations per true class
    - Compare partitions in one table
    - Plot template correlations (scatter and boxplots)

All metric functions are pure: calling them twice on the same
classification result returns identical values.
"""

from pathlib import Path
from typing import Any, Dict, Optional, Union

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from sklearn.metrics import confusion_matrix, roc_auc_score

from .config import RISK_CLASSES

# Set matplotlib style for publication-quality figures
plt.style.use("seaborn-v0_8-whitegrid")

RISK_COLORS = {"Low": "#22c55e", "High": "#ef4444"}  # Green, Red


def _validate_result(result: pd.DataFrame) -> pd.DataFrame:
    required = ["true_label", "predicted_label"]
    missing = [c for c in required if c not in result.columns]
    if missing:
        raise ValueError(f"Missing required columns in classification result: {missing}")
    labeled = result[result["true_label"].notna()]
    unknown = set(labeled["true_label"]) | set(labeled["predicted_label"])
    unknown -= set(RISK_CLASSES)
    if unknown:
        raise ValueError(f"Unknown labels in classification result: {unknown}")
    return labeled


def _binary(labels: pd.Series) -> np.ndarray:
    return (labels.astype(str).values == "High").astype(int)


def evaluate_classification(result: pd.DataFrame) -> Dict[str, Any]:
    """
    Compute classification metrics for one partition.

    Parameters
    ----------
    result : pd.DataFrame
        Output of classify_samples(). Rows without a true label are ignored.

    Returns
    -------
    dict
        Metrics dictionary containing:
            - n_samples: Number of labeled samples
            - n_low, n_high: True class sizes
            - accuracy: Fraction of samples with predicted == true
            - low_error_rate: Fraction of true-Low samples predicted High
            - high_error_rate: Fraction of true-High samples predicted Low
            - label_correlation: Pearson correlation between predicted and
              true binary labels (NaN when either is constant)
            - auc: ROC AUC of corr_high - corr_low against the true labels
              (NaN when a class is absent or scores are undefined)

    Examples
    --------
    >>> metrics = evaluate_classification(result)
    >>> print(f"Accuracy: {metrics['accuracy']:.2%}")
    """
    labeled = _validate_result(result)

    y_true = _binary(labeled["true_label"])
    y_pred = _binary(labeled["predicted_label"])
    n = len(y_true)

    n_low = int((y_true == 0).sum())
    n_high = int((y_true == 1).sum())

    accuracy = float((y_true == y_pred).mean()) if n else np.nan
    low_error_rate = float((y_pred[y_true == 0] == 1).mean()) if n_low else np.nan
    high_error_rate = float((y_pred[y_true == 1] == 0).mean()) if n_high else np.nan

    if n > 1 and y_true.std() > 0 and y_pred.std() > 0:
        label_correlation = float(np.corrcoef(y_true, y_pred)[0, 1])
    else:
        label_correlation = np.nan

    auc = np.nan
    if n_low and n_high and {"corr_low", "corr_high"} <= set(labeled.columns):
        scores = (labeled["corr_high"] - labeled["corr_low"]).values.astype(float)
        if not np.isnan(scores).any():
            auc = float(roc_auc_score(y_true, scores))

    return {
        "n_samples": n,
        "n_low": n_low,
        "n_high": n_high,
        "accuracy": accuracy,
        "low_error_rate": low_error_rate,
        "high_error_rate": high_error_rate,
        "label_correlation": label_correlation,
        "auc": auc,
    }


def confusion_table(result: pd.DataFrame) -> pd.DataFrame:
    """
    2x2 confusion table (rows = true class, columns = predicted class).

    Parameters
    ----------
    result : pd.DataFrame
        Output of classify_samples().

    Returns
    -------
    pd.DataFrame
        Counts indexed by "true_Low"/"true_High" with columns
        "pred_Low"/"pred_High".
    """
    labeled = _validate_result(result)
    cm = confusion_matrix(
        labeled["true_label"].astype(str),
        labeled["predicted_label"].astype(str),
        labels=RISK_CLASSES,
    )
    return pd.DataFrame(
        cm,
        index=[f"true_{c}" for c in RISK_CLASSES],
        columns=[f"pred_{c}" for c in RISK_CLASSES],
    )


def correlation_diagnostics(result: pd.DataFrame) -> pd.DataFrame:
    """
    Summarise template correlations per true class.

    Parameters
    ----------
    result : pd.DataFrame
        Output of classify_samples().

    Returns
    -------
    pd.DataFrame
        One row per true class ("Low", "High") with the count, mean and
        standard deviation of corr_low and corr_high, the mean margin
        (corr_high - corr_low) and the correlation between corr_low and
        corr_high within the class.
    """
    labeled = _validate_result(result)

    rows = []
    for name in RISK_CLASSES:
        sub = labeled[labeled["true_label"].astype(str) == name]
        corr_low = sub["corr_low"].astype(float)
        corr_high = sub["corr_high"].astype(float)
        valid = corr_low.notna() & corr_high.notna()
        if valid.sum() > 1 and corr_low[valid].std() > 0 and corr_high[valid].std() > 0:
            between = float(np.corrcoef(corr_low[valid], corr_high[valid])[0, 1])
        else:
            between = np.nan
        rows.append(
            {
                "true_label": name,
                "n_samples": len(sub),
                "mean_corr_low": corr_low.mean(),
                "std_corr_low": corr_low.std(),
                "mean_corr_high": corr_high.mean(),
                "std_corr_high": corr_high.std(),
                "mean_margin": (corr_high - corr_low).mean(),
                "corr_between_templates": between,
            }
        )

    return pd.DataFrame(rows).set_index("true_label")


def compare_partitions(
    metrics_by_partition: Dict[str, Dict[str, Any]],
    save_path: Optional[Union[str, Path]] = None,
) -> pd.DataFrame:
    """
    Build a side-by-side metrics table, one column per partition.

    Parameters
    ----------
    metrics_by_partition : dict
        Mapping of {partition name: evaluate_classification() output}.
    save_path : str or Path, optional
        If provided, saves the table to this path as CSV.

    Returns
    -------
    pd.DataFrame
        Metrics as rows, partitions as columns.
    """
    df = pd.DataFrame(metrics_by_partition)
    df.index.name = "metric"

    if save_path is not None:
        save_path = Path(save_path)
        save_path.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(save_path)
        print(f"Partition comparison saved to: {save_path}")

    return df


def generate_results_table(
    result: pd.DataFrame,
    save_path: Optional[Union[str, Path]] = None,
) -> pd.DataFrame:
    """
    Per-sample results table sorted by classification margin.

    Parameters
    ----------
    result : pd.DataFrame
        Output of classify_samples().
    save_path : str or Path, optional
        If provided, saves the table to this path as CSV.

    Returns
    -------
    pd.DataFrame
        Classification result with 'margin' and 'correct' columns added.
    """
    df = result.copy()
    df["margin"] = df["corr_high"] - df["corr_low"]
    df["correct"] = df["predicted_label"] == df["true_label"]
    df = df.sort_values("margin", ascending=False)

    if save_path is not None:
        save_path = Path(save_path)
        save_path.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(save_path)
        print(f"Sample results saved to: {save_path}")

    return df


def plot_template_correlations(
    result: pd.DataFrame,
    title: str = "Correlation to Risk Templates",
    save_path: Optional[Union[str, Path]] = None,
    figsize: tuple = (7, 7),
) -> plt.Figure:
    """
    Scatter plot of corr_low vs corr_high, coloured by true class.

    Samples above the diagonal are predicted High, below it Low.

    Parameters
    ----------
    result : pd.DataFrame
        Output of classify_samples().
    title : str
        Plot title.
    save_path : str or Path, optional
        If provided, saves the figure to this path.
    figsize : tuple, default=(7, 7)
        Figure size in inches.

    Returns
    -------
    plt.Figure
        The matplotlib Figure object.
    """
    fig, ax = plt.subplots(figsize=figsize)

    for name in RISK_CLASSES:
        sub = result[result["true_label"].astype(str) == name]
        ax.scatter(
            sub["corr_low"],
            sub["corr_high"],
            c=RISK_COLORS[name],
            alpha=0.7,
            s=50,
            edgecolor="white",
            linewidth=0.5,
            label=f"True {name} (n={len(sub)})",
        )

    lims = [-1.02, 1.02]
    ax.plot(lims, lims, color="#64748b", linestyle="--", linewidth=1, alpha=0.7)
    ax.set_xlim(lims)
    ax.set_ylim(lims)
    ax.set_xlabel("Correlation to Low template", fontsize=12)
    ax.set_ylabel("Correlation to High template", fontsize=12)
    ax.set_title(title, fontsize=14, fontweight="bold")
    ax.legend(loc="upper left", fontsize=10)
    ax.set_aspect("equal")
    ax.grid(True, alpha=0.3)

    plt.tight_layout()

    if save_path is not None:
        save_path = Path(save_path)
        save_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(save_path, dpi=150, bbox_inches="tight")
        print(f"Template correlation plot saved to: {save_path}")

    return fig


def plot_correlation_boxplots(
    result: pd.DataFrame,
    title: str = "Template Correlations by True Class",
    save_path: Optional[Union[str, Path]] = None,
    figsize: tuple = (10, 5),
) -> plt.Figure:
    """
    Boxplots of the correlation to each template, split by true class.

    Parameters
    ----------
    result : pd.DataFrame
        Output of classify_samples().
    title : str
        Overall title.
    save_path : str or Path, optional
        If provided, saves the figure to this path.
    figsize : tuple, default=(10, 5)
        Figure size in inches.

    Returns
    -------
    plt.Figure
        The matplotlib Figure object.
    """
    long_df = result.reset_index().melt(
        id_vars=["sample_id", "true_label"],
        value_vars=["corr_low", "corr_high"],
        var_name="template",
        value_name="correlation",
    )
    long_df["template"] = long_df["template"].map(
        {"corr_low": "Low template", "corr_high": "High template"}
    )
    long_df["true_label"] = long_df["true_label"].astype(str)

    fig, axes = plt.subplots(1, 2, figsize=figsize, sharey=True)
    for ax, template in zip(axes, ["Low template", "High template"]):
        sub = long_df[long_df["template"] == template]
        sns.boxplot(
            data=sub,
            x="true_label",
            y="correlation",
            hue="true_label",
            order=RISK_CLASSES,
            palette=RISK_COLORS,
            legend=False,
            ax=ax,
        )
        sns.stripplot(
            data=sub,
            x="true_label",
            y="correlation",
            order=RISK_CLASSES,
            color="#1e3a5f",
            alpha=0.5,
            size=3,
            ax=ax,
        )
        ax.set_title(f"Correlation to {template}", fontsize=12, fontweight="bold")
        ax.set_xlabel("True class", fontsize=11)
        ax.set_ylabel("Pearson correlation", fontsize=11)
        ax.grid(True, alpha=0.3, axis="y")

    fig.suptitle(title, fontsize=14, fontweight="bold", y=1.02)
    plt.tight_layout()

    if save_path is not None:
        save_path = Path(save_path)
        save_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(save_path, dpi=150, bbox_inches="tight")
        print(f"Correlation boxplots saved to: {save_path}")

    return fig
