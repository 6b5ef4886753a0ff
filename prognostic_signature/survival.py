"""
Survival Analysis Module
========================

Tests whether the predicted risk groups separate on distant-metastasis-free
survival (DMFS).

This module provides functions to:
    - Run a two-group log-rank test on predicted risk groups
    - Derive Kaplan-Meier step functions for each group
    - Join classification results with DMFS metadata
    - Plot Kaplan-Meier curves

The log-rank statistic is chi-squared with 1 degree of freedom (two groups);
its p-value is the upper tail of that distribution.
"""

from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import anndata as ad
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from lifelines import KaplanMeierFitter
from lifelines.statistics import logrank_test
from scipy.stats import chi2

from .config import EVENT_COLUMN, RISK_CLASSES, TIME_COLUMN
from .exceptions import DegenerateGroupsError

# Set matplotlib style
plt.style.use("seaborn-v0_8-whitegrid")

RISK_COLORS = {"Low": "#22c55e", "High": "#ef4444"}  # Green, Red
LOGRANK_DF = 1


def _as_arrays(times, events, groups) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    times = np.asarray(times, dtype=np.float64)
    events = np.asarray(events, dtype=np.float64)
    groups = np.asarray(groups).astype(str)
    if not (len(times) == len(events) == len(groups)):
        raise ValueError(
            f"times, events and groups must have equal length, "
            f"got {len(times)}, {len(events)}, {len(groups)}"
        )
    if np.isnan(times).any() or np.isnan(events).any():
        raise ValueError("times and events must not contain missing values")
    if (times < 0).any():
        raise ValueError("times must be non-negative")
    if not np.isin(events, [0, 1]).all():
        raise ValueError("events must be 0/1 indicators")
    unknown = set(groups) - set(RISK_CLASSES)
    if unknown:
        raise ValueError(f"Unknown group labels: {unknown}")
    return times, events.astype(int), groups


def _logrank_variance(times: np.ndarray, events: np.ndarray, in_high: np.ndarray) -> float:
    """Hypergeometric variance of the High-group observed events, summed over event times."""
    variance = 0.0
    for t in np.unique(times[events == 1]):
        at_risk = times >= t
        n = int(at_risk.sum())
        n_high = int((at_risk & in_high).sum())
        d = int(((times == t) & (events == 1)).sum())
        if n > 1:
            variance += n_high * (n - n_high) * d * (n - d) / (n * n * (n - 1))
    return variance


def logrank_by_group(times, events, groups) -> Dict[str, Any]:
    """
    Two-group log-rank test between predicted Low and High risk samples.

    Parameters
    ----------
    times : array-like
        Time to event or censoring (non-negative).
    events : array-like
        1 if the event (distant metastasis) was observed, 0 if censored.
    groups : array-like
        "Low" / "High" group of each sample.

    Returns
    -------
    dict
        - n_low, n_high: Group sizes
        - events_low, events_high: Observed events per group
        - chi2: Log-rank chi-squared statistic
        - df: Degrees of freedom (1)
        - p_value: Upper-tail chi-squared probability of the statistic

    Raises
    ------
    DegenerateGroupsError
        If a group is empty, no events occur at all, or no event occurs
        while both groups are still at risk (zero log-rank variance).

    Examples
    --------
    >>> summary = logrank_by_group(obs["t.dmfs"], obs["e.dmfs"], result["predicted_label"])
    >>> print(f"Log-rank p = {summary['p_value']:.3g}")
    """
    times, events, groups = _as_arrays(times, events, groups)

    low = groups == "Low"
    high = groups == "High"
    for name, mask in (("Low", low), ("High", high)):
        if not mask.any():
            raise DegenerateGroupsError(
                f"Predicted group '{name}' is empty; log-rank test needs two groups",
                entity=name,
            )
    if events.sum() == 0:
        raise DegenerateGroupsError(
            "No events observed in either group; log-rank statistic is undefined",
            entity="events",
        )
    if _logrank_variance(times, events, high) <= 0:
        raise DegenerateGroupsError(
            "Log-rank variance is zero (no event occurs while both groups are at risk); "
            "statistic is undefined",
            entity="events",
        )

    result = logrank_test(
        times[high], times[low],
        event_observed_A=events[high],
        event_observed_B=events[low],
    )
    statistic = float(result.test_statistic)

    return {
        "n_low": int(low.sum()),
        "n_high": int(high.sum()),
        "events_low": int(events[low].sum()),
        "events_high": int(events[high].sum()),
        "chi2": statistic,
        "df": LOGRANK_DF,
        "p_value": float(chi2.sf(statistic, LOGRANK_DF)),
    }


def kaplan_meier_curves(times, events, groups) -> pd.DataFrame:
    """
    Kaplan-Meier step functions for each group.

    Parameters
    ----------
    times, events, groups : array-like
        As in logrank_by_group(). Empty groups are skipped.

    Returns
    -------
    pd.DataFrame
        Long table with columns 'group', 'time', 'survival_probability',
        one row per step (starting at time 0 with probability 1).
    """
    times, events, groups = _as_arrays(times, events, groups)

    curves = []
    for name in RISK_CLASSES:
        mask = groups == name
        if not mask.any():
            continue
        kmf = KaplanMeierFitter()
        kmf.fit(times[mask], event_observed=events[mask], label=name)
        sf = kmf.survival_function_
        curves.append(
            pd.DataFrame(
                {
                    "group": name,
                    "time": sf.index.values.astype(np.float64),
                    "survival_probability": sf[name].values,
                }
            )
        )

    if not curves:
        return pd.DataFrame(columns=["group", "time", "survival_probability"])
    return pd.concat(curves, ignore_index=True)


def analyze_survival(
    adata: ad.AnnData,
    result: pd.DataFrame,
    verbose: bool = True,
) -> Tuple[Dict[str, Any], pd.DataFrame]:
    """
    Log-rank test and Kaplan-Meier curves of the predicted risk groups.

    Parameters
    ----------
    adata : AnnData
        Partition the result was computed on, with DMFS time and event
        columns in .obs
    result : pd.DataFrame
        Output of classify_samples() for the same samples.
    verbose : bool, default=True
        Whether to print the test summary.

    Returns
    -------
    summary : dict
        Output of logrank_by_group().
    curves : pd.DataFrame
        Output of kaplan_meier_curves().
    """
    missing = [c for c in (TIME_COLUMN, EVENT_COLUMN) if c not in adata.obs.columns]
    if missing:
        raise ValueError(f"Missing survival columns in adata.obs: {missing}")

    obs = adata.obs.loc[result.index, [TIME_COLUMN, EVENT_COLUMN]]
    groups = result["predicted_label"].astype(str).values

    summary = logrank_by_group(obs[TIME_COLUMN].values, obs[EVENT_COLUMN].values, groups)
    curves = kaplan_meier_curves(obs[TIME_COLUMN].values, obs[EVENT_COLUMN].values, groups)

    if verbose:
        print(
            f"  Predicted Low: {summary['n_low']} samples, {summary['events_low']} events"
        )
        print(
            f"  Predicted High: {summary['n_high']} samples, {summary['events_high']} events"
        )
        print(
            f"  Log-rank chi2 = {summary['chi2']:.3f} (df={summary['df']}), "
            f"p = {summary['p_value']:.3g}"
        )

    return summary, curves


def plot_kaplan_meier(
    curves: pd.DataFrame,
    summary: Optional[Dict[str, Any]] = None,
    title: str = "Distant Metastasis-Free Survival",
    save_path: Optional[Union[str, Path]] = None,
    figsize: tuple = (8, 6),
) -> plt.Figure:
    """
    Plot Kaplan-Meier step functions per predicted risk group.

    Parameters
    ----------
    curves : pd.DataFrame
        Output of kaplan_meier_curves().
    summary : dict, optional
        Output of logrank_by_group(); its p-value is shown in the title.
    title : str
        Plot title.
    save_path : str or Path, optional
        If provided, saves the figure to this path.
    figsize : tuple, default=(8, 6)
        Figure size in inches.

    Returns
    -------
    plt.Figure
        The matplotlib Figure object.
    """
    fig, ax = plt.subplots(figsize=figsize)

    for name in RISK_CLASSES:
        sub = curves[curves["group"] == name]
        if sub.empty:
            continue
        label = f"Predicted {name}"
        if summary is not None:
            label += f" (n={summary[f'n_{name.lower()}']})"
        ax.step(
            sub["time"],
            sub["survival_probability"],
            where="post",
            color=RISK_COLORS[name],
            linewidth=2,
            label=label,
        )

    if summary is not None:
        p = summary["p_value"]
        p_str = f"p = {p:.4f}" if p >= 0.0001 else "p < 0.0001"
        title = f"{title}\nLog-rank {p_str}"

    ax.set_xlabel("Time (days)", fontsize=12)
    ax.set_ylabel("DMFS probability", fontsize=12)
    ax.set_title(title, fontsize=14, fontweight="bold")
    ax.set_ylim(0, 1.05)
    ax.legend(loc="lower left", fontsize=10)
    ax.grid(True, alpha=0.3)

    plt.tight_layout()

    if save_path is not None:
        save_path = Path(save_path)
        save_path.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(save_path, dpi=150, bbox_inches="tight")
        print(f"Kaplan-Meier plot saved to: {save_path}")

    return fig
