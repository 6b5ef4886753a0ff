"""
Pipeline Runner
===============

Runs the prognostic signature analysis end to end:

    1. Clean: drop unlabeled samples, impute, add risk labels
    2. Split into training / validation
    3. Differential expression on the training set
    4. Select the top-N signature
    5. Build templates on training, classify both partitions
    6. Evaluate both partitions
    7. Log-rank survival analysis of the predicted groups

Each stage receives and returns new objects; nothing is mutated in place.
Any PipelineError aborts the run at the failing stage.
"""

from pathlib import Path
from typing import Any, Dict, Optional, Union

import anndata as ad
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from .classifier import build_templates, classify_samples
from .config import resolve_params
from .differential_expression import run_differential_expression
from .evaluation import (
    compare_partitions,
    confusion_table,
    correlation_diagnostics,
    evaluate_classification,
    generate_results_table,
    plot_correlation_boxplots,
    plot_template_correlations,
)
from .preprocessing import run_preprocessing_pipeline
from .signature import get_signature_genes, plot_volcano, save_signature, select_signature
from .splitting import make_rng, split_samples
from .survival import analyze_survival, plot_kaplan_meier

PARTITIONS = ["training", "validation"]
N_STEPS = 7


def _print_step(step_num: int, description: str) -> None:
    print(f"\n[Step {step_num}/{N_STEPS}] {description}")
    print("-" * 60)


def run_signature_pipeline(
    adata: ad.AnnData,
    params: Optional[Dict[str, Any]] = None,
    rng: Optional[np.random.Generator] = None,
    preprocess: bool = True,
    output_dir: Optional[Union[str, Path]] = None,
    verbose: bool = True,
) -> Dict[str, Any]:
    """
    Derive and validate a prognostic signature.

    Parameters
    ----------
    adata : AnnData
        Raw dataset (samples x probes) with 'e.dmfs' and 't.dmfs' in .obs,
        or an already cleaned dataset when preprocess=False.
    params : dict, optional
        Overrides for DEFAULT_PIPELINE_PARAMS.
    rng : np.random.Generator, optional
        Random source for the split. Defaults to one seeded with
        params["seed"].
    preprocess : bool, default=True
        Whether to run the cleaning stage. Set to False for data loaded
        from a preprocessed .h5ad file.
    output_dir : str or Path, optional
        If provided, tables are written to output_dir/tables and figures
        to output_dir/figures.
    verbose : bool, default=True
        Whether to print progress information.

    Returns
    -------
    dict
        Results dictionary containing:
            - params: Resolved parameters
            - train, validation: Partition AnnData objects
            - de_table: Differential expression table (training)
            - signature: Signature table
            - templates: Low/High templates
            - classifications: {partition: classification result}
            - metrics: {partition: evaluate_classification() output}
            - metrics_table: Partition comparison table
            - confusion: {partition: confusion table}
            - diagnostics: {partition: correlation diagnostics}
            - survival: {partition: log-rank summary}
            - km_curves: {partition: Kaplan-Meier step functions}

    Examples
    --------
    >>> results = run_signature_pipeline(adata, params={"seed": 1})
    >>> results["metrics"]["validation"]["accuracy"]
    """
    params = resolve_params(params)
    if rng is None:
        rng = make_rng(params["seed"])

    # Step 1: clean
    if preprocess:
        if verbose:
            _print_step(1, "Cleaning Data")
        cleaned = run_preprocessing_pipeline(
            adata,
            k=params["knn_k"],
            rowmax=params["rowmax"],
            colmax=params["colmax"],
            verbose=verbose,
        )
    else:
        if verbose:
            _print_step(1, "Using Preprocessed Data")
            print(f"  {adata.n_obs} samples x {adata.n_vars:,} probes")
        cleaned = adata.copy()

    # Step 2: split
    if verbose:
        _print_step(2, "Splitting Samples")
    train, validation = split_samples(
        cleaned,
        train_fraction=params["train_fraction"],
        rng=rng,
        stratify=params["stratify"],
        verbose=verbose,
    )

    # Step 3: differential expression (training only)
    if verbose:
        _print_step(3, "Differential Expression (training set)")
    de_table = run_differential_expression(
        train,
        var_cutoff=params["var_cutoff"],
        var_func=params["var_func"],
        adjust_method=params["pvalue_adjust_method"],
        verbose=verbose,
    )

    # Step 4: signature
    if verbose:
        _print_step(4, "Selecting Signature")
    signature = select_signature(de_table, n_genes=params["signature_size"], verbose=verbose)
    signature_genes = get_signature_genes(signature)

    # Step 5: templates and classification
    if verbose:
        _print_step(5, "Template Classification")
    templates = build_templates(train, signature_genes, verbose=verbose)
    partitions = {"training": train, "validation": validation}
    classifications = {}
    for name in PARTITIONS:
        if verbose:
            print(f"\n{name.capitalize()} set:")
        classifications[name] = classify_samples(partitions[name], templates, verbose=verbose)

    # Step 6: evaluation
    if verbose:
        _print_step(6, "Evaluating Classification")
    metrics = {name: evaluate_classification(classifications[name]) for name in PARTITIONS}
    confusion = {name: confusion_table(classifications[name]) for name in PARTITIONS}
    diagnostics = {name: correlation_diagnostics(classifications[name]) for name in PARTITIONS}
    metrics_table = compare_partitions(metrics)
    if verbose:
        print(metrics_table.to_string(float_format=lambda v: f"{v:.3f}"))
        for name in PARTITIONS:
            print(f"\n{name.capitalize()} confusion table:")
            print(confusion[name].to_string())

    # Step 7: survival
    if verbose:
        _print_step(7, "Survival Analysis")
    survival = {}
    km_curves = {}
    for name in PARTITIONS:
        if verbose:
            print(f"\n{name.capitalize()} set:")
        survival[name], km_curves[name] = analyze_survival(
            partitions[name], classifications[name], verbose=verbose
        )

    results = {
        "params": params,
        "train": train,
        "validation": validation,
        "de_table": de_table,
        "signature": signature,
        "templates": templates,
        "classifications": classifications,
        "metrics": metrics,
        "metrics_table": metrics_table,
        "confusion": confusion,
        "diagnostics": diagnostics,
        "survival": survival,
        "km_curves": km_curves,
    }

    if output_dir is not None:
        save_pipeline_outputs(results, output_dir, verbose=verbose)

    return results


def save_pipeline_outputs(
    results: Dict[str, Any],
    output_dir: Union[str, Path],
    verbose: bool = True,
) -> None:
    """
    Write the tables and figures of a pipeline run.

    Parameters
    ----------
    results : dict
        Output of run_signature_pipeline().
    output_dir : str or Path
        Root directory; 'tables/' and 'figures/' are created beneath it.
    verbose : bool, default=True
        Whether to print progress.
    """
    output_dir = Path(output_dir)
    tables_dir = output_dir / "tables"
    figures_dir = output_dir / "figures"
    tables_dir.mkdir(parents=True, exist_ok=True)
    figures_dir.mkdir(parents=True, exist_ok=True)

    if verbose:
        print("\nSaving outputs...")

    results["de_table"].to_csv(tables_dir / "differential_expression.csv")
    save_signature(results["signature"], tables_dir / "signature_genes.csv")
    results["templates"].to_csv(tables_dir / "templates.csv")
    compare_partitions(results["metrics"], save_path=tables_dir / "classification_metrics.csv")

    survival_df = pd.DataFrame(results["survival"]).T
    survival_df.index.name = "partition"
    survival_df.to_csv(tables_dir / "survival_logrank.csv")

    for name in PARTITIONS:
        generate_results_table(
            results["classifications"][name],
            save_path=tables_dir / f"classification_{name}.csv",
        )
        results["diagnostics"][name].to_csv(tables_dir / f"correlation_diagnostics_{name}.csv")
        results["km_curves"][name].to_csv(tables_dir / f"km_curves_{name}.csv", index=False)

    fig = plot_volcano(
        results["de_table"],
        results["signature"],
        save_path=figures_dir / "volcano.png",
    )
    plt.close(fig)

    for name in PARTITIONS:
        label = name.capitalize()
        fig = plot_template_correlations(
            results["classifications"][name],
            title=f"Correlation to Risk Templates ({label})",
            save_path=figures_dir / f"template_correlations_{name}.png",
        )
        plt.close(fig)
        fig = plot_correlation_boxplots(
            results["classifications"][name],
            title=f"Template Correlations by True Class ({label})",
            save_path=figures_dir / f"correlation_boxplots_{name}.png",
        )
        plt.close(fig)
        fig = plot_kaplan_meier(
            results["km_curves"][name],
            results["survival"][name],
            title=f"DMFS by Predicted Risk ({label})",
            save_path=figures_dir / f"kaplan_meier_{name}.png",
        )
        plt.close(fig)
