#!/usr/bin/env python3
"""
Run Full Prognostic Signature Pipeline
======================================

This script runs the complete signature derivation and validation pipeline
from raw NKI tables to final results, generating all figures and tables.

The pipeline derives a gene-expression signature of distant-metastasis-free
survival (DMFS) from a breast-cancer microarray cohort and validates it on
held-out samples with a nearest-template correlation classifier.

Pipeline Steps:
    1. Load raw data (expression, phenotype, probe annotation)
    2. Clean: drop samples without e.dmfs, impute missing values
    3. Run the signature pipeline (split, DE, signature, templates,
       classification, evaluation, survival)
    4. Print final summary

Usage:
    python run_pipeline.py
    python run_pipeline.py --seed 1               # Reproducible split
    python run_pipeline.py --skip-preprocessing   # Use cached preprocessed data
    python run_pipeline.py --synthetic            # Simulated cohort, no input files

Outputs:
    - results/figures/*.png: volcano, template correlations, Kaplan-Meier curves
    - results/tables/*.csv: DE table, signature, metrics, log-rank summary
"""

import argparse
import sys
import time
from pathlib import Path

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from prognostic_signature.config import DEFAULT_PIPELINE_PARAMS, DEFAULT_RESULTS_DIR
from prognostic_signature.data_loading import (
    load_nki_data,
    simulate_expression_dataset,
    DEFAULT_EXPR_PATH,
    DEFAULT_SAMPLE_PATH,
    DEFAULT_GENE_PATH,
)
from prognostic_signature.exceptions import PipelineError
from prognostic_signature.labels import get_risk_distribution
from prognostic_signature.preprocessing import (
    run_preprocessing_pipeline,
    save_preprocessed_data,
    load_preprocessed_data,
    DEFAULT_OUTPUT_PATH,
)
from prognostic_signature.pipeline import run_signature_pipeline


def print_header(title: str) -> None:
    """Print a formatted section header."""
    print("\n" + "=" * 70)
    print(f" {title}")
    print("=" * 70)


def print_step(step_num: int, total_steps: int, description: str) -> None:
    """Print a formatted step indicator."""
    print(f"\n[Step {step_num}/{total_steps}] {description}")
    print("-" * 60)


def build_params(args) -> dict:
    """Collect pipeline parameter overrides from the command line."""
    return {
        "signature_size": args.signature_size,
        "train_fraction": args.train_fraction,
        "seed": args.seed,
        "stratify": args.stratify,
        "var_cutoff": None if args.no_variance_filter else args.var_cutoff,
        "knn_k": args.knn_k,
    }


def step1_load_data(args) -> "AnnData":
    """Step 1: Load raw data (or simulate a cohort)."""
    print_step(1, 4, "Loading Raw Data")

    if args.synthetic:
        print(f"Simulating a synthetic cohort (seed={args.seed})")
        adata = simulate_expression_dataset(seed=args.seed, unlabeled_fraction=0.05)
        print(f"\n✓ Simulated: {adata.n_obs} samples x {adata.n_vars:,} probes")
        return adata

    expr_path = PROJECT_ROOT / DEFAULT_EXPR_PATH
    sample_path = PROJECT_ROOT / DEFAULT_SAMPLE_PATH
    gene_path = PROJECT_ROOT / DEFAULT_GENE_PATH

    print(f"Expression file: {expr_path}")
    print(f"Phenotype file: {sample_path}")
    print(f"Annotation file: {gene_path}")

    adata = load_nki_data(
        expr_path=expr_path,
        sample_path=sample_path,
        gene_path=gene_path if gene_path.exists() else None,
        verbose=True,
    )

    print(f"\n✓ Loaded: {adata.n_obs} samples x {adata.n_vars:,} probes")

    return adata


def step2_preprocess(adata, args, params) -> "AnnData":
    """Step 2: Drop unlabeled samples, impute, add risk labels."""
    print_step(2, 4, "Preprocessing Data")

    adata = run_preprocessing_pipeline(
        adata,
        k=params["knn_k"],
        rowmax=params["rowmax"],
        colmax=params["colmax"],
        verbose=True,
    )

    if not args.synthetic:
        output_path = PROJECT_ROOT / DEFAULT_OUTPUT_PATH
        save_preprocessed_data(adata, output_path)
        print(f"\n✓ Preprocessed data saved to: {output_path}")
    print(f"✓ Final shape: {adata.n_obs} samples x {adata.n_vars:,} probes")
    print("✓ Risk class distribution:")
    print(get_risk_distribution(adata).to_string(index=False))

    return adata


def step3_signature_pipeline(adata, args, params) -> dict:
    """Step 3: Split, select the signature, classify, evaluate, test survival."""
    print_step(3, 4, "Signature Derivation & Validation")

    return run_signature_pipeline(
        adata,
        params=params,
        preprocess=False,
        output_dir=Path(args.output_dir),
        verbose=True,
    )


def step4_summary(results, total_time, args) -> bool:
    """Step 4: Print final summary and sanity checks."""
    print_step(4, 4, "Final Summary")

    print_header("PIPELINE COMPLETE")

    print(f"\nSignature: {len(results['signature'])} genes")
    print(f"Training samples: {results['train'].n_obs}")
    print(f"Validation samples: {results['validation'].n_obs}")

    print("\nCLASSIFICATION:")
    print(f"   {'Metric':<22} {'Training':>10} {'Validation':>12}")
    print(f"   {'-'*46}")
    for metric in ["accuracy", "low_error_rate", "high_error_rate", "label_correlation"]:
        train_value = results["metrics"]["training"][metric]
        valid_value = results["metrics"]["validation"][metric]
        print(f"   {metric:<22} {train_value:>10.3f} {valid_value:>12.3f}")

    print("\nSURVIVAL (log-rank, predicted High vs Low):")
    for name in ["training", "validation"]:
        summary = results["survival"][name]
        print(f"   {name:<12} chi2={summary['chi2']:>7.3f}  p={summary['p_value']:.3g}")

    print(f"\nTotal Runtime: {total_time:.1f} seconds")

    output_dir = Path(args.output_dir)
    print("\nOUTPUT FILES:")
    print(f"   Figures: {output_dir / 'figures'}")
    print(f"   Tables:  {output_dir / 'tables'}")

    print("\nCHECKS:")
    checks = [
        ("Training accuracy above chance", results["metrics"]["training"]["accuracy"] > 0.5),
        (
            "All required outputs generated",
            all(
                f.exists()
                for f in [
                    output_dir / "tables" / "signature_genes.csv",
                    output_dir / "tables" / "classification_metrics.csv",
                    output_dir / "figures" / "kaplan_meier_validation.png",
                ]
            ),
        ),
    ]
    for desc, passed in checks:
        status = "✓ PASS" if passed else "✗ FAIL"
        print(f"   {status}: {desc}")

    all_passed = all(passed for _, passed in checks)
    print(f"\n{'='*70}")
    print(f" {'ALL CHECKS PASSED ✓' if all_passed else 'SOME CHECKS FAILED ✗'}")
    print(f"{'='*70}")

    return all_passed


def main():
    """Main entry point for the pipeline."""
    defaults = DEFAULT_PIPELINE_PARAMS
    parser = argparse.ArgumentParser(
        description="Derive and validate a DMFS prognostic gene signature",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python run_pipeline.py                       # Full pipeline
    python run_pipeline.py --seed 1 --stratify   # Reproducible, class-balanced split
    python run_pipeline.py --skip-preprocessing  # Reuse cached cleaned data
    python run_pipeline.py --synthetic --seed 0  # Simulated cohort
        """
    )
    parser.add_argument(
        "--signature-size",
        type=int,
        default=defaults["signature_size"],
        help="Number of genes in the signature (default: %(default)s)",
    )
    parser.add_argument(
        "--train-fraction",
        type=float,
        default=defaults["train_fraction"],
        help="Fraction of samples used for training (default: %(default)s)",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=defaults["seed"],
        help="Random seed for the sample split (default: unseeded)",
    )
    parser.add_argument(
        "--stratify",
        action="store_true",
        help="Keep Low/High proportions in both partitions",
    )
    parser.add_argument(
        "--var-cutoff",
        type=float,
        default=defaults["var_cutoff"],
        help="Variance filter quantile (default: %(default)s)",
    )
    parser.add_argument(
        "--no-variance-filter",
        action="store_true",
        help="Test every probe without the variance filter",
    )
    parser.add_argument(
        "--knn-k",
        type=int,
        default=defaults["knn_k"],
        help="Neighbours used for imputation (default: %(default)s)",
    )
    parser.add_argument(
        "--output-dir",
        default=str(PROJECT_ROOT / DEFAULT_RESULTS_DIR),
        help="Directory for tables and figures (default: results/)",
    )
    parser.add_argument(
        "--synthetic",
        action="store_true",
        help="Run on a simulated cohort instead of the NKI tables",
    )
    parser.add_argument(
        "--skip-preprocessing",
        action="store_true",
        help="Skip loading/cleaning and use cached preprocessed data if available",
    )

    args = parser.parse_args()
    params = build_params(args)

    print_header("PROGNOSTIC SIGNATURE PIPELINE")
    print("""
Endpoint: distant-metastasis-free survival (e.dmfs / t.dmfs)
Dataset: NKI breast cancer cohort (Agilent microarray)
Method: moderated t-test signature + nearest-template classifier
    """)

    start_time = time.time()

    try:
        cached_path = PROJECT_ROOT / DEFAULT_OUTPUT_PATH
        if args.skip_preprocessing and cached_path.exists() and not args.synthetic:
            print_step(1, 4, "Loading Preprocessed Data (skip_preprocessing=True)")
            adata = load_preprocessed_data(cached_path)
            print(f"✓ Loaded: {adata.n_obs} samples x {adata.n_vars:,} probes")
        else:
            adata = step1_load_data(args)
            adata = step2_preprocess(adata, args, {**defaults, **params})

        results = step3_signature_pipeline(adata, args, params)

        total_time = time.time() - start_time
        all_passed = step4_summary(results, total_time, args)

        return 0 if all_passed else 1

    except PipelineError as e:
        print(f"\n✗ PIPELINE ABORTED at stage '{e.stage}'")
        if e.entity is not None:
            print(f"  Offending entity: {e.entity}")
        print(f"  {e.message}")
        return 1

    except Exception as e:
        print(f"\n✗ ERROR: {e}")
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
