"""
Prognostic Signature Pipeline
=============================

This package derives and validates a gene-expression prognostic signature
for distant-metastasis-free survival (DMFS) in breast cancer, using the
NKI microarray cohort.

Modules:
    - exceptions: Pipeline error taxonomy
    - config: Default parameters and column names
    - data_loading: Load expression/phenotype/annotation tables into AnnData
    - labels: Risk labels derived from the DMFS event indicator
    - preprocessing: Drop unlabeled samples and impute missing values
    - splitting: Training/validation split with an explicit RNG
    - differential_expression: Variance filter and moderated t-test
    - signature: Top-N signature selection
    - classifier: Mean-expression templates and correlation classifier
    - evaluation: Metrics, diagnostics and plots
    - survival: Log-rank test and Kaplan-Meier curves
    - pipeline: End-to-end runner
"""

__version__ = "0.1.0"

# Error exports
from .exceptions import (
    PipelineError,
    DataIntegrityError,
    DegenerateDesignError,
    InsufficientFeaturesError,
    EmptyClassError,
    DegenerateVectorError,
    DegenerateGroupsError,
)

# Config exports
from .config import (
    EVENT_COLUMN,
    TIME_COLUMN,
    SYMBOL_COLUMN,
    RISK_CLASSES,
    DEFAULT_PIPELINE_PARAMS,
    resolve_params,
)

# Data loading exports
from .data_loading import (
    load_expression_matrix,
    load_sample_metadata,
    load_gene_annotation,
    build_anndata,
    load_nki_data,
    simulate_expression_dataset,
    DEFAULT_EXPR_PATH,
    DEFAULT_SAMPLE_PATH,
    DEFAULT_GENE_PATH,
)

# Labels exports
from .labels import (
    add_risk_labels,
    get_risk_distribution,
    get_class_counts,
    validate_labels,
    RISK_BINARY_TO_NAME,
    RISK_NAME_TO_BINARY,
)

# Preprocessing exports
from .preprocessing import (
    drop_unlabeled_samples,
    knn_impute_genes,
    impute_missing_values,
    run_preprocessing_pipeline,
    save_preprocessed_data,
    load_preprocessed_data,
    DEFAULT_OUTPUT_PATH,
)

# Splitting exports
from .splitting import make_rng, training_size, split_samples

# Differential expression exports
from .differential_expression import (
    variance_filter,
    build_design_matrix,
    fit_linear_models,
    contrast_fit,
    fit_f_prior,
    empirical_bayes,
    adjust_pvalues,
    run_differential_expression,
)

# Signature exports
from .signature import (
    rank_genes,
    select_signature,
    get_signature_genes,
    save_signature,
    plot_volcano,
)

# Classifier exports
from .classifier import build_templates, pearson_correlation, classify_samples

# Evaluation exports
from .evaluation import (
    evaluate_classification,
    confusion_table,
    correlation_diagnostics,
    compare_partitions,
    generate_results_table,
    plot_template_correlations,
    plot_correlation_boxplots,
)

# Survival exports
from .survival import (
    logrank_by_group,
    kaplan_meier_curves,
    analyze_survival,
    plot_kaplan_meier,
)

# Pipeline exports
from .pipeline import run_signature_pipeline, save_pipeline_outputs
