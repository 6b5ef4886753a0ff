"""
Pipeline Errors
===============

Input-validation errors raised by the signature pipeline stages.

Every error is terminal for a run: the pipeline is a one-shot offline
analysis, so there is no retry. Each error records the stage that failed
and the offending entity (sample id, class name, gene count, ...) so the
input data can be fixed and the run repeated.

All errors subclass ValueError, so callers that already guard against
ValueError keep working.
"""

from typing import Any, Optional


class PipelineError(ValueError):
    """
    Base class for pipeline stage failures.

    Parameters
    ----------
    message : str
        Human-readable description of the failure.
    stage : str, optional
        Name of the pipeline stage that raised the error.
    entity : any, optional
        Identifier of the offending entity (sample id, class label, ...).
    """

    default_stage = "pipeline"

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        entity: Any = None,
    ):
        self.stage = stage or self.default_stage
        self.entity = entity
        self.message = message
        super().__init__(self._format())

    def _format(self) -> str:
        text = f"[{self.stage}] {self.message}"
        if self.entity is not None:
            text += f" (entity: {self.entity})"
        return text


class DataIntegrityError(PipelineError):
    """Required labels or metadata are missing, or too much data is missing."""

    default_stage = "data_cleaning"


class DegenerateDesignError(PipelineError):
    """Design matrix is rank-deficient or a group has fewer than 2 samples."""

    default_stage = "differential_expression"


class InsufficientFeaturesError(PipelineError):
    """Fewer candidate genes than the requested signature size."""

    default_stage = "signature_selection"


class EmptyClassError(PipelineError):
    """A risk class has no training samples when building a template."""

    default_stage = "template_classifier"


class DegenerateVectorError(PipelineError):
    """A zero-variance vector makes the Pearson correlation undefined."""

    default_stage = "template_classifier"


class DegenerateGroupsError(PipelineError):
    """Survival comparison impossible: an empty group or no events at all."""

    default_stage = "survival_analysis"
