"""Tests for pipeline defaults and the error taxonomy."""

import pytest

from prognostic_signature.config import DEFAULT_PIPELINE_PARAMS, resolve_params
from prognostic_signature.exceptions import (
    DataIntegrityError,
    DegenerateDesignError,
    DegenerateGroupsError,
    DegenerateVectorError,
    EmptyClassError,
    InsufficientFeaturesError,
    PipelineError,
)


class TestResolveParams:

    def test_defaults(self):
        params = resolve_params()
        assert params == DEFAULT_PIPELINE_PARAMS
        assert params["signature_size"] == 70
        assert params["train_fraction"] == 0.75
        assert params["stratify"] is False

    def test_override_does_not_touch_defaults(self):
        params = resolve_params({"signature_size": 25, "seed": 3})
        assert params["signature_size"] == 25
        assert params["seed"] == 3
        assert DEFAULT_PIPELINE_PARAMS["signature_size"] == 70
        assert DEFAULT_PIPELINE_PARAMS["seed"] is None

    def test_unknown_key_rejected(self):
        with pytest.raises(ValueError, match="Unknown pipeline parameters"):
            resolve_params({"signature_sise": 25})


class TestPipelineErrors:

    @pytest.mark.parametrize("cls, stage", [
        (DataIntegrityError, "data_cleaning"),
        (DegenerateDesignError, "differential_expression"),
        (InsufficientFeaturesError, "signature_selection"),
        (EmptyClassError, "template_classifier"),
        (DegenerateVectorError, "template_classifier"),
        (DegenerateGroupsError, "survival_analysis"),
    ])
    def test_default_stage(self, cls, stage):
        err = cls("boom")
        assert isinstance(err, PipelineError)
        assert isinstance(err, ValueError)
        assert err.stage == stage
        assert err.entity is None

    def test_message_carries_stage_and_entity(self):
        err = EmptyClassError("no samples", entity="High")
        assert err.message == "no samples"
        assert "[template_classifier]" in str(err)
        assert "High" in str(err)

    def test_explicit_stage_wins(self):
        err = DataIntegrityError("missing column", stage="data_loading")
        assert err.stage == "data_loading"
