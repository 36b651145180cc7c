"""Tests for Pydantic request schemas (case intake)."""

import pytest
from helpers import FULL_SOLUTION_CASE, STUDY_ONLY_CASE
from pydantic import ValidationError

from guide_orders.schemas import CaseCreateRequest, CommentRequest, TransitionRequest


def test_study_only_case_valid() -> None:
    req = CaseCreateRequest(**STUDY_ONLY_CASE)
    assert req.required_service == "study_only"
    assert req.delivery_method is None


def test_teeth_are_sorted_and_deduplicated() -> None:
    req = CaseCreateRequest(**{**STUDY_ONLY_CASE, "teeth_numbers": [47, 11, 47, 28]})
    assert req.teeth_numbers == [11, 28, 47]


@pytest.mark.parametrize("tooth", [10, 19, 51, 9, 0, 49])
def test_invalid_fdi_tooth(tooth) -> None:
    with pytest.raises(ValidationError, match="Invalid FDI tooth number"):
        CaseCreateRequest(**{**STUDY_ONLY_CASE, "teeth_numbers": [tooth]})


def test_teeth_required_for_implant_cases() -> None:
    with pytest.raises(ValidationError, match="teeth_numbers is required"):
        CaseCreateRequest(**{**STUDY_ONLY_CASE, "teeth_numbers": []})
    # full-arch and gbr cases may omit teeth
    CaseCreateRequest(**{**STUDY_ONLY_CASE, "procedure_category": "gbr", "teeth_numbers": None})


def test_enumerated_fields() -> None:
    with pytest.raises(ValidationError, match="procedure_category"):
        CaseCreateRequest(**{**STUDY_ONLY_CASE, "procedure_category": "veneer"})
    with pytest.raises(ValidationError, match="required_service"):
        CaseCreateRequest(**{**STUDY_ONLY_CASE, "required_service": "rush"})
    with pytest.raises(ValidationError, match="delivery_method"):
        CaseCreateRequest(**{**FULL_SOLUTION_CASE, "delivery_method": "drone"})


def test_full_solution_delivery_rules() -> None:
    assert CaseCreateRequest(**FULL_SOLUTION_CASE).pickup_branch_id == 3
    with pytest.raises(ValidationError, match="delivery_method is required"):
        CaseCreateRequest(**{**FULL_SOLUTION_CASE, "delivery_method": None})
    with pytest.raises(ValidationError, match="delivery_address_id is required"):
        CaseCreateRequest(**{**FULL_SOLUTION_CASE, "delivery_method": "delivery"})
    with pytest.raises(ValidationError, match="pickup_branch_id is required"):
        CaseCreateRequest(**{**FULL_SOLUTION_CASE, "pickup_branch_id": None})


def test_workflow_requests() -> None:
    assert TransitionRequest(target_status="cancelled").expected_version is None
    with pytest.raises(ValidationError):
        TransitionRequest(target_status="cancelled", expected_version=0)
    with pytest.raises(ValidationError):
        CommentRequest(comment="")
