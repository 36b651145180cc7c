"""Pydantic v2 schemas for API and validation."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

PROCEDURE_CATEGORY_VALUES = frozenset(
    {"single_implant", "multiple_implant", "full_arch", "gbr", "other"}
)
GUIDE_TYPE_VALUES = frozenset(
    {"tooth_support", "tissue_support", "bone_support", "stackable", "hybrid", "other"}
)
REQUIRED_SERVICE_VALUES = frozenset({"study_only", "full_solution"})
DELIVERY_METHOD_VALUES = frozenset({"delivery", "pickup"})
# Procedures where the tooth positions drive the guide design.
TEETH_REQUIRED_CATEGORIES = frozenset({"single_implant", "multiple_implant"})


def _one_of(name: str, allowed: frozenset[str], v: str | None) -> str | None:
    if v is not None and v not in allowed:
        raise ValueError(f"{name} must be one of {sorted(allowed)}")
    return v


# --- Case intake ---
class CaseCreateRequest(BaseModel):
    """Body for POST /cases (client intake)."""

    procedure_category: str
    guide_type: str
    required_service: str
    patient_ref: str | None = Field(None, max_length=128)
    implant_system: str | None = Field(None, max_length=128)
    teeth_numbers: list[int] | None = None
    clinical_notes: str | None = None
    special_instructions: str | None = None
    delivery_method: str | None = None
    delivery_address_id: int | None = None
    pickup_branch_id: int | None = None
    # Only honoured for admin submissions on behalf of a client.
    client_profile_id: int | None = None

    @field_validator("procedure_category")
    @classmethod
    def procedure_category_enum(cls, v: str) -> str:
        return _one_of("procedure_category", PROCEDURE_CATEGORY_VALUES, v)  # type: ignore[return-value]

    @field_validator("guide_type")
    @classmethod
    def guide_type_enum(cls, v: str) -> str:
        return _one_of("guide_type", GUIDE_TYPE_VALUES, v)  # type: ignore[return-value]

    @field_validator("required_service")
    @classmethod
    def required_service_enum(cls, v: str) -> str:
        return _one_of("required_service", REQUIRED_SERVICE_VALUES, v)  # type: ignore[return-value]

    @field_validator("delivery_method")
    @classmethod
    def delivery_method_enum(cls, v: str | None) -> str | None:
        return _one_of("delivery_method", DELIVERY_METHOD_VALUES, v)

    @field_validator("teeth_numbers")
    @classmethod
    def fdi_teeth(cls, v: list[int] | None) -> list[int] | None:
        if v is None:
            return v
        for tooth in v:
            # FDI notation: quadrant 1-4, position 1-8.
            if tooth // 10 not in (1, 2, 3, 4) or tooth % 10 not in range(1, 9):
                raise ValueError(f"Invalid FDI tooth number: {tooth}")
        return sorted(set(v))

    @model_validator(mode="after")
    def check_dependent_fields(self) -> CaseCreateRequest:
        if self.procedure_category in TEETH_REQUIRED_CATEGORIES and not self.teeth_numbers:
            raise ValueError("teeth_numbers is required for this procedure")
        if self.required_service == "full_solution":
            if not self.delivery_method:
                raise ValueError("delivery_method is required for full_solution")
            if self.delivery_method == "delivery" and self.delivery_address_id is None:
                raise ValueError("delivery_address_id is required for delivery")
            if self.delivery_method == "pickup" and self.pickup_branch_id is None:
                raise ValueError("pickup_branch_id is required for pickup")
        return self


# --- Workflow requests ---
class TransitionRequest(BaseModel):
    """Body for POST /cases/{id}/status. target_status is checked by the engine."""

    target_status: str
    notes: str | None = None
    expected_version: int | None = Field(None, ge=1)


class OverrideRequest(BaseModel):
    """Body for POST /cases/{id}/override (admin only)."""

    target_status: str
    reason: str


class CommentRequest(BaseModel):
    comment: str = Field(..., min_length=1)
    is_internal: bool = False


class AttachmentRequest(BaseModel):
    file_name: str = Field(..., min_length=1, max_length=255)
    storage_key: str = Field(..., min_length=1, max_length=512)
    file_type: str | None = None
    metadata_json: dict[str, Any] | None = None


# --- Responses ---
class HistoryEntryResponse(BaseModel):
    id: int
    case_id: int
    seq: int
    from_status: str | None
    to_status: str
    changed_by: str
    actor_id: str | None
    entry_type: str
    notes: str | None
    correlation_id: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class AttachmentResponse(BaseModel):
    id: int
    case_id: int
    file_name: str
    file_type: str | None
    storage_key: str
    uploaded_by: str
    created_at: datetime

    model_config = {"from_attributes": True}


class CommentResponse(BaseModel):
    id: int
    case_id: int
    comment: str
    author_role: str
    author_id: str
    is_internal: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class CaseResponse(BaseModel):
    id: int
    case_number: str
    client_profile_id: int
    designer_profile_id: int | None
    procedure_category: str
    guide_type: str
    required_service: str
    patient_ref: str | None
    implant_system: str | None
    teeth_numbers: list[int] | None
    clinical_notes: str | None
    special_instructions: str | None
    delivery_method: str | None
    delivery_address_id: int | None
    pickup_branch_id: int | None
    status: str
    version: int
    submitted_at: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None
    created_at: datetime
    updated_at: datetime | None

    model_config = {"from_attributes": True}


class TransitionResponse(BaseModel):
    case: CaseResponse
    history_entry: HistoryEntryResponse


class AllowedTransitionsResponse(BaseModel):
    case_id: int
    current_status: str
    allowed_statuses: list[str]


class ErrorResponse(BaseModel):
    kind: str
    message: str
    current_status: str | None = None
    allowed_statuses: list[str] | None = None
    errors: dict[str, str] | list[Any] | None = None
