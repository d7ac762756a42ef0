"""
Pydantic Schemas for SHA Claims.
Source: Clinic SHA claims workflow design - Claim Store
Verified: 2025-11-02
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from sha_claims.core.enums import ClaimStatus, ComplianceStatus, ServiceType


# =============================================================================
# Item Schemas
# =============================================================================


class ClaimItemCreate(BaseModel):
    """Billable line submitted with a new claim."""

    service_type: ServiceType = ServiceType.OTHER
    service_code: str = Field(..., min_length=1, max_length=50)
    description: str = Field(..., min_length=1, max_length=500)
    quantity: int = Field(default=1)
    unit_price: Decimal
    total_price: Optional[Decimal] = Field(
        None, description="Optional; must equal quantity x unit_price when given"
    )
    provided_by: Optional[str] = Field(None, max_length=100)
    department: Optional[str] = Field(None, max_length=100)


class ClaimItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    line_number: int
    service_type: ServiceType
    service_code: str
    description: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    provided_by: Optional[str] = None
    department: Optional[str] = None


# =============================================================================
# Claim Schemas
# =============================================================================


class ClaimCreate(BaseModel):
    """
    Encounter data used to open a claim.

    Business validation (diagnosis format, item arithmetic) happens in the
    claims service so every caller gets the same ValidationError.
    """

    patient_id: UUID
    visit_id: Optional[UUID] = None
    op_number: str = Field(..., min_length=1, max_length=50)
    member_number: Optional[str] = Field(None, max_length=50)
    patient_name: Optional[str] = Field(None, max_length=255)
    visit_date: date

    primary_diagnosis_code: str = Field(default="", max_length=20)
    primary_diagnosis_description: str = Field(default="", max_length=500)
    secondary_diagnosis_codes: list[str] = Field(default_factory=list)
    secondary_diagnosis_descriptions: list[str] = Field(default_factory=list)

    provider_code: Optional[str] = Field(
        None, max_length=50, description="Defaults to the configured SHA provider code"
    )
    items: list[ClaimItemCreate] = Field(default_factory=list)
    as_draft: bool = Field(default=False, description="Create in draft for incremental entry")

    @field_validator("primary_diagnosis_code")
    @classmethod
    def normalize_primary(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("secondary_diagnosis_codes")
    @classmethod
    def normalize_secondary(cls, v: list[str]) -> list[str]:
        return [code.strip().upper() for code in v]


class ClaimResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    claim_number: str
    patient_id: UUID
    visit_id: Optional[UUID] = None
    op_number: str
    member_number: Optional[str] = None
    patient_name: Optional[str] = None
    visit_date: date
    primary_diagnosis_code: str
    primary_diagnosis_description: str
    secondary_diagnosis_codes: list[str] = []
    secondary_diagnosis_descriptions: list[str] = []
    provider_code: str
    claim_amount: Decimal
    approved_amount: Optional[Decimal] = None
    status: ClaimStatus
    compliance_status: ComplianceStatus
    submission_round: int
    batch_id: Optional[UUID] = None
    sha_reference: Optional[str] = None
    submission_date: Optional[datetime] = None
    approval_date: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_by: str
    created_at: datetime
    updated_at: datetime
    items: list[ClaimItemResponse] = []


class ClaimFilters(BaseModel):
    """Query filters for listing claims."""

    status: Optional[ClaimStatus] = None
    batch_id: Optional[UUID] = None
    op_number: Optional[str] = None
    patient_id: Optional[UUID] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)


class ClaimStatusUpdate(BaseModel):
    """Manual status change (resubmission or insurer outcome entered by staff)."""

    status: ClaimStatus
    reason: Optional[str] = Field(None, max_length=1000)
    approved_amount: Optional[Decimal] = Field(None, ge=0)
    sha_reference: Optional[str] = Field(None, max_length=100)
