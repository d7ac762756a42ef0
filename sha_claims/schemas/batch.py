"""
Pydantic Schemas for Claim Batches.
Source: Clinic SHA claims workflow design - Batch Manager
Verified: 2025-11-02
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from sha_claims.core.enums import BatchStatus, BatchType, ClaimStatus, InvoiceStatus


class BatchCreate(BaseModel):
    """Create a batch from explicit claim ids or a date window."""

    batch_type: BatchType
    claim_ids: Optional[list[UUID]] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    batch_date: Optional[date] = None

    @model_validator(mode="after")
    def check_range(self) -> "BatchCreate":
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must be on or before date_to")
        return self


class BatchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    batch_number: str
    batch_date: date
    batch_type: BatchType
    total_claims: int
    total_amount: Decimal
    status: BatchStatus
    sha_batch_reference: Optional[str] = None
    submission_date: Optional[datetime] = None
    invoices_printed: bool
    printed_by: Optional[str] = None
    printed_at: Optional[datetime] = None
    created_by: str
    created_at: datetime


class BatchMember(BaseModel):
    claim_id: UUID
    claim_number: str
    patient_name: Optional[str] = None
    claim_amount: Decimal
    status: ClaimStatus
    invoice_number: Optional[str] = None
    invoice_status: Optional[InvoiceStatus] = None


class BatchDetailResponse(BatchResponse):
    claims: list[BatchMember] = []


class BatchFilters(BaseModel):
    status: Optional[BatchStatus] = None
    batch_type: Optional[BatchType] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)


class BatchStatistics(BaseModel):
    total_batches: int
    draft: int
    submitted: int
    completed: int
    total_claims: int
    total_amount: Decimal
