"""
Pydantic Schemas for Pre-submission Invoices.
Source: Clinic SHA claims workflow design - Invoice Generator
Verified: 2025-11-02
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from sha_claims.core.enums import ComplianceStatus, InvoiceStatus
from sha_claims.schemas.claim import ClaimResponse


class InvoiceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    invoice_number: str
    claim_id: UUID
    submission_round: int
    patient_id: UUID
    invoice_date: date
    due_date: date
    total_amount: Decimal
    status: InvoiceStatus
    compliance_status: ComplianceStatus
    generated_by: str
    generated_at: datetime
    printed_by: Optional[str] = None
    printed_at: Optional[datetime] = None
    print_count: int
    submitted_by: Optional[str] = None
    submitted_at: Optional[datetime] = None
    sha_reference: Optional[str] = None
    notes: Optional[str] = None


class InvoiceDetailResponse(InvoiceResponse):
    """Invoice with its claim and items, as needed for printing."""

    claim: ClaimResponse
    aging_bucket: str


class InvoiceUpdate(BaseModel):
    """Fields staff may edit while the invoice is not yet submitted."""

    due_date: Optional[date] = None
    notes: Optional[str] = Field(None, max_length=2000)
    compliance_status: Optional[ComplianceStatus] = None


class InvoiceFilters(BaseModel):
    status: Optional[InvoiceStatus] = None
    claim_id: Optional[UUID] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)


class BulkPrintRequest(BaseModel):
    invoice_ids: list[UUID] = Field(..., min_length=1)


class BulkPrintItem(BaseModel):
    invoice_id: UUID
    success: bool
    error: Optional[str] = None


class ComplianceReportRow(BaseModel):
    invoice_number: str
    claim_number: str
    invoice_date: date
    total_amount: Decimal
    invoice_status: InvoiceStatus
    compliance_status: ComplianceStatus
    claim_status: str
    issues: list[str] = []


class ComplianceReportSummary(BaseModel):
    total_invoices: int
    verified: int
    pending: int
    rejected: int
    submitted: int
    total_amount: Decimal


class ComplianceReport(BaseModel):
    rows: list[ComplianceReportRow]
    summary: ComplianceReportSummary
