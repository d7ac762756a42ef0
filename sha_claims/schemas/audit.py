"""
Audit Trail Detail Payloads.

Each audit action has a small closed payload shape, tagged by `kind`.
GenericDetails is the escape hatch for genuinely variable metadata.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from sha_claims.core.enums import AuditAction


class InvoiceGeneratedDetails(BaseModel):
    kind: Literal["invoice_generated"] = "invoice_generated"
    invoice_number: str
    amount: Decimal
    item_count: int
    submission_round: int = 1


class InvoicePrintedDetails(BaseModel):
    kind: Literal["invoice_printed"] = "invoice_printed"
    invoice_number: str
    print_count: int


class InvoiceUpdatedDetails(BaseModel):
    kind: Literal["invoice_updated"] = "invoice_updated"
    invoice_number: str
    changes: dict[str, Any]


class ClaimSubmittedDetails(BaseModel):
    kind: Literal["claim_submitted"] = "claim_submitted"
    sha_reference: Optional[str] = None
    invoice_number: str
    amount: Decimal
    batch_number: Optional[str] = None
    invoice_locked: bool = True
    recovered_by_reconciliation: bool = False


class SubmissionFailedDetails(BaseModel):
    kind: Literal["submission_failed"] = "submission_failed"
    error: str
    status_code: Optional[int] = None
    batch_number: Optional[str] = None
    retry_count: int = 0


class ClaimStatusChangedDetails(BaseModel):
    kind: Literal["status_changed"] = "status_changed"
    from_status: str
    to_status: str
    reason: Optional[str] = None
    driver: Optional[str] = None


class BatchAssignmentDetails(BaseModel):
    kind: Literal["batch_assignment"] = "batch_assignment"
    batch_id: UUID
    batch_number: str


class ComplianceDetails(BaseModel):
    kind: Literal["compliance"] = "compliance"
    issues: list[str] = Field(default_factory=list)
    documents_checked: int = 0


class GenericDetails(BaseModel):
    kind: Literal["generic"] = "generic"
    data: dict[str, Any] = Field(default_factory=dict)


AuditDetails = Annotated[
    Union[
        InvoiceGeneratedDetails,
        InvoicePrintedDetails,
        InvoiceUpdatedDetails,
        ClaimSubmittedDetails,
        SubmissionFailedDetails,
        ClaimStatusChangedDetails,
        BatchAssignmentDetails,
        ComplianceDetails,
        GenericDetails,
    ],
    Field(discriminator="kind"),
]

audit_details_adapter: TypeAdapter[AuditDetails] = TypeAdapter(AuditDetails)


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    claim_id: UUID
    invoice_id: Optional[UUID] = None
    action: AuditAction
    performed_by: str
    performed_at: datetime
    details: AuditDetails
    compliance_check: bool
