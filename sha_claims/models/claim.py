"""
Claim Model for SHA Claims.
Source: Clinic SHA claims workflow design - Data Model (Claim, ClaimItem)
Verified: 2025-11-02
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sha_claims.core.enums import ClaimStatus, ComplianceStatus, ServiceType
from sha_claims.core.exceptions import InvalidTransitionError
from sha_claims.models.base import Base, JSONType, TimeStampedModel, UUIDModel, enum_column


class Claim(Base, UUIDModel, TimeStampedModel):
    """
    Insurance claim for one patient encounter.

    Mutated only through the claim state machine; never hard-deleted once
    submitted.
    """

    __tablename__ = "claims"

    claim_number: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True,
        comment="Human-readable, time-ordered number (CLM-YYYYMM-NNNNNN)",
    )

    # Encounter references (owned by the patient/visit services)
    patient_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    visit_id: Mapped[Optional[UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    op_number: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    member_number: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True, comment="SHA beneficiary number"
    )
    patient_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    visit_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Diagnosis
    primary_diagnosis_code: Mapped[str] = mapped_column(String(20), nullable=False)
    primary_diagnosis_description: Mapped[str] = mapped_column(String(500), nullable=False)
    secondary_diagnosis_codes: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    secondary_diagnosis_descriptions: Mapped[list] = mapped_column(
        JSONType, default=list, nullable=False
    )

    provider_code: Mapped[str] = mapped_column(String(50), nullable=False)

    # Financials
    claim_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, comment="Sum of item total_price"
    )
    approved_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    # Status
    status: Mapped[ClaimStatus] = mapped_column(
        enum_column(ClaimStatus),
        default=ClaimStatus.READY_TO_SUBMIT,
        nullable=False,
        index=True,
    )
    compliance_status: Mapped[ComplianceStatus] = mapped_column(
        enum_column(ComplianceStatus),
        default=ComplianceStatus.PENDING,
        nullable=False,
    )
    submission_round: Mapped[int] = mapped_column(
        Integer,
        default=1,
        nullable=False,
        comment="Incremented when a rejected claim is reopened for resubmission",
    )

    # Batch membership (assigned by the batch manager only)
    batch_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sha_claim_batches.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Insurer outcome
    sha_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    submission_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    approval_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by: Mapped[str] = mapped_column(String(100), nullable=False)

    items: Mapped[list["ClaimItem"]] = relationship(
        back_populates="claim",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ClaimItem.line_number",
    )

    __table_args__ = (
        Index("ix_claims_status_batch", "status", "batch_id"),
        Index("ix_claims_status_created", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Claim(number='{self.claim_number}', status='{self.status}')>"


class ClaimItem(Base, UUIDModel, TimeStampedModel):
    """One billable line of a claim. Immutable after creation."""

    __tablename__ = "claim_items"

    claim_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("claims.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    service_type: Mapped[ServiceType] = mapped_column(
        enum_column(ServiceType), default=ServiceType.OTHER, nullable=False
    )
    service_code: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    provided_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    department: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    claim: Mapped["Claim"] = relationship(back_populates="items")

    def __repr__(self) -> str:
        return f"<ClaimItem(code='{self.service_code}', total={self.total_price})>"


@event.listens_for(ClaimItem, "before_update")
def _block_claim_item_update(mapper, connection, target: ClaimItem) -> None:  # noqa: ARG001
    raise InvalidTransitionError("Claim items are immutable once created")
