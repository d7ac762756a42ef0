"""
Pre-submission Invoice Model.
Source: Clinic SHA claims workflow design - Data Model (Invoice)
Verified: 2025-11-02

An invoice mirrors a claim for printing and compliance. Once submitted it is
locked: any flush that modifies a submitted invoice raises InvoiceLockedError.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import (
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column

from sha_claims.core.enums import ComplianceStatus, InvoiceStatus
from sha_claims.core.exceptions import InvoiceLockedError
from sha_claims.models.base import Base, TimeStampedModel, UUIDModel, enum_column


class Invoice(Base, UUIDModel, TimeStampedModel):
    """Clinic-facing invoice generated before a claim is submitted."""

    __tablename__ = "sha_invoices"

    invoice_number: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True,
        comment="Monotonic per month (SHA-YYYYMM-NNNNNN)",
    )
    claim_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("claims.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    submission_round: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    patient_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)

    invoice_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    status: Mapped[InvoiceStatus] = mapped_column(
        enum_column(InvoiceStatus),
        default=InvoiceStatus.GENERATED,
        nullable=False,
        index=True,
    )
    compliance_status: Mapped[ComplianceStatus] = mapped_column(
        enum_column(ComplianceStatus),
        default=ComplianceStatus.PENDING,
        nullable=False,
    )

    generated_by: Mapped[str] = mapped_column(String(100), nullable=False)
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    printed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    printed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    print_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    submitted_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    sha_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        # One invoice per claim per submission round
        UniqueConstraint("claim_id", "submission_round", name="uq_sha_invoices_claim_round"),
    )

    @property
    def is_locked(self) -> bool:
        return self.status == InvoiceStatus.SUBMITTED

    def __repr__(self) -> str:
        return f"<Invoice(number='{self.invoice_number}', status='{self.status}')>"


@event.listens_for(Invoice, "before_update")
def _enforce_invoice_lock(mapper, connection, target: Invoice) -> None:  # noqa: ARG001
    state = inspect(target)
    status_history = state.attrs.status.history
    if status_history.deleted:
        persisted_status = status_history.deleted[0]
    elif status_history.unchanged:
        persisted_status = status_history.unchanged[0]
    else:
        persisted_status = target.status

    if persisted_status != InvoiceStatus.SUBMITTED:
        return

    changed = [
        attr.key
        for attr in state.attrs
        if attr.key != "updated_at" and attr.history.has_changes()
    ]
    if changed:
        raise InvoiceLockedError(
            f"Invoice {target.invoice_number} is submitted and read-only",
            {"invoice_id": str(target.id), "fields": changed},
        )
