"""
Claim Batch Model.
Source: Clinic SHA claims workflow design - Data Model (Batch)
Verified: 2025-11-02
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from sha_claims.core.enums import BatchStatus, BatchType
from sha_claims.models.base import Base, TimeStampedModel, UUIDModel, enum_column


class Batch(Base, UUIDModel, TimeStampedModel):
    """Group of claims submitted to the insurer in one call."""

    __tablename__ = "sha_claim_batches"

    batch_number: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True,
        comment="SHA-BATCH-YYYYMMDD-NNNN",
    )
    batch_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    batch_type: Mapped[BatchType] = mapped_column(enum_column(BatchType), nullable=False)

    total_claims: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), default=Decimal("0"), nullable=False
    )

    status: Mapped[BatchStatus] = mapped_column(
        enum_column(BatchStatus),
        default=BatchStatus.DRAFT,
        nullable=False,
        index=True,
    )
    sha_batch_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    submission_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    invoices_printed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    printed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    printed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_by: Mapped[str] = mapped_column(String(100), nullable=False)

    def __repr__(self) -> str:
        return f"<Batch(number='{self.batch_number}', status='{self.status}')>"
