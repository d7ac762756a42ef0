"""
Submission Log Model.
Source: Clinic SHA claims workflow design - Submission Gateway
Verified: 2025-11-02

One row per submission attempt, written as `pending` before the insurer is
called. Only the outcome fields are attached afterwards.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from sha_claims.core.enums import SubmissionStatus, SubmissionType
from sha_claims.models.base import Base, JSONType, TimeStampedModel, UUIDModel, enum_column


class SubmissionLog(Base, UUIDModel, TimeStampedModel):
    """Append-only record of one call to the insurer API."""

    __tablename__ = "sha_submission_logs"

    claim_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("claims.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    batch_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sha_claim_batches.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    invoice_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sha_invoices.id", ondelete="RESTRICT"),
        nullable=True,
    )

    submission_type: Mapped[SubmissionType] = mapped_column(
        enum_column(SubmissionType), nullable=False
    )
    request_payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    response_payload: Mapped[Optional[Any]] = mapped_column(JSONType, nullable=True)
    response_status_code: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[SubmissionStatus] = mapped_column(
        enum_column(SubmissionStatus),
        default=SubmissionStatus.PENDING,
        nullable=False,
        index=True,
    )
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (Index("ix_sha_submission_logs_status_created", "status", "created_at"),)

    def __repr__(self) -> str:
        return f"<SubmissionLog(type='{self.submission_type}', status='{self.status}')>"
