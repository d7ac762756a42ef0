"""
SHA Audit Trail Model.
Source: Clinic SHA claims workflow design - Audit Trail
Verified: 2025-11-02

Entries are append-only: updates and deletes are refused at flush time.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Uuid, event
from sqlalchemy.orm import Mapped, mapped_column

from sha_claims.core.enums import AuditAction
from sha_claims.core.exceptions import PersistenceError
from sha_claims.models.base import Base, JSONType, UUIDModel, enum_column, utcnow


class AuditEntry(Base, UUIDModel):
    """Immutable record of a state-changing action on a claim or invoice."""

    __tablename__ = "sha_audit_trail"

    claim_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("claims.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    invoice_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sha_invoices.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    action: Mapped[AuditAction] = mapped_column(
        enum_column(AuditAction, length=64), nullable=False, index=True
    )
    performed_by: Mapped[str] = mapped_column(String(100), nullable=False)
    performed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )
    details: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    compliance_check: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (Index("ix_sha_audit_trail_claim_performed", "claim_id", "performed_at"),)

    def __repr__(self) -> str:
        return f"<AuditEntry(action='{self.action}', claim_id='{self.claim_id}')>"


@event.listens_for(AuditEntry, "before_update")
def _block_audit_update(mapper, connection, target: AuditEntry) -> None:  # noqa: ARG001
    raise PersistenceError("Audit entries are append-only")


@event.listens_for(AuditEntry, "before_delete")
def _block_audit_delete(mapper, connection, target: AuditEntry) -> None:  # noqa: ARG001
    raise PersistenceError("Audit entries are append-only")
