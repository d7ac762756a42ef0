"""
SHA Claim Processing Workflow Models.
Source: Clinic SHA claims workflow design - Workflow Engine
Verified: 2025-11-02

Prerequisites and next steps are stored as JSON lists of step names and
loaded into an in-memory adjacency list by the workflow engine.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sha_claims.core.enums import StepStatus, WorkflowActivityAction, WorkflowStatus
from sha_claims.models.base import Base, JSONType, TimeStampedModel, UUIDModel, enum_column, utcnow


WORKFLOW_TYPE_SHA = "SHA_CLAIM_PROCESSING"


class WorkflowInstance(Base, UUIDModel, TimeStampedModel):
    """Orchestration state for one claim."""

    __tablename__ = "sha_workflow_instances"

    claim_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("claims.id", ondelete="RESTRICT"),
        unique=True,
        nullable=False,
        index=True,
    )
    invoice_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sha_invoices.id", ondelete="SET NULL"),
        nullable=True,
    )
    workflow_type: Mapped[str] = mapped_column(
        String(50), default=WORKFLOW_TYPE_SHA, nullable=False
    )
    current_step: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    overall_status: Mapped[WorkflowStatus] = mapped_column(
        enum_column(WorkflowStatus),
        default=WorkflowStatus.NOT_STARTED,
        nullable=False,
        index=True,
    )
    initiated_by: Mapped[str] = mapped_column(String(100), nullable=False)
    completed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    steps: Mapped[list["WorkflowStep"]] = relationship(
        back_populates="workflow",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="WorkflowStep.step_order",
    )

    def step(self, step_name: str) -> Optional["WorkflowStep"]:
        for candidate in self.steps:
            if candidate.step_name == step_name:
                return candidate
        return None

    def __repr__(self) -> str:
        return f"<WorkflowInstance(claim_id='{self.claim_id}', status='{self.overall_status}')>"


class WorkflowStep(Base, UUIDModel, TimeStampedModel):
    """One ordered step of a workflow instance."""

    __tablename__ = "sha_workflow_steps"

    workflow_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sha_workflow_instances.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_name: Mapped[str] = mapped_column(String(50), nullable=False)
    step_order: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[StepStatus] = mapped_column(
        enum_column(StepStatus), default=StepStatus.PENDING, nullable=False
    )
    required: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    automated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    estimated_duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    actual_duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    assigned_to: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    completed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    prerequisites: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    next_steps: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    workflow: Mapped["WorkflowInstance"] = relationship(back_populates="steps")

    __table_args__ = (
        UniqueConstraint("workflow_id", "step_name", name="uq_sha_workflow_steps_name"),
    )

    def __repr__(self) -> str:
        return f"<WorkflowStep(name='{self.step_name}', status='{self.status}')>"


class WorkflowActivity(Base, UUIDModel):
    """Activity log line for a workflow."""

    __tablename__ = "sha_workflow_activity_log"

    workflow_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sha_workflow_instances.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_name: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    action: Mapped[WorkflowActivityAction] = mapped_column(
        enum_column(WorkflowActivityAction), nullable=False
    )
    performed_by: Mapped[str] = mapped_column(String(100), nullable=False)
    performed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )
    details: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)


class PaymentTracking(Base, UUIDModel, TimeStampedModel):
    """Recurring payment status check for a submitted claim."""

    __tablename__ = "sha_payment_tracking"

    claim_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("claims.id", ondelete="RESTRICT"),
        unique=True,
        nullable=False,
    )
    invoice_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sha_invoices.id", ondelete="SET NULL"),
        nullable=True,
    )
    tracking_started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    auto_check_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    next_check_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    last_checked_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
