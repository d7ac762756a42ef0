"""
Pydantic Schemas for the SHA claim processing workflow.
Source: Clinic SHA claims workflow design - Workflow Engine
Verified: 2025-11-02
"""

from datetime import date, datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from sha_claims.core.enums import StepStatus, WorkflowActivityAction, WorkflowStatus


class WorkflowStepResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    step_name: str
    step_order: int
    status: StepStatus
    required: bool
    automated: bool
    estimated_duration_minutes: Optional[int] = None
    actual_duration_minutes: Optional[int] = None
    assigned_to: Optional[str] = None
    completed_by: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    prerequisites: list[str] = []
    next_steps: list[str] = []
    notes: Optional[str] = None


class WorkflowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    claim_id: UUID
    invoice_id: Optional[UUID] = None
    workflow_type: str
    current_step: Optional[str] = None
    overall_status: WorkflowStatus
    initiated_by: str
    completed_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    steps: list[WorkflowStepResponse] = []


class WorkflowActivityResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    step_name: Optional[str] = None
    action: WorkflowActivityAction
    performed_by: str
    performed_at: datetime
    details: dict[str, Any] = {}


class StepActionRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=2000)
    auto_advance: bool = True


class WorkflowFilters(BaseModel):
    status: Optional[WorkflowStatus] = None
    current_step: Optional[str] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)


class StepStatistics(BaseModel):
    step_name: str
    completed: int
    failed: int
    average_duration_minutes: Optional[float] = None


class WorkflowStatistics(BaseModel):
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    total_workflows: int
    by_status: dict[str, int]
    average_completion_minutes: Optional[float] = None
    steps: list[StepStatistics] = []
