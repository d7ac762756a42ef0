"""
SHA Workflow API Endpoints.

Provides:
- Workflow initialization per claim
- Step start/complete/skip/retry
- Automation trigger and cancellation
- Workflow statistics

Source: Clinic SHA claims workflow design - Workflow Engine
Verified: 2025-11-02
"""

from datetime import date
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from sha_claims.api.deps import TokenClaims, get_container, require_claims_manager, require_staff
from sha_claims.core.enums import WorkflowStatus
from sha_claims.schemas.common import Page, ok
from sha_claims.schemas.workflow import (
    StepActionRequest,
    WorkflowActivityResponse,
    WorkflowFilters,
    WorkflowResponse,
    WorkflowStepResponse,
)
from sha_claims.services.container import ServiceContainer

router = APIRouter(
    prefix="/api/v1/sha-workflows",
    tags=["sha-workflows"],
)


@router.post("/{claim_id}", status_code=status.HTTP_201_CREATED)
async def initialize_workflow(
    claim_id: UUID,
    user: TokenClaims = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    workflow = await container.workflows.initialize_workflow(claim_id, user.user_id)
    return ok(WorkflowResponse.model_validate(workflow), "Workflow initialized")


@router.get("")
async def list_workflows(
    status_filter: Optional[WorkflowStatus] = Query(None, alias="status"),
    current_step: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: TokenClaims = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    filters = WorkflowFilters(
        status=status_filter, current_step=current_step, page=page, limit=limit
    )
    workflows, total = await container.workflows.list_workflows(filters)
    return ok(
        Page[WorkflowResponse](
            items=[WorkflowResponse.model_validate(w) for w in workflows],
            total=total,
            page=page,
            limit=limit,
        )
    )


@router.get("/stats/summary")
async def workflow_statistics(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    user: TokenClaims = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    return ok(await container.workflows.get_statistics(date_from, date_to))


@router.get("/claim/{claim_id}")
async def get_workflow_for_claim(
    claim_id: UUID,
    user: TokenClaims = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    workflow = await container.workflows.get_workflow_for_claim(claim_id)
    return ok(WorkflowResponse.model_validate(workflow))


@router.get("/{workflow_id}")
async def get_workflow(
    workflow_id: UUID,
    user: TokenClaims = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    workflow = await container.workflows.get_workflow(workflow_id)
    return ok(WorkflowResponse.model_validate(workflow))


@router.get("/{workflow_id}/activity")
async def get_workflow_activity(
    workflow_id: UUID,
    user: TokenClaims = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    activity = await container.workflows.list_activity(workflow_id)
    return ok([WorkflowActivityResponse.model_validate(a) for a in activity])


# =============================================================================
# Steps
# =============================================================================


@router.post("/{workflow_id}/steps/{step_name}/start")
async def start_step(
    workflow_id: UUID,
    step_name: str,
    user: TokenClaims = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    step = await container.workflows.start_step(workflow_id, step_name, user.user_id)
    return ok(WorkflowStepResponse.model_validate(step), f"Step {step_name} started")


@router.post("/{workflow_id}/steps/{step_name}/complete")
async def complete_step(
    workflow_id: UUID,
    step_name: str,
    request: Optional[StepActionRequest] = None,
    user: TokenClaims = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    request = request or StepActionRequest()
    workflow = await container.workflows.complete_step(
        workflow_id,
        step_name,
        user.user_id,
        notes=request.notes,
        auto_advance=request.auto_advance,
    )
    return ok(WorkflowResponse.model_validate(workflow), f"Step {step_name} completed")


@router.post("/{workflow_id}/steps/{step_name}/skip")
async def skip_step(
    workflow_id: UUID,
    step_name: str,
    request: Optional[StepActionRequest] = None,
    user: TokenClaims = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    request = request or StepActionRequest()
    workflow = await container.workflows.skip_step(
        workflow_id, step_name, user.user_id, reason=request.notes
    )
    return ok(WorkflowResponse.model_validate(workflow), f"Step {step_name} skipped")


@router.post("/{workflow_id}/steps/{step_name}/retry")
async def retry_step(
    workflow_id: UUID,
    step_name: str,
    user: TokenClaims = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    workflow = await container.workflows.retry_step(workflow_id, step_name, user.user_id)
    return ok(WorkflowResponse.model_validate(workflow), f"Step {step_name} reset for retry")


# =============================================================================
# Automation and cancellation
# =============================================================================


@router.post("/{workflow_id}/automate")
async def run_automation(
    workflow_id: UUID,
    user: TokenClaims = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Run runnable automated steps now, in the request."""
    workflow = await container.workflows.process_automated_steps(workflow_id, user.user_id)
    return ok(WorkflowResponse.model_validate(workflow), "Automated steps processed")


@router.post("/{workflow_id}/cancel")
async def cancel_workflow(
    workflow_id: UUID,
    request: Optional[StepActionRequest] = None,
    user: TokenClaims = Depends(require_claims_manager),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    request = request or StepActionRequest()
    workflow = await container.workflows.cancel_workflow(
        workflow_id, user.user_id, reason=request.notes
    )
    return ok(WorkflowResponse.model_validate(workflow), "Workflow cancelled")
