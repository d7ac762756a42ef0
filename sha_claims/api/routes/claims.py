"""
Claims API Endpoints.

Provides:
- Claim creation with line items
- Claim listing and detail
- Manual status transitions
- Claim audit trail

Source: Clinic SHA claims workflow design - Claim Store
Verified: 2025-11-02
"""

from datetime import date
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from sha_claims.api.deps import TokenClaims, get_container, require_clinical, require_staff
from sha_claims.core.enums import ClaimStatus
from sha_claims.schemas.audit import AuditEntryResponse
from sha_claims.schemas.claim import ClaimCreate, ClaimFilters, ClaimResponse, ClaimStatusUpdate
from sha_claims.schemas.common import Page, ok
from sha_claims.services.claim_state_machine import get_status_display_name
from sha_claims.services.container import ServiceContainer

router = APIRouter(
    prefix="/api/v1/claims",
    tags=["claims"],
)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_claim(
    data: ClaimCreate,
    user: TokenClaims = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """
    Create a claim with its line items.

    The claim starts in draft when `as_draft` is set, otherwise ready to submit.
    """
    claim = await container.claims.create_claim(data, user.user_id)
    return ok(ClaimResponse.model_validate(claim), f"Claim {claim.claim_number} created")


@router.get("")
async def list_claims(
    status_filter: Optional[ClaimStatus] = Query(None, alias="status"),
    batch_id: Optional[UUID] = None,
    op_number: Optional[str] = None,
    patient_id: Optional[UUID] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: TokenClaims = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    filters = ClaimFilters(
        status=status_filter,
        batch_id=batch_id,
        op_number=op_number,
        patient_id=patient_id,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    claims, total = await container.claims.list_claims(filters)
    return ok(
        Page[ClaimResponse](
            items=[ClaimResponse.model_validate(c) for c in claims],
            total=total,
            page=page,
            limit=limit,
        )
    )


@router.get("/{claim_id}")
async def get_claim(
    claim_id: UUID,
    user: TokenClaims = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    claim = await container.claims.get_claim(claim_id)
    return ok(ClaimResponse.model_validate(claim))


@router.patch("/{claim_id}/status")
async def update_claim_status(
    claim_id: UUID,
    update: ClaimStatusUpdate,
    user: TokenClaims = Depends(require_clinical),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """
    Manual status change.

    Invoice generation and submission edges are refused here; they belong to
    their own endpoints.
    """
    claim = await container.claims.transition_status(
        claim_id,
        update.status,
        user.user_id,
        reason=update.reason,
        approved_amount=update.approved_amount,
        sha_reference=update.sha_reference,
    )
    return ok(
        ClaimResponse.model_validate(claim),
        f"Claim {claim.claim_number} is now {get_status_display_name(claim.status)}",
    )


@router.get("/{claim_id}/audit")
async def get_claim_audit(
    claim_id: UUID,
    user: TokenClaims = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    entries = await container.audit.list_for_claim(claim_id)
    return ok([AuditEntryResponse.model_validate(e) for e in entries])
