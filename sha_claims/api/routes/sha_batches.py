"""
SHA Batch API Endpoints.

Weekly, monthly and custom batches of claims submitted to SHA in one call.

Source: Clinic SHA claims workflow design - Batch Manager
Verified: 2025-11-02
"""

from dataclasses import asdict
from datetime import date
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from sha_claims.api.deps import TokenClaims, get_container, require_claims_manager, require_staff
from sha_claims.core.enums import BatchStatus, BatchType
from sha_claims.core.exceptions import SubmissionGatewayError
from sha_claims.schemas.batch import (
    BatchCreate,
    BatchDetailResponse,
    BatchFilters,
    BatchResponse,
)
from sha_claims.schemas.common import Page, ok
from sha_claims.services.container import ServiceContainer

router = APIRouter(
    prefix="/api/v1/sha-batches",
    tags=["sha-batches"],
)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_batch(
    data: BatchCreate,
    user: TokenClaims = Depends(require_claims_manager),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """
    Create a draft batch from explicit claim ids or the batch type's date window.

    Answers 400 when no eligible claim is selected.
    """
    batch = await container.batches.create_batch(
        data.batch_type,
        user.user_id,
        claim_ids=data.claim_ids,
        date_from=data.date_from,
        date_to=data.date_to,
        batch_date=data.batch_date,
    )
    return ok(
        BatchResponse.model_validate(batch),
        f"Batch {batch.batch_number} created with {batch.total_claims} claims",
    )


@router.get("")
async def list_batches(
    status_filter: Optional[BatchStatus] = Query(None, alias="status"),
    batch_type: Optional[BatchType] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: TokenClaims = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    filters = BatchFilters(
        status=status_filter,
        batch_type=batch_type,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    batches, total = await container.batches.list_batches(filters)
    return ok(
        Page[BatchResponse](
            items=[BatchResponse.model_validate(b) for b in batches],
            total=total,
            page=page,
            limit=limit,
        )
    )


@router.get("/stats/summary")
async def batch_statistics(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    user: TokenClaims = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    return ok(await container.batches.get_statistics(date_from, date_to))


@router.get("/{batch_id}")
async def get_batch(
    batch_id: UUID,
    user: TokenClaims = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    batch, members = await container.batches.get_batch(batch_id)
    detail = BatchDetailResponse(
        **BatchResponse.model_validate(batch).model_dump(),
        claims=members,
    )
    return ok(detail)


@router.patch("/{batch_id}/submit")
async def submit_batch(
    batch_id: UUID,
    user: TokenClaims = Depends(require_claims_manager),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Submit the whole batch in one call; all members lock or none do."""
    result = await container.submissions.submit_batch(batch_id, user.user_id)
    if not result.success:
        raise SubmissionGatewayError(
            result.error or "SHA batch submission failed",
            status_code=result.remote_status_code,
            response=result.response,
        )
    return ok(
        asdict(result),
        f"Batch submitted to SHA with {len(result.claim_ids)} claims",
    )


@router.patch("/{batch_id}/mark-printed")
async def mark_batch_printed(
    batch_id: UUID,
    user: TokenClaims = Depends(require_claims_manager),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    batch = await container.batches.mark_batch_printed(batch_id, user.user_id)
    return ok(BatchResponse.model_validate(batch), f"Batch {batch.batch_number} printed")


@router.post("/{batch_id}/generate-invoices")
async def generate_batch_invoices(
    batch_id: UUID,
    user: TokenClaims = Depends(require_claims_manager),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    result = await container.batches.generate_invoices_for_batch(batch_id, user.user_id)
    return ok(
        asdict(result),
        f"{len(result.succeeded)} invoices generated, {len(result.failed)} failed",
    )


@router.delete("/{batch_id}")
async def delete_batch(
    batch_id: UUID,
    user: TokenClaims = Depends(require_claims_manager),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    await container.batches.delete_batch(batch_id, user.user_id)
    return ok(None, "Batch deleted")
