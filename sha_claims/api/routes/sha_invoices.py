"""
SHA Invoice API Endpoints.

Provides:
- Pre-submission invoice generation
- Printing (single and bulk) and edits before submission
- Single-claim submission to SHA
- Review, printing and archive queues, compliance report
- Invoice audit trail

Source: Clinic SHA claims workflow design - Invoice Generator
Verified: 2025-11-02

Static paths are registered before `/{invoice_id}` so they are never read as ids.
"""

from dataclasses import asdict
from datetime import date
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from sha_claims.api.deps import (
    TokenClaims,
    get_container,
    require_claims_manager,
    require_staff,
)
from sha_claims.core.enums import BatchType, InvoiceStatus
from sha_claims.core.exceptions import SubmissionGatewayError
from sha_claims.schemas.audit import AuditEntryResponse
from sha_claims.schemas.claim import ClaimResponse
from sha_claims.schemas.common import Page, ok
from sha_claims.schemas.invoice import (
    BulkPrintRequest,
    InvoiceDetailResponse,
    InvoiceFilters,
    InvoiceResponse,
    InvoiceUpdate,
)
from sha_claims.services.container import ServiceContainer
from sha_claims.services.numbering import aging_bucket

router = APIRouter(
    prefix="/api/v1/sha-invoices",
    tags=["sha-invoices"],
)


# =============================================================================
# Generation, printing, submission
# =============================================================================


@router.post("/generate/{claim_id}", status_code=status.HTTP_201_CREATED)
async def generate_invoice(
    claim_id: UUID,
    user: TokenClaims = Depends(require_claims_manager),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    invoice = await container.invoices.generate_invoice(claim_id, user.user_id)
    return ok(InvoiceResponse.model_validate(invoice), f"Invoice {invoice.invoice_number} generated")


@router.patch("/bulk/print")
async def bulk_print_invoices(
    request: BulkPrintRequest,
    user: TokenClaims = Depends(require_claims_manager),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Mark several invoices printed; each invoice succeeds or fails on its own."""
    results = await container.invoices.bulk_mark_printed(request.invoice_ids, user.user_id)
    printed = sum(1 for r in results if r.success)
    return ok(results, f"{printed} of {len(results)} invoices marked printed")


@router.post("/submit/{claim_id}")
async def submit_claim(
    claim_id: UUID,
    user: TokenClaims = Depends(require_claims_manager),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """
    Submit one claim to SHA.

    A rejected or unreachable insurer answers 400 with the gateway detail;
    the claim and invoice stay unchanged.
    """
    result = await container.submissions.submit_claim(claim_id, user.user_id)
    if not result.success:
        raise SubmissionGatewayError(
            result.error or "SHA submission failed",
            status_code=result.remote_status_code,
            response=result.response,
        )
    return ok(asdict(result), f"Claim submitted to SHA (reference {result.sha_reference})")


@router.patch("/{invoice_id}/print")
async def print_invoice(
    invoice_id: UUID,
    user: TokenClaims = Depends(require_claims_manager),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    invoice = await container.invoices.mark_printed(invoice_id, user.user_id)
    return ok(InvoiceResponse.model_validate(invoice), f"Invoice {invoice.invoice_number} printed")


# =============================================================================
# Queues and reports
# =============================================================================


@router.get("")
async def list_invoices(
    status_filter: Optional[InvoiceStatus] = Query(None, alias="status"),
    claim_id: Optional[UUID] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: TokenClaims = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    filters = InvoiceFilters(
        status=status_filter,
        claim_id=claim_id,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    invoices, total = await container.invoices.list_invoices(filters)
    return ok(
        Page[InvoiceResponse](
            items=[InvoiceResponse.model_validate(i) for i in invoices],
            total=total,
            page=page,
            limit=limit,
        )
    )


@router.get("/ready-for-review")
async def ready_for_review(
    user: TokenClaims = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    invoices = await container.invoices.get_ready_for_review()
    return ok([InvoiceResponse.model_validate(i) for i in invoices])


@router.get("/submitted-archive")
async def submitted_archive(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    user: TokenClaims = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    invoices = await container.invoices.get_submitted_archive(date_from, date_to)
    return ok([InvoiceResponse.model_validate(i) for i in invoices])


@router.get("/ready-for-printing/{batch_type}")
async def ready_for_printing(
    batch_type: BatchType,
    user: TokenClaims = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    invoices = await container.invoices.get_ready_for_printing(batch_type)
    return ok([InvoiceResponse.model_validate(i) for i in invoices])


@router.get("/compliance/report")
async def compliance_report(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    user: TokenClaims = Depends(require_claims_manager),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    report = await container.invoices.get_compliance_report(date_from, date_to)
    return ok(report)


# =============================================================================
# Single invoice
# =============================================================================


@router.get("/{invoice_id}")
async def get_invoice(
    invoice_id: UUID,
    user: TokenClaims = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Invoice with its claim and line items, ready for printing."""
    invoice, claim = await container.invoices.get_invoice(invoice_id)
    detail = InvoiceDetailResponse(
        **InvoiceResponse.model_validate(invoice).model_dump(),
        claim=ClaimResponse.model_validate(claim),
        aging_bucket=aging_bucket(invoice.invoice_date),
    )
    return ok(detail)


@router.get("/{invoice_id}/audit")
async def get_invoice_audit(
    invoice_id: UUID,
    user: TokenClaims = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    entries = await container.audit.list_for_invoice(invoice_id)
    return ok([AuditEntryResponse.model_validate(e) for e in entries])


@router.patch("/{invoice_id}")
async def update_invoice(
    invoice_id: UUID,
    changes: InvoiceUpdate,
    user: TokenClaims = Depends(require_claims_manager),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    invoice = await container.invoices.update_invoice(invoice_id, changes, user.user_id)
    return ok(InvoiceResponse.model_validate(invoice), f"Invoice {invoice.invoice_number} updated")
