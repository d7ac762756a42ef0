"""
SHA Document API Endpoints.

Supporting documents attached to claims and their compliance verification.

Source: Clinic SHA claims workflow design - Document compliance
Verified: 2025-11-02
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, status

from sha_claims.api.deps import TokenClaims, get_container, require_clinical, require_staff
from sha_claims.schemas.common import ok
from sha_claims.schemas.document import DocumentCreate, DocumentResponse
from sha_claims.services.container import ServiceContainer

router = APIRouter(
    prefix="/api/v1/sha-documents",
    tags=["sha-documents"],
)


@router.post("/{claim_id}", status_code=status.HTTP_201_CREATED)
async def attach_document(
    claim_id: UUID,
    data: DocumentCreate,
    user: TokenClaims = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    document = await container.compliance.add_document(claim_id, data, user.user_id)
    return ok(DocumentResponse.model_validate(document), "Document attached")


@router.patch("/{document_id}/verify")
async def verify_document(
    document_id: UUID,
    user: TokenClaims = Depends(require_clinical),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    document = await container.compliance.verify_document(document_id, user.user_id)
    return ok(DocumentResponse.model_validate(document), "Document verified")


@router.get("/claim/{claim_id}")
async def list_claim_documents(
    claim_id: UUID,
    user: TokenClaims = Depends(require_staff),
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    documents = await container.compliance.list_documents(claim_id)
    return ok([DocumentResponse.model_validate(d) for d in documents])
