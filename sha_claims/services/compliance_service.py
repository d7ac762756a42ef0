"""
Document Compliance Service.

Provides:
- Supporting document attachments and verification
- The claim compliance checklist
- Compliance verification used by the automated workflow step

Source: Clinic SHA claims workflow design - Document compliance
Verified: 2025-11-02
"""

import logging
from datetime import date
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sha_claims.core.enums import AuditAction, ComplianceStatus
from sha_claims.core.exceptions import ComplianceCheckError, DocumentNotFoundError
from sha_claims.models.base import utcnow
from sha_claims.models.claim import Claim
from sha_claims.models.document import ClaimDocument
from sha_claims.models.invoice import Invoice
from sha_claims.schemas.audit import ComplianceDetails
from sha_claims.schemas.document import DocumentCreate
from sha_claims.services.audit_service import AuditService
from sha_claims.services.base import transaction
from sha_claims.services.claims_service import ClaimsService
from sha_claims.services.numbering import is_valid_icd10, is_valid_member_number

logger = logging.getLogger(__name__)


def compliance_checklist(claim: Claim, today: Optional[date] = None) -> list[str]:
    """Issues that would make the insurer reject the claim outright."""
    issues: list[str] = []
    if not claim.claim_number:
        issues.append("Missing claim number")
    if not is_valid_member_number(claim.member_number):
        issues.append("Invalid SHA member number (expected 9 digits)")
    if not is_valid_icd10(claim.primary_diagnosis_code):
        issues.append("Invalid primary diagnosis code")
    if claim.visit_date > (today or date.today()):
        issues.append("Visit date is in the future")
    if claim.claim_amount is None or claim.claim_amount <= 0:
        issues.append("Claim total must be greater than zero")
    return issues


class ComplianceService:
    """Supporting documents and compliance verification for claims."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        audit: AuditService,
    ):
        self._session_factory = session_factory
        self._audit = audit

    async def add_document(
        self, claim_id: UUID, data: DocumentCreate, uploaded_by: str
    ) -> ClaimDocument:
        async with transaction(self._session_factory) as session:
            await ClaimsService.load_claim(session, claim_id)
            document = ClaimDocument(
                claim_id=claim_id,
                document_type=data.document_type,
                file_name=data.file_name,
                is_required=data.is_required,
                uploaded_by=uploaded_by,
            )
            session.add(document)
            await session.flush()
        logger.info(f"Attached {data.document_type} document to claim {claim_id}")
        return document

    async def verify_document(self, document_id: UUID, verified_by: str) -> ClaimDocument:
        async with transaction(self._session_factory) as session:
            document = await session.get(ClaimDocument, document_id)
            if document is None:
                raise DocumentNotFoundError(f"Document not found: {document_id}")
            document.compliance_verified = True
            document.verified_by = verified_by
            document.verified_at = utcnow()
        return document

    async def list_documents(self, claim_id: UUID) -> list[ClaimDocument]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ClaimDocument)
                .where(ClaimDocument.claim_id == claim_id)
                .order_by(ClaimDocument.created_at)
            )
            return list(result.scalars().all())

    async def verify_claim_compliance(self, claim_id: UUID, performed_by: str) -> Claim:
        """
        Check required documents and the checklist, then record the outcome.

        The outcome is committed either way; a rejected claim raises
        ComplianceCheckError after the commit.
        """
        async with transaction(self._session_factory) as session:
            claim = await ClaimsService.load_claim(session, claim_id, for_update=True)
            documents = (
                await session.execute(
                    select(ClaimDocument).where(ClaimDocument.claim_id == claim_id)
                )
            ).scalars().all()

            issues = [
                f"Required document not verified: {doc.document_type} ({doc.file_name})"
                for doc in documents
                if doc.is_required and not doc.compliance_verified
            ]
            issues.extend(compliance_checklist(claim))

            outcome = ComplianceStatus.REJECTED if issues else ComplianceStatus.VERIFIED
            claim.compliance_status = outcome

            invoice = (
                await session.execute(
                    select(Invoice).where(
                        Invoice.claim_id == claim.id,
                        Invoice.submission_round == claim.submission_round,
                    )
                )
            ).scalar_one_or_none()
            if invoice is not None and not invoice.is_locked:
                invoice.compliance_status = outcome

            self._audit.record(
                session,
                claim.id,
                AuditAction.COMPLIANCE_REJECTED if issues else AuditAction.COMPLIANCE_VERIFIED,
                performed_by,
                ComplianceDetails(issues=issues, documents_checked=len(documents)),
                invoice_id=invoice.id if invoice is not None else None,
            )

        if issues:
            logger.warning(f"Compliance rejected for claim {claim.claim_number}: {issues}")
            raise ComplianceCheckError(
                f"Claim {claim.claim_number} failed compliance verification", issues
            )
        logger.info(f"Compliance verified for claim {claim.claim_number}")
        return claim
