"""
SHA Audit Trail Service.

Appends immutable audit entries inside the caller's transaction and reads the
trail back for claims and invoices.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sha_claims.core.enums import AuditAction
from sha_claims.core.exceptions import ClaimNotFoundError, InvoiceNotFoundError
from sha_claims.models.audit import AuditEntry
from sha_claims.models.base import utcnow
from sha_claims.models.claim import Claim
from sha_claims.models.invoice import Invoice
from sha_claims.schemas.audit import AuditDetails, GenericDetails

logger = logging.getLogger(__name__)

COMPLIANCE_ACTIONS = frozenset(
    {
        AuditAction.INVOICE_GENERATED_PRE_SUBMISSION,
        AuditAction.CLAIM_SUBMITTED_TO_SHA,
        AuditAction.COMPLIANCE_VERIFIED,
        AuditAction.COMPLIANCE_REJECTED,
    }
)


class AuditService:
    """Append-only audit trail."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    def record(
        self,
        session: AsyncSession,
        claim_id: UUID,
        action: AuditAction,
        performed_by: str,
        details: Optional[AuditDetails] = None,
        invoice_id: Optional[UUID] = None,
    ) -> AuditEntry:
        """Add an entry to the current transaction."""
        entry = AuditEntry(
            claim_id=claim_id,
            invoice_id=invoice_id,
            action=action,
            performed_by=performed_by,
            performed_at=utcnow(),
            details=(details or GenericDetails()).model_dump(mode="json"),
            compliance_check=action in COMPLIANCE_ACTIONS,
        )
        session.add(entry)
        logger.debug(f"Audit {action.value} for claim {claim_id} by {performed_by}")
        return entry

    async def list_for_claim(self, claim_id: UUID) -> list[AuditEntry]:
        async with self._session_factory() as session:
            if await session.get(Claim, claim_id) is None:
                raise ClaimNotFoundError(f"Claim not found: {claim_id}", {"claim_id": str(claim_id)})
            result = await session.execute(
                select(AuditEntry)
                .where(AuditEntry.claim_id == claim_id)
                .order_by(AuditEntry.performed_at, AuditEntry.id)
            )
            return list(result.scalars().all())

    async def list_for_invoice(self, invoice_id: UUID) -> list[AuditEntry]:
        """
        Full trail for one invoice.

        Includes claim-level entries recorded before the invoice existed, so a
        reviewer sees the whole history that led to it.
        """
        async with self._session_factory() as session:
            invoice = await session.get(Invoice, invoice_id)
            if invoice is None:
                raise InvoiceNotFoundError(f"Invoice not found: {invoice_id}")
            result = await session.execute(
                select(AuditEntry)
                .where(
                    or_(
                        AuditEntry.invoice_id == invoice_id,
                        (AuditEntry.claim_id == invoice.claim_id)
                        & AuditEntry.invoice_id.is_(None),
                    )
                )
                .order_by(AuditEntry.performed_at, AuditEntry.id)
            )
            return list(result.scalars().all())
