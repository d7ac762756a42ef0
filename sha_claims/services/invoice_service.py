"""
Pre-submission Invoice Service.

Provides:
- Exactly-once invoice generation per claim submission round
- Print tracking (single and bulk)
- Edits while the invoice is not yet locked
- Review, archive, printing and compliance listings

Source: Clinic SHA claims workflow design - Invoice Generator
Verified: 2025-11-02
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sha_claims.api.config import Settings
from sha_claims.core.enums import (
    AuditAction,
    BatchType,
    ClaimStatus,
    ComplianceStatus,
    InvoiceStatus,
)
from sha_claims.core.exceptions import (
    ClaimsWorkflowError,
    DuplicateInvoiceError,
    InvalidTransitionError,
    InvoiceLockedError,
    InvoiceNotFoundError,
    ValidationError,
)
from sha_claims.models.base import utcnow
from sha_claims.models.claim import Claim
from sha_claims.models.invoice import Invoice
from sha_claims.schemas.audit import (
    InvoiceGeneratedDetails,
    InvoicePrintedDetails,
    InvoiceUpdatedDetails,
)
from sha_claims.schemas.invoice import (
    BulkPrintItem,
    ComplianceReport,
    ComplianceReportRow,
    ComplianceReportSummary,
    InvoiceFilters,
    InvoiceUpdate,
)
from sha_claims.services import events
from sha_claims.services.audit_service import AuditService
from sha_claims.services.base import UniqueKey, transaction
from sha_claims.services.claim_state_machine import TransitionDriver
from sha_claims.services.claims_service import ClaimsService
from sha_claims.services.compliance_service import compliance_checklist
from sha_claims.services.events import EventBus
from sha_claims.services.numbering import (
    INVOICE_NUMBER_KEY,
    INVOICE_SEQUENCE_WIDTH,
    due_date_for,
    invoice_number_prefix,
    next_number,
    number_collision,
    retry_on_number_collision,
)

logger = logging.getLogger(__name__)

CLAIM_ROUND_KEY = UniqueKey(
    "sha_invoices", ("claim_id", "submission_round"), name="uq_sha_invoices_claim_round"
)


def generation_conflicts(claim_id: UUID) -> list[tuple[UniqueKey, ClaimsWorkflowError]]:
    """A concurrent invoice for the same round is a duplicate; a taken number is retried."""
    return [
        (
            CLAIM_ROUND_KEY,
            DuplicateInvoiceError(
                f"An invoice already exists for claim {claim_id}", {"claim_id": str(claim_id)}
            ),
        ),
        number_collision(INVOICE_NUMBER_KEY, "Invoice"),
    ]


async def current_invoice(session: AsyncSession, claim: Claim) -> Optional[Invoice]:
    """Invoice for the claim's current submission round, if any."""
    result = await session.execute(
        select(Invoice).where(
            Invoice.claim_id == claim.id,
            Invoice.submission_round == claim.submission_round,
        )
    )
    return result.scalar_one_or_none()


class InvoiceService:
    """Generates and tracks pre-submission invoices."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        claims: ClaimsService,
        audit: AuditService,
        settings: Settings,
        event_bus: Optional[EventBus] = None,
    ):
        self._session_factory = session_factory
        self._claims = claims
        self._audit = audit
        self._settings = settings
        self._events = event_bus or EventBus()

    # =========================================================================
    # Generation
    # =========================================================================

    async def generate_invoice(self, claim_id: UUID, user_id: str) -> Invoice:
        """
        Generate the invoice for a claim's current submission round.

        Raises:
            DuplicateInvoiceError: An invoice already exists for this round,
                including when a concurrent call won the race
            InvalidTransitionError: Claim is not ready_to_submit
            NumberCollisionError: Every allocated invoice number was taken
        """

        async def attempt() -> tuple[Claim, Invoice]:
            async with transaction(
                self._session_factory, conflicts=generation_conflicts(claim_id)
            ) as session:
                claim = await ClaimsService.load_claim(session, claim_id, for_update=True)
                return claim, await self.generate_in_session(session, claim, user_id)

        claim, invoice = await retry_on_number_collision(attempt)

        logger.info(f"Generated invoice {invoice.invoice_number} for claim {claim.claim_number}")
        await self._events.publish(
            events.INVOICE_GENERATED,
            claim_id=str(claim.id),
            invoice_id=str(invoice.id),
            invoice_number=invoice.invoice_number,
        )
        return invoice

    async def generate_in_session(
        self, session: AsyncSession, claim: Claim, user_id: str
    ) -> Invoice:
        """Generation steps inside the caller's transaction."""
        existing = await current_invoice(session, claim)
        if existing is not None:
            raise DuplicateInvoiceError(
                f"Invoice {existing.invoice_number} already exists for claim {claim.claim_number}",
                {"claim_id": str(claim.id), "invoice_id": str(existing.id)},
            )
        if claim.status != ClaimStatus.READY_TO_SUBMIT:
            raise InvalidTransitionError(
                f"Claim {claim.claim_number} is {claim.status.value}; "
                "an invoice can only be generated for a claim ready to submit",
                {"claim_id": str(claim.id), "status": claim.status.value},
            )

        now = utcnow()
        invoice_date = now.date()
        invoice_number = await next_number(
            session,
            Invoice.invoice_number,
            invoice_number_prefix(invoice_date, self._settings.INVOICE_PREFIX),
            INVOICE_SEQUENCE_WIDTH,
        )
        invoice = Invoice(
            invoice_number=invoice_number,
            claim_id=claim.id,
            submission_round=claim.submission_round,
            patient_id=claim.patient_id,
            invoice_date=invoice_date,
            due_date=due_date_for(invoice_date, self._settings.PAYMENT_TERMS_DAYS),
            total_amount=claim.claim_amount,
            status=InvoiceStatus.GENERATED,
            compliance_status=claim.compliance_status,
            generated_by=user_id,
            generated_at=now,
        )
        session.add(invoice)
        await session.flush()

        self._claims.apply_transition(
            claim, ClaimStatus.INVOICE_READY, TransitionDriver.INVOICE_GENERATION, user_id
        )
        self._audit.record(
            session,
            claim.id,
            AuditAction.INVOICE_GENERATED_PRE_SUBMISSION,
            user_id,
            InvoiceGeneratedDetails(
                invoice_number=invoice_number,
                amount=invoice.total_amount,
                item_count=len(claim.items),
                submission_round=claim.submission_round,
            ),
            invoice_id=invoice.id,
        )
        return invoice

    # =========================================================================
    # Printing and edits
    # =========================================================================

    async def mark_printed(self, invoice_id: UUID, user_id: str) -> Invoice:
        """
        Record a print of the invoice.

        Raises:
            InvoiceLockedError: Invoice is already submitted
        """
        async with transaction(self._session_factory) as session:
            invoice = await self._load_invoice(session, invoice_id)
            self.mark_printed_in_session(session, invoice, user_id)
        return invoice

    def mark_printed_in_session(self, session: AsyncSession, invoice: Invoice, user_id: str) -> None:
        if invoice.is_locked:
            raise InvoiceLockedError(
                f"Invoice {invoice.invoice_number} is submitted and can no longer be printed",
                {"invoice_id": str(invoice.id)},
            )
        invoice.status = InvoiceStatus.PRINTED
        invoice.print_count += 1
        invoice.printed_by = user_id
        invoice.printed_at = utcnow()
        self._audit.record(
            session,
            invoice.claim_id,
            AuditAction.INVOICE_PRINTED,
            user_id,
            InvoicePrintedDetails(
                invoice_number=invoice.invoice_number, print_count=invoice.print_count
            ),
            invoice_id=invoice.id,
        )

    async def bulk_mark_printed(self, invoice_ids: list[UUID], user_id: str) -> list[BulkPrintItem]:
        """Print each invoice in its own transaction; one failure never aborts the rest."""
        results: list[BulkPrintItem] = []
        for invoice_id in invoice_ids:
            try:
                await self.mark_printed(invoice_id, user_id)
                results.append(BulkPrintItem(invoice_id=invoice_id, success=True))
            except ClaimsWorkflowError as e:
                logger.warning(f"Bulk print skipped invoice {invoice_id}: {e.message}")
                results.append(BulkPrintItem(invoice_id=invoice_id, success=False, error=e.message))
        return results

    async def update_invoice(
        self, invoice_id: UUID, changes: InvoiceUpdate, user_id: str
    ) -> Invoice:
        """
        Edit due date, notes or compliance status of an unlocked invoice.

        Raises:
            InvoiceLockedError: Invoice is already submitted
        """
        updates = changes.model_dump(exclude_unset=True, exclude_none=True)
        if not updates:
            raise ValidationError("No changes supplied", ["at least one field is required"])

        async with transaction(self._session_factory) as session:
            invoice = await self._load_invoice(session, invoice_id)
            if invoice.is_locked:
                raise InvoiceLockedError(
                    f"Invoice {invoice.invoice_number} is submitted and read-only",
                    {"invoice_id": str(invoice.id)},
                )
            if "due_date" in updates and updates["due_date"] < invoice.invoice_date:
                raise ValidationError(
                    "Due date precedes invoice date", ["due_date: must be on or after invoice_date"]
                )
            for field_name, value in updates.items():
                setattr(invoice, field_name, value)

            self._audit.record(
                session,
                invoice.claim_id,
                AuditAction.INVOICE_UPDATED,
                user_id,
                InvoiceUpdatedDetails(
                    invoice_number=invoice.invoice_number,
                    changes={key: str(getattr(value, "value", value)) for key, value in updates.items()},
                ),
                invoice_id=invoice.id,
            )
        return invoice

    # =========================================================================
    # Reads
    # =========================================================================

    @staticmethod
    async def _load_invoice(session: AsyncSession, invoice_id: UUID) -> Invoice:
        invoice = await session.get(Invoice, invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(
                f"Invoice not found: {invoice_id}", {"invoice_id": str(invoice_id)}
            )
        return invoice

    async def get_invoice(self, invoice_id: UUID) -> tuple[Invoice, Claim]:
        """Invoice with its claim and items, as needed for printing."""
        async with self._session_factory() as session:
            invoice = await self._load_invoice(session, invoice_id)
            claim = await ClaimsService.load_claim(session, invoice.claim_id)
            return invoice, claim

    async def list_invoices(self, filters: InvoiceFilters) -> tuple[list[Invoice], int]:
        conditions = []
        if filters.status is not None:
            conditions.append(Invoice.status == filters.status)
        if filters.claim_id is not None:
            conditions.append(Invoice.claim_id == filters.claim_id)
        if filters.date_from is not None:
            conditions.append(Invoice.invoice_date >= filters.date_from)
        if filters.date_to is not None:
            conditions.append(Invoice.invoice_date <= filters.date_to)

        async with self._session_factory() as session:
            total = (
                await session.execute(select(func.count(Invoice.id)).where(*conditions))
            ).scalar_one()
            result = await session.execute(
                select(Invoice)
                .where(*conditions)
                .order_by(Invoice.generated_at.desc(), Invoice.invoice_number.desc())
                .offset((filters.page - 1) * filters.limit)
                .limit(filters.limit)
            )
            return list(result.scalars().all()), total

    async def get_ready_for_review(self) -> list[Invoice]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Invoice)
                .where(Invoice.status.in_([InvoiceStatus.GENERATED, InvoiceStatus.PRINTED]))
                .order_by(Invoice.generated_at)
            )
            return list(result.scalars().all())

    async def get_submitted_archive(
        self, date_from: Optional[date] = None, date_to: Optional[date] = None
    ) -> list[Invoice]:
        conditions = [Invoice.status == InvoiceStatus.SUBMITTED]
        if date_from is not None:
            conditions.append(Invoice.invoice_date >= date_from)
        if date_to is not None:
            conditions.append(Invoice.invoice_date <= date_to)
        async with self._session_factory() as session:
            result = await session.execute(
                select(Invoice).where(*conditions).order_by(Invoice.submitted_at.desc())
            )
            return list(result.scalars().all())

    async def get_ready_for_printing(
        self, batch_type: BatchType, today: Optional[date] = None
    ) -> list[Invoice]:
        """Generated, never printed invoices of the current week or month."""
        today = today or utcnow().date()
        if batch_type == BatchType.WEEKLY:
            since = today - timedelta(days=7)
        elif batch_type == BatchType.MONTHLY:
            since = today.replace(day=1)
        else:
            raise ValidationError(
                "Printing queues exist for weekly and monthly batches only",
                [f"batch_type: '{batch_type.value}' is not supported"],
            )
        async with self._session_factory() as session:
            result = await session.execute(
                select(Invoice)
                .where(Invoice.status == InvoiceStatus.GENERATED, Invoice.invoice_date >= since)
                .order_by(Invoice.invoice_number)
            )
            return list(result.scalars().all())

    async def get_compliance_report(
        self, date_from: Optional[date] = None, date_to: Optional[date] = None
    ) -> ComplianceReport:
        conditions = []
        if date_from is not None:
            conditions.append(Invoice.invoice_date >= date_from)
        if date_to is not None:
            conditions.append(Invoice.invoice_date <= date_to)

        async with self._session_factory() as session:
            result = await session.execute(
                select(Invoice, Claim)
                .join(Claim, Claim.id == Invoice.claim_id)
                .where(*conditions)
                .order_by(Invoice.invoice_number)
            )
            pairs = result.all()

        rows = [
            ComplianceReportRow(
                invoice_number=invoice.invoice_number,
                claim_number=claim.claim_number,
                invoice_date=invoice.invoice_date,
                total_amount=invoice.total_amount,
                invoice_status=invoice.status,
                compliance_status=invoice.compliance_status,
                claim_status=claim.status.value,
                issues=compliance_checklist(claim),
            )
            for invoice, claim in pairs
        ]
        summary = ComplianceReportSummary(
            total_invoices=len(rows),
            verified=sum(1 for r in rows if r.compliance_status == ComplianceStatus.VERIFIED),
            pending=sum(1 for r in rows if r.compliance_status == ComplianceStatus.PENDING),
            rejected=sum(1 for r in rows if r.compliance_status == ComplianceStatus.REJECTED),
            submitted=sum(1 for r in rows if r.invoice_status == InvoiceStatus.SUBMITTED),
            total_amount=sum((r.total_amount for r in rows), Decimal("0")),
        )
        return ComplianceReport(rows=rows, summary=summary)
