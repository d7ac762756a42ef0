"""
Claim Batch Service.

Provides:
- Batch creation from explicit claim ids or a date window
- Conditional claim-to-batch assignment in the batch's transaction
- Draft batch deletion
- Batch invoice generation, printing and statistics

Source: Clinic SHA claims workflow design - Batch Manager
Verified: 2025-11-02
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.attributes import set_committed_value

from sha_claims.api.config import Settings
from sha_claims.core.enums import AuditAction, BatchStatus, BatchType, ClaimStatus
from sha_claims.core.exceptions import (
    BatchNotFoundError,
    ClaimsWorkflowError,
    InvalidTransitionError,
    NoEligibleClaimsError,
    PersistenceError,
    ValidationError,
)
from sha_claims.models.base import utcnow
from sha_claims.models.batch import Batch
from sha_claims.models.claim import Claim
from sha_claims.models.invoice import Invoice
from sha_claims.schemas.audit import BatchAssignmentDetails
from sha_claims.schemas.batch import BatchFilters, BatchMember, BatchStatistics
from sha_claims.services.audit_service import AuditService
from sha_claims.services.base import transaction
from sha_claims.services.claim_state_machine import BATCHABLE_STATUSES
from sha_claims.services.invoice_service import InvoiceService, current_invoice
from sha_claims.services.numbering import (
    BATCH_NUMBER_KEY,
    BATCH_SEQUENCE_WIDTH,
    batch_number_prefix,
    next_number,
    number_collision,
    retry_on_number_collision,
)

logger = logging.getLogger(__name__)


@dataclass
class BatchOperationResult:
    """Per-claim outcome of a bulk batch operation."""

    batch_id: UUID
    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


def selection_window(
    batch_type: BatchType,
    batch_date: date,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    now: Optional[datetime] = None,
) -> tuple[datetime, datetime]:
    """
    Creation-time window of the claims a batch picks up.

    weekly: the 7 days before batch_date; monthly: from the first of the
    month; custom: the explicit range, or the last 24 hours.
    """
    end_of_day = datetime.combine(batch_date, time.max, tzinfo=timezone.utc)
    if batch_type == BatchType.WEEKLY:
        start = datetime.combine(batch_date - timedelta(days=7), time.min, tzinfo=timezone.utc)
        return start, end_of_day
    if batch_type == BatchType.MONTHLY:
        start = datetime.combine(batch_date.replace(day=1), time.min, tzinfo=timezone.utc)
        return start, end_of_day
    if date_from is not None or date_to is not None:
        start = datetime.combine(date_from or date.min, time.min, tzinfo=timezone.utc)
        end = datetime.combine(date_to or batch_date, time.max, tzinfo=timezone.utc)
        return start, end
    now = now or utcnow()
    return now - timedelta(hours=24), now


class BatchService:
    """Groups eligible claims into batches for SHA submission."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        invoices: InvoiceService,
        audit: AuditService,
        settings: Settings,
    ):
        self._session_factory = session_factory
        self._invoices = invoices
        self._audit = audit
        self._settings = settings

    # =========================================================================
    # Creation and deletion
    # =========================================================================

    async def create_batch(
        self,
        batch_type: BatchType,
        created_by: str,
        claim_ids: Optional[list[UUID]] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        batch_date: Optional[date] = None,
    ) -> Batch:
        """
        Create a draft batch and assign its claims in one transaction.

        Raises:
            NoEligibleClaimsError: Nothing in the selection is eligible
            PersistenceError: A selected claim was taken concurrently
        """
        batch_date = batch_date or utcnow().date()

        async def attempt() -> Batch:
            async with transaction(
                self._session_factory,
                conflicts=[number_collision(BATCH_NUMBER_KEY, "Batch")],
            ) as session:
                return await self._assign_batch(
                    session, batch_type, batch_date, created_by, claim_ids, date_from, date_to
                )

        batch = await retry_on_number_collision(attempt)

        logger.info(
            f"Created {batch_type.value} batch {batch.batch_number} with "
            f"{batch.total_claims} claims ({batch.total_amount})"
        )
        return batch

    async def _assign_batch(
        self,
        session: AsyncSession,
        batch_type: BatchType,
        batch_date: date,
        created_by: str,
        claim_ids: Optional[list[UUID]],
        date_from: Optional[date],
        date_to: Optional[date],
    ) -> Batch:
        eligible = [Claim.status.in_(BATCHABLE_STATUSES), Claim.batch_id.is_(None)]
        stmt = select(Claim).where(*eligible)
        if claim_ids:
            stmt = stmt.where(Claim.id.in_(claim_ids))
        else:
            start, end = selection_window(batch_type, batch_date, date_from, date_to)
            stmt = stmt.where(Claim.created_at >= start, Claim.created_at <= end)
        claims = list((await session.execute(stmt.order_by(Claim.claim_number))).scalars().all())

        if not claims:
            raise NoEligibleClaimsError(
                "No eligible claims for this batch",
                {"batch_type": batch_type.value, "claim_ids": [str(c) for c in claim_ids or []]},
            )

        batch = Batch(
            batch_number=await next_number(
                session,
                Batch.batch_number,
                batch_number_prefix(batch_date, self._settings.BATCH_PREFIX),
                BATCH_SEQUENCE_WIDTH,
            ),
            batch_date=batch_date,
            batch_type=batch_type,
            total_claims=len(claims),
            total_amount=sum((c.claim_amount for c in claims), Decimal("0")),
            status=BatchStatus.DRAFT,
            created_by=created_by,
        )
        session.add(batch)
        await session.flush()

        selected_ids = [c.id for c in claims]
        assigned = await session.execute(
            update(Claim)
            .where(Claim.id.in_(selected_ids), *eligible)
            .values(batch_id=batch.id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if assigned.rowcount != len(selected_ids):
            raise PersistenceError(
                "Claims were assigned to another batch concurrently; nothing was changed",
                {"selected": len(selected_ids), "assigned": assigned.rowcount},
            )

        for claim in claims:
            set_committed_value(claim, "batch_id", batch.id)
            self._audit.record(
                session,
                claim.id,
                AuditAction.BATCH_ASSIGNED,
                created_by,
                BatchAssignmentDetails(batch_id=batch.id, batch_number=batch.batch_number),
            )
        return batch

    async def delete_batch(self, batch_id: UUID, user_id: str) -> None:
        """
        Delete a draft batch, releasing its claims first.

        Raises:
            InvalidTransitionError: Batch is no longer draft
        """
        async with transaction(self._session_factory) as session:
            batch = await self._load_batch(session, batch_id)
            if batch.status != BatchStatus.DRAFT:
                raise InvalidTransitionError(
                    f"Batch {batch.batch_number} is {batch.status.value}; only draft batches "
                    "can be deleted",
                    {"batch_id": str(batch.id), "status": batch.status.value},
                )
            members = await self._members(session, batch.id)
            for claim in members:
                claim.batch_id = None
                self._audit.record(
                    session,
                    claim.id,
                    AuditAction.BATCH_REMOVED,
                    user_id,
                    BatchAssignmentDetails(batch_id=batch.id, batch_number=batch.batch_number),
                )
            await session.flush()
            await session.delete(batch)

        logger.info(f"Deleted batch {batch.batch_number}, released {len(members)} claims")

    # =========================================================================
    # Batch invoices
    # =========================================================================

    async def generate_invoices_for_batch(self, batch_id: UUID, user_id: str) -> BatchOperationResult:
        """Generate missing invoices for every ready_to_submit member claim."""
        async with self._session_factory() as session:
            batch = await self._load_batch(session, batch_id)
            members = await self._members(session, batch.id)

        result = BatchOperationResult(batch_id=batch_id)
        for claim in members:
            if claim.status != ClaimStatus.READY_TO_SUBMIT:
                continue
            try:
                invoice = await self._invoices.generate_invoice(claim.id, user_id)
                result.succeeded.append(invoice.invoice_number)
            except ClaimsWorkflowError as e:
                result.failed[claim.claim_number] = e.message
        return result

    async def mark_batch_printed(self, batch_id: UUID, user_id: str) -> Batch:
        """Print every unlocked member invoice and flag the batch as printed."""
        async with transaction(self._session_factory) as session:
            batch = await self._load_batch(session, batch_id)
            for claim in await self._members(session, batch.id):
                invoice = await current_invoice(session, claim)
                if invoice is not None and not invoice.is_locked:
                    self._invoices.mark_printed_in_session(session, invoice, user_id)
            batch.invoices_printed = True
            batch.printed_by = user_id
            batch.printed_at = utcnow()
        return batch

    # =========================================================================
    # Reads
    # =========================================================================

    @staticmethod
    async def _load_batch(session: AsyncSession, batch_id: UUID) -> Batch:
        batch = await session.get(Batch, batch_id)
        if batch is None:
            raise BatchNotFoundError(f"Batch not found: {batch_id}", {"batch_id": str(batch_id)})
        return batch

    @staticmethod
    async def _members(session: AsyncSession, batch_id: UUID) -> list[Claim]:
        result = await session.execute(
            select(Claim).where(Claim.batch_id == batch_id).order_by(Claim.claim_number)
        )
        return list(result.scalars().all())

    async def get_batch(self, batch_id: UUID) -> tuple[Batch, list[BatchMember]]:
        """Batch with its member claims and their current invoices."""
        async with self._session_factory() as session:
            batch = await self._load_batch(session, batch_id)
            rows = await session.execute(
                select(Claim, Invoice)
                .outerjoin(
                    Invoice,
                    (Invoice.claim_id == Claim.id)
                    & (Invoice.submission_round == Claim.submission_round),
                )
                .where(Claim.batch_id == batch_id)
                .order_by(Claim.claim_number)
            )
            members = [
                BatchMember(
                    claim_id=claim.id,
                    claim_number=claim.claim_number,
                    patient_name=claim.patient_name,
                    claim_amount=claim.claim_amount,
                    status=claim.status,
                    invoice_number=invoice.invoice_number if invoice else None,
                    invoice_status=invoice.status if invoice else None,
                )
                for claim, invoice in rows.all()
            ]
            return batch, members

    async def list_batches(self, filters: BatchFilters) -> tuple[list[Batch], int]:
        conditions = []
        if filters.status is not None:
            conditions.append(Batch.status == filters.status)
        if filters.batch_type is not None:
            conditions.append(Batch.batch_type == filters.batch_type)
        if filters.date_from is not None:
            conditions.append(Batch.batch_date >= filters.date_from)
        if filters.date_to is not None:
            conditions.append(Batch.batch_date <= filters.date_to)

        async with self._session_factory() as session:
            total = (
                await session.execute(select(func.count(Batch.id)).where(*conditions))
            ).scalar_one()
            result = await session.execute(
                select(Batch)
                .where(*conditions)
                .order_by(Batch.batch_date.desc(), Batch.batch_number.desc())
                .offset((filters.page - 1) * filters.limit)
                .limit(filters.limit)
            )
            return list(result.scalars().all()), total

    async def get_statistics(
        self, date_from: Optional[date] = None, date_to: Optional[date] = None
    ) -> BatchStatistics:
        if date_from and date_to and date_from > date_to:
            raise ValidationError("Invalid date range", ["date_from: must be on or before date_to"])
        conditions = []
        if date_from is not None:
            conditions.append(Batch.batch_date >= date_from)
        if date_to is not None:
            conditions.append(Batch.batch_date <= date_to)

        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(
                        Batch.status,
                        func.count(Batch.id),
                        func.coalesce(func.sum(Batch.total_claims), 0),
                        func.coalesce(func.sum(Batch.total_amount), 0),
                    )
                    .where(*conditions)
                    .group_by(Batch.status)
                )
            ).all()

        by_status = {status: count for status, count, _, _ in rows}
        return BatchStatistics(
            total_batches=sum(by_status.values()),
            draft=by_status.get(BatchStatus.DRAFT, 0),
            submitted=by_status.get(BatchStatus.SUBMITTED, 0),
            completed=by_status.get(BatchStatus.COMPLETED, 0),
            total_claims=int(sum(claims for _, _, claims, _ in rows)),
            total_amount=sum((Decimal(str(amount)) for _, _, _, amount in rows), Decimal("0")),
        )
