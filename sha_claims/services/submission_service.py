"""
SHA Submission Service.

Provides:
- Single-claim and batch submission to the insurer
- Log-before-call: a pending SubmissionLog is committed before the request
- Atomic lock of claim + invoice on a confirmed submission

Source: Clinic SHA claims workflow design - Submission Gateway
Verified: 2025-11-02

Flow per submission:
    Transaction 1: validate, write SubmissionLog(pending) with the exact payload
    Insurer call with a bounded timeout, outside any transaction
    Transaction 2: attach the response; on success lock claim(s) and invoice(s)
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sha_claims.core.enums import (
    AuditAction,
    BatchStatus,
    ClaimStatus,
    InvoiceStatus,
    SubmissionStatus,
    SubmissionType,
)
from sha_claims.core.exceptions import (
    BatchNotFoundError,
    InvalidTransitionError,
    InvoiceNotReadyError,
    NoEligibleClaimsError,
)
from sha_claims.gateways.base import GatewayResult
from sha_claims.gateways.sha_gateway import (
    ShaGateway,
    extract_claim_references,
    extract_reference,
)
from sha_claims.models.base import utcnow
from sha_claims.models.batch import Batch
from sha_claims.models.claim import Claim
from sha_claims.models.invoice import Invoice
from sha_claims.models.submission import SubmissionLog
from sha_claims.schemas.audit import ClaimSubmittedDetails, SubmissionFailedDetails
from sha_claims.services import events
from sha_claims.services.audit_service import AuditService
from sha_claims.services.base import transaction
from sha_claims.services.claim_state_machine import TransitionDriver
from sha_claims.services.claims_service import ClaimsService
from sha_claims.services.events import EventBus
from sha_claims.services.invoice_service import current_invoice

logger = logging.getLogger(__name__)

READY_INVOICE_STATUSES = (InvoiceStatus.GENERATED, InvoiceStatus.PRINTED)


@dataclass
class SubmissionResult:
    """Outcome of one submission attempt."""

    success: bool
    submission_log_id: UUID
    submission_type: SubmissionType
    claim_id: Optional[UUID] = None
    batch_id: Optional[UUID] = None
    sha_reference: Optional[str] = None
    claim_ids: list[UUID] = field(default_factory=list)
    error: Optional[str] = None
    remote_status_code: Optional[int] = None
    response: Optional[Any] = None


# =============================================================================
# Payloads
# =============================================================================


def build_claim_payload(claim: Claim, invoice: Invoice) -> dict[str, Any]:
    """Normalized insurer payload for one claim."""
    descriptions = list(claim.secondary_diagnosis_descriptions or [])
    secondary = [
        {"code": code, "description": descriptions[index] if index < len(descriptions) else ""}
        for index, code in enumerate(claim.secondary_diagnosis_codes or [])
    ]
    return {
        "claim_number": claim.claim_number,
        "member_number": claim.member_number,
        "visit_date": claim.visit_date.isoformat(),
        "invoice_number": invoice.invoice_number,
        "diagnosis": {
            "code": claim.primary_diagnosis_code,
            "description": claim.primary_diagnosis_description,
            "secondary": secondary,
        },
        "services": [
            {
                "service_code": item.service_code,
                "description": item.description,
                "quantity": item.quantity,
                "unit_price": float(item.unit_price),
                "total_price": float(item.total_price),
            }
            for item in claim.items
        ],
        "total_amount": float(claim.claim_amount),
        "provider_code": claim.provider_code,
    }


def build_batch_payload(
    batch: Batch, claims_with_invoices: list[tuple[Claim, Invoice]], provider_code: str
) -> dict[str, Any]:
    return {
        "batch_number": batch.batch_number,
        "batch_date": batch.batch_date.isoformat(),
        "provider_code": provider_code,
        "claims": [build_claim_payload(claim, invoice) for claim, invoice in claims_with_invoices],
        "total_claims": batch.total_claims,
        "total_amount": float(batch.total_amount),
    }


def failure_payload(result: GatewayResult) -> dict[str, Any]:
    return {
        "error": result.error,
        "status_code": result.status_code,
        "timeout": result.is_timeout,
        "body": result.data,
    }


class SubmissionService:
    """Submits claims and batches to SHA exactly once per attempt."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: ShaGateway,
        claims: ClaimsService,
        audit: AuditService,
        event_bus: Optional[EventBus] = None,
    ):
        self._session_factory = session_factory
        self._gateway = gateway
        self._claims = claims
        self._audit = audit
        self._events = event_bus or EventBus()

    # =========================================================================
    # Single claim
    # =========================================================================

    async def submit_claim(self, claim_id: UUID, user_id: str) -> SubmissionResult:
        """
        Submit one claim with its generated invoice.

        Returns a failed SubmissionResult on timeout, network or remote error;
        the claim stays invoice_ready and can be submitted again.

        Raises:
            InvoiceNotReadyError: No generated/printed invoice for the current round
            InvalidTransitionError: Claim not invoice_ready, in a draft batch,
                or already has a submission in flight
        """
        async with transaction(self._session_factory) as session:
            claim = await ClaimsService.load_claim(session, claim_id, for_update=True)
            invoice = await current_invoice(session, claim)
            if invoice is None or invoice.status not in READY_INVOICE_STATUSES:
                raise InvoiceNotReadyError(
                    f"Claim {claim.claim_number} has no generated invoice; "
                    "generate the invoice before submitting",
                    {"claim_id": str(claim.id)},
                )
            if claim.status != ClaimStatus.INVOICE_READY:
                raise InvalidTransitionError(
                    f"Claim {claim.claim_number} is {claim.status.value} and cannot be submitted",
                    {"claim_id": str(claim.id), "status": claim.status.value},
                )
            if claim.batch_id is not None:
                batch = await session.get(Batch, claim.batch_id)
                if batch is not None and batch.status == BatchStatus.DRAFT:
                    raise InvalidTransitionError(
                        f"Claim {claim.claim_number} belongs to draft batch "
                        f"{batch.batch_number}; submit the batch instead",
                        {"claim_id": str(claim.id), "batch_id": str(batch.id)},
                    )

            await self._ensure_nothing_in_flight(session, SubmissionLog.claim_id == claim.id)
            payload = build_claim_payload(claim, invoice)
            log = SubmissionLog(
                claim_id=claim.id,
                invoice_id=invoice.id,
                submission_type=SubmissionType.SINGLE,
                request_payload=payload,
                status=SubmissionStatus.PENDING,
                retry_count=await self._previous_attempts(
                    session, SubmissionLog.claim_id == claim.id
                ),
            )
            session.add(log)
            await session.flush()
            log_id = log.id

        logger.info(f"Submitting claim {claim.claim_number} (log {log_id})")
        result = await self._gateway.submit_claim(payload)

        async with transaction(self._session_factory) as session:
            log = await session.get(SubmissionLog, log_id)
            claim = await ClaimsService.load_claim(session, claim_id, for_update=True)
            invoice = await session.get(Invoice, log.invoice_id)

            if not result.success:
                self._record_failure(session, log, result, [claim], user_id)
                reference = None
            else:
                reference = extract_reference(result.data)
                self._attach_response(log, SubmissionStatus.SUCCESS, result)
                self.finalize_claim(session, claim, invoice, reference, user_id)

        if not result.success:
            logger.warning(f"Submission of claim {claim.claim_number} failed: {result.error}")
            await self._events.publish(
                events.SUBMISSION_FAILED, claim_id=str(claim.id), error=result.error
            )
        else:
            logger.info(f"Claim {claim.claim_number} submitted to SHA (reference {reference})")
            await self._publish_locked(claim, invoice)

        return SubmissionResult(
            success=result.success,
            submission_log_id=log_id,
            submission_type=SubmissionType.SINGLE,
            claim_id=claim.id,
            sha_reference=reference,
            claim_ids=[claim.id],
            error=result.error,
            remote_status_code=result.status_code,
            response=result.data,
        )

    # =========================================================================
    # Batch
    # =========================================================================

    async def submit_batch(self, batch_id: UUID, user_id: str) -> SubmissionResult:
        """
        Submit every claim of a draft batch in one insurer call.

        On success all members lock together; on failure none transition and
        the batch stays draft.

        Raises:
            InvalidTransitionError: Batch is not draft or already in flight
            NoEligibleClaimsError: Batch has no member claims
            InvoiceNotReadyError: A member lacks a generated invoice
        """
        async with transaction(self._session_factory) as session:
            batch = await self._load_batch(session, batch_id)
            if batch.status != BatchStatus.DRAFT:
                raise InvalidTransitionError(
                    f"Batch {batch.batch_number} is {batch.status.value}; only draft batches "
                    "can be submitted",
                    {"batch_id": str(batch.id), "status": batch.status.value},
                )
            members = await self._members(session, batch.id)
            if not members:
                raise NoEligibleClaimsError(f"Batch {batch.batch_number} has no claims")

            ready: list[tuple[Claim, Invoice]] = []
            offenders: list[str] = []
            for claim in members:
                invoice = await current_invoice(session, claim)
                if (
                    invoice is None
                    or invoice.status not in READY_INVOICE_STATUSES
                    or claim.status != ClaimStatus.INVOICE_READY
                ):
                    offenders.append(claim.claim_number)
                else:
                    ready.append((claim, invoice))
            if offenders:
                raise InvoiceNotReadyError(
                    f"{len(offenders)} claim(s) in batch {batch.batch_number} have no "
                    "generated invoice",
                    {"batch_id": str(batch.id), "claims": offenders},
                )

            await self._ensure_nothing_in_flight(session, SubmissionLog.batch_id == batch.id)
            payload = build_batch_payload(batch, ready, ready[0][0].provider_code)
            log = SubmissionLog(
                batch_id=batch.id,
                submission_type=SubmissionType.BATCH,
                request_payload=payload,
                status=SubmissionStatus.PENDING,
                retry_count=await self._previous_attempts(
                    session, SubmissionLog.batch_id == batch.id
                ),
            )
            session.add(log)
            await session.flush()
            log_id = log.id
            batch_number = batch.batch_number

        logger.info(f"Submitting batch {batch_number} with {len(ready)} claims (log {log_id})")
        result = await self._gateway.submit_batch(payload)

        async with transaction(self._session_factory) as session:
            log = await session.get(SubmissionLog, log_id)
            batch = await self._load_batch(session, batch_id)
            members = await self._members(session, batch.id)
            if not result.success:
                self._record_failure(session, log, result, members, user_id, batch_number)
                reference = None
                locked: list[tuple[Claim, Invoice]] = []
            else:
                self._attach_response(log, SubmissionStatus.SUCCESS, result)
                reference = extract_reference(result.data)
                locked = await self.finalize_batch(session, batch, members, result.data, user_id)

        if not result.success:
            logger.warning(f"Submission of batch {batch_number} failed: {result.error}")
            await self._events.publish(
                events.SUBMISSION_FAILED, batch_id=str(batch_id), error=result.error
            )
        else:
            logger.info(f"Batch {batch_number} submitted to SHA (reference {reference})")
            await self._events.publish(
                events.BATCH_SUBMITTED, batch_id=str(batch_id), sha_batch_reference=reference
            )
            for claim, invoice in locked:
                await self._publish_locked(claim, invoice)

        return SubmissionResult(
            success=result.success,
            submission_log_id=log_id,
            submission_type=SubmissionType.BATCH,
            batch_id=batch_id,
            sha_reference=reference,
            claim_ids=[claim.id for claim in members],
            error=result.error,
            remote_status_code=result.status_code,
            response=result.data,
        )

    # =========================================================================
    # Success path (shared with reconciliation)
    # =========================================================================

    def finalize_claim(
        self,
        session: AsyncSession,
        claim: Claim,
        invoice: Invoice,
        reference: Optional[str],
        user_id: str,
        batch_number: Optional[str] = None,
        recovered: bool = False,
    ) -> bool:
        """
        Lock claim and invoice after a confirmed submission.

        Returns False when both were already locked (nothing to do).
        """
        if invoice.is_locked:
            return False

        now = utcnow()
        self._claims.apply_transition(
            claim, ClaimStatus.SUBMITTED, TransitionDriver.SUBMISSION, user_id
        )
        claim.submission_date = now
        if reference and claim.sha_reference is None:
            claim.sha_reference = reference

        invoice.status = InvoiceStatus.SUBMITTED
        invoice.submitted_by = user_id
        invoice.submitted_at = now
        invoice.sha_reference = reference

        self._audit.record(
            session,
            claim.id,
            AuditAction.CLAIM_SUBMITTED_TO_SHA,
            user_id,
            ClaimSubmittedDetails(
                sha_reference=reference,
                invoice_number=invoice.invoice_number,
                amount=claim.claim_amount,
                batch_number=batch_number,
                invoice_locked=True,
                recovered_by_reconciliation=recovered,
            ),
            invoice_id=invoice.id,
        )
        return True

    async def finalize_batch(
        self,
        session: AsyncSession,
        batch: Batch,
        members: list[Claim],
        body: Any,
        user_id: str,
        recovered: bool = False,
    ) -> list[tuple[Claim, Invoice]]:
        """Mark the batch submitted and lock every member claim with its invoice."""
        batch.status = BatchStatus.SUBMITTED
        batch.submission_date = utcnow()
        batch.sha_batch_reference = extract_reference(body)

        claim_references = extract_claim_references(body)
        locked: list[tuple[Claim, Invoice]] = []
        for claim in members:
            invoice = await current_invoice(session, claim)
            if invoice is None:
                continue
            if self.finalize_claim(
                session,
                claim,
                invoice,
                claim_references.get(claim.claim_number),
                user_id,
                batch_number=batch.batch_number,
                recovered=recovered,
            ):
                locked.append((claim, invoice))
        return locked

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    async def _load_batch(session: AsyncSession, batch_id: UUID) -> Batch:
        batch = (
            await session.execute(select(Batch).where(Batch.id == batch_id).with_for_update())
        ).scalar_one_or_none()
        if batch is None:
            raise BatchNotFoundError(f"Batch not found: {batch_id}", {"batch_id": str(batch_id)})
        return batch

    @staticmethod
    async def _members(session: AsyncSession, batch_id: UUID) -> list[Claim]:
        result = await session.execute(
            select(Claim).where(Claim.batch_id == batch_id).order_by(Claim.claim_number)
        )
        return list(result.scalars().all())

    @staticmethod
    async def _previous_attempts(session: AsyncSession, condition) -> int:
        return (
            await session.execute(select(func.count(SubmissionLog.id)).where(condition))
        ).scalar_one()

    @staticmethod
    async def _ensure_nothing_in_flight(session: AsyncSession, condition) -> None:
        in_flight = (
            await session.execute(
                select(SubmissionLog.id).where(
                    condition, SubmissionLog.status == SubmissionStatus.PENDING
                )
            )
        ).first()
        if in_flight is not None:
            raise InvalidTransitionError(
                "A submission is already in flight; wait for reconciliation",
                {"submission_log_id": str(in_flight[0])},
            )

    @staticmethod
    def _attach_response(
        log: SubmissionLog, status: SubmissionStatus, result: GatewayResult
    ) -> None:
        log.status = status
        log.response_payload = result.data if result.success else failure_payload(result)
        log.response_status_code = result.status_code
        log.error_message = result.error
        log.completed_at = utcnow()

    def _record_failure(
        self,
        session: AsyncSession,
        log: SubmissionLog,
        result: GatewayResult,
        claims: list[Claim],
        user_id: str,
        batch_number: Optional[str] = None,
    ) -> None:
        self._attach_response(log, SubmissionStatus.FAILED, result)
        for claim in claims:
            self._audit.record(
                session,
                claim.id,
                AuditAction.SUBMISSION_FAILED,
                user_id,
                SubmissionFailedDetails(
                    error=result.error or "unknown error",
                    status_code=result.status_code,
                    batch_number=batch_number,
                    retry_count=log.retry_count,
                ),
                invoice_id=log.invoice_id,
            )

    async def _publish_locked(self, claim: Claim, invoice: Invoice) -> None:
        await self._events.publish(
            events.CLAIM_SUBMITTED,
            claim_id=str(claim.id),
            claim_number=claim.claim_number,
            sha_reference=invoice.sha_reference,
        )
        await self._events.publish(
            events.INVOICE_LOCKED,
            invoice_id=str(invoice.id),
            invoice_number=invoice.invoice_number,
        )
