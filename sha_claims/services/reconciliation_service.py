"""
SHA Reconciliation Service.

Periodic sweep that aligns local state with the insurer:
1. Submission logs left pending past the threshold are resolved against the
   insurer (finish the success path, or mark failed on 404).
2. Submitted/approved claims advance to the remote outcome, forward only.
3. Submitted batches report per-claim outcomes for claims without their own
   reference.
4. Submitted batches whose members all have an outcome become completed.

Every change re-checks state inside its own transaction, so the sweep can run
alongside in-flight submissions.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sha_claims.api.config import Settings
from sha_claims.core.enums import (
    SYSTEM_ACTOR,
    AuditAction,
    BatchStatus,
    ClaimStatus,
    SubmissionStatus,
    SubmissionType,
)
from sha_claims.gateways.base import GatewayResult
from sha_claims.gateways.sha_gateway import (
    RemoteClaimStatus,
    ShaGateway,
    body_sections,
    extract_reference,
)
from sha_claims.models.base import utcnow
from sha_claims.models.batch import Batch
from sha_claims.models.claim import Claim
from sha_claims.models.invoice import Invoice
from sha_claims.models.submission import SubmissionLog
from sha_claims.schemas.audit import ClaimStatusChangedDetails, SubmissionFailedDetails
from sha_claims.services import events
from sha_claims.services.audit_service import AuditService
from sha_claims.services.base import transaction
from sha_claims.services.claim_state_machine import (
    AWAITING_OUTCOME_STATUSES,
    ClaimStateMachine,
    TransitionDriver,
    has_insurer_outcome,
)
from sha_claims.services.claims_service import ClaimsService, apply_outcome_fields
from sha_claims.services.events import EventBus
from sha_claims.services.submission_service import SubmissionService

logger = logging.getLogger(__name__)

REMOTE_STATUS_MAP: dict[str, ClaimStatus] = {
    "approved": ClaimStatus.APPROVED,
    "rejected": ClaimStatus.REJECTED,
    "denied": ClaimStatus.REJECTED,
    "paid": ClaimStatus.PAID,
}


def current_round_invoice():
    """Join condition for the invoice of the claim's current submission round."""
    return and_(
        Invoice.claim_id == Claim.id,
        Invoice.submission_round == Claim.submission_round,
    )


@dataclass
class ReconciliationReport:
    """Counters for one reconciliation sweep."""

    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    claims_checked: int = 0
    claims_advanced: int = 0
    pending_logs_checked: int = 0
    logs_recovered: int = 0
    logs_failed: int = 0
    logs_still_pending: int = 0
    batches_completed: int = 0
    errors: list[str] = field(default_factory=list)


class ReconciliationService:
    """Forward-only reconciliation of local claim state with SHA."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: ShaGateway,
        claims: ClaimsService,
        submissions: SubmissionService,
        audit: AuditService,
        state_machine: ClaimStateMachine,
        settings: Settings,
        event_bus: Optional[EventBus] = None,
    ):
        self._session_factory = session_factory
        self._gateway = gateway
        self._claims = claims
        self._submissions = submissions
        self._audit = audit
        self._state_machine = state_machine
        self._settings = settings
        self._events = event_bus or EventBus()

    async def reconcile(self, now: Optional[datetime] = None) -> ReconciliationReport:
        """Run one full sweep."""
        report = ReconciliationReport()
        now = now or utcnow()

        await self._resolve_pending_logs(report, now)
        await self._reconcile_claims(report)
        await self._reconcile_batch_claims(report)
        await self._complete_batches(report)

        report.finished_at = utcnow()
        logger.info(
            f"Reconciliation: {report.claims_advanced}/{report.claims_checked} claims advanced, "
            f"{report.logs_recovered} recovered, {report.logs_failed} failed, "
            f"{report.logs_still_pending} pending, {report.batches_completed} batches completed"
        )
        return report

    # =========================================================================
    # Pending submission logs
    # =========================================================================

    async def _resolve_pending_logs(self, report: ReconciliationReport, now: datetime) -> None:
        threshold = now - timedelta(minutes=self._settings.PENDING_SUBMISSION_TIMEOUT_MINUTES)
        async with self._session_factory() as session:
            stale = (
                await session.execute(
                    select(SubmissionLog)
                    .where(
                        SubmissionLog.status == SubmissionStatus.PENDING,
                        SubmissionLog.created_at < threshold,
                    )
                    .order_by(SubmissionLog.created_at)
                )
            ).scalars().all()

        for log in stale:
            report.pending_logs_checked += 1
            if log.submission_type == SubmissionType.SINGLE:
                await self._resolve_single_log(report, log)
            else:
                await self._resolve_batch_log(report, log)

    async def _resolve_single_log(self, report: ReconciliationReport, log: SubmissionLog) -> None:
        async with self._session_factory() as session:
            claim = await session.get(Claim, log.claim_id)
            claim_number = claim.claim_number

        # Pending logs never received a reference; the claim number identifies them
        result = await self._gateway.get_claim_status(claim_number)
        if not result.success and not result.is_not_found:
            report.logs_still_pending += 1
            report.errors.append(f"{claim_number}: {result.error}")
            return

        async with transaction(self._session_factory) as session:
            current = await session.get(SubmissionLog, log.id)
            if current.status != SubmissionStatus.PENDING:
                return
            claim = await ClaimsService.load_claim(session, log.claim_id, for_update=True)
            if result.is_not_found:
                self._mark_log_failed(session, current, result, [claim])
            else:
                invoice = await session.get(Invoice, current.invoice_id)
                self._mark_log_recovered(current, result)
                self._submissions.finalize_claim(
                    session,
                    claim,
                    invoice,
                    extract_reference(result.data),
                    SYSTEM_ACTOR,
                    recovered=True,
                )

        if result.is_not_found:
            report.logs_failed += 1
            logger.warning(f"Pending submission of {claim_number} unknown to SHA; marked failed")
        else:
            report.logs_recovered += 1
            logger.info(f"Recovered submission of {claim_number} from pending log {log.id}")
            await self._events.publish(
                events.CLAIM_SUBMITTED, claim_id=str(log.claim_id), claim_number=claim_number
            )

    async def _resolve_batch_log(self, report: ReconciliationReport, log: SubmissionLog) -> None:
        async with self._session_factory() as session:
            batch = await session.get(Batch, log.batch_id)
        if batch is None:
            report.logs_still_pending += 1
            report.errors.append(f"log {log.id}: batch no longer exists")
            return

        result = await self._gateway.get_batch_status(batch.batch_number)
        if not result.success and not result.is_not_found:
            report.logs_still_pending += 1
            report.errors.append(f"{batch.batch_number}: {result.error}")
            return

        async with transaction(self._session_factory) as session:
            current = await session.get(SubmissionLog, log.id)
            if current.status != SubmissionStatus.PENDING:
                return
            locked_batch = await session.get(Batch, log.batch_id, with_for_update=True)
            members = list(
                (
                    await session.execute(
                        select(Claim)
                        .where(Claim.batch_id == locked_batch.id)
                        .order_by(Claim.claim_number)
                    )
                ).scalars().all()
            )
            if result.is_not_found:
                self._mark_log_failed(session, current, result, members, locked_batch.batch_number)
            else:
                self._mark_log_recovered(current, result)
                if locked_batch.status == BatchStatus.DRAFT:
                    await self._submissions.finalize_batch(
                        session, locked_batch, members, result.data, SYSTEM_ACTOR, recovered=True
                    )

        if result.is_not_found:
            report.logs_failed += 1
        else:
            report.logs_recovered += 1
            logger.info(f"Recovered submission of batch {batch.batch_number}")

    @staticmethod
    def _mark_log_recovered(log: SubmissionLog, result: GatewayResult) -> None:
        log.status = SubmissionStatus.SUCCESS
        log.response_payload = result.data
        log.response_status_code = result.status_code
        log.completed_at = utcnow()

    def _mark_log_failed(
        self,
        session: AsyncSession,
        log: SubmissionLog,
        result: GatewayResult,
        claims: list[Claim],
        batch_number: Optional[str] = None,
    ) -> None:
        log.status = SubmissionStatus.FAILED
        log.response_payload = result.data
        log.response_status_code = result.status_code
        log.error_message = "Submission unknown to SHA after timeout"
        log.completed_at = utcnow()
        for claim in claims:
            self._audit.record(
                session,
                claim.id,
                AuditAction.SUBMISSION_FAILED,
                SYSTEM_ACTOR,
                SubmissionFailedDetails(
                    error=log.error_message,
                    status_code=result.status_code,
                    batch_number=batch_number,
                    retry_count=log.retry_count,
                ),
                invoice_id=log.invoice_id,
            )

    # =========================================================================
    # Claim outcomes
    # =========================================================================

    async def _reconcile_claims(self, report: ReconciliationReport) -> None:
        """Outcomes by the reference the insurer gave the current submission round."""
        async with self._session_factory() as session:
            rows = (
                await session.execute(
                    select(Claim.id, Invoice.sha_reference)
                    .select_from(Claim)
                    .join(Invoice, current_round_invoice())
                    .where(
                        Claim.status.in_(AWAITING_OUTCOME_STATUSES),
                        Invoice.sha_reference.is_not(None),
                    )
                    .order_by(Claim.submission_date)
                )
            ).all()

        for claim_id, reference in rows:
            report.claims_checked += 1
            result = await self._gateway.get_claim_status(reference)
            if not result.success:
                report.errors.append(f"{reference}: {result.error}")
                continue
            remote = RemoteClaimStatus.from_body(result.data)
            if remote is not None and await self.apply_remote_status(claim_id, remote):
                report.claims_advanced += 1

    async def _reconcile_batch_claims(self, report: ReconciliationReport) -> None:
        """Outcomes of batch members that have no reference of their own."""
        async with self._session_factory() as session:
            batches = (
                await session.execute(
                    select(Batch.id, Batch.sha_batch_reference).where(
                        Batch.status == BatchStatus.SUBMITTED,
                        Batch.sha_batch_reference.is_not(None),
                    )
                )
            ).all()

        for batch_id, batch_reference in batches:
            async with self._session_factory() as session:
                unreferenced = {
                    claim_number: claim_id
                    for claim_id, claim_number in (
                        await session.execute(
                            select(Claim.id, Claim.claim_number)
                            .join(Invoice, current_round_invoice())
                            .where(
                                Claim.batch_id == batch_id,
                                Claim.status.in_(AWAITING_OUTCOME_STATUSES),
                                Invoice.sha_reference.is_(None),
                            )
                        )
                    ).all()
                }
            if not unreferenced:
                continue

            result = await self._gateway.get_batch_status(batch_reference)
            if not result.success:
                report.errors.append(f"{batch_reference}: {result.error}")
                continue
            for entry in self._batch_claim_entries(result.data):
                claim_id = unreferenced.get(str(entry.get("claim_number")))
                if claim_id is None:
                    continue
                report.claims_checked += 1
                remote = RemoteClaimStatus.from_body(entry)
                if remote is not None and await self.apply_remote_status(claim_id, remote):
                    report.claims_advanced += 1

    @staticmethod
    def _batch_claim_entries(body: Any) -> list[dict[str, Any]]:
        for section in body_sections(body):
            entries = section.get("claims")
            if isinstance(entries, list):
                return [entry for entry in entries if isinstance(entry, dict)]
        return []

    async def apply_remote_status(self, claim_id: UUID, remote: RemoteClaimStatus) -> bool:
        """
        Advance a claim to the insurer's status when that is a forward edge.

        Returns True when the claim changed.
        """
        target = REMOTE_STATUS_MAP.get(remote.status)
        if target is None:
            return False

        async with transaction(self._session_factory) as session:
            claim = await ClaimsService.load_claim(session, claim_id, for_update=True)
            if claim.status == target or not self._state_machine.can_transition(
                claim.status, target
            ):
                return False
            previous = self._claims.apply_transition(
                claim, target, TransitionDriver.RECONCILIATION, SYSTEM_ACTOR
            )
            apply_outcome_fields(claim, target, remote.approved_amount, remote.rejection_reason)
            if remote.reference and claim.sha_reference is None:
                claim.sha_reference = remote.reference
            self._audit.record(
                session,
                claim.id,
                AuditAction.CLAIM_STATUS_RECONCILED,
                SYSTEM_ACTOR,
                ClaimStatusChangedDetails(
                    from_status=previous.value,
                    to_status=target.value,
                    reason=remote.rejection_reason,
                    driver=TransitionDriver.RECONCILIATION.value,
                ),
            )

        logger.info(f"Claim {claim.claim_number} reconciled: {previous.value} -> {target.value}")
        await self._events.publish(
            events.CLAIM_STATUS_CHANGED,
            claim_id=str(claim.id),
            from_status=previous.value,
            to_status=target.value,
        )
        return True

    # =========================================================================
    # Batch completion
    # =========================================================================

    async def _complete_batches(self, report: ReconciliationReport) -> None:
        async with transaction(self._session_factory) as session:
            batches = (
                await session.execute(select(Batch).where(Batch.status == BatchStatus.SUBMITTED))
            ).scalars().all()
            for batch in batches:
                statuses = (
                    await session.execute(select(Claim.status).where(Claim.batch_id == batch.id))
                ).scalars().all()
                if statuses and all(has_insurer_outcome(status) for status in statuses):
                    batch.status = BatchStatus.COMPLETED
                    report.batches_completed += 1
                    logger.info(f"Batch {batch.batch_number} completed")
