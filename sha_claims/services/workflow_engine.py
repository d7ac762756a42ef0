"""
SHA Claim Processing Workflow Engine.

Provides:
- The nine-step SHA claim processing template
- Step start/complete with prerequisite gating
- Automated steps (compliance verification, invoice generation, payment tracking)
- Human overrides (skip, retry, cancel)
- Workflow statistics

Source: Clinic SHA claims workflow design - Workflow Engine
Verified: 2025-11-02

Steps are evaluated in memory as an adjacency list built from each step's
`prerequisites`. A step is runnable when it is pending and every prerequisite
is completed. Automated steps are handed to an AutomationScheduler
as soon as they become runnable; the scheduler calls back into
`process_automated_steps`.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional, Protocol
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.attributes import set_committed_value

from sha_claims.api.config import Settings
from sha_claims.core.enums import SYSTEM_ACTOR, StepStatus, WorkflowActivityAction, WorkflowStatus
from sha_claims.core.exceptions import (
    InvalidTransitionError,
    PrerequisitesNotMetError,
    ValidationError,
    WorkflowExistsError,
    WorkflowNotFoundError,
)
from sha_claims.models.base import as_utc, utcnow
from sha_claims.models.invoice import Invoice
from sha_claims.models.workflow import (
    WORKFLOW_TYPE_SHA,
    PaymentTracking,
    WorkflowActivity,
    WorkflowInstance,
    WorkflowStep,
)
from sha_claims.schemas.workflow import StepStatistics, WorkflowFilters, WorkflowStatistics
from sha_claims.services import events
from sha_claims.services.base import UniqueKey, transaction
from sha_claims.services.claims_service import ClaimsService
from sha_claims.services.compliance_service import ComplianceService
from sha_claims.services.events import EventBus
from sha_claims.services.invoice_service import (
    InvoiceService,
    current_invoice,
    generation_conflicts,
)
from sha_claims.services.numbering import retry_on_number_collision

logger = logging.getLogger(__name__)

WORKFLOW_CLAIM_KEY = UniqueKey("sha_workflow_instances", ("claim_id",))


# =============================================================================
# Step Template
# =============================================================================


@dataclass(frozen=True)
class StepDefinition:
    """Template entry for one workflow step."""

    name: str
    order: int
    estimated_minutes: int
    required: bool = True
    automated: bool = False
    prerequisites: tuple[str, ...] = ()
    next_steps: tuple[str, ...] = ()


CLAIM_CREATION = "claim_creation"
CLINICAL_REVIEW = "clinical_review"
DOCUMENT_COLLECTION = "document_collection"
COMPLIANCE_VERIFICATION = "compliance_verification"
INVOICE_GENERATION = "invoice_generation"
INVOICE_REVIEW = "invoice_review"
INVOICE_PRINTING = "invoice_printing"
CLAIM_SUBMISSION = "claim_submission"
PAYMENT_TRACKING = "payment_tracking"

SHA_WORKFLOW_STEPS: tuple[StepDefinition, ...] = (
    StepDefinition(CLAIM_CREATION, 1, 15, next_steps=(CLINICAL_REVIEW,)),
    StepDefinition(
        CLINICAL_REVIEW, 2, 30,
        prerequisites=(CLAIM_CREATION,), next_steps=(DOCUMENT_COLLECTION,),
    ),
    StepDefinition(
        DOCUMENT_COLLECTION, 3, 20,
        prerequisites=(CLINICAL_REVIEW,), next_steps=(COMPLIANCE_VERIFICATION,),
    ),
    StepDefinition(
        COMPLIANCE_VERIFICATION, 4, 5, automated=True,
        prerequisites=(DOCUMENT_COLLECTION,), next_steps=(INVOICE_GENERATION,),
    ),
    StepDefinition(
        INVOICE_GENERATION, 5, 2, automated=True,
        prerequisites=(COMPLIANCE_VERIFICATION,), next_steps=(INVOICE_REVIEW,),
    ),
    StepDefinition(
        INVOICE_REVIEW, 6, 15,
        prerequisites=(INVOICE_GENERATION,), next_steps=(INVOICE_PRINTING,),
    ),
    StepDefinition(
        INVOICE_PRINTING, 7, 5,
        prerequisites=(INVOICE_REVIEW,), next_steps=(CLAIM_SUBMISSION,),
    ),
    StepDefinition(
        CLAIM_SUBMISSION, 8, 10,
        prerequisites=(INVOICE_PRINTING,), next_steps=(PAYMENT_TRACKING,),
    ),
    StepDefinition(
        PAYMENT_TRACKING, 9, 1, required=False, automated=True,
        prerequisites=(CLAIM_SUBMISSION,),
    ),
)

_SATISFIED = (StepStatus.COMPLETED,)
_CLOSED_WORKFLOW = (WorkflowStatus.COMPLETED, WorkflowStatus.CANCELLED)


def unmet_prerequisites(workflow: WorkflowInstance, step: WorkflowStep) -> list[str]:
    """Prerequisites of `step` that are not completed; skipped counts as unmet."""
    status_by_name = {s.step_name: s.status for s in workflow.steps}
    return [name for name in step.prerequisites or [] if status_by_name.get(name) not in _SATISFIED]


def runnable_steps(workflow: WorkflowInstance) -> list[WorkflowStep]:
    """Pending steps whose prerequisites are all satisfied, in step order."""
    return [
        step
        for step in workflow.steps
        if step.status == StepStatus.PENDING and not unmet_prerequisites(workflow, step)
    ]


def is_finished(workflow: WorkflowInstance) -> bool:
    """Every required step is completed and nothing is running or runnable."""
    if any(s.required and s.status != StepStatus.COMPLETED for s in workflow.steps):
        return False
    if any(s.status == StepStatus.IN_PROGRESS for s in workflow.steps):
        return False
    return not runnable_steps(workflow)


# =============================================================================
# Automation Scheduling
# =============================================================================


class AutomationScheduler(Protocol):
    """Hands a workflow's runnable automated steps to a worker."""

    async def enqueue(self, workflow_id: UUID, triggered_by: str) -> None: ...


@dataclass
class InMemoryAutomationScheduler:
    """Records enqueued workflows; `drain` runs them against an engine."""

    queued: list[tuple[UUID, str]] = field(default_factory=list)

    async def enqueue(self, workflow_id: UUID, triggered_by: str) -> None:
        self.queued.append((workflow_id, triggered_by))

    async def drain(self, engine: "WorkflowEngine") -> int:
        processed = 0
        while self.queued:
            workflow_id, triggered_by = self.queued.pop(0)
            await engine.process_automated_steps(workflow_id, triggered_by)
            processed += 1
        return processed


@dataclass
class _Outcome:
    """What to do after a transaction commits."""

    enqueue: bool = False
    completed: bool = False


# =============================================================================
# Engine
# =============================================================================


class WorkflowEngine:
    """Orchestrates the SHA claim processing workflow for a claim."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        compliance: ComplianceService,
        invoices: InvoiceService,
        settings: Settings,
        scheduler: AutomationScheduler,
        event_bus: Optional[EventBus] = None,
        steps: tuple[StepDefinition, ...] = SHA_WORKFLOW_STEPS,
    ):
        self._session_factory = session_factory
        self._compliance = compliance
        self._invoices = invoices
        self._settings = settings
        self._scheduler = scheduler
        self._events = event_bus or EventBus()
        self._steps = steps
        self._executors = {
            COMPLIANCE_VERIFICATION: self._run_compliance_verification,
            INVOICE_GENERATION: self._run_invoice_generation,
            PAYMENT_TRACKING: self._run_payment_tracking,
        }

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def initialize_workflow(self, claim_id: UUID, initiated_by: str) -> WorkflowInstance:
        """
        Create the workflow for a claim and start its first step.

        Raises:
            ClaimNotFoundError: Claim does not exist
            WorkflowExistsError: The claim already has a workflow
        """
        exists = WorkflowExistsError(
            f"Workflow already exists for claim {claim_id}", {"claim_id": str(claim_id)}
        )
        async with transaction(
            self._session_factory, conflicts=[(WORKFLOW_CLAIM_KEY, exists)]
        ) as session:
            await ClaimsService.load_claim(session, claim_id)
            found = await session.execute(
                select(WorkflowInstance.id).where(WorkflowInstance.claim_id == claim_id)
            )
            if found.scalar_one_or_none() is not None:
                raise exists

            workflow = WorkflowInstance(
                claim_id=claim_id,
                workflow_type=WORKFLOW_TYPE_SHA,
                overall_status=WorkflowStatus.IN_PROGRESS,
                initiated_by=initiated_by,
                steps=[
                    WorkflowStep(
                        step_name=definition.name,
                        step_order=definition.order,
                        status=StepStatus.PENDING,
                        required=definition.required,
                        automated=definition.automated,
                        estimated_duration_minutes=definition.estimated_minutes,
                        prerequisites=list(definition.prerequisites),
                        next_steps=list(definition.next_steps),
                    )
                    for definition in self._steps
                ],
            )
            session.add(workflow)
            await session.flush()

            self._log(
                session,
                workflow.id,
                None,
                WorkflowActivityAction.WORKFLOW_INITIATED,
                initiated_by,
                {"claim_id": str(claim_id), "steps": len(self._steps)},
            )
            outcome = await self._advance(session, workflow, initiated_by)

        logger.info(f"Initialized workflow {workflow.id} for claim {claim_id}")
        await self._after_commit(workflow, outcome, initiated_by)
        return workflow

    async def cancel_workflow(
        self, workflow_id: UUID, cancelled_by: str, reason: Optional[str] = None
    ) -> WorkflowInstance:
        async with transaction(self._session_factory) as session:
            workflow = await self._load(session, workflow_id, for_update=True)
            if workflow.overall_status in _CLOSED_WORKFLOW:
                raise InvalidTransitionError(
                    f"Workflow is already {workflow.overall_status.value}",
                    {"workflow_id": str(workflow_id)},
                )
            workflow.overall_status = WorkflowStatus.CANCELLED
            workflow.completed_by = cancelled_by
            workflow.completed_at = utcnow()
            self._log(
                session,
                workflow.id,
                workflow.current_step,
                WorkflowActivityAction.WORKFLOW_CANCELLED,
                cancelled_by,
                {"reason": reason},
            )

        logger.info(f"Workflow {workflow_id} cancelled by {cancelled_by}")
        return workflow

    # =========================================================================
    # Steps
    # =========================================================================

    async def start_step(self, workflow_id: UUID, step_name: str, started_by: str) -> WorkflowStep:
        """
        Start a manual step.

        Raises:
            PrerequisitesNotMetError: A prerequisite is not completed
            InvalidTransitionError: Step is not pending, is automated, or the
                workflow is not active
        """
        async with transaction(self._session_factory) as session:
            workflow = await self._load(session, workflow_id, for_update=True)
            self._ensure_active(workflow)
            step = self._step(workflow, step_name)
            self._ensure_manual(workflow, step)
            self._ensure_startable(workflow, step)
            if not await self._start(session, workflow, step, started_by):
                raise InvalidTransitionError(
                    f"Step '{step_name}' was started concurrently",
                    {"workflow_id": str(workflow_id), "step_name": step_name},
                )
        return step

    async def complete_step(
        self,
        workflow_id: UUID,
        step_name: str,
        completed_by: str,
        notes: Optional[str] = None,
        auto_advance: bool = True,
    ) -> WorkflowInstance:
        """
        Complete a manual step, starting it first when it is still pending.

        With auto_advance the next runnable manual step is started and any
        runnable automated step is enqueued. The workflow completes once every
        required step is done and nothing else can run.

        Raises:
            InvalidTransitionError: Step is automated, already finished, or
                the workflow is not active
        """
        async with transaction(self._session_factory) as session:
            workflow = await self._load(session, workflow_id, for_update=True)
            self._ensure_active(workflow)
            step = self._step(workflow, step_name)
            self._ensure_manual(workflow, step)
            if step.status == StepStatus.PENDING:
                self._ensure_startable(workflow, step)
                await self._start(session, workflow, step, completed_by)
            if step.status != StepStatus.IN_PROGRESS:
                raise InvalidTransitionError(
                    f"Step '{step_name}' is {step.status.value} and cannot be completed",
                    {"workflow_id": str(workflow_id), "step_name": step_name},
                )

            self._complete(session, workflow, step, completed_by, notes)
            if auto_advance:
                outcome = await self._advance(session, workflow, completed_by)
            else:
                outcome = self._finish_if_done(session, workflow, completed_by)

        await self._after_commit(workflow, outcome, completed_by)
        return workflow

    async def skip_step(
        self, workflow_id: UUID, step_name: str, skipped_by: str, reason: Optional[str] = None
    ) -> WorkflowInstance:
        """Skip an optional step that is pending or failed."""
        async with transaction(self._session_factory) as session:
            workflow = await self._load(session, workflow_id, for_update=True)
            self._ensure_active(workflow)
            step = self._step(workflow, step_name)
            if step.required:
                raise InvalidTransitionError(
                    f"Step '{step_name}' is required and cannot be skipped",
                    {"workflow_id": str(workflow_id), "step_name": step_name},
                )
            if step.status not in (StepStatus.PENDING, StepStatus.FAILED):
                raise InvalidTransitionError(
                    f"Step '{step_name}' is {step.status.value} and cannot be skipped",
                    {"workflow_id": str(workflow_id), "step_name": step_name},
                )

            step.status = StepStatus.SKIPPED
            step.completed_by = skipped_by
            step.completed_at = utcnow()
            if reason:
                step.notes = reason
            self._log(
                session,
                workflow.id,
                step_name,
                WorkflowActivityAction.STEP_SKIPPED,
                skipped_by,
                {"reason": reason},
            )
            outcome = await self._advance(session, workflow, skipped_by)

        await self._after_commit(workflow, outcome, skipped_by)
        return workflow

    async def retry_step(self, workflow_id: UUID, step_name: str, retried_by: str) -> WorkflowInstance:
        """Reset a failed step to pending and put the workflow back in progress."""
        async with transaction(self._session_factory) as session:
            workflow = await self._load(session, workflow_id, for_update=True)
            if workflow.overall_status in _CLOSED_WORKFLOW:
                raise InvalidTransitionError(
                    f"Workflow is {workflow.overall_status.value}",
                    {"workflow_id": str(workflow_id)},
                )
            step = self._step(workflow, step_name)
            if step.status != StepStatus.FAILED:
                raise InvalidTransitionError(
                    f"Only failed steps can be retried; '{step_name}' is {step.status.value}",
                    {"workflow_id": str(workflow_id), "step_name": step_name},
                )

            step.status = StepStatus.PENDING
            step.started_at = None
            step.completed_at = None
            workflow.overall_status = WorkflowStatus.IN_PROGRESS
            workflow.current_step = step_name
            self._log(
                session,
                workflow.id,
                step_name,
                WorkflowActivityAction.STEP_RETRIED,
                retried_by,
                {"previous_error": step.notes},
            )
            outcome = await self._advance(session, workflow, retried_by)

        logger.info(f"Retrying step {step_name} of workflow {workflow_id}")
        await self._after_commit(workflow, outcome, retried_by)
        return workflow

    # =========================================================================
    # Automation
    # =========================================================================

    async def process_automated_steps(
        self, workflow_id: UUID, triggered_by: str = SYSTEM_ACTOR
    ) -> WorkflowInstance:
        """
        Run runnable automated steps one after another.

        A failing step is marked failed and stops automation; when it is
        required the whole workflow becomes failed.
        """
        while True:
            async with transaction(self._session_factory) as session:
                workflow = await self._load(session, workflow_id, for_update=True)
                if workflow.overall_status != WorkflowStatus.IN_PROGRESS:
                    return workflow
                step = next((s for s in runnable_steps(workflow) if s.automated), None)
                if step is None:
                    return workflow
                if not await self._start(session, workflow, step, triggered_by):
                    logger.info(f"Step {step.step_name} of {workflow_id} taken by another worker")
                    return workflow
                step_name = step.step_name
                claim_id = workflow.claim_id

            executor = self._executors.get(step_name)
            try:
                if executor is None:
                    raise ValidationError(f"Unknown automated step: {step_name}")
                await executor(workflow_id, claim_id, triggered_by)
            except Exception as e:
                logger.error(f"Automated step {step_name} of workflow {workflow_id} failed: {e}")
                return await self._fail_step(workflow_id, step_name, triggered_by, e)

            async with transaction(self._session_factory) as session:
                workflow = await self._load(session, workflow_id, for_update=True)
                step = self._step(workflow, step_name)
                self._complete(session, workflow, step, SYSTEM_ACTOR, "Automated execution completed")
                outcome = await self._advance(session, workflow, triggered_by, enqueue=False)

            logger.info(f"Automated step {step_name} of workflow {workflow_id} completed")
            await self._after_commit(workflow, outcome, triggered_by)

    async def _fail_step(
        self, workflow_id: UUID, step_name: str, triggered_by: str, error: Exception
    ) -> WorkflowInstance:
        async with transaction(self._session_factory) as session:
            workflow = await self._load(session, workflow_id, for_update=True)
            step = self._step(workflow, step_name)
            step.status = StepStatus.FAILED
            step.notes = str(error)
            self._log(
                session,
                workflow.id,
                step_name,
                WorkflowActivityAction.STEP_FAILED,
                triggered_by,
                {"error": str(error), "type": type(error).__name__},
            )
            if step.required:
                workflow.overall_status = WorkflowStatus.FAILED
                self._log(
                    session,
                    workflow.id,
                    step_name,
                    WorkflowActivityAction.WORKFLOW_FAILED,
                    triggered_by,
                    {"failed_step": step_name},
                )

        if workflow.overall_status == WorkflowStatus.FAILED:
            await self._events.publish(
                events.WORKFLOW_FAILED,
                workflow_id=str(workflow.id),
                claim_id=str(workflow.claim_id),
                step_name=step_name,
                error=str(error),
            )
        return workflow

    async def _run_compliance_verification(
        self, workflow_id: UUID, claim_id: UUID, triggered_by: str
    ) -> None:
        await self._compliance.verify_claim_compliance(claim_id, triggered_by)

    async def _run_invoice_generation(
        self, workflow_id: UUID, claim_id: UUID, triggered_by: str
    ) -> None:
        async def attempt() -> tuple[Invoice, bool]:
            async with transaction(
                self._session_factory, conflicts=generation_conflicts(claim_id)
            ) as session:
                claim = await ClaimsService.load_claim(session, claim_id, for_update=True)
                invoice = await current_invoice(session, claim)
                generated = invoice is None
                if generated:
                    invoice = await self._invoices.generate_in_session(
                        session, claim, SYSTEM_ACTOR
                    )
                workflow = await self._load(session, workflow_id)
                workflow.invoice_id = invoice.id
                return invoice, generated

        invoice, generated = await retry_on_number_collision(attempt)

        if generated:
            await self._events.publish(
                events.INVOICE_GENERATED,
                claim_id=str(claim_id),
                invoice_id=str(invoice.id),
                invoice_number=invoice.invoice_number,
            )
        else:
            logger.info(f"Workflow {workflow_id} adopted existing invoice {invoice.invoice_number}")

    async def _run_payment_tracking(
        self, workflow_id: UUID, claim_id: UUID, triggered_by: str
    ) -> None:
        now = utcnow()
        next_check = now + timedelta(hours=self._settings.PAYMENT_CHECK_INTERVAL_HOURS)
        async with transaction(self._session_factory) as session:
            workflow = await self._load(session, workflow_id)
            tracking = (
                await session.execute(
                    select(PaymentTracking).where(PaymentTracking.claim_id == claim_id)
                )
            ).scalar_one_or_none()
            if tracking is None:
                session.add(
                    PaymentTracking(
                        claim_id=claim_id,
                        invoice_id=workflow.invoice_id,
                        tracking_started_at=now,
                        auto_check_enabled=True,
                        next_check_at=next_check,
                    )
                )
            else:
                tracking.invoice_id = workflow.invoice_id
                tracking.auto_check_enabled = True
                tracking.next_check_at = next_check

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_workflow(self, workflow_id: UUID) -> WorkflowInstance:
        async with self._session_factory() as session:
            return await self._load(session, workflow_id)

    async def get_workflow_for_claim(self, claim_id: UUID) -> WorkflowInstance:
        async with self._session_factory() as session:
            workflow = (
                await session.execute(
                    select(WorkflowInstance).where(WorkflowInstance.claim_id == claim_id)
                )
            ).scalar_one_or_none()
        if workflow is None:
            raise WorkflowNotFoundError(
                f"No workflow for claim {claim_id}", {"claim_id": str(claim_id)}
            )
        return workflow

    async def list_workflows(self, filters: WorkflowFilters) -> tuple[list[WorkflowInstance], int]:
        conditions = []
        if filters.status is not None:
            conditions.append(WorkflowInstance.overall_status == filters.status)
        if filters.current_step:
            conditions.append(WorkflowInstance.current_step == filters.current_step)

        async with self._session_factory() as session:
            total = (
                await session.execute(select(func.count(WorkflowInstance.id)).where(*conditions))
            ).scalar_one()
            result = await session.execute(
                select(WorkflowInstance)
                .where(*conditions)
                .order_by(WorkflowInstance.created_at.desc())
                .offset((filters.page - 1) * filters.limit)
                .limit(filters.limit)
            )
            return list(result.scalars().all()), total

    async def list_activity(self, workflow_id: UUID) -> list[WorkflowActivity]:
        async with self._session_factory() as session:
            await self._load(session, workflow_id)
            result = await session.execute(
                select(WorkflowActivity)
                .where(WorkflowActivity.workflow_id == workflow_id)
                .order_by(WorkflowActivity.performed_at)
            )
            return list(result.scalars().all())

    async def get_statistics(
        self, date_from: Optional[date] = None, date_to: Optional[date] = None
    ) -> WorkflowStatistics:
        """Counts by status, average completion time and per-step outcomes."""
        conditions = []
        if date_from is not None:
            conditions.append(
                WorkflowInstance.created_at >= datetime.combine(date_from, time.min, timezone.utc)
            )
        if date_to is not None:
            conditions.append(
                WorkflowInstance.created_at <= datetime.combine(date_to, time.max, timezone.utc)
            )

        async with self._session_factory() as session:
            workflows = list(
                (await session.execute(select(WorkflowInstance).where(*conditions))).scalars().all()
            )

        by_status = {status.value: 0 for status in WorkflowStatus}
        completion_minutes: list[float] = []
        per_step: dict[str, dict[str, Any]] = {
            d.name: {"completed": 0, "failed": 0, "durations": []} for d in self._steps
        }
        for workflow in workflows:
            by_status[workflow.overall_status.value] += 1
            if workflow.overall_status == WorkflowStatus.COMPLETED and workflow.completed_at:
                elapsed = as_utc(workflow.completed_at) - as_utc(workflow.created_at)
                completion_minutes.append(elapsed.total_seconds() / 60)
            for step in workflow.steps:
                bucket = per_step.setdefault(
                    step.step_name, {"completed": 0, "failed": 0, "durations": []}
                )
                if step.status == StepStatus.COMPLETED:
                    bucket["completed"] += 1
                    if step.actual_duration_minutes is not None:
                        bucket["durations"].append(step.actual_duration_minutes)
                elif step.status == StepStatus.FAILED:
                    bucket["failed"] += 1

        return WorkflowStatistics(
            date_from=date_from,
            date_to=date_to,
            total_workflows=len(workflows),
            by_status=by_status,
            average_completion_minutes=(
                round(sum(completion_minutes) / len(completion_minutes), 2)
                if completion_minutes
                else None
            ),
            steps=[
                StepStatistics(
                    step_name=name,
                    completed=bucket["completed"],
                    failed=bucket["failed"],
                    average_duration_minutes=(
                        round(sum(bucket["durations"]) / len(bucket["durations"]), 2)
                        if bucket["durations"]
                        else None
                    ),
                )
                for name, bucket in per_step.items()
            ],
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    async def _load(
        session: AsyncSession, workflow_id: UUID, for_update: bool = False
    ) -> WorkflowInstance:
        stmt = select(WorkflowInstance).where(WorkflowInstance.id == workflow_id)
        if for_update:
            stmt = stmt.with_for_update()
        workflow = (await session.execute(stmt)).scalar_one_or_none()
        if workflow is None:
            raise WorkflowNotFoundError(
                f"Workflow not found: {workflow_id}", {"workflow_id": str(workflow_id)}
            )
        return workflow

    @staticmethod
    def _step(workflow: WorkflowInstance, step_name: str) -> WorkflowStep:
        step = workflow.step(step_name)
        if step is None:
            raise ValidationError(
                f"Unknown workflow step: {step_name}",
                [f"Valid steps: {', '.join(s.step_name for s in workflow.steps)}"],
            )
        return step

    @staticmethod
    def _ensure_active(workflow: WorkflowInstance) -> None:
        if workflow.overall_status != WorkflowStatus.IN_PROGRESS:
            raise InvalidTransitionError(
                f"Workflow is {workflow.overall_status.value}",
                {"workflow_id": str(workflow.id), "status": workflow.overall_status.value},
            )

    @staticmethod
    def _ensure_manual(workflow: WorkflowInstance, step: WorkflowStep) -> None:
        if step.automated:
            raise InvalidTransitionError(
                f"Step '{step.step_name}' is automated and runs through automation",
                {"workflow_id": str(workflow.id), "step_name": step.step_name},
            )

    @staticmethod
    def _ensure_startable(workflow: WorkflowInstance, step: WorkflowStep) -> None:
        if step.status != StepStatus.PENDING:
            raise InvalidTransitionError(
                f"Step '{step.step_name}' is {step.status.value}",
                {"workflow_id": str(workflow.id), "step_name": step.step_name},
            )
        unmet = unmet_prerequisites(workflow, step)
        if unmet:
            raise PrerequisitesNotMetError(step.step_name, unmet)

    async def _start(
        self, session: AsyncSession, workflow: WorkflowInstance, step: WorkflowStep, user_id: str
    ) -> bool:
        """Conditionally move a pending step to in_progress; False if it was not pending."""
        now = utcnow()
        result = await session.execute(
            update(WorkflowStep)
            .where(WorkflowStep.id == step.id, WorkflowStep.status == StepStatus.PENDING)
            .values(status=StepStatus.IN_PROGRESS, started_at=now, assigned_to=user_id, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        set_committed_value(step, "status", StepStatus.IN_PROGRESS)
        set_committed_value(step, "started_at", now)
        set_committed_value(step, "assigned_to", user_id)
        workflow.current_step = step.step_name
        self._log(
            session, workflow.id, step.step_name, WorkflowActivityAction.STEP_STARTED, user_id, {}
        )
        return True

    def _complete(
        self,
        session: AsyncSession,
        workflow: WorkflowInstance,
        step: WorkflowStep,
        user_id: str,
        notes: Optional[str],
    ) -> None:
        now = utcnow()
        step.status = StepStatus.COMPLETED
        step.completed_by = user_id
        step.completed_at = now
        if step.started_at is not None:
            step.actual_duration_minutes = max(
                0, int((now - as_utc(step.started_at)).total_seconds() // 60)
            )
        if notes:
            step.notes = notes
        self._log(
            session,
            workflow.id,
            step.step_name,
            WorkflowActivityAction.STEP_COMPLETED,
            user_id,
            {"notes": notes, "actual_duration_minutes": step.actual_duration_minutes},
        )

    async def _advance(
        self,
        session: AsyncSession,
        workflow: WorkflowInstance,
        user_id: str,
        enqueue: bool = True,
    ) -> _Outcome:
        """Start the next runnable manual step, flag automation, or finish."""
        outcome = _Outcome()
        step = next(iter(runnable_steps(workflow)), None)
        if step is not None and step.automated:
            outcome.enqueue = enqueue
            workflow.current_step = step.step_name
        elif step is not None:
            await self._start(session, workflow, step, user_id)
        finished = self._finish_if_done(session, workflow, user_id)
        outcome.completed = finished.completed
        return outcome

    def _finish_if_done(
        self, session: AsyncSession, workflow: WorkflowInstance, user_id: str
    ) -> _Outcome:
        if workflow.overall_status != WorkflowStatus.IN_PROGRESS or not is_finished(workflow):
            return _Outcome()
        workflow.overall_status = WorkflowStatus.COMPLETED
        workflow.completed_by = user_id
        workflow.completed_at = utcnow()
        workflow.current_step = None
        self._log(
            session, workflow.id, None, WorkflowActivityAction.WORKFLOW_COMPLETED, user_id, {}
        )
        return _Outcome(completed=True)

    async def _after_commit(
        self, workflow: WorkflowInstance, outcome: _Outcome, user_id: str
    ) -> None:
        if outcome.enqueue:
            await self._scheduler.enqueue(workflow.id, user_id)
        if outcome.completed:
            logger.info(f"Workflow {workflow.id} completed")
            await self._events.publish(
                events.WORKFLOW_COMPLETED,
                workflow_id=str(workflow.id),
                claim_id=str(workflow.claim_id),
            )

    @staticmethod
    def _log(
        session: AsyncSession,
        workflow_id: UUID,
        step_name: Optional[str],
        action: WorkflowActivityAction,
        performed_by: str,
        details: dict[str, Any],
    ) -> None:
        session.add(
            WorkflowActivity(
                workflow_id=workflow_id,
                step_name=step_name,
                action=action,
                performed_by=performed_by,
                performed_at=utcnow(),
                details=details,
            )
        )
