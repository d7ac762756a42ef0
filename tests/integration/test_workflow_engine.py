"""
Integration tests for the SHA claim processing workflow.
"""

from uuid import uuid4

import pytest
from sqlalchemy import select

from sha_claims.core.enums import (
    ClaimStatus,
    ComplianceStatus,
    StepStatus,
    WorkflowActivityAction,
    WorkflowStatus,
)
from sha_claims.core.exceptions import (
    InvalidTransitionError,
    PrerequisitesNotMetError,
    ValidationError,
    WorkflowExistsError,
    WorkflowNotFoundError,
)
from sha_claims.models.invoice import Invoice
from sha_claims.models.workflow import PaymentTracking
from sha_claims.schemas.document import DocumentCreate
from sha_claims.schemas.workflow import WorkflowFilters
from sha_claims.services.workflow_engine import StepDefinition, WorkflowEngine

pytestmark = [pytest.mark.integration, pytest.mark.asyncio]

MANUAL_PREFIX = ("claim_creation", "clinical_review", "document_collection")
MANUAL_SUFFIX = ("invoice_review", "invoice_printing", "claim_submission")


def statuses(workflow) -> dict[str, StepStatus]:
    return {step.step_name: step.status for step in workflow.steps}


@pytest.fixture
def new_workflow(container, create_claim):
    async def _create(**overrides):
        claim = await create_claim(**overrides)
        workflow = await container.workflows.initialize_workflow(claim.id, "reception-01")
        return claim, workflow

    return _create


async def complete_steps(container, workflow_id, names, user="clinician-01"):
    workflow = None
    for name in names:
        workflow = await container.workflows.complete_step(workflow_id, name, user)
    return workflow


class TestInitialize:
    async def test_creates_nine_steps(self, new_workflow):
        _, workflow = await new_workflow()

        assert workflow.overall_status == WorkflowStatus.IN_PROGRESS
        assert workflow.workflow_type == "SHA_CLAIM_PROCESSING"
        assert [s.step_order for s in workflow.steps] == list(range(1, 10))
        assert workflow.current_step == "claim_creation"
        assert statuses(workflow)["claim_creation"] == StepStatus.IN_PROGRESS
        assert statuses(workflow)["clinical_review"] == StepStatus.PENDING

        optional = [s.step_name for s in workflow.steps if not s.required]
        automated = [s.step_name for s in workflow.steps if s.automated]
        assert optional == ["payment_tracking"]
        assert automated == ["compliance_verification", "invoice_generation", "payment_tracking"]

    async def test_one_workflow_per_claim(self, container, new_workflow):
        claim, _ = await new_workflow()

        with pytest.raises(WorkflowExistsError):
            await container.workflows.initialize_workflow(claim.id, "reception-01")

    async def test_lookup_by_claim(self, container, new_workflow):
        claim, workflow = await new_workflow()

        found = await container.workflows.get_workflow_for_claim(claim.id)
        assert found.id == workflow.id

        with pytest.raises(WorkflowNotFoundError):
            await container.workflows.get_workflow_for_claim(uuid4())


class TestFullRun:
    async def test_happy_path(self, container, new_workflow, scheduler, session_factory, published):
        claim, workflow = await new_workflow()

        workflow = await complete_steps(container, workflow.id, MANUAL_PREFIX)
        assert workflow.current_step == "compliance_verification"
        assert len(scheduler.queued) == 1

        await scheduler.drain(container.workflows)
        workflow = await container.workflows.get_workflow(workflow.id)
        assert statuses(workflow)["compliance_verification"] == StepStatus.COMPLETED
        assert statuses(workflow)["invoice_generation"] == StepStatus.COMPLETED
        assert statuses(workflow)["invoice_review"] == StepStatus.IN_PROGRESS
        assert workflow.invoice_id is not None

        refreshed = await container.claims.get_claim(claim.id)
        assert refreshed.status == ClaimStatus.INVOICE_READY
        assert refreshed.compliance_status == ComplianceStatus.VERIFIED

        workflow = await complete_steps(container, workflow.id, MANUAL_SUFFIX, "manager-01")
        assert statuses(workflow)["payment_tracking"] == StepStatus.PENDING
        await scheduler.drain(container.workflows)

        workflow = await container.workflows.get_workflow(workflow.id)
        assert workflow.overall_status == WorkflowStatus.COMPLETED
        assert workflow.current_step is None
        assert workflow.completed_at is not None
        assert set(statuses(workflow).values()) == {StepStatus.COMPLETED}
        assert "workflow.completed" in [e.name for e in published]

        async with session_factory() as session:
            tracking = (
                await session.execute(
                    select(PaymentTracking).where(PaymentTracking.claim_id == claim.id)
                )
            ).scalar_one()
        assert tracking.invoice_id == workflow.invoice_id
        assert tracking.auto_check_enabled is True

    async def test_skip_payment_tracking(self, container, new_workflow, scheduler):
        _, workflow = await new_workflow()
        await complete_steps(container, workflow.id, MANUAL_PREFIX)
        await scheduler.drain(container.workflows)
        await complete_steps(container, workflow.id, MANUAL_SUFFIX, "manager-01")
        scheduler.queued.clear()

        workflow = await container.workflows.skip_step(
            workflow.id, "payment_tracking", "manager-01", reason="Paid at the counter"
        )

        assert workflow.overall_status == WorkflowStatus.COMPLETED
        assert statuses(workflow)["payment_tracking"] == StepStatus.SKIPPED

    async def test_activity_log(self, container, new_workflow):
        _, workflow = await new_workflow()
        await container.workflows.complete_step(workflow.id, "claim_creation", "reception-01")

        activity = await container.workflows.list_activity(workflow.id)

        actions = [a.action for a in activity]
        assert actions.count(WorkflowActivityAction.WORKFLOW_INITIATED) == 1
        assert actions.count(WorkflowActivityAction.STEP_STARTED) == 2
        assert actions.count(WorkflowActivityAction.STEP_COMPLETED) == 1
        assert {a.step_name for a in activity} == {None, "claim_creation", "clinical_review"}


class TestFailureAndRetry:
    async def test_failed_compliance_freezes_workflow(
        self, container, new_workflow, scheduler, published
    ):
        claim, workflow = await new_workflow()
        document = await container.compliance.add_document(
            claim.id,
            DocumentCreate(document_type="referral_letter", file_name="ref.pdf", is_required=True),
            "reception-01",
        )
        await complete_steps(container, workflow.id, MANUAL_PREFIX)
        await scheduler.drain(container.workflows)

        workflow = await container.workflows.get_workflow(workflow.id)
        assert workflow.overall_status == WorkflowStatus.FAILED
        assert statuses(workflow)["compliance_verification"] == StepStatus.FAILED
        assert statuses(workflow)["invoice_generation"] == StepStatus.PENDING
        assert "failed compliance verification" in workflow.step("compliance_verification").notes
        assert published[-1].name == "workflow.failed"

        with pytest.raises(InvalidTransitionError):
            await container.workflows.complete_step(workflow.id, "invoice_review", "manager-01")

        await container.compliance.verify_document(document.id, "clinician-01")
        workflow = await container.workflows.retry_step(
            workflow.id, "compliance_verification", "manager-01"
        )
        assert workflow.overall_status == WorkflowStatus.IN_PROGRESS
        assert len(scheduler.queued) == 1

        await scheduler.drain(container.workflows)
        workflow = await container.workflows.get_workflow(workflow.id)
        assert statuses(workflow)["compliance_verification"] == StepStatus.COMPLETED
        assert statuses(workflow)["invoice_generation"] == StepStatus.COMPLETED
        assert workflow.current_step == "invoice_review"

    async def test_only_failed_steps_retry(self, container, new_workflow):
        _, workflow = await new_workflow()

        with pytest.raises(InvalidTransitionError):
            await container.workflows.retry_step(workflow.id, "claim_creation", "manager-01")

    async def test_invoice_generation_adopts_existing_invoice(
        self, container, new_workflow, scheduler
    ):
        claim, workflow = await new_workflow()
        invoice = await container.invoices.generate_invoice(claim.id, "manager-01")
        await complete_steps(container, workflow.id, MANUAL_PREFIX)

        await scheduler.drain(container.workflows)

        workflow = await container.workflows.get_workflow(workflow.id)
        assert statuses(workflow)["invoice_generation"] == StepStatus.COMPLETED
        assert workflow.invoice_id == invoice.id


class TestStepRules:
    async def test_prerequisites_are_enforced(self, container, new_workflow):
        _, workflow = await new_workflow()

        with pytest.raises(PrerequisitesNotMetError) as exc_info:
            await container.workflows.start_step(workflow.id, "invoice_review", "manager-01")
        assert exc_info.value.unmet == ["invoice_generation"]

    async def test_automated_steps_cannot_be_started_by_hand(self, container, new_workflow):
        _, workflow = await new_workflow()

        with pytest.raises(InvalidTransitionError):
            await container.workflows.start_step(
                workflow.id, "compliance_verification", "manager-01"
            )

    async def test_automated_steps_cannot_be_completed_by_hand(
        self, container, new_workflow, session_factory
    ):
        claim, workflow = await new_workflow()
        await complete_steps(container, workflow.id, MANUAL_PREFIX)

        for name in ("compliance_verification", "invoice_generation"):
            with pytest.raises(InvalidTransitionError):
                await container.workflows.complete_step(workflow.id, name, "manager-01")

        workflow = await container.workflows.get_workflow(workflow.id)
        assert statuses(workflow)["compliance_verification"] == StepStatus.PENDING
        assert statuses(workflow)["invoice_review"] == StepStatus.PENDING
        async with session_factory() as session:
            invoices = (
                await session.execute(select(Invoice).where(Invoice.claim_id == claim.id))
            ).scalars().all()
        assert invoices == []

    async def test_skipped_prerequisite_does_not_unblock(
        self, container, create_claim, scheduler
    ):
        engine = WorkflowEngine(
            container.session_factory,
            container.compliance,
            container.invoices,
            container.settings,
            scheduler,
            steps=(
                StepDefinition("intake", 1, 5, next_steps=("review",)),
                StepDefinition(
                    "review", 2, 5, required=False,
                    prerequisites=("intake",), next_steps=("sign_off",),
                ),
                StepDefinition("sign_off", 3, 5, prerequisites=("review",)),
            ),
        )
        claim = await create_claim()
        workflow = await engine.initialize_workflow(claim.id, "reception-01")
        await engine.complete_step(workflow.id, "intake", "reception-01", auto_advance=False)

        workflow = await engine.skip_step(workflow.id, "review", "manager-01", reason="Not needed")

        assert statuses(workflow)["review"] == StepStatus.SKIPPED
        assert statuses(workflow)["sign_off"] == StepStatus.PENDING
        assert workflow.overall_status == WorkflowStatus.IN_PROGRESS
        with pytest.raises(PrerequisitesNotMetError) as exc_info:
            await engine.start_step(workflow.id, "sign_off", "manager-01")
        assert exc_info.value.unmet == ["review"]

    async def test_required_steps_cannot_be_skipped(self, container, new_workflow):
        _, workflow = await new_workflow()

        with pytest.raises(InvalidTransitionError):
            await container.workflows.skip_step(workflow.id, "clinical_review", "manager-01")

    async def test_unknown_step(self, container, new_workflow):
        _, workflow = await new_workflow()

        with pytest.raises(ValidationError):
            await container.workflows.complete_step(workflow.id, "coffee_break", "manager-01")

    async def test_complete_without_auto_advance(self, container, new_workflow):
        _, workflow = await new_workflow()

        workflow = await container.workflows.complete_step(
            workflow.id, "claim_creation", "reception-01", auto_advance=False
        )

        assert statuses(workflow)["clinical_review"] == StepStatus.PENDING
        started = await container.workflows.start_step(
            workflow.id, "clinical_review", "clinician-01"
        )
        assert started.status == StepStatus.IN_PROGRESS
        assert started.assigned_to == "clinician-01"


class TestCancelAndStatistics:
    async def test_cancel(self, container, new_workflow):
        _, workflow = await new_workflow()

        cancelled = await container.workflows.cancel_workflow(
            workflow.id, "manager-01", reason="Patient switched to cash"
        )

        assert cancelled.overall_status == WorkflowStatus.CANCELLED
        with pytest.raises(InvalidTransitionError):
            await container.workflows.cancel_workflow(workflow.id, "manager-01")
        with pytest.raises(InvalidTransitionError):
            await container.workflows.complete_step(workflow.id, "claim_creation", "manager-01")

    async def test_statistics(self, container, new_workflow, scheduler):
        _, finished = await new_workflow()
        await complete_steps(container, finished.id, MANUAL_PREFIX)
        await scheduler.drain(container.workflows)
        await complete_steps(container, finished.id, MANUAL_SUFFIX, "manager-01")
        await scheduler.drain(container.workflows)
        _, cancelled = await new_workflow()
        await container.workflows.cancel_workflow(cancelled.id, "manager-01")
        await new_workflow()

        stats = await container.workflows.get_statistics()

        assert stats.total_workflows == 3
        assert stats.by_status["completed"] == 1
        assert stats.by_status["cancelled"] == 1
        assert stats.by_status["in_progress"] == 1
        assert stats.average_completion_minutes is not None
        by_step = {s.step_name: s for s in stats.steps}
        assert len(by_step) == 9
        assert by_step["payment_tracking"].completed == 1

        listed, total = await container.workflows.list_workflows(
            WorkflowFilters(status=WorkflowStatus.IN_PROGRESS)
        )
        assert total == 1
