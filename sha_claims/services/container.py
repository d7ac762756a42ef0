"""
Service wiring.

Builds every service from a session factory, settings, the SHA gateway and
an automation scheduler. The API, Celery tasks and tests each build their own
container; nothing here is a module-level singleton.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sha_claims.api.config import Settings
from sha_claims.gateways.sha_gateway import ShaGateway
from sha_claims.services.audit_service import AuditService
from sha_claims.services.batch_service import BatchService
from sha_claims.services.claim_state_machine import ClaimStateMachine
from sha_claims.services.claims_service import ClaimsService
from sha_claims.services.compliance_service import ComplianceService
from sha_claims.services.events import EventBus
from sha_claims.services.invoice_service import InvoiceService
from sha_claims.services.reconciliation_service import ReconciliationService
from sha_claims.services.submission_service import SubmissionService
from sha_claims.services.workflow_engine import AutomationScheduler, WorkflowEngine


@dataclass
class ServiceContainer:
    session_factory: async_sessionmaker[AsyncSession]
    settings: Settings
    gateway: ShaGateway
    event_bus: EventBus
    audit: AuditService
    claims: ClaimsService
    compliance: ComplianceService
    invoices: InvoiceService
    batches: BatchService
    submissions: SubmissionService
    reconciliation: ReconciliationService
    workflows: WorkflowEngine

    async def close(self) -> None:
        await self.gateway.close()


def build_container(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    scheduler: AutomationScheduler,
    gateway: Optional[ShaGateway] = None,
    event_bus: Optional[EventBus] = None,
) -> ServiceContainer:
    """Wire the services together around one session factory."""
    gateway = gateway or ShaGateway.from_settings(settings)
    event_bus = event_bus or EventBus()
    state_machine = ClaimStateMachine()

    audit = AuditService(session_factory)
    claims = ClaimsService(session_factory, audit, state_machine, settings, event_bus)
    compliance = ComplianceService(session_factory, audit)
    invoices = InvoiceService(session_factory, claims, audit, settings, event_bus)
    batches = BatchService(session_factory, invoices, audit, settings)
    submissions = SubmissionService(session_factory, gateway, claims, audit, event_bus)
    reconciliation = ReconciliationService(
        session_factory,
        gateway,
        claims,
        submissions,
        audit,
        state_machine,
        settings,
        event_bus,
    )
    workflows = WorkflowEngine(
        session_factory, compliance, invoices, settings, scheduler, event_bus
    )

    return ServiceContainer(
        session_factory=session_factory,
        settings=settings,
        gateway=gateway,
        event_bus=event_bus,
        audit=audit,
        claims=claims,
        compliance=compliance,
        invoices=invoices,
        batches=batches,
        submissions=submissions,
        reconciliation=reconciliation,
        workflows=workflows,
    )
