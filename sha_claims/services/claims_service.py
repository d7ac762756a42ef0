"""
Claims Service for SHA Claims.

Provides:
- Atomic claim + item creation with diagnosis and arithmetic validation
- Claim reads and filtered listing
- Status transitions through the claim state machine
- Claim number generation

Source: Clinic SHA claims workflow design - Claim Store
Verified: 2025-11-02
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sha_claims.api.config import Settings
from sha_claims.core.enums import AuditAction, ClaimStatus
from sha_claims.core.exceptions import ClaimNotFoundError, ValidationError
from sha_claims.models.base import utcnow
from sha_claims.models.claim import Claim, ClaimItem
from sha_claims.schemas.audit import ClaimStatusChangedDetails, GenericDetails
from sha_claims.schemas.claim import ClaimCreate, ClaimFilters
from sha_claims.services import events
from sha_claims.services.audit_service import AuditService
from sha_claims.services.base import transaction
from sha_claims.services.claim_state_machine import (
    ClaimStateMachine,
    TransitionContext,
    TransitionDriver,
)
from sha_claims.services.events import EventBus
from sha_claims.services.numbering import (
    CLAIM_NUMBER_KEY,
    CLAIM_SEQUENCE_WIDTH,
    claim_number_prefix,
    is_valid_icd10,
    next_number,
    number_collision,
    retry_on_number_collision,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT)


def apply_outcome_fields(
    claim: Claim,
    new_status: ClaimStatus,
    approved_amount: Optional[Decimal] = None,
    reason: Optional[str] = None,
    when: Optional[datetime] = None,
) -> None:
    """Record insurer outcome details that accompany a status change."""
    if new_status == ClaimStatus.APPROVED:
        claim.approval_date = when or utcnow()
        if approved_amount is not None:
            claim.approved_amount = money(approved_amount)
    elif new_status == ClaimStatus.PAID:
        if claim.approval_date is None:
            claim.approval_date = when or utcnow()
        if approved_amount is not None:
            claim.approved_amount = money(approved_amount)
    elif new_status == ClaimStatus.REJECTED:
        claim.rejection_reason = reason


class ClaimsService:
    """
    Service for claim management.

    All writes go through the claim state machine; claim items are never
    modified after creation.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        audit: AuditService,
        state_machine: ClaimStateMachine,
        settings: Settings,
        event_bus: Optional[EventBus] = None,
    ):
        self._session_factory = session_factory
        self._audit = audit
        self._state_machine = state_machine
        self._settings = settings
        self._events = event_bus or EventBus()

    # =========================================================================
    # Creation
    # =========================================================================

    @staticmethod
    def validate_claim_data(data: ClaimCreate) -> list[str]:
        """Collect every field error; an empty list means the data is valid."""
        errors: list[str] = []

        if not data.primary_diagnosis_code:
            errors.append("primary_diagnosis_code: required")
        elif not is_valid_icd10(data.primary_diagnosis_code):
            errors.append(
                f"primary_diagnosis_code: '{data.primary_diagnosis_code}' is not a valid ICD-10 code"
            )
        if not data.primary_diagnosis_description.strip():
            errors.append("primary_diagnosis_description: required")

        for index, code in enumerate(data.secondary_diagnosis_codes):
            if not is_valid_icd10(code):
                errors.append(
                    f"secondary_diagnosis_codes[{index}]: '{code}' is not a valid ICD-10 code"
                )

        if not data.items:
            errors.append("items: at least one line item is required")

        for index, item in enumerate(data.items):
            if item.quantity < 1:
                errors.append(f"items[{index}].quantity: must be at least 1")
            if item.unit_price < 0:
                errors.append(f"items[{index}].unit_price: must not be negative")
            if item.total_price is not None and money(item.total_price) != money(
                item.unit_price * item.quantity
            ):
                errors.append(
                    f"items[{index}].total_price: must equal quantity x unit_price"
                )

        return errors

    async def create_claim(self, data: ClaimCreate, created_by: str) -> Claim:
        """
        Create a claim and its items in one transaction.

        Args:
            data: Encounter data with diagnosis and line items
            created_by: User ID creating the claim

        Returns:
            Created Claim with items loaded

        Raises:
            ValidationError: Before any write, listing every field error
        """
        errors = self.validate_claim_data(data)
        if errors:
            raise ValidationError("Claim data is invalid", errors)

        async def attempt() -> Claim:
            async with transaction(
                self._session_factory,
                conflicts=[number_collision(CLAIM_NUMBER_KEY, "Claim")],
            ) as session:
                claim_number = await self._generate_claim_number(session)
                claim = self._build_claim(data, claim_number, created_by)
                session.add(claim)
                await session.flush()

                self._audit.record(
                    session,
                    claim.id,
                    AuditAction.CLAIM_CREATED,
                    created_by,
                    GenericDetails(
                        data={
                            "claim_number": claim.claim_number,
                            "claim_amount": str(claim.claim_amount),
                            "item_count": len(claim.items),
                            "status": claim.status.value,
                        }
                    ),
                )
                return claim

        claim = await retry_on_number_collision(attempt)

        logger.info(
            f"Created claim {claim.claim_number} ({claim.claim_amount}) for op {data.op_number}"
        )
        await self._events.publish(
            events.CLAIM_CREATED, claim_id=str(claim.id), claim_number=claim.claim_number
        )
        return claim

    def _build_claim(self, data: ClaimCreate, claim_number: str, created_by: str) -> Claim:
        items = [
            ClaimItem(
                line_number=line_number,
                service_type=item.service_type,
                service_code=item.service_code,
                description=item.description,
                quantity=item.quantity,
                unit_price=money(item.unit_price),
                total_price=money(item.unit_price * item.quantity),
                provided_by=item.provided_by,
                department=item.department,
            )
            for line_number, item in enumerate(data.items, start=1)
        ]
        return Claim(
            claim_number=claim_number,
            patient_id=data.patient_id,
            visit_id=data.visit_id,
            op_number=data.op_number,
            member_number=data.member_number,
            patient_name=data.patient_name,
            visit_date=data.visit_date,
            primary_diagnosis_code=data.primary_diagnosis_code,
            primary_diagnosis_description=data.primary_diagnosis_description,
            secondary_diagnosis_codes=list(data.secondary_diagnosis_codes),
            secondary_diagnosis_descriptions=list(data.secondary_diagnosis_descriptions),
            provider_code=data.provider_code or self._settings.SHA_PROVIDER_CODE,
            claim_amount=money(sum((item.total_price for item in items), Decimal("0"))),
            status=ClaimStatus.DRAFT if data.as_draft else ClaimStatus.READY_TO_SUBMIT,
            created_by=created_by,
            items=items,
        )

    async def _generate_claim_number(self, session: AsyncSession) -> str:
        prefix = claim_number_prefix(utcnow().date())
        return await next_number(session, Claim.claim_number, prefix, CLAIM_SEQUENCE_WIDTH)

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_claim(self, claim_id: UUID) -> Claim:
        async with self._session_factory() as session:
            return await self.load_claim(session, claim_id)

    @staticmethod
    async def load_claim(
        session: AsyncSession, claim_id: UUID, for_update: bool = False
    ) -> Claim:
        """Load a claim with its items inside an existing session."""
        stmt = select(Claim).where(Claim.id == claim_id)
        if for_update:
            stmt = stmt.with_for_update()
        claim = (await session.execute(stmt)).scalar_one_or_none()
        if claim is None:
            raise ClaimNotFoundError(f"Claim not found: {claim_id}", {"claim_id": str(claim_id)})
        return claim

    async def list_claims(self, filters: ClaimFilters) -> tuple[list[Claim], int]:
        """List claims newest first; returns (page of claims, total matches)."""
        conditions = []
        if filters.status is not None:
            conditions.append(Claim.status == filters.status)
        if filters.batch_id is not None:
            conditions.append(Claim.batch_id == filters.batch_id)
        if filters.op_number:
            conditions.append(Claim.op_number == filters.op_number)
        if filters.patient_id is not None:
            conditions.append(Claim.patient_id == filters.patient_id)
        if filters.date_from is not None:
            conditions.append(Claim.visit_date >= filters.date_from)
        if filters.date_to is not None:
            conditions.append(Claim.visit_date <= filters.date_to)

        async with self._session_factory() as session:
            total = (
                await session.execute(select(func.count(Claim.id)).where(*conditions))
            ).scalar_one()
            result = await session.execute(
                select(Claim)
                .where(*conditions)
                .order_by(Claim.created_at.desc(), Claim.claim_number.desc())
                .offset((filters.page - 1) * filters.limit)
                .limit(filters.limit)
            )
            return list(result.scalars().all()), total

    # =========================================================================
    # Status transitions
    # =========================================================================

    def apply_transition(
        self,
        claim: Claim,
        new_status: ClaimStatus,
        driver: TransitionDriver,
        triggered_by: str,
        reason: Optional[str] = None,
    ) -> ClaimStatus:
        """
        Validate and apply a status change on a loaded claim.

        Returns the previous status. Resubmission starts a new submission round
        and releases the claim from its batch.
        """
        previous = claim.status
        self._state_machine.execute_transition(
            TransitionContext(
                claim_id=str(claim.id),
                current_status=previous,
                target_status=new_status,
                driver=driver,
                triggered_by=triggered_by,
                reason=reason,
            )
        )
        claim.status = new_status

        if previous == ClaimStatus.REJECTED and new_status == ClaimStatus.READY_TO_SUBMIT:
            claim.submission_round += 1
            claim.batch_id = None
            claim.rejection_reason = None
            claim.submission_date = None

        return previous

    async def transition_status(
        self,
        claim_id: UUID,
        new_status: ClaimStatus,
        triggered_by: str,
        reason: Optional[str] = None,
        approved_amount: Optional[Decimal] = None,
        sha_reference: Optional[str] = None,
    ) -> Claim:
        """
        Manual status change requested by clinic staff.

        Raises:
            InvalidTransitionError: Edge not allowed, reserved for another
                component, or missing a required reason
        """
        async with transaction(self._session_factory) as session:
            claim = await self.load_claim(session, claim_id, for_update=True)
            previous = self.apply_transition(
                claim, new_status, TransitionDriver.MANUAL, triggered_by, reason
            )
            apply_outcome_fields(claim, new_status, approved_amount, reason)
            if sha_reference and claim.sha_reference is None and new_status in (
                ClaimStatus.APPROVED,
                ClaimStatus.REJECTED,
                ClaimStatus.PAID,
            ):
                claim.sha_reference = sha_reference

            self._audit.record(
                session,
                claim.id,
                AuditAction.CLAIM_STATUS_CHANGED,
                triggered_by,
                ClaimStatusChangedDetails(
                    from_status=previous.value,
                    to_status=new_status.value,
                    reason=reason,
                    driver=TransitionDriver.MANUAL.value,
                ),
            )

        await self._events.publish(
            events.CLAIM_STATUS_CHANGED,
            claim_id=str(claim.id),
            from_status=previous.value,
            to_status=new_status.value,
        )
        return claim
