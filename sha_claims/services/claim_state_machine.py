"""
Claim Status State Machine.

Provides:
- Valid status transitions and the component allowed to drive each one
- Transition validation
- Status helpers

Source: Clinic SHA claims workflow design - Claim Store
Verified: 2025-11-02

State Diagram:
    DRAFT -> READY_TO_SUBMIT
    READY_TO_SUBMIT -> INVOICE_READY        (invoice generation only)
    INVOICE_READY -> SUBMITTED              (submission gateway only)
    SUBMITTED -> APPROVED | REJECTED | PAID (reconciliation or manual)
    APPROVED -> PAID                        (reconciliation or manual)
    REJECTED -> READY_TO_SUBMIT             (resubmission, reason required)
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sha_claims.core.enums import ClaimStatus
from sha_claims.core.exceptions import InvalidTransitionError

logger = logging.getLogger(__name__)


class TransitionDriver(str, Enum):
    """Component requesting a transition."""

    MANUAL = "manual"
    INVOICE_GENERATION = "invoice_generation"
    SUBMISSION = "submission"
    RECONCILIATION = "reconciliation"


_OUTCOME_DRIVERS = frozenset({TransitionDriver.RECONCILIATION, TransitionDriver.MANUAL})


@dataclass(frozen=True)
class Transition:
    """Represents a valid state transition."""

    from_status: ClaimStatus
    to_status: ClaimStatus
    drivers: frozenset = frozenset({TransitionDriver.MANUAL})
    requires_reason: bool = False


@dataclass
class TransitionContext:
    """Context for a transition attempt."""

    claim_id: str
    current_status: ClaimStatus
    target_status: ClaimStatus
    driver: TransitionDriver = TransitionDriver.MANUAL
    triggered_by: Optional[str] = None
    reason: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class TransitionResult:
    """Result of a transition attempt."""

    success: bool
    from_status: ClaimStatus
    to_status: Optional[ClaimStatus] = None
    error: Optional[str] = None
    transition: Optional[Transition] = None


# =============================================================================
# Valid Transitions Definition
# =============================================================================


VALID_TRANSITIONS: list[Transition] = [
    Transition(
        from_status=ClaimStatus.DRAFT,
        to_status=ClaimStatus.READY_TO_SUBMIT,
    ),
    Transition(
        from_status=ClaimStatus.READY_TO_SUBMIT,
        to_status=ClaimStatus.INVOICE_READY,
        drivers=frozenset({TransitionDriver.INVOICE_GENERATION}),
    ),
    Transition(
        from_status=ClaimStatus.INVOICE_READY,
        to_status=ClaimStatus.SUBMITTED,
        drivers=frozenset({TransitionDriver.SUBMISSION}),
    ),
    # Insurer outcomes
    Transition(
        from_status=ClaimStatus.SUBMITTED,
        to_status=ClaimStatus.APPROVED,
        drivers=_OUTCOME_DRIVERS,
    ),
    Transition(
        from_status=ClaimStatus.SUBMITTED,
        to_status=ClaimStatus.REJECTED,
        drivers=_OUTCOME_DRIVERS,
    ),
    Transition(
        from_status=ClaimStatus.SUBMITTED,
        to_status=ClaimStatus.PAID,
        drivers=_OUTCOME_DRIVERS,
    ),
    Transition(
        from_status=ClaimStatus.APPROVED,
        to_status=ClaimStatus.PAID,
        drivers=_OUTCOME_DRIVERS,
    ),
    # Resubmission after correction
    Transition(
        from_status=ClaimStatus.REJECTED,
        to_status=ClaimStatus.READY_TO_SUBMIT,
        requires_reason=True,
    ),
]


# =============================================================================
# State Machine
# =============================================================================


class ClaimStateMachine:
    """
    State machine for claim status transitions.

    Stateless apart from its lookup maps; construct one per container.
    """

    def __init__(self, transitions: Optional[list[Transition]] = None):
        self._transitions: dict[tuple[ClaimStatus, ClaimStatus], Transition] = {}
        self._from_status_map: dict[ClaimStatus, list[Transition]] = {}
        self._build_transition_maps(transitions or VALID_TRANSITIONS)

    def _build_transition_maps(self, transitions: list[Transition]) -> None:
        for transition in transitions:
            self._transitions[(transition.from_status, transition.to_status)] = transition
            self._from_status_map.setdefault(transition.from_status, []).append(transition)

    def get_next_statuses(self, status: ClaimStatus) -> list[ClaimStatus]:
        """Statuses reachable from `status` by any driver."""
        return [t.to_status for t in self._from_status_map.get(status, [])]

    def can_transition(self, from_status: ClaimStatus, to_status: ClaimStatus) -> bool:
        return (from_status, to_status) in self._transitions

    def validate_transition(self, context: TransitionContext) -> TransitionResult:
        """
        Validate a transition attempt.

        Args:
            context: Transition context with all details

        Returns:
            TransitionResult indicating success/failure
        """
        transition = self._transitions.get((context.current_status, context.target_status))

        if not transition:
            return TransitionResult(
                success=False,
                from_status=context.current_status,
                error=(
                    f"Invalid transition: {context.current_status.value} -> "
                    f"{context.target_status.value}"
                ),
            )

        if context.driver not in transition.drivers:
            allowed = ", ".join(sorted(d.value for d in transition.drivers))
            return TransitionResult(
                success=False,
                from_status=context.current_status,
                error=(
                    f"Transition {context.current_status.value} -> "
                    f"{context.target_status.value} is reserved for: {allowed}"
                ),
            )

        if transition.requires_reason and not (context.reason and context.reason.strip()):
            return TransitionResult(
                success=False,
                from_status=context.current_status,
                error="Reason is required for this transition",
            )

        return TransitionResult(
            success=True,
            from_status=context.current_status,
            to_status=transition.to_status,
            transition=transition,
        )

    def execute_transition(self, context: TransitionContext) -> TransitionResult:
        """
        Validate a transition and raise InvalidTransitionError when refused.

        The caller applies the new status inside its own transaction.
        """
        result = self.validate_transition(context)
        if not result.success:
            logger.warning(f"Transition refused for claim {context.claim_id}: {result.error}")
            raise InvalidTransitionError(
                result.error or "Invalid transition",
                {
                    "claim_id": context.claim_id,
                    "from_status": context.current_status.value,
                    "to_status": context.target_status.value,
                    "driver": context.driver.value,
                    "next_statuses": [
                        s.value for s in self.get_next_statuses(context.current_status)
                    ],
                },
            )

        logger.info(
            f"Claim {context.claim_id} transitioned: "
            f"{context.current_status.value} -> {context.target_status.value} "
            f"(driver: {context.driver.value})"
        )
        return result


# =============================================================================
# Status Helpers
# =============================================================================


BATCHABLE_STATUSES = (ClaimStatus.READY_TO_SUBMIT,)
AWAITING_OUTCOME_STATUSES = (ClaimStatus.SUBMITTED, ClaimStatus.APPROVED)
OUTCOME_STATUSES = (ClaimStatus.APPROVED, ClaimStatus.REJECTED, ClaimStatus.PAID)


def has_insurer_outcome(status: ClaimStatus) -> bool:
    """Approved, rejected or paid."""
    return status in OUTCOME_STATUSES


def get_status_display_name(status: ClaimStatus) -> str:
    display_names = {
        ClaimStatus.DRAFT: "Draft",
        ClaimStatus.READY_TO_SUBMIT: "Ready to Submit",
        ClaimStatus.INVOICE_READY: "Invoice Ready",
        ClaimStatus.SUBMITTED: "Submitted to SHA",
        ClaimStatus.APPROVED: "Approved",
        ClaimStatus.REJECTED: "Rejected",
        ClaimStatus.PAID: "Paid",
    }
    return display_names.get(status, status.value)
