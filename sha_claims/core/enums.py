"""
Core Enumerations for the SHA Claims Workflow.
Source: Clinic SHA claims workflow design - Data Model
Verified: 2025-11-02
"""

from enum import Enum


# =============================================================================
# Claim Enums
# =============================================================================


class ClaimStatus(str, Enum):
    """Claim lifecycle status."""

    DRAFT = "draft"
    READY_TO_SUBMIT = "ready_to_submit"
    INVOICE_READY = "invoice_ready"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    PAID = "paid"


class ServiceType(str, Enum):
    """Type of billable claim line."""

    CONSULTATION = "consultation"
    MEDICATION = "medication"
    LAB_TEST = "lab_test"
    PROCEDURE = "procedure"
    OTHER = "other"


class ComplianceStatus(str, Enum):
    """Compliance review outcome for a claim or invoice."""

    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


# =============================================================================
# Invoice Enums
# =============================================================================


class InvoiceStatus(str, Enum):
    """Pre-submission invoice status. SUBMITTED is terminal (locked)."""

    GENERATED = "generated"
    PRINTED = "printed"
    SUBMITTED = "submitted"


# =============================================================================
# Batch Enums
# =============================================================================


class BatchType(str, Enum):
    """How the claims of a batch were selected."""

    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


class BatchStatus(str, Enum):
    """Batch lifecycle status."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    COMPLETED = "completed"


# =============================================================================
# Submission Enums
# =============================================================================


class SubmissionType(str, Enum):
    """Single-claim or batch submission."""

    SINGLE = "single"
    BATCH = "batch"


class SubmissionStatus(str, Enum):
    """Status of one submission attempt."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


# =============================================================================
# Workflow Enums
# =============================================================================


class WorkflowStatus(str, Enum):
    """Overall status of a workflow instance."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StepStatus(str, Enum):
    """Status of a single workflow step."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class WorkflowActivityAction(str, Enum):
    """Actions recorded in the workflow activity log."""

    WORKFLOW_INITIATED = "WORKFLOW_INITIATED"
    STEP_STARTED = "STEP_STARTED"
    STEP_COMPLETED = "STEP_COMPLETED"
    STEP_FAILED = "STEP_FAILED"
    STEP_SKIPPED = "STEP_SKIPPED"
    STEP_RETRIED = "STEP_RETRIED"
    WORKFLOW_COMPLETED = "WORKFLOW_COMPLETED"
    WORKFLOW_FAILED = "WORKFLOW_FAILED"
    WORKFLOW_CANCELLED = "WORKFLOW_CANCELLED"


# =============================================================================
# Audit Enums
# =============================================================================


class AuditAction(str, Enum):
    """Named actions recorded in the SHA audit trail."""

    CLAIM_CREATED = "CLAIM_CREATED"
    CLAIM_STATUS_CHANGED = "CLAIM_STATUS_CHANGED"
    INVOICE_GENERATED_PRE_SUBMISSION = "INVOICE_GENERATED_PRE_SUBMISSION"
    INVOICE_PRINTED = "INVOICE_PRINTED"
    INVOICE_UPDATED = "INVOICE_UPDATED"
    CLAIM_SUBMITTED_TO_SHA = "CLAIM_SUBMITTED_TO_SHA"
    SUBMISSION_FAILED = "SUBMISSION_FAILED"
    CLAIM_STATUS_RECONCILED = "CLAIM_STATUS_RECONCILED"
    BATCH_ASSIGNED = "BATCH_ASSIGNED"
    BATCH_REMOVED = "BATCH_REMOVED"
    COMPLIANCE_VERIFIED = "COMPLIANCE_VERIFIED"
    COMPLIANCE_REJECTED = "COMPLIANCE_REJECTED"


# =============================================================================
# Access Control
# =============================================================================


class UserRole(str, Enum):
    """Clinic roles allowed to use the SHA workflow."""

    ADMIN = "admin"
    CLAIMS_MANAGER = "claims_manager"
    CLINICAL_OFFICER = "clinical_officer"
    RECEPTIONIST = "receptionist"


# Actor recorded for automated actions
SYSTEM_ACTOR = "system"
