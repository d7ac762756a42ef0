"""
Database Models Package.

Importing this package registers every table on Base.metadata.
"""

from sha_claims.models.audit import AuditEntry
from sha_claims.models.base import Base
from sha_claims.models.batch import Batch
from sha_claims.models.claim import Claim, ClaimItem
from sha_claims.models.document import ClaimDocument
from sha_claims.models.invoice import Invoice
from sha_claims.models.submission import SubmissionLog
from sha_claims.models.workflow import (
    PaymentTracking,
    WorkflowActivity,
    WorkflowInstance,
    WorkflowStep,
)

__all__ = [
    "AuditEntry",
    "Base",
    "Batch",
    "Claim",
    "ClaimDocument",
    "ClaimItem",
    "Invoice",
    "PaymentTracking",
    "SubmissionLog",
    "WorkflowActivity",
    "WorkflowInstance",
    "WorkflowStep",
]
