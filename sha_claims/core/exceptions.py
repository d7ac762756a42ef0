"""
Domain Exceptions for the SHA Claims Workflow.

Every error carries the HTTP status the API layer answers with, so a single
exception handler can render the response envelope.

Source: https://fastapi.tiangolo.com/tutorial/handling-errors/
Verified: 2025-11-02
"""

from typing import Any, Optional

from fastapi import status


class ClaimsWorkflowError(Exception):
    """Base exception for SHA workflow errors."""

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(ClaimsWorkflowError):
    """Raised when input is malformed or incomplete."""

    def __init__(self, message: str, errors: Optional[list[str]] = None):
        super().__init__(message, {"errors": errors or []})
        self.errors = errors or []


class NotFoundError(ClaimsWorkflowError):
    """Raised when a claim, invoice, batch, workflow or document is missing."""

    status_code = status.HTTP_404_NOT_FOUND


class ClaimNotFoundError(NotFoundError):
    pass


class InvoiceNotFoundError(NotFoundError):
    pass


class BatchNotFoundError(NotFoundError):
    pass


class WorkflowNotFoundError(NotFoundError):
    pass


class DocumentNotFoundError(NotFoundError):
    pass


class InvalidTransitionError(ClaimsWorkflowError):
    """Raised when a state machine edge is not allowed."""

    pass


class PrerequisitesNotMetError(InvalidTransitionError):
    """Raised when a workflow step is started before its prerequisites complete."""

    def __init__(self, step_name: str, unmet: list[str]):
        super().__init__(
            f"Step '{step_name}' cannot start; unmet prerequisites: {', '.join(unmet)}",
            {"step_name": step_name, "unmet_prerequisites": unmet},
        )
        self.step_name = step_name
        self.unmet = unmet


class DuplicateInvoiceError(ClaimsWorkflowError):
    """Raised when an invoice already exists for the claim."""

    pass


class NoEligibleClaimsError(ClaimsWorkflowError):
    """Raised when a batch selection finds no eligible claims."""

    pass


class InvoiceNotReadyError(ClaimsWorkflowError):
    """Raised when submission is attempted without a generated invoice."""

    pass


class InvoiceLockedError(ClaimsWorkflowError):
    """Raised on any modification of a submitted (locked) invoice."""

    pass


class WorkflowExistsError(ClaimsWorkflowError):
    """Raised when a claim already has a workflow instance."""

    pass


class ComplianceCheckError(ClaimsWorkflowError):
    """Raised when the compliance verification routine rejects a claim."""

    def __init__(self, message: str, issues: Optional[list[str]] = None):
        super().__init__(message, {"issues": issues or []})
        self.issues = issues or []


class SubmissionGatewayError(ClaimsWorkflowError):
    """Raised when the insurer API cannot be reached or rejects a request."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response: Optional[Any] = None,
    ):
        super().__init__(message, {"status_code": status_code, "response": response})
        self.remote_status_code = status_code
        self.response = response


class PersistenceError(ClaimsWorkflowError):
    """Raised when a transaction fails; nothing from it was applied."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class NumberCollisionError(PersistenceError):
    """Raised when a generated document number was taken by a concurrent transaction."""
