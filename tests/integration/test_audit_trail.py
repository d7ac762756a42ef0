"""
Integration tests for the SHA audit trail.
"""

from uuid import uuid4

import pytest

from sha_claims.core.enums import AuditAction
from sha_claims.core.exceptions import ClaimNotFoundError, InvoiceNotFoundError, PersistenceError
from sha_claims.models.audit import AuditEntry

pytestmark = [pytest.mark.integration, pytest.mark.asyncio]


class TestAuditTrail:
    async def test_claim_history_in_order(self, container, invoiced_claim):
        claim, invoice = await invoiced_claim()
        await container.invoices.mark_printed(invoice.id, "manager-01")
        await container.submissions.submit_claim(claim.id, "manager-01")

        entries = await container.audit.list_for_claim(claim.id)

        assert [e.action for e in entries] == [
            AuditAction.CLAIM_CREATED,
            AuditAction.INVOICE_GENERATED_PRE_SUBMISSION,
            AuditAction.INVOICE_PRINTED,
            AuditAction.CLAIM_SUBMITTED_TO_SHA,
        ]
        assert [e.compliance_check for e in entries] == [False, True, False, True]
        assert entries[-1].details["sha_reference"] == f"REF-{claim.claim_number}"
        assert entries[-1].details["invoice_locked"] is True

    async def test_invoice_history_includes_claim_entries(self, container, invoiced_claim):
        claim, invoice = await invoiced_claim()
        await container.invoices.mark_printed(invoice.id, "manager-01")

        entries = await container.audit.list_for_invoice(invoice.id)

        assert [e.action for e in entries] == [
            AuditAction.CLAIM_CREATED,
            AuditAction.INVOICE_GENERATED_PRE_SUBMISSION,
            AuditAction.INVOICE_PRINTED,
        ]

    async def test_missing_targets(self, container):
        with pytest.raises(ClaimNotFoundError):
            await container.audit.list_for_claim(uuid4())
        with pytest.raises(InvoiceNotFoundError):
            await container.audit.list_for_invoice(uuid4())

    async def test_entries_are_append_only(self, create_claim, container, session_factory):
        claim = await create_claim()
        [entry] = await container.audit.list_for_claim(claim.id)

        async with session_factory() as session:
            stored = await session.get(AuditEntry, entry.id)
            stored.performed_by = "someone-else"
            with pytest.raises(PersistenceError):
                await session.commit()

        async with session_factory() as session:
            stored = await session.get(AuditEntry, entry.id)
            with pytest.raises(PersistenceError):
                await session.delete(stored)
                await session.commit()
