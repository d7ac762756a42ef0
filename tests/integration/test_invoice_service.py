"""
Integration tests for pre-submission invoices.
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from sha_claims.core.enums import (
    AuditAction,
    BatchType,
    ClaimStatus,
    ComplianceStatus,
    InvoiceStatus,
)
from sha_claims.core.exceptions import (
    DuplicateInvoiceError,
    InvalidTransitionError,
    InvoiceLockedError,
    InvoiceNotFoundError,
    NumberCollisionError,
    ValidationError,
)
from sha_claims.models.audit import AuditEntry
from sha_claims.models.invoice import Invoice
from sha_claims.schemas.invoice import InvoiceFilters, InvoiceUpdate
from sha_claims.services import invoice_service

pytestmark = [pytest.mark.integration, pytest.mark.asyncio]

TWO_LINES = [
    {
        "service_type": "consultation",
        "service_code": "CONS-01",
        "description": "Outpatient consultation",
        "quantity": 1,
        "unit_price": Decimal("50.00"),
    },
    {
        "service_type": "lab_test",
        "service_code": "LAB-FBC",
        "description": "Full blood count",
        "quantity": 1,
        "unit_price": Decimal("30.00"),
    },
]


class TestGenerateInvoice:
    async def test_invoice_totals_the_claim(self, container, create_claim, published):
        claim = await create_claim(items=TWO_LINES)

        invoice = await container.invoices.generate_invoice(claim.id, "manager-01")

        assert invoice.total_amount == Decimal("80.00")
        assert invoice.invoice_number.startswith("SHA-")
        assert invoice.invoice_number.endswith("-000001")
        assert invoice.status == InvoiceStatus.GENERATED
        assert invoice.due_date == invoice.invoice_date + timedelta(days=30)
        assert invoice.submission_round == 1
        assert invoice.print_count == 0

        refreshed = await container.claims.get_claim(claim.id)
        assert refreshed.status == ClaimStatus.INVOICE_READY
        assert published[-1].name == "invoice.generated"
        assert published[-1].payload["invoice_number"] == invoice.invoice_number

    async def test_second_generation_is_rejected(self, container, invoiced_claim, session_factory):
        claim, invoice = await invoiced_claim()

        with pytest.raises(DuplicateInvoiceError):
            await container.invoices.generate_invoice(claim.id, "manager-01")

        async with session_factory() as session:
            invoices = (
                await session.execute(select(Invoice).where(Invoice.claim_id == claim.id))
            ).scalars().all()
        assert [i.id for i in invoices] == [invoice.id]

    async def test_number_taken_concurrently_is_allocated_again(
        self, container, invoiced_claim, create_claim, monkeypatch
    ):
        _, first = await invoiced_claim()
        claim = await create_claim()
        allocate = invoice_service.next_number
        calls: list[str] = []

        async def stale_then_current(session, column, prefix, width):
            calls.append(prefix)
            if len(calls) == 1:
                return first.invoice_number
            return await allocate(session, column, prefix, width)

        monkeypatch.setattr(invoice_service, "next_number", stale_then_current)
        invoice = await container.invoices.generate_invoice(claim.id, "manager-01")

        assert len(calls) == 2
        assert invoice.invoice_number != first.invoice_number
        assert invoice.invoice_number.endswith("-000002")
        assert invoice.claim_id == claim.id

    async def test_number_collision_is_not_a_duplicate(
        self, container, invoiced_claim, create_claim, monkeypatch
    ):
        _, first = await invoiced_claim()
        claim = await create_claim()

        async def always_taken(session, column, prefix, width):
            return first.invoice_number

        monkeypatch.setattr(invoice_service, "next_number", always_taken)
        with pytest.raises(NumberCollisionError) as exc_info:
            await container.invoices.generate_invoice(claim.id, "manager-01")

        assert not isinstance(exc_info.value, DuplicateInvoiceError)
        assert exc_info.value.status_code == 500
        refreshed = await container.claims.get_claim(claim.id)
        assert refreshed.status == ClaimStatus.READY_TO_SUBMIT

    async def test_draft_claim_cannot_be_invoiced(self, container, create_claim):
        claim = await create_claim(as_draft=True)

        with pytest.raises(InvalidTransitionError):
            await container.invoices.generate_invoice(claim.id, "manager-01")

    async def test_generation_is_audited(self, invoiced_claim, session_factory):
        claim, invoice = await invoiced_claim()

        async with session_factory() as session:
            entry = (
                await session.execute(
                    select(AuditEntry).where(
                        AuditEntry.action == AuditAction.INVOICE_GENERATED_PRE_SUBMISSION
                    )
                )
            ).scalar_one()

        assert entry.claim_id == claim.id
        assert entry.invoice_id == invoice.id
        assert entry.compliance_check is True
        assert entry.details["invoice_number"] == invoice.invoice_number
        assert entry.details["item_count"] == 2


class TestPrintingAndEdits:
    async def test_mark_printed_counts_prints(self, container, invoiced_claim):
        _, invoice = await invoiced_claim()

        await container.invoices.mark_printed(invoice.id, "manager-01")
        printed = await container.invoices.mark_printed(invoice.id, "manager-02")

        assert printed.status == InvoiceStatus.PRINTED
        assert printed.print_count == 2
        assert printed.printed_by == "manager-02"

    async def test_submitted_invoice_is_locked(self, container, invoiced_claim):
        claim, invoice = await invoiced_claim()
        await container.submissions.submit_claim(claim.id, "manager-01")

        with pytest.raises(InvoiceLockedError):
            await container.invoices.mark_printed(invoice.id, "manager-01")
        with pytest.raises(InvoiceLockedError):
            await container.invoices.update_invoice(
                invoice.id, InvoiceUpdate(notes="late note"), "manager-01"
            )

        stored, _ = await container.invoices.get_invoice(invoice.id)
        assert stored.status == InvoiceStatus.SUBMITTED
        assert stored.notes is None

    async def test_bulk_print_reports_each_invoice(self, container, invoiced_claim):
        _, first = await invoiced_claim()
        _, second = await invoiced_claim()
        missing = uuid4()

        results = await container.invoices.bulk_mark_printed(
            [first.id, missing, second.id], "manager-01"
        )

        assert [r.success for r in results] == [True, False, True]
        assert "not found" in results[1].error
        stored, _ = await container.invoices.get_invoice(second.id)
        assert stored.status == InvoiceStatus.PRINTED

    async def test_update_unlocked_invoice(self, container, invoiced_claim):
        _, invoice = await invoiced_claim()
        new_due = invoice.invoice_date + timedelta(days=14)

        updated = await container.invoices.update_invoice(
            invoice.id,
            InvoiceUpdate(
                due_date=new_due,
                notes="Patient to bring referral",
                compliance_status=ComplianceStatus.VERIFIED,
            ),
            "manager-01",
        )

        assert updated.due_date == new_due
        assert updated.notes == "Patient to bring referral"
        assert updated.compliance_status == ComplianceStatus.VERIFIED

    async def test_update_validation(self, container, invoiced_claim):
        _, invoice = await invoiced_claim()

        with pytest.raises(ValidationError):
            await container.invoices.update_invoice(invoice.id, InvoiceUpdate(), "manager-01")
        with pytest.raises(ValidationError):
            await container.invoices.update_invoice(
                invoice.id,
                InvoiceUpdate(due_date=invoice.invoice_date - timedelta(days=1)),
                "manager-01",
            )

    async def test_missing_invoice(self, container):
        with pytest.raises(InvoiceNotFoundError):
            await container.invoices.get_invoice(uuid4())


class TestInvoiceListings:
    async def test_review_and_archive(self, container, invoiced_claim):
        submitted_claim, submitted_invoice = await invoiced_claim()
        _, printed_invoice = await invoiced_claim()
        _, generated_invoice = await invoiced_claim()
        await container.invoices.mark_printed(printed_invoice.id, "manager-01")
        await container.submissions.submit_claim(submitted_claim.id, "manager-01")

        review = await container.invoices.get_ready_for_review()
        assert {i.id for i in review} == {printed_invoice.id, generated_invoice.id}

        archive = await container.invoices.get_submitted_archive()
        assert [i.id for i in archive] == [submitted_invoice.id]

        queue = await container.invoices.get_ready_for_printing(BatchType.WEEKLY)
        assert [i.id for i in queue] == [generated_invoice.id]

    async def test_custom_printing_queue_is_rejected(self, container):
        with pytest.raises(ValidationError):
            await container.invoices.get_ready_for_printing(BatchType.CUSTOM)

    async def test_list_invoices_by_status(self, container, invoiced_claim):
        _, first = await invoiced_claim()
        await invoiced_claim()
        await container.invoices.mark_printed(first.id, "manager-01")

        printed, total = await container.invoices.list_invoices(
            InvoiceFilters(status=InvoiceStatus.PRINTED)
        )
        assert total == 1
        assert printed[0].id == first.id

        everything, total = await container.invoices.list_invoices(InvoiceFilters())
        assert total == 2

    async def test_compliance_report(self, container, invoiced_claim):
        await invoiced_claim()
        await invoiced_claim(member_number="12345")

        report = await container.invoices.get_compliance_report()

        assert report.summary.total_invoices == 2
        assert report.summary.pending == 2
        assert report.summary.total_amount == Decimal("4000.00")
        flagged = [row for row in report.rows if row.issues]
        assert len(flagged) == 1
        assert "member number" in flagged[0].issues[0]
