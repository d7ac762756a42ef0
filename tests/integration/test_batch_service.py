"""
Integration tests for claim batches.
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from sha_claims.core.enums import (
    AuditAction,
    BatchStatus,
    BatchType,
    ClaimStatus,
    InvoiceStatus,
)
from sha_claims.core.exceptions import (
    BatchNotFoundError,
    InvalidTransitionError,
    NoEligibleClaimsError,
    ValidationError,
)
from sha_claims.models.audit import AuditEntry
from sha_claims.models.base import utcnow
from sha_claims.schemas.batch import BatchFilters

pytestmark = [pytest.mark.integration, pytest.mark.asyncio]


class TestCreateBatch:
    async def test_weekly_batch_picks_up_recent_claims(self, container, create_claim):
        claims = [await create_claim() for _ in range(3)]

        batch = await container.batches.create_batch(BatchType.WEEKLY, "manager-01")

        today = utcnow().date()
        assert batch.batch_number == f"SHA-BATCH-{today:%Y%m%d}-0001"
        assert batch.status == BatchStatus.DRAFT
        assert batch.total_claims == 3
        assert batch.total_amount == Decimal("6000.00")
        for claim in claims:
            assert (await container.claims.get_claim(claim.id)).batch_id == batch.id

    async def test_batch_numbers_increase_per_day(self, container, create_claim):
        first_claim = await create_claim()
        second_claim = await create_claim()

        first = await container.batches.create_batch(
            BatchType.CUSTOM, "manager-01", claim_ids=[first_claim.id]
        )
        second = await container.batches.create_batch(
            BatchType.CUSTOM, "manager-01", claim_ids=[second_claim.id]
        )

        assert first.batch_number.endswith("-0001")
        assert second.batch_number.endswith("-0002")

    async def test_claim_joins_one_batch_only(self, container, create_claim):
        claim = await create_claim()
        await container.batches.create_batch(BatchType.MONTHLY, "manager-01")

        with pytest.raises(NoEligibleClaimsError):
            await container.batches.create_batch(
                BatchType.CUSTOM, "manager-01", claim_ids=[claim.id]
            )

    async def test_drafts_are_not_eligible(self, container, create_claim):
        await create_claim(as_draft=True)

        with pytest.raises(NoEligibleClaimsError):
            await container.batches.create_batch(BatchType.WEEKLY, "manager-01")

    async def test_invoiced_claims_are_not_eligible(self, container, create_claim, invoiced_claim):
        ready = await create_claim()
        invoiced, _ = await invoiced_claim()

        batch = await container.batches.create_batch(BatchType.WEEKLY, "manager-01")

        assert batch.total_claims == 1
        assert (await container.claims.get_claim(ready.id)).batch_id == batch.id
        assert (await container.claims.get_claim(invoiced.id)).batch_id is None
        with pytest.raises(NoEligibleClaimsError):
            await container.batches.create_batch(
                BatchType.CUSTOM, "manager-01", claim_ids=[invoiced.id]
            )

    async def test_explicit_selection(self, container, create_claim):
        chosen = await create_claim()
        other = await create_claim()

        batch = await container.batches.create_batch(
            BatchType.CUSTOM, "manager-01", claim_ids=[chosen.id]
        )

        assert batch.total_claims == 1
        assert (await container.claims.get_claim(other.id)).batch_id is None

    async def test_custom_range_outside_creation_dates(self, container, create_claim):
        await create_claim()
        long_ago = date.today() - timedelta(days=400)

        with pytest.raises(NoEligibleClaimsError):
            await container.batches.create_batch(
                BatchType.CUSTOM,
                "manager-01",
                date_from=long_ago,
                date_to=long_ago + timedelta(days=1),
            )

    async def test_assignment_is_audited(self, container, create_claim, session_factory):
        claim = await create_claim()
        batch = await container.batches.create_batch(BatchType.WEEKLY, "manager-01")

        async with session_factory() as session:
            entry = (
                await session.execute(
                    select(AuditEntry).where(
                        AuditEntry.claim_id == claim.id,
                        AuditEntry.action == AuditAction.BATCH_ASSIGNED,
                    )
                )
            ).scalar_one()
        assert entry.details["batch_number"] == batch.batch_number


class TestDeleteBatch:
    async def test_delete_releases_claims(self, container, create_claim, session_factory):
        claims = [await create_claim() for _ in range(3)]
        batch = await container.batches.create_batch(BatchType.WEEKLY, "manager-01")

        await container.batches.delete_batch(batch.id, "manager-01")

        for claim in claims:
            assert (await container.claims.get_claim(claim.id)).batch_id is None
        with pytest.raises(BatchNotFoundError):
            await container.batches.get_batch(batch.id)

        async with session_factory() as session:
            removed = (
                await session.execute(
                    select(AuditEntry).where(AuditEntry.action == AuditAction.BATCH_REMOVED)
                )
            ).scalars().all()
        assert len(removed) == 3

        # Released claims can be batched again
        again = await container.batches.create_batch(BatchType.WEEKLY, "manager-01")
        assert again.total_claims == 3

    async def test_submitted_batch_cannot_be_deleted(self, container, invoiced_batch):
        batch, _ = await invoiced_batch(size=1)
        await container.submissions.submit_batch(batch.id, "manager-01")

        with pytest.raises(InvalidTransitionError):
            await container.batches.delete_batch(batch.id, "manager-01")

    async def test_missing_batch(self, container):
        with pytest.raises(BatchNotFoundError):
            await container.batches.delete_batch(uuid4(), "manager-01")


class TestBatchInvoices:
    async def test_generate_invoices_for_members(self, container, create_claim):
        plain = [await create_claim() for _ in range(2)]
        already = await create_claim()
        batch = await container.batches.create_batch(BatchType.WEEKLY, "manager-01")
        existing_invoice = await container.invoices.generate_invoice(already.id, "manager-01")

        result = await container.batches.generate_invoices_for_batch(batch.id, "manager-01")

        assert len(result.succeeded) == 2
        assert result.failed == {}

        _, members = await container.batches.get_batch(batch.id)
        assert len(members) == 3
        assert all(m.status == ClaimStatus.INVOICE_READY for m in members)
        assert all(m.invoice_status == InvoiceStatus.GENERATED for m in members)
        invoice_numbers = {m.claim_id: m.invoice_number for m in members}
        assert invoice_numbers[already.id] == existing_invoice.invoice_number
        assert {plain[0].id, plain[1].id} <= set(invoice_numbers)

    async def test_mark_batch_printed(self, container, invoiced_batch):
        batch, _ = await invoiced_batch()

        printed = await container.batches.mark_batch_printed(batch.id, "manager-02")

        assert printed.invoices_printed is True
        assert printed.printed_by == "manager-02"
        _, members = await container.batches.get_batch(batch.id)
        assert {m.invoice_status for m in members} == {InvoiceStatus.PRINTED}


class TestBatchReads:
    async def test_list_and_statistics(self, container, create_claim, invoiced_batch):
        await create_claim()
        draft = await container.batches.create_batch(BatchType.WEEKLY, "manager-01")
        sent, _ = await invoiced_batch(size=1)
        await container.submissions.submit_batch(sent.id, "manager-01")

        drafts, total = await container.batches.list_batches(
            BatchFilters(status=BatchStatus.DRAFT)
        )
        assert total == 1
        assert drafts[0].id == draft.id

        stats = await container.batches.get_statistics()
        assert stats.total_batches == 2
        assert stats.draft == 1
        assert stats.submitted == 1
        assert stats.completed == 0
        assert stats.total_claims == 2
        assert stats.total_amount == Decimal("4000.00")

    async def test_statistics_reject_inverted_range(self, container):
        with pytest.raises(ValidationError):
            await container.batches.get_statistics(date(2025, 11, 2), date(2025, 11, 1))
