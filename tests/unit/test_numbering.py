"""
Unit tests for document numbering, field validators and invoice dates.
"""

from datetime import date

import pytest

from sha_claims.services.numbering import (
    aging_bucket,
    batch_number_prefix,
    claim_number_prefix,
    due_date_for,
    format_number,
    invoice_number_prefix,
    is_valid_icd10,
    is_valid_member_number,
    parse_sequence,
)


@pytest.mark.unit
class TestNumberFormats:
    def test_claim_prefix(self):
        assert claim_number_prefix(date(2025, 11, 2)) == "CLM-202511-"

    def test_invoice_prefix(self):
        assert invoice_number_prefix(date(2025, 1, 31)) == "SHA-202501-"
        assert invoice_number_prefix(date(2025, 1, 31), "INV") == "INV-202501-"

    def test_batch_prefix_is_daily(self):
        assert batch_number_prefix(date(2025, 11, 2)) == "SHA-BATCH-20251102-"

    def test_format_pads_sequence(self):
        assert format_number("SHA-202511-", 7, 6) == "SHA-202511-000007"
        assert format_number("SHA-BATCH-20251102-", 12, 4) == "SHA-BATCH-20251102-0012"


@pytest.mark.unit
class TestParseSequence:
    def test_reads_trailing_sequence(self):
        assert parse_sequence("SHA-202511-000041", "SHA-202511-") == 41

    def test_none_starts_at_zero(self):
        assert parse_sequence(None, "SHA-202511-") == 0

    def test_other_period_starts_at_zero(self):
        assert parse_sequence("SHA-202510-000099", "SHA-202511-") == 0

    def test_non_numeric_tail(self):
        assert parse_sequence("SHA-202511-00A1", "SHA-202511-") == 0


@pytest.mark.unit
class TestValidators:
    @pytest.mark.parametrize("code", ["J06.9", "A09", "E11.65", "b20", " K29.70 "])
    def test_valid_icd10(self, code):
        assert is_valid_icd10(code) is True

    @pytest.mark.parametrize("code", ["", None, "106.9", "J6", "J06.", "J06.12345", "JJ06"])
    def test_invalid_icd10(self, code):
        assert is_valid_icd10(code) is False

    def test_member_number_is_nine_digits(self):
        assert is_valid_member_number("123456789") is True
        assert is_valid_member_number("12345678") is False
        assert is_valid_member_number("12345678A") is False
        assert is_valid_member_number(None) is False


@pytest.mark.unit
class TestInvoiceDates:
    def test_due_date_uses_payment_terms(self):
        assert due_date_for(date(2025, 11, 2)) == date(2025, 12, 2)
        assert due_date_for(date(2025, 11, 2), 14) == date(2025, 11, 16)

    @pytest.mark.parametrize(
        "invoice_date,bucket",
        [
            (date(2025, 11, 2), "0-30"),
            (date(2025, 10, 3), "0-30"),
            (date(2025, 10, 2), "31-60"),
            (date(2025, 9, 2), "61-90"),
            (date(2025, 8, 1), "90+"),
        ],
    )
    def test_aging_bucket(self, invoice_date, bucket):
        assert aging_bucket(invoice_date, today=date(2025, 11, 2)) == bucket
