"""
Document Numbering and Field Validators.

Numbers are time-ordered and sequential per period:
- claims:   CLM-YYYYMM-NNNNNN
- invoices: SHA-YYYYMM-NNNNNN
- batches:  SHA-BATCH-YYYYMMDD-NNNN

The next sequence is derived from the highest existing number with the same
prefix. Two transactions can compute the same number; the unique constraint
on the number column rejects the second, which then allocates again.
"""

import logging
import re
from collections.abc import Awaitable, Callable
from datetime import date, timedelta
from typing import Optional, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import InstrumentedAttribute

from sha_claims.core.exceptions import NumberCollisionError
from sha_claims.services.base import UniqueKey

logger = logging.getLogger(__name__)

T = TypeVar("T")

ICD10_PATTERN = re.compile(r"^[A-Z]\d{2,3}(\.\d{1,4})?$")
MEMBER_NUMBER_PATTERN = re.compile(r"^\d{9}$")

CLAIM_PREFIX = "CLM"
CLAIM_SEQUENCE_WIDTH = 6
INVOICE_SEQUENCE_WIDTH = 6
BATCH_SEQUENCE_WIDTH = 4
NUMBER_ALLOCATION_ATTEMPTS = 5

CLAIM_NUMBER_KEY = UniqueKey("claims", ("claim_number",))
INVOICE_NUMBER_KEY = UniqueKey("sha_invoices", ("invoice_number",))
BATCH_NUMBER_KEY = UniqueKey("sha_claim_batches", ("batch_number",))

AGING_BUCKETS = ("0-30", "31-60", "61-90", "90+")


def claim_number_prefix(on: date) -> str:
    return f"{CLAIM_PREFIX}-{on:%Y%m}-"


def invoice_number_prefix(on: date, prefix: str = "SHA") -> str:
    return f"{prefix}-{on:%Y%m}-"


def batch_number_prefix(on: date, prefix: str = "SHA-BATCH") -> str:
    return f"{prefix}-{on:%Y%m%d}-"


def format_number(prefix: str, sequence: int, width: int) -> str:
    return f"{prefix}{sequence:0{width}d}"


def parse_sequence(number: Optional[str], prefix: str) -> int:
    """Trailing sequence of a number carrying the given prefix; 0 if absent."""
    if not number or not number.startswith(prefix):
        return 0
    tail = number[len(prefix):]
    return int(tail) if tail.isdigit() else 0


async def next_number(
    session: AsyncSession,
    column: InstrumentedAttribute,
    prefix: str,
    width: int,
) -> str:
    """Next number in the period identified by prefix."""
    result = await session.execute(
        select(func.max(column)).where(column.like(f"{prefix}%"))
    )
    current = parse_sequence(result.scalar_one_or_none(), prefix)
    return format_number(prefix, current + 1, width)


def number_collision(key: UniqueKey, label: str) -> tuple[UniqueKey, NumberCollisionError]:
    """Conflict entry for `transaction()` that flags a taken number."""
    return key, NumberCollisionError(
        f"{label} number was allocated concurrently", {"column": key.columns[0]}
    )


async def retry_on_number_collision(
    operation: Callable[[], Awaitable[T]],
    attempts: int = NUMBER_ALLOCATION_ATTEMPTS,
) -> T:
    """
    Run a numbering transaction again when its number was taken concurrently.

    `operation` must open its own transaction so every attempt reads the
    current highest number.
    """
    for attempt in range(1, attempts):
        try:
            return await operation()
        except NumberCollisionError as e:
            logger.warning(f"{e.message}; allocating again ({attempt}/{attempts})")
    return await operation()


# =============================================================================
# Validators
# =============================================================================


def is_valid_icd10(code: Optional[str]) -> bool:
    return bool(code) and bool(ICD10_PATTERN.match(code.strip().upper()))


def is_valid_member_number(member_number: Optional[str]) -> bool:
    return bool(member_number) and bool(MEMBER_NUMBER_PATTERN.match(member_number.strip()))


# =============================================================================
# Invoice dates
# =============================================================================


def due_date_for(invoice_date: date, payment_terms_days: int = 30) -> date:
    return invoice_date + timedelta(days=payment_terms_days)


def aging_bucket(invoice_date: date, today: Optional[date] = None) -> str:
    """Aging bucket of an invoice: 0-30, 31-60, 61-90 or 90+ days."""
    days = ((today or date.today()) - invoice_date).days
    if days <= 30:
        return AGING_BUCKETS[0]
    if days <= 60:
        return AGING_BUCKETS[1]
    if days <= 90:
        return AGING_BUCKETS[2]
    return AGING_BUCKETS[3]
