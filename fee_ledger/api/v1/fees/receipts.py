"""
Receipt number allocation.
Unique across the system, strictly increasing within a calendar month.
Format: prefix + last 2 of year + 2 digit month + zero-padded monthly sequence.

Examples:
    RCP26100001 -> first receipt of October 2026
    RCP26100002 -> second receipt of October 2026
    RCP26110001 -> sequence restarts in November
"""

import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fee_ledger.core.config import settings
from fee_ledger.core.exceptions import ReceiptSequenceError
from fee_ledger.core.locks import receipt_period_locks, student_ledger_locks
from fee_ledger.core.models import PaymentRecord, ReceiptCounter
from fee_ledger.db.session import sibling_session

logger = logging.getLogger(__name__)


def period_key(moment: datetime) -> str:
    return f"{moment.year:04d}{moment.month:02d}"


def format_receipt_number(period: str, sequence: int) -> str:
    width = settings.receipt_sequence_width
    if sequence < 1 or sequence >= 10 ** width:
        raise ReceiptSequenceError(f"Receipt sequence {sequence} does not fit {width} digits for period {period}")
    return f"{settings.receipt_prefix}{period[2:]}{sequence:0{width}d}"


async def _advance_counter(db: AsyncSession, period: str) -> Optional[int]:
    """
    One compare-and-swap step on the period's counter, committed on its own connection so it
    never waits on (or rolls back with) the caller's ledger transaction.
    Returns None when another writer advanced the counter first.
    """
    async with sibling_session(db) as session:
        try:
            seen = (
                await session.execute(
                    select(ReceiptCounter.last_value).where(ReceiptCounter.period == period)
                )
            ).scalar_one_or_none()
            if seen is None:
                session.add(ReceiptCounter(period=period, last_value=1))
                await session.commit()
                return 1
            result = await session.execute(
                update(ReceiptCounter)
                .where(ReceiptCounter.period == period, ReceiptCounter.last_value == seen)
                .values(last_value=seen + 1)
            )
            if result.rowcount != 1:
                await session.rollback()
                return None
            await session.commit()
            return seen + 1
        except IntegrityError:
            # Lost the race to create the period's first row
            await session.rollback()
            return None


async def next_receipt_number(db: AsyncSession, moment: datetime) -> str:
    """Allocate the next receipt number for the month containing ``moment``."""
    period = period_key(moment)
    async with receipt_period_locks.for_key(period):
        for attempt in range(1, settings.receipt_max_attempts + 1):
            try:
                sequence = await _advance_counter(db, period)
            except SQLAlchemyError as e:
                raise ReceiptSequenceError(f"Receipt counter unavailable for period {period}: {e}") from e
            if sequence is not None:
                return format_receipt_number(period, sequence)
            logger.debug("Receipt counter contention for %s (attempt %d)", period, attempt)
    raise ReceiptSequenceError(
        f"Could not allocate a receipt number for period {period} after {settings.receipt_max_attempts} attempts"
    )


async def try_next_receipt_number(db: AsyncSession, moment: datetime) -> Optional[str]:
    """Like next_receipt_number, but a numbering failure yields None so the payment can still be recorded."""
    try:
        return await next_receipt_number(db, moment)
    except ReceiptSequenceError as e:
        logger.warning("Recording payment without receipt number, back-fill required: %s", e.message)
        return None


async def _still_unnumbered(db: AsyncSession, record_id: UUID) -> bool:
    return (
        await db.execute(
            select(PaymentRecord.id).where(
                PaymentRecord.id == record_id, PaymentRecord.receipt_number.is_(None)
            )
        )
    ).scalar_one_or_none() is not None


async def backfill_receipt_numbers(db: AsyncSession) -> List[PaymentRecord]:
    """
    Assign numbers to records whose allocation failed, in creation order, within each record's own month.
    Each record is rechecked under its student's lock before a number is taken, and the number is
    written only if the record is still unnumbered, so concurrent runs never overwrite each other.
    """
    pending = (
        await db.execute(
            select(PaymentRecord.id, PaymentRecord.student_id, PaymentRecord.created_at)
            .where(PaymentRecord.receipt_number.is_(None))
            .order_by(PaymentRecord.created_at, PaymentRecord.id)
        )
    ).all()
    filled_ids: List[UUID] = []
    for record_id, student_id, created_at in pending:
        async with student_ledger_locks.for_key(student_id):
            if not await _still_unnumbered(db, record_id):
                await db.rollback()
                continue
            number = await next_receipt_number(db, created_at)
            result = await db.execute(
                update(PaymentRecord)
                .where(PaymentRecord.id == record_id, PaymentRecord.receipt_number.is_(None))
                .values(receipt_number=number)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await db.rollback()
                logger.warning("Payment %s was numbered concurrently; receipt %s left unused", record_id, number)
                continue
            await db.commit()
        filled_ids.append(record_id)
        logger.info("Back-filled receipt %s for payment %s", number, record_id)

    if not filled_ids:
        return []
    return list(
        (
            await db.execute(
                select(PaymentRecord)
                .where(PaymentRecord.id.in_(filled_ids))
                .order_by(PaymentRecord.created_at, PaymentRecord.id)
                .execution_options(populate_existing=True)
            )
        ).scalars().all()
    )
