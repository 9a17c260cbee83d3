"""Receipt numbering: format, monthly sequences, uniqueness under concurrency, back-fill."""

import asyncio
import uuid
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fee_ledger.api.v1.fees import receipts, service
from fee_ledger.api.v1.fees.schemas import PaymentCreate
from fee_ledger.core.enums import PaymentMethod, PaymentType
from fee_ledger.core.exceptions import ReceiptSequenceError
from fee_ledger.core.models import PaymentRecord, ReceiptCounter


def _sequence(receipt_number: str) -> int:
    return int(receipt_number[-4:])


def test_format_receipt_number() -> None:
    assert receipts.format_receipt_number("202610", 1) == "RCP26100001"
    assert receipts.format_receipt_number("202610", 9999) == "RCP26109999"


def test_format_rejects_overflow() -> None:
    with pytest.raises(ReceiptSequenceError):
        receipts.format_receipt_number("202610", 10000)
    with pytest.raises(ReceiptSequenceError):
        receipts.format_receipt_number("202610", 0)


def test_period_key() -> None:
    assert receipts.period_key(datetime(2026, 3, 31, 23, 59)) == "202603"


@pytest.mark.asyncio
async def test_sequence_restarts_each_month(db_session: AsyncSession) -> None:
    october = datetime(2026, 10, 5, tzinfo=timezone.utc)
    assert await receipts.next_receipt_number(db_session, october) == "RCP26100001"
    assert await receipts.next_receipt_number(db_session, october) == "RCP26100002"
    assert await receipts.next_receipt_number(db_session, datetime(2026, 11, 1, tzinfo=timezone.utc)) == "RCP26110001"
    assert await receipts.next_receipt_number(db_session, october) == "RCP26100003"


@pytest.mark.asyncio
async def test_concurrent_payments_get_gapless_unique_receipts(
    session_factory: async_sessionmaker, admin_id, make_ledger
) -> None:
    students = [(await make_ledger()).student_id for _ in range(5)]

    async def pay(student_id: uuid.UUID) -> str:
        async with session_factory() as session:
            result = await service.apply_offline_payment(
                session,
                student_id,
                PaymentCreate(amount=Decimal("100"), payment_type=PaymentType.CLASS, method=PaymentMethod.CASH),
                actor=admin_id,
            )
            return result.payment.receipt_number

    numbers = await asyncio.gather(*(pay(s) for s in students))

    assert len(set(numbers)) == len(numbers)
    assert sorted(_sequence(n) for n in numbers) == list(range(1, len(students) + 1))


@pytest.mark.asyncio
async def test_concurrent_payments_on_one_student_are_linearized(
    session_factory: async_sessionmaker, admin_id, make_ledger
) -> None:
    ledger = await make_ledger()

    async def pay() -> str:
        async with session_factory() as session:
            result = await service.apply_offline_payment(
                session,
                ledger.student_id,
                PaymentCreate(amount=Decimal("1000"), payment_type=PaymentType.CLASS, method=PaymentMethod.CASH),
                actor=admin_id,
            )
            return result.payment.receipt_number

    numbers = await asyncio.gather(*(pay() for _ in range(4)))

    assert len(set(numbers)) == 4
    async with session_factory() as session:
        row = await service.require_ledger(session, ledger.student_id)
    assert row.class_fee_paid == 400000
    assert row.class_fee_pending == 100000
    assert row.version == 5


@pytest.mark.asyncio
async def test_payment_recorded_without_receipt_then_backfilled(
    db_session: AsyncSession, admin_id, make_ledger, monkeypatch
) -> None:
    ledger = await make_ledger()

    async def counter_down(db, period):
        raise SQLAlchemyError("receipt counter unavailable")

    monkeypatch.setattr(receipts, "_advance_counter", counter_down)
    result = await service.apply_offline_payment(
        db_session,
        ledger.student_id,
        PaymentCreate(amount=Decimal("500"), payment_type=PaymentType.CLASS, method=PaymentMethod.CASH),
        actor=admin_id,
    )
    assert result.payment.receipt_number is None
    assert result.ledger.class_fee.paid == Decimal("500.00")

    monkeypatch.undo()
    filled = await service.backfill_receipts(db_session)

    assert filled.filled == 1
    assert filled.payments[0].id == result.payment.id
    expected = receipts.format_receipt_number(receipts.period_key(datetime.now(timezone.utc)), 1)
    assert filled.payments[0].receipt_number == expected

    again = await service.backfill_receipts(db_session)
    assert again.filled == 0


@pytest.mark.asyncio
async def test_concurrent_backfills_number_each_payment_once(
    session_factory: async_sessionmaker, db_session: AsyncSession, admin_id, make_ledger, monkeypatch
) -> None:
    ledgers = [await make_ledger(), await make_ledger()]

    async def counter_down(db, period):
        raise SQLAlchemyError("receipt counter unavailable")

    monkeypatch.setattr(receipts, "_advance_counter", counter_down)
    for ledger in ledgers:
        await service.apply_offline_payment(
            db_session,
            ledger.student_id,
            PaymentCreate(amount=Decimal("250"), payment_type=PaymentType.CLASS, method=PaymentMethod.CASH),
            actor=admin_id,
        )
    monkeypatch.undo()

    async def backfill():
        async with session_factory() as session:
            return await service.backfill_receipts(session)

    runs = await asyncio.gather(backfill(), backfill())

    assert sum(run.filled for run in runs) == 2
    async with session_factory() as session:
        numbers = (await session.execute(select(PaymentRecord.receipt_number))).scalars().all()
        issued = (await session.execute(select(ReceiptCounter.last_value))).scalars().all()
    assert None not in numbers
    assert sorted(_sequence(n) for n in numbers) == [1, 2]
    assert issued == [2]
