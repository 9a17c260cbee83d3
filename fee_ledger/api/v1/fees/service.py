"""Fees service: student ledgers, offline payments, history, totals override, statistics.

Every ledger mutation runs as one unit under the student's lock: load fresh, compute, commit,
retried from a fresh read when a concurrent writer bumped the ledger version. Audit entries
are written after the unit commits.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Awaitable, Callable, Optional, Tuple, TypeVar
from uuid import UUID

from fastapi import status
from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from fee_ledger.core.balance import Allocation, LedgerFigures, LedgerInputs, allocate, recompute
from fee_ledger.core.config import settings
from fee_ledger.core.enums import (
    AuditAction,
    AuditSeverity,
    FeeStatus,
    PaymentMethod,
    PaymentRecordStatus,
    PaymentType,
)
from fee_ledger.core.exceptions import (
    ConflictError,
    InvalidAmountError,
    NotFoundError,
    PersistenceError,
    ServiceError,
)
from fee_ledger.core.locks import student_ledger_locks
from fee_ledger.core.models import PaymentRecord, StudentFeeLedger
from fee_ledger.core.money import from_minor, has_sub_minor_precision, to_minor

from . import audit_service, receipts
from .schemas import (
    BusFeeBreakdown,
    ClassFeeBreakdown,
    FeeStatistics,
    LedgerCreate,
    LedgerListResponse,
    LedgerResponse,
    LedgerTotalsUpdate,
    Pagination,
    PaymentCreate,
    PaymentHistoryResponse,
    PaymentResponse,
    PaymentResult,
    ReceiptBackfillResponse,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validated_minor_amount(amount: Decimal) -> int:
    if amount is None or amount <= 0:
        raise InvalidAmountError()
    if has_sub_minor_precision(amount):
        raise InvalidAmountError("Amount cannot have more than two decimal places")
    return to_minor(amount)


# --- Ledger figures ---
def ledger_inputs(ledger: StudentFeeLedger) -> LedgerInputs:
    return LedgerInputs(
        class_fee_total=ledger.class_fee_total or 0,
        class_fee_discount=ledger.class_fee_discount or 0,
        class_fee_paid=ledger.class_fee_paid or 0,
        bus_fee_total=ledger.bus_fee_total or 0,
        bus_fee_paid=ledger.bus_fee_paid or 0,
    )


def _write_figures(ledger: StudentFeeLedger, figures: LedgerFigures) -> None:
    ledger.class_fee_total = figures.class_fee_total
    ledger.class_fee_discount = figures.class_fee_discount
    ledger.class_fee_discounted_total = figures.class_fee_discounted_total
    ledger.class_fee_paid = figures.class_fee_paid
    ledger.class_fee_pending = figures.class_fee_pending
    ledger.bus_fee_total = figures.bus_fee_total
    ledger.bus_fee_paid = figures.bus_fee_paid
    ledger.bus_fee_pending = figures.bus_fee_pending
    ledger.total_fee = figures.total_fee
    ledger.total_fee_paid = figures.total_fee_paid
    ledger.overpaid = figures.overpaid
    ledger.fee_status = figures.fee_status.value


def ledger_snapshot(ledger: StudentFeeLedger) -> dict:
    """Audit-friendly view of the ledger, recomputed from its raw columns."""
    f = recompute(ledger_inputs(ledger))
    return {
        "class_fee": {
            "total": str(from_minor(f.class_fee_total)),
            "discount": str(from_minor(f.class_fee_discount)),
            "discounted_total": str(from_minor(f.class_fee_discounted_total)),
            "paid": str(from_minor(f.class_fee_paid)),
            "pending": str(from_minor(f.class_fee_pending)),
        },
        "bus_fee": {
            "total": str(from_minor(f.bus_fee_total)),
            "paid": str(from_minor(f.bus_fee_paid)),
            "pending": str(from_minor(f.bus_fee_pending)),
        },
        "has_bus": bool(ledger.has_bus),
        "total_fee": str(from_minor(f.total_fee)),
        "total_fee_paid": str(from_minor(f.total_fee_paid)),
        "other_fee_paid": str(from_minor(ledger.other_fee_paid or 0)),
        "fee_status": f.fee_status.value,
    }


def ledger_to_response(ledger: StudentFeeLedger) -> LedgerResponse:
    f = recompute(ledger_inputs(ledger))
    return LedgerResponse(
        id=ledger.id,
        student_id=ledger.student_id,
        class_fee=ClassFeeBreakdown(
            total=from_minor(f.class_fee_total),
            discount=from_minor(f.class_fee_discount),
            discounted_total=from_minor(f.class_fee_discounted_total),
            paid=from_minor(f.class_fee_paid),
            pending=from_minor(f.class_fee_pending),
        ),
        bus_fee=BusFeeBreakdown(
            total=from_minor(f.bus_fee_total),
            paid=from_minor(f.bus_fee_paid),
            pending=from_minor(f.bus_fee_pending),
        ),
        has_bus=bool(ledger.has_bus),
        total_fee=from_minor(f.total_fee),
        total_fee_paid=from_minor(f.total_fee_paid),
        other_fee_paid=from_minor(ledger.other_fee_paid or 0),
        overpaid_amount=from_minor(f.overpaid),
        fee_status=f.fee_status,
        created_at=ledger.created_at,
        updated_at=ledger.updated_at,
    )


def payment_to_response(pr: PaymentRecord) -> PaymentResponse:
    return PaymentResponse(
        id=pr.id,
        student_id=pr.student_id,
        amount=from_minor(pr.amount),
        payment_type=pr.payment_type,
        method=pr.method,
        status=pr.status,
        payment_date=pr.payment_date,
        receipt_number=pr.receipt_number,
        transaction_reference=pr.transaction_reference,
        class_fee_credit=from_minor(pr.class_fee_credit or 0),
        bus_fee_credit=from_minor(pr.bus_fee_credit or 0),
        excess_amount=from_minor(pr.excess_amount or 0),
        recorded_by=pr.recorded_by,
        note=pr.note or "",
        payment_request_id=pr.payment_request_id,
        created_at=pr.created_at,
    )


# --- Atomic ledger unit ---
async def load_ledger(db: AsyncSession, student_id: UUID) -> Optional[StudentFeeLedger]:
    """Always a fresh read; in-memory balances from an earlier attempt are overwritten."""
    return (
        await db.execute(
            select(StudentFeeLedger)
            .where(StudentFeeLedger.student_id == student_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()


async def require_ledger(db: AsyncSession, student_id: UUID) -> StudentFeeLedger:
    ledger = await load_ledger(db, student_id)
    if not ledger:
        raise NotFoundError("Fee ledger not found for student")
    return ledger


async def run_ledger_unit(db: AsyncSession, student_id: UUID, unit: Callable[[], Awaitable[T]]) -> T:
    """
    Run ``unit`` (load, compute, stage changes) and commit it as one transaction.
    A version conflict rolls everything back and re-runs ``unit`` from a fresh read.
    Caller holds the student's lock.
    """
    for attempt in range(1, settings.ledger_conflict_retries + 1):
        try:
            result = await unit()
            await db.commit()
            return result
        except StaleDataError:
            await db.rollback()
            logger.warning(
                "Ledger conflict for student %s (attempt %d of %d)",
                student_id, attempt, settings.ledger_conflict_retries,
            )
        except ServiceError:
            await db.rollback()
            raise
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("Ledger update for student %s failed: %s", student_id, e)
            raise PersistenceError() from e
    raise ConflictError()


@dataclass
class AppliedPayment:
    record: PaymentRecord
    ledger: StudentFeeLedger
    allocation: Allocation
    before: dict
    after: dict


def apply_payment_to_ledger(
    db: AsyncSession,
    ledger: StudentFeeLedger,
    amount: int,
    payment_type: PaymentType,
    method: PaymentMethod,
    payment_date: datetime,
    note: str,
    actor: Optional[UUID],
    receipt_number: Optional[str],
    transaction_reference: Optional[str] = None,
    payment_request_id: Optional[UUID] = None,
) -> AppliedPayment:
    """Allocate ``amount`` onto a freshly loaded ledger and stage the payment record. Does not commit."""
    before = ledger_snapshot(ledger)
    current = recompute(ledger_inputs(ledger))
    allocation = allocate(
        amount,
        payment_type,
        class_fee_pending=current.class_fee_pending,
        bus_fee_pending=current.bus_fee_pending,
        has_bus=bool(ledger.has_bus),
    )
    inputs = ledger_inputs(ledger)
    figures = recompute(
        LedgerInputs(
            class_fee_total=inputs.class_fee_total,
            class_fee_discount=inputs.class_fee_discount,
            class_fee_paid=inputs.class_fee_paid + allocation.class_fee_credit,
            bus_fee_total=inputs.bus_fee_total,
            bus_fee_paid=inputs.bus_fee_paid + allocation.bus_fee_credit,
        )
    )
    _write_figures(ledger, figures)
    if payment_type == PaymentType.OTHER:
        ledger.other_fee_paid = (ledger.other_fee_paid or 0) + amount

    record = PaymentRecord(
        student_id=ledger.student_id,
        amount=amount,
        payment_type=payment_type.value,
        method=method.value,
        status=PaymentRecordStatus.COMPLETED.value,
        payment_date=payment_date,
        receipt_number=receipt_number,
        transaction_reference=(transaction_reference or "").strip() or None,
        class_fee_credit=allocation.class_fee_credit,
        bus_fee_credit=allocation.bus_fee_credit,
        excess_amount=allocation.excess,
        recorded_by=actor,
        note=note,
        payment_request_id=payment_request_id,
    )
    db.add(record)
    return AppliedPayment(
        record=record,
        ledger=ledger,
        allocation=allocation,
        before=before,
        after=ledger_snapshot(ledger),
    )


def payment_audit_details(applied: AppliedPayment) -> dict:
    return {
        "amount": str(from_minor(applied.record.amount)),
        "payment_type": applied.record.payment_type,
        "method": applied.record.method,
        "receipt_number": applied.record.receipt_number,
        "class_fee_credit": str(from_minor(applied.allocation.class_fee_credit)),
        "bus_fee_credit": str(from_minor(applied.allocation.bus_fee_credit)),
        "excess_amount": str(from_minor(applied.allocation.excess)),
    }


# --- Ledger lifecycle ---
async def create_ledger(
    db: AsyncSession,
    payload: LedgerCreate,
    actor: Optional[UUID],
) -> LedgerResponse:
    class_total = to_minor(payload.class_fee_total)
    bus_total = to_minor(payload.bus_fee_total)
    figures = recompute(LedgerInputs(class_fee_total=class_total, bus_fee_total=bus_total))
    ledger = StudentFeeLedger(student_id=payload.student_id, has_bus=bus_total > 0, other_fee_paid=0)
    _write_figures(ledger, figures)
    try:
        db.add(ledger)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ServiceError("A fee ledger already exists for this student", status.HTTP_409_CONFLICT)
    await db.refresh(ledger)
    # Built before auditing: a failed audit rolls back and expires the session's objects
    response = ledger_to_response(ledger)
    await audit_service.record_audit(
        db, ledger.student_id, AuditAction.LEDGER_CREATED,
        before=None,
        after=ledger_snapshot(ledger),
        actor=actor,
        reference_table="student_fee_ledgers",
        reference_id=ledger.id,
        severity=AuditSeverity.LOW,
    )
    return response


async def get_ledger(db: AsyncSession, student_id: UUID) -> LedgerResponse:
    return ledger_to_response(await require_ledger(db, student_id))


async def list_ledgers(
    db: AsyncSession,
    page: int,
    page_size: int,
    fee_status: Optional[FeeStatus] = None,
    has_bus: Optional[bool] = None,
) -> LedgerListResponse:
    filters = []
    if fee_status is not None:
        filters.append(StudentFeeLedger.fee_status == fee_status.value)
    if has_bus is not None:
        filters.append(StudentFeeLedger.has_bus.is_(has_bus))
    total = (
        await db.execute(select(func.count()).select_from(StudentFeeLedger).where(*filters))
    ).scalar_one()
    result = await db.execute(
        select(StudentFeeLedger)
        .where(*filters)
        .order_by(StudentFeeLedger.created_at, StudentFeeLedger.id)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return LedgerListResponse(
        items=[ledger_to_response(ledger) for ledger in result.scalars().all()],
        pagination=Pagination.build(page, page_size, total),
    )


async def set_ledger_totals(
    db: AsyncSession,
    student_id: UUID,
    payload: LedgerTotalsUpdate,
    actor: Optional[UUID],
) -> LedgerResponse:
    """Administrative override of totals and discount. Paid amounts are kept; totals may not drop below them."""
    class_total = to_minor(payload.class_fee_total)
    discount = to_minor(payload.class_fee_discount)
    bus_total = to_minor(payload.bus_fee_total)
    has_bus = payload.has_bus if payload.has_bus is not None else bus_total > 0
    # Without transport the bus balance can never be credited, so it must not be owed either
    if not has_bus and bus_total > 0:
        raise InvalidAmountError("Bus fee total must be 0 when the student has no transport")

    async def unit() -> Tuple[StudentFeeLedger, dict]:
        ledger = await require_ledger(db, student_id)
        before = ledger_snapshot(ledger)
        figures = recompute(
            LedgerInputs(
                class_fee_total=class_total,
                class_fee_discount=discount,
                class_fee_paid=ledger.class_fee_paid or 0,
                bus_fee_total=bus_total,
                bus_fee_paid=ledger.bus_fee_paid or 0,
            )
        )
        if figures.overpaid > 0:
            raise InvalidAmountError(
                f"New totals are {from_minor(figures.overpaid)} below what has already been paid"
            )
        if not has_bus and figures.bus_fee_paid > 0:
            raise InvalidAmountError("Cannot remove transport while bus fee payments exist")
        _write_figures(ledger, figures)
        ledger.has_bus = has_bus
        return ledger, before

    async with student_ledger_locks.for_key(student_id):
        ledger, before = await run_ledger_unit(db, student_id, unit)

    logger.info("Fee totals updated for student %s by %s", student_id, actor)
    after = ledger_snapshot(ledger)
    response = ledger_to_response(ledger)
    await audit_service.record_audit(
        db, student_id, AuditAction.TOTALS_UPDATED,
        before=before,
        after=after,
        actor=actor,
        reference_table="student_fee_ledgers",
        reference_id=ledger.id,
        details={"note": payload.note or "Fee details updated by admin"},
        severity=AuditSeverity.HIGH,
    )
    return response


# --- Payment ---
async def apply_offline_payment(
    db: AsyncSession,
    student_id: UUID,
    payload: PaymentCreate,
    actor: Optional[UUID],
) -> PaymentResult:
    amount = validated_minor_amount(payload.amount)
    payment_type = PaymentType(payload.payment_type)
    method = PaymentMethod(payload.method)
    payment_date = payload.payment_date or _utcnow()
    note = payload.note or "Offline payment recorded by admin"

    await require_ledger(db, student_id)

    async with student_ledger_locks.for_key(student_id):
        receipt_number = await receipts.try_next_receipt_number(db, _utcnow())

        async def unit() -> AppliedPayment:
            ledger = await require_ledger(db, student_id)
            return apply_payment_to_ledger(
                db, ledger, amount, payment_type, method, payment_date, note, actor,
                receipt_number=receipt_number,
                transaction_reference=payload.transaction_reference,
            )

        applied = await run_ledger_unit(db, student_id, unit)

    await db.refresh(applied.record)
    logger.info(
        "Payment %s of %s (%s) applied for student %s, excess %s",
        applied.record.receipt_number, from_minor(amount), payment_type.value,
        student_id, from_minor(applied.allocation.excess),
    )
    result = PaymentResult(
        payment=payment_to_response(applied.record),
        ledger=ledger_to_response(applied.ledger),
        excess_amount=from_minor(applied.allocation.excess),
    )
    await audit_service.record_audit(
        db, student_id, AuditAction.PAYMENT_RECORDED,
        before=applied.before,
        after=applied.after,
        actor=actor,
        reference_table="payment_records",
        reference_id=applied.record.id,
        details=payment_audit_details(applied),
    )
    return result


async def get_payment_history(
    db: AsyncSession,
    student_id: UUID,
    page: int,
    page_size: int,
) -> PaymentHistoryResponse:
    ledger = await require_ledger(db, student_id)
    total = (
        await db.execute(
            select(func.count()).select_from(PaymentRecord).where(PaymentRecord.student_id == student_id)
        )
    ).scalar_one()
    result = await db.execute(
        select(PaymentRecord)
        .where(PaymentRecord.student_id == student_id)
        .order_by(PaymentRecord.payment_date.desc(), PaymentRecord.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return PaymentHistoryResponse(
        student_id=student_id,
        payments=[payment_to_response(pr) for pr in result.scalars().all()],
        current_fee_status=ledger_to_response(ledger),
        pagination=Pagination.build(page, page_size, total),
    )


async def get_payment_by_receipt(db: AsyncSession, receipt_number: str) -> PaymentResponse:
    pr = (
        await db.execute(select(PaymentRecord).where(PaymentRecord.receipt_number == receipt_number))
    ).scalar_one_or_none()
    if not pr:
        raise NotFoundError("Receipt not found")
    return payment_to_response(pr)


async def backfill_receipts(db: AsyncSession) -> ReceiptBackfillResponse:
    try:
        filled = await receipts.backfill_receipt_numbers(db)
    except SQLAlchemyError as e:
        await db.rollback()
        raise PersistenceError() from e
    return ReceiptBackfillResponse(
        filled=len(filled),
        payments=[payment_to_response(pr) for pr in filled],
    )


# --- Statistics ---
def _percentage(part: int, whole: int) -> Decimal:
    if whole <= 0:
        return Decimal("0.00")
    return (Decimal(part) * 100 / Decimal(whole)).quantize(Decimal("0.01"))


async def get_fee_statistics(db: AsyncSession) -> FeeStatistics:
    L = StudentFeeLedger

    def _count_where(condition):
        return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

    def _sum(column):
        return func.coalesce(func.sum(column), 0)

    stmt = select(
        func.count(L.id).label("total_students"),
        _count_where(L.fee_status == FeeStatus.PAID.value).label("fee_paid"),
        _count_where(L.fee_status == FeeStatus.PARTIAL.value).label("fee_partial"),
        _count_where(L.fee_status == FeeStatus.UNPAID.value).label("fee_unpaid"),
        _sum(L.class_fee_total).label("class_total"),
        _sum(L.class_fee_discount).label("class_discount"),
        _sum(L.class_fee_discounted_total).label("class_discounted"),
        _sum(L.class_fee_paid).label("class_paid"),
        _sum(L.class_fee_pending).label("class_pending"),
        _sum(L.bus_fee_total).label("bus_total"),
        _sum(L.bus_fee_paid).label("bus_paid"),
        _sum(L.bus_fee_pending).label("bus_pending"),
        _sum(L.total_fee).label("total_fee"),
        _sum(L.total_fee_paid).label("total_fee_paid"),
        _count_where(L.has_bus.is_(True)).label("with_bus"),
        _count_where(L.class_fee_discount > 0).label("with_discount"),
    )
    row = (await db.execute(stmt)).one()

    total_students = int(row.total_students or 0)
    total_fee = int(row.total_fee)
    total_fee_paid = int(row.total_fee_paid)
    return FeeStatistics(
        total_students=total_students,
        fee_paid=int(row.fee_paid),
        fee_partial=int(row.fee_partial),
        fee_unpaid=int(row.fee_unpaid),
        total_class_fees=from_minor(int(row.class_total)),
        total_class_discounts=from_minor(int(row.class_discount)),
        total_class_fees_after_discount=from_minor(int(row.class_discounted)),
        total_class_fees_paid=from_minor(int(row.class_paid)),
        total_class_fees_pending=from_minor(int(row.class_pending)),
        total_bus_fees=from_minor(int(row.bus_total)),
        total_bus_fees_paid=from_minor(int(row.bus_paid)),
        total_bus_fees_pending=from_minor(int(row.bus_pending)),
        total_fees=from_minor(total_fee),
        total_fees_paid=from_minor(total_fee_paid),
        total_fees_pending=from_minor(max(0, total_fee - total_fee_paid)),
        students_with_bus=int(row.with_bus),
        students_without_bus=total_students - int(row.with_bus),
        students_with_discount=int(row.with_discount),
        collection_percentage=_percentage(total_fee_paid, total_fee),
        discount_percentage=_percentage(int(row.class_discount), int(row.class_total)),
    )
