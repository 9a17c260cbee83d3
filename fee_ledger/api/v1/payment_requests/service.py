"""Online payment requests: create pending, decide once (approve applies the payment), list, stats."""

import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fee_ledger.api.v1.fees import audit_service, receipts
from fee_ledger.api.v1.fees.schemas import Pagination
from fee_ledger.api.v1.fees.service import (
    AppliedPayment,
    apply_payment_to_ledger,
    ledger_inputs,
    ledger_to_response,
    payment_audit_details,
    payment_to_response,
    require_ledger,
    run_ledger_unit,
    validated_minor_amount,
)
from fee_ledger.auth.rbac import can_act_for_student
from fee_ledger.auth.schemas import CurrentUser
from fee_ledger.core.balance import recompute
from fee_ledger.core.enums import (
    AuditAction,
    AuditSeverity,
    DecisionAction,
    PaymentMethod,
    PaymentRequestStatus,
    PaymentRequestType,
    PaymentType,
)
from fee_ledger.core.exceptions import (
    AlreadyProcessedError,
    ForbiddenError,
    InvalidAmountError,
    NotFoundError,
    PersistenceError,
)
from fee_ledger.core.locks import student_ledger_locks
from fee_ledger.core.models import PaymentRequest
from fee_ledger.core.money import from_minor

from .schemas import (
    PaymentRequestCreate,
    PaymentRequestDecision,
    PaymentRequestDecisionResponse,
    PaymentRequestListResponse,
    PaymentRequestResponse,
    PaymentRequestStats,
)

logger = logging.getLogger(__name__)


def _request_to_response(r: PaymentRequest) -> PaymentRequestResponse:
    return PaymentRequestResponse(
        id=r.id,
        student_id=r.student_id,
        payment_type=r.payment_type,
        amount=from_minor(r.amount),
        evidence_reference=r.evidence_reference,
        gateway_reference=r.gateway_reference,
        description=r.description or "",
        status=r.status,
        requested_by=r.requested_by,
        requested_at=r.requested_at,
        decided_at=r.decided_at,
        decided_by=r.decided_by,
        remarks=r.remarks or "",
    )


async def _load_request(db: AsyncSession, request_id: UUID) -> Optional[PaymentRequest]:
    return (
        await db.execute(
            select(PaymentRequest)
            .where(PaymentRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()


async def create_payment_request(
    db: AsyncSession,
    payload: PaymentRequestCreate,
    actor: CurrentUser,
) -> PaymentRequestResponse:
    if not can_act_for_student(actor, payload.student_id):
        raise ForbiddenError()
    amount = validated_minor_amount(payload.amount)

    ledger = await require_ledger(db, payload.student_id)
    figures = recompute(ledger_inputs(ledger))
    if payload.payment_type == PaymentRequestType.CLASS:
        max_amount = figures.class_fee_pending
    else:
        max_amount = figures.bus_fee_pending if ledger.has_bus else 0
    if amount > max_amount:
        raise InvalidAmountError(f"Payment amount cannot exceed {from_minor(max_amount)}")

    req = PaymentRequest(
        student_id=payload.student_id,
        payment_type=payload.payment_type.value,
        amount=amount,
        evidence_reference=payload.evidence_reference,
        gateway_reference=(payload.gateway_reference or "").strip() or None,
        description=payload.description.strip(),
        status=PaymentRequestStatus.PENDING.value,
        requested_by=actor.id,
    )
    try:
        db.add(req)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise PersistenceError() from e
    await db.refresh(req)
    logger.info("Payment request %s created for student %s (%s)", req.id, req.student_id, from_minor(amount))
    return _request_to_response(req)


async def decide_payment_request(
    db: AsyncSession,
    request_id: UUID,
    payload: PaymentRequestDecision,
    actor: Optional[UUID],
) -> PaymentRequestDecisionResponse:
    """
    Move a pending request to approved or rejected, exactly once.
    Approval applies the payment in the same transaction as the status change, so a failed
    ledger update leaves the request pending and the decision can be retried.
    """
    req = await _load_request(db, request_id)
    if not req:
        raise NotFoundError("Payment request not found")
    if req.status != PaymentRequestStatus.PENDING.value:
        raise AlreadyProcessedError()
    student_id = req.student_id
    approve = payload.action == DecisionAction.APPROVE
    remarks = (payload.remarks or "").strip()

    async with student_ledger_locks.for_key(student_id):
        # Recheck under the lock: a decision that lost the race must not take a receipt number
        current = await _load_request(db, request_id)
        if not current or current.status != PaymentRequestStatus.PENDING.value:
            await db.rollback()
            raise AlreadyProcessedError()
        receipt_number = None
        if approve:
            receipt_number = await receipts.try_next_receipt_number(db, datetime.now(timezone.utc))

        async def unit() -> Tuple[PaymentRequest, Optional[AppliedPayment]]:
            current = await _load_request(db, request_id)
            if not current:
                raise NotFoundError("Payment request not found")
            if current.status != PaymentRequestStatus.PENDING.value:
                raise AlreadyProcessedError()
            now = datetime.now(timezone.utc)
            applied = None
            if approve:
                ledger = await require_ledger(db, current.student_id)
                applied = apply_payment_to_ledger(
                    db,
                    ledger,
                    current.amount,
                    PaymentType(current.payment_type),
                    PaymentMethod.ONLINE,
                    now,
                    current.description or f"Online {current.payment_type} fee payment",
                    actor,
                    receipt_number=receipt_number,
                    transaction_reference=current.gateway_reference,
                    payment_request_id=current.id,
                )
                current.status = PaymentRequestStatus.APPROVED.value
            else:
                current.status = PaymentRequestStatus.REJECTED.value
            current.decided_at = now
            current.decided_by = actor
            current.remarks = remarks
            return current, applied

        req, applied = await run_ledger_unit(db, student_id, unit)

    logger.info("Payment request %s %s by %s", req.id, req.status, actor)
    # Responses are built before auditing: a failed audit rolls back and expires loaded objects
    if applied is None:
        response = PaymentRequestDecisionResponse(request=_request_to_response(req))
        await audit_service.record_audit(
            db, student_id, AuditAction.PAYMENT_REQUEST_REJECTED,
            before={"status": PaymentRequestStatus.PENDING.value},
            after={"status": req.status},
            actor=actor,
            reference_table="payment_requests",
            reference_id=req.id,
            details={"remarks": remarks, "amount": str(from_minor(req.amount))},
            severity=AuditSeverity.LOW,
        )
        return response

    await db.refresh(applied.record)
    response = PaymentRequestDecisionResponse(
        request=_request_to_response(req),
        payment=payment_to_response(applied.record),
        ledger=ledger_to_response(applied.ledger),
        excess_amount=from_minor(applied.allocation.excess),
    )
    details = payment_audit_details(applied)
    details["payment_request_id"] = str(req.id)
    await audit_service.record_audit(
        db, student_id, AuditAction.PAYMENT_REQUEST_APPROVED,
        before=applied.before,
        after=applied.after,
        actor=actor,
        reference_table="payment_records",
        reference_id=applied.record.id,
        details=details,
    )
    return response


async def get_payment_request(db: AsyncSession, request_id: UUID) -> PaymentRequestResponse:
    req = await _load_request(db, request_id)
    if not req:
        raise NotFoundError("Payment request not found")
    return _request_to_response(req)


async def list_payment_requests(
    db: AsyncSession,
    page: int,
    page_size: int,
    status_filter: Optional[PaymentRequestStatus] = None,
    student_id: Optional[UUID] = None,
) -> PaymentRequestListResponse:
    filters = []
    if status_filter is not None:
        filters.append(PaymentRequest.status == status_filter.value)
    if student_id is not None:
        filters.append(PaymentRequest.student_id == student_id)
    total = (
        await db.execute(select(func.count()).select_from(PaymentRequest).where(*filters))
    ).scalar_one()
    result = await db.execute(
        select(PaymentRequest)
        .where(*filters)
        .order_by(PaymentRequest.requested_at.desc(), PaymentRequest.id)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return PaymentRequestListResponse(
        items=[_request_to_response(r) for r in result.scalars().all()],
        pagination=Pagination.build(page, page_size, total),
    )


async def list_my_payment_requests(db: AsyncSession, actor: CurrentUser) -> List[PaymentRequestResponse]:
    """Requests for every student the caller is linked to, newest first."""
    if not actor.student_ids:
        return []
    result = await db.execute(
        select(PaymentRequest)
        .where(PaymentRequest.student_id.in_(actor.student_ids))
        .order_by(PaymentRequest.requested_at.desc())
    )
    return [_request_to_response(r) for r in result.scalars().all()]


async def get_payment_request_stats(db: AsyncSession) -> PaymentRequestStats:
    R = PaymentRequest

    def _count_where(condition):
        return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

    row = (
        await db.execute(
            select(
                func.count(R.id).label("total"),
                _count_where(R.status == PaymentRequestStatus.PENDING.value).label("pending"),
                _count_where(R.status == PaymentRequestStatus.APPROVED.value).label("approved"),
                _count_where(R.status == PaymentRequestStatus.REJECTED.value).label("rejected"),
                func.coalesce(func.sum(R.amount), 0).label("total_amount"),
                func.coalesce(
                    func.sum(case((R.status == PaymentRequestStatus.APPROVED.value, R.amount), else_=0)), 0
                ).label("approved_amount"),
                _count_where(R.payment_type == PaymentRequestType.CLASS.value).label("class_requests"),
                _count_where(R.payment_type == PaymentRequestType.BUS.value).label("bus_requests"),
            )
        )
    ).one()
    return PaymentRequestStats(
        total=int(row.total or 0),
        pending=int(row.pending),
        approved=int(row.approved),
        rejected=int(row.rejected),
        total_amount=from_minor(int(row.total_amount)),
        approved_amount=from_minor(int(row.approved_amount)),
        class_fee_requests=int(row.class_requests),
        bus_fee_requests=int(row.bus_requests),
    )
