"""Fees router: ledgers, offline payments, history, receipts, statistics, audit trail."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from fee_ledger.auth.dependencies import get_current_user
from fee_ledger.auth.rbac import check_permission
from fee_ledger.auth.schemas import CurrentUser
from fee_ledger.core.config import settings
from fee_ledger.core.enums import AuditAction, AuditSeverity, FeeStatus
from fee_ledger.core.exceptions import ServiceError
from fee_ledger.db.session import get_db

from .schemas import (
    AuditEntryListResponse,
    FeeStatistics,
    LedgerCreate,
    LedgerListResponse,
    LedgerResponse,
    LedgerTotalsUpdate,
    PaymentCreate,
    PaymentHistoryResponse,
    PaymentResponse,
    PaymentResult,
    ReceiptBackfillResponse,
)
from . import audit_service, service

router = APIRouter(prefix="/api/v1/fees", tags=["fees"])


def _page_size(page_size: Optional[int]) -> int:
    return min(page_size or settings.default_page_size, settings.max_page_size)


# --- Ledger ---
@router.post(
    "/ledgers",
    response_model=LedgerResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("fees", "create"))],
)
async def create_ledger(
    payload: LedgerCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> LedgerResponse:
    try:
        return await service.create_ledger(db, payload, actor=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/ledgers",
    response_model=LedgerListResponse,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def list_ledgers(
    fee_status: Optional[FeeStatus] = Query(None, description="Paid, Partial or Unpaid"),
    has_bus: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1),
    db: AsyncSession = Depends(get_db),
) -> LedgerListResponse:
    return await service.list_ledgers(
        db, page, _page_size(page_size), fee_status=fee_status, has_bus=has_bus
    )


@router.get(
    "/ledgers/{student_id}",
    response_model=LedgerResponse,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_ledger(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> LedgerResponse:
    try:
        return await service.get_ledger(db, student_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.put(
    "/ledgers/{student_id}/totals",
    response_model=LedgerResponse,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def set_ledger_totals(
    student_id: UUID,
    payload: LedgerTotalsUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> LedgerResponse:
    try:
        return await service.set_ledger_totals(db, student_id, payload, actor=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# --- Payment ---
@router.post(
    "/ledgers/{student_id}/payments",
    response_model=PaymentResult,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(check_permission("fees", "create"))],
)
async def record_offline_payment(
    student_id: UUID,
    payload: PaymentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaymentResult:
    try:
        return await service.apply_offline_payment(db, student_id, payload, actor=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "/ledgers/{student_id}/payments",
    response_model=PaymentHistoryResponse,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_payment_history(
    student_id: UUID,
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1),
    db: AsyncSession = Depends(get_db),
) -> PaymentHistoryResponse:
    try:
        return await service.get_payment_history(db, student_id, page, _page_size(page_size))
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# --- Receipts ---
@router.get(
    "/receipts/{receipt_number}",
    response_model=PaymentResponse,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_payment_by_receipt(
    receipt_number: str,
    db: AsyncSession = Depends(get_db),
) -> PaymentResponse:
    try:
        return await service.get_payment_by_receipt(db, receipt_number)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/receipts/backfill",
    response_model=ReceiptBackfillResponse,
    dependencies=[Depends(check_permission("fees", "update"))],
)
async def backfill_receipts(
    db: AsyncSession = Depends(get_db),
) -> ReceiptBackfillResponse:
    try:
        return await service.backfill_receipts(db)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


# --- Report ---
@router.get(
    "/stats",
    response_model=FeeStatistics,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_fee_statistics(
    db: AsyncSession = Depends(get_db),
) -> FeeStatistics:
    return await service.get_fee_statistics(db)


@router.get(
    "/audit",
    response_model=AuditEntryListResponse,
    dependencies=[Depends(check_permission("fees", "audit"))],
)
async def list_audit_entries(
    student_id: Optional[UUID] = Query(None),
    action: Optional[AuditAction] = Query(None),
    severity: Optional[AuditSeverity] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1),
    db: AsyncSession = Depends(get_db),
) -> AuditEntryListResponse:
    return await audit_service.list_audit_entries(
        db,
        page,
        _page_size(page_size),
        student_id=student_id,
        action=action,
        severity=severity,
        date_from=date_from,
        date_to=date_to,
    )
