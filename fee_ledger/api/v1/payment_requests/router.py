from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from fee_ledger.auth.dependencies import get_current_user
from fee_ledger.auth.rbac import check_permission
from fee_ledger.auth.schemas import CurrentUser
from fee_ledger.core.config import settings
from fee_ledger.core.enums import PaymentRequestStatus
from fee_ledger.core.exceptions import ServiceError
from fee_ledger.db.session import get_db

from .schemas import (
    PaymentRequestCreate,
    PaymentRequestDecision,
    PaymentRequestDecisionResponse,
    PaymentRequestListResponse,
    PaymentRequestResponse,
    PaymentRequestStats,
)
from . import service

router = APIRouter(prefix="/api/v1/payment-requests", tags=["payment-requests"])


@router.post(
    "",
    response_model=PaymentRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_payment_request(
    payload: PaymentRequestCreate,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaymentRequestResponse:
    """Submit an online payment for review. Parents may only submit for their own students."""
    try:
        return await service.create_payment_request(db, payload, current_user)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.get(
    "",
    response_model=PaymentRequestListResponse,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def list_payment_requests(
    request_status: Optional[PaymentRequestStatus] = Query(None, alias="status"),
    student_id: Optional[UUID] = Query(None),
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1),
    db: AsyncSession = Depends(get_db),
) -> PaymentRequestListResponse:
    size = min(page_size or settings.default_page_size, settings.max_page_size)
    return await service.list_payment_requests(
        db, page, size, status_filter=request_status, student_id=student_id
    )


@router.get("/mine", response_model=List[PaymentRequestResponse])
async def list_my_payment_requests(
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> List[PaymentRequestResponse]:
    return await service.list_my_payment_requests(db, current_user)


@router.get(
    "/stats",
    response_model=PaymentRequestStats,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_payment_request_stats(
    db: AsyncSession = Depends(get_db),
) -> PaymentRequestStats:
    return await service.get_payment_request_stats(db)


@router.get(
    "/{request_id}",
    response_model=PaymentRequestResponse,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def get_payment_request(
    request_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> PaymentRequestResponse:
    try:
        return await service.get_payment_request(db, request_id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post(
    "/{request_id}/decision",
    response_model=PaymentRequestDecisionResponse,
    dependencies=[Depends(check_permission("fees", "approve"))],
)
async def decide_payment_request(
    request_id: UUID,
    payload: PaymentRequestDecision,
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> PaymentRequestDecisionResponse:
    try:
        return await service.decide_payment_request(db, request_id, payload, actor=current_user.id)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
