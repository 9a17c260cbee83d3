"""Fees schemas. Amounts are rupees with at most two decimal places."""

import math
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from fee_ledger.core.enums import FeeStatus, PaymentMethod, PaymentType


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_records: int
    has_next: bool
    has_prev: bool
    limit: int

    @classmethod
    def build(cls, page: int, page_size: int, total: int) -> "Pagination":
        total_pages = math.ceil(total / page_size) if page_size else 0
        return cls(
            current_page=page,
            total_pages=total_pages,
            total_records=total,
            has_next=page < total_pages,
            has_prev=page > 1,
            limit=page_size,
        )


# --- Ledger ---
class LedgerCreate(BaseModel):
    student_id: UUID
    class_fee_total: Decimal = Field(..., ge=0, decimal_places=2)
    bus_fee_total: Decimal = Field(Decimal("0"), ge=0, decimal_places=2)


class LedgerTotalsUpdate(BaseModel):
    class_fee_total: Decimal = Field(..., ge=0, decimal_places=2)
    class_fee_discount: Decimal = Field(Decimal("0"), ge=0, decimal_places=2)
    bus_fee_total: Decimal = Field(..., ge=0, decimal_places=2)
    has_bus: Optional[bool] = Field(None, description="Defaults to bus_fee_total > 0")
    note: Optional[str] = Field(None, max_length=500)


class ClassFeeBreakdown(BaseModel):
    total: Decimal
    discount: Decimal
    discounted_total: Decimal
    paid: Decimal
    pending: Decimal


class BusFeeBreakdown(BaseModel):
    total: Decimal
    paid: Decimal
    pending: Decimal


class LedgerResponse(BaseModel):
    id: UUID
    student_id: UUID
    class_fee: ClassFeeBreakdown
    bus_fee: BusFeeBreakdown
    has_bus: bool
    total_fee: Decimal
    total_fee_paid: Decimal
    other_fee_paid: Decimal
    overpaid_amount: Decimal
    fee_status: FeeStatus
    created_at: datetime
    updated_at: datetime


class LedgerListResponse(BaseModel):
    items: List[LedgerResponse]
    pagination: Pagination


# --- Payment ---
class PaymentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    payment_type: PaymentType
    method: PaymentMethod
    payment_date: Optional[datetime] = None
    transaction_reference: Optional[str] = Field(None, max_length=100)
    note: Optional[str] = Field(None, max_length=500)


class PaymentResponse(BaseModel):
    id: UUID
    student_id: UUID
    amount: Decimal
    payment_type: PaymentType
    method: PaymentMethod
    status: str
    payment_date: datetime
    receipt_number: Optional[str] = None
    transaction_reference: Optional[str] = None
    class_fee_credit: Decimal
    bus_fee_credit: Decimal
    excess_amount: Decimal
    recorded_by: Optional[UUID] = None
    note: str
    payment_request_id: Optional[UUID] = None
    created_at: datetime


class PaymentResult(BaseModel):
    """Outcome of applying one payment. ``excess_amount`` > 0 means part of it could not be placed."""

    payment: PaymentResponse
    ledger: LedgerResponse
    excess_amount: Decimal


class PaymentHistoryResponse(BaseModel):
    student_id: UUID
    payments: List[PaymentResponse]
    current_fee_status: LedgerResponse
    pagination: Pagination


class ReceiptBackfillResponse(BaseModel):
    filled: int
    payments: List[PaymentResponse]


# --- Statistics ---
class FeeStatistics(BaseModel):
    total_students: int
    fee_paid: int
    fee_partial: int
    fee_unpaid: int
    total_class_fees: Decimal
    total_class_discounts: Decimal
    total_class_fees_after_discount: Decimal
    total_class_fees_paid: Decimal
    total_class_fees_pending: Decimal
    total_bus_fees: Decimal
    total_bus_fees_paid: Decimal
    total_bus_fees_pending: Decimal
    total_fees: Decimal
    total_fees_paid: Decimal
    total_fees_pending: Decimal
    students_with_bus: int
    students_without_bus: int
    students_with_discount: int
    collection_percentage: Decimal
    discount_percentage: Decimal


# --- Audit ---
class AuditEntryResponse(BaseModel):
    id: UUID
    student_id: UUID
    action: str
    reference_table: Optional[str] = None
    reference_id: Optional[UUID] = None
    before_snapshot: Optional[Dict[str, Any]] = None
    after_snapshot: Optional[Dict[str, Any]] = None
    details: Optional[Dict[str, Any]] = None
    actor: Optional[UUID] = None
    severity: str
    timestamp: datetime


class AuditEntryListResponse(BaseModel):
    items: List[AuditEntryResponse]
    pagination: Pagination
