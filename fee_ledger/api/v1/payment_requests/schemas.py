"""Payment request schemas."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from fee_ledger.api.v1.fees.schemas import LedgerResponse, Pagination, PaymentResponse
from fee_ledger.core.enums import DecisionAction, PaymentRequestStatus, PaymentRequestType


class PaymentRequestCreate(BaseModel):
    student_id: UUID
    payment_type: PaymentRequestType
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    evidence_reference: str = Field(..., min_length=1, description="Location of the uploaded payment proof")
    gateway_reference: Optional[str] = Field(None, max_length=100)
    description: str = Field("", max_length=500)


class PaymentRequestDecision(BaseModel):
    action: DecisionAction
    remarks: Optional[str] = Field(None, max_length=300)


class PaymentRequestResponse(BaseModel):
    id: UUID
    student_id: UUID
    payment_type: PaymentRequestType
    amount: Decimal
    evidence_reference: str
    gateway_reference: Optional[str] = None
    description: str
    status: PaymentRequestStatus
    requested_by: Optional[UUID] = None
    requested_at: datetime
    decided_at: Optional[datetime] = None
    decided_by: Optional[UUID] = None
    remarks: str


class PaymentRequestDecisionResponse(BaseModel):
    """Decided request; on approval also the payment it produced and the resulting ledger."""

    request: PaymentRequestResponse
    payment: Optional[PaymentResponse] = None
    ledger: Optional[LedgerResponse] = None
    excess_amount: Decimal = Decimal("0.00")


class PaymentRequestListResponse(BaseModel):
    items: List[PaymentRequestResponse]
    pagination: Pagination


class PaymentRequestStats(BaseModel):
    total: int
    pending: int
    approved: int
    rejected: int
    total_amount: Decimal
    approved_amount: Decimal
    class_fee_requests: int
    bus_fee_requests: int
