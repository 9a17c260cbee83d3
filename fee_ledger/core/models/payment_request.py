"""Online payment request awaiting a one-time admin decision."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import BigInteger, CheckConstraint, Column, DateTime, Integer, String, Text, Uuid

from fee_ledger.core.enums import PaymentRequestStatus
from fee_ledger.db.session import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentRequest(Base):
    __tablename__ = "payment_requests"
    __table_args__ = (
        CheckConstraint("amount > 0", name="chk_payment_request_amount"),
        CheckConstraint("payment_type IN ('class','bus')", name="chk_payment_request_type"),
        CheckConstraint("status IN ('pending','approved','rejected')", name="chk_payment_request_status"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid, nullable=False, index=True)
    payment_type = Column(String(10), nullable=False)
    amount = Column(BigInteger, nullable=False)
    # Opaque pointers handed over by evidence storage and the gateway; never interpreted
    evidence_reference = Column(Text, nullable=False)
    gateway_reference = Column(String(100), nullable=True)
    description = Column(String(500), nullable=False, default="")
    status = Column(String(20), nullable=False, default=PaymentRequestStatus.PENDING.value, index=True)
    requested_by = Column(Uuid, nullable=True)
    requested_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    decided_by = Column(Uuid, nullable=True)
    remarks = Column(String(300), nullable=False, default="")

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
