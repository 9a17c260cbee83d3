"""Payment record: immutable receipt of one confirmed payment against a student's ledger."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import BigInteger, CheckConstraint, Column, DateTime, String, Uuid

from fee_ledger.core.enums import PaymentRecordStatus
from fee_ledger.db.session import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentRecord(Base):
    """Append-only. ``amount`` is what was received; the credit columns are how it was placed."""

    __tablename__ = "payment_records"
    __table_args__ = (
        CheckConstraint("amount > 0", name="chk_payment_record_amount"),
        CheckConstraint("payment_type IN ('class','bus','both','other')", name="chk_payment_record_type"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid, nullable=False, index=True)
    amount = Column(BigInteger, nullable=False)
    payment_type = Column(String(10), nullable=False)
    method = Column(String(20), nullable=False)  # cash, cheque, online, card, upi, bank_transfer
    status = Column(String(20), nullable=False, default=PaymentRecordStatus.COMPLETED.value)
    payment_date = Column(DateTime(timezone=True), nullable=False, index=True)
    # Null only while a failed allocation awaits back-fill
    receipt_number = Column(String(32), nullable=True, unique=True)
    transaction_reference = Column(String(100), nullable=True)
    class_fee_credit = Column(BigInteger, nullable=False, default=0)
    bus_fee_credit = Column(BigInteger, nullable=False, default=0)
    excess_amount = Column(BigInteger, nullable=False, default=0)
    recorded_by = Column(Uuid, nullable=True)
    note = Column(String(500), nullable=False, default="")
    # Set when the payment came from an approved online request
    payment_request_id = Column(Uuid, nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
