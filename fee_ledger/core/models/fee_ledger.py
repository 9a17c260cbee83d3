"""Student fee ledger: one row per student holding class-fee and bus-fee sub-balances."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Boolean, CheckConstraint, Column, DateTime, Integer, String, Uuid

from fee_ledger.core.enums import FeeStatus
from fee_ledger.db.session import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StudentFeeLedger(Base):
    """
    Per-student fee aggregate. Amounts are integer paise.
    Derived columns (discounted total, pending, totals, status) are rewritten from the raw
    columns on every mutation. ``version`` guards concurrent writers.
    """

    __tablename__ = "student_fee_ledgers"
    __table_args__ = (
        CheckConstraint("class_fee_total >= 0", name="chk_ledger_class_total"),
        CheckConstraint("class_fee_discount >= 0", name="chk_ledger_class_discount"),
        CheckConstraint("class_fee_paid >= 0", name="chk_ledger_class_paid"),
        CheckConstraint("bus_fee_total >= 0", name="chk_ledger_bus_total"),
        CheckConstraint("bus_fee_paid >= 0", name="chk_ledger_bus_paid"),
        CheckConstraint("fee_status IN ('Unpaid','Partial','Paid')", name="chk_ledger_fee_status"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    # Identity comes from the student directory; no ownership of the student row here
    student_id = Column(Uuid, nullable=False, unique=True, index=True)

    class_fee_total = Column(BigInteger, nullable=False, default=0)
    class_fee_discount = Column(BigInteger, nullable=False, default=0)
    class_fee_discounted_total = Column(BigInteger, nullable=False, default=0)
    class_fee_paid = Column(BigInteger, nullable=False, default=0)
    class_fee_pending = Column(BigInteger, nullable=False, default=0)

    has_bus = Column(Boolean, nullable=False, default=False)
    bus_fee_total = Column(BigInteger, nullable=False, default=0)
    bus_fee_paid = Column(BigInteger, nullable=False, default=0)
    bus_fee_pending = Column(BigInteger, nullable=False, default=0)

    # Miscellaneous ("other") receipts; not part of total_fee_paid or fee_status
    other_fee_paid = Column(BigInteger, nullable=False, default=0)

    total_fee = Column(BigInteger, nullable=False, default=0)
    total_fee_paid = Column(BigInteger, nullable=False, default=0)
    overpaid = Column(BigInteger, nullable=False, default=0)
    fee_status = Column(String(10), nullable=False, default=FeeStatus.PAID.value, index=True)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __mapper_args__ = {"version_id_col": version}
