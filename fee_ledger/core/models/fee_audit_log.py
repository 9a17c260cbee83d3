"""Fee audit log: append-only ledger state transitions for forensics. Never read back into balances."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, JSON, String, Uuid

from fee_ledger.core.enums import AuditSeverity
from fee_ledger.db.session import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FeeAuditLog(Base):
    """Immutable before/after snapshot of a ledger mutation."""

    __tablename__ = "fee_audit_logs"
    __table_args__ = (
        Index("ix_fee_audit_logs_student_timestamp", "student_id", "timestamp"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid, nullable=False)
    action = Column(String(50), nullable=False, index=True)
    # payment_records / payment_requests / student_fee_ledgers row the mutation produced
    reference_table = Column(String(50), nullable=True)
    reference_id = Column(Uuid, nullable=True)
    before_snapshot = Column(JSON, nullable=True)
    after_snapshot = Column(JSON, nullable=True)
    details = Column(JSON, nullable=True)
    actor = Column(Uuid, nullable=True)
    severity = Column(String(10), nullable=False, default=AuditSeverity.MEDIUM.value)
    timestamp = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
