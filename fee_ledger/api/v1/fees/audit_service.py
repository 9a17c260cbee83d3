"""
Audit trail for ledger mutations. Call after the mutation has committed.

Entries are diagnostic, not authoritative: a failed write is logged and dropped, never
propagated into the payment that caused it.
"""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fee_ledger.core.enums import AuditAction, AuditSeverity
from fee_ledger.core.models import FeeAuditLog

from .schemas import AuditEntryListResponse, AuditEntryResponse, Pagination

logger = logging.getLogger(__name__)


async def record_audit(
    db: AsyncSession,
    student_id: UUID,
    action: AuditAction,
    *,
    before: Optional[dict],
    after: Optional[dict],
    actor: Optional[UUID],
    reference_table: Optional[str] = None,
    reference_id: Optional[UUID] = None,
    details: Optional[dict] = None,
    severity: AuditSeverity = AuditSeverity.MEDIUM,
) -> Optional[FeeAuditLog]:
    """Append one audit entry in its own commit. Returns None when the write failed."""
    entry = FeeAuditLog(
        student_id=student_id,
        action=action.value,
        reference_table=reference_table,
        reference_id=reference_id,
        before_snapshot=before,
        after_snapshot=after,
        details=details,
        actor=actor,
        severity=severity.value,
    )
    try:
        db.add(entry)
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Audit entry %s for student %s was not written", action.value, student_id)
        return None
    return entry


def _entry_to_response(e: FeeAuditLog) -> AuditEntryResponse:
    return AuditEntryResponse(
        id=e.id,
        student_id=e.student_id,
        action=e.action,
        reference_table=e.reference_table,
        reference_id=e.reference_id,
        before_snapshot=e.before_snapshot,
        after_snapshot=e.after_snapshot,
        details=e.details,
        actor=e.actor,
        severity=e.severity,
        timestamp=e.timestamp,
    )


async def list_audit_entries(
    db: AsyncSession,
    page: int,
    page_size: int,
    student_id: Optional[UUID] = None,
    action: Optional[AuditAction] = None,
    severity: Optional[AuditSeverity] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> AuditEntryListResponse:
    filters = []
    if student_id is not None:
        filters.append(FeeAuditLog.student_id == student_id)
    if action is not None:
        filters.append(FeeAuditLog.action == action.value)
    if severity is not None:
        filters.append(FeeAuditLog.severity == severity.value)
    if date_from is not None:
        filters.append(FeeAuditLog.timestamp >= date_from)
    if date_to is not None:
        filters.append(FeeAuditLog.timestamp <= date_to)

    total = (
        await db.execute(select(func.count()).select_from(FeeAuditLog).where(*filters))
    ).scalar_one()
    stmt = (
        select(FeeAuditLog)
        .where(*filters)
        .order_by(FeeAuditLog.timestamp.desc(), FeeAuditLog.id)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(stmt)
    return AuditEntryListResponse(
        items=[_entry_to_response(e) for e in result.scalars().all()],
        pagination=Pagination.build(page, page_size, total),
    )
