from fee_ledger.core.models.fee_ledger import StudentFeeLedger
from fee_ledger.core.models.payment_record import PaymentRecord
from fee_ledger.core.models.payment_request import PaymentRequest
from fee_ledger.core.models.fee_audit_log import FeeAuditLog
from fee_ledger.core.models.receipt_counter import ReceiptCounter

__all__ = [
    "StudentFeeLedger",
    "PaymentRecord",
    "PaymentRequest",
    "FeeAuditLog",
    "ReceiptCounter",
]
